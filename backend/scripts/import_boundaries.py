"""Import administrative boundaries from GeoJSON files.

Usage:
    python scripts/import_boundaries.py LEVEL1.geojson [LEVEL2.geojson] [--country EG] [--force]

Level 1 is imported before level 2 so every level-2 feature can find its
parent. Without --force a level that already has rows is left untouched.
"""
import asyncio
import json
import logging
import os
import sys

# Add parent directory to path to import servicezones modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from servicezones.config import get_settings
from servicezones.services.ingestion import BoundaryIngestor, load_feature_collection
from servicezones.services.store import open_store

settings = get_settings()


async def import_boundaries(level_files, country_code, force):
    async with open_store() as store:
        ingestor = BoundaryIngestor(store, country_code)
        for level, file_path in level_files:
            features = load_feature_collection(file_path)
            print(f"Read {len(features)} level {level} features from {file_path}")
            result = await ingestor.ingest_level(features, level, force_replace=force)
            print(f"Level {level}: {result.summary()}")
            for reason in result.skip_reasons:
                print(f"  skipped {reason}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Import administrative boundaries")
    parser.add_argument("level1", help="GeoJSON FeatureCollection of level-1 regions")
    parser.add_argument("level2", nargs="?", help="GeoJSON FeatureCollection of level-2 subregions")
    parser.add_argument(
        "--country",
        default=settings.DEFAULT_COUNTRY_CODE,
        help=f"Country code stored with each boundary (default: {settings.DEFAULT_COUNTRY_CODE})",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Delete and re-import levels that already have boundaries",
    )
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")

    level_files = [(1, args.level1)]
    if args.level2:
        level_files.append((2, args.level2))

    for _, file_path in level_files:
        if not os.path.exists(file_path):
            print(f"File not found: {file_path}")
            sys.exit(1)

    try:
        asyncio.run(import_boundaries(level_files, args.country, args.force))
    except (json.JSONDecodeError, ValueError) as e:
        print(f"Could not read boundaries: {e}")
        sys.exit(1)
