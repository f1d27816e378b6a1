"""Create operational areas from a JSON list of area definitions.

Usage:
    python scripts/seed_operational_areas.py AREAS.json [--force]
"""
import asyncio
import json
import logging
import os
import sys

# Add parent directory to path to import servicezones modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from servicezones.config import get_settings
from servicezones.services.store import open_store
from servicezones.services.synthesis import AreaSynthesizer, load_area_definitions

settings = get_settings()


async def seed_operational_areas(file_path, force):
    definitions = load_area_definitions(file_path)
    print(f"Read {len(definitions)} area definitions from {file_path}")

    async with open_store() as store:
        result = await AreaSynthesizer(store).synthesize(definitions, force_reset=force)

    print(f"Operational areas: {result.summary()}")
    for reason in result.skip_reasons:
        print(f"  skipped {reason}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed operational areas")
    parser.add_argument("definitions", help="JSON list of area definitions")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Delete existing shops and operational areas before seeding",
    )
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")

    if not os.path.exists(args.definitions):
        print(f"File not found: {args.definitions}")
        sys.exit(1)

    try:
        asyncio.run(seed_operational_areas(args.definitions, args.force))
    except (json.JSONDecodeError, ValueError) as e:
        print(f"Could not read area definitions: {e}")
        sys.exit(1)
