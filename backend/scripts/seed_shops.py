"""Insert shops from a JSON list, each bound to an operational area by slug.

Usage:
    python scripts/seed_shops.py SHOPS.json
"""
import asyncio
import json
import logging
import os
import sys

# Add parent directory to path to import servicezones modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from servicezones.config import get_settings
from servicezones.services.assignment import AreaAssigner, load_shop_seeds
from servicezones.services.store import open_store

settings = get_settings()


async def seed_shops(file_path):
    seeds = load_shop_seeds(file_path)
    print(f"Read {len(seeds)} shops from {file_path}")

    async with open_store() as store:
        result = await AreaAssigner(store).assign_batch(seeds)

    print(f"Shops: {result.summary()}")
    for reason in result.skip_reasons:
        print(f"  skipped {reason}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/seed_shops.py SHOPS.json")
        sys.exit(1)

    file_path = sys.argv[1]
    if not os.path.exists(file_path):
        print(f"File not found: {file_path}")
        sys.exit(1)

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(seed_shops(file_path))
    except (json.JSONDecodeError, ValueError) as e:
        print(f"Could not read shops: {e}")
        sys.exit(1)
