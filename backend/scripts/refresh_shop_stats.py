"""Run one shop count aggregation pass immediately.

Usage:
    python scripts/refresh_shop_stats.py
"""
import asyncio
import json
import logging
import os
import sys

# Add parent directory to path to import servicezones modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from servicezones.config import get_settings
from servicezones.services.aggregation import AggregateRefresher

settings = get_settings()


async def refresh_shop_stats():
    report = await AggregateRefresher().run_once("script")
    if report is None:
        print("Aggregation already running; nothing done.")
        return
    print(json.dumps(report.as_dict(), indent=2))


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(refresh_shop_stats())
