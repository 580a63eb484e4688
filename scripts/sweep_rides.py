"""
Ride housekeeping sweep, for cron / scheduled jobs.

Deletes completed and cancelled rides older than the retention window.
Use this when the API processes run with HOUSEKEEPING_ENABLED=false.

    python -m scripts.sweep_rides --retention-hours 24
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rideshare_backend.app.core.config import settings
from rideshare_backend.app.core.redis_client import redis_client
from rideshare_backend.app.db.session import AsyncSessionLocal, engine
from rideshare_backend.app.services.housekeeping import HousekeepingMonitor, sweep_expired_rides


async def main(retention_hours: int, ignore_lock: bool) -> int:
    retention = timedelta(hours=retention_hours)
    try:
        if ignore_lock:
            deleted = await sweep_expired_rides(AsyncSessionLocal, retention=retention)
        else:
            monitor = HousekeepingMonitor(
                AsyncSessionLocal,
                redis_client,
                interval_seconds=settings.housekeeping_interval_seconds,
                retention=retention,
            )
            deleted = await monitor.run_once()
    finally:
        await engine.dispose()
        await redis_client.aclose()

    if deleted is None:
        print("⏭️  Another process swept this interval, nothing to do")
    else:
        print(f"🧹 Deleted {deleted} expired rides")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge expired terminal rides.")
    parser.add_argument(
        "--retention-hours",
        type=int,
        default=settings.ride_retention_hours,
        help="Keep terminal rides for this many hours (default from settings).",
    )
    parser.add_argument(
        "--ignore-lock",
        action="store_true",
        help="Sweep even if another process holds the sweep lock.",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.retention_hours, args.ignore_lock)))
