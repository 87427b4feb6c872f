#!/usr/bin/env python3
"""
Remove abandoned upload staging areas.

Intended for cron, alongside or instead of the in-process collector:
    */10 * * * * python scripts/sweep_staging.py --retention 3600
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from chunked_transfer.config import settings
from chunked_transfer.services import build_services


async def sweep(retention: int, dry_run: bool) -> int:
    services = build_services(settings)
    await services.start(run_background_gc=False)

    try:
        repository = services.repository
        print("=" * 60)
        print(f"Staging root: {repository.staging_root}")
        print(f"Retention:    {retention}s")
        print("=" * 60)

        if dry_run:
            session_ids = repository.list_session_ids()
            print(f"\n{len(session_ids)} staging area(s) present (dry run, nothing deleted):")
            for session_id in session_ids:
                print(f"   - {session_id}")
            return 0

        result = await services.collector.sweep(retention)
        print(f"\nScanned:               {result.scanned}")
        print(f"Deleted:               {result.deleted_count}")
        print(f"Skipped (active):      {result.skipped_active}")
        print(f"Skipped (reassembling):{result.skipped_reassembling:>3}")
        print(f"Errors:                {result.errors}")
        for session_id in result.deleted:
            print(f"   ✓ {session_id}")
        return 1 if result.errors else 0
    finally:
        await services.stop()


def main():
    parser = argparse.ArgumentParser(description="Sweep expired upload staging areas")
    parser.add_argument(
        "--retention",
        type=int,
        default=settings.session_retention_seconds,
        help=f"Inactivity window in seconds (default: {settings.session_retention_seconds})"
    )
    parser.add_argument("--dry-run", action="store_true", help="Only list staging areas")
    args = parser.parse_args()

    sys.exit(asyncio.run(sweep(args.retention, args.dry_run)))


if __name__ == "__main__":
    main()
