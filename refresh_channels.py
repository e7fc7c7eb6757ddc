#!/usr/bin/env python3
"""
Refresh monitored channels from the command line.
Runs the same batch refresh as the API, printing progress as channels complete.
"""

import argparse
import asyncio
import logging

from config import Config
from database import init_db
from refresher import ChannelRefresher
from snapshot_store import SnapshotStore
from video_cache import VideoCache
from youtube_monitor import YouTubeMonitor

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def print_progress(progress):
    print(f"[{progress.percentage:3d}%] {progress.current_index}/{progress.total} {progress.current_channel_name}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Refresh stats and recent videos of monitored channels")
    parser.add_argument("channel_ids", nargs="*", help="Channel IDs to refresh (default: all monitored channels)")
    parser.add_argument("--niche", action="append", default=[], help="Refresh channels of this niche (repeatable)")
    parser.add_argument("--force", action="store_true", help="Ignore cached videos younger than the cache window")
    parser.add_argument("--user", default=Config.DEFAULT_USER_ID, help="User whose channels are refreshed")
    return parser.parse_args(argv)


async def run(args):
    init_db()
    refresher = ChannelRefresher(SnapshotStore(), YouTubeMonitor(), VideoCache(), user_id=args.user)

    if args.niche:
        print(f"🔄 Refreshing niches: {', '.join(args.niche)}")
        return await refresher.refresh_niches(args.niche, force_update=args.force, on_progress=print_progress)
    if args.channel_ids:
        print(f"🔄 Refreshing {len(args.channel_ids)} channels")
        return await refresher.refresh_channels(args.channel_ids, force_update=args.force,
                                                on_progress=print_progress)
    print("🔄 Refreshing all monitored channels")
    return await refresher.refresh_all(force_update=args.force, on_progress=print_progress)


def main(argv=None):
    args = parse_args(argv)
    try:
        result = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n⏹️  Process interrupted by user")
        return 130

    # Final summary
    print(f"\n🎉 Refresh completed!")
    print(f"📋 Total channels: {result.total}")
    print(f"✅ Updated: {result.success}")
    print(f"💾 Served from cache: {result.skipped_cached}")
    print(f"❌ Failed: {result.failed}")

    if result.errors:
        print(f"\n⚠️  Failed channels that need manual attention:")
        for error in result.errors:
            print(f"   - {error.channel_name}: {error.message}")

    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
