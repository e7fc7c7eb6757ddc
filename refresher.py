"""
Batch refresh of monitored channels.

Channel IDs are processed in fixed-size batches. Inside a batch every channel
is refreshed concurrently, and the next batch only starts once the whole
batch has settled. The provider and the store are blocking clients, so their
calls run in worker threads; cache writes stay on the event loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from analytics import annotate_videos, compute_growth
from config import Config
from errors import ChannelNotFound
from schemas import (
    BatchResult,
    ChannelVideoData,
    MonitoredChannel,
    RefreshError,
    RefreshProgress,
    SnapshotCounts,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[RefreshProgress], None]


def progress_percentage(current, total):
    if not total:
        return 100
    # Half rounds up
    return int(current * 100 / total + 0.5)


class ChannelRefresher:
    def __init__(self, store, monitor, cache, user_id=None, batch_size=None, delay_seconds=None,
                 cache_max_age_hours=None, videos_per_channel=None):
        self.store = store
        self.monitor = monitor
        self.cache = cache
        self.user_id = user_id or Config.DEFAULT_USER_ID
        self.batch_size = batch_size or Config.REFRESH_BATCH_SIZE
        self.delay_seconds = Config.REFRESH_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.cache_max_age_hours = cache_max_age_hours or Config.REFRESH_CACHE_HOURS
        self.videos_per_channel = videos_per_channel or Config.LATEST_VIDEOS_PER_CHANNEL

    async def _monitored_channels(self):
        channels = await asyncio.to_thread(self.store.get_monitored_channels, self.user_id)
        return {channel.channel_id: channel for channel in channels}

    async def refresh_channels(self, channel_ids: Iterable[str], force_update=False,
                               on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        """Refresh channels batch by batch and account for every one of them"""
        # The same channel never runs twice, so no two tasks share a cache slot
        ids = list(dict.fromkeys(channel_ids))
        result = BatchResult(total=len(ids))
        if not ids:
            return result

        channels = await self._monitored_channels()
        completed = 0

        def item_done(channel_name):
            nonlocal completed
            completed += 1
            if on_progress:
                on_progress(RefreshProgress(
                    current_index=completed,
                    total=result.total,
                    percentage=progress_percentage(completed, result.total),
                    current_channel_name=channel_name,
                ))

        total_batches = (len(ids) + self.batch_size - 1) // self.batch_size
        for batch_number, start in enumerate(range(0, len(ids), self.batch_size), start=1):
            batch = ids[start:start + self.batch_size]
            logger.info(f"🔄 Processing batch {batch_number}/{total_batches} ({len(batch)} channels)")

            await asyncio.gather(*(
                self._run_item(channel_id, channels.get(channel_id), force_update, result, item_done)
                for channel_id in batch
            ))

        logger.info(f"✅ Refresh complete: {result.success} updated, {result.skipped_cached} cached, "
                    f"{result.failed} failed")
        return result

    def _is_fresh(self, channel_id):
        # A deleted-channel marker is never served from cache so the failure is reported again
        entry = self.cache.get_channel_videos(channel_id)
        if entry is None or entry.channel_deleted:
            return False
        return self.cache.is_cache_valid(channel_id, self.cache_max_age_hours)

    async def _run_item(self, channel_id, channel: Optional[MonitoredChannel], force_update, result: BatchResult,
                        item_done):
        channel_name = channel.display_name if channel else channel_id
        try:
            if not force_update and self._is_fresh(channel_id):
                result.skipped_cached += 1
                logger.debug(f"Using cached videos for {channel_name}")
            else:
                if channel is None:
                    raise ChannelNotFound(channel_id, f"Channel is not monitored: {channel_id}")
                await self._refresh_one(channel_id)
                result.success += 1
                await asyncio.sleep(self.delay_seconds)
        except Exception as e:
            result.failed += 1
            result.errors.append(RefreshError(channel_id=channel_id, channel_name=channel_name, message=str(e)))
            logger.error(f"Error refreshing channel {channel_id}: {e}")
        finally:
            item_done(channel_name)

    async def _refresh_one(self, channel_id):
        """Fetch videos and stats, write the cache, then the snapshot and channel record.

        The writes are independent: a failed snapshot write after a cache
        write leaves the cache ahead of the history until the next refresh.
        """
        try:
            latest = await asyncio.to_thread(self.monitor.fetch_latest_videos, channel_id, self.videos_per_channel)
            if latest.channel_deleted:
                raise ChannelNotFound(channel_id, f"Channel deleted or unavailable: {channel_id}")
            stats = await asyncio.to_thread(self.monitor.fetch_channel_stats, channel_id)
        except ChannelNotFound as e:
            previous = self.cache.get_channel_videos(channel_id)
            self.cache.save_channel_videos(
                channel_id,
                previous.videos if previous else [],
                channel_deleted=True,
                error=str(e),
            )
            raise

        now = datetime.now(timezone.utc)
        videos = annotate_videos(latest.videos, stats.view_count, stats.video_count, now)
        self.cache.save_channel_videos(channel_id, videos, now=now)

        counts = SnapshotCounts(
            subscriber_count=stats.subscriber_count,
            view_count=stats.view_count,
            video_count=stats.video_count,
        )
        await asyncio.to_thread(self.store.upsert_today_snapshot, channel_id, self.user_id, counts, now)
        await asyncio.to_thread(
            self.store.update_monitored_channel, channel_id, self.user_id, counts, now,
            stats.title, stats.thumbnail_url,
        )
        logger.debug(f"📊 Updated {stats.title}: {stats.subscriber_count:,} subscribers, "
                     f"{len(videos)} videos cached")

    async def refresh_channel(self, channel_id, force_update=False) -> BatchResult:
        return await self.refresh_channels([channel_id], force_update=force_update)

    async def refresh_all(self, force_update=False, on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        channels = await asyncio.to_thread(self.store.get_monitored_channels, self.user_id)
        return await self.refresh_channels(
            [channel.channel_id for channel in channels], force_update=force_update, on_progress=on_progress
        )

    async def refresh_niches(self, niches: Iterable[str], force_update=False,
                             on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        """Refresh every channel whose niche is one of niches, ignoring case"""
        wanted = {niche.strip().lower() for niche in niches if niche and niche.strip()}
        channels = await asyncio.to_thread(self.store.get_monitored_channels, self.user_id)
        selected = [
            channel.channel_id for channel in channels
            if channel.niche and channel.niche.strip().lower() in wanted
        ]
        return await self.refresh_channels(selected, force_update=force_update, on_progress=on_progress)

    async def load_channel_videos(self, now=None) -> List[ChannelVideoData]:
        """Join monitored channels with cached videos without touching the provider"""
        now = now or datetime.now(timezone.utc)
        channels = await asyncio.to_thread(self.store.get_monitored_channels, self.user_id)

        rows = []
        for channel in channels:
            history = await asyncio.to_thread(self.store.get_history, channel.channel_id, self.user_id)
            entry = self.cache.get_channel_videos(channel.channel_id)
            videos = []
            if entry:
                videos = annotate_videos(entry.videos, channel.current_views, channel.current_video_count, now)
            rows.append(ChannelVideoData(
                channel=channel,
                videos=videos,
                growth=compute_growth(channel, history, now),
                last_fetched_at=entry.last_fetched_at if entry else None,
                channel_deleted=bool(entry and entry.channel_deleted),
                error=entry.error if entry else None,
            ))
        return rows
