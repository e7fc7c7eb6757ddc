import numpy as np
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
import logging

from schemas import CachedVideo, ChannelOverview, ChannelSnapshot, DashboardSummary, GrowthMetrics, MonitoredChannel

logger = logging.getLogger(__name__)

EXPLODING_WEEKLY_RATIO = 0.1
VIRAL_VIEW_THRESHOLD = 100_000
VIRAL_VELOCITY_MULTIPLIER = 3
DASHBOARD_TOP_CHANNELS = 3


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def growth_percent(delta, initial):
    """Percentage growth rounded to one decimal, 0.0 when there is no baseline"""
    if not initial:
        return 0.0
    return round(delta / initial * 100, 1)


def window_baseline(history: List[ChannelSnapshot], cutoff) -> Optional[ChannelSnapshot]:
    """Earliest snapshot recorded at or after cutoff. history must be sorted ascending."""
    cutoff = _as_utc(cutoff)
    for snapshot in history:
        if _as_utc(snapshot.recorded_at) >= cutoff:
            return snapshot
    return None


def compute_growth(channel: MonitoredChannel, history: Iterable[ChannelSnapshot], now=None) -> GrowthMetrics:
    """Derive lifetime, 7-day and 1-day deltas for a channel from its snapshot history.

    The history does not need to be sorted. A window with no snapshot in it
    reports zero growth, and a channel without any history reports zero
    growth everywhere.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    ordered = sorted(history, key=lambda snapshot: _as_utc(snapshot.recorded_at))

    current_subs = channel.current_subscribers
    current_views = channel.current_views

    if ordered:
        initial_subs = ordered[0].subscriber_count
        initial_views = ordered[0].view_count
    else:
        initial_subs = current_subs
        initial_views = current_views

    subs_7d = views_7d = subs_1d = views_1d = 0

    week_baseline = window_baseline(ordered, now - timedelta(days=7))
    if week_baseline:
        subs_7d = current_subs - week_baseline.subscriber_count
        views_7d = current_views - week_baseline.view_count

    day_baseline = window_baseline(ordered, now - timedelta(days=1))
    if day_baseline:
        subs_1d = current_subs - day_baseline.subscriber_count
        views_1d = current_views - day_baseline.view_count

    total_subs = current_subs - initial_subs
    total_views = current_views - initial_views

    return GrowthMetrics(
        initial_subscribers=initial_subs,
        initial_views=initial_views,
        total_subs_gained=total_subs,
        total_views_gained=total_views,
        subs_growth_percent=growth_percent(total_subs, initial_subs),
        views_growth_percent=growth_percent(total_views, initial_views),
        subs_last_7_days=subs_7d,
        views_last_7_days=views_7d,
        subs_last_day=subs_1d,
        views_last_day=views_1d,
        is_exploding=is_exploding(subs_7d, current_subs),
    )


def is_exploding(subs_last_7_days, current_subscribers):
    """More than 10% of the current audience gained in a week"""
    if current_subscribers <= 0:
        return False
    return subs_last_7_days > EXPLODING_WEEKLY_RATIO * current_subscribers


def channel_average_views(current_views, current_video_count):
    return current_views / max(current_video_count or 0, 1)


def days_since_published(published_at, now=None):
    """Whole days since publication, never less than 1"""
    if published_at is None:
        return 1
    now = _as_utc(now or datetime.now(timezone.utc))
    elapsed = now - _as_utc(published_at)
    return max(1, elapsed // timedelta(days=1))


def classify_video(video: CachedVideo, channel_average, now=None) -> bool:
    """Viral if not deleted and either above 100k views or three times the channel average per day"""
    if video.is_deleted:
        return False
    views_per_day = video.view_count / days_since_published(video.published_at, now)
    return video.view_count > VIRAL_VIEW_THRESHOLD or views_per_day > VIRAL_VELOCITY_MULTIPLIER * channel_average


def annotate_videos(videos: Iterable[CachedVideo], current_views, current_video_count, now=None) -> List[CachedVideo]:
    """Copy videos with 1-based positions and a freshly computed viral flag"""
    average = channel_average_views(current_views, current_video_count)
    annotated = []
    for position, video in enumerate(videos, start=1):
        annotated.append(video.model_copy(update={
            'position': position,
            'is_viral': classify_video(video, average, now),
        }))
    return annotated


def summarize_video_views(videos: Iterable[CachedVideo]):
    """View statistics over the public videos of a channel"""
    views = [video.view_count for video in videos if not video.is_deleted]
    if not views:
        return {
            'video_count': 0,
            'total_views': 0,
            'avg_views': 0.0,
            'median_views': 0.0,
            'percentile_75': 0.0,
            'percentile_90': 0.0,
        }

    return {
        'video_count': len(views),
        'total_views': int(np.sum(views)),
        'avg_views': float(np.mean(views)),
        'median_views': float(np.median(views)),
        'percentile_75': float(np.percentile(views, 75)),
        'percentile_90': float(np.percentile(views, 90)),
    }


def _top_by_weekly_views(rows, content_type, limit):
    matching = [row for row in rows if row.channel.content_type == content_type]
    ranked = sorted(matching, key=lambda row: row.growth.views_last_7_days, reverse=True)
    return ranked[:limit]


def summarize_dashboard(rows, limit=DASHBOARD_TOP_CHANNELS) -> DashboardSummary:
    """Channel count, exploding count and the top longform and shorts channels by views in the last 7 days.

    rows are (channel, growth) pairs such as ChannelOverview or ChannelVideoData;
    a row without growth counts as zero growth.
    """
    overviews = [
        ChannelOverview(channel=row.channel, growth=row.growth or GrowthMetrics())
        for row in rows
    ]
    return DashboardSummary(
        total_channels=len(overviews),
        exploding_channels=sum(1 for row in overviews if row.growth.is_exploding),
        top_longform=_top_by_weekly_views(overviews, 'longform', limit),
        top_shorts=_top_by_weekly_views(overviews, 'shorts', limit),
    )
