"""
Filtering and ordering of the joined channel + cached video view.

Everything here is pure: inputs are never mutated and sorting is stable, so
ties keep their input order.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel

from schemas import CachedVideo, ChannelVideoData

ALL_SENTINELS = ('todos', 'all')
DATE_PERIOD_DAYS = {'7days': 7, '30days': 30}

DatePeriod = Literal['all', '7days', '30days']


class FilterOptions(BaseModel):
    search: str = ''
    category: str = 'Todos'
    content_type: str = 'Todos'
    sort_by: str = 'name'
    date_period: DatePeriod = 'all'


def _is_bypass(value: Optional[str]):
    return not value or value.strip().lower() in ALL_SENTINELS


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def filter_videos_by_period(videos: Iterable[CachedVideo], date_period='all', now=None) -> List[CachedVideo]:
    """Videos published inside the trailing window; 'all' keeps everything"""
    days = DATE_PERIOD_DAYS.get(date_period)
    if days is None:
        return list(videos)

    cutoff = _as_utc(now or datetime.now(timezone.utc)) - timedelta(days=days)
    return [video for video in videos if video.published_at and _as_utc(video.published_at) >= cutoff]


def total_views_for_period(videos: Iterable[CachedVideo], date_period='all', now=None) -> int:
    return sum(video.view_count for video in filter_videos_by_period(videos, date_period, now))


def matches_search(data: ChannelVideoData, search: str):
    needle = search.strip().lower()
    if not needle:
        return True
    channel = data.channel
    haystacks = (channel.display_name, channel.channel_id, channel.niche or '')
    return any(needle in value.lower() for value in haystacks)


def _name_key(data: ChannelVideoData):
    return data.channel.display_name.casefold()


def _subs_7d(data: ChannelVideoData):
    return data.growth.subs_last_7_days if data.growth else 0


def sort_channel_data(rows: List[ChannelVideoData], sort_by='name', date_period='all', now=None) -> List[ChannelVideoData]:
    if sort_by == 'recent':
        return sorted(rows, key=lambda data: _as_utc(data.channel.added_at), reverse=True)
    if sort_by == 'totalViews':
        return sorted(rows, key=lambda data: total_views_for_period(data.videos, date_period, now), reverse=True)
    if sort_by == 'subscribers':
        return sorted(rows, key=lambda data: data.channel.current_subscribers, reverse=True)
    if sort_by == 'growth':
        return sorted(rows, key=_subs_7d, reverse=True)
    # Alphabetic is the default for any other key
    return sorted(rows, key=_name_key)


def apply_filters(rows: Iterable[ChannelVideoData], options: Optional[FilterOptions] = None, now=None) -> List[ChannelVideoData]:
    """Search, then niche, then content type, then sort"""
    options = options or FilterOptions()
    filtered = [data for data in rows if matches_search(data, options.search)]

    if not _is_bypass(options.category):
        category = options.category.strip().lower()
        filtered = [data for data in filtered if (data.channel.niche or '').strip().lower() == category]

    if not _is_bypass(options.content_type):
        content_type = options.content_type.strip().lower()
        filtered = [data for data in filtered if data.channel.content_type.lower() == content_type]

    return sort_channel_data(filtered, options.sort_by, options.date_period, now)
