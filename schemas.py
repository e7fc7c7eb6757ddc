"""
Typed records passed between the store, the provider, the cache and the API.

Provider responses are validated into these models at the edge so that
analytics and filtering never see missing fields.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ContentType = Literal['longform', 'shorts']


class ChannelSnapshot(BaseModel):
    channel_id: str
    recorded_at: datetime
    subscriber_count: int = 0
    view_count: int = 0
    video_count: int = 0


class MonitoredChannel(BaseModel):
    channel_id: str
    display_name: str
    thumbnail_url: Optional[str] = None
    current_subscribers: int = 0
    current_views: int = 0
    current_video_count: int = 0
    niche: Optional[str] = None
    notes: Optional[str] = None
    content_type: ContentType = 'longform'
    added_at: datetime
    last_updated_at: datetime


class SnapshotCounts(BaseModel):
    subscriber_count: int = 0
    view_count: int = 0
    video_count: int = 0


class GrowthMetrics(BaseModel):
    initial_subscribers: int = 0
    initial_views: int = 0
    total_subs_gained: int = 0
    total_views_gained: int = 0
    subs_growth_percent: float = 0.0
    views_growth_percent: float = 0.0
    subs_last_7_days: int = 0
    views_last_7_days: int = 0
    subs_last_day: int = 0
    views_last_day: int = 0
    is_exploding: bool = False


class ChannelStats(BaseModel):
    channel_id: str
    title: str = ''
    description: str = ''
    thumbnail_url: Optional[str] = None
    custom_url: Optional[str] = None
    published_at: Optional[datetime] = None
    subscriber_count: int = 0
    view_count: int = 0
    video_count: int = 0


class CachedVideo(BaseModel):
    video_id: str
    title: str = ''
    thumbnail_url: str = ''
    published_at: Optional[datetime] = None
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    is_viral: Optional[bool] = None
    is_deleted: Optional[bool] = None
    position: Optional[int] = None


class LatestVideosResult(BaseModel):
    channel_id: str
    videos: List[CachedVideo] = Field(default_factory=list)
    channel_deleted: bool = False


class CachedChannelVideoSet(BaseModel):
    channel_id: str
    videos: List[CachedVideo] = Field(default_factory=list)
    last_fetched_at: Optional[datetime] = None
    channel_deleted: Optional[bool] = None
    error: Optional[str] = None


class VideoCacheState(BaseModel):
    version: int = 1
    channels: Dict[str, CachedChannelVideoSet] = Field(default_factory=dict)
    last_updated_at: Optional[datetime] = None


class RefreshError(BaseModel):
    channel_id: str
    channel_name: str
    message: str


class BatchResult(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped_cached: int = 0
    errors: List[RefreshError] = Field(default_factory=list)


class RefreshProgress(BaseModel):
    current_index: int
    total: int
    percentage: int
    current_channel_name: str


class ChannelVideoData(BaseModel):
    channel: MonitoredChannel
    videos: List[CachedVideo] = Field(default_factory=list)
    growth: Optional[GrowthMetrics] = None
    last_fetched_at: Optional[datetime] = None
    channel_deleted: bool = False
    error: Optional[str] = None


class SearchResult(BaseModel):
    id: str
    type: Literal['video', 'channel']
    title: str = ''
    description: str = ''
    thumbnail_url: Optional[str] = None
    channel_id: str = ''
    channel_title: str = ''
    published_at: Optional[datetime] = None
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    subscriber_count: int = 0
    video_count: int = 0
    duration: str = ''


class ChannelOverview(BaseModel):
    channel: MonitoredChannel
    growth: GrowthMetrics


class DashboardSummary(BaseModel):
    total_channels: int = 0
    exploding_channels: int = 0
    top_longform: List[ChannelOverview] = Field(default_factory=list)
    top_shorts: List[ChannelOverview] = Field(default_factory=list)
