from datetime import datetime, timedelta, timezone

import pytest

from database import create_session_factory
from schemas import CachedVideo, ChannelSnapshot, ChannelStats, MonitoredChannel
from snapshot_store import SnapshotStore
from video_cache import LocalStorage, VideoCache

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def channel_id_for(n):
    """Well-formed 24 character channel ID"""
    return f"UC{n:022d}"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def session_factory(tmp_path):
    # A file database so worker threads share the same data
    return create_session_factory(f"sqlite:///{tmp_path / 'monitor.db'}")


@pytest.fixture
def store(session_factory):
    return SnapshotStore(session_factory)


@pytest.fixture
def cache(tmp_path):
    return VideoCache(storage=LocalStorage(tmp_path / "cache"))


@pytest.fixture
def make_stats():
    def _make(channel_id, subscribers=1000, views=50000, videos=50, title=None):
        return ChannelStats(
            channel_id=channel_id,
            title=title or f"Channel {channel_id[-4:]}",
            thumbnail_url="http://example.com/thumb.jpg",
            subscriber_count=subscribers,
            view_count=views,
            video_count=videos,
        )
    return _make


@pytest.fixture
def make_channel():
    def _make(channel_id=None, subscribers=1000, views=50000, videos=50, niche=None,
              content_type="longform", added_at=NOW, display_name=None):
        channel_id = channel_id or channel_id_for(1)
        return MonitoredChannel(
            channel_id=channel_id,
            display_name=display_name or f"Channel {channel_id[-4:]}",
            current_subscribers=subscribers,
            current_views=views,
            current_video_count=videos,
            niche=niche,
            content_type=content_type,
            added_at=added_at,
            last_updated_at=added_at,
        )
    return _make


@pytest.fixture
def make_snapshot():
    def _make(days_ago, subscribers, views=0, channel_id=None, now=NOW):
        return ChannelSnapshot(
            channel_id=channel_id or channel_id_for(1),
            recorded_at=now - timedelta(days=days_ago),
            subscriber_count=subscribers,
            view_count=views,
        )
    return _make


@pytest.fixture
def make_video():
    def _make(video_id="vid1", views=1000, days_ago=3, is_deleted=None, now=NOW):
        return CachedVideo(
            video_id=video_id,
            title=f"Video {video_id}",
            thumbnail_url="http://example.com/v.jpg",
            published_at=now - timedelta(days=days_ago),
            view_count=views,
            is_deleted=is_deleted,
        )
    return _make
