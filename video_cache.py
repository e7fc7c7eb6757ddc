"""
Bounded per-channel cache of recent video snapshots.

The whole cache is one JSON document under a fixed key in client-local
storage, rewritten on every mutation. The in-memory copy is the source of
truth for the lifetime of the process: when storage refuses a write the
cache trims itself and retries once, and if that fails too the change is
kept in memory only.
"""

import errno
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from config import Config
from errors import StorageQuotaExceeded
from schemas import CachedChannelVideoSet, CachedVideo, VideoCacheState

logger = logging.getLogger(__name__)

STORAGE_KEY = 'yt_channel_videos_cache'
CACHE_VERSION = 1

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, 'EDQUOT', errno.ENOSPC)}


def _utc(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LocalStorage:
    """Directory-backed string key/value store with an optional byte quota"""

    def __init__(self, directory, quota_bytes=0):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes or 0

    def _path(self, key):
        return self.directory / f"{key}.json"

    def get_item(self, key) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding='utf-8')
        except FileNotFoundError:
            return None

    def set_item(self, key, value: str):
        data = value.encode('utf-8')
        if self.quota_bytes and len(data) > self.quota_bytes:
            raise StorageQuotaExceeded(f"{len(data)} bytes exceeds the {self.quota_bytes} byte quota")

        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_name, self._path(key))
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            if e.errno in _QUOTA_ERRNOS:
                raise StorageQuotaExceeded(str(e)) from e
            raise

    def remove_item(self, key):
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def size_of(self, key) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError:
            return 0


def format_bytes(size):
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def _fetched_at(entry: CachedChannelVideoSet):
    return _utc(entry.last_fetched_at) or _EPOCH


class VideoCache:
    def __init__(self, storage=None, max_channels=None, max_videos=None, trim_to=None):
        self.storage = storage or LocalStorage(Config.VIDEO_CACHE_PATH, Config.VIDEO_CACHE_QUOTA_BYTES)
        self.max_channels = max_channels or Config.VIDEO_CACHE_MAX_CHANNELS
        self.max_videos = max_videos or Config.MAX_VIDEOS_PER_CHANNEL
        self.trim_to = trim_to or Config.VIDEO_CACHE_TRIM_TO
        self.state = self._load()

    def _load(self) -> VideoCacheState:
        try:
            stored = self.storage.get_item(STORAGE_KEY)
        except OSError as e:
            logger.error(f"Error loading video cache: {e}")
            return VideoCacheState()

        if not stored:
            return VideoCacheState()

        try:
            raw = json.loads(stored)
        except ValueError as e:
            logger.warning(f"Discarding unreadable video cache: {e}")
            return VideoCacheState()

        version = raw.get('version') if isinstance(raw, dict) else None
        if version != CACHE_VERSION:
            logger.warning(f"Discarding video cache with unsupported version {version}")
            return VideoCacheState()

        try:
            state = VideoCacheState.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed video cache: {e}")
            return VideoCacheState()

        logger.info(f"Loaded video cache with {len(state.channels)} channels")
        return state

    def _keep_most_recent(self, channels, limit):
        # Ties on fetch time go to the entry written last
        ranked = sorted(
            enumerate(channels.items()),
            key=lambda indexed: (_fetched_at(indexed[1][1]), indexed[0]),
            reverse=True,
        )
        return dict(item for _, item in ranked[:limit])

    def _persist(self):
        payload = self.state.model_dump_json()
        try:
            self.storage.set_item(STORAGE_KEY, payload)
            return True
        except StorageQuotaExceeded as e:
            logger.warning(f"Video cache hit the storage quota ({e}), keeping the {self.trim_to} most recent channels")
        except OSError as e:
            logger.error(f"Error saving video cache: {e}")
            return False

        trimmed = self.state.model_copy(update={
            'channels': self._keep_most_recent(self.state.channels, self.trim_to),
            'last_updated_at': datetime.now(timezone.utc),
        })
        try:
            self.storage.set_item(STORAGE_KEY, trimmed.model_dump_json())
        except (StorageQuotaExceeded, OSError) as e:
            logger.warning(f"Video cache kept in memory only: {e}")
            return False

        self.state = trimmed
        return True

    def save_channel_videos(self, channel_id, videos: Iterable[CachedVideo], channel_deleted=None, error=None,
                            now=None) -> CachedChannelVideoSet:
        """Upsert a channel entry with the first max_videos videos, in the order given"""
        now = _utc(now) or datetime.now(timezone.utc)
        entry = CachedChannelVideoSet(
            channel_id=channel_id,
            videos=list(videos)[:self.max_videos],
            last_fetched_at=now,
            channel_deleted=channel_deleted,
            error=error,
        )

        channels = dict(self.state.channels)
        channels.pop(channel_id, None)
        channels[channel_id] = entry
        if len(channels) > self.max_channels:
            evicted = len(channels) - self.max_channels
            channels = self._keep_most_recent(channels, self.max_channels)
            logger.debug(f"Evicted {evicted} channels from the video cache")

        self.state = VideoCacheState(version=CACHE_VERSION, channels=channels, last_updated_at=now)
        self._persist()
        return entry

    def get_channel_videos(self, channel_id) -> Optional[CachedChannelVideoSet]:
        return self.state.channels.get(channel_id)

    def is_cache_valid(self, channel_id, max_age_hours=2, now=None) -> bool:
        entry = self.state.channels.get(channel_id)
        if entry is None or entry.last_fetched_at is None:
            return False
        now = _utc(now) or datetime.now(timezone.utc)
        age_hours = (now - _utc(entry.last_fetched_at)).total_seconds() / 3600
        return age_hours < max_age_hours

    def get_all_cached_channels(self) -> List[CachedChannelVideoSet]:
        return list(self.state.channels.values())

    def remove_channel_from_cache(self, channel_id):
        if channel_id not in self.state.channels:
            return
        channels = dict(self.state.channels)
        del channels[channel_id]
        self.state = VideoCacheState(
            version=CACHE_VERSION,
            channels=channels,
            last_updated_at=datetime.now(timezone.utc),
        )
        self._persist()

    def clear_cache(self):
        self.state = VideoCacheState()
        try:
            self.storage.remove_item(STORAGE_KEY)
        except OSError as e:
            logger.error(f"Error removing video cache: {e}")

    def get_cache_size(self):
        size = self.storage.size_of(STORAGE_KEY)
        return {'bytes': size, 'formatted': format_bytes(size)}

    def __len__(self):
        return len(self.state.channels)
