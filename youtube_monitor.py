from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from datetime import datetime, timezone
from typing import List, Optional
import re
import threading
import logging

from config import Config
from database import SessionLocal, ApiKeyUsage
from errors import ChannelNotFound, InvalidChannelReference, RateLimited, UpstreamError
from schemas import CachedVideo, ChannelStats, LatestVideosResult, SearchResult

logger = logging.getLogger(__name__)

CHANNEL_ID_PATTERN = re.compile(r'^UC[A-Za-z0-9_-]{22}$')
REMOVED_TITLES = ('Private video', 'Deleted video')

# Quota cost per call, in units
LIST_COST = 1
SEARCH_COST = 100


def build_youtube_client(api_key):
    return build('youtube', 'v3', developerKey=api_key, cache_discovery=False)


def _best_thumbnail(thumbnails, order=('maxres', 'high', 'medium', 'default')):
    for size in order:
        url = (thumbnails or {}).get(size, {}).get('url')
        if url:
            return url
    return None


def _rfc3339(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    return value


def uploads_playlist_id(channel_id):
    """UCxxxx -> UUxxxx"""
    if not channel_id.startswith('UC'):
        raise InvalidChannelReference(f"Channel ID must start with UC: {channel_id}")
    return 'UU' + channel_id[2:]


class YouTubeMonitor:
    """YouTube Data API client with API key rotation and quota tracking.

    Safe to share between worker threads: each thread builds its own
    discovery client, and quota bookkeeping happens under a lock.
    """

    def __init__(self, api_keys=None, session_factory=None, client_factory=None):
        self.api_keys = list(api_keys if api_keys is not None else Config.YOUTUBE_API_KEYS)
        self.session_factory = session_factory or SessionLocal
        self.client_factory = client_factory or build_youtube_client
        self.current_key_index = 0
        self._lock = threading.RLock()
        self._local = threading.local()

        # Initialize API key tracking
        self._initialize_api_keys()

    def _initialize_api_keys(self):
        """Initialize or update API key usage tracking"""
        db = self.session_factory()
        try:
            for i, api_key in enumerate(self.api_keys):
                # Use last 6 chars as identifier (for logging without exposing full key)
                identifier = api_key[-6:]

                key_usage = db.query(ApiKeyUsage).filter_by(api_key_index=i).first()
                if not key_usage:
                    key_usage = ApiKeyUsage(
                        api_key_index=i,
                        api_key_identifier=identifier,
                        quota_used=0,
                        last_reset=datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
                    )
                    db.add(key_usage)

                # Reset if new day
                self._check_quota_reset(key_usage)

            db.commit()
        finally:
            db.close()

    def _check_quota_reset(self, key_usage):
        """Check if quota should be reset for a key"""
        now = datetime.now(timezone.utc)
        if key_usage.last_reset is None or now.date() > key_usage.last_reset.date():
            key_usage.quota_used = 0
            key_usage.last_reset = now.replace(hour=0, minute=0, second=0, microsecond=0)
            key_usage.error_count = 0
            logger.info(f"Reset quota for API key {key_usage.api_key_identifier}")

    def _client(self):
        """Discovery client for the current key, private to the calling thread"""
        if not self.api_keys:
            raise UpstreamError("No valid API keys available")

        clients = getattr(self._local, 'clients', None)
        if clients is None:
            clients = self._local.clients = {}

        index = self.current_key_index
        if index not in clients:
            clients[index] = self.client_factory(self.api_keys[index])
            logger.info(f"Using API key index {index}")
        return clients[index]

    def _get_key_usage(self, db, index):
        return db.query(ApiKeyUsage).filter_by(api_key_index=index).first()

    def _should_rotate_key(self, key_usage):
        """Check if we should rotate to next API key"""
        # Check quota threshold
        if key_usage.quota_used >= Config.QUOTA_WARNING_THRESHOLD:
            return True

        # Check error count (rotate after 3 consecutive errors)
        if key_usage.error_count >= 3:
            return True

        return False

    def _rotate_api_key(self, db, force=False):
        """Rotate to next available API key"""
        original_index = self.current_key_index
        candidate = original_index

        for _ in range(len(self.api_keys) - 1):
            candidate = (candidate + 1) % len(self.api_keys)

            key_usage = self._get_key_usage(db, candidate)
            self._check_quota_reset(key_usage)

            # Skip if key is disabled
            if not key_usage.is_active:
                continue

            # Skip if quota exceeded (unless forced or quota reset)
            if not force and key_usage.quota_used >= Config.QUOTA_EMERGENCY_THRESHOLD:
                continue

            # Found a usable key
            self.current_key_index = candidate
            logger.info(f"Rotated from key {original_index} to {candidate} "
                        f"(quota: {key_usage.quota_used}/{Config.DAILY_QUOTA_LIMIT})")
            return True

        logger.error("No available API keys with remaining quota!")
        return False

    def _handle_api_error(self, error, key_index):
        """Record an API error against a key and rotate keys if that can help"""
        message = str(error)
        status = error.resp.status if hasattr(error, 'resp') else None

        with self._lock:
            if key_index != self.current_key_index:
                # Another thread already rotated away from the failing key
                return True

            db = self.session_factory()
            try:
                key_usage = self._get_key_usage(db, key_index)
                key_usage.error_count += 1
                key_usage.last_error = datetime.now(timezone.utc)

                rotated = False
                if status == 403 and ('quotaExceeded' in message or 'dailyLimitExceeded' in message):
                    logger.warning(f"Quota exceeded for key {key_usage.api_key_identifier}")
                    key_usage.quota_used = Config.DAILY_QUOTA_LIMIT
                    rotated = self._rotate_api_key(db)
                elif status == 400 and 'API key not valid' in message:
                    logger.error(f"Invalid API key {key_usage.api_key_identifier}")
                    key_usage.is_active = False
                    rotated = self._rotate_api_key(db)

                db.commit()
                return rotated
            finally:
                db.close()

    def add_quota_usage(self, units):
        """Track quota usage for current key"""
        with self._lock:
            db = self.session_factory()
            try:
                key_usage = self._get_key_usage(db, self.current_key_index)
                if key_usage is None:
                    return
                self._check_quota_reset(key_usage)

                key_usage.quota_used += units
                key_usage.last_used = datetime.now(timezone.utc)
                key_usage.error_count = 0  # Reset error count on successful use

                logger.debug(f"Key {key_usage.api_key_identifier}: "
                             f"Used {units} units ({key_usage.quota_used}/{Config.DAILY_QUOTA_LIMIT})")

                # Check if we should preemptively rotate
                if self._should_rotate_key(key_usage):
                    logger.info("Preemptively rotating API key due to quota threshold")
                    self._rotate_api_key(db)

                db.commit()
            finally:
                db.close()

    def get_quota_status(self):
        """Get quota status for all API keys"""
        status = []
        db = self.session_factory()
        try:
            for i in range(len(self.api_keys)):
                key_usage = self._get_key_usage(db, i)
                if key_usage:
                    self._check_quota_reset(key_usage)
                    status.append({
                        'index': i,
                        'identifier': key_usage.api_key_identifier,
                        'quota_used': key_usage.quota_used,
                        'quota_remaining': Config.DAILY_QUOTA_LIMIT - key_usage.quota_used,
                        'is_active': key_usage.is_active,
                        'is_current': i == self.current_key_index,
                        'last_used': key_usage.last_used,
                        'error_count': key_usage.error_count
                    })
            db.commit()
        finally:
            db.close()
        return status

    def _classify_http_error(self, error, channel_id=None):
        message = str(error)
        status = error.resp.status if hasattr(error, 'resp') else None

        if status == 404:
            return ChannelNotFound(channel_id or 'unknown')
        if status == 429 or (status == 403 and any(reason in message for reason in (
                'quotaExceeded', 'dailyLimitExceeded', 'rateLimitExceeded', 'userRateLimitExceeded'))):
            return RateLimited(f"YouTube API rate limited: {status}")
        return UpstreamError(f"YouTube API error: {status}")

    def _api_request_with_retry(self, request_func, units=LIST_COST, channel_id=None):
        """Execute request_func(youtube) with key rotation, converting failures to monitor errors"""
        for attempt in range(len(self.api_keys) + 1):
            key_index = self.current_key_index
            try:
                result = request_func(self._client())
            except HttpError as e:
                logger.warning(f"API request failed (attempt {attempt + 1}): {e}")

                # Try to handle the error and rotate key
                if self._handle_api_error(e, key_index):
                    continue
                raise self._classify_http_error(e, channel_id) from e
            except OSError as e:
                # Socket errors and timeouts from the HTTP transport
                raise UpstreamError(f"YouTube API unreachable: {e}") from e

            self.add_quota_usage(units)
            return result

        raise RateLimited("All API keys exhausted")

    def fetch_channel_stats(self, channel_id) -> ChannelStats:
        """Live statistics for one channel"""
        result = self._api_request_with_retry(
            lambda youtube: youtube.channels().list(part='snippet,statistics', id=channel_id).execute(),
            channel_id=channel_id,
        )

        items = result.get('items') or []
        if not items:
            raise ChannelNotFound(channel_id)

        channel_data = items[0]
        snippet = channel_data.get('snippet', {})
        statistics = channel_data.get('statistics', {})
        return ChannelStats(
            channel_id=channel_data['id'],
            title=snippet.get('title', ''),
            description=snippet.get('description', ''),
            thumbnail_url=_best_thumbnail(snippet.get('thumbnails'), ('high', 'default')),
            custom_url=snippet.get('customUrl'),
            published_at=snippet.get('publishedAt'),
            subscriber_count=int(statistics.get('subscriberCount', 0)),
            view_count=int(statistics.get('viewCount', 0)),
            video_count=int(statistics.get('videoCount', 0)),
        )

    def _fetch_upload_page(self, channel_id, playlist_id, count, page_token=None):
        """One page of the uploads playlist joined with video statistics.

        Returns (videos, next_page_token), or None when the playlist is gone.
        """
        def list_playlist(youtube):
            return youtube.playlistItems().list(
                part='snippet,contentDetails,status',
                playlistId=playlist_id,
                maxResults=min(Config.MAX_RESULTS_PER_REQUEST, count),
                pageToken=page_token
            ).execute()

        try:
            playlist = self._api_request_with_retry(list_playlist, channel_id=channel_id)
        except ChannelNotFound:
            logger.warning(f"[{channel_id}] Uploads playlist {playlist_id} not found")
            return None

        items = [item for item in playlist.get('items', []) if item.get('contentDetails', {}).get('videoId')]
        if not items:
            return [], None

        video_ids = [item['contentDetails']['videoId'] for item in items]
        stats_response = self._api_request_with_retry(
            lambda youtube: youtube.videos().list(part='statistics,status', id=','.join(video_ids)).execute(),
            channel_id=channel_id,
        )
        stats = {item['id']: item for item in stats_response.get('items', [])}

        videos = []
        for item in items:
            video_id = item['contentDetails']['videoId']
            snippet = item.get('snippet', {})
            video_stats = stats.get(video_id)
            title = snippet.get('title', '')
            privacy = (video_stats or {}).get('status', {}).get('privacyStatus')

            is_deleted = video_stats is None or title in REMOVED_TITLES or (privacy is not None and privacy != 'public')
            if is_deleted:
                title = f"[DELETED] {title if title not in REMOVED_TITLES else 'Video removed'}"

            statistics = (video_stats or {}).get('statistics', {})
            videos.append(CachedVideo(
                video_id=video_id,
                title=title,
                thumbnail_url=_best_thumbnail(snippet.get('thumbnails')) or '',
                published_at=item['contentDetails'].get('videoPublishedAt') or snippet.get('publishedAt'),
                view_count=int(statistics.get('viewCount', 0)),
                like_count=int(statistics.get('likeCount', 0)),
                comment_count=int(statistics.get('commentCount', 0)),
                is_deleted=is_deleted,
            ))

        return videos, playlist.get('nextPageToken')

    def fetch_latest_videos(self, channel_id, max_results=5) -> LatestVideosResult:
        """Most recent uploads of a channel, newest first.

        Private and removed uploads stay in the list flagged is_deleted so the
        ranking context is kept. When they crowd out public videos one more
        page is read to make up the difference.
        """
        playlist_id = uploads_playlist_id(channel_id)
        logger.debug(f"[{channel_id}] Fetching playlist {playlist_id} with initial {max_results} items")

        first_page = self._fetch_upload_page(channel_id, playlist_id, max_results)
        if first_page is None:
            return LatestVideosResult(channel_id=channel_id, channel_deleted=True)

        videos, next_page_token = first_page
        public_count = sum(1 for video in videos if not video.is_deleted)
        deleted_count = len(videos) - public_count
        logger.debug(f"[{channel_id}] First fetch: {public_count} public, {deleted_count} deleted")

        if public_count < max_results and deleted_count and next_page_token:
            needed = max_results - public_count
            second_page = self._fetch_upload_page(channel_id, playlist_id, needed + 5, next_page_token)
            if second_page is not None:
                videos.extend(second_page[0])

        return LatestVideosResult(channel_id=channel_id, videos=self._take_public(videos, max_results))

    @staticmethod
    def _take_public(videos, limit):
        """Keep videos in order until limit public ones have been kept"""
        kept = []
        public = 0
        for video in videos:
            if public >= limit:
                break
            kept.append(video)
            if not video.is_deleted:
                public += 1
        return kept

    def _channel_id_for_name(self, name):
        """Resolve a legacy username or a handle to a channel ID"""
        for lookup in ('forUsername', 'forHandle'):
            result = self._api_request_with_retry(
                lambda youtube: youtube.channels().list(part='id', **{lookup: name}).execute()
            )
            if result.get('items'):
                channel_id = result['items'][0]['id']
                logger.info(f"Resolved '{name}' to channel ID {channel_id}")
                return channel_id

        logger.warning(f"No channel found for '{name}'")
        raise ChannelNotFound(name)

    def resolve_channel_reference(self, raw) -> str:
        """Turn a channel ID, channel URL, @handle or username into a channel ID.

        Malformed input is rejected before any API call.
        """
        trimmed = (raw or '').strip()
        if not trimmed:
            raise InvalidChannelReference("Channel reference is empty")

        if CHANNEL_ID_PATTERN.match(trimmed):
            return trimmed

        match = re.search(r'youtube\.com/channel/([^/?#\s]+)', trimmed)
        if match:
            if CHANNEL_ID_PATTERN.match(match.group(1)):
                return match.group(1)
            raise InvalidChannelReference(f"Invalid channel URL: {trimmed}")

        match = re.search(r'@([A-Za-z0-9._-]+)', trimmed)
        if match:
            return self._channel_id_for_name(match.group(1))

        match = re.search(r'youtube\.com/(?:c|user)/([^/?#\s]+)', trimmed)
        if match:
            return self._channel_id_for_name(match.group(1))

        if re.fullmatch(r'[A-Za-z0-9_-]+', trimmed):
            return self._channel_id_for_name(trimmed)

        raise InvalidChannelReference(f"Invalid channel URL, username or ID: {trimmed}")

    def search(self, q, type='video', max_results=50, order='relevance', video_duration=None,
               video_definition=None, published_after=None, published_before=None) -> List[SearchResult]:
        """Search YouTube and join the hits with video and channel statistics"""
        params = {
            'part': 'snippet',
            'q': q,
            'type': type,
            'maxResults': min(Config.MAX_RESULTS_PER_REQUEST, max_results),
            'order': order,
        }
        if video_duration:
            params['videoDuration'] = video_duration
        if video_definition:
            params['videoDefinition'] = video_definition
        if published_after:
            params['publishedAfter'] = _rfc3339(published_after)
        if published_before:
            params['publishedBefore'] = _rfc3339(published_before)

        response = self._api_request_with_retry(
            lambda youtube: youtube.search().list(**params).execute(),
            units=SEARCH_COST,
        )
        items = response.get('items', [])

        video_ids = [item['id']['videoId'] for item in items if item.get('id', {}).get('videoId')]
        video_stats = {}
        if video_ids:
            stats_response = self._api_request_with_retry(
                lambda youtube: youtube.videos().list(part='statistics,contentDetails', id=','.join(video_ids)).execute()
            )
            video_stats = {item['id']: item for item in stats_response.get('items', [])}

        channel_ids = list(dict.fromkeys(item['snippet']['channelId'] for item in items if item.get('snippet')))
        channel_stats = {}
        if channel_ids:
            channel_response = self._api_request_with_retry(
                lambda youtube: youtube.channels().list(part='statistics', id=','.join(channel_ids)).execute()
            )
            channel_stats = {item['id']: item for item in channel_response.get('items', [])}

        results = []
        for item in items:
            snippet = item.get('snippet', {})
            item_id = item.get('id', {})
            stats = video_stats.get(item_id.get('videoId'), {})
            channel = channel_stats.get(snippet.get('channelId'), {})
            results.append(SearchResult(
                id=item_id.get('videoId') or item_id.get('channelId', ''),
                type='video' if 'video' in item_id.get('kind', '') else 'channel',
                title=snippet.get('title', ''),
                description=snippet.get('description', ''),
                thumbnail_url=_best_thumbnail(snippet.get('thumbnails'), ('high', 'default')),
                channel_id=snippet.get('channelId', ''),
                channel_title=snippet.get('channelTitle', ''),
                published_at=snippet.get('publishedAt'),
                view_count=int(stats.get('statistics', {}).get('viewCount', 0)),
                like_count=int(stats.get('statistics', {}).get('likeCount', 0)),
                comment_count=int(stats.get('statistics', {}).get('commentCount', 0)),
                subscriber_count=int(channel.get('statistics', {}).get('subscriberCount', 0)),
                video_count=int(channel.get('statistics', {}).get('videoCount', 0)),
                duration=stats.get('contentDetails', {}).get('duration', ''),
            ))
        return results
