#!/usr/bin/env python3
"""
FastAPI Web Server for the YouTube channel monitor
"""

from fastapi import FastAPI, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import List, Optional, Dict, Any
import asyncio
import logging
from datetime import datetime, timezone
import uvicorn
from contextlib import asynccontextmanager

from analytics import annotate_videos, compute_growth, summarize_dashboard, summarize_video_views
from config import Config
from database import init_db
from errors import (
    ChannelAlreadyMonitored,
    ChannelMonitorError,
    ChannelNotFound,
    InvalidChannelReference,
    RateLimited,
    UpstreamError,
)
from filters import FilterOptions, DatePeriod, apply_filters
from refresher import ChannelRefresher
from schemas import (
    BatchResult,
    CachedVideo,
    ChannelOverview,
    ChannelSnapshot,
    ChannelVideoData,
    ContentType,
    DashboardSummary,
    MonitoredChannel,
    SearchResult,
)
from snapshot_store import SnapshotStore
from video_cache import VideoCache
from youtube_monitor import YouTubeMonitor

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidChannelReference: 400,
    ChannelNotFound: 404,
    ChannelAlreadyMonitored: 409,
    RateLimited: 429,
    UpstreamError: 502,
}

# Shared instances, created on first use
_store = None
_cache = None
_monitor = None


def get_store() -> SnapshotStore:
    global _store
    if _store is None:
        _store = SnapshotStore()
    return _store


def get_cache() -> VideoCache:
    global _cache
    if _cache is None:
        _cache = VideoCache()
    return _cache


def get_monitor() -> YouTubeMonitor:
    global _monitor
    if _monitor is None:
        _monitor = YouTubeMonitor()
    return _monitor


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    return x_user_id or Config.DEFAULT_USER_ID


def get_refresher(store: SnapshotStore = Depends(get_store), cache: VideoCache = Depends(get_cache),
                  monitor: YouTubeMonitor = Depends(get_monitor), user_id: str = Depends(get_user_id)):
    return ChannelRefresher(store, monitor, cache, user_id=user_id)


# Pydantic models for API
class ChannelAddRequest(BaseModel):
    channel_input: str
    niche: Optional[str] = None
    notes: Optional[str] = None
    content_type: ContentType = 'longform'

class ChannelUpdateRequest(BaseModel):
    niche: Optional[str] = None
    notes: Optional[str] = None
    content_type: Optional[ContentType] = None

class RefreshRequest(BaseModel):
    channel_ids: Optional[List[str]] = None
    niches: Optional[List[str]] = None
    force_update: bool = False

class NicheRenameRequest(BaseModel):
    old_niche: str
    new_niche: str

class ChannelVideosResponse(BaseModel):
    channel_id: str
    videos: List[CachedVideo]
    last_fetched_at: Optional[datetime] = None
    channel_deleted: bool = False
    error: Optional[str] = None
    summary: Dict[str, Any]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for startup and shutdown events"""
    init_db()
    logger.info("✅ Database ready")
    yield
    logger.info("🔌 Shutting down")

# Initialize FastAPI app with lifespan
app = FastAPI(
    title="YouTube Channel Monitor API",
    description="API for tracking YouTube channel growth and recent videos",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(ChannelMonitorError)
async def monitor_error_handler(request: Request, exc: ChannelMonitorError):
    status = next((code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)), 500)
    if status >= 500:
        logger.error(f"Error handling {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content={"error": str(exc)})


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "online",
        "service": "YouTube Channel Monitor API",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

@app.get("/health")
async def health_check(store: SnapshotStore = Depends(get_store), cache: VideoCache = Depends(get_cache),
                       user_id: str = Depends(get_user_id)):
    """Detailed health check"""
    try:
        channels = await asyncio.to_thread(store.get_monitored_channels, user_id)
        return {
            "status": "healthy",
            "database": "connected",
            "channels": len(channels),
            "cached_channels": len(cache),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


async def _overview(store, user_id, channel):
    history = await asyncio.to_thread(store.get_history, channel.channel_id, user_id)
    return ChannelOverview(channel=channel, growth=compute_growth(channel, history))


async def _require_channel(store, user_id, channel_id):
    channel = await asyncio.to_thread(store.get_channel, user_id, channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail=f"Channel {channel_id} is not monitored")
    return channel


@app.get("/channels", response_model=List[ChannelOverview])
async def list_channels(niche: Optional[str] = None, sort_by: str = "recent",
                        store: SnapshotStore = Depends(get_store), user_id: str = Depends(get_user_id)):
    """List monitored channels with their growth"""
    channels = await asyncio.to_thread(store.get_monitored_channels, user_id)
    overviews = [await _overview(store, user_id, channel) for channel in channels]

    rows = [ChannelVideoData(channel=item.channel, growth=item.growth) for item in overviews]
    rows = apply_filters(rows, FilterOptions(category=niche or "all", sort_by=sort_by))
    return [ChannelOverview(channel=row.channel, growth=row.growth) for row in rows]

@app.post("/channels", response_model=ChannelOverview, status_code=201)
async def add_channel(request: ChannelAddRequest, store: SnapshotStore = Depends(get_store),
                      monitor: YouTubeMonitor = Depends(get_monitor), user_id: str = Depends(get_user_id)):
    """Add a new channel to monitor"""
    channel_id = await asyncio.to_thread(monitor.resolve_channel_reference, request.channel_input)
    stats = await asyncio.to_thread(monitor.fetch_channel_stats, channel_id)
    channel = await asyncio.to_thread(
        store.add_channel, user_id, stats, request.niche, request.notes, request.content_type
    )
    return await _overview(store, user_id, channel)

@app.get("/channels/{channel_id}", response_model=ChannelOverview)
async def get_channel(channel_id: str, store: SnapshotStore = Depends(get_store),
                      user_id: str = Depends(get_user_id)):
    channel = await _require_channel(store, user_id, channel_id)
    return await _overview(store, user_id, channel)

@app.patch("/channels/{channel_id}", response_model=MonitoredChannel)
async def update_channel(channel_id: str, request: ChannelUpdateRequest, store: SnapshotStore = Depends(get_store),
                         user_id: str = Depends(get_user_id)):
    """Change niche, notes or content type"""
    return await asyncio.to_thread(
        store.update_channel_details, user_id, channel_id, request.niche, request.notes, request.content_type
    )

@app.delete("/channels/{channel_id}")
async def remove_channel(channel_id: str, purge_history: bool = False, store: SnapshotStore = Depends(get_store),
                         cache: VideoCache = Depends(get_cache), user_id: str = Depends(get_user_id)):
    """Stop monitoring a channel"""
    removed = await asyncio.to_thread(store.delete_monitored_channel, channel_id, user_id, purge_history)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Channel {channel_id} is not monitored")
    cache.remove_channel_from_cache(channel_id)
    return {"success": True, "channel_id": channel_id}

@app.get("/channels/{channel_id}/history", response_model=List[ChannelSnapshot])
async def get_channel_history(channel_id: str, store: SnapshotStore = Depends(get_store),
                              user_id: str = Depends(get_user_id)):
    await _require_channel(store, user_id, channel_id)
    history = await asyncio.to_thread(store.get_history, channel_id, user_id)
    return sorted(history, key=lambda snapshot: snapshot.recorded_at)

@app.get("/channels/{channel_id}/videos", response_model=ChannelVideosResponse)
async def get_channel_videos(channel_id: str, store: SnapshotStore = Depends(get_store),
                             cache: VideoCache = Depends(get_cache), user_id: str = Depends(get_user_id)):
    """Cached recent videos of a channel with a view summary"""
    channel = await _require_channel(store, user_id, channel_id)
    entry = cache.get_channel_videos(channel_id)
    videos = []
    if entry:
        videos = annotate_videos(entry.videos, channel.current_views, channel.current_video_count)
    return ChannelVideosResponse(
        channel_id=channel_id,
        videos=videos,
        last_fetched_at=entry.last_fetched_at if entry else None,
        channel_deleted=bool(entry and entry.channel_deleted),
        error=entry.error if entry else None,
        summary=summarize_video_views(videos),
    )

@app.post("/refresh", response_model=BatchResult)
async def refresh(request: RefreshRequest, refresher: ChannelRefresher = Depends(get_refresher)):
    """Refresh stats and recent videos; every channel unless IDs or niches are given"""
    if request.niches:
        return await refresher.refresh_niches(request.niches, force_update=request.force_update)
    if request.channel_ids:
        return await refresher.refresh_channels(request.channel_ids, force_update=request.force_update)
    return await refresher.refresh_all(force_update=request.force_update)

@app.get("/videos/recent", response_model=List[ChannelVideoData])
async def get_recent_videos(search: str = "", category: str = "Todos", content_type: str = "Todos",
                            sort_by: str = "name", date_period: DatePeriod = "all",
                            refresher: ChannelRefresher = Depends(get_refresher)):
    """Recent videos of every monitored channel from the local cache"""
    rows = await refresher.load_channel_videos()
    options = FilterOptions(
        search=search,
        category=category,
        content_type=content_type,
        sort_by=sort_by,
        date_period=date_period,
    )
    return apply_filters(rows, options)

@app.get("/dashboard", response_model=DashboardSummary)
async def dashboard(refresher: ChannelRefresher = Depends(get_refresher)):
    """Monitored channel totals and the top channels by views in the last 7 days"""
    rows = await refresher.load_channel_videos()
    return summarize_dashboard(rows)

@app.get("/niches", response_model=List[str])
async def list_niches(store: SnapshotStore = Depends(get_store), user_id: str = Depends(get_user_id)):
    return await asyncio.to_thread(store.list_niches, user_id)

@app.post("/niches/rename")
async def rename_niche(request: NicheRenameRequest, store: SnapshotStore = Depends(get_store),
                       user_id: str = Depends(get_user_id)):
    if not request.new_niche.strip():
        raise HTTPException(status_code=400, detail="New niche cannot be empty")
    renamed = await asyncio.to_thread(store.rename_niche, user_id, request.old_niche, request.new_niche)
    return {"success": True, "renamed": renamed}

@app.get("/search", response_model=List[SearchResult])
async def search_youtube(q: str = Query(..., min_length=1), type: str = "video", max_results: int = 50,
                         order: str = "relevance", video_duration: Optional[str] = None,
                         published_after: Optional[datetime] = None, published_before: Optional[datetime] = None,
                         monitor: YouTubeMonitor = Depends(get_monitor)):
    """Search YouTube videos or channels"""
    return await asyncio.to_thread(
        monitor.search, q, type, max_results, order, video_duration, None, published_after, published_before
    )

@app.get("/quota")
async def quota_status(monitor: YouTubeMonitor = Depends(get_monitor)):
    return await asyncio.to_thread(monitor.get_quota_status)

@app.get("/cache")
async def cache_status(cache: VideoCache = Depends(get_cache)):
    return {"channels": len(cache), "size": cache.get_cache_size()}

@app.delete("/cache")
async def clear_cache(cache: VideoCache = Depends(get_cache)):
    cache.clear_cache()
    return {"success": True}

if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
