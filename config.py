import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    # YouTube API Keys (multiple for rotation)
    YOUTUBE_API_KEYS = [key.strip() for key in os.getenv('YOUTUBE_API_KEYS', '').split(',') if key.strip()]

    # Database
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///channel_monitor.db')

    # Single-tenant user when a request names none
    DEFAULT_USER_ID = os.getenv('DEFAULT_USER_ID', 'local')

    # Local video cache
    VIDEO_CACHE_PATH = os.getenv('VIDEO_CACHE_PATH', '.video_cache')
    VIDEO_CACHE_MAX_CHANNELS = int(os.getenv('VIDEO_CACHE_MAX_CHANNELS', 400))
    VIDEO_CACHE_QUOTA_BYTES = int(os.getenv('VIDEO_CACHE_QUOTA_BYTES', 5 * 1024 * 1024))  # 0 = unlimited
    VIDEO_CACHE_TRIM_TO = int(os.getenv('VIDEO_CACHE_TRIM_TO', 200))
    MAX_VIDEOS_PER_CHANNEL = 10

    # Refresh settings
    REFRESH_BATCH_SIZE = int(os.getenv('REFRESH_BATCH_SIZE', 10))
    REFRESH_DELAY_SECONDS = float(os.getenv('REFRESH_DELAY_SECONDS', 0.2))
    REFRESH_CACHE_HOURS = float(os.getenv('REFRESH_CACHE_HOURS', 1))
    LATEST_VIDEOS_PER_CHANNEL = int(os.getenv('LATEST_VIDEOS_PER_CHANNEL', 5))

    # Scheduler
    BASE_URL = os.getenv('BASE_URL', 'http://localhost:8000')
    REFRESH_INTERVAL_MINUTES = int(os.getenv('REFRESH_INTERVAL_MINUTES', 60))

    # API Quotas
    MAX_RESULTS_PER_REQUEST = 50
    DAILY_QUOTA_LIMIT = 10000
    QUOTA_WARNING_THRESHOLD = int(os.getenv('QUOTA_WARNING_THRESHOLD', 8000))
    QUOTA_EMERGENCY_THRESHOLD = int(os.getenv('QUOTA_EMERGENCY_THRESHOLD', 9500))
