from sqlalchemy import create_engine, Column, String, Integer, BigInteger, Date, DateTime, Boolean, Text, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
from config import Config

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class Channel(Base):
    __tablename__ = 'monitored_channels'
    __table_args__ = (
        UniqueConstraint('user_id', 'channel_id', name='uq_monitored_channel_user'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    channel_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    description = Column(Text)
    custom_url = Column(String)
    thumbnail_url = Column(String)

    # Statistics
    current_subscribers = Column(BigInteger, default=0)
    current_views = Column(BigInteger, default=0)
    current_video_count = Column(Integer, default=0)

    # User metadata
    niche = Column(String)
    notes = Column(Text)
    content_type = Column(String, default='longform')

    # Tracking
    added_at = Column(DateTime(timezone=True), default=utcnow)
    last_updated_at = Column(DateTime(timezone=True), default=utcnow)


class ChannelHistory(Base):
    __tablename__ = 'channel_history'
    __table_args__ = (
        UniqueConstraint('user_id', 'channel_id', 'snapshot_date', name='uq_channel_history_day'),
        Index('ix_channel_history_channel_recorded', 'channel_id', 'recorded_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    channel_id = Column(String, nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=utcnow)
    snapshot_date = Column(Date, nullable=False)  # UTC calendar day of recorded_at
    subscriber_count = Column(BigInteger, default=0)
    view_count = Column(BigInteger, default=0)
    video_count = Column(Integer, default=0)


class ApiKeyUsage(Base):
    __tablename__ = 'api_key_usage'

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key_index = Column(Integer)  # Index in the API keys list
    api_key_identifier = Column(String)  # Last 6 chars of key for identification
    quota_used = Column(Integer, default=0)
    last_reset = Column(DateTime(timezone=True), default=utcnow)
    last_used = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True)
    error_count = Column(Integer, default=0)
    last_error = Column(DateTime(timezone=True))


def create_session_factory(database_url):
    """Create an engine for database_url, make sure the tables exist and return a session factory"""
    bind = create_engine(database_url)
    Base.metadata.create_all(bind)
    return sessionmaker(bind=bind, expire_on_commit=False)


engine = create_engine(Config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db():
    """Create tables on the configured database"""
    Base.metadata.create_all(engine)
