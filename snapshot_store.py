"""
Persisted channel state: the current MonitoredChannel record and its
append-only daily statistics history.

Every operation opens its own session, so one SnapshotStore may be shared by
refresh tasks running in worker threads.
"""

from datetime import datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from database import SessionLocal, Channel, ChannelHistory
from errors import ChannelAlreadyMonitored, ChannelNotFound
from schemas import ChannelSnapshot, ChannelStats, MonitoredChannel, SnapshotCounts

logger = logging.getLogger(__name__)


def _aware(value):
    # SQLite hands datetimes back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_niche(niche):
    """'  gAMING ' -> 'Gaming'"""
    trimmed = (niche or '').strip()
    if not trimmed:
        return ''
    return trimmed[0].upper() + trimmed[1:].lower()


def _to_channel(row: Channel) -> MonitoredChannel:
    return MonitoredChannel(
        channel_id=row.channel_id,
        display_name=row.display_name,
        thumbnail_url=row.thumbnail_url,
        current_subscribers=row.current_subscribers or 0,
        current_views=row.current_views or 0,
        current_video_count=row.current_video_count or 0,
        niche=row.niche,
        notes=row.notes,
        content_type=row.content_type or 'longform',
        added_at=_aware(row.added_at),
        last_updated_at=_aware(row.last_updated_at),
    )


def _to_snapshot(row: ChannelHistory) -> ChannelSnapshot:
    return ChannelSnapshot(
        channel_id=row.channel_id,
        recorded_at=_aware(row.recorded_at),
        subscriber_count=row.subscriber_count or 0,
        view_count=row.view_count or 0,
        video_count=row.video_count or 0,
    )


class SnapshotStore:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def get_monitored_channels(self, user_id) -> List[MonitoredChannel]:
        """All channels of a user, most recently added first"""
        db = self.session_factory()
        try:
            rows = db.query(Channel).filter_by(user_id=user_id).order_by(
                Channel.added_at.desc(), Channel.id.desc()
            ).all()
            return [_to_channel(row) for row in rows]
        finally:
            db.close()

    def get_channel(self, user_id, channel_id) -> Optional[MonitoredChannel]:
        db = self.session_factory()
        try:
            row = db.query(Channel).filter_by(user_id=user_id, channel_id=channel_id).first()
            return _to_channel(row) if row else None
        finally:
            db.close()

    def get_history(self, channel_id, user_id=None) -> List[ChannelSnapshot]:
        db = self.session_factory()
        try:
            query = db.query(ChannelHistory).filter_by(channel_id=channel_id)
            if user_id is not None:
                query = query.filter_by(user_id=user_id)
            return [_to_snapshot(row) for row in query.all()]
        finally:
            db.close()

    def upsert_today_snapshot(self, channel_id, user_id, counts: SnapshotCounts, now=None) -> ChannelSnapshot:
        """Record today's counts, updating the row if one already exists for today.

        The (user, channel, day) unique constraint settles races between two
        refreshes of the same channel: the loser of the insert updates the
        winner's row instead.
        """
        now = _aware(now or datetime.now(timezone.utc))
        today = now.astimezone(timezone.utc).date()

        db = self.session_factory()
        try:
            row = db.query(ChannelHistory).filter_by(
                user_id=user_id, channel_id=channel_id, snapshot_date=today
            ).first()
            if row is None:
                row = ChannelHistory(
                    user_id=user_id,
                    channel_id=channel_id,
                    recorded_at=now,
                    snapshot_date=today,
                    subscriber_count=counts.subscriber_count,
                    view_count=counts.view_count,
                    video_count=counts.video_count,
                )
                db.add(row)
                try:
                    db.commit()
                    logger.debug(f"Created history for {channel_id} on {today}")
                    return _to_snapshot(row)
                except IntegrityError:
                    db.rollback()
                    row = db.query(ChannelHistory).filter_by(
                        user_id=user_id, channel_id=channel_id, snapshot_date=today
                    ).one()

            row.subscriber_count = counts.subscriber_count
            row.view_count = counts.view_count
            row.video_count = counts.video_count
            db.commit()
            logger.debug(f"Updated existing history for {channel_id} on {today}")
            return _to_snapshot(row)
        finally:
            db.close()

    def update_monitored_channel(self, channel_id, user_id, counts: SnapshotCounts, last_updated_at=None,
                                 display_name=None, thumbnail_url=None) -> MonitoredChannel:
        db = self.session_factory()
        try:
            row = db.query(Channel).filter_by(user_id=user_id, channel_id=channel_id).first()
            if row is None:
                raise ChannelNotFound(channel_id, f"Channel is not monitored: {channel_id}")

            row.current_subscribers = counts.subscriber_count
            row.current_views = counts.view_count
            row.current_video_count = counts.video_count
            row.last_updated_at = last_updated_at or datetime.now(timezone.utc)
            if display_name:
                row.display_name = display_name
            if thumbnail_url:
                row.thumbnail_url = thumbnail_url
            db.commit()
            return _to_channel(row)
        finally:
            db.close()

    def delete_monitored_channel(self, channel_id, user_id, purge_history=False) -> bool:
        """Stop monitoring a channel. History survives unless purge_history is set."""
        db = self.session_factory()
        try:
            deleted = db.query(Channel).filter_by(user_id=user_id, channel_id=channel_id).delete()
            if purge_history:
                db.query(ChannelHistory).filter_by(user_id=user_id, channel_id=channel_id).delete()
            db.commit()
            return deleted > 0
        finally:
            db.close()

    def add_channel(self, user_id, stats: ChannelStats, niche=None, notes=None, content_type='longform',
                    now=None) -> MonitoredChannel:
        """Create a MonitoredChannel together with its first snapshot"""
        now = _aware(now or datetime.now(timezone.utc))

        db = self.session_factory()
        try:
            existing = db.query(Channel).filter_by(user_id=user_id, channel_id=stats.channel_id).first()
            if existing:
                raise ChannelAlreadyMonitored(stats.channel_id)

            channel = Channel(
                user_id=user_id,
                channel_id=stats.channel_id,
                display_name=stats.title or stats.channel_id,
                description=stats.description,
                custom_url=stats.custom_url,
                thumbnail_url=stats.thumbnail_url,
                current_subscribers=stats.subscriber_count,
                current_views=stats.view_count,
                current_video_count=stats.video_count,
                niche=niche or None,
                notes=notes or None,
                content_type=content_type,
                added_at=now,
                last_updated_at=now,
            )
            db.add(channel)
            db.add(ChannelHistory(
                user_id=user_id,
                channel_id=stats.channel_id,
                recorded_at=now,
                snapshot_date=now.astimezone(timezone.utc).date(),
                subscriber_count=stats.subscriber_count,
                view_count=stats.view_count,
                video_count=stats.video_count,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ChannelAlreadyMonitored(stats.channel_id)

            logger.info(f"Added channel: {channel.display_name} ({stats.subscriber_count:,} subscribers)")
            return _to_channel(channel)
        finally:
            db.close()

    def update_channel_details(self, user_id, channel_id, niche=None, notes=None, content_type=None) -> MonitoredChannel:
        """Change user metadata. Passing None leaves a field alone, '' clears it."""
        db = self.session_factory()
        try:
            row = db.query(Channel).filter_by(user_id=user_id, channel_id=channel_id).first()
            if row is None:
                raise ChannelNotFound(channel_id, f"Channel is not monitored: {channel_id}")
            if niche is not None:
                row.niche = niche.strip() or None
            if notes is not None:
                row.notes = notes or None
            if content_type is not None:
                row.content_type = content_type
            db.commit()
            return _to_channel(row)
        finally:
            db.close()

    def list_niches(self, user_id) -> List[str]:
        db = self.session_factory()
        try:
            rows = db.query(Channel.niche).filter(
                Channel.user_id == user_id, Channel.niche.isnot(None)
            ).distinct().all()
        finally:
            db.close()

        niches = {normalize_niche(niche) for (niche,) in rows}
        niches.discard('')
        return sorted(niches, key=str.casefold)

    def rename_niche(self, user_id, old_niche, new_niche) -> int:
        db = self.session_factory()
        try:
            renamed = db.query(Channel).filter(
                Channel.user_id == user_id,
                func.lower(func.trim(Channel.niche)) == old_niche.strip().lower(),
            ).update({Channel.niche: new_niche.strip()}, synchronize_session=False)
            db.commit()
            logger.info(f"Renamed niche '{old_niche}' to '{new_niche}' on {renamed} channels")
            return renamed
        finally:
            db.close()
