"""SQLAlchemy models for EventSnaps"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float, JSON,
    ForeignKey, Enum, Index, Uuid
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
import enum

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


class EventStatus(str, enum.Enum):
    """Stored event status; expiry itself is derived from expires_at"""
    ACTIVE = "active"
    EXPIRED = "expired"


class PhotoStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModerationDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class MusicProvider(str, enum.Enum):
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"


class QueueItemStatus(str, enum.Enum):
    PENDING = "pending"
    PLAYED = "played"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class Event(Base):
    """Time-boxed, code-addressable sharing space"""
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(6), nullable=False, unique=True)
    creator_id = Column(String(255), nullable=False, default="anonymous")
    moderation_enabled = Column(Boolean, nullable=False, default=False)
    status = Column(_enum(EventStatus, 'eventstatus'), nullable=False, default=EventStatus.ACTIVE)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    photos = relationship("Photo", back_populates="event")
    jukebox_settings = relationship("JukeboxSettings", back_populates="event", uselist=False)

    __table_args__ = (
        Index('idx_events_creator_id', 'creator_id'),
        Index('idx_events_status', 'status'),
    )


class Photo(Base):
    """Uploaded photo and its visibility status"""
    __tablename__ = "photos"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    storage_path = Column(String(500), nullable=False)
    storage_url = Column(String(1000))
    caption = Column(Text)
    status = Column(_enum(PhotoStatus, 'photostatus'), nullable=False, default=PhotoStatus.PENDING)
    uploaded_by = Column(String(255), nullable=False, default="anonymous")
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    event = relationship("Event", back_populates="photos")
    queue_items = relationship("ModerationQueue", back_populates="photo")

    __table_args__ = (
        Index('idx_photos_event_id', 'event_id'),
        Index('idx_photos_status', 'status'),
    )


class ModerationQueue(Base):
    """A photo awaiting moderation; kept forever as audit trail"""
    __tablename__ = "moderation_queues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    photo_id = Column(Uuid(as_uuid=True), ForeignKey("photos.id"), nullable=False)
    queued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed = Column(Boolean, nullable=False, default=False)

    # AI analysis outcome; suggestion/confidence/error are written together
    gemini_suggestion = Column(_enum(ModerationDecision, 'moderationdecision'))
    confidence_score = Column(Float)
    error_message = Column(Text)
    analyzed_at = Column(DateTime(timezone=True))

    photo = relationship("Photo", back_populates="queue_items")

    __table_args__ = (
        Index('idx_moderation_queues_photo_id', 'photo_id'),
        Index('idx_moderation_queues_processed', 'processed'),
    )


class ModerationAction(Base):
    """Append-only moderation audit log"""
    __tablename__ = "moderation_actions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    photo_id = Column(Uuid(as_uuid=True), ForeignKey("photos.id"), nullable=False)
    moderator_id = Column(String(255), nullable=False)
    action = Column(_enum(ModerationDecision, 'moderationdecision'), nullable=False)
    reason = Column(Text)
    actioned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_moderation_actions_photo_id', 'photo_id'),
        Index('idx_moderation_actions_moderator_id', 'moderator_id'),
    )


class JukeboxSettings(Base):
    """Per-event jukebox configuration"""
    __tablename__ = "jukebox_settings"

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    provider = Column(_enum(MusicProvider, 'musicprovider'), nullable=False, default=MusicProvider.SPOTIFY)
    vibe_filters = Column(JSON, default=list)
    spotify_playlist_id = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="jukebox_settings")


class JukeboxQueueItem(Base):
    """A requested song in an event's jukebox"""
    __tablename__ = "jukebox_queue"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    track_id = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    artist = Column(String(500), nullable=False)
    album_art = Column(String(1000))
    preview_url = Column(String(1000))
    genre = Column(String(100), nullable=False, default="unknown")
    votes = Column(Integer, nullable=False, default=1)
    voters = Column(JSON, default=list)
    provider = Column(_enum(MusicProvider, 'musicprovider'), nullable=False, default=MusicProvider.SPOTIFY)
    status = Column(_enum(QueueItemStatus, 'queueitemstatus'), nullable=False, default=QueueItemStatus.PENDING)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_jukebox_queue_event_status', 'event_id', 'status'),
        Index('idx_jukebox_queue_votes', 'votes'),
    )


class AdminConfig(Base):
    """Admin-managed key/value settings (API credentials)"""
    __tablename__ = "admin_config"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Plan(Base):
    """Subscription plan and its feature flags"""
    __tablename__ = "plans"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    features = Column(JSON, nullable=False, default=dict)
    price = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UserSubscription(Base):
    """Links a user to a plan"""
    __tablename__ = "user_subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False)
    plan_id = Column(String(100), ForeignKey("plans.id"), nullable=False)
    status = Column(_enum(SubscriptionStatus, 'subscriptionstatus'), nullable=False)
    current_period_end = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    plan = relationship("Plan")

    __table_args__ = (
        Index('idx_user_subscriptions_user_id', 'user_id'),
        Index('idx_user_subscriptions_status', 'status'),
    )


class UserProfile(Base):
    """Profile data kept alongside the identity provider's user record"""
    __tablename__ = "user_profiles"

    id = Column(String(255), primary_key=True)
    full_name = Column(String(255))
    plan_id = Column(String(100), ForeignKey("plans.id"))
    role = Column(_enum(UserRole, 'userrole'), nullable=False, default=UserRole.USER)
    custom_logo_url = Column(String(1000))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
