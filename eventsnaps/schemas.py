"""Pydantic models for API request/response validation and persistence DTOs"""
from datetime import datetime
from typing import Optional, List, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uuid

from .models import (
    EventStatus, PhotoStatus, ModerationDecision, MusicProvider,
    QueueItemStatus, SubscriptionStatus, UserRole
)


# Base schemas
class BaseSchema(BaseModel):
    """Base schema for records read out of the store"""
    model_config = ConfigDict(from_attributes=True)


# Event schemas
class CreateEventRequest(BaseModel):
    """Request schema for event creation"""
    duration: Literal["24h", "72h"] = Field("24h", description="Event lifetime")
    moderation_enabled: bool = Field(False, description="Screen uploads before they are visible")


class EventRecord(BaseSchema):
    id: uuid.UUID
    code: str = Field(..., min_length=6, max_length=6)
    creator_id: str
    moderation_enabled: bool
    status: EventStatus
    created_at: datetime
    expires_at: datetime


class EventResponse(EventRecord):
    is_expired: bool


# Photo schemas
class PhotoRecord(BaseSchema):
    id: uuid.UUID
    event_id: uuid.UUID
    storage_path: str
    storage_url: Optional[str] = None
    caption: Optional[str] = None
    status: PhotoStatus
    uploaded_by: str
    uploaded_at: datetime


# Moderation schemas
class QueueItemRecord(BaseSchema):
    id: uuid.UUID
    photo_id: uuid.UUID
    queued_at: datetime
    processed: bool
    gemini_suggestion: Optional[ModerationDecision] = None
    confidence_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    error_message: Optional[str] = None
    photo: Optional[PhotoRecord] = None


class ModerationActionRecord(BaseSchema):
    id: uuid.UUID
    photo_id: uuid.UUID
    moderator_id: str
    action: ModerationDecision
    reason: Optional[str] = None
    actioned_at: datetime


class ModerationDecisionRequest(BaseModel):
    action: ModerationDecision
    reason: Optional[str] = Field(None, max_length=1000)


class AnalysisResult(BaseModel):
    """Outcome of one AI moderation call"""
    suggestion: Optional[ModerationDecision] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reason: str = ""
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.suggestion is not None and not self.error_message


class BatchReport(BaseModel):
    """Summary of a batch analysis run"""
    attempted: int = 0
    analyzed: int = 0
    auto_resolved: int = 0
    failed: int = 0


# Moderation handler wire format
class ModeratePhotoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    storage_path: Optional[str] = Field(None, alias="storagePath")
    insforge_url: Optional[str] = Field(None, alias="insforgeUrl")
    anon_key: Optional[str] = Field(None, alias="anonKey")


# Jukebox schemas
class Track(BaseModel):
    """Provider-neutral track shape returned by search"""
    id: str
    title: str
    artist: str
    album_art: Optional[str] = None
    preview_url: Optional[str] = None
    provider: MusicProvider


class JukeboxItemRecord(BaseSchema):
    id: uuid.UUID
    event_id: uuid.UUID
    track_id: str
    title: str
    artist: str
    album_art: Optional[str] = None
    preview_url: Optional[str] = None
    genre: str = "unknown"
    votes: int = Field(..., ge=0)
    voters: List[str] = Field(default_factory=list)
    provider: MusicProvider
    status: QueueItemStatus
    created_at: datetime

    @field_validator("voters", mode="before")
    @classmethod
    def _voters_default(cls, value):
        return value or []


class JukeboxSettingsRecord(BaseSchema):
    event_id: uuid.UUID
    is_active: bool
    provider: MusicProvider
    vibe_filters: List[str] = Field(default_factory=list)
    spotify_playlist_id: Optional[str] = None

    @field_validator("vibe_filters", mode="before")
    @classmethod
    def _filters_default(cls, value):
        return value or []


class JukeboxSettingsUpdate(BaseModel):
    is_active: Optional[bool] = None
    provider: Optional[MusicProvider] = None
    vibe_filters: Optional[List[str]] = None


class MusicSearchRequest(BaseModel):
    action: Optional[str] = None
    query: Optional[str] = None
    artists: Optional[List[str]] = None


# Feature gate schemas
class PlanFeatures(BaseModel):
    gallery: bool = False
    playlist: bool = True
    tv_mode: bool = False
    white_label: bool = False
    max_storage_gb: float = 0.5


class PlanRecord(BaseSchema):
    id: str
    name: str
    features: PlanFeatures
    price: float


class SubscriptionRecord(BaseSchema):
    id: uuid.UUID
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    created_at: datetime


class UserProfileRecord(BaseSchema):
    id: str
    full_name: Optional[str] = None
    plan_id: Optional[str] = None
    role: UserRole = UserRole.USER
    custom_logo_url: Optional[str] = None


class FeatureCheckResult(BaseModel):
    allowed: bool
    message: Optional[str] = None


class TrialActivationResult(BaseModel):
    activated: bool
    message: Optional[str] = None


class BrandingConfig(BaseModel):
    show_dj_logo: bool = False
    logo_url: Optional[str] = None
    dj_name: Optional[str] = None


# Admin schemas
class AdminConfigUpdate(BaseModel):
    values: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response schema"""
    error: str
    detail: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Health check response schema"""
    status: str
    service: str
    database: Optional[str] = None
    redis: Optional[str] = None
