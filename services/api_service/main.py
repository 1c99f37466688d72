"""
EventSnaps API Service

FastAPI service for events, photo uploads, moderation, jukebox queues,
plan features and admin configuration.
"""

import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import (
    BackgroundTasks, Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from eventsnaps.auth import Principal, bearer_token, decode_token, ensure_admin, resolve_role
from eventsnaps.config import Settings, get_config
from eventsnaps.credentials import CredentialResolver, DatabaseConfigStore, KNOWN_KEYS
from eventsnaps.database import DatabaseManager, check_database_health
from eventsnaps.events import EventService, to_response
from eventsnaps.exceptions import (
    AuthorizationError, DuplicateTrackError, EventExpiredError, EventSnapsError,
    FeatureNotAvailableError, MusicSearchError, NotFoundError, StorageError, VoteError
)
from eventsnaps.features import FeatureGate
from eventsnaps.gemini import GeminiModerationClient
from eventsnaps.jukebox import JukeboxService
from eventsnaps.logging import get_logger, setup_logging
from eventsnaps.middleware import CorrelationMiddleware
from eventsnaps.moderation import ModerationOrchestrator, PhotoAnalyzer
from eventsnaps.music import MusicSearchClient
from eventsnaps.realtime import EventBroadcaster, check_redis_health
from eventsnaps.schemas import (
    AdminConfigUpdate, BatchReport, BrandingConfig, CreateEventRequest, EventRecord, EventResponse,
    FeatureCheckResult, HealthCheckResponse, JukeboxItemRecord, JukeboxSettingsRecord,
    JukeboxSettingsUpdate, ModerationActionRecord, ModerationDecisionRequest, PhotoRecord,
    PlanFeatures, QueueItemRecord, Track, TrialActivationResult
)
from eventsnaps.storage import LocalStorageProvider, StorageProvider

logger = get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter('api_service_requests_total', 'Total requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('api_service_request_duration_seconds', 'Request duration', ['endpoint'])
PHOTO_UPLOADS = Counter('api_service_photo_uploads_total', 'Photo uploads', ['moderated'])
MODERATION_RESOLUTIONS = Counter('api_service_moderation_resolutions_total', 'Moderation resolutions', ['source', 'action'])
JUKEBOX_VOTES = Counter('api_service_jukebox_votes_total', 'Jukebox votes', ['status'])


@dataclass
class ServiceContainer:
    """Everything the endpoints need, built once at startup"""
    settings: Settings
    db_manager: DatabaseManager
    config_store: DatabaseConfigStore
    broadcaster: EventBroadcaster
    features: FeatureGate
    moderation: ModerationOrchestrator
    events: EventService
    jukebox: JukeboxService


def build_services(
    settings: Settings,
    db_manager: DatabaseManager,
    storage: Optional[StorageProvider] = None,
    analyzer: Optional[PhotoAnalyzer] = None,
    music: Optional[MusicSearchClient] = None,
    broadcaster: Optional[EventBroadcaster] = None,
) -> ServiceContainer:
    """Wire the domain services together; collaborators can be swapped out"""
    config_store = DatabaseConfigStore(db_manager)
    credentials = CredentialResolver(config_store, settings)
    storage = storage or LocalStorageProvider(settings.storage_path)
    broadcaster = broadcaster or EventBroadcaster()
    analyzer = analyzer or GeminiModerationClient(
        credentials,
        storage,
        model=settings.gemini_model,
        timeout=settings.http_timeout_seconds,
        max_retries=settings.http_max_retries,
        fallback_policy=settings.moderation_fallback_policy,
    )
    music = music or MusicSearchClient(
        credentials, timeout=settings.http_timeout_seconds, max_retries=settings.http_max_retries
    )

    features = FeatureGate(db_manager)
    moderation = ModerationOrchestrator(
        db_manager,
        analyzer,
        broadcaster,
        auto_approve_threshold=settings.auto_approve_threshold,
        retry_concurrency=settings.moderation_retry_concurrency,
    )
    events = EventService(db_manager, features, storage, moderation, max_upload_bytes=settings.max_upload_bytes)
    jukebox = JukeboxService(
        db_manager, music, features, broadcaster, enforce_single_vote=settings.jukebox_enforce_single_vote
    )
    return ServiceContainer(
        settings=settings,
        db_manager=db_manager,
        config_store=config_store,
        broadcaster=broadcaster,
        features=features,
        moderation=moderation,
        events=events,
        jukebox=jukebox,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    settings = get_config()
    setup_logging()

    db_manager = DatabaseManager()
    await db_manager.initialize(settings.database_url)
    broadcaster = EventBroadcaster(settings.redis_url if settings.realtime_enabled else None)
    await broadcaster.initialize()

    app.state.services = build_services(settings, db_manager, broadcaster=broadcaster)
    logger.info("API service initialized")
    yield

    await broadcaster.close()
    await db_manager.close()
    logger.info("API service shutdown complete")


app = FastAPI(
    title="EventSnaps API Service",
    description="Ephemeral event photo sharing and collaborative jukebox",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.time() - start_time)
    return response


# Domain errors map to HTTP statuses
_ERROR_STATUS = [
    (AuthorizationError, 403),
    (FeatureNotAvailableError, 403),
    (NotFoundError, 404),
    (DuplicateTrackError, 409),
    (VoteError, 409),
    (EventExpiredError, 410),
    (StorageError, 502),
]


@app.exception_handler(EventSnapsError)
async def domain_exception_handler(request: Request, exc: EventSnapsError):
    if isinstance(exc, MusicSearchError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    for exc_type, status_code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    logger.error(f"Unhandled domain error: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def get_services(request: Request) -> ServiceContainer:
    """Dependency to get the service container"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


async def get_optional_principal(
    authorization: Optional[str] = Header(None),
    services: ServiceContainer = Depends(get_services),
) -> Optional[Principal]:
    """Caller identity from the bearer token, if one was sent"""
    token = bearer_token(authorization)
    if token is None:
        return None
    try:
        principal = decode_token(token, services.settings.jwt_secret, services.settings.jwt_algorithm)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return await resolve_role(services.db_manager, principal)


async def get_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


async def get_event(code: str, services: ServiceContainer = Depends(get_services)) -> EventRecord:
    event = await services.events.get_event_by_code(code)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(deep: bool = False, services: ServiceContainer = Depends(get_services)):
    """Health check endpoint with optional deep checks"""
    health_status = {"status": "healthy", "service": "api-service"}

    if deep:
        db_health = await check_database_health(services.db_manager)
        if db_health["status"] == "healthy":
            health_status["database"] = "connected"
        else:
            health_status["status"] = "unhealthy"
            health_status["database"] = f"error: {db_health['message']}"
        health_status["redis"] = await check_redis_health(services.broadcaster)

    return health_status


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "EventSnaps API Service", "version": "1.0.0"}


# Events

@app.post("/events", response_model=EventResponse, status_code=201)
async def create_event(
    request: CreateEventRequest,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    event = await services.events.create_event(request.duration, request.moderation_enabled, principal.user_id)
    return to_response(event)


@app.get("/events/{code}", response_model=EventResponse)
async def get_event_by_code(event: EventRecord = Depends(get_event)):
    return to_response(event)


@app.delete("/events/{code}", response_model=EventResponse)
async def delete_event(
    code: str,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    event = await services.events.delete_event(principal, code)
    return to_response(event)


@app.get("/users/me/events", response_model=List[EventResponse])
async def list_my_events(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    events = await services.events.list_events_for_creator(principal.user_id)
    return [to_response(event) for event in events]


@app.get("/events/{code}/branding", response_model=BrandingConfig)
async def get_branding(event: EventRecord = Depends(get_event), services: ServiceContainer = Depends(get_services)):
    return await services.features.get_branding_config(event.creator_id)


# Photos

@app.get("/events/{code}/photos", response_model=List[PhotoRecord])
async def list_photos(
    event: EventRecord = Depends(get_event),
    principal: Optional[Principal] = Depends(get_optional_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.events.list_photos(event, principal)


@app.post("/events/{code}/photos", response_model=PhotoRecord, status_code=201)
async def upload_photo(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    caption: Optional[str] = Form(None),
    event: EventRecord = Depends(get_event),
    principal: Optional[Principal] = Depends(get_optional_principal),
    services: ServiceContainer = Depends(get_services),
):
    """Upload a photo; moderated events queue it for AI analysis"""
    data = await file.read()
    photo, queue_item = await services.events.upload_photo(
        event,
        data,
        file.filename or "photo.jpg",
        content_type=file.content_type,
        caption=caption,
        uploaded_by=principal.user_id if principal else None,
    )
    PHOTO_UPLOADS.labels(moderated=str(queue_item is not None).lower()).inc()
    if queue_item is not None:
        background_tasks.add_task(services.moderation.analyze_item, queue_item.id)
    return photo


@app.get("/events/{code}/tv")
async def tv_feed(event: EventRecord = Depends(get_event), services: ServiceContainer = Depends(get_services)):
    """Big-screen feed: approved photos plus the head of the jukebox queue"""
    await services.features.require_feature(event.creator_id, "tv_mode")
    photos = await services.events.list_photos(event)
    queue = await services.jukebox.list_queue(event.id)
    return {
        "event": to_response(event).model_dump(mode="json"),
        "photos": [photo.model_dump(mode="json") for photo in photos],
        "up_next": [item.model_dump(mode="json") for item in queue[:5]],
    }


# Moderation

@app.get("/events/{code}/moderation/queue", response_model=List[QueueItemRecord])
async def get_moderation_queue(
    event: EventRecord = Depends(get_event),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.moderation.get_queue(principal, event)


@app.post("/events/{code}/moderation/analyze", response_model=BatchReport)
async def analyze_event_queue(
    event: EventRecord = Depends(get_event),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    report = await services.moderation.analyze_pending(principal, event)
    MODERATION_RESOLUTIONS.labels(source="auto", action="any").inc(report.auto_resolved)
    return report


@app.post("/moderation/photos/{photo_id}/decision", response_model=PhotoRecord)
async def decide_photo(
    photo_id: uuid.UUID,
    decision: ModerationDecisionRequest,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    photo = await services.moderation.resolve_manually(principal, photo_id, decision.action, decision.reason)
    MODERATION_RESOLUTIONS.labels(source="manual", action=decision.action.value).inc()
    return photo


@app.get("/moderation/photos/{photo_id}/actions", response_model=List[ModerationActionRecord])
async def list_photo_actions(
    photo_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    ensure_admin(principal)
    return await services.moderation.list_actions(photo_id)


@app.get("/admin/moderation/errors", response_model=List[QueueItemRecord])
async def list_moderation_errors(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.moderation.list_failed_items(principal)


@app.post("/admin/moderation/retry", response_model=BatchReport)
async def retry_moderation(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    report = await services.moderation.retry_failed(principal)
    MODERATION_RESOLUTIONS.labels(source="retry", action="any").inc(report.auto_resolved)
    return report


# Admin configuration

@app.get("/admin/config", response_model=Dict[str, bool])
async def get_admin_config(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    """Which credentials are configured; values are never returned"""
    ensure_admin(principal)
    configured = await services.config_store.list_keys()
    return {key: configured.get(key, False) for key in sorted(set(KNOWN_KEYS) | set(configured))}


@app.put("/admin/config", response_model=Dict[str, bool])
async def update_admin_config(
    update: AdminConfigUpdate,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    ensure_admin(principal)
    unknown = set(update.values) - set(KNOWN_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    await services.config_store.set_values(update.values)
    configured = await services.config_store.list_keys()
    return {key: configured.get(key, False) for key in sorted(set(KNOWN_KEYS) | set(configured))}


# Features

@app.get("/users/me/features", response_model=PlanFeatures)
async def get_my_features(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.features.resolve_user_features(principal.user_id)


@app.get("/users/me/features/{feature}", response_model=FeatureCheckResult)
async def check_my_feature(
    feature: str,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.features.check_feature(principal.user_id, feature)


@app.post("/users/me/trial", response_model=TrialActivationResult)
async def activate_trial(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.features.activate_trial(principal.user_id)


@app.get("/users/me/trial")
async def get_trial_status(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return {"expired": await services.features.is_trial_expired(principal.user_id)}


# Jukebox

@app.get("/events/{code}/jukebox/search", response_model=List[Track])
async def search_tracks(
    q: str = Query(..., min_length=1),
    event: EventRecord = Depends(get_event),
    services: ServiceContainer = Depends(get_services),
):
    settings = await services.jukebox.get_settings(event.id)
    return await services.jukebox.search(q, settings.provider)


@app.get("/events/{code}/jukebox/queue", response_model=List[JukeboxItemRecord])
async def get_jukebox_queue(event: EventRecord = Depends(get_event), services: ServiceContainer = Depends(get_services)):
    return await services.jukebox.list_queue(event.id)


@app.post("/events/{code}/jukebox/queue", response_model=JukeboxItemRecord, status_code=201)
async def add_to_jukebox_queue(
    track: Track,
    event: EventRecord = Depends(get_event),
    participant_id: str = Header("anonymous", alias="X-Participant-ID"),
    principal: Optional[Principal] = Depends(get_optional_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.jukebox.add_to_queue(event, track, principal.user_id if principal else participant_id)


@app.post("/jukebox/queue/{item_id}/vote", response_model=JukeboxItemRecord)
async def vote_for_track(
    item_id: uuid.UUID,
    participant_id: str = Header("anonymous", alias="X-Participant-ID"),
    principal: Optional[Principal] = Depends(get_optional_principal),
    services: ServiceContainer = Depends(get_services),
):
    try:
        item = await services.jukebox.vote(item_id, principal.user_id if principal else participant_id)
    except EventSnapsError:
        JUKEBOX_VOTES.labels(status="rejected").inc()
        raise
    JUKEBOX_VOTES.labels(status="accepted").inc()
    return item


@app.post("/jukebox/queue/{item_id}/played", response_model=JukeboxItemRecord)
async def mark_track_played(
    item_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.jukebox.mark_played(principal, item_id)


@app.get("/events/{code}/jukebox/settings", response_model=JukeboxSettingsRecord)
async def get_jukebox_settings(event: EventRecord = Depends(get_event), services: ServiceContainer = Depends(get_services)):
    return await services.jukebox.get_settings(event.id)


@app.put("/events/{code}/jukebox/settings", response_model=JukeboxSettingsRecord)
async def update_jukebox_settings(
    update: JukeboxSettingsUpdate,
    event: EventRecord = Depends(get_event),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
):
    return await services.jukebox.update_settings(principal, event, update)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
