"""
Event lifecycle: creation, lookup by code, expiry and photo uploads
"""

import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from pathlib import PurePath
from typing import List, Optional, Tuple

from .auth import Principal, ensure_owner_or_admin
from .database import BaseRepository, DatabaseManager, to_record
from .exceptions import EventExpiredError, NotFoundError, PersistenceError
from .features import FeatureGate
from .models import (
    Event, EventStatus, JukeboxSettings, MusicProvider, Photo, PhotoStatus, as_utc, utcnow
)
from .moderation import ModerationOrchestrator
from .schemas import EventRecord, EventResponse, PhotoRecord, QueueItemRecord
from .storage import StorageProvider

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
CODE_ATTEMPTS = 5

DURATIONS = {
    "24h": timedelta(hours=24),
    "72h": timedelta(hours=72),
}


def generate_event_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def is_expired(event: EventRecord, now: Optional[datetime] = None) -> bool:
    """Events expire strictly after ``expires_at``"""
    return (now or utcnow()) > as_utc(event.expires_at)


def ensure_writable(event: EventRecord, now: Optional[datetime] = None) -> None:
    if is_expired(event, now):
        raise EventExpiredError(f"Event {event.code} has expired")


def to_response(event: EventRecord, now: Optional[datetime] = None) -> EventResponse:
    return EventResponse(**event.model_dump(), is_expired=is_expired(event, now))


class EventService:
    """Creates events and accepts photo uploads into them"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        features: FeatureGate,
        storage: StorageProvider,
        moderation: ModerationOrchestrator,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ):
        self.db_manager = db_manager
        self.features = features
        self.storage = storage
        self.moderation = moderation
        self.max_upload_bytes = max_upload_bytes

    async def create_event(self, duration: str, moderation_enabled: bool, creator_id: str) -> EventRecord:
        """Create an event and its default jukebox settings"""
        if duration not in DURATIONS:
            raise ValueError(f"Unsupported duration: {duration}")

        now = utcnow()
        async with self.db_manager.get_session() as session:
            repo = BaseRepository(session, Event)
            for _ in range(CODE_ATTEMPTS):
                code = generate_event_code()
                if await repo.count_where(Event.code == code) == 0:
                    break
            else:
                raise PersistenceError("Could not allocate a unique event code")

            event = await repo.create(
                code=code,
                creator_id=creator_id,
                moderation_enabled=moderation_enabled,
                status=EventStatus.ACTIVE,
                created_at=now,
                expires_at=now + DURATIONS[duration],
            )
            session.add(JukeboxSettings(event_id=event.id, is_active=True, provider=MusicProvider.SPOTIFY))
            record = to_record(EventRecord, event)

        logger.info(
            f"Event {record.code} created",
            extra={"event_id": str(record.id), "creator_id": creator_id, "duration": duration}
        )
        return record

    async def get_event_by_code(self, code: str) -> Optional[EventRecord]:
        """Case-insensitive lookup of an active event; None when not found"""
        if not code:
            return None
        async with self.db_manager.get_session() as session:
            row = await BaseRepository(session, Event).first_where(
                Event.code == code.strip().upper(),
                Event.status == EventStatus.ACTIVE,
            )
            return to_record(EventRecord, row) if row is not None else None

    async def require_event(self, code: str) -> EventRecord:
        event = await self.get_event_by_code(code)
        if event is None:
            raise NotFoundError(f"Event {code} not found")
        return event

    async def get_event(self, event_id: uuid.UUID) -> Optional[EventRecord]:
        async with self.db_manager.get_session() as session:
            row = await session.get(Event, event_id)
            return to_record(EventRecord, row) if row is not None else None

    async def list_events_for_creator(self, creator_id: str) -> List[EventRecord]:
        async with self.db_manager.get_session() as session:
            rows = await BaseRepository(session, Event).list_where(
                Event.creator_id == creator_id,
                Event.status == EventStatus.ACTIVE,
                order_by=Event.created_at.desc(),
            )
            return [to_record(EventRecord, row) for row in rows]

    async def delete_event(self, principal: Optional[Principal], code: str) -> EventRecord:
        """Soft delete; photos and the moderation audit trail are kept"""
        event = await self.require_event(code)
        ensure_owner_or_admin(principal, event.creator_id)

        async with self.db_manager.get_session() as session:
            row = await BaseRepository(session, Event).update(event.id, status=EventStatus.EXPIRED)
            record = to_record(EventRecord, row)

        logger.info(f"Event {record.code} deleted", extra={"event_id": str(record.id), "user_id": principal.user_id})
        return record

    async def list_photos(self, event: EventRecord, principal: Optional[Principal] = None) -> List[PhotoRecord]:
        """Guests see approved photos; the owner and admins see every status"""
        include_pending = principal is not None and (principal.is_admin or principal.user_id == event.creator_id)
        criteria = [Photo.event_id == event.id]
        if not include_pending:
            criteria.append(Photo.status == PhotoStatus.APPROVED)
        async with self.db_manager.get_session() as session:
            rows = await BaseRepository(session, Photo).list_where(
                *criteria, order_by=Photo.uploaded_at.desc()
            )
            return [to_record(PhotoRecord, row) for row in rows]

    async def upload_photo(
        self,
        event: EventRecord,
        data: bytes,
        filename: str,
        content_type: Optional[str] = None,
        caption: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> Tuple[PhotoRecord, Optional[QueueItemRecord]]:
        """Store the bytes and hand the photo to moderation"""
        ensure_writable(event)
        await self.features.require_feature(event.creator_id, "gallery")
        if not data:
            raise ValueError("Empty upload")
        if len(data) > self.max_upload_bytes:
            raise ValueError(f"Upload exceeds {self.max_upload_bytes} bytes")

        suffix = PurePath(filename or "").suffix.lower() or ".jpg"
        storage_path = f"{event.id}/{uuid.uuid4().hex}{suffix}"
        stored = await self.storage.upload(storage_path, data, content_type)

        return await self.moderation.submit_photo(
            event,
            storage_path=stored.path,
            storage_url=stored.url,
            caption=caption,
            uploaded_by=uploaded_by,
        )
