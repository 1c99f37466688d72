"""
Photo moderation queue.

A photo uploaded to an event with moderation enabled gets one queue item and
stays ``pending`` until it is resolved, either automatically from a Gemini
analysis or by the event owner / an admin. Every resolution appends a
``ModerationAction``; queue items are never deleted.

Analysis failures are recorded on the queue item and leave the photo pending
for a human. They never reject a photo.
"""

import asyncio
import logging
import uuid
from typing import List, Optional, Protocol, Tuple

import sqlalchemy as sa
from sqlalchemy.orm import selectinload

from .auth import Principal, ensure_admin, ensure_owner_or_admin
from .database import BaseRepository, DatabaseManager, to_record
from .exceptions import AuthorizationError, NotFoundError
from .models import (
    ModerationAction, ModerationDecision, ModerationQueue, Photo, PhotoStatus, utcnow
)
from .realtime import EventBroadcaster
from .schemas import (
    AnalysisResult, BatchReport, EventRecord, ModerationActionRecord, PhotoRecord, QueueItemRecord
)

logger = logging.getLogger(__name__)

# Moderator ids recorded for system-initiated actions
SYSTEM_AUTO = "gemini-auto"
SYSTEM_RETRY = "gemini-retry"
ANONYMOUS = "anonymous"

DEFAULT_AUTO_APPROVE_THRESHOLD = 0.90

_STATUS_FOR_DECISION = {
    ModerationDecision.APPROVE: PhotoStatus.APPROVED,
    ModerationDecision.REJECT: PhotoStatus.REJECTED,
}


class PhotoAnalyzer(Protocol):
    async def analyze(self, storage_path: str) -> AnalysisResult:
        ...


def needs_analysis():
    """Queue items with no AI suggestion that are still open"""
    return sa.and_(ModerationQueue.processed.is_(False), ModerationQueue.gemini_suggestion.is_(None))


def auto_resolution_reason(decision: ModerationDecision, confidence: float, reason: str) -> str:
    verb = "rejected" if decision == ModerationDecision.REJECT else "approved"
    return f"Auto-{verb} by Gemini ({round(confidence * 100)}% confidence): {reason}"


class ModerationOrchestrator:
    """Queue, analyze and resolve moderated photos"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        analyzer: PhotoAnalyzer,
        broadcaster: Optional[EventBroadcaster] = None,
        auto_approve_threshold: float = DEFAULT_AUTO_APPROVE_THRESHOLD,
        retry_concurrency: int = 1,
    ):
        self.db_manager = db_manager
        self.analyzer = analyzer
        self.broadcaster = broadcaster
        self.auto_approve_threshold = auto_approve_threshold
        self.retry_concurrency = max(1, retry_concurrency)

    def should_auto_resolve(self, result: AnalysisResult) -> bool:
        if not result.succeeded:
            return False
        if result.suggestion == ModerationDecision.REJECT:
            return True
        return result.confidence >= self.auto_approve_threshold

    async def _broadcast_photo(self, photo: PhotoRecord, inserted: bool = False):
        if self.broadcaster is None:
            return
        payload = photo.model_dump(mode="json")
        if inserted:
            await self.broadcaster.photo_inserted(payload)
        else:
            await self.broadcaster.photo_updated(payload)

    async def submit_photo(
        self,
        event: EventRecord,
        storage_path: str,
        storage_url: Optional[str] = None,
        caption: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> Tuple[PhotoRecord, Optional[QueueItemRecord]]:
        """Record an uploaded photo; queue it when the event is moderated"""
        async with self.db_manager.get_session() as session:
            photo = Photo(
                event_id=event.id,
                storage_path=storage_path,
                storage_url=storage_url,
                caption=caption,
                uploaded_by=uploaded_by or ANONYMOUS,
                status=PhotoStatus.PENDING if event.moderation_enabled else PhotoStatus.APPROVED,
                uploaded_at=utcnow(),
            )
            session.add(photo)
            item = None
            if event.moderation_enabled:
                item = ModerationQueue(photo=photo, processed=False, queued_at=utcnow())
                session.add(item)
            await session.flush()

            photo_record = to_record(PhotoRecord, photo)
            item_record = to_record(QueueItemRecord, item) if item is not None else None

        logger.info(
            "Photo submitted",
            extra={
                "photo_id": str(photo_record.id),
                "event_id": str(event.id),
                "status": photo_record.status.value,
                "queued": item_record is not None,
            }
        )
        await self._broadcast_photo(photo_record, inserted=True)
        return photo_record, item_record

    async def analyze_item(self, item_id: uuid.UUID, moderator_id: str = SYSTEM_AUTO) -> QueueItemRecord:
        """Run AI analysis for one queue item and apply auto-resolution.

        Items that are processed or already carry a suggestion are returned
        unchanged.
        """
        async with self.db_manager.get_session() as session:
            item = await self._load_item(session, item_id)
            if item.processed or item.gemini_suggestion is not None:
                return to_record(QueueItemRecord, item)
            storage_path = item.photo.storage_path

        try:
            result = await self.analyzer.analyze(storage_path)
        except Exception as e:
            logger.error(f"Analyzer raised for queue item {item_id}: {e}", exc_info=True)
            result = AnalysisResult(suggestion=None, confidence=0.0, error_message=f"Analysis error: {e}")

        return await self._record_analysis(item_id, result, moderator_id)

    async def _load_item(self, session, item_id: uuid.UUID) -> ModerationQueue:
        result = await session.execute(
            sa.select(ModerationQueue)
            .options(selectinload(ModerationQueue.photo))
            .where(ModerationQueue.id == item_id)
        )
        item = result.scalars().first()
        if item is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        return item

    async def _record_analysis(self, item_id: uuid.UUID, result: AnalysisResult, moderator_id: str) -> QueueItemRecord:
        resolved_photo = None
        auto_resolve = result.succeeded and self.should_auto_resolve(result)
        if result.succeeded:
            values = {
                "gemini_suggestion": result.suggestion,
                "confidence_score": result.confidence,
                "error_message": None,
                "processed": auto_resolve,
            }
        else:
            values = {"error_message": result.error_message or "Analysis failed"}

        async with self.db_manager.get_session() as session:
            # The item may have been resolved by a human or analyzed by another
            # run while the analyzer was working; only an open item is written.
            claimed = await session.execute(
                sa.update(ModerationQueue)
                .where(
                    ModerationQueue.id == item_id,
                    ModerationQueue.processed.is_(False),
                    ModerationQueue.gemini_suggestion.is_(None),
                )
                .values(analyzed_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            item = await self._load_item(session, item_id)
            if claimed.rowcount == 0:
                logger.info(
                    "Queue item settled during analysis, result discarded",
                    extra={"queue_item_id": str(item_id), "processed": item.processed}
                )
                return to_record(QueueItemRecord, item)

            if result.succeeded:
                if auto_resolve:
                    item.photo.status = _STATUS_FOR_DECISION[result.suggestion]
                    session.add(ModerationAction(
                        photo_id=item.photo_id,
                        moderator_id=moderator_id,
                        action=result.suggestion,
                        reason=auto_resolution_reason(result.suggestion, result.confidence, result.reason),
                        actioned_at=utcnow(),
                    ))
                    resolved_photo = item.photo

            await session.flush()
            record = to_record(QueueItemRecord, item)
            photo_record = to_record(PhotoRecord, resolved_photo) if resolved_photo is not None else None

        if result.succeeded:
            logger.info(
                "Queue item analyzed",
                extra={
                    "queue_item_id": str(item_id),
                    "suggestion": result.suggestion.value,
                    "confidence": result.confidence,
                    "auto_resolved": record.processed,
                }
            )
        else:
            logger.warning(
                "Queue item analysis failed",
                extra={"queue_item_id": str(item_id), "error_message": record.error_message}
            )
        if photo_record is not None:
            await self._broadcast_photo(photo_record)
        return record

    async def _run_batch(self, item_ids: List[uuid.UUID], moderator_id: str) -> BatchReport:
        report = BatchReport(attempted=len(item_ids))
        semaphore = asyncio.Semaphore(self.retry_concurrency)

        async def run(item_id):
            async with semaphore:
                return await self.analyze_item(item_id, moderator_id)

        if self.retry_concurrency == 1:
            records = [await run(item_id) for item_id in item_ids]
        else:
            records = await asyncio.gather(*(run(item_id) for item_id in item_ids))

        for record in records:
            if record.gemini_suggestion is not None:
                report.analyzed += 1
                if record.processed:
                    report.auto_resolved += 1
            elif not record.processed:
                report.failed += 1
        return report

    async def _pending_item_ids(self, *criteria) -> List[uuid.UUID]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(ModerationQueue.id)
                .join(Photo, Photo.id == ModerationQueue.photo_id)
                .where(needs_analysis(), *criteria)
                .order_by(ModerationQueue.queued_at)
            )
            return list(result.scalars().all())

    async def analyze_pending(self, principal: Optional[Principal], event: EventRecord) -> BatchReport:
        """Analyze every open item of an event that has no suggestion yet"""
        ensure_owner_or_admin(principal, event.creator_id)
        item_ids = await self._pending_item_ids(Photo.event_id == event.id)
        report = await self._run_batch(item_ids, SYSTEM_AUTO)
        logger.info("Event queue analyzed", extra={"event_id": str(event.id), **report.model_dump()})
        return report

    async def retry_failed(self, principal: Optional[Principal]) -> BatchReport:
        """Admin batch retry across all events"""
        ensure_admin(principal)
        item_ids = await self._pending_item_ids()
        report = await self._run_batch(item_ids, SYSTEM_RETRY)
        logger.info("Moderation retry completed", extra=report.model_dump())
        return report

    async def get_queue(self, principal: Optional[Principal], event: EventRecord) -> List[QueueItemRecord]:
        """Open queue items of an event, oldest first"""
        ensure_owner_or_admin(principal, event.creator_id)
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(ModerationQueue)
                .options(selectinload(ModerationQueue.photo))
                .join(Photo, Photo.id == ModerationQueue.photo_id)
                .where(Photo.event_id == event.id, ModerationQueue.processed.is_(False))
                .order_by(ModerationQueue.queued_at)
            )
            return [to_record(QueueItemRecord, item) for item in result.scalars().all()]

    async def list_failed_items(self, principal: Optional[Principal]) -> List[QueueItemRecord]:
        """Open items whose last analysis failed"""
        ensure_admin(principal)
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(ModerationQueue)
                .options(selectinload(ModerationQueue.photo))
                .where(needs_analysis(), ModerationQueue.error_message.is_not(None))
                .order_by(ModerationQueue.queued_at)
            )
            return [to_record(QueueItemRecord, item) for item in result.scalars().all()]

    async def resolve_manually(
        self,
        principal: Optional[Principal],
        photo_id: uuid.UUID,
        action: ModerationDecision,
        reason: Optional[str] = None,
    ) -> PhotoRecord:
        """Approve or reject a photo on behalf of the event owner or an admin"""
        if principal is None:
            raise AuthorizationError("Authentication required")

        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(Photo).options(selectinload(Photo.event)).where(Photo.id == photo_id)
            )
            photo = result.scalars().first()
            if photo is None:
                raise NotFoundError(f"Photo {photo_id} not found")
            ensure_owner_or_admin(principal, photo.event.creator_id)

            photo.status = _STATUS_FOR_DECISION[action]
            await session.execute(
                sa.update(ModerationQueue)
                .where(ModerationQueue.photo_id == photo_id, ModerationQueue.processed.is_(False))
                .values(processed=True)
                .execution_options(synchronize_session=False)
            )
            session.add(ModerationAction(
                photo_id=photo_id,
                moderator_id=principal.user_id,
                action=action,
                reason=reason,
                actioned_at=utcnow(),
            ))
            await session.flush()
            record = to_record(PhotoRecord, photo)

        logger.info(
            "Photo resolved manually",
            extra={"photo_id": str(photo_id), "action": action.value, "moderator_id": principal.user_id}
        )
        await self._broadcast_photo(record)
        return record

    async def list_actions(self, photo_id: uuid.UUID) -> List[ModerationActionRecord]:
        """Audit trail for a photo, oldest first"""
        async with self.db_manager.get_session() as session:
            rows = await BaseRepository(session, ModerationAction).list_where(
                ModerationAction.photo_id == photo_id,
                order_by=ModerationAction.actioned_at,
            )
            return [to_record(ModerationActionRecord, row) for row in rows]
