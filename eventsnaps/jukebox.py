"""
Collaborative jukebox: search, queue, vote.

The pending queue is ordered by votes (highest first) and then by request
time (oldest first). Votes are incremented atomically in the database;
``JukeboxQueueView`` is the optimistic client-side mirror of the queue.
"""

import logging
import uuid
from typing import Awaitable, Callable, Iterable, List, Optional

import sqlalchemy as sa

from .auth import Principal, ensure_owner_or_admin
from .database import BaseRepository, DatabaseManager, to_record
from .events import ensure_writable
from .exceptions import DuplicateTrackError, NotFoundError, VoteError
from .features import FeatureGate
from .models import (
    Event, JukeboxQueueItem, JukeboxSettings, MusicProvider, QueueItemStatus, utcnow
)
from .music import MusicSearchClient, UNKNOWN_GENRE
from .realtime import EventBroadcaster
from .schemas import (
    EventRecord, JukeboxItemRecord, JukeboxSettingsRecord, JukeboxSettingsUpdate, Track
)

logger = logging.getLogger(__name__)


def sort_queue(items: Iterable[JukeboxItemRecord]) -> List[JukeboxItemRecord]:
    """Votes descending, then oldest request first"""
    return sorted(items, key=lambda item: (-item.votes, item.created_at))


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_duplicate(track: Track, pending: Iterable[JukeboxItemRecord], provider: MusicProvider) -> bool:
    """Same track id, or for Spotify events the same title and artist"""
    for item in pending:
        if item.track_id == track.id:
            return True
        if provider == MusicProvider.SPOTIFY and (
            _normalize(item.title) == _normalize(track.title)
            and _normalize(item.artist) == _normalize(track.artist)
        ):
            return True
    return False


class JukeboxService:
    """Server side of the jukebox"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        music: MusicSearchClient,
        features: FeatureGate,
        broadcaster: Optional[EventBroadcaster] = None,
        enforce_single_vote: bool = False,
    ):
        self.db_manager = db_manager
        self.music = music
        self.features = features
        self.broadcaster = broadcaster
        self.enforce_single_vote = enforce_single_vote

    async def _publish(self, item: JukeboxItemRecord, inserted: bool = False):
        if self.broadcaster is None:
            return
        payload = item.model_dump(mode="json")
        if inserted:
            await self.broadcaster.jukebox_inserted(payload)
        else:
            await self.broadcaster.jukebox_updated(payload)

    async def search(self, query: Optional[str], provider: MusicProvider) -> List[Track]:
        return await self.music.search(query, provider)

    async def get_settings(self, event_id: uuid.UUID) -> JukeboxSettingsRecord:
        """Settings row, created with defaults when missing"""
        async with self.db_manager.get_session() as session:
            row = await session.get(JukeboxSettings, event_id)
            if row is None:
                row = JukeboxSettings(event_id=event_id, is_active=True, provider=MusicProvider.SPOTIFY, vibe_filters=[])
                session.add(row)
                await session.flush()
            return to_record(JukeboxSettingsRecord, row)

    async def update_settings(
        self, principal: Optional[Principal], event: EventRecord, update: JukeboxSettingsUpdate
    ) -> JukeboxSettingsRecord:
        ensure_owner_or_admin(principal, event.creator_id)
        await self.get_settings(event.id)
        async with self.db_manager.get_session() as session:
            row = await session.get(JukeboxSettings, event.id)
            for key, value in update.model_dump(exclude_none=True).items():
                setattr(row, key, value)
            await session.flush()
            record = to_record(JukeboxSettingsRecord, row)
        logger.info("Jukebox settings updated", extra={"event_id": str(event.id), "provider": record.provider.value})
        return record

    async def list_queue(self, event_id: uuid.UUID) -> List[JukeboxItemRecord]:
        """Pending requests in play order"""
        async with self.db_manager.get_session() as session:
            rows = await BaseRepository(session, JukeboxQueueItem).list_where(
                JukeboxQueueItem.event_id == event_id,
                JukeboxQueueItem.status == QueueItemStatus.PENDING,
                order_by=[JukeboxQueueItem.votes.desc(), JukeboxQueueItem.created_at.asc()],
            )
            return sort_queue(to_record(JukeboxItemRecord, row) for row in rows)

    async def _lookup_genre(self, track: Track) -> str:
        if track.provider != MusicProvider.SPOTIFY or not track.artist:
            return UNKNOWN_GENRE
        artist = track.artist.split(",")[0].strip()
        try:
            genres = await self.music.get_artist_genres([artist])
        except Exception as e:
            logger.warning(f"Genre lookup failed for {artist}: {e}")
            return UNKNOWN_GENRE
        return genres.get(artist) or UNKNOWN_GENRE

    async def add_to_queue(self, event: EventRecord, track: Track, participant_id: str) -> JukeboxItemRecord:
        """Request a song; the requester's request counts as the first vote"""
        ensure_writable(event)
        await self.features.require_feature(event.creator_id, "playlist")

        settings = await self.get_settings(event.id)
        pending = await self.list_queue(event.id)
        if is_duplicate(track, pending, settings.provider):
            raise DuplicateTrackError(f"'{track.title}' is already in the queue")

        genre = await self._lookup_genre(track)

        async with self.db_manager.get_session() as session:
            row = await BaseRepository(session, JukeboxQueueItem).create(
                event_id=event.id,
                track_id=track.id,
                title=track.title,
                artist=track.artist,
                album_art=track.album_art,
                preview_url=track.preview_url,
                genre=genre,
                votes=1,
                voters=[participant_id],
                provider=track.provider,
                status=QueueItemStatus.PENDING,
                created_at=utcnow(),
            )
            record = to_record(JukeboxItemRecord, row)

        logger.info(
            "Track queued",
            extra={"event_id": str(event.id), "track_id": track.id, "provider": track.provider.value}
        )
        await self._publish(record, inserted=True)
        return record

    async def _load_item_with_event(self, session, item_id: uuid.UUID):
        item = await session.get(JukeboxQueueItem, item_id)
        if item is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        event = await session.get(Event, item.event_id)
        return item, to_record(EventRecord, event)

    async def vote(self, item_id: uuid.UUID, participant_id: str) -> JukeboxItemRecord:
        """Add one vote with an atomic increment"""
        async with self.db_manager.get_session() as session:
            item, event = await self._load_item_with_event(session, item_id)
            ensure_writable(event)
            if item.status != QueueItemStatus.PENDING:
                raise VoteError("Only pending requests can be voted on")

            voters = list(item.voters or [])
            if self.enforce_single_vote and participant_id in voters:
                raise VoteError("You already voted for this song")

            await session.execute(
                sa.update(JukeboxQueueItem)
                .where(JukeboxQueueItem.id == item_id)
                .values(votes=JukeboxQueueItem.votes + 1)
                .execution_options(synchronize_session=False)
            )
            if participant_id not in voters:
                item.voters = voters + [participant_id]
            await session.flush()
            await session.refresh(item)
            record = to_record(JukeboxItemRecord, item)

        await self._publish(record)
        return record

    async def mark_played(self, principal: Optional[Principal], item_id: uuid.UUID) -> JukeboxItemRecord:
        async with self.db_manager.get_session() as session:
            item, event = await self._load_item_with_event(session, item_id)
            ensure_owner_or_admin(principal, event.creator_id)
            item.status = QueueItemStatus.PLAYED
            await session.flush()
            record = to_record(JukeboxItemRecord, item)

        await self._publish(record)
        if self.broadcaster is not None:
            await self.broadcaster.now_playing(record.event_id, record.model_dump(mode="json"))
        return record


class JukeboxQueueView:
    """Optimistic local copy of an event's pending queue.

    Votes are applied locally at once, persisted through ``persist`` and
    rolled back when persisting fails. ``reconcile`` replaces local state
    with the authoritative list pushed by the server.
    """

    def __init__(self, items: Iterable[JukeboxItemRecord] = ()):
        self._items = {item.id: item for item in items}

    @property
    def items(self) -> List[JukeboxItemRecord]:
        return sort_queue(self._items.values())

    def get(self, item_id: uuid.UUID) -> Optional[JukeboxItemRecord]:
        return self._items.get(item_id)

    def apply_vote(self, item_id: uuid.UUID) -> JukeboxItemRecord:
        item = self._items[item_id]
        updated = item.model_copy(update={"votes": item.votes + 1})
        self._items[item_id] = updated
        return updated

    def rollback(self, item_id: uuid.UUID) -> None:
        item = self._items.get(item_id)
        if item is not None and item.votes > 0:
            self._items[item_id] = item.model_copy(update={"votes": item.votes - 1})

    def reconcile(self, items: Iterable[JukeboxItemRecord]) -> None:
        self._items = {
            item.id: item for item in items if item.status == QueueItemStatus.PENDING
        }

    def apply_update(self, item: JukeboxItemRecord) -> None:
        """Apply a single pushed row"""
        if item.status == QueueItemStatus.PENDING:
            self._items[item.id] = item
        else:
            self._items.pop(item.id, None)

    async def vote(self, item_id: uuid.UUID, persist: Callable[[uuid.UUID], Awaitable[object]]) -> JukeboxItemRecord:
        if item_id not in self._items:
            raise VoteError(f"Unknown queue item {item_id}")
        updated = self.apply_vote(item_id)
        try:
            await persist(item_id)
        except Exception as e:
            self.rollback(item_id)
            logger.warning(f"Vote for {item_id} rolled back: {e}")
            raise VoteError(f"Vote could not be saved: {e}") from e
        return updated
