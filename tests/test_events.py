"""Tests for the event lifecycle"""
import pytest
import re
from datetime import timedelta

from conftest import StubAnalyzer, make_event, subscribe, approve
from eventsnaps.events import EventService, generate_event_code, is_expired, ensure_writable, to_response
from eventsnaps.exceptions import (
    AuthorizationError, EventExpiredError, FeatureNotAvailableError, NotFoundError
)
from eventsnaps.features import FeatureGate
from eventsnaps.models import EventStatus, JukeboxSettings, MusicProvider, PhotoStatus
from eventsnaps.moderation import ModerationOrchestrator
from eventsnaps.storage import LocalStorageProvider


@pytest.fixture
def event_service(db_manager, tmp_path):
    features = FeatureGate(db_manager)
    moderation = ModerationOrchestrator(db_manager, StubAnalyzer(approve(0.99)))
    return EventService(db_manager, features, LocalStorageProvider(str(tmp_path)), moderation,
                        max_upload_bytes=1024)


class TestEventCodes:
    """Tests for code generation and expiry helpers"""

    def test_code_format(self):
        for _ in range(50):
            assert re.fullmatch(r"[A-Z0-9]{6}", generate_event_code())

    async def test_expiry_is_strict(self, db_manager):
        """Test an event is expired only after expires_at"""
        event = await make_event(db_manager)
        assert not is_expired(event, event.expires_at)
        assert is_expired(event, event.expires_at + timedelta(microseconds=1))

    async def test_ensure_writable(self, db_manager):
        event = await make_event(db_manager, expires_in=timedelta(seconds=-1))
        with pytest.raises(EventExpiredError):
            ensure_writable(event)


class TestCreateEvent:
    """Tests for event creation and lookup"""

    async def test_create_event(self, event_service, db_manager):
        """Test creation sets expiry and default jukebox settings"""
        event = await event_service.create_event("72h", True, "owner-1")

        assert re.fullmatch(r"[A-Z0-9]{6}", event.code)
        assert event.status == EventStatus.ACTIVE
        assert event.moderation_enabled is True
        assert event.expires_at - event.created_at == timedelta(hours=72)

        async with db_manager.get_session() as session:
            settings = await session.get(JukeboxSettings, event.id)
        assert settings.provider == MusicProvider.SPOTIFY
        assert settings.is_active is True

    async def test_create_event_unknown_duration(self, event_service):
        with pytest.raises(ValueError):
            await event_service.create_event("1w", False, "owner-1")

    async def test_lookup_is_case_insensitive(self, event_service):
        event = await event_service.create_event("24h", False, "owner-1")
        found = await event_service.get_event_by_code(event.code.lower())
        assert found.id == event.id

    async def test_unknown_code_returns_none(self, event_service):
        assert await event_service.get_event_by_code("NOPE00") is None
        with pytest.raises(NotFoundError):
            await event_service.require_event("NOPE00")

    async def test_response_flags_expiry(self, db_manager):
        event = await make_event(db_manager, expires_in=timedelta(hours=-1))
        assert to_response(event).is_expired is True

    async def test_list_events_for_creator(self, event_service):
        await event_service.create_event("24h", False, "owner-1")
        await event_service.create_event("24h", False, "owner-1")
        await event_service.create_event("24h", False, "someone-else")

        events = await event_service.list_events_for_creator("owner-1")
        assert len(events) == 2
        assert all(e.creator_id == "owner-1" for e in events)


class TestDeleteEvent:
    """Tests for soft deletion"""

    async def test_owner_can_delete(self, event_service, owner):
        event = await event_service.create_event("24h", False, owner.user_id)
        deleted = await event_service.delete_event(owner, event.code)

        assert deleted.status == EventStatus.EXPIRED
        assert await event_service.get_event_by_code(event.code) is None

    async def test_admin_can_delete(self, event_service, admin):
        event = await event_service.create_event("24h", False, "owner-1")
        deleted = await event_service.delete_event(admin, event.code)
        assert deleted.status == EventStatus.EXPIRED

    async def test_other_user_cannot_delete(self, event_service, guest):
        event = await event_service.create_event("24h", False, "owner-1")
        with pytest.raises(AuthorizationError):
            await event_service.delete_event(guest, event.code)
        assert await event_service.get_event_by_code(event.code) is not None


class TestPhotoUpload:
    """Tests for photo uploads and visibility"""

    async def test_upload_without_moderation_is_approved(self, event_service, db_manager, plans, owner):
        await subscribe(db_manager, owner.user_id, "pro")
        event = await make_event(db_manager, creator_id=owner.user_id, moderation_enabled=False)

        photo, queue_item = await event_service.upload_photo(event, b"jpegbytes", "party.JPG", "image/jpeg")

        assert photo.status == PhotoStatus.APPROVED
        assert queue_item is None
        assert photo.storage_path.startswith(f"{event.id}/")
        assert photo.storage_path.endswith(".jpg")

    async def test_upload_with_moderation_is_pending(self, event_service, pro_event):
        photo, queue_item = await event_service.upload_photo(pro_event, b"jpegbytes", "party.jpg", caption="Hi")

        assert photo.status == PhotoStatus.PENDING
        assert photo.caption == "Hi"
        assert queue_item is not None
        assert queue_item.processed is False
        assert queue_item.photo_id == photo.id

    async def test_upload_requires_gallery_feature(self, event_service, db_manager, plans):
        """Test the default plan has no gallery"""
        event = await make_event(db_manager, creator_id="free-user")
        with pytest.raises(FeatureNotAvailableError):
            await event_service.upload_photo(event, b"jpegbytes", "party.jpg")

    async def test_upload_to_expired_event(self, event_service, db_manager, plans, owner):
        await subscribe(db_manager, owner.user_id, "pro")
        event = await make_event(db_manager, creator_id=owner.user_id, expires_in=timedelta(minutes=-5))
        with pytest.raises(EventExpiredError):
            await event_service.upload_photo(event, b"jpegbytes", "party.jpg")

    async def test_upload_size_limit(self, event_service, pro_event):
        with pytest.raises(ValueError):
            await event_service.upload_photo(pro_event, b"x" * 2048, "big.jpg")

    async def test_guests_only_see_approved_photos(self, event_service, db_manager, pro_event, owner, guest, admin):
        await event_service.upload_photo(pro_event, b"one", "a.jpg")
        await event_service.moderation.submit_photo(
            pro_event.model_copy(update={"moderation_enabled": False}), storage_path="b.jpg"
        )

        assert len(await event_service.list_photos(pro_event)) == 1
        assert len(await event_service.list_photos(pro_event, guest)) == 1
        assert len(await event_service.list_photos(pro_event, owner)) == 2
        assert len(await event_service.list_photos(pro_event, admin)) == 2
