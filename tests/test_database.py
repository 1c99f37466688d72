"""Tests for database utilities and operations"""
import pytest
import uuid
from datetime import timedelta

from eventsnaps.database import DatabaseManager, BaseRepository, check_database_health
from eventsnaps.exceptions import PersistenceError
from eventsnaps.models import Event, EventStatus, utcnow


def _event_kwargs(code="ROOM01", creator_id="owner-1"):
    return {"code": code, "creator_id": creator_id, "expires_at": utcnow() + timedelta(hours=24)}


class TestDatabaseManager:
    """Tests for DatabaseManager class"""

    async def test_initialize_database_manager(self):
        """Test database manager initialization"""
        manager = DatabaseManager()
        assert manager.engine is None
        assert manager.session_factory is None
        assert manager._initialized is False

        await manager.initialize("sqlite+aiosqlite:///:memory:")

        assert manager.engine is not None
        assert manager.session_factory is not None
        assert manager._initialized is True

        await manager.close()
        assert manager._initialized is False

    async def test_session_commits_on_success(self, db_manager):
        """Test get_session commits when the block exits cleanly"""
        async with db_manager.get_session() as session:
            session.add(Event(**_event_kwargs()))

        async with db_manager.get_session() as session:
            assert await BaseRepository(session, Event).count_where(Event.code == "ROOM01") == 1

    async def test_session_rolls_back_on_error(self, db_manager):
        """Test domain errors roll back and propagate unchanged"""
        with pytest.raises(RuntimeError):
            async with db_manager.get_session() as session:
                session.add(Event(**_event_kwargs()))
                await session.flush()
                raise RuntimeError("boom")

        async with db_manager.get_session() as session:
            assert await BaseRepository(session, Event).count_where() == 0

    async def test_integrity_error_becomes_persistence_error(self, db_manager):
        """Test duplicate codes surface as PersistenceError"""
        async with db_manager.get_session() as session:
            session.add(Event(**_event_kwargs()))

        with pytest.raises(PersistenceError):
            async with db_manager.get_session() as session:
                session.add(Event(**_event_kwargs(creator_id="someone-else")))


class TestBaseRepository:
    """Tests for BaseRepository class"""

    async def test_create_record(self, test_session):
        """Test creating a record using repository"""
        repo = BaseRepository(test_session, Event)

        event = await repo.create(**_event_kwargs())

        assert event.id is not None
        assert event.code == "ROOM01"
        assert event.status == EventStatus.ACTIVE

    async def test_get_by_id_not_found(self, test_session):
        repo = BaseRepository(test_session, Event)
        assert await repo.get_by_id(uuid.uuid4()) is None

    async def test_list_and_first_where(self, test_session):
        """Test filtered listing with ordering and limit"""
        repo = BaseRepository(test_session, Event)
        for i in range(3):
            await repo.create(**_event_kwargs(code=f"ROOM0{i}", creator_id="dj" if i < 2 else "other"))

        rows = await repo.list_where(Event.creator_id == "dj", order_by=Event.code.desc())
        assert [row.code for row in rows] == ["ROOM01", "ROOM00"]
        assert len(await repo.list_where(limit=2)) == 2
        assert (await repo.first_where(Event.creator_id == "other")).code == "ROOM02"
        assert await repo.first_where(Event.creator_id == "nobody") is None

    async def test_update_record(self, test_session):
        """Test updating a record"""
        repo = BaseRepository(test_session, Event)
        event = await repo.create(**_event_kwargs())

        updated = await repo.update(event.id, status=EventStatus.EXPIRED, not_a_column="ignored")

        assert updated.status == EventStatus.EXPIRED
        assert updated.code == "ROOM01"

    async def test_update_nonexistent_record(self, test_session):
        repo = BaseRepository(test_session, Event)
        assert await repo.update(uuid.uuid4(), status=EventStatus.EXPIRED) is None


class TestDatabaseHealthCheck:
    """Tests for database health check"""

    async def test_database_health_check_success(self, db_manager):
        result = await check_database_health(db_manager)
        assert result["status"] == "healthy"
        assert "successful" in result["message"]

    async def test_database_health_check_failure(self):
        """Test failed database health check"""
        manager = DatabaseManager()
        await manager.initialize("sqlite+aiosqlite:////nonexistent-dir/eventsnaps.db")

        result = await check_database_health(manager)

        assert result["status"] == "unhealthy"
        assert "failed" in result["message"]
        await manager.close()
