"""Test configuration and fixtures"""
import pytest
import os
import sys
import uuid
from datetime import timedelta
from typing import List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from eventsnaps.auth import Principal
from eventsnaps.config import Settings
from eventsnaps.database import DatabaseManager, to_record
from eventsnaps.models import *
from eventsnaps.schemas import AnalysisResult, EventRecord

TEST_JWT_SECRET = "test-secret"

FREE_FEATURES = {"gallery": False, "playlist": True, "tv_mode": False, "white_label": False, "max_storage_gb": 0.5}
PRO_FEATURES = {"gallery": True, "playlist": True, "tv_mode": True, "white_label": True, "max_storage_gb": 50}


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the developer's environment"""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="test",
        log_level="INFO",
        jwt_secret=TEST_JWT_SECRET,
        storage_path=str(tmp_path / "photos"),
        realtime_enabled=False,
        gemini_api_key=None,
        spotify_client_id=None,
        spotify_client_secret=None,
        youtube_api_key=None,
        backend_url=None,
        backend_anon_key=None,
        http_max_retries=0,
        moderation_retry_concurrency=1,
        jukebox_enforce_single_vote=False,
    )


@pytest.fixture
async def db_manager():
    """Fresh in-memory database per test"""
    manager = DatabaseManager()
    await manager.initialize("sqlite+aiosqlite:///:memory:")
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
async def test_session(db_manager):
    """Create test database session"""
    async with db_manager.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def plans(db_manager):
    """free / pro / trial_pro plans"""
    async with db_manager.get_session() as session:
        session.add_all([
            Plan(id="free", name="Free", features=FREE_FEATURES, price=0.0),
            Plan(id="pro", name="Pro", features=PRO_FEATURES, price=29.0),
            Plan(id="trial_pro", name="Pro Trial", features=PRO_FEATURES, price=0.0),
        ])
    return ["free", "pro", "trial_pro"]


@pytest.fixture
def owner():
    return Principal(user_id="owner-1")


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def guest():
    return Principal(user_id="guest-1")


async def subscribe(db_manager: DatabaseManager, user_id: str, plan_id: str,
                    status: SubscriptionStatus = SubscriptionStatus.ACTIVE, period_end=None):
    async with db_manager.get_session() as session:
        session.add(UserSubscription(
            user_id=user_id, plan_id=plan_id, status=status, current_period_end=period_end
        ))


async def make_event(
    db_manager: DatabaseManager,
    creator_id: str = "owner-1",
    moderation_enabled: bool = True,
    code: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=24),
) -> EventRecord:
    """Insert an event directly, bypassing code generation"""
    now = utcnow()
    async with db_manager.get_session() as session:
        event = Event(
            code=code or uuid.uuid4().hex[:6].upper(),
            creator_id=creator_id,
            moderation_enabled=moderation_enabled,
            status=EventStatus.ACTIVE,
            created_at=now,
            expires_at=now + expires_in,
        )
        session.add(event)
        await session.flush()
        session.add(JukeboxSettings(event_id=event.id, is_active=True, provider=MusicProvider.SPOTIFY))
        return to_record(EventRecord, event)


@pytest.fixture
async def pro_event(db_manager, plans, owner):
    """Moderated event owned by a pro subscriber"""
    await subscribe(db_manager, owner.user_id, "pro")
    return await make_event(db_manager, creator_id=owner.user_id, moderation_enabled=True)


class StubAnalyzer:
    """Analyzer returning canned results in order (the last one repeats)"""

    def __init__(self, *results: AnalysisResult):
        self.results: List[AnalysisResult] = list(results) or [
            AnalysisResult(suggestion=None, confidence=0.0, error_message="not configured")
        ]
        self.calls: List[str] = []

    async def analyze(self, storage_path: str) -> AnalysisResult:
        self.calls.append(storage_path)
        index = min(len(self.calls) - 1, len(self.results) - 1)
        return self.results[index]


def approve(confidence: float, reason: str = "Group photo at a party") -> AnalysisResult:
    return AnalysisResult(suggestion=ModerationDecision.APPROVE, confidence=confidence, reason=reason)


def reject(confidence: float, reason: str = "Explicit content") -> AnalysisResult:
    return AnalysisResult(suggestion=ModerationDecision.REJECT, confidence=confidence, reason=reason)


def failure(message: str = "Gemini API key not configured") -> AnalysisResult:
    return AnalysisResult(suggestion=None, confidence=0.0, error_message=message)
