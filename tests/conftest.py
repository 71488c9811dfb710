"""
Shared pytest fixtures.

Uses a file-backed SQLite database so no Postgres is required for tests.
Engine-level helpers (`make_event`, `make_goal`, ...) build canonical records
for unit tests that run the engine against the in-memory provider.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_coachcards.db")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import coachcards.models  # noqa: F401  (registers every table on Base.metadata)
from coachcards.db.base import Base, get_db
from coachcards.main import app
from coachcards.services.canonical import (
    CanonicalBehavior,
    CanonicalChild,
    CanonicalGoal,
    EventCategory,
    UnifiedEvent,
)
from coachcards.services.coaching_engine import CoachingEngine, InMemoryDataProvider
from coachcards.services.cooldowns import CooldownStore, InMemoryCooldownBackend

SQLITE_URL = "sqlite:///./test_coachcards.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed evaluation instant shared by the engine unit tests.
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Canonical record builders
# ---------------------------------------------------------------------------

def make_child(child_id: str = "c1", name: str = "Emma") -> CanonicalChild:
    return CanonicalChild(id=child_id, name=name)


def make_event(
    event_id: str,
    days_ago: float,
    category: EventCategory = EventCategory.positive,
    behavior_id: str = "b-positive",
    stars: int = 1,
    child_id: str = "c1",
    now: datetime = NOW,
    behavior_name: str = "Helped out",
) -> UnifiedEvent:
    if category is EventCategory.negative and stars > 0:
        stars = -stars
    return UnifiedEvent(
        id=event_id,
        child_id=child_id,
        timestamp=now - timedelta(days=days_ago),
        category=category,
        stars_delta=stars,
        behavior_type_id=behavior_id,
        behavior_name=behavior_name,
    )


def make_goal(
    goal_id: str = "g1",
    target: int = 100,
    current: int = 0,
    due_in_days: float | None = None,
    child_id: str = "c1",
    name: str = "Zoo trip",
    now: datetime = NOW,
    **kwargs,
) -> CanonicalGoal:
    return CanonicalGoal(
        id=goal_id,
        child_id=child_id,
        name=name,
        target_points=target,
        current_points=current,
        created_date=now - timedelta(days=30),
        due_date=now + timedelta(days=due_in_days) if due_in_days is not None else None,
        **kwargs,
    )


def make_routine(behavior_id: str = "b-teeth", name: str = "Brushed teeth", **kwargs) -> CanonicalBehavior:
    return CanonicalBehavior(id=behavior_id, name=name, category=EventCategory.routine_positive, **kwargs)


def make_engine(
    events=(),
    goals=(),
    behaviors=(),
    children=None,
    backend: InMemoryCooldownBackend | None = None,
) -> CoachingEngine:
    provider = InMemoryDataProvider(
        children=children if children is not None else [make_child()],
        events=events,
        goals=goals,
        behaviors=behaviors,
    )
    return CoachingEngine(provider, CooldownStore(backend or InMemoryCooldownBackend()))
