"""
Canonical data model for the insights engine.

Every app record (logged moment, reward, behavior type, child) is adapted to
one of the immutable shapes below before detection starts. Nothing in the
engine reads app records directly, and nothing here is ever mutated.

All timestamps are normalised to timezone-aware UTC on construction so that
the 7/14-day window arithmetic is consistent regardless of the source
(SQLite hands back naive datetimes, API payloads usually carry an offset).

Public API
----------
UnifiedEvent, CanonicalGoal, CanonicalBehavior, CanonicalChild
EventCategory, AnalysisWindow, InsightEvidence
as_utc(dt), shift(dt, delta), supported_time(dt), window_start(now, window)
active_only(goals), with_deadlines(goals), at_risk(goals, now)
minimum_evidence(template_id)
"""
from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


# ---------------------------------------------------------------------------
# Engine constants (fixed, not configurable)
# ---------------------------------------------------------------------------

MIN_EVENTS_FOR_INSIGHT = 3
MIN_EVENTS_FOR_GOAL_AT_RISK = 2
MAX_CARDS_OUTPUT = 6
COOLDOWN_DAYS = 3
COOLDOWN_RETENTION_DAYS = 30
RECENT_DAYS = 7
ROUTINE_HISTORY_DAYS = 14
HIGH_CHALLENGE_THRESHOLD = 1.0
ROUTINE_FORMING_THRESHOLD = 4
ROUTINE_FORMING_MIN_DISTINCT_DAYS = 3
ROUTINE_SLIPPING_GAP_DAYS = 3
GOAL_STALLED_DAYS = 5
MAX_RISK_CARDS = 1
MAX_IMPROVEMENT_CARDS = 2
CARD_LIFETIME_DAYS = 1

# Points per remaining day above which a deadline goal counts as at risk.
_AT_RISK_POINTS_PER_DAY = 3.0

INSUFFICIENT_DATA_TEMPLATE_ID = "insufficient_data"
GOAL_AT_RISK_TEMPLATE_ID = "goal_at_risk"


def minimum_evidence(template_id: str) -> int:
    """Minimum evidence-event count a card of this template must carry."""
    if template_id == GOAL_AT_RISK_TEMPLATE_ID:
        return MIN_EVENTS_FOR_GOAL_AT_RISK
    if template_id == INSUFFICIENT_DATA_TEMPLATE_ID:
        return 0
    return MIN_EVENTS_FOR_INSIGHT


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

_UTC_MIN = datetime.min.replace(tzinfo=timezone.utc)
_UTC_MAX = datetime.max.replace(tzinfo=timezone.utc)

# Instants accepted from callers (evaluation `now`, display `at`). Every
# window, cooldown end and card expiry computed from them stays representable.
EARLIEST_SUPPORTED_TIME = datetime(1970, 1, 1, tzinfo=timezone.utc)
LATEST_SUPPORTED_TIME = datetime(9000, 1, 1, tzinfo=timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Return `dt` as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def shift(dt: datetime, delta: timedelta) -> datetime:
    """`dt + delta`, saturating at the ends of the datetime range."""
    try:
        return dt + delta
    except OverflowError:
        return _UTC_MAX if delta > timedelta(0) else _UTC_MIN


def supported_time(dt: datetime) -> datetime:
    """`dt` as UTC; raises ValueError outside [EARLIEST, LATEST)_SUPPORTED_TIME."""
    try:
        value = as_utc(dt)
    except OverflowError:
        raise ValueError(f"{dt.isoformat()} is outside the supported time range") from None
    if not EARLIEST_SUPPORTED_TIME <= value < LATEST_SUPPORTED_TIME:
        raise ValueError(
            f"{value.isoformat()} is outside the supported time range "
            f"[{EARLIEST_SUPPORTED_TIME.isoformat()}, {LATEST_SUPPORTED_TIME.isoformat()})"
        )
    return value


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from `start` to `end`, truncated toward zero."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    days = int(abs(seconds) // 86400)
    return days if seconds >= 0 else -days


class AnalysisWindow(enum.IntEnum):
    """Standard look-back windows, in days."""
    SEVEN_DAYS = RECENT_DAYS
    FOURTEEN_DAYS = ROUTINE_HISTORY_DAYS
    THIRTY_DAYS = COOLDOWN_RETENTION_DAYS

    def date_range(self, now: datetime) -> tuple[datetime, datetime]:
        """Inclusive [start, end] range anchored on `now`."""
        end = as_utc(now)
        return shift(end, -timedelta(days=int(self))), end


def window_start(now: datetime, window: AnalysisWindow) -> datetime:
    return window.date_range(now)[0]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class EventCategory(str, enum.Enum):
    routine_positive = "routinePositive"
    positive = "positive"
    negative = "negative"


@dataclass(frozen=True)
class UnifiedEvent:
    """One logged behavior occurrence."""
    id: str
    child_id: str
    timestamp: datetime
    category: EventCategory
    stars_delta: int
    behavior_type_id: str
    behavior_name: str
    linked_goal_id: Optional[str] = None
    caregiver_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))
        object.__setattr__(self, "category", EventCategory(self.category))

    @property
    def is_positive(self) -> bool:
        return self.category in (EventCategory.positive, EventCategory.routine_positive)

    @property
    def is_routine(self) -> bool:
        return self.category == EventCategory.routine_positive

    @property
    def is_challenge(self) -> bool:
        return self.category == EventCategory.negative


@dataclass(frozen=True)
class CanonicalGoal:
    """A reward/goal being tracked for a child."""
    id: str
    child_id: str
    name: str
    target_points: int
    current_points: int
    created_date: datetime
    due_date: Optional[datetime] = None
    is_redeemed: bool = False
    is_expired: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_date", as_utc(self.created_date))
        if self.due_date is not None:
            object.__setattr__(self, "due_date", as_utc(self.due_date))

    @property
    def has_deadline(self) -> bool:
        return self.due_date is not None

    @property
    def is_active(self) -> bool:
        return not self.is_redeemed and not self.is_expired

    @property
    def progress(self) -> float:
        if self.target_points <= 0:
            return 0.0
        return max(0.0, min(self.current_points / self.target_points, 1.0))

    @property
    def points_needed(self) -> int:
        return self.target_points - self.current_points

    def days_remaining(self, now: datetime) -> Optional[int]:
        """Whole days until the due date, floored at 0; None without a deadline."""
        if self.due_date is None:
            return None
        return max(0, whole_days_between(now, self.due_date))

    def is_at_risk(self, now: datetime) -> bool:
        remaining = self.days_remaining(now)
        if remaining is None or remaining <= 0 or self.points_needed <= 0:
            return False
        return self.points_needed / remaining > _AT_RISK_POINTS_PER_DAY


@dataclass(frozen=True)
class CanonicalBehavior:
    """A behavior type definition."""
    id: str
    name: str
    category: EventCategory
    default_points: int = 1
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", EventCategory(self.category))

    @property
    def is_routine(self) -> bool:
        return self.category == EventCategory.routine_positive


@dataclass(frozen=True)
class CanonicalChild:
    """Subject of analysis."""
    id: str
    name: str
    age: Optional[int] = None
    active_goal_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InsightEvidence:
    """Event ids cited as proof for a signal, and the window they came from."""
    event_ids: tuple[str, ...] = field(default_factory=tuple)
    window: AnalysisWindow = AnalysisWindow.SEVEN_DAYS
    count: int = 0

    @classmethod
    def from_events(cls, events: Iterable[UnifiedEvent], window: AnalysisWindow) -> "InsightEvidence":
        ids = tuple(e.id for e in events)
        return cls(event_ids=ids, window=window, count=len(ids))

    @classmethod
    def empty(cls) -> "InsightEvidence":
        return cls()


# ---------------------------------------------------------------------------
# Goal list helpers
# ---------------------------------------------------------------------------

def active_only(goals: Iterable[CanonicalGoal]) -> list[CanonicalGoal]:
    return [g for g in goals if g.is_active]


def with_deadlines(goals: Iterable[CanonicalGoal]) -> list[CanonicalGoal]:
    return [g for g in goals if g.has_deadline]


def at_risk(goals: Iterable[CanonicalGoal], now: datetime) -> list[CanonicalGoal]:
    return [g for g in goals if g.is_at_risk(now)]
