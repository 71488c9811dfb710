"""
Signal detectors — the five deterministic behavioral patterns.

Signals (evaluated on every generate/debug call, all windows anchored on `now`)
-------------------------------------------------------------------------------
  1. GOAL_AT_RISK
     Trigger : deadline goal, active, >= 1 day left, >= 2 positives in 14 days,
               and 7-day pace < 70% of the pace still needed
     Evidence: positive events of the last 7 days

  2. GOAL_STALLED
     Trigger : active goal, >= 3 positives in 14 days, none in the last 5 days
     Evidence: positive events of the last 14 days

  3. ROUTINE_FORMING
     Trigger : routine behavior with >= 3 events in 14 days and >= 4 events
               in 7 days spread over >= 3 distinct calendar days
     Evidence: the behavior's 7-day events

  4. ROUTINE_SLIPPING
     Trigger : routine behavior with >= 3 events in days 7-14 ago, a recent
               rate under half the older rate, and >= 3 days since the last one
     Evidence: the behavior's 14-day events, newest first

  5. HIGH_CHALLENGE_WEEK
     Trigger : >= 3 events in 7 days and challenges >= positives
               (or >= 3 challenges with no positives at all)
     Evidence: challenge then positive events of the last 7 days

Detectors never raise. A miss is a `SignalResult` with `triggered=False`,
confidence 0, empty evidence, and an explanation for the debug report.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from coachcards.services.canonical import (
    GOAL_STALLED_DAYS,
    HIGH_CHALLENGE_THRESHOLD,
    MIN_EVENTS_FOR_GOAL_AT_RISK,
    MIN_EVENTS_FOR_INSIGHT,
    RECENT_DAYS,
    ROUTINE_FORMING_MIN_DISTINCT_DAYS,
    ROUTINE_FORMING_THRESHOLD,
    ROUTINE_SLIPPING_GAP_DAYS,
    AnalysisWindow,
    CanonicalBehavior,
    CanonicalGoal,
    InsightEvidence,
    active_only,
    whole_days_between,
    window_start,
)
from coachcards.services.prefilter import PreFilteredEvents


# ---------------------------------------------------------------------------
# Signal types
# ---------------------------------------------------------------------------

class SignalType(str, enum.Enum):
    goal_at_risk = "goal_at_risk"
    goal_stalled = "goal_stalled"
    routine_forming = "routine_forming"
    routine_slipping = "routine_slipping"
    high_challenge_week = "high_challenge_week"


# Share of the needed pace below which a goal counts as at risk.
_AT_RISK_PACE_FACTOR = 0.7
# Recent/older rate ratio below which a routine counts as slipping.
_SLIPPING_RATE_FACTOR = 0.5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SignalMetadata:
    """Signal-specific values used for template variables."""
    goal_id: Optional[str] = None
    goal_name: Optional[str] = None
    behavior_id: Optional[str] = None
    behavior_name: Optional[str] = None
    days_remaining: Optional[int] = None
    progress: Optional[float] = None
    count: Optional[int] = None
    days_since_occurrence: Optional[int] = None

    @property
    def primary_entity_id(self) -> Optional[str]:
        return self.goal_id or self.behavior_id

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class SignalResult:
    signal_type: SignalType
    triggered: bool
    confidence: float
    evidence: InsightEvidence
    explanation: str
    metadata: SignalMetadata = field(default_factory=SignalMetadata)

    @classmethod
    def not_triggered(cls, signal_type: SignalType, reason: str) -> "SignalResult":
        return cls(
            signal_type=signal_type,
            triggered=False,
            confidence=0.0,
            evidence=InsightEvidence.empty(),
            explanation=reason,
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# ---------------------------------------------------------------------------
# Goal signals
# ---------------------------------------------------------------------------

def detect_goal_at_risk(goal: CanonicalGoal, events: PreFilteredEvents) -> SignalResult:
    now = events.now
    days_remaining = goal.days_remaining(now)
    if (
        not goal.has_deadline
        or not goal.is_active
        or days_remaining is None
        or days_remaining <= 0
    ):
        return SignalResult.not_triggered(
            SignalType.goal_at_risk, "Goal has no deadline, is completed, or expired"
        )

    window_events = events.positive_in_14_days
    if len(window_events) < MIN_EVENTS_FOR_GOAL_AT_RISK:
        return SignalResult.not_triggered(
            SignalType.goal_at_risk,
            f"Insufficient events ({len(window_events)} < {MIN_EVENTS_FOR_GOAL_AT_RISK})",
        )

    points_needed = goal.points_needed
    if points_needed <= 0:
        return SignalResult.not_triggered(
            SignalType.goal_at_risk, "Goal is already complete or nearly complete"
        )

    pace_needed = points_needed / days_remaining
    recent = events.positive_in_7_days
    current_pace = sum(e.stars_delta for e in recent) / RECENT_DAYS

    if current_pace >= pace_needed * _AT_RISK_PACE_FACTOR:
        return SignalResult.not_triggered(
            SignalType.goal_at_risk, f"Current pace ({current_pace:.1f}/day) is sufficient"
        )

    return SignalResult(
        signal_type=SignalType.goal_at_risk,
        triggered=True,
        confidence=_clamp(1.0 - current_pace / pace_needed),
        evidence=InsightEvidence.from_events(recent, AnalysisWindow.SEVEN_DAYS),
        explanation=(
            f"Goal '{goal.name}' is at risk: need {points_needed} points "
            f"in {days_remaining} days"
        ),
        metadata=SignalMetadata(
            goal_id=goal.id,
            goal_name=goal.name,
            days_remaining=days_remaining,
            progress=goal.progress,
            count=len(recent),
        ),
    )


def detect_goal_stalled(goal: CanonicalGoal, events: PreFilteredEvents) -> SignalResult:
    now = events.now
    if not goal.is_active:
        return SignalResult.not_triggered(SignalType.goal_stalled, "Goal is completed or expired")

    window_events = events.positive_in_14_days
    if len(window_events) < MIN_EVENTS_FOR_INSIGHT:
        return SignalResult.not_triggered(
            SignalType.goal_stalled, "Insufficient events in 14-day window"
        )

    recent = events.positives_since(GOAL_STALLED_DAYS)
    if recent:
        return SignalResult.not_triggered(
            SignalType.goal_stalled,
            f"Found {len(recent)} events in last {GOAL_STALLED_DAYS} days",
        )

    last = events.last_positive()
    if last is None:
        return SignalResult.not_triggered(SignalType.goal_stalled, "No events found for this child")

    days_since = max(0, whole_days_between(last.timestamp, now))
    return SignalResult(
        signal_type=SignalType.goal_stalled,
        triggered=True,
        confidence=min(1.0, days_since / 10.0),
        evidence=InsightEvidence.from_events(window_events, AnalysisWindow.FOURTEEN_DAYS),
        explanation=f"Goal '{goal.name}' has stalled: no progress in {days_since} days",
        metadata=SignalMetadata(
            goal_id=goal.id,
            goal_name=goal.name,
            days_remaining=goal.days_remaining(now),
            progress=goal.progress,
            count=len(window_events),
            days_since_occurrence=days_since,
        ),
    )


# ---------------------------------------------------------------------------
# Routine signals
# ---------------------------------------------------------------------------

def detect_routine_forming(behavior: CanonicalBehavior, events: PreFilteredEvents) -> SignalResult:
    if not behavior.is_routine:
        return SignalResult.not_triggered(
            SignalType.routine_forming, "Behavior is not a routine type"
        )

    events_14 = events.behavior_events_in_14_days(behavior.id)
    if len(events_14) < MIN_EVENTS_FOR_INSIGHT:
        return SignalResult.not_triggered(
            SignalType.routine_forming,
            f"Insufficient events ({len(events_14)} < {MIN_EVENTS_FOR_INSIGHT})",
        )

    recent = events.behavior_events_in_7_days(behavior.id)
    if len(recent) < ROUTINE_FORMING_THRESHOLD:
        return SignalResult.not_triggered(
            SignalType.routine_forming,
            f"Not frequent enough ({len(recent)} < {ROUTINE_FORMING_THRESHOLD} in 7 days)",
        )

    distinct_days = {e.timestamp.date() for e in recent}
    if len(distinct_days) < ROUTINE_FORMING_MIN_DISTINCT_DAYS:
        return SignalResult.not_triggered(
            SignalType.routine_forming,
            f"Not consistent enough (only {len(distinct_days)} unique days)",
        )

    return SignalResult(
        signal_type=SignalType.routine_forming,
        triggered=True,
        confidence=min(1.0, len(recent) / 7.0),
        evidence=InsightEvidence.from_events(recent, AnalysisWindow.SEVEN_DAYS),
        explanation=f"Routine '{behavior.name}' is forming: {len(recent)} times in 7 days",
        metadata=SignalMetadata(
            behavior_id=behavior.id,
            behavior_name=behavior.name,
            count=len(recent),
        ),
    )


def detect_routine_slipping(behavior: CanonicalBehavior, events: PreFilteredEvents) -> SignalResult:
    now = events.now
    if not behavior.is_routine:
        return SignalResult.not_triggered(
            SignalType.routine_slipping, "Behavior is not a routine type"
        )

    history = sorted(
        events.behavior_events_in_14_days(behavior.id),
        key=lambda e: e.timestamp,
        reverse=True,
    )
    if len(history) < MIN_EVENTS_FOR_INSIGHT:
        return SignalResult.not_triggered(
            SignalType.routine_slipping, "Insufficient events to establish routine"
        )

    seven_days_ago = window_start(now, AnalysisWindow.SEVEN_DAYS)
    fourteen_days_ago = window_start(now, AnalysisWindow.FOURTEEN_DAYS)
    older = [e for e in history if fourteen_days_ago <= e.timestamp < seven_days_ago]
    recent = [e for e in history if e.timestamp >= seven_days_ago]

    if len(older) < MIN_EVENTS_FOR_INSIGHT:
        return SignalResult.not_triggered(
            SignalType.routine_slipping, "No established pattern in older window"
        )

    older_rate = len(older) / RECENT_DAYS
    recent_rate = len(recent) / RECENT_DAYS
    if recent_rate >= older_rate * _SLIPPING_RATE_FACTOR:
        return SignalResult.not_triggered(
            SignalType.routine_slipping,
            "Recent rate not significantly lower than older rate",
        )

    days_since = max(0, whole_days_between(history[0].timestamp, now))
    if days_since < ROUTINE_SLIPPING_GAP_DAYS:
        return SignalResult.not_triggered(
            SignalType.routine_slipping, f"Gap ({days_since} days) not long enough"
        )

    return SignalResult(
        signal_type=SignalType.routine_slipping,
        triggered=True,
        confidence=min(1.0, days_since / 7.0),
        evidence=InsightEvidence.from_events(history, AnalysisWindow.FOURTEEN_DAYS),
        explanation=(
            f"Routine '{behavior.name}' is slipping: {days_since} days since last occurrence"
        ),
        metadata=SignalMetadata(
            behavior_id=behavior.id,
            behavior_name=behavior.name,
            count=len(recent),
            days_since_occurrence=days_since,
        ),
    )


# ---------------------------------------------------------------------------
# Challenge signal
# ---------------------------------------------------------------------------

def detect_high_challenge_week(events: PreFilteredEvents) -> SignalResult:
    positives = events.positive_in_7_days
    challenges = events.challenges_in_7_days
    total = len(positives) + len(challenges)

    if total < MIN_EVENTS_FOR_INSIGHT:
        return SignalResult.not_triggered(
            SignalType.high_challenge_week,
            f"Insufficient total events ({total} < {MIN_EVENTS_FOR_INSIGHT})",
        )

    if not positives:
        if len(challenges) < MIN_EVENTS_FOR_INSIGHT:
            return SignalResult.not_triggered(
                SignalType.high_challenge_week, "Not enough challenges to qualify"
            )
        return SignalResult(
            signal_type=SignalType.high_challenge_week,
            triggered=True,
            confidence=1.0,
            evidence=InsightEvidence.from_events(challenges, AnalysisWindow.SEVEN_DAYS),
            explanation=f"High challenge week: {len(challenges)} challenges and 0 positives",
            metadata=SignalMetadata(count=len(challenges)),
        )

    ratio = len(challenges) / len(positives)
    if ratio < HIGH_CHALLENGE_THRESHOLD:
        return SignalResult.not_triggered(
            SignalType.high_challenge_week,
            f"Challenge ratio ({ratio:.2f}) below threshold",
        )

    return SignalResult(
        signal_type=SignalType.high_challenge_week,
        triggered=True,
        confidence=min(1.0, ratio / 2.0),
        evidence=InsightEvidence.from_events(challenges + positives, AnalysisWindow.SEVEN_DAYS),
        explanation=(
            f"High challenge week: {len(challenges)} challenges vs {len(positives)} positives"
        ),
        metadata=SignalMetadata(count=len(challenges)),
    )


# ---------------------------------------------------------------------------
# Run all detectors
# ---------------------------------------------------------------------------

def detect_all(
    goals: list[CanonicalGoal],
    routine_behaviors: list[CanonicalBehavior],
    events: PreFilteredEvents,
) -> list[SignalResult]:
    """
    Run every detector in a fixed order: per active goal (at risk, stalled),
    per routine behavior (forming, slipping), then the challenge signal.
    """
    results: list[SignalResult] = []
    for goal in active_only(goals):
        results.append(detect_goal_at_risk(goal, events))
        results.append(detect_goal_stalled(goal, events))
    for behavior in routine_behaviors:
        results.append(detect_routine_forming(behavior, events))
        results.append(detect_routine_slipping(behavior, events))
    results.append(detect_high_challenge_week(events))
    return results
