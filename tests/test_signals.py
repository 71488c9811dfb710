"""
Tests for the five signal detectors.

Covered scenarios:
  - goal at risk      — slow pace vs. deadline, confidence > 0.9
  - goal stalled      — positives in 14 days but none in the last 5
  - routine forming   — >= 4 times over >= 3 distinct days this week
  - routine slipping  — established older pattern, recent drop, 3+ day gap
  - high challenge    — challenges >= positives, or 3+ challenges with no positives

Additional:
  - every miss has confidence 0, empty evidence and an explanation
  - detect_all runs detectors in a fixed order and skips inactive goals
  - pre-filter windows are inclusive at both ends
  - goal list helpers, saturating time arithmetic, supported time range
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, make_event, make_goal, make_routine
from coachcards.services.canonical import (
    AnalysisWindow,
    CanonicalBehavior,
    EventCategory,
    active_only,
    at_risk,
    shift,
    supported_time,
    window_start,
    with_deadlines,
)
from coachcards.services.prefilter import PreFilteredEvents
from coachcards.services.signals import (
    SignalType,
    detect_all,
    detect_goal_at_risk,
    detect_goal_stalled,
    detect_high_challenge_week,
    detect_routine_forming,
    detect_routine_slipping,
)


def _index(events):
    return PreFilteredEvents(events, NOW)


def _positives(n: int, start_days_ago: float = 0.5, step: float = 1.0, stars: int = 1):
    return [make_event(f"p{i}", start_days_ago + i * step, stars=stars) for i in range(n)]


def _challenges(n: int, start_days_ago: float = 0.25):
    return [
        make_event(f"n{i}", start_days_ago + i, category=EventCategory.negative, behavior_id="b-tantrum")
        for i in range(n)
    ]


def _routine_events(days_ago: list[float], behavior_id: str = "b-teeth"):
    return [
        make_event(
            f"r{i}", d, category=EventCategory.routine_positive,
            behavior_id=behavior_id, behavior_name="Brushed teeth",
        )
        for i, d in enumerate(days_ago)
    ]


# ---------------------------------------------------------------------------
# Pre-filter index
# ---------------------------------------------------------------------------

class TestPreFilter:
    def test_window_bounds_are_inclusive(self):
        events = [
            make_event("edge7", 7),
            make_event("edge14", 14),
            make_event("past14", 14.001),
        ]
        idx = _index(events)
        assert [e.id for e in idx.in_7_days] == ["edge7"]
        assert {e.id for e in idx.in_14_days} == {"edge7", "edge14"}

    def test_partitions(self):
        events = _positives(2) + _challenges(1) + _routine_events([1.5])
        idx = _index(events)
        assert len(idx.positive_in_7_days) == 3  # routines count as positive
        assert len(idx.challenges_in_7_days) == 1
        assert len(idx.routines_in_7_days) == 1
        assert idx.event_ids == {"p0", "p1", "n0", "r0"}

    def test_by_behavior_grouping(self):
        idx = _index(_routine_events([1, 2, 10]))
        assert len(idx.behavior_events("b-teeth")) == 3
        assert len(idx.behavior_events_in_7_days("b-teeth")) == 2
        assert len(idx.behavior_events_in_14_days("b-teeth")) == 3
        assert idx.behavior_events("unknown") == []

    def test_last_positive(self):
        idx = _index(_positives(3, start_days_ago=2))
        assert idx.last_positive().id == "p0"
        assert _index([]).last_positive() is None


# ---------------------------------------------------------------------------
# Goal at risk
# ---------------------------------------------------------------------------

class TestGoalAtRisk:
    def test_slow_pace_triggers_with_high_confidence(self):
        goal = make_goal(target=100, current=20, due_in_days=5)
        result = detect_goal_at_risk(goal, _index(_positives(5)))
        assert result.triggered is True
        assert result.confidence > 0.9
        assert result.evidence.window == AnalysisWindow.SEVEN_DAYS
        assert result.evidence.count == 5
        assert result.metadata.goal_id == "g1"
        assert result.metadata.days_remaining == 5
        assert result.metadata.progress == pytest.approx(0.2)
        assert "need 80 points in 5 days" in result.explanation

    def test_no_deadline(self):
        goal = make_goal(target=100, current=20)
        result = detect_goal_at_risk(goal, _index(_positives(5)))
        assert result.triggered is False
        assert result.explanation == "Goal has no deadline, is completed, or expired"

    def test_past_deadline(self):
        goal = make_goal(target=100, current=20, due_in_days=-1)
        assert detect_goal_at_risk(goal, _index(_positives(5))).triggered is False

    def test_redeemed_goal(self):
        goal = make_goal(target=100, current=20, due_in_days=5, is_redeemed=True)
        assert detect_goal_at_risk(goal, _index(_positives(5))).triggered is False

    def test_needs_two_positive_events(self):
        goal = make_goal(target=100, current=20, due_in_days=5)
        result = detect_goal_at_risk(goal, _index(_positives(1)))
        assert result.triggered is False
        assert result.explanation == "Insufficient events (1 < 2)"

    def test_already_complete(self):
        goal = make_goal(target=100, current=100, due_in_days=5)
        result = detect_goal_at_risk(goal, _index(_positives(5)))
        assert result.triggered is False
        assert "complete" in result.explanation

    def test_sufficient_pace(self):
        goal = make_goal(target=20, current=0, due_in_days=10)
        events = _positives(14, start_days_ago=0.1, step=0.45)
        result = detect_goal_at_risk(goal, _index(events))
        assert result.triggered is False
        assert result.explanation == "Current pace (2.0/day) is sufficient"


# ---------------------------------------------------------------------------
# Goal stalled
# ---------------------------------------------------------------------------

class TestGoalStalled:
    def test_no_recent_progress_triggers(self):
        goal = make_goal()
        result = detect_goal_stalled(goal, _index(_positives(3, start_days_ago=6, step=2)))
        assert result.triggered is True
        assert result.confidence == pytest.approx(0.6)
        assert result.evidence.window == AnalysisWindow.FOURTEEN_DAYS
        assert result.evidence.count == 3
        assert result.metadata.days_since_occurrence == 6
        assert result.explanation == "Goal 'Zoo trip' has stalled: no progress in 6 days"

    def test_recent_event_blocks(self):
        events = _positives(3, start_days_ago=6, step=2) + [make_event("recent", 2)]
        result = detect_goal_stalled(make_goal(), _index(events))
        assert result.triggered is False
        assert result.explanation == "Found 1 events in last 5 days"

    def test_insufficient_events(self):
        result = detect_goal_stalled(make_goal(), _index(_positives(2, start_days_ago=6)))
        assert result.triggered is False
        assert result.explanation == "Insufficient events in 14-day window"

    def test_inactive_goal(self):
        goal = make_goal(is_expired=True)
        result = detect_goal_stalled(goal, _index(_positives(3, start_days_ago=6, step=2)))
        assert result.triggered is False


# ---------------------------------------------------------------------------
# Routine forming
# ---------------------------------------------------------------------------

class TestRoutineForming:
    def test_consistent_routine_triggers(self):
        behavior = make_routine()
        result = detect_routine_forming(behavior, _index(_routine_events([0.1, 1.1, 2.1, 3.1])))
        assert result.triggered is True
        assert result.confidence == pytest.approx(4 / 7)
        assert result.evidence.count == 4
        assert result.metadata.behavior_id == "b-teeth"
        assert result.explanation == "Routine 'Brushed teeth' is forming: 4 times in 7 days"

    def test_same_day_repeats_are_not_consistent(self):
        behavior = make_routine()
        result = detect_routine_forming(behavior, _index(_routine_events([0.01, 0.02, 0.03, 0.04])))
        assert result.triggered is False
        assert result.explanation == "Not consistent enough (only 1 unique days)"

    def test_not_frequent_enough(self):
        result = detect_routine_forming(make_routine(), _index(_routine_events([0.1, 1.1, 2.1])))
        assert result.triggered is False
        assert result.explanation == "Not frequent enough (3 < 4 in 7 days)"

    def test_non_routine_behavior(self):
        behavior = CanonicalBehavior(id="b-teeth", name="Brushed teeth", category=EventCategory.positive)
        result = detect_routine_forming(behavior, _index(_routine_events([0.1, 1.1, 2.1, 3.1])))
        assert result.triggered is False
        assert result.explanation == "Behavior is not a routine type"


# ---------------------------------------------------------------------------
# Routine slipping
# ---------------------------------------------------------------------------

class TestRoutineSlipping:
    def test_dropped_routine_triggers(self):
        result = detect_routine_slipping(make_routine(), _index(_routine_events([8, 9, 10, 11])))
        assert result.triggered is True
        assert result.confidence == 1.0
        assert result.evidence.window == AnalysisWindow.FOURTEEN_DAYS
        # newest first
        assert result.evidence.event_ids == ("r0", "r1", "r2", "r3")
        assert result.metadata.days_since_occurrence == 8
        assert result.metadata.count == 0

    def test_short_gap_does_not_trigger(self):
        events = _routine_events([1, 8, 9, 10, 11])
        result = detect_routine_slipping(make_routine(), _index(events))
        assert result.triggered is False
        assert result.explanation == "Gap (1 days) not long enough"

    def test_no_older_pattern(self):
        result = detect_routine_slipping(make_routine(), _index(_routine_events([4, 5, 8, 9])))
        assert result.triggered is False
        assert result.explanation == "No established pattern in older window"

    def test_recent_rate_holding_up(self):
        events = _routine_events([3.5, 4, 5, 8, 9, 10, 11])
        result = detect_routine_slipping(make_routine(), _index(events))
        assert result.triggered is False
        assert result.explanation == "Recent rate not significantly lower than older rate"


# ---------------------------------------------------------------------------
# High challenge week
# ---------------------------------------------------------------------------

class TestHighChallengeWeek:
    def test_three_to_one_ratio(self):
        events = _challenges(6) + _positives(2)
        result = detect_high_challenge_week(_index(events))
        assert result.triggered is True
        assert result.confidence == 1.0
        assert result.evidence.count == 8
        assert result.metadata.count == 6
        assert result.explanation == "High challenge week: 6 challenges vs 2 positives"

    def test_equal_counts_trigger_at_half_confidence(self):
        result = detect_high_challenge_week(_index(_challenges(2) + _positives(2)))
        assert result.triggered is True
        assert result.confidence == pytest.approx(0.5)

    def test_only_challenges(self):
        result = detect_high_challenge_week(_index(_challenges(3)))
        assert result.triggered is True
        assert result.confidence == 1.0
        assert result.explanation == "High challenge week: 3 challenges and 0 positives"

    def test_too_few_events(self):
        result = detect_high_challenge_week(_index(_challenges(2)))
        assert result.triggered is False
        assert result.explanation == "Insufficient total events (2 < 3)"

    def test_ratio_below_threshold(self):
        result = detect_high_challenge_week(_index(_challenges(1) + _positives(3)))
        assert result.triggered is False
        assert result.explanation == "Challenge ratio (0.33) below threshold"


# ---------------------------------------------------------------------------
# Shared properties
# ---------------------------------------------------------------------------

class TestMissesAreEmpty:
    @pytest.mark.parametrize("events", [
        [],
        _positives(1),
        _challenges(2),
        _routine_events([0.01, 0.02, 0.03, 0.04]),
    ])
    def test_not_triggered_means_zero_confidence_and_no_evidence(self, events):
        idx = _index(events)
        results = detect_all(
            [make_goal(target=100, current=20, due_in_days=5)], [make_routine()], idx
        )
        for result in results:
            if not result.triggered:
                assert result.confidence == 0.0
                assert result.evidence.event_ids == ()
                assert result.explanation


class TestDetectAll:
    def test_fixed_order(self):
        results = detect_all([make_goal()], [make_routine()], _index([]))
        assert [r.signal_type for r in results] == [
            SignalType.goal_at_risk,
            SignalType.goal_stalled,
            SignalType.routine_forming,
            SignalType.routine_slipping,
            SignalType.high_challenge_week,
        ]

    def test_inactive_goals_skipped(self):
        results = detect_all([make_goal(is_redeemed=True)], [], _index([]))
        assert [r.signal_type for r in results] == [SignalType.high_challenge_week]


class TestGoalHelpers:
    def test_is_at_risk_heuristic(self):
        assert make_goal(target=100, current=0, due_in_days=10).is_at_risk(NOW) is True
        assert make_goal(target=30, current=0, due_in_days=10).is_at_risk(NOW) is False
        assert make_goal(target=100, current=0).is_at_risk(NOW) is False

    def test_days_remaining_floors_at_zero(self):
        goal = make_goal(due_in_days=-3)
        assert goal.days_remaining(NOW) == 0
        assert goal.days_remaining(NOW + timedelta(days=1)) == 0

    def test_goal_list_helpers(self):
        goals = [
            make_goal("g-open", target=100, current=0),
            make_goal("g-easy", target=30, current=0, due_in_days=10),
            make_goal("g-behind", target=100, current=0, due_in_days=10),
            make_goal("g-done", target=100, current=0, due_in_days=10, is_redeemed=True),
        ]
        active = active_only(goals)
        assert [g.id for g in active] == ["g-open", "g-easy", "g-behind"]
        assert [g.id for g in with_deadlines(active)] == ["g-easy", "g-behind"]
        assert [g.id for g in at_risk(active, NOW)] == ["g-behind"]


class TestTimeHelpers:
    def test_window_start(self):
        assert window_start(NOW, AnalysisWindow.SEVEN_DAYS) == NOW - timedelta(days=7)
        assert window_start(NOW, AnalysisWindow.THIRTY_DAYS) == NOW - timedelta(days=30)

    def test_shift_saturates_at_both_ends(self):
        top = datetime.max.replace(tzinfo=timezone.utc)
        bottom = datetime.min.replace(tzinfo=timezone.utc)
        assert shift(top - timedelta(hours=1), timedelta(days=1)) == top
        assert shift(bottom + timedelta(hours=1), -timedelta(days=7)) == bottom
        assert shift(NOW, timedelta(days=1)) == NOW + timedelta(days=1)

    def test_supported_time(self):
        assert supported_time(datetime(2026, 3, 15, 12)) == NOW
        with pytest.raises(ValueError, match="outside the supported time range"):
            supported_time(datetime(9999, 12, 31, 23, tzinfo=timezone.utc))
        with pytest.raises(ValueError, match="outside the supported time range"):
            supported_time(datetime(1969, 12, 31, tzinfo=timezone.utc))

    def test_prefilter_near_datetime_min(self):
        now = datetime(1, 1, 2, tzinfo=timezone.utc)
        index = PreFilteredEvents([make_event("e1", 0.5, now=now)], now)
        assert [e.id for e in index.in_14_days] == ["e1"]
