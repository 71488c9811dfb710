"""
Pre-filter index: per-request slices of one child's event list.

Built once per generate/debug call so the five detectors share a single
"now" and a single pass over the events. Detectors read only from here.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from coachcards.services.canonical import AnalysisWindow, UnifiedEvent, as_utc, shift, window_start


def _in_range(events: Iterable[UnifiedEvent], start: datetime, end: datetime) -> list[UnifiedEvent]:
    return [e for e in events if start <= e.timestamp <= end]


def _group_by_behavior(events: Iterable[UnifiedEvent]) -> dict[str, list[UnifiedEvent]]:
    grouped: dict[str, list[UnifiedEvent]] = defaultdict(list)
    for event in events:
        grouped[event.behavior_type_id].append(event)
    return dict(grouped)


class PreFilteredEvents:
    """Eagerly computed windows, partitions and per-behavior groupings."""

    def __init__(self, child_events: Sequence[UnifiedEvent], now: datetime):
        self.now = as_utc(now)
        self.all: list[UnifiedEvent] = list(child_events)

        start_7 = window_start(self.now, AnalysisWindow.SEVEN_DAYS)
        start_14 = window_start(self.now, AnalysisWindow.FOURTEEN_DAYS)
        self.in_7_days = _in_range(self.all, start_7, self.now)
        self.in_14_days = _in_range(self.all, start_14, self.now)

        self.positive = [e for e in self.all if e.is_positive]
        self.positive_in_7_days = [e for e in self.in_7_days if e.is_positive]
        self.positive_in_14_days = [e for e in self.in_14_days if e.is_positive]
        self.challenges_in_7_days = [e for e in self.in_7_days if e.is_challenge]
        self.routines_in_7_days = [e for e in self.in_7_days if e.is_routine]

        self.by_behavior = _group_by_behavior(self.all)
        self.by_behavior_in_7_days = _group_by_behavior(self.in_7_days)
        self.by_behavior_in_14_days = _group_by_behavior(self.in_14_days)

    @property
    def event_ids(self) -> set[str]:
        return {e.id for e in self.all}

    def behavior_events(self, behavior_id: str) -> list[UnifiedEvent]:
        return self.by_behavior.get(behavior_id, [])

    def behavior_events_in_7_days(self, behavior_id: str) -> list[UnifiedEvent]:
        return self.by_behavior_in_7_days.get(behavior_id, [])

    def behavior_events_in_14_days(self, behavior_id: str) -> list[UnifiedEvent]:
        return self.by_behavior_in_14_days.get(behavior_id, [])

    def positives_since(self, days: int) -> list[UnifiedEvent]:
        """Positive events with timestamp >= now - `days` (no upper bound)."""
        cutoff = shift(self.now, -timedelta(days=days))
        return [e for e in self.positive if e.timestamp >= cutoff]

    def last_positive(self) -> UnifiedEvent | None:
        if not self.positive:
            return None
        return max(self.positive, key=lambda e: e.timestamp)
