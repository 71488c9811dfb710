"""
Coaching engine — orchestrates detection, card building, filtering and ranking.

Pipeline (per request, one child, one `now`)
--------------------------------------------
  NoChild           unknown child                      -> []
  InsufficientData  < 3 events in the last 14 days     -> [insufficient-data card]
  Detecting         five detectors over the pre-filter index
  Building          triggered signals -> cards
  Validating        evidence integrity (drops: evidenceInvalid)
  SafetyFiltering   <= 1 risk, <= 2 improvement         (drops: safetyRail*)
  CooldownFiltering template shown < 3 days ago        (drops: cooldownActive)
  Ranking           deterministic sort, top 6          (drops: rankingCutoff)
  Done

`generate_cards` and `debug_report` share one pipeline implementation and
neither writes anything. Cooldowns are recorded only by
`record_cards_displayed`, called once cards were actually shown.

Public API
----------
CoachingEngine(data_provider, cooldown_store)
  .generate_cards(child_id, now)          -> list[CoachCard]
  .record_cards_displayed(cards, at)      -> None
  .debug_report(child_id, now)            -> InsightsDebugReport
InsightsDataProvider (protocol), InMemoryDataProvider
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional, Protocol

from coachcards.services import evidence, ranking
from coachcards.services.canonical import (
    MIN_EVENTS_FOR_INSIGHT,
    CanonicalBehavior,
    CanonicalChild,
    CanonicalGoal,
    UnifiedEvent,
    active_only,
    as_utc,
    at_risk,
    with_deadlines,
)
from coachcards.services.cards import CoachCard, build_card_for_signal, insufficient_data_card
from coachcards.services.cooldowns import CooldownStore
from coachcards.services.debug_report import (
    DataStats,
    InsightsDebugReport,
    PipelineStage,
    StageTrace,
)
from coachcards.services.prefilter import PreFilteredEvents
from coachcards.services.signals import detect_all

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data provider contract
# ---------------------------------------------------------------------------

class InsightsDataProvider(Protocol):
    """Source of canonical records. All I/O completes before detection starts."""

    def child(self, child_id: str) -> Optional[CanonicalChild]: ...

    def events(self, child_id: str) -> list[UnifiedEvent]: ...

    def goals(self, child_id: str) -> list[CanonicalGoal]: ...

    def routine_behaviors(self) -> list[CanonicalBehavior]: ...

    def all_behaviors(self) -> list[CanonicalBehavior]: ...


class InMemoryDataProvider:
    """Plain-list provider for tests and callers that already hold records."""

    def __init__(
        self,
        children: Iterable[CanonicalChild] = (),
        events: Iterable[UnifiedEvent] = (),
        goals: Iterable[CanonicalGoal] = (),
        behaviors: Iterable[CanonicalBehavior] = (),
    ):
        self._children = {c.id: c for c in children}
        self._events = list(events)
        self._goals = list(goals)
        self._behaviors = list(behaviors)

    def child(self, child_id: str) -> Optional[CanonicalChild]:
        return self._children.get(child_id)

    def events(self, child_id: str) -> list[UnifiedEvent]:
        return [e for e in self._events if e.child_id == child_id]

    def goals(self, child_id: str) -> list[CanonicalGoal]:
        return [g for g in self._goals if g.child_id == child_id]

    def routine_behaviors(self) -> list[CanonicalBehavior]:
        return [b for b in self._behaviors if b.is_active and b.is_routine]

    def all_behaviors(self) -> list[CanonicalBehavior]:
        return list(self._behaviors)


class DisplayedCard(Protocol):
    template_id: str
    child_id: str


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class CoachingEngine:

    def __init__(self, data_provider: InsightsDataProvider, cooldown_store: CooldownStore):
        self.data_provider = data_provider
        self.cooldown_store = cooldown_store

    def generate_cards(self, child_id: str, now: datetime) -> list[CoachCard]:
        """Up to 6 ranked cards. Pure: cooldown state is read, never written."""
        return self._run_pipeline(child_id, now).selected_cards

    def debug_report(self, child_id: str, now: datetime) -> InsightsDebugReport:
        return self._run_pipeline(child_id, now)

    def record_cards_displayed(self, cards: Sequence[DisplayedCard], at: datetime) -> None:
        """Start cooldowns for the shown cards. Upserts, so repeating a call is harmless."""
        if not cards:
            return
        ranking.record_cards_shown(cards, self.cooldown_store, at)
        logger.info(
            "Recorded %d displayed card(s) at %s: %s",
            len(cards),
            as_utc(at).isoformat(),
            ", ".join(sorted({c.template_id for c in cards})),
        )

    # -- pipeline -------------------------------------------------------------

    def _run_pipeline(self, child_id: str, now: datetime) -> InsightsDebugReport:
        now = as_utc(now)
        child = self.data_provider.child(child_id)
        if child is None:
            return InsightsDebugReport(
                child_id=child_id,
                child_name=None,
                generated_at=now,
                stages=[StageTrace(PipelineStage.no_child, 0, 0)],
            )

        events = PreFilteredEvents(self.data_provider.events(child_id), now)
        goals = self.data_provider.goals(child_id)
        active_goals = active_only(goals)
        behaviors = self.data_provider.routine_behaviors()
        signals = detect_all(goals, behaviors, events)

        report = InsightsDebugReport(
            child_id=child_id,
            child_name=child.name,
            generated_at=now,
            signal_results=signals,
            active_cooldowns=[
                c for c in self.cooldown_store.active_cooldowns(now) if c.child_id == child_id
            ],
            data_stats=DataStats(
                total_events_14_days=len(events.in_14_days),
                positive_events_7_days=len(events.positive_in_7_days),
                challenge_events_7_days=len(events.challenges_in_7_days),
                routine_events_7_days=len(events.routines_in_7_days),
                active_goals=len(active_goals),
                goals_with_deadlines=len(with_deadlines(active_goals)),
                goals_at_risk=len(at_risk(active_goals, now)),
                routine_behaviors=len(behaviors),
            ),
        )

        if len(events.in_14_days) < MIN_EVENTS_FOR_INSIGHT:
            report.selected_cards = [insufficient_data_card(child, len(events.in_14_days), now)]
            report.stages.append(StageTrace(PipelineStage.insufficient_data, 0, 1))
            return report

        triggered = [s for s in signals if s.triggered]
        report.stages.append(StageTrace(PipelineStage.detecting, len(signals), len(triggered)))

        report.built_cards = [build_card_for_signal(s, child, now) for s in triggered]
        report.stages.append(
            StageTrace(PipelineStage.building, len(triggered), len(report.built_cards))
        )

        valid, invalid = evidence.filter_valid(report.built_cards, events.event_ids)
        for card, reason in invalid:
            report.dropped_cards.append(
                ranking.DroppedCard(card, ranking.DropReason.evidence_invalid, reason)
            )
            logger.debug("Dropped card %s (evidenceInvalid): %s", card.id, reason)
        report.stages.append(
            StageTrace(PipelineStage.validating, len(report.built_cards), len(valid))
        )

        safe, rail_drops = ranking.apply_safety_rails(valid)
        report.dropped_cards.extend(rail_drops)
        report.stages.append(StageTrace(PipelineStage.safety_filtering, len(valid), len(safe)))

        available, cooldown_drops = ranking.filter_cooldowns(safe, self.cooldown_store, now)
        report.dropped_cards.extend(cooldown_drops)
        report.stages.append(
            StageTrace(PipelineStage.cooldown_filtering, len(safe), len(available))
        )

        selected, cutoff_drops = ranking.truncate(available)
        report.dropped_cards.extend(cutoff_drops)
        report.selected_cards = selected
        report.stages.append(StageTrace(PipelineStage.ranking, len(available), len(selected)))
        report.stages.append(StageTrace(PipelineStage.done, len(selected), len(selected)))
        return report
