"""
Insights debug report — answers "why didn't I get a card?" without re-running.

Produced by `CoachingEngine.debug_report()` from the same pipeline run that
backs `generate_cards()`, so `selected_cards` always equals what generation
returns for the same inputs and `now`.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from coachcards.services.canonical import MIN_EVENTS_FOR_INSIGHT
from coachcards.services.cards import CoachCard
from coachcards.services.cooldowns import ActiveCooldown
from coachcards.services.ranking import DropReason, DroppedCard
from coachcards.services.signals import SignalResult


class PipelineStage(str, enum.Enum):
    no_child = "NoChild"
    insufficient_data = "InsufficientData"
    detecting = "Detecting"
    building = "Building"
    validating = "Validating"
    safety_filtering = "SafetyFiltering"
    cooldown_filtering = "CooldownFiltering"
    ranking = "Ranking"
    done = "Done"


DROP_REASON_LABELS = {
    DropReason.evidence_invalid: "Evidence Invalid",
    DropReason.cooldown_active: "Cooldown Active",
    DropReason.safety_rail_risk: "Safety Rail: Max Risk Cards",
    DropReason.safety_rail_improvement: "Safety Rail: Max Improvement Cards",
    DropReason.ranking_cutoff: "Below Ranking Cutoff",
}


@dataclass(frozen=True)
class StageTrace:
    """Card counts entering and leaving one pipeline stage."""
    stage: PipelineStage
    cards_in: int
    cards_out: int


@dataclass(frozen=True)
class DataStats:
    total_events_14_days: int = 0
    positive_events_7_days: int = 0
    challenge_events_7_days: int = 0
    routine_events_7_days: int = 0
    active_goals: int = 0
    goals_with_deadlines: int = 0
    goals_at_risk: int = 0
    routine_behaviors: int = 0


@dataclass
class InsightsDebugReport:
    child_id: str
    child_name: Optional[str]
    generated_at: datetime
    signal_results: list[SignalResult] = field(default_factory=list)
    built_cards: list[CoachCard] = field(default_factory=list)
    dropped_cards: list[DroppedCard] = field(default_factory=list)
    selected_cards: list[CoachCard] = field(default_factory=list)
    active_cooldowns: list[ActiveCooldown] = field(default_factory=list)
    data_stats: DataStats = field(default_factory=DataStats)
    stages: list[StageTrace] = field(default_factory=list)

    @property
    def triggered_signals(self) -> list[SignalResult]:
        return [s for s in self.signal_results if s.triggered]

    @property
    def not_triggered_signals(self) -> list[SignalResult]:
        return [s for s in self.signal_results if not s.triggered]

    @property
    def has_insufficient_data(self) -> bool:
        return self.data_stats.total_events_14_days < MIN_EVENTS_FOR_INSIGHT

    @property
    def final_stage(self) -> Optional[PipelineStage]:
        return self.stages[-1].stage if self.stages else None

    @property
    def cards_summary(self) -> str:
        return (
            f"Built: {len(self.built_cards)} -> Dropped: {len(self.dropped_cards)} "
            f"-> Selected: {len(self.selected_cards)}"
        )

    def dropped_for(self, reason: DropReason) -> list[DroppedCard]:
        return [d for d in self.dropped_cards if d.reason is reason]

    def formatted_report(self) -> str:
        stats = self.data_stats
        lines = [
            "=== INSIGHTS ENGINE DEBUG REPORT ===",
            f"Generated: {_fmt(self.generated_at)}",
            f"Child: {self.child_name or 'Unknown'} ({self.child_id})",
            f"Pipeline: {self.cards_summary}",
            "",
            "--- DATA STATS ---",
            f"Events (14 days): {stats.total_events_14_days}",
            f"  Positive (7 days): {stats.positive_events_7_days}",
            f"  Challenges (7 days): {stats.challenge_events_7_days}",
            f"  Routines (7 days): {stats.routine_events_7_days}",
            f"Active Goals: {stats.active_goals}",
            f"  With deadline: {stats.goals_with_deadlines}",
            f"  Behind needed pace: {stats.goals_at_risk}",
            f"Routine Behaviors: {stats.routine_behaviors}",
        ]
        if self.has_insufficient_data:
            lines.append("Insufficient data for insights")
        lines.append("")

        lines += [
            "--- SIGNAL RESULTS ---",
            "| Signal | Triggered | Confidence | Evidence | Entity |",
            "|--------|-----------|------------|----------|--------|",
        ]
        for signal in self.signal_results:
            if signal.triggered:
                triggered = "YES"
                confidence = f"{signal.confidence * 100:.0f}%"
                evidence = str(signal.evidence.count)
            else:
                triggered, confidence, evidence = "no", "-", "-"
            entity = signal.metadata.goal_name or signal.metadata.behavior_name or "-"
            lines.append(
                f"| {signal.signal_type.value} | {triggered} | {confidence} | {evidence} | {entity} |"
            )
        lines.append("")

        if self.not_triggered_signals:
            lines.append("--- NOT TRIGGERED REASONS ---")
            for signal in self.not_triggered_signals:
                lines.append(f"[{signal.signal_type.value}] {signal.explanation}")
            lines.append("")

        lines.append(f"--- BUILT CARDS ({len(self.built_cards)}) ---")
        for card in self.built_cards:
            lines.append(f"[{card.template_id}] P{card.priority} | {card.title}")
        lines.append("")

        if self.dropped_cards:
            lines.append(f"--- DROPPED CARDS ({len(self.dropped_cards)}) ---")
            for dropped in self.dropped_cards:
                lines.append(f"[{dropped.card.template_id}] {DROP_REASON_LABELS[dropped.reason]}")
                lines.append(f"  Details: {dropped.details}")
            lines.append("")

        lines.append(f"--- SELECTED CARDS ({len(self.selected_cards)}) ---")
        for index, card in enumerate(self.selected_cards, start=1):
            lines += [
                f"{index}. {card.title}",
                f"   Template: {card.template_id}",
                f"   Priority: {card.priority}",
                f"   Evidence: {len(card.evidence_event_ids)} events",
                f"   StableKey: {card.stable_key}",
                f"   CTA: {card.cta.button_text}",
                "",
            ]

        lines.append(f"--- ACTIVE COOLDOWNS ({len(self.active_cooldowns)}) ---")
        if not self.active_cooldowns:
            lines.append("(none)")
        for cooldown in self.active_cooldowns:
            lines.append(f"[{cooldown.template_id}] ends {_fmt(cooldown.ends_at)}")

        if self.stages:
            lines.append("")
            lines.append("--- PIPELINE STAGES ---")
            for trace in self.stages:
                lines.append(f"{trace.stage.value}: {trace.cards_in} -> {trace.cards_out}")

        lines += ["", "=== END REPORT ==="]
        return "\n".join(lines)


def _fmt(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M UTC")
