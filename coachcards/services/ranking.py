"""
Card ranker and safety rails.

Rank key (total order, independent of input order)
--------------------------------------------------
  1. priority             DESC
  2. evidence window      ASC   shorter window = fresher
  3. evidence count       DESC
  4. template id          ASC
  5. card id              ASC   separates two cards of the same template

Safety rails
------------
  risk        : goal_at_risk, high_challenge_week                 max 1
  improvement : goal_stalled, routine_forming, routine_slipping   max 2
  neutral     : anything else (e.g. insufficient_data)           unlimited

Every filter returns the cards it dropped alongside the survivors so the
debug report can explain each decision.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, assert_never

from coachcards.services.canonical import MAX_CARDS_OUTPUT, MAX_IMPROVEMENT_CARDS, MAX_RISK_CARDS
from coachcards.services.cards import CoachCard
from coachcards.services.cooldowns import CooldownStore
from coachcards.services.signals import SignalType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Drop bookkeeping
# ---------------------------------------------------------------------------

class DropReason(str, enum.Enum):
    evidence_invalid = "evidenceInvalid"
    cooldown_active = "cooldownActive"
    safety_rail_risk = "safetyRailRisk"
    safety_rail_improvement = "safetyRailImprovement"
    ranking_cutoff = "rankingCutoff"


@dataclass(frozen=True)
class DroppedCard:
    card: CoachCard
    reason: DropReason
    details: str


def _drop(card: CoachCard, reason: DropReason, details: str) -> DroppedCard:
    logger.debug("Dropped card %s (%s): %s", card.id, reason.value, details)
    return DroppedCard(card=card, reason=reason, details=details)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def rank_key(card: CoachCard) -> tuple[int, int, int, str, str]:
    return (
        -card.priority,
        card.evidence_window,
        -len(card.evidence_event_ids),
        card.template_id,
        card.id,
    )


def sort_cards(cards: Iterable[CoachCard]) -> list[CoachCard]:
    return sorted(cards, key=rank_key)


# ---------------------------------------------------------------------------
# Safety rails
# ---------------------------------------------------------------------------

class SafetyCategory(str, enum.Enum):
    risk = "risk"
    improvement = "improvement"
    neutral = "neutral"


def category_for_signal(signal_type: SignalType) -> SafetyCategory:
    if signal_type is SignalType.goal_at_risk or signal_type is SignalType.high_challenge_week:
        return SafetyCategory.risk
    elif (
        signal_type is SignalType.goal_stalled
        or signal_type is SignalType.routine_forming
        or signal_type is SignalType.routine_slipping
    ):
        return SafetyCategory.improvement
    else:
        assert_never(signal_type)


def category_for_template(template_id: str) -> SafetyCategory:
    try:
        signal_type = SignalType(template_id)
    except ValueError:
        return SafetyCategory.neutral
    return category_for_signal(signal_type)


def apply_safety_rails(cards: Iterable[CoachCard]) -> tuple[list[CoachCard], list[DroppedCard]]:
    """Walk cards in rank order keeping <= 1 risk and <= 2 improvement cards."""
    kept: list[CoachCard] = []
    dropped: list[DroppedCard] = []
    risk_count = 0
    improvement_count = 0

    for card in sort_cards(cards):
        category = category_for_template(card.template_id)
        if category is SafetyCategory.risk:
            if risk_count < MAX_RISK_CARDS:
                kept.append(card)
                risk_count += 1
            else:
                dropped.append(_drop(
                    card, DropReason.safety_rail_risk,
                    f"Already have {MAX_RISK_CARDS} risk card(s)",
                ))
        elif category is SafetyCategory.improvement:
            if improvement_count < MAX_IMPROVEMENT_CARDS:
                kept.append(card)
                improvement_count += 1
            else:
                dropped.append(_drop(
                    card, DropReason.safety_rail_improvement,
                    f"Already have {MAX_IMPROVEMENT_CARDS} improvement card(s)",
                ))
        else:
            kept.append(card)

    return kept, dropped


# ---------------------------------------------------------------------------
# Cooldown filter, truncation
# ---------------------------------------------------------------------------

def filter_cooldowns(
    cards: Iterable[CoachCard], store: CooldownStore, now: datetime
) -> tuple[list[CoachCard], list[DroppedCard]]:
    available: list[CoachCard] = []
    dropped: list[DroppedCard] = []
    for card in cards:
        if store.is_on_cooldown(card.template_id, card.child_id, now):
            end = store.cooldown_end(card.template_id, card.child_id)
            ends = end.strftime("%Y-%m-%d %H:%M UTC") if end else "unknown"
            dropped.append(_drop(card, DropReason.cooldown_active, f"Cooldown ends {ends}"))
        else:
            available.append(card)
    return available, dropped


def truncate(
    cards: list[CoachCard], limit: int = MAX_CARDS_OUTPUT
) -> tuple[list[CoachCard], list[DroppedCard]]:
    """Sort and keep the top `limit` cards."""
    ordered = sort_cards(cards)
    dropped = [
        _drop(card, DropReason.ranking_cutoff, f"Exceeded max {limit} cards limit")
        for card in ordered[limit:]
    ]
    return ordered[:limit], dropped


def rank_and_filter(
    cards: Iterable[CoachCard],
    store: CooldownStore,
    now: datetime,
    limit: Optional[int] = None,
) -> list[CoachCard]:
    """Cooldown filter, deterministic sort, top-N. Never writes cooldowns."""
    available, _ = filter_cooldowns(cards, store, now)
    selected, _ = truncate(available, limit if limit is not None else MAX_CARDS_OUTPUT)
    return selected


def record_cards_shown(cards: Iterable[CoachCard], store: CooldownStore, at: datetime) -> None:
    store.record_many([(c.template_id, c.child_id) for c in cards], at)
