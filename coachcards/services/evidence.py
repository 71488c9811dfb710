"""
Evidence validator.

A card is valid iff it cites at least the template's minimum number of
events and every cited id belongs to the child's canonical event set.
"""
from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass
from typing import Optional

from coachcards.services.canonical import minimum_evidence
from coachcards.services.cards import CoachCard

_MAX_REPORTED_MISSING = 3


@dataclass(frozen=True)
class EvidenceValidationResult:
    is_valid: bool
    reason: Optional[str] = None


_VALID = EvidenceValidationResult(is_valid=True)


def validate(card: CoachCard, canonical_event_ids: Set[str]) -> EvidenceValidationResult:
    required = minimum_evidence(card.template_id)
    cited = len(card.evidence_event_ids)
    if cited < required:
        return EvidenceValidationResult(
            is_valid=False,
            reason=f"Insufficient evidence: {cited} < {required} required for {card.template_id}",
        )

    missing = [eid for eid in card.evidence_event_ids if eid not in canonical_event_ids]
    if missing:
        shown = ", ".join(missing[:_MAX_REPORTED_MISSING])
        suffix = "..." if len(missing) > _MAX_REPORTED_MISSING else ""
        return EvidenceValidationResult(
            is_valid=False,
            reason=f"Evidence IDs not found in canonical events: {shown}{suffix}",
        )

    return _VALID


def filter_valid(
    cards: Iterable[CoachCard], canonical_event_ids: Set[str]
) -> tuple[list[CoachCard], list[tuple[CoachCard, str]]]:
    """Split `cards` into (valid, [(invalid card, reason), ...]), preserving order."""
    valid: list[CoachCard] = []
    invalid: list[tuple[CoachCard, str]] = []
    for card in cards:
        result = validate(card, canonical_event_ids)
        if result.is_valid:
            valid.append(card)
        else:
            invalid.append((card, result.reason or "Unknown validation error"))
    return valid, invalid
