"""
Impression tracker — starts cooldowns only for cards a parent really saw.

A card counts as seen once it stayed visible for at least the impression
threshold (INSIGHTS_IMPRESSION_THRESHOLD_SECONDS, default 2 s) or the parent
interacted with it (tapped its CTA, opened its evidence). Each card id is
recorded at most once per tracker lifetime, until `reset()`.

The tracker holds no timers; the caller polls `record_cards_with_threshold`
with the cards still on screen. Clients that measure visibility themselves
report it through `card_visible_for` (see POST /insights/{child_id}/cards/displayed).
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, TypeVar

from coachcards.core.config import settings
from coachcards.services.canonical import shift
from coachcards.services.coaching_engine import CoachingEngine


class TrackedCard(Protocol):
    id: str
    template_id: str
    child_id: str


CardT = TypeVar("CardT", bound=TrackedCard)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ImpressionTracker:

    def __init__(
        self,
        engine: CoachingEngine,
        now: Callable[[], datetime] = _utcnow,
        threshold_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.now = now
        self.threshold_seconds = (
            threshold_seconds
            if threshold_seconds is not None
            else settings.INSIGHTS_IMPRESSION_THRESHOLD_SECONDS
        )
        self._visible_since: dict[str, datetime] = {}
        self._recorded_ids: set[str] = set()

    @property
    def recorded_ids(self) -> frozenset[str]:
        return frozenset(self._recorded_ids)

    def card_became_visible(self, card: TrackedCard) -> None:
        if card.id in self._recorded_ids:
            return
        self._visible_since.setdefault(card.id, self.now())

    def card_visible_for(self, card: TrackedCard, seconds: float) -> None:
        """The card has been on screen for the last `seconds` (client-measured)."""
        if card.id in self._recorded_ids:
            return
        self._visible_since[card.id] = shift(self.now(), -timedelta(seconds=seconds))

    def card_became_hidden(self, card: TrackedCard) -> None:
        self._visible_since.pop(card.id, None)

    def record_interaction(self, card: TrackedCard) -> None:
        """CTA tap or evidence opened: counts as seen immediately."""
        if card.id in self._recorded_ids:
            return
        self._recorded_ids.add(card.id)
        self._visible_since.pop(card.id, None)
        self.engine.record_cards_displayed([card], at=self.now())

    def has_met_impression_threshold(self, card: TrackedCard) -> bool:
        since = self._visible_since.get(card.id)
        if since is None:
            return False
        return (self.now() - since).total_seconds() >= self.threshold_seconds

    def record_cards_with_threshold(self, cards: Sequence[CardT]) -> list[CardT]:
        """Record every card visible long enough and not yet recorded; returns them."""
        due = [
            card for card in cards
            if card.id not in self._recorded_ids and self.has_met_impression_threshold(card)
        ]
        self._mark_and_record(due)
        return due

    def force_record_all(self, cards: Sequence[CardT]) -> list[CardT]:
        """Record every not-yet-recorded card regardless of visibility."""
        due = [card for card in cards if card.id not in self._recorded_ids]
        self._mark_and_record(due)
        return due

    def reset(self) -> None:
        self._visible_since.clear()
        self._recorded_ids.clear()

    def _mark_and_record(self, cards: Sequence[TrackedCard]) -> None:
        if not cards:
            return
        for card in cards:
            self._recorded_ids.add(card.id)
            self._visible_since.pop(card.id, None)
        self.engine.record_cards_displayed(cards, at=self.now())
