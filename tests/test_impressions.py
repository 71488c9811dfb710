"""
Tests for the impression tracker.

Covers:
- Threshold: visible < 2 s is not an impression, >= 2 s is
- Hiding a card resets its visibility clock
- Client-measured visibility durations use the same threshold
- Interaction records immediately
- Each card id is recorded once per tracker lifetime, until reset()
- force_record_all records everything not yet recorded
"""
from __future__ import annotations

from datetime import timedelta

from conftest import NOW, make_engine, make_event
from coachcards.services.canonical import EventCategory
from coachcards.services.cooldowns import InMemoryCooldownBackend
from coachcards.services.impressions import ImpressionTracker


class FakeClock:
    def __init__(self, start=NOW):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def _setup(threshold: float = 2.0):
    events = [
        make_event(f"n{i}", 0.1 + 0.2 * i, category=EventCategory.negative) for i in range(6)
    ] + [make_event("p0", 0.5), make_event("p1", 1.0)]
    backend = InMemoryCooldownBackend()
    engine = make_engine(events=events, backend=backend)
    clock = FakeClock()
    tracker = ImpressionTracker(engine, now=clock, threshold_seconds=threshold)
    [card] = engine.generate_cards("c1", NOW)
    return tracker, engine, clock, card


class TestThreshold:
    def test_short_visibility_is_not_an_impression(self):
        tracker, engine, clock, card = _setup()
        tracker.card_became_visible(card)
        clock.advance(1.5)
        assert tracker.has_met_impression_threshold(card) is False
        assert tracker.record_cards_with_threshold([card]) == []
        assert engine.cooldown_store.records() == []

    def test_visible_long_enough_records(self):
        tracker, engine, clock, card = _setup()
        tracker.card_became_visible(card)
        clock.advance(2.0)
        assert tracker.record_cards_with_threshold([card]) == [card]
        assert engine.cooldown_store.is_on_cooldown(card.template_id, "c1", clock()) is True
        assert card.id in tracker.recorded_ids

    def test_hidden_card_restarts_clock(self):
        tracker, _, clock, card = _setup()
        tracker.card_became_visible(card)
        clock.advance(1.5)
        tracker.card_became_hidden(card)
        tracker.card_became_visible(card)
        clock.advance(1.0)
        assert tracker.has_met_impression_threshold(card) is False

    def test_client_measured_visibility(self):
        tracker, engine, _, card = _setup()
        tracker.card_visible_for(card, 1.0)
        assert tracker.record_cards_with_threshold([card]) == []
        tracker.card_visible_for(card, 2.5)
        assert tracker.record_cards_with_threshold([card]) == [card]
        assert len(engine.cooldown_store.records()) == 1

    def test_never_visible(self):
        tracker, _, _, card = _setup()
        assert tracker.has_met_impression_threshold(card) is False

    def test_default_threshold_from_settings(self):
        events = [make_event(f"e{i}", i) for i in range(3)]
        tracker = ImpressionTracker(make_engine(events=events))
        assert tracker.threshold_seconds == 2.0


class TestInteraction:
    def test_interaction_records_immediately(self):
        tracker, engine, clock, card = _setup()
        tracker.record_interaction(card)
        assert engine.cooldown_store.cooldown_end(card.template_id, "c1") == clock() + timedelta(days=3)


class TestOncePerLifetime:
    def test_card_recorded_once(self):
        tracker, engine, clock, card = _setup()
        tracker.record_interaction(card)
        first_end = engine.cooldown_store.cooldown_end(card.template_id, "c1")

        clock.advance(3600)
        tracker.record_interaction(card)
        tracker.card_became_visible(card)
        clock.advance(10)
        assert tracker.record_cards_with_threshold([card]) == []
        assert engine.cooldown_store.cooldown_end(card.template_id, "c1") == first_end

    def test_reset_allows_recording_again(self):
        tracker, engine, clock, card = _setup()
        tracker.record_interaction(card)
        tracker.reset()
        assert tracker.recorded_ids == frozenset()
        clock.advance(3600)
        tracker.record_interaction(card)
        assert engine.cooldown_store.cooldown_end(card.template_id, "c1") == clock() + timedelta(days=3)


class TestForceRecordAll:
    def test_records_unseen_cards(self):
        tracker, engine, _, card = _setup()
        assert tracker.force_record_all([card]) == [card]
        assert len(engine.cooldown_store.records()) == 1
        assert tracker.force_record_all([card]) == []
