"""
Tests for the card builder and template library.

Covers:
- Stable hash / deterministic card ids
- Template variable interpolation (missing optional values stay literal)
- One template per signal type, placeholders all resolvable
- Priority calculation and CTA resolution
- Insufficient-data card
- Card expiry saturates at the end of the datetime range
- Localization bundle
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, make_child, make_event, make_goal, make_routine
from coachcards.services.canonical import EventCategory
from coachcards.services.cards import (
    ALL_TEMPLATES,
    CardPriority,
    HistoryTypeFilter,
    OpenAddMoment,
    OpenGoalDetail,
    OpenHistory,
    TemplateVariables,
    build_card_for_signal,
    cta_to_dict,
    insufficient_data_card,
    stable_card_id,
    stable_hash,
    stable_key,
    template_by_id,
    template_for,
)
from coachcards.services.prefilter import PreFilteredEvents
from coachcards.services.signals import (
    SignalType,
    detect_goal_at_risk,
    detect_goal_stalled,
    detect_high_challenge_week,
    detect_routine_forming,
)

_CARD_ID = re.compile(r"^[a-z_]+-[0-9a-f]{8}$")


def _stalled_signal(now=NOW):
    events = [make_event(f"p{i}", 6 + 2 * i, now=now) for i in range(3)]
    return detect_goal_stalled(make_goal(now=now), PreFilteredEvents(events, now))


def _forming_signal():
    events = [
        make_event(f"r{i}", d, category=EventCategory.routine_positive,
                   behavior_id="b-teeth", behavior_name="Brushed teeth")
        for i, d in enumerate([0.1, 1.1, 2.1, 3.1])
    ]
    return detect_routine_forming(make_routine(), PreFilteredEvents(events, NOW))


# ---------------------------------------------------------------------------
# Stable ids
# ---------------------------------------------------------------------------

class TestStableHash:
    def test_known_values(self):
        assert stable_hash("") == "00000000"
        assert stable_hash("a") == "00000061"
        assert stable_hash("ab") == "00000c21"

    def test_long_keys_wrap_to_eight_hex_digits(self):
        h = stable_hash("goal_at_risk:" + "x" * 500 + ":none:7")
        assert re.fullmatch(r"[0-9a-f]{8}", h)

    def test_key_format(self):
        assert stable_key("goal_stalled", "c1", "g1", 14) == "goal_stalled:c1:g1:14"
        assert stable_key("high_challenge_week", "c1", None, 7) == "high_challenge_week:c1:none:7"

    def test_card_id_shape_and_determinism(self):
        first = stable_card_id("goal_stalled", "c1", "g1", 14)
        assert _CARD_ID.match(first)
        assert first.startswith("goal_stalled-")
        assert first == stable_card_id("goal_stalled", "c1", "g1", 14)
        assert first != stable_card_id("goal_stalled", "c1", "g2", 14)
        assert first != stable_card_id("goal_stalled", "c2", "g1", 14)

    def test_same_inputs_at_different_times_share_id(self):
        child = make_child()
        a = build_card_for_signal(_stalled_signal(NOW), child, NOW)
        later = NOW + timedelta(hours=5)
        b = build_card_for_signal(_stalled_signal(later), child, later)
        assert a.id == b.id
        assert a.stable_key == b.stable_key == "goal_stalled:c1:g1:14"
        assert a.expires_at != b.expires_at


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------

class TestTemplateVariables:
    def test_substitutes_every_present_variable(self):
        variables = TemplateVariables(
            child_name="Emma", child_id="c1", count=4, days=7,
            goal_name="Zoo trip", days_remaining=5, progress=0.2,
        )
        text = variables.interpolate("{goalName}: {daysRemaining} days, {progress}, {count}/{days} {childName}")
        assert text == "Zoo trip: 5 days, 20%, 4/7 Emma"

    def test_missing_optional_variable_stays_literal(self):
        variables = TemplateVariables(child_name="Emma", child_id="c1", count=1, days=7)
        assert variables.interpolate("{goalName} needs a push") == "{goalName} needs a push"

    def test_args_only_include_present_values(self):
        args = TemplateVariables(child_name="Emma", child_id="c1", count=1, days=7).as_args()
        assert args == {"childName": "Emma", "count": "1", "days": "7"}

    def test_progress_is_truncated_percentage(self):
        args = TemplateVariables(child_name="E", child_id="c1", count=0, days=7, progress=0.666).as_args()
        assert args["progress"] == "66%"


# ---------------------------------------------------------------------------
# Template library
# ---------------------------------------------------------------------------

class TestTemplateLibrary:
    @pytest.mark.parametrize("signal_type", list(SignalType))
    def test_every_signal_type_has_a_template(self, signal_type):
        template = template_for(signal_type)
        assert template.signal_type is signal_type
        assert template.id == signal_type.value

    def test_templates_are_unique(self):
        assert len({t.id for t in ALL_TEMPLATES}) == len(ALL_TEMPLATES) == len(SignalType)

    def test_every_placeholder_is_resolvable(self):
        full = TemplateVariables(
            child_name="Emma", child_id="c1", count=3, days=7,
            goal_name="G", goal_id="g1", behavior_name="B", behavior_id="b1",
            days_remaining=2, progress=0.5,
        )
        for template in ALL_TEMPLATES:
            texts = (
                template.title_template,
                template.one_liner_template,
                template.why_summary_template,
                *template.steps,
            )
            for text in texts:
                assert "{" not in full.interpolate(text), (template.id, text)

    def test_template_by_id(self):
        assert template_by_id("routine_forming").signal_type is SignalType.routine_forming
        assert template_by_id("insufficient_data") is None


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class TestBuildCard:
    def test_goal_stalled_card(self):
        card = build_card_for_signal(_stalled_signal(), make_child(), NOW)
        assert card.template_id == "goal_stalled"
        assert card.title == "Zoo trip progress has paused"
        assert card.one_liner == "No progress in the last 14 days."
        assert card.steps[0] == "Check in with Emma about the goal"
        assert card.evidence_event_ids == ("p0", "p1", "p2")
        assert card.evidence_window == 14
        assert card.primary_entity_id == "g1"
        assert card.priority == int(CardPriority.HIGH)
        assert card.cta == OpenGoalDetail(goal_id="g1")
        assert card.expires_at == NOW + timedelta(days=1)

    def test_expiry_saturates_at_end_of_range(self):
        end = datetime.max.replace(tzinfo=timezone.utc)
        now = end - timedelta(hours=1)
        card = build_card_for_signal(_stalled_signal(now), make_child(), now)
        assert card.expires_at == end

    def test_goal_at_risk_priority_is_capped(self):
        events = [make_event(f"p{i}", 0.5 + i) for i in range(5)]
        signal = detect_goal_at_risk(
            make_goal(target=100, current=20, due_in_days=5), PreFilteredEvents(events, NOW)
        )
        card = build_card_for_signal(signal, make_child(), NOW)
        assert card.priority == int(CardPriority.CRITICAL)
        assert card.title == "Zoo trip needs a push"
        assert card.one_liner == "Only 5 days left and 20% complete."

    def test_routine_forming_history_cta(self):
        card = build_card_for_signal(_forming_signal(), make_child(), NOW)
        assert card.title == "Brushed teeth is becoming a habit"
        assert card.one_liner == "Emma has done this 4 times in the last 7 days."
        assert card.priority == int(CardPriority.HIGH)  # medium + 7-day window
        assert isinstance(card.cta, OpenHistory)
        assert card.cta.filter.type_filter is HistoryTypeFilter.routines
        assert card.cta.filter.behavior_id == "b-teeth"
        assert card.cta.filter.time_period == 7

    def test_high_challenge_card_has_no_entity(self):
        events = [
            make_event(f"n{i}", 0.5 + i, category=EventCategory.negative) for i in range(3)
        ]
        signal = detect_high_challenge_week(PreFilteredEvents(events, NOW))
        card = build_card_for_signal(signal, make_child(), NOW)
        assert card.primary_entity_id is None
        assert card.stable_key == "high_challenge_week:c1:none:7"
        assert card.title == "Tough stretch for Emma"
        assert card.priority == int(CardPriority.URGENT)

    def test_localized_content(self):
        card = build_card_for_signal(_stalled_signal(), make_child(), NOW)
        loc = card.localized_content
        assert loc.title_key == "insights.goal_stalled.title"
        assert loc.one_liner_key == "insights.goal_stalled.one_liner"
        assert loc.steps_keys == (
            "insights.goal_stalled.step_1",
            "insights.goal_stalled.step_2",
            "insights.goal_stalled.step_3",
        )
        assert loc.why_key == "insights.goal_stalled.why"
        assert loc.args["childName"] == "Emma"
        assert loc.args["goalName"] == "Zoo trip"


class TestInsufficientDataCard:
    def test_shape(self):
        card = insufficient_data_card(make_child(), 2, NOW)
        assert card.template_id == "insufficient_data"
        assert card.id == stable_card_id("insufficient_data", "c1", None, 14)
        assert card.priority == int(CardPriority.MEDIUM)
        assert card.one_liner == "Only 2 moments logged in the last 14 days."
        assert card.evidence_event_ids == ()
        assert card.cta == OpenAddMoment(child_id="c1")
        assert card.localized_content.title_key == "insights.insufficient_data.title"
        assert card.localized_content.args["childName"] == "Emma"

    def test_expiry_saturates_at_end_of_range(self):
        end = datetime.max.replace(tzinfo=timezone.utc)
        assert insufficient_data_card(make_child(), 0, end).expires_at == end


class TestCtaToDict:
    def test_goal_detail(self):
        assert cta_to_dict(OpenGoalDetail(goal_id="g1")) == {
            "type": "openGoalDetail", "button_text": "View goal", "goal_id": "g1",
        }

    def test_history_carries_filter(self):
        payload = cta_to_dict(OpenHistory(child_id="c1"))
        assert payload["type"] == "openHistory"
        assert payload["child_id"] == "c1"
        assert payload["filter"] == {"type_filter": "all", "behavior_id": None, "time_period": None}
