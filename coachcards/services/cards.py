"""
Coach cards — card model, call-to-action union, template library and builder.

A triggered `SignalResult` is rendered through the one template registered
for its `SignalType`. The builder produces:
  - interpolated title / one-liner / steps / why-summary,
  - a parallel localization bundle (stable i18n keys + argument map),
  - a deterministic id derived only from (template, child, entity, window).

Stable id
---------
  key  = "{template_id}:{child_id}:{primary_entity_id or 'none'}:{window_days}"
  h    = fold over the UTF-8 bytes of key: h = h * 31 + byte  (wrapping, 64-bit)
  hash = "%08x" % (abs(signed64(h)) & 0xFFFFFFFF)
  id   = "{template_id}-{hash}"

Priority
--------
  template base tier
  +2 goal-at-risk deadline <= 3 days, +1 if <= 7 days
  +1 confidence > 0.8
  +1 7-day evidence window
  +1 quick-action CTA (open add moment)
  capped at CRITICAL
"""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Union, assert_never

from coachcards.services.canonical import (
    CARD_LIFETIME_DAYS,
    INSUFFICIENT_DATA_TEMPLATE_ID,
    AnalysisWindow,
    CanonicalChild,
    as_utc,
    shift,
)
from coachcards.services.signals import SignalResult, SignalType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Priority tiers
# ---------------------------------------------------------------------------

class CardPriority(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4
    CRITICAL = 5


_CONFIDENCE_BOOST_THRESHOLD = 0.8


# ---------------------------------------------------------------------------
# Call to action
# ---------------------------------------------------------------------------

class HistoryTypeFilter(str, enum.Enum):
    all = "all"
    positive = "positive"
    challenges = "challenges"
    routines = "routines"
    goals = "goals"


@dataclass(frozen=True)
class HistoryFilter:
    type_filter: HistoryTypeFilter = HistoryTypeFilter.all
    behavior_id: Optional[str] = None
    time_period: Optional[int] = None


@dataclass(frozen=True)
class OpenAddMoment:
    child_id: str
    kind: str = field(default="openAddMoment", init=False)
    button_text = "Log a moment"


@dataclass(frozen=True)
class OpenGoalDetail:
    goal_id: str
    kind: str = field(default="openGoalDetail", init=False)
    button_text = "View goal"


@dataclass(frozen=True)
class OpenGoalsPicker:
    child_id: str
    kind: str = field(default="openGoalsPicker", init=False)
    button_text = "Pick a goal"


@dataclass(frozen=True)
class OpenHistory:
    child_id: str
    filter: HistoryFilter = field(default_factory=HistoryFilter)
    kind: str = field(default="openHistory", init=False)
    button_text = "View history"


@dataclass(frozen=True)
class OpenManageBehaviors:
    child_id: str
    kind: str = field(default="openManageBehaviors", init=False)
    button_text = "Manage behaviors"


CoachCTA = Union[OpenAddMoment, OpenGoalDetail, OpenGoalsPicker, OpenHistory, OpenManageBehaviors]


class CTAKind(str, enum.Enum):
    """CTA kind declared by a template; resolved into a `CoachCTA` at build time."""
    add_moment = "addMoment"
    goal_detail = "goalDetail"
    goals_picker = "goalsPicker"
    history = "history"
    manage_behaviors = "manageBehaviors"


# ---------------------------------------------------------------------------
# Card model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LocalizedContent:
    """i18n keys plus the argument map needed to re-render a card."""
    title_key: str
    one_liner_key: str
    steps_keys: tuple[str, ...]
    why_key: str
    args: dict[str, str]


@dataclass(frozen=True)
class CoachCard:
    id: str
    child_id: str
    priority: int
    title: str
    one_liner: str
    steps: tuple[str, ...]
    why_summary: str
    evidence_event_ids: tuple[str, ...]
    cta: CoachCTA
    expires_at: datetime
    template_id: str
    evidence_window: int
    primary_entity_id: Optional[str] = None
    localized_content: Optional[LocalizedContent] = None

    @property
    def stable_key(self) -> str:
        return stable_key(self.template_id, self.child_id, self.primary_entity_id, self.evidence_window)


# ---------------------------------------------------------------------------
# Stable identifiers
# ---------------------------------------------------------------------------

_MASK_64 = (1 << 64) - 1


def stable_key(
    template_id: str, child_id: str, primary_entity_id: Optional[str], window_days: int
) -> str:
    return f"{template_id}:{child_id}:{primary_entity_id or 'none'}:{window_days}"


def stable_hash(key: str) -> str:
    """8-hex-digit polynomial hash of `key` (multiplier 31, wrapping 64-bit)."""
    h = 0
    for byte in key.encode("utf-8"):
        h = (h * 31 + byte) & _MASK_64
    signed = h - (1 << 64) if h >= (1 << 63) else h
    return f"{abs(signed) & 0xFFFFFFFF:08x}"


def stable_card_id(
    template_id: str, child_id: str, primary_entity_id: Optional[str], window_days: int
) -> str:
    key = stable_key(template_id, child_id, primary_entity_id, window_days)
    return f"{template_id}-{stable_hash(key)}"


# ---------------------------------------------------------------------------
# Template variables
# ---------------------------------------------------------------------------

_PLACEHOLDER = re.compile(r"\{[A-Za-z]+\}")


@dataclass(frozen=True)
class TemplateVariables:
    child_name: str
    child_id: str
    count: int
    days: int
    goal_name: Optional[str] = None
    goal_id: Optional[str] = None
    behavior_name: Optional[str] = None
    behavior_id: Optional[str] = None
    days_remaining: Optional[int] = None
    progress: Optional[float] = None

    @property
    def primary_entity_id(self) -> Optional[str]:
        return self.goal_id or self.behavior_id

    def as_args(self) -> dict[str, str]:
        """Placeholder name -> rendered value, for every variable present."""
        args = {
            "childName": self.child_name,
            "count": str(self.count),
            "days": str(self.days),
        }
        if self.goal_name is not None:
            args["goalName"] = self.goal_name
        if self.behavior_name is not None:
            args["behaviorName"] = self.behavior_name
        if self.days_remaining is not None:
            args["daysRemaining"] = str(self.days_remaining)
        if self.progress is not None:
            args["progress"] = f"{int(self.progress * 100)}%"
        return args

    def interpolate(self, template: str) -> str:
        """
        Literal substitution of every `{name}` present in the variables.

        A placeholder whose optional variable is absent is left as-is.
        """
        result = template
        for name, value in self.as_args().items():
            result = result.replace("{" + name + "}", value)
        leftover = _PLACEHOLDER.findall(result)
        if leftover:
            logger.debug("Unsubstituted placeholders %s in %r", leftover, template)
        return result


# ---------------------------------------------------------------------------
# Template library
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CardTemplate:
    id: str
    signal_type: SignalType
    base_priority: CardPriority
    title_template: str
    one_liner_template: str
    steps: tuple[str, ...]
    why_summary_template: str
    cta_kind: CTAKind
    history_filter: Optional[HistoryTypeFilter] = None


GOAL_AT_RISK = CardTemplate(
    id="goal_at_risk",
    signal_type=SignalType.goal_at_risk,
    base_priority=CardPriority.URGENT,
    title_template="{goalName} needs a push",
    one_liner_template="Only {daysRemaining} days left and {progress} complete.",
    steps=(
        "Focus on quick wins that earn stars",
        "Celebrate each step toward the goal",
        "Consider if the goal needs adjusting",
    ),
    why_summary_template=(
        "Based on {count} events in the last {days} days, "
        "the current pace may not reach the goal in time."
    ),
    cta_kind=CTAKind.goal_detail,
)

GOAL_STALLED = CardTemplate(
    id="goal_stalled",
    signal_type=SignalType.goal_stalled,
    base_priority=CardPriority.HIGH,
    title_template="{goalName} progress has paused",
    one_liner_template="No progress in the last {days} days.",
    steps=(
        "Check in with {childName} about the goal",
        "Look for small wins to log today",
        "Consider breaking the goal into smaller milestones",
    ),
    why_summary_template="No positive moments logged toward this goal in {days} days.",
    cta_kind=CTAKind.goal_detail,
)

ROUTINE_FORMING = CardTemplate(
    id="routine_forming",
    signal_type=SignalType.routine_forming,
    base_priority=CardPriority.MEDIUM,
    title_template="{behaviorName} is becoming a habit",
    one_liner_template="{childName} has done this {count} times in the last {days} days.",
    steps=(
        "Keep acknowledging when it happens",
        "Try not to overpraise - consistency matters more",
        "Notice if it happens at the same time each day",
    ),
    why_summary_template="{count} occurrences in {days} days shows a pattern forming.",
    cta_kind=CTAKind.history,
    history_filter=HistoryTypeFilter.routines,
)

ROUTINE_SLIPPING = CardTemplate(
    id="routine_slipping",
    signal_type=SignalType.routine_slipping,
    base_priority=CardPriority.HIGH,
    title_template="{behaviorName} has been quiet",
    one_liner_template="Last logged {days} days ago after being consistent.",
    steps=(
        "Check if something changed in the routine",
        "Gently remind {childName} about this behavior",
        "Don't worry - habits can restart",
    ),
    why_summary_template=(
        "This routine was happening regularly but hasn't been logged in {days} days."
    ),
    cta_kind=CTAKind.history,
    history_filter=HistoryTypeFilter.routines,
)

HIGH_CHALLENGE_WEEK = CardTemplate(
    id="high_challenge_week",
    signal_type=SignalType.high_challenge_week,
    base_priority=CardPriority.MEDIUM,
    title_template="Tough stretch for {childName}",
    one_liner_template="{count} challenges logged in the last {days} days.",
    steps=(
        "Look for patterns in when challenges happen",
        "Try to catch and log more positive moments",
        "Consider if something external is affecting behavior",
    ),
    why_summary_template=(
        "More challenges than positive moments in the last {days} days. "
        "This is data, not a judgment."
    ),
    cta_kind=CTAKind.history,
    history_filter=HistoryTypeFilter.challenges,
)

ALL_TEMPLATES: tuple[CardTemplate, ...] = (
    GOAL_AT_RISK,
    GOAL_STALLED,
    ROUTINE_FORMING,
    ROUTINE_SLIPPING,
    HIGH_CHALLENGE_WEEK,
)


def template_for(signal_type: SignalType) -> CardTemplate:
    """The single template registered for `signal_type`."""
    if signal_type is SignalType.goal_at_risk:
        return GOAL_AT_RISK
    elif signal_type is SignalType.goal_stalled:
        return GOAL_STALLED
    elif signal_type is SignalType.routine_forming:
        return ROUTINE_FORMING
    elif signal_type is SignalType.routine_slipping:
        return ROUTINE_SLIPPING
    elif signal_type is SignalType.high_challenge_week:
        return HIGH_CHALLENGE_WEEK
    else:
        assert_never(signal_type)


def template_by_id(template_id: str) -> Optional[CardTemplate]:
    return next((t for t in ALL_TEMPLATES if t.id == template_id), None)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _resolve_cta(template: CardTemplate, variables: TemplateVariables) -> CoachCTA:
    kind = template.cta_kind
    if kind is CTAKind.add_moment:
        return OpenAddMoment(child_id=variables.child_id)
    elif kind is CTAKind.goal_detail:
        if variables.goal_id is not None:
            return OpenGoalDetail(goal_id=variables.goal_id)
        return OpenGoalsPicker(child_id=variables.child_id)
    elif kind is CTAKind.goals_picker:
        return OpenGoalsPicker(child_id=variables.child_id)
    elif kind is CTAKind.history:
        return OpenHistory(
            child_id=variables.child_id,
            filter=HistoryFilter(
                type_filter=template.history_filter or HistoryTypeFilter.all,
                behavior_id=variables.behavior_id,
                time_period=variables.days,
            ),
        )
    elif kind is CTAKind.manage_behaviors:
        return OpenManageBehaviors(child_id=variables.child_id)
    else:
        assert_never(kind)


def _localized_content(template_id: str, step_count: int, args: dict[str, str]) -> LocalizedContent:
    prefix = f"insights.{template_id}"
    return LocalizedContent(
        title_key=f"{prefix}.title",
        one_liner_key=f"{prefix}.one_liner",
        steps_keys=tuple(f"{prefix}.step_{i + 1}" for i in range(step_count)),
        why_key=f"{prefix}.why",
        args=args,
    )


def calculate_priority(template: CardTemplate, signal: SignalResult) -> int:
    priority = int(template.base_priority)

    days_remaining = signal.metadata.days_remaining
    if signal.signal_type is SignalType.goal_at_risk and days_remaining is not None:
        if days_remaining <= 3:
            priority += 2
        elif days_remaining <= 7:
            priority += 1

    if signal.confidence > _CONFIDENCE_BOOST_THRESHOLD:
        priority += 1

    if signal.evidence.window == AnalysisWindow.SEVEN_DAYS:
        priority += 1

    if template.cta_kind is CTAKind.add_moment:
        priority += 1

    return min(priority, int(CardPriority.CRITICAL))


def variables_for(signal: SignalResult, child: CanonicalChild) -> TemplateVariables:
    meta = signal.metadata
    return TemplateVariables(
        child_name=child.name,
        child_id=child.id,
        count=meta.count if meta.count is not None else signal.evidence.count,
        days=int(signal.evidence.window),
        goal_name=meta.goal_name,
        goal_id=meta.goal_id,
        behavior_name=meta.behavior_name,
        behavior_id=meta.behavior_id,
        days_remaining=meta.days_remaining,
        progress=meta.progress,
    )


def build_card(
    template: CardTemplate,
    signal: SignalResult,
    variables: TemplateVariables,
    expires_at: datetime,
) -> CoachCard:
    primary_entity_id = variables.primary_entity_id
    return CoachCard(
        id=stable_card_id(template.id, variables.child_id, primary_entity_id, variables.days),
        child_id=variables.child_id,
        priority=calculate_priority(template, signal),
        title=variables.interpolate(template.title_template),
        one_liner=variables.interpolate(template.one_liner_template),
        steps=tuple(variables.interpolate(s) for s in template.steps),
        why_summary=variables.interpolate(template.why_summary_template),
        evidence_event_ids=signal.evidence.event_ids,
        cta=_resolve_cta(template, variables),
        expires_at=as_utc(expires_at),
        template_id=template.id,
        evidence_window=variables.days,
        primary_entity_id=primary_entity_id,
        localized_content=_localized_content(template.id, len(template.steps), variables.as_args()),
    )


def build_card_for_signal(
    signal: SignalResult, child: CanonicalChild, now: datetime
) -> CoachCard:
    """Render a triggered signal for `child`; the card expires one day after `now`."""
    return build_card(
        template=template_for(signal.signal_type),
        signal=signal,
        variables=variables_for(signal, child),
        expires_at=shift(as_utc(now), timedelta(days=CARD_LIFETIME_DAYS)),
    )


# ---------------------------------------------------------------------------
# Insufficient data card
# ---------------------------------------------------------------------------

_INSUFFICIENT_DATA_STEPS = (
    "Log a few positive moments this week",
    "Include routines like bedtime or brushing teeth",
    "Check back in a few days for personalized tips",
)


def insufficient_data_card(child: CanonicalChild, event_count: int, now: datetime) -> CoachCard:
    """The single card returned when fewer than 3 moments exist in 14 days."""
    window = int(AnalysisWindow.FOURTEEN_DAYS)
    args = {"childName": child.name, "count": str(event_count), "days": str(window)}
    return CoachCard(
        id=stable_card_id(INSUFFICIENT_DATA_TEMPLATE_ID, child.id, None, window),
        child_id=child.id,
        priority=int(CardPriority.MEDIUM),
        title="Not enough moments yet",
        one_liner=f"Only {event_count} moments logged in the last {window} days.",
        steps=_INSUFFICIENT_DATA_STEPS,
        why_summary="Insights need at least 3 moments in the last 14 days.",
        evidence_event_ids=(),
        cta=OpenAddMoment(child_id=child.id),
        expires_at=shift(as_utc(now), timedelta(days=CARD_LIFETIME_DAYS)),
        template_id=INSUFFICIENT_DATA_TEMPLATE_ID,
        evidence_window=window,
        primary_entity_id=None,
        localized_content=_localized_content(
            INSUFFICIENT_DATA_TEMPLATE_ID, len(_INSUFFICIENT_DATA_STEPS), args
        ),
    )


def cta_to_dict(cta: CoachCTA) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": cta.kind, "button_text": cta.button_text}
    if isinstance(cta, OpenGoalDetail):
        payload["goal_id"] = cta.goal_id
    else:
        payload["child_id"] = cta.child_id
    if isinstance(cta, OpenHistory):
        payload["filter"] = {
            "type_filter": cta.filter.type_filter.value,
            "behavior_id": cta.filter.behavior_id,
            "time_period": cta.filter.time_period,
        }
    return payload
