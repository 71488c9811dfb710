"""
Insights request / response schemas.

Cards:      GET  /insights/{child_id}/cards             -> CardsResponse
Displayed:  POST /insights/{child_id}/cards/displayed   -> CardsDisplayedRequest -> CardsDisplayedResponse
Debug:      GET  /insights/{child_id}/debug             -> DebugReportResponse
Cooldowns:  GET  /insights/cooldowns                    -> CooldownsResponse
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, field_validator

from coachcards.services.canonical import supported_time


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

class HistoryFilterOut(BaseModel):
    type_filter: str
    behavior_id: Optional[str] = None
    time_period: Optional[int] = None


class CTAOut(BaseModel):
    """Discriminated by `type`: openAddMoment | openGoalDetail | openGoalsPicker | openHistory | openManageBehaviors."""
    type: str
    button_text: str
    child_id: Optional[str] = None
    goal_id: Optional[str] = None
    filter: Optional[HistoryFilterOut] = None


class LocalizedContentOut(BaseModel):
    title_key: str
    one_liner_key: str
    steps_keys: list[str]
    why_key: str
    args: dict[str, str] = Field(description="Placeholder name -> value, shared by every key.")


class CoachCardOut(BaseModel):
    id: str = Field(description="Deterministic id: '{template_id}-{8 hex digits}'.")
    child_id: str
    priority: int
    title: str
    one_liner: str
    steps: list[str]
    why_summary: str
    localized_content: Optional[LocalizedContentOut] = None
    evidence_event_ids: list[str]
    cta: CTAOut
    expires_at: datetime
    template_id: str
    evidence_window: int = Field(description="Evidence window in days (7 or 14).")
    primary_entity_id: Optional[str] = None
    stable_key: str


class CardsResponse(BaseModel):
    child_id: str
    generated_at: datetime
    count: int
    cards: list[CoachCardOut]


# ---------------------------------------------------------------------------
# Displayed cards
# ---------------------------------------------------------------------------

class DisplayedCardRef(BaseModel):
    id: Optional[str] = Field(default=None, description="Card id as returned by GET cards.")
    template_id: Annotated[str, Field(min_length=1, max_length=64)]
    visible_seconds: Optional[float] = Field(
        default=None,
        ge=0,
        le=86400,
        allow_inf_nan=False,
        description=(
            "How long the card stayed on screen. When given, the card only counts as "
            "seen at or above the impression threshold. Omit to count it as seen."
        ),
    )
    interacted: bool = Field(
        default=False,
        description="CTA tapped or evidence opened; counts as seen regardless of visibility.",
    )


class CardsDisplayedRequest(BaseModel):
    cards: Annotated[list[DisplayedCardRef], Field(
        min_length=1,
        max_length=50,
        description="Cards the parent actually saw.",
    )]
    at: Optional[datetime] = Field(default=None, description="When they were seen. Defaults to now (UTC).")

    @field_validator("at")
    @classmethod
    def check_supported_range(cls, v: Optional[datetime]) -> Optional[datetime]:
        return supported_time(v) if v is not None else v


class CardsDisplayedResponse(BaseModel):
    child_id: str
    recorded: list[str] = Field(description="Template ids now on cooldown for this child.")
    not_seen: list[str] = Field(
        default_factory=list,
        description="Card ids (or template ids) visible for less than the impression threshold.",
    )
    at: datetime


# ---------------------------------------------------------------------------
# Cooldowns
# ---------------------------------------------------------------------------

class CooldownOut(BaseModel):
    template_id: str
    child_id: str
    ends_at: datetime


class CooldownsResponse(BaseModel):
    now: datetime
    cooldowns: list[CooldownOut]


# ---------------------------------------------------------------------------
# Debug report
# ---------------------------------------------------------------------------

class SignalResultOut(BaseModel):
    signal_type: str
    triggered: bool
    confidence: float
    evidence_event_ids: list[str]
    evidence_window: int
    evidence_count: int
    explanation: str
    metadata: dict[str, Any]


class DroppedCardOut(BaseModel):
    card: CoachCardOut
    reason: str
    details: str


class DataStatsOut(BaseModel):
    total_events_14_days: int
    positive_events_7_days: int
    challenge_events_7_days: int
    routine_events_7_days: int
    active_goals: int
    goals_with_deadlines: int
    goals_at_risk: int
    routine_behaviors: int


class StageTraceOut(BaseModel):
    stage: str
    cards_in: int
    cards_out: int


class DebugReportResponse(BaseModel):
    child_id: str
    child_name: Optional[str] = None
    generated_at: datetime
    has_insufficient_data: bool
    summary: str = Field(description="'Built: a -> Dropped: b -> Selected: c'")
    data_stats: DataStatsOut
    stages: list[StageTraceOut]
    signal_results: list[SignalResultOut]
    built_cards: list[CoachCardOut]
    dropped_cards: list[DroppedCardOut]
    selected_cards: list[CoachCardOut]
    active_cooldowns: list[CooldownOut]
    formatted: str = Field(description="Render-ready plain-text report.")
