"""
Insights router — coaching cards, display recording, diagnostics.

GET  /insights/{child_id}/cards             — ranked coaching cards (pure)
POST /insights/{child_id}/cards/displayed   — start cooldowns for shown cards
GET  /insights/{child_id}/debug             — full pipeline trace (JSON)
GET  /insights/{child_id}/debug.txt         — full pipeline trace (plain text)
GET  /insights/cooldowns                    — active cooldowns, all children
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from coachcards.core.config import settings
from coachcards.core.errors import TimestampOutOfRangeError
from coachcards.db.base import get_db
from coachcards.schemas.common import ErrorResponse
from coachcards.schemas.insights import (
    CardsDisplayedRequest,
    CardsDisplayedResponse,
    CardsResponse,
    CoachCardOut,
    CooldownOut,
    CooldownsResponse,
    CTAOut,
    DataStatsOut,
    DebugReportResponse,
    DisplayedCardRef,
    DroppedCardOut,
    HistoryFilterOut,
    LocalizedContentOut,
    SignalResultOut,
    StageTraceOut,
)
from coachcards.services.canonical import supported_time
from coachcards.services.cards import CoachCard, cta_to_dict
from coachcards.services.coaching_engine import CoachingEngine
from coachcards.services.cooldowns import ActiveCooldown, CooldownStore, SqlCooldownBackend
from coachcards.services.data_provider import SqlInsightsDataProvider
from coachcards.services.debug_report import InsightsDebugReport
from coachcards.services.impressions import ImpressionTracker
from coachcards.services.records import get_child_or_404
from coachcards.services.signals import SignalResult

router = APIRouter(prefix="/insights", tags=["insights"])

_NOW_QUERY = Query(
    default=None,
    description="Evaluation instant (ISO-8601). Defaults to the current time (UTC).",
    examples=["2026-03-01T18:00:00Z"],
)
_NOW_ERRORS = {
    422: {"model": ErrorResponse, "description": "`now` outside the supported range (code TIMESTAMP_OUT_OF_RANGE)."},
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _evaluation_instant(now: Optional[datetime] = _NOW_QUERY) -> datetime:
    """`now` query parameter as UTC, defaulting to the current time."""
    if now is None:
        return _utcnow()
    try:
        return supported_time(now)
    except ValueError as exc:
        raise TimestampOutOfRangeError("now", str(exc)) from exc


def _cooldown_store(db: Session) -> CooldownStore:
    return CooldownStore(SqlCooldownBackend(db, settings.INSIGHTS_COOLDOWN_KEY))


def _engine(db: Session, now: datetime) -> CoachingEngine:
    return CoachingEngine(SqlInsightsDataProvider(db, now), _cooldown_store(db))


@dataclass(frozen=True)
class _ShownCard:
    id: str
    template_id: str
    child_id: str


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _card_to_response(card: CoachCard) -> CoachCardOut:
    cta = cta_to_dict(card.cta)
    loc = card.localized_content
    return CoachCardOut(
        id=card.id,
        child_id=card.child_id,
        priority=card.priority,
        title=card.title,
        one_liner=card.one_liner,
        steps=list(card.steps),
        why_summary=card.why_summary,
        localized_content=LocalizedContentOut(
            title_key=loc.title_key,
            one_liner_key=loc.one_liner_key,
            steps_keys=list(loc.steps_keys),
            why_key=loc.why_key,
            args=dict(loc.args),
        ) if loc else None,
        evidence_event_ids=list(card.evidence_event_ids),
        cta=CTAOut(
            type=cta["type"],
            button_text=cta["button_text"],
            child_id=cta.get("child_id"),
            goal_id=cta.get("goal_id"),
            filter=HistoryFilterOut(**cta["filter"]) if "filter" in cta else None,
        ),
        expires_at=card.expires_at,
        template_id=card.template_id,
        evidence_window=card.evidence_window,
        primary_entity_id=card.primary_entity_id,
        stable_key=card.stable_key,
    )


def _cooldown_to_response(c: ActiveCooldown) -> CooldownOut:
    return CooldownOut(template_id=c.template_id, child_id=c.child_id, ends_at=c.ends_at)


def _signal_to_response(s: SignalResult) -> SignalResultOut:
    return SignalResultOut(
        signal_type=s.signal_type.value,
        triggered=s.triggered,
        confidence=s.confidence,
        evidence_event_ids=list(s.evidence.event_ids),
        evidence_window=int(s.evidence.window),
        evidence_count=s.evidence.count,
        explanation=s.explanation,
        metadata=s.metadata.to_dict(),
    )


def _report_to_response(r: InsightsDebugReport) -> DebugReportResponse:
    stats = r.data_stats
    return DebugReportResponse(
        child_id=r.child_id,
        child_name=r.child_name,
        generated_at=r.generated_at,
        has_insufficient_data=r.has_insufficient_data,
        summary=r.cards_summary,
        data_stats=DataStatsOut(
            total_events_14_days=stats.total_events_14_days,
            positive_events_7_days=stats.positive_events_7_days,
            challenge_events_7_days=stats.challenge_events_7_days,
            routine_events_7_days=stats.routine_events_7_days,
            active_goals=stats.active_goals,
            goals_with_deadlines=stats.goals_with_deadlines,
            goals_at_risk=stats.goals_at_risk,
            routine_behaviors=stats.routine_behaviors,
        ),
        stages=[
            StageTraceOut(stage=t.stage.value, cards_in=t.cards_in, cards_out=t.cards_out)
            for t in r.stages
        ],
        signal_results=[_signal_to_response(s) for s in r.signal_results],
        built_cards=[_card_to_response(c) for c in r.built_cards],
        dropped_cards=[
            DroppedCardOut(card=_card_to_response(d.card), reason=d.reason.value, details=d.details)
            for d in r.dropped_cards
        ],
        selected_cards=[_card_to_response(c) for c in r.selected_cards],
        active_cooldowns=[_cooldown_to_response(c) for c in r.active_cooldowns],
        formatted=r.formatted_report(),
    )


# ---------------------------------------------------------------------------
# GET /insights/cooldowns
# ---------------------------------------------------------------------------

@router.get(
    "/cooldowns",
    response_model=CooldownsResponse,
    summary="Active cooldowns",
    responses=_NOW_ERRORS,
)
def list_cooldowns(
    at: datetime = Depends(_evaluation_instant),
    db: Session = Depends(get_db),
):
    """Every (template, child) pair still on cooldown at `now`, with its end time."""
    cooldowns = _cooldown_store(db).active_cooldowns(at)
    return CooldownsResponse(now=at, cooldowns=[_cooldown_to_response(c) for c in cooldowns])


# ---------------------------------------------------------------------------
# GET /insights/{child_id}/cards
# ---------------------------------------------------------------------------

@router.get(
    "/{child_id}/cards",
    response_model=CardsResponse,
    summary="Generate coaching cards",
    responses={
        200: {"description": "Up to 6 cards in rank order. Empty for an unknown child."},
        **_NOW_ERRORS,
    },
)
def get_cards(
    child_id: str,
    at: datetime = Depends(_evaluation_instant),
    db: Session = Depends(get_db),
):
    """
    Run signal detection for one child and return the ranked cards.

    ### Guarantees
    - **Pure**: calling this any number of times never starts a cooldown.
      Call `POST /insights/{child_id}/cards/displayed` once cards were shown.
    - **Deterministic**: identical data and `now` give byte-identical output.
    - **Capped**: at most 6 cards, at most 1 risk card and 2 improvement cards.
    - Fewer than 3 moments in the last 14 days yields a single
      `insufficient_data` card.
    """
    cards = _engine(db, at).generate_cards(child_id, at)
    return CardsResponse(
        child_id=child_id,
        generated_at=at,
        count=len(cards),
        cards=[_card_to_response(c) for c in cards],
    )


# ---------------------------------------------------------------------------
# POST /insights/{child_id}/cards/displayed
# ---------------------------------------------------------------------------

@router.post(
    "/{child_id}/cards/displayed",
    response_model=CardsDisplayedResponse,
    summary="Record cards as displayed",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown child (code CHILD_NOT_FOUND)."},
        422: {"model": ErrorResponse, "description": "`at` outside the supported range (code VALIDATION_ERROR)."},
    },
)
def cards_displayed(
    child_id: str,
    payload: CardsDisplayedRequest,
    db: Session = Depends(get_db),
):
    """
    Start the 3-day cooldown for each seen card's template for this child.

    A card counts as seen when it carries no `visible_seconds`, when
    `interacted` is true, or when `visible_seconds` reaches the impression
    threshold (default 2 s). Cards below the threshold are listed in
    `not_seen` and start no cooldown.

    Idempotent: records are upserted, so repeating the call with the same
    cards and `at` leaves the same state.
    """
    get_child_or_404(db, child_id)
    at = payload.at or _utcnow()
    tracker = ImpressionTracker(_engine(db, at), now=lambda: at)

    refs: dict[str, tuple[_ShownCard, DisplayedCardRef]] = {}
    for ref in payload.cards:
        card = _ShownCard(id=ref.id or ref.template_id, template_id=ref.template_id, child_id=child_id)
        refs.setdefault(card.id, (card, ref))

    seen: list[_ShownCard] = []
    timed: list[_ShownCard] = []
    for card, ref in refs.values():
        if ref.interacted or ref.visible_seconds is None:
            seen.append(card)
        else:
            tracker.card_visible_for(card, ref.visible_seconds)
            timed.append(card)

    recorded = tracker.force_record_all(seen) + tracker.record_cards_with_threshold(timed)
    return CardsDisplayedResponse(
        child_id=child_id,
        recorded=sorted({c.template_id for c in recorded}),
        not_seen=sorted(c.id for c in timed if c.id not in tracker.recorded_ids),
        at=at,
    )


# ---------------------------------------------------------------------------
# GET /insights/{child_id}/debug
# ---------------------------------------------------------------------------

@router.get(
    "/{child_id}/debug",
    response_model=DebugReportResponse,
    summary="Debug report (JSON)",
    responses=_NOW_ERRORS,
)
def debug_report(
    child_id: str,
    at: datetime = Depends(_evaluation_instant),
    db: Session = Depends(get_db),
):
    """
    Explain "why didn't I get a card?": every signal with its explanation,
    every built card, every dropped card with reason, the selected cards
    (identical to GET cards for the same `now`), and active cooldowns.
    """
    return _report_to_response(_engine(db, at).debug_report(child_id, at))


@router.get(
    "/{child_id}/debug.txt",
    response_class=PlainTextResponse,
    summary="Debug report (plain text)",
    responses=_NOW_ERRORS,
)
def debug_report_text(
    child_id: str,
    at: datetime = Depends(_evaluation_instant),
    db: Session = Depends(get_db),
):
    return _engine(db, at).debug_report(child_id, at).formatted_report()
