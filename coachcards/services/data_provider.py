"""
SQL data provider: adapts stored app records to canonical engine shapes.

Adapter rules
-------------
  Event category  behavior type's category; an unknown type falls back to the
                  sign of the applied points (>= 0 positive, else negative)
                  and the behavior name "Unknown".
  Goal points     frozen earned points once redeemed/expired (when present),
                  otherwise the sum of positive points logged between the
                  reward's start (or creation) and its due date (or `now`).
                  The child's active reward counts every log; other rewards
                  count only logs linked to them.

Records are read eagerly per call; nothing is cached across requests.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from coachcards.models.behavior_log import BehaviorLog
from coachcards.models.behavior_type import BehaviorCategory, BehaviorType
from coachcards.models.child import Child
from coachcards.models.reward import Reward
from coachcards.services.canonical import (
    CanonicalBehavior,
    CanonicalChild,
    CanonicalGoal,
    EventCategory,
    UnifiedEvent,
    as_utc,
)

_CATEGORY_MAP = {
    BehaviorCategory.routine_positive: EventCategory.routine_positive,
    BehaviorCategory.positive: EventCategory.positive,
    BehaviorCategory.negative: EventCategory.negative,
}


# ---------------------------------------------------------------------------
# Record -> canonical adapters
# ---------------------------------------------------------------------------

def to_unified_event(log: BehaviorLog, behavior_type: Optional[BehaviorType]) -> UnifiedEvent:
    if behavior_type is not None:
        category = _CATEGORY_MAP[BehaviorCategory(behavior_type.category)]
        name = behavior_type.name
    else:
        category = EventCategory.positive if log.points_applied >= 0 else EventCategory.negative
        name = "Unknown"
    return UnifiedEvent(
        id=log.id,
        child_id=log.child_id,
        timestamp=log.timestamp,
        category=category,
        stars_delta=log.points_applied,
        behavior_type_id=log.behavior_type_id,
        behavior_name=name,
        linked_goal_id=log.reward_id,
        caregiver_id=log.logged_by,
    )


def earned_points(
    reward: Reward, logs: list[BehaviorLog], is_primary: bool, now: datetime
) -> int:
    if (reward.is_redeemed or reward.is_expired) and reward.frozen_earned_points is not None:
        return reward.frozen_earned_points

    start = as_utc(reward.start_date or reward.created_at)
    end = as_utc(reward.due_date) if reward.due_date else as_utc(now)
    return sum(
        log.points_applied
        for log in logs
        if log.child_id == reward.child_id
        and start <= as_utc(log.timestamp) <= end
        and log.points_applied > 0
        and (is_primary or log.reward_id == reward.id)
    )


def to_canonical_goal(
    reward: Reward, logs: list[BehaviorLog], is_primary: bool, now: datetime
) -> CanonicalGoal:
    return CanonicalGoal(
        id=reward.id,
        child_id=reward.child_id,
        name=reward.name,
        target_points=reward.target_points,
        current_points=earned_points(reward, logs, is_primary, now),
        created_date=reward.created_at,
        due_date=reward.due_date,
        is_redeemed=reward.is_redeemed,
        is_expired=reward.is_expired,
    )


def to_canonical_behavior(behavior_type: BehaviorType) -> CanonicalBehavior:
    return CanonicalBehavior(
        id=behavior_type.id,
        name=behavior_type.name,
        category=_CATEGORY_MAP[BehaviorCategory(behavior_type.category)],
        default_points=behavior_type.default_points,
        is_active=behavior_type.is_active,
    )


def to_canonical_child(child: Child) -> CanonicalChild:
    return CanonicalChild(
        id=child.id,
        name=child.name,
        age=child.age,
        active_goal_id=child.active_reward_id,
    )


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class SqlInsightsDataProvider:
    """`InsightsDataProvider` over the SQLAlchemy session of one request."""

    def __init__(self, db: Session, now: datetime):
        self.db = db
        self.now = as_utc(now)

    def _logs(self, child_id: str) -> list[BehaviorLog]:
        return (
            self.db.query(BehaviorLog)
            .filter(BehaviorLog.child_id == child_id)
            .order_by(BehaviorLog.timestamp, BehaviorLog.id)
            .all()
        )

    def child(self, child_id: str) -> Optional[CanonicalChild]:
        row = self.db.get(Child, child_id)
        return to_canonical_child(row) if row else None

    def events(self, child_id: str) -> list[UnifiedEvent]:
        types = {t.id: t for t in self.db.query(BehaviorType).all()}
        return [to_unified_event(log, types.get(log.behavior_type_id)) for log in self._logs(child_id)]

    def goals(self, child_id: str) -> list[CanonicalGoal]:
        child = self.db.get(Child, child_id)
        if child is None:
            return []
        rewards = (
            self.db.query(Reward)
            .filter(Reward.child_id == child_id)
            .order_by(Reward.created_at, Reward.id)
            .all()
        )
        logs = self._logs(child_id)
        return [
            to_canonical_goal(r, logs, r.id == child.active_reward_id, self.now)
            for r in rewards
        ]

    def routine_behaviors(self) -> list[CanonicalBehavior]:
        rows = (
            self.db.query(BehaviorType)
            .filter(
                BehaviorType.is_active == True,  # noqa
                BehaviorType.category == BehaviorCategory.routine_positive,
            )
            .order_by(BehaviorType.id)
            .all()
        )
        return [to_canonical_behavior(r) for r in rows]

    def all_behaviors(self) -> list[CanonicalBehavior]:
        return [
            to_canonical_behavior(r)
            for r in self.db.query(BehaviorType).order_by(BehaviorType.id).all()
        ]
