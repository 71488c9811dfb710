"""
Record service: creates the app records the insights engine reads.

Public API
----------
create_child(db, data)            -> Child          (single, transactional)
create_behavior_type(db, data)    -> BehaviorType   (single, transactional)
create_reward(db, data)           -> Reward         (single, transactional)
log_moments_batch(items, db)      -> list[dict]     (per-item savepoints)

Internal
--------
_log_one(item, db)                -> BehaviorLog    (flush only, no commit)
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coachcards.core.errors import (
    BehaviorNotFoundError,
    ChildNotFoundError,
    CoachCardsError,
    RecordAlreadyExistsError,
    RecordIngestionError,
)
from coachcards.models.behavior_log import BehaviorLog
from coachcards.models.behavior_type import BehaviorCategory, BehaviorType
from coachcards.models.child import Child
from coachcards.models.reward import Reward
from coachcards.services.canonical import as_utc

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DTOs (keep the service layer schema-agnostic)
# ---------------------------------------------------------------------------

@dataclass
class ChildData:
    name: str
    id: Optional[str] = None
    age: Optional[int] = None
    active_reward_id: Optional[str] = None


@dataclass
class BehaviorTypeData:
    name: str
    category: BehaviorCategory
    id: Optional[str] = None
    default_points: int = 1
    is_active: bool = True


@dataclass
class RewardData:
    child_id: str
    name: str
    target_points: int
    id: Optional[str] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    is_redeemed: bool = False
    is_expired: bool = False
    frozen_earned_points: Optional[int] = None
    make_active: bool = False


@dataclass
class MomentItem:
    child_id: str
    behavior_type_id: str
    timestamp: datetime
    id: Optional[str] = None
    points_applied: Optional[int] = None
    reward_id: Optional[str] = None
    logged_by: Optional[str] = None
    note: Optional[str] = None


def _new_id() -> str:
    return str(uuid.uuid4())


def get_child_or_404(db: Session, child_id: str) -> Child:
    child = db.get(Child, child_id)
    if child is None:
        raise ChildNotFoundError(child_id)
    return child


# ---------------------------------------------------------------------------
# Single records
# ---------------------------------------------------------------------------

def create_child(db: Session, data: ChildData) -> Child:
    child_id = data.id or _new_id()
    if db.get(Child, child_id) is not None:
        raise RecordAlreadyExistsError("child", child_id)
    child = Child(id=child_id, name=data.name, age=data.age, active_reward_id=data.active_reward_id)
    db.add(child)
    db.commit()
    db.refresh(child)
    return child


def create_behavior_type(db: Session, data: BehaviorTypeData) -> BehaviorType:
    type_id = data.id or _new_id()
    if db.get(BehaviorType, type_id) is not None:
        raise RecordAlreadyExistsError("behavior type", type_id)
    behavior = BehaviorType(
        id=type_id,
        name=data.name,
        category=BehaviorCategory(data.category),
        default_points=data.default_points,
        is_active=data.is_active,
    )
    db.add(behavior)
    db.commit()
    db.refresh(behavior)
    return behavior


def create_reward(db: Session, data: RewardData) -> Reward:
    child = get_child_or_404(db, data.child_id)
    reward_id = data.id or _new_id()
    if db.get(Reward, reward_id) is not None:
        raise RecordAlreadyExistsError("reward", reward_id)
    reward = Reward(
        id=reward_id,
        child_id=child.id,
        name=data.name,
        target_points=data.target_points,
        start_date=as_utc(data.start_date) if data.start_date else None,
        due_date=as_utc(data.due_date) if data.due_date else None,
        is_redeemed=data.is_redeemed,
        is_expired=data.is_expired,
        frozen_earned_points=data.frozen_earned_points,
    )
    db.add(reward)
    if data.make_active:
        child.active_reward_id = reward_id
    db.commit()
    db.refresh(reward)
    return reward


# ---------------------------------------------------------------------------
# Moments — flush only, then batch with savepoints
# ---------------------------------------------------------------------------

def _points_for(item: MomentItem, behavior: Optional[BehaviorType]) -> int:
    if item.points_applied is not None:
        return item.points_applied
    if behavior is None:
        raise BehaviorNotFoundError(item.behavior_type_id)
    points = abs(behavior.default_points)
    return -points if BehaviorCategory(behavior.category) == BehaviorCategory.negative else points


def _log_one(item: MomentItem, db: Session) -> BehaviorLog:
    """
    Validate and persist one moment. Calls db.flush() but does NOT commit.

    A behavior type that no longer exists is accepted when the item carries
    explicit points; without them the default points are unknown.
    """
    get_child_or_404(db, item.child_id)
    log_id = item.id or _new_id()
    if db.get(BehaviorLog, log_id) is not None:
        raise RecordAlreadyExistsError("moment", log_id)

    behavior = db.get(BehaviorType, item.behavior_type_id)
    log = BehaviorLog(
        id=log_id,
        child_id=item.child_id,
        behavior_type_id=item.behavior_type_id,
        timestamp=as_utc(item.timestamp),
        points_applied=_points_for(item, behavior),
        reward_id=item.reward_id,
        logged_by=item.logged_by,
        note=item.note,
    )
    db.add(log)
    db.flush()
    return log


def log_moments_batch(items: list[MomentItem], db: Session) -> list[dict]:
    """
    Persist moments using one savepoint per item.
    A failure on one item does not cancel the others.
    """
    raw_results = []

    for i, item in enumerate(items):
        savepoint = db.begin_nested()
        try:
            log = _log_one(item, db)
            savepoint.commit()
            raw_results.append({"index": i, "ok": True, "result": log, "code": None, "error": None})
        except CoachCardsError as exc:
            savepoint.rollback()
            raw_results.append(
                {"index": i, "ok": False, "result": None, "code": exc.code, "error": exc.message}
            )
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.warning("Moment %d failed to persist: %s", i, exc)
            err = RecordIngestionError(message=str(exc), record_id=item.id)
            raw_results.append(
                {"index": i, "ok": False, "result": None, "code": err.code, "error": err.message}
            )

    db.commit()

    for r in raw_results:
        if r["ok"]:
            db.refresh(r["result"])

    return raw_results
