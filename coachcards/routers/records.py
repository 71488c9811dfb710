"""
Records router — the app records insights are computed from.

POST /records/children         — create a child
POST /records/behaviors        — create a behavior type
POST /records/rewards          — create a reward (goal)
POST /records/moments/batch    — log a batch of moments
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from coachcards.core.config import settings
from coachcards.core.errors import BatchTooLargeError, EmptyBatchError
from coachcards.db.base import get_db
from coachcards.schemas.common import ErrorResponse
from coachcards.schemas.records import (
    BehaviorTypeCreate,
    BehaviorTypeOut,
    ChildCreate,
    ChildOut,
    MomentBatchItemResult,
    MomentBatchRequest,
    MomentBatchResponse,
    MomentOut,
    RewardCreate,
    RewardOut,
)
from coachcards.services.records import (
    BehaviorTypeData,
    ChildData,
    MomentItem,
    RewardData,
    create_behavior_type,
    create_child,
    create_reward,
    log_moments_batch,
)

router = APIRouter(prefix="/records", tags=["records"])


@router.post(
    "/children",
    response_model=ChildOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a child",
    responses={409: {"model": ErrorResponse, "description": "A child with this id already exists."}},
)
def post_child(payload: ChildCreate, db: Session = Depends(get_db)):
    child = create_child(db, ChildData(id=payload.id, name=payload.name, age=payload.age))
    return ChildOut.model_validate(child)


@router.post(
    "/behaviors",
    response_model=BehaviorTypeOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a behavior type",
    responses={409: {"model": ErrorResponse, "description": "A behavior type with this id already exists."}},
)
def post_behavior(payload: BehaviorTypeCreate, db: Session = Depends(get_db)):
    """
    Only active `routine_positive` behaviors are checked for routine
    forming / slipping signals.
    """
    behavior = create_behavior_type(db, BehaviorTypeData(**payload.model_dump()))
    return BehaviorTypeOut.model_validate(behavior)


@router.post(
    "/rewards",
    response_model=RewardOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a reward (goal)",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown child (code CHILD_NOT_FOUND)."},
        409: {"model": ErrorResponse, "description": "A reward with this id already exists."},
    },
)
def post_reward(payload: RewardCreate, db: Session = Depends(get_db)):
    reward = create_reward(db, RewardData(**payload.model_dump()))
    return RewardOut.model_validate(reward)


@router.post(
    "/moments/batch",
    response_model=MomentBatchResponse,
    status_code=status.HTTP_207_MULTI_STATUS,
    summary="Log a batch of moments",
    responses={
        207: {"description": "Multi-status: check each item's `ok` field."},
        422: {"model": ErrorResponse, "description": "Batch-level validation error (empty list, too many items)."},
    },
)
def post_moments_batch(payload: MomentBatchRequest, db: Session = Depends(get_db)):
    """
    Log up to `EVENT_BATCH_MAX_ITEMS` moments in a single request.

    Each item is processed independently using a database savepoint.
    A failure on one item (unknown child, duplicate id, unknown behavior
    without explicit points) does not roll back the others.
    Response HTTP status is **207 Multi-Status**: always inspect each `item.ok`.
    """
    if not payload.items:
        raise EmptyBatchError()
    if len(payload.items) > settings.EVENT_BATCH_MAX_ITEMS:
        raise BatchTooLargeError(max_items=settings.EVENT_BATCH_MAX_ITEMS, received=len(payload.items))

    raw_results = log_moments_batch(
        [MomentItem(**item.model_dump()) for item in payload.items], db
    )

    item_results = [
        MomentBatchItemResult(
            index=r["index"],
            ok=r["ok"],
            moment=MomentOut.model_validate(r["result"]) if r["ok"] else None,
            code=r["code"],
            error=r["error"],
        )
        for r in raw_results
    ]
    succeeded = sum(1 for r in item_results if r.ok)
    return MomentBatchResponse(
        total=len(item_results),
        succeeded=succeeded,
        failed=len(item_results) - succeeded,
        items=item_results,
    )
