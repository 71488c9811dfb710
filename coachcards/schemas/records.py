"""
Record request / response schemas.

Children:   POST /records/children        -> ChildCreate        -> ChildOut
Behaviors:  POST /records/behaviors       -> BehaviorTypeCreate -> BehaviorTypeOut
Rewards:    POST /records/rewards         -> RewardCreate       -> RewardOut
Moments:    POST /records/moments/batch   -> MomentBatchRequest -> MomentBatchResponse
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coachcards.models.behavior_type import BehaviorCategory

_ID = Annotated[str, Field(min_length=1, max_length=64)]


def _strip_name(v: str) -> str:
    stripped = v.strip() if isinstance(v, str) else v
    if not stripped:
        raise ValueError("name must not be empty after stripping whitespace")
    return stripped


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------

class ChildCreate(BaseModel):
    id: Optional[_ID] = Field(default=None, description="Client-supplied id; generated when omitted.")
    name: Annotated[str, Field(min_length=1, max_length=128, examples=["Emma"])]
    age: Optional[Annotated[int, Field(ge=0, le=25)]] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _strip_name(v)


class ChildOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    age: Optional[int] = None
    active_reward_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Behavior types
# ---------------------------------------------------------------------------

class BehaviorTypeCreate(BaseModel):
    id: Optional[_ID] = None
    name: Annotated[str, Field(min_length=1, max_length=128, examples=["Brushed teeth"])]
    category: BehaviorCategory = Field(
        description="routine_positive | positive | negative",
        examples=["routine_positive"],
    )
    default_points: Annotated[int, Field(ge=0, le=100)] = 1
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _strip_name(v)


class BehaviorTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: BehaviorCategory
    default_points: int
    is_active: bool


# ---------------------------------------------------------------------------
# Rewards (goals)
# ---------------------------------------------------------------------------

class RewardCreate(BaseModel):
    id: Optional[_ID] = None
    child_id: _ID
    name: Annotated[str, Field(min_length=1, max_length=128, examples=["Trip to the zoo"])]
    target_points: Annotated[int, Field(gt=0, le=100_000)]
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    is_redeemed: bool = False
    is_expired: bool = False
    frozen_earned_points: Optional[int] = None
    make_active: bool = Field(
        default=False,
        description="Make this the child's active reward (every moment counts toward it).",
    )

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _strip_name(v)


class RewardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    child_id: str
    name: str
    target_points: int
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    is_redeemed: bool
    is_expired: bool
    frozen_earned_points: Optional[int] = None


# ---------------------------------------------------------------------------
# Moments (behavior logs)
# ---------------------------------------------------------------------------

class MomentCreate(BaseModel):
    id: Optional[_ID] = None
    child_id: _ID
    behavior_type_id: _ID
    timestamp: datetime = Field(description="When the moment happened; naive values are UTC.")
    points_applied: Optional[int] = Field(
        default=None,
        description="Signed points. Defaults to the behavior type's points (negated for challenges).",
    )
    reward_id: Optional[_ID] = None
    logged_by: Optional[str] = Field(default=None, max_length=64)
    note: Optional[str] = Field(default=None, max_length=512)


class MomentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    child_id: str
    behavior_type_id: str
    timestamp: datetime
    points_applied: int
    reward_id: Optional[str] = None
    logged_by: Optional[str] = None


class MomentBatchRequest(BaseModel):
    """A batch of moments. Each item is independent: one failure does not cancel the others."""
    items: list[MomentCreate] = Field(description="Moments to log, in order.")


class MomentBatchItemResult(BaseModel):
    index: int = Field(description="Zero-based position in the request items list.")
    ok: bool
    moment: Optional[MomentOut] = Field(default=None, description="Populated when ok=True.")
    code: Optional[str] = Field(default=None, description="Error code when ok=False.")
    error: Optional[str] = Field(default=None, description="Error message when ok=False.")


class MomentBatchResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    items: list[MomentBatchItemResult]
