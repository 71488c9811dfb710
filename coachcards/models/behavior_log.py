"""
BehaviorLog — one logged moment for a child.

Append-only. `behavior_type_id` is not a foreign key: a behavior type may be
deleted after moments were logged against it, and those moments still count
(their category then falls back to the sign of `points_applied`).
"""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from coachcards.db.base import Base


class BehaviorLog(Base):
    __tablename__ = "behavior_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    child_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    behavior_type_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    points_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    logged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
