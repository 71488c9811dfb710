from datetime import datetime
from sqlalchemy import Integer, String, Boolean, DateTime, Enum, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from coachcards.db.base import Base


class BehaviorCategory(str, enum.Enum):
    routine_positive = "routine_positive"
    positive = "positive"
    negative = "negative"


class BehaviorType(Base):
    __tablename__ = "behavior_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[BehaviorCategory] = mapped_column(
        Enum(BehaviorCategory, name="behavior_category_enum"), nullable=False
    )
    default_points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
