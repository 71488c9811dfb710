"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

children, behavior_types, behavior_logs, rewards and the app_state
key/value table that holds the insights cooldown blob.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- ENUM types ---
    behavior_category_enum = sa.Enum(
        "routine_positive", "positive", "negative", name="behavior_category_enum"
    )
    behavior_category_enum.create(op.get_bind(), checkfirst=True)

    # --- children ---
    op.create_table(
        "children",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("active_reward_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- behavior_types ---
    op.create_table(
        "behavior_types",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("category", sa.Enum(
            "routine_positive", "positive", "negative",
            name="behavior_category_enum", create_type=False,
        ), nullable=False),
        sa.Column("default_points", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- behavior_logs ---
    op.create_table(
        "behavior_logs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("child_id", sa.String(64), nullable=False),
        sa.Column("behavior_type_id", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("points_applied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reward_id", sa.String(64), nullable=True),
        sa.Column("logged_by", sa.String(64), nullable=True),
        sa.Column("note", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["child_id"], ["children.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_behavior_logs_child_id", "behavior_logs", ["child_id"])
    op.create_index("ix_behavior_logs_behavior_type_id", "behavior_logs", ["behavior_type_id"])
    op.create_index("ix_behavior_logs_timestamp", "behavior_logs", ["timestamp"])
    op.create_index("ix_behavior_logs_reward_id", "behavior_logs", ["reward_id"])

    # --- rewards ---
    op.create_table(
        "rewards",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("child_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("target_points", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frozen_earned_points", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["child_id"], ["children.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rewards_child_id", "rewards", ["child_id"])

    # --- app_state ---
    op.create_table(
        "app_state",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("app_state")
    op.drop_index("ix_rewards_child_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_behavior_logs_reward_id", table_name="behavior_logs")
    op.drop_index("ix_behavior_logs_timestamp", table_name="behavior_logs")
    op.drop_index("ix_behavior_logs_behavior_type_id", table_name="behavior_logs")
    op.drop_index("ix_behavior_logs_child_id", table_name="behavior_logs")
    op.drop_table("behavior_logs")
    op.drop_table("behavior_types")
    op.drop_table("children")

    sa.Enum(name="behavior_category_enum").drop(op.get_bind(), checkfirst=True)
