"""Create AI gateway tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  ai_service_configs, ai_usage_tracking, ai_chat_sessions and
       ai_chat_messages, with the indexes the store queries by.
How:   Messages reference sessions with ON DELETE CASCADE.

Rollback: downgrade() drops all four tables (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── Provider configurations (one row per owner + provider) ───────────
    op.create_table(
        "ai_service_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("service_name", sa.String(50), nullable=False, comment="openai, gemini, anthropic"),
        sa.Column("api_key", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("model_name", sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_ai_service_configs"),
    )
    op.create_index(
        "idx_ai_service_configs_user_active",
        "ai_service_configs",
        ["user_id", "is_active"],
    )

    # ── Usage tracking (append-only) ─────────────────────────────────────
    op.create_table(
        "ai_usage_tracking",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("service_name", sa.String(50), nullable=False),
        sa.Column("operation_type", sa.String(100), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("cost_estimate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_ai_usage_tracking"),
    )
    op.create_index("idx_ai_usage_tracking_user_date", "ai_usage_tracking", ["user_id", "date"])

    # ── Chat sessions ────────────────────────────────────────────────────
    op.create_table(
        "ai_chat_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("service_name", sa.String(50), nullable=False),
        sa.Column("model_name", sa.String(100), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("session_name", sa.String(255), nullable=False, server_default=sa.text("'New chat'")),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_tokens_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_ai_chat_sessions"),
    )
    op.create_index(
        "idx_ai_chat_sessions_user_created",
        "ai_chat_sessions",
        ["user_id", "created_at"],
    )

    # ── Chat messages ────────────────────────────────────────────────────
    op.create_table(
        "ai_chat_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, comment="user, assistant, system"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("token_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_ai_chat_messages"),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["ai_chat_sessions.id"],
            name="fk_ai_chat_messages_session",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system')",
            name="ck_ai_chat_messages_role",
        ),
    )
    op.create_index(
        "idx_ai_chat_messages_session_created",
        "ai_chat_messages",
        ["session_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_ai_chat_messages_session_created", table_name="ai_chat_messages")
    op.drop_table("ai_chat_messages")
    op.drop_index("idx_ai_chat_sessions_user_created", table_name="ai_chat_sessions")
    op.drop_table("ai_chat_sessions")
    op.drop_index("idx_ai_usage_tracking_user_date", table_name="ai_usage_tracking")
    op.drop_table("ai_usage_tracking")
    op.drop_index("idx_ai_service_configs_user_active", table_name="ai_service_configs")
    op.drop_table("ai_service_configs")
