"""
StudyVault Backend — AI Gateway SQLAlchemy Models
===================================================

What:  ORM models for the four tables owned by the AI gateway:
       ai_service_configs, ai_usage_tracking, ai_chat_sessions, ai_chat_messages.
How:   Inherit from the shared DeclarativeBase; Alembic reads the metadata.
Who:   Used only by AIStore (services/store.py). Everything above the store
       works with pydantic schemas, never with these rows.
When:  Rows are created per config save, per billed call, per chat turn.

Table Design Notes:
    - Attribute names follow the schema layer (owner_id, provider, model);
      the column names keep the persisted layout (user_id, service_name,
      model_name) so existing rows stay readable.
    - Generic Uuid / DateTime(timezone=True) types: PostgreSQL in production,
      sqlite in the test suite.
    - Usage rows are append-only; nothing updates or deletes them.
"""

import uuid
from datetime import date as date_type, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyvault.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AIServiceConfig(Base):
    """
    One owner's credential + model for one provider.

    Query Patterns:
        - Active config for an owner: WHERE user_id = :owner AND is_active
          → idx_ai_service_configs_user_active
        - All configs for an owner (settings page)
    """

    __tablename__ = "ai_service_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[str] = mapped_column("user_id", String(255), nullable=False)

    provider: Mapped[str] = mapped_column(
        "service_name",
        String(50),
        nullable=False,
        comment="openai, gemini, anthropic",
    )

    # Stored as received; masking happens in the HTTP layer
    api_key: Mapped[str] = mapped_column(Text, nullable=False, default="")

    model: Mapped[str] = mapped_column("model_name", String(100), nullable=False, default="")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_ai_service_configs_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<AIServiceConfig(owner_id='{self.owner_id}', provider='{self.provider}', "
            f"model='{self.model}', is_active={self.is_active})>"
        )


class AIUsageRecord(Base):
    """Append-only record of one billed (or probe) operation."""

    __tablename__ = "ai_usage_tracking"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column("user_id", String(255), nullable=False)
    provider: Mapped[str] = mapped_column("service_name", String(50), nullable=False)
    operation_type: Mapped[str] = mapped_column(String(100), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    cost_estimate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_ai_usage_tracking_user_date", "user_id", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<AIUsageRecord(owner_id='{self.owner_id}', provider='{self.provider}', "
            f"operation_type='{self.operation_type}', tokens_used={self.tokens_used})>"
        )


class AIChatSession(Base):
    """
    A conversation, created lazily on its first message.

    provider/model are a snapshot of the active config at creation time;
    later activation changes do not rewrite existing sessions.
    """

    __tablename__ = "ai_chat_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column("user_id", String(255), nullable=False)
    provider: Mapped[str] = mapped_column("service_name", String(50), nullable=False)
    model: Mapped[str] = mapped_column("model_name", String(100), nullable=False)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_name: Mapped[str] = mapped_column(String(255), nullable=False, default="New chat")
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    messages: Mapped[List["AIChatMessage"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_ai_chat_sessions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AIChatSession(id={self.id}, owner_id='{self.owner_id}', "
            f"total_messages={self.total_messages})>"
        )


class AIChatMessage(Base):
    """One chat turn; ordered by created_at within its session."""

    __tablename__ = "ai_chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column("user_id", String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, comment="user, assistant, system")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    session: Mapped[AIChatSession] = relationship(back_populates="messages")

    __table_args__ = (
        Index("idx_ai_chat_messages_session_created", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AIChatMessage(id={self.id}, session_id={self.session_id}, role='{self.role}')>"
