"""
StudyVault Backend — AI Store (Persisted Configuration & Message Store)
=========================================================================

What:  Async SQLAlchemy access to provider configs, usage rows, chat sessions
       and chat messages.
How:   Every method opens its own session/transaction from the injected
       async_sessionmaker and returns pydantic schemas, never ORM rows.
       SQLAlchemy failures are wrapped in DatabaseError (details logged only).
Who:   AIServiceRegistry (configs, usage) and ChatSessionController
       (sessions, messages). Tests build one on an in-memory sqlite engine.
When:  Per operation. There is no transaction spanning several calls:
       activation is "delete-then-insert", chat is "optimistic-then-reconcile".
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyvault.exceptions import DatabaseError
from studyvault.models.ai import (
    AIChatMessage,
    AIChatSession,
    AIServiceConfig,
    AIUsageRecord,
)
from studyvault.schemas.ai import (
    ChatMessage,
    ChatSession,
    ProviderConfig,
    UsageRecord,
)

logger = logging.getLogger(__name__)


class AIStore:
    """Persisted store for the AI gateway tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session with commit on success, rollback + DatabaseError on SQL failure."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Store operation '%s' failed: %s", operation, e, exc_info=True)
                raise DatabaseError(context={"operation": operation}) from e

    # ══════════════════════════════════════════════════════════════════════
    # Provider configs
    # ══════════════════════════════════════════════════════════════════════

    async def list_configs(self, owner_id: str) -> List[ProviderConfig]:
        async with self._transaction("list_configs") as session:
            result = await session.execute(
                select(AIServiceConfig)
                .where(AIServiceConfig.owner_id == owner_id)
                .order_by(AIServiceConfig.created_at.desc())
            )
            return [ProviderConfig.model_validate(row) for row in result.scalars()]

    async def get_config(self, owner_id: str, provider: str) -> Optional[ProviderConfig]:
        async with self._transaction("get_config") as session:
            result = await session.execute(
                select(AIServiceConfig)
                .where(
                    AIServiceConfig.owner_id == owner_id,
                    AIServiceConfig.provider == provider,
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return ProviderConfig.model_validate(row) if row else None

    async def list_active_configs(self, owner_id: str) -> List[ProviderConfig]:
        async with self._transaction("list_active_configs") as session:
            result = await session.execute(
                select(AIServiceConfig)
                .where(
                    AIServiceConfig.owner_id == owner_id,
                    AIServiceConfig.is_active.is_(True),
                )
                .order_by(AIServiceConfig.updated_at.desc())
            )
            return [ProviderConfig.model_validate(row) for row in result.scalars()]

    async def replace_config(self, config: ProviderConfig) -> ProviderConfig:
        """Delete any row for (owner, provider), then insert `config`."""
        async with self._transaction("replace_config") as session:
            await session.execute(
                delete(AIServiceConfig).where(
                    AIServiceConfig.owner_id == config.owner_id,
                    AIServiceConfig.provider == config.provider.value,
                )
            )
            row = AIServiceConfig(
                owner_id=config.owner_id,
                provider=config.provider.value,
                api_key=config.api_key,
                model=config.model,
                is_active=config.is_active,
            )
            session.add(row)
            await session.flush()
            return ProviderConfig.model_validate(row)

    async def deactivate_config(self, config_id: uuid.UUID) -> None:
        async with self._transaction("deactivate_config") as session:
            await session.execute(
                update(AIServiceConfig)
                .where(AIServiceConfig.id == config_id)
                .values(is_active=False)
            )

    # ══════════════════════════════════════════════════════════════════════
    # Usage (append-only)
    # ══════════════════════════════════════════════════════════════════════

    async def insert_usage(self, record: UsageRecord) -> UsageRecord:
        async with self._transaction("insert_usage") as session:
            row = AIUsageRecord(
                owner_id=record.owner_id,
                provider=record.provider,
                operation_type=record.operation_type,
                tokens_used=record.tokens_used,
                date=record.date,
                cost_estimate=record.cost_estimate,
            )
            session.add(row)
            await session.flush()
            return UsageRecord.model_validate(row)

    async def list_usage(self, owner_id: str, since: date) -> List[UsageRecord]:
        async with self._transaction("list_usage") as session:
            result = await session.execute(
                select(AIUsageRecord)
                .where(
                    AIUsageRecord.owner_id == owner_id,
                    AIUsageRecord.date >= since,
                )
                .order_by(AIUsageRecord.date.asc())
            )
            return [UsageRecord.model_validate(row) for row in result.scalars()]

    # ══════════════════════════════════════════════════════════════════════
    # Chat sessions & messages
    # ══════════════════════════════════════════════════════════════════════

    async def create_session(
        self,
        owner_id: str,
        provider: str,
        model: str,
        system_prompt: Optional[str] = None,
        session_name: str = "New chat",
    ) -> ChatSession:
        async with self._transaction("create_session") as session:
            row = AIChatSession(
                owner_id=owner_id,
                provider=provider,
                model=model,
                system_prompt=system_prompt,
                session_name=session_name,
            )
            session.add(row)
            await session.flush()
            logger.info("Chat session created: %s (%s/%s)", row.id, provider, model)
            return ChatSession.model_validate(row)

    async def get_session(self, session_id: uuid.UUID) -> Optional[ChatSession]:
        async with self._transaction("get_session") as session:
            row = await session.get(AIChatSession, session_id)
            return ChatSession.model_validate(row) if row else None

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        """Persist a message and return it with its store-assigned id."""
        async with self._transaction("add_message") as session:
            row = AIChatMessage(
                session_id=message.session_id,
                owner_id=message.owner_id,
                role=message.role.value,
                content=message.content,
                token_count=message.token_count,
                created_at=message.created_at,
            )
            session.add(row)
            await session.flush()
            return ChatMessage.model_validate(row)

    async def list_messages(self, session_id: uuid.UUID) -> List[ChatMessage]:
        async with self._transaction("list_messages") as session:
            result = await session.execute(
                select(AIChatMessage)
                .where(AIChatMessage.session_id == session_id)
                .order_by(AIChatMessage.created_at.asc())
            )
            return [ChatMessage.model_validate(row) for row in result.scalars()]

    async def count_messages(self, session_id: uuid.UUID) -> int:
        async with self._transaction("count_messages") as session:
            result = await session.execute(
                select(func.count(AIChatMessage.id)).where(
                    AIChatMessage.session_id == session_id
                )
            )
            return int(result.scalar_one())

    async def increment_session_totals(
        self, session_id: uuid.UUID, messages: int, tokens: int
    ) -> None:
        async with self._transaction("increment_session_totals") as session:
            await session.execute(
                update(AIChatSession)
                .where(AIChatSession.id == session_id)
                .values(
                    total_messages=AIChatSession.total_messages + messages,
                    total_tokens_used=AIChatSession.total_tokens_used + tokens,
                )
            )

    async def delete_session(self, session_id: uuid.UUID) -> None:
        # Messages are removed explicitly; sqlite does not enforce ON DELETE CASCADE
        async with self._transaction("delete_session") as session:
            await session.execute(
                delete(AIChatMessage).where(AIChatMessage.session_id == session_id)
            )
            await session.execute(
                delete(AIChatSession).where(AIChatSession.id == session_id)
            )

    async def list_empty_sessions(
        self, owner_id: str, created_before: datetime
    ) -> List[ChatSession]:
        """Sessions of `owner_id` with no messages, created before the cutoff."""
        async with self._transaction("list_empty_sessions") as session:
            has_messages = (
                select(AIChatMessage.id)
                .where(AIChatMessage.session_id == AIChatSession.id)
                .exists()
            )
            result = await session.execute(
                select(AIChatSession).where(
                    AIChatSession.owner_id == owner_id,
                    AIChatSession.created_at < created_before,
                    ~has_messages,
                )
            )
            return [ChatSession.model_validate(row) for row in result.scalars()]
