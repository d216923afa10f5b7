"""
StudyVault Backend — Chat Session Controller
==============================================

What:  Orchestrates one conversation: optimistic local message list, lazy
       session creation, provider call with retry, persistence, and bounded
       reconciliation against the (possibly lagging) store.
How:   An explicit state machine guarded by an asyncio.Lock (one send in
       flight per session) and an asyncio.Event used as the cancellation
       token for reconciliation waits.
Who:   The /api/chat routes keep one controller per open conversation.
When:  Per user turn; close() when the consuming view goes away.

State Machine:
    IDLE ──send──▶ SENDING ──▶ AWAITING_RESPONSE ──▶ RECONCILING ──▶ IDLE
                      │                │
                      └──── failure ───┴──▶ ERROR ──retry()──▶ SENDING
                                              └──clear_error()──▶ IDLE

Reconciliation:
    One read per configured delay (0.4s, 0.8s, 1.2s by default). The first
    read is immediate; after a short read the controller waits that
    attempt's delay before the next one. The persisted list is swapped in
    once it holds at least as many messages as the local list; if every
    read falls short the local (optimistic) list is kept. close() ends any
    pending wait immediately and the local list is left untouched.

Teardown:
    close() cancels, then waits for the send lock. An in-flight turn checks
    for cancellation after every await and stops before persisting anything
    further, returning the controller to IDLE.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from studyvault.config import settings
from studyvault.exceptions import NotFoundError, StudyVaultError, ValidationError
from studyvault.schemas.ai import (
    ChatMessage,
    ChatSession,
    ClassifiedError,
    ContextFile,
    GenerateRequest,
    MessageRole,
)
from studyvault.services.ai_service import AIService
from studyvault.services.error_handler import classify_error
from studyvault.services.store import AIStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI study assistant. Help users understand concepts, answer questions, "
    "and provide educational support."
)


class ChatState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    RECONCILING = "reconciling"
    ERROR = "error"


def build_system_prompt(
    context_files: Optional[Sequence[ContextFile]] = None, base: Optional[str] = None
) -> str:
    """Fold attached study files into the system instruction."""
    if not context_files:
        return base or DEFAULT_SYSTEM_PROMPT
    context_text = "\n\n".join(
        f"File: {f.name}\nContent: {f.content or 'No content available'}" for f in context_files
    )
    return (
        "You are an AI study assistant. Use the following context files to help answer "
        f"the user's question:\n\n{context_text}\n\nPlease provide helpful, accurate "
        "responses based on the context provided. If the context doesn't contain relevant "
        "information, let the user know and provide general assistance."
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _TurnAborted(Exception):
    """The controller was closed while a turn was in flight."""


class ChatSessionController:
    """
    One conversation view's controller.

    Attributes:
        state:       current ChatState
        messages:    local message list (optimistic until reconciled)
        session:     persisted session, None until the first send
        last_error:  classified failure while in ERROR
    """

    def __init__(
        self,
        owner_id: str,
        ai_service: AIService,
        store: AIStore,
        reconcile_delays: Optional[Sequence[float]] = None,
        system_prompt: Optional[str] = None,
    ):
        self.owner_id = owner_id
        self.ai_service = ai_service
        self.store = store
        self.reconcile_delays = list(
            settings.chat_reconcile_delays if reconcile_delays is None else reconcile_delays
        )
        self.system_prompt = system_prompt

        self.state = ChatState.IDLE
        self.messages: List[ChatMessage] = []
        self.session: Optional[ChatSession] = None
        self.last_error: Optional[ClassifiedError] = None

        self._lock = asyncio.Lock()
        self._cancelled = asyncio.Event()
        self._pending: Optional[ChatMessage] = None
        self._pending_context: List[ContextFile] = []
        self._pending_persisted = False

    @property
    def session_id(self) -> Optional[uuid.UUID]:
        return self.session.id if self.session else None

    @property
    def closed(self) -> bool:
        return self._cancelled.is_set()

    @property
    def busy(self) -> bool:
        """True while a send or retry holds the lock."""
        return self._lock.locked()

    # ══════════════════════════════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════════════════════════════

    async def attach(self, session_id: uuid.UUID) -> None:
        """Bind to an existing session of this owner and load its messages."""
        session = await self.store.get_session(session_id)
        if session is None or session.owner_id != self.owner_id:
            raise NotFoundError("chat session", str(session_id))
        self.session = session
        await self.load_messages()

    async def load_messages(self) -> List[ChatMessage]:
        if self.session is not None:
            self.messages = await self.store.list_messages(self.session.id)
        return list(self.messages)

    # ══════════════════════════════════════════════════════════════════════
    # Sending
    # ══════════════════════════════════════════════════════════════════════

    async def send_message(
        self, content: str, context_files: Optional[Sequence[ContextFile]] = None
    ) -> List[ChatMessage]:
        """
        Run one full turn and return the resulting message list.

        Raises:
            ValidationError: empty message, closed controller, or an
                unresolved error (retry() or clear_error() first).
            AIProviderError / StudyVaultError: the turn failed; the
                controller is left in ERROR with the user message kept.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty", field="content")

        async with self._lock:
            self._ensure_open()
            if self.state is ChatState.ERROR:
                raise ValidationError("Resolve the failed message before sending another")

            message = ChatMessage(
                session_id=self.session_id,
                owner_id=self.owner_id,
                role=MessageRole.USER,
                content=content,
                created_at=_now(),
            )
            self.messages.append(message)
            self._pending = message
            self._pending_context = list(context_files or [])
            self._pending_persisted = False
            await self._dispatch()
            return list(self.messages)

    async def retry(self) -> List[ChatMessage]:
        """Re-dispatch the failed turn without duplicating the user message."""
        async with self._lock:
            self._ensure_open()
            if self.state is not ChatState.ERROR or self._pending is None:
                raise ValidationError("There is no failed message to retry")
            self.last_error = None
            await self._dispatch()
            return list(self.messages)

    def clear_error(self) -> None:
        """Leave ERROR; the failed user message stays in the local list."""
        if self.state is ChatState.ERROR:
            self.state = ChatState.IDLE
            self.last_error = None
            self._pending = None
            self._pending_context = []

    async def _dispatch(self) -> None:
        message = self._pending
        self.state = ChatState.SENDING
        try:
            config = await self.ai_service.require_active_config(self.owner_id)
            self._check_open()
            provider = self.ai_service.adapter_for(config)
            system_prompt = build_system_prompt(self._pending_context, self.system_prompt)

            if self.session is None:
                self.session = await self.store.create_session(
                    owner_id=self.owner_id,
                    provider=provider.name,
                    model=provider.model,
                    system_prompt=system_prompt,
                    session_name=message.content[:50],
                )
            self._check_open()
            if not self._pending_persisted:
                await self.store.add_message(
                    message.model_copy(update={"session_id": self.session.id})
                )
                await self.store.increment_session_totals(self.session.id, messages=1, tokens=0)
                self._pending_persisted = True
            self._check_open()

            self.state = ChatState.AWAITING_RESPONSE
            request = GenerateRequest(prompt=message.content, system_prompt=system_prompt)
            result = await self.ai_service.call(
                provider,
                self.owner_id,
                "chat",
                lambda: provider.generate_response(request),
            )
            self._check_open()

            tokens = result.usage.tokens if result.usage else 0
            reply = ChatMessage(
                session_id=self.session.id,
                owner_id=self.owner_id,
                role=MessageRole.ASSISTANT,
                content=result.content,
                token_count=tokens,
                created_at=_now(),
            )
            self.messages.append(reply)
            try:
                await self.store.add_message(reply)
            except StudyVaultError:
                self.messages.remove(reply)
                raise
            await self.store.increment_session_totals(self.session.id, messages=1, tokens=tokens)
        except _TurnAborted:
            logger.info("Chat turn for session %s abandoned; controller closed", self.session_id)
            self._pending = None
            self._pending_context = []
            self.state = ChatState.IDLE
            return
        except StudyVaultError as e:
            self.last_error = classify_error(e)
            self.state = ChatState.ERROR
            logger.warning(
                "Chat send failed for session %s: %s (%s)",
                self.session_id,
                self.last_error.message,
                self.last_error.code.value,
            )
            raise

        self._pending = None
        self._pending_context = []
        self.last_error = None
        self.state = ChatState.RECONCILING
        await self._reconcile()
        self.state = ChatState.IDLE

    # ══════════════════════════════════════════════════════════════════════
    # Reconciliation
    # ══════════════════════════════════════════════════════════════════════

    async def _wait(self, delay: float) -> bool:
        """Sleep `delay` seconds; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _reconcile(self) -> None:
        expected = len(self.messages)
        attempts = len(self.reconcile_delays)
        for attempt, delay in enumerate(self.reconcile_delays, start=1):
            if self.closed:
                return
            try:
                persisted = await self.store.list_messages(self.session.id)
            except StudyVaultError as e:
                logger.warning("Reconciliation read %d failed: %s", attempt, e.message)
                persisted = None
            if self.closed:
                return
            if persisted is not None and len(persisted) >= expected:
                self.messages = persisted
                logger.debug("Session %s reconciled on attempt %d", self.session_id, attempt)
                return
            if attempt < attempts and await self._wait(delay):
                logger.debug("Reconciliation cancelled for session %s", self.session_id)
                return
        logger.info(
            "Session %s still lagging after %d reads; keeping local messages",
            self.session_id,
            attempts,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Teardown
    # ══════════════════════════════════════════════════════════════════════

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValidationError("Chat session has been closed")

    def _check_open(self) -> None:
        if self.closed:
            raise _TurnAborted()

    async def close(self) -> bool:
        """
        Cancel pending reconciliation and drop the session if it has no
        persisted messages. Returns True when the session was deleted.

        An in-flight turn stops at its next step and nothing more is
        persisted for it; the emptiness check waits until it has stopped.
        """
        self._cancelled.set()
        async with self._lock:
            if self.session is None:
                return False
            if await self.store.count_messages(self.session.id) == 0:
                await self.store.delete_session(self.session.id)
                logger.info("Deleted empty chat session %s", self.session.id)
                return True
            return False


async def cleanup_empty_sessions(
    store: AIStore, owner_id: str, min_age: Optional[int] = None
) -> List[uuid.UUID]:
    """Delete the owner's message-less sessions older than `min_age` seconds; returns their ids."""
    min_age = settings.session_cleanup_min_age if min_age is None else min_age
    cutoff = _now() - timedelta(seconds=min_age)
    sessions = await store.list_empty_sessions(owner_id, created_before=cutoff)
    for session in sessions:
        await store.delete_session(session.id)
    if sessions:
        logger.info("Cleaned up %d empty chat sessions for owner %s", len(sessions), owner_id)
    return [session.id for session in sessions]


class ChatControllerCache:
    """
    Live controllers keyed by session id, least recently used first.

    Entries idle for longer than `idle_ttl` seconds are dropped on the next
    access, and once more than `max_size` are held the least recently used
    ones go. A controller with a turn in flight is never evicted. Dropped
    controllers are not closed; a later request re-attaches from the store.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = settings.chat_controller_max if max_size is None else max_size
        self.idle_ttl = settings.chat_controller_idle_ttl if idle_ttl is None else idle_ttl
        self._clock = clock
        self._entries: "OrderedDict[uuid.UUID, Tuple[ChatSessionController, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: uuid.UUID) -> bool:
        return session_id in self._entries

    def get(self, session_id: uuid.UUID) -> Optional[ChatSessionController]:
        self.evict()
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        self._touch(session_id, entry[0])
        return entry[0]

    def put(self, session_id: uuid.UUID, controller: ChatSessionController) -> None:
        self._touch(session_id, controller)
        self.evict()

    def pop(self, session_id: uuid.UUID) -> Optional[ChatSessionController]:
        entry = self._entries.pop(session_id, None)
        return entry[0] if entry else None

    def values(self) -> List[ChatSessionController]:
        return [controller for controller, _ in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()

    def evict(self) -> int:
        """Drop expired and over-capacity entries; returns how many went."""
        now = self._clock()
        evicted = 0
        for session_id, (controller, last_used) in list(self._entries.items()):
            expired = now - last_used > self.idle_ttl
            if not expired and len(self._entries) <= self.max_size:
                # the rest were used more recently
                break
            if controller.busy:
                continue
            del self._entries[session_id]
            evicted += 1
        if evicted:
            logger.debug("Evicted %d idle chat controllers (%d live)", evicted, len(self._entries))
        return evicted

    def _touch(self, session_id: uuid.UUID, controller: ChatSessionController) -> None:
        self._entries[session_id] = (controller, self._clock())
        self._entries.move_to_end(session_id)
