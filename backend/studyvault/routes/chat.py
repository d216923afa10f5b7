"""
StudyVault Backend — Chat Route Handlers
==========================================

What:  Send a chat turn, read a session's messages, retry a failed turn,
       and tear a session view down.
How:   One ChatSessionController per open session, kept in a bounded
       ChatControllerCache on app.state keyed by session id. A request for a
       session with no live controller (evicted, or after a restart)
       attaches a fresh one to the store.
Who:   The study frontend's chat panel.

Route Inventory:
    POST   /api/chat/messages
    GET    /api/chat/sessions/{session_id}/messages
    POST   /api/chat/sessions/{session_id}/retry
    DELETE /api/chat/sessions/{session_id}
    POST   /api/chat/sessions/cleanup
"""

import logging
import uuid
from typing import Dict, List

from fastapi import APIRouter, Depends

from studyvault.exceptions import NotFoundError
from studyvault.routes.dependencies import (
    get_ai_service,
    get_chat_controllers,
    get_owner_id,
    get_store,
)
from studyvault.schemas.ai import ChatMessage
from studyvault.schemas.api import (
    ChatCloseResponse,
    ChatSendRequest,
    ChatSendResponse,
    ErrorResponse,
)
from studyvault.services.ai_service import AIService
from studyvault.services.chat_service import (
    ChatControllerCache,
    ChatSessionController,
    ChatState,
    cleanup_empty_sessions,
)
from studyvault.services.store import AIStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


async def _controller_for(
    session_id: uuid.UUID,
    owner_id: str,
    controllers: ChatControllerCache,
    ai_service: AIService,
    store: AIStore,
) -> ChatSessionController:
    controller = controllers.get(session_id)
    if controller is not None:
        if controller.owner_id != owner_id:
            raise NotFoundError("chat session", str(session_id))
        return controller
    controller = ChatSessionController(owner_id, ai_service, store)
    await controller.attach(session_id)
    controllers.put(session_id, controller)
    return controller


def _send_response(controller: ChatSessionController) -> ChatSendResponse:
    return ChatSendResponse(
        session_id=controller.session_id,
        state=controller.state.value,
        messages=list(controller.messages),
    )


@router.post(
    "/messages",
    response_model=ChatSendResponse,
    responses={
        400: {"description": "No AI service configured", "model": ErrorResponse},
        404: {"description": "Unknown session", "model": ErrorResponse},
    },
    summary="Send one chat turn",
)
async def send_message(
    body: ChatSendRequest,
    owner_id: str = Depends(get_owner_id),
    controllers: ChatControllerCache = Depends(get_chat_controllers),
    ai_service: AIService = Depends(get_ai_service),
    store: AIStore = Depends(get_store),
) -> ChatSendResponse:
    if body.session_id is not None:
        controller = await _controller_for(body.session_id, owner_id, controllers, ai_service, store)
    else:
        controller = ChatSessionController(owner_id, ai_service, store)

    # a new message from the user dismisses the previous failure
    if controller.state is ChatState.ERROR:
        controller.clear_error()

    try:
        await controller.send_message(body.message, context_files=body.context_files)
    finally:
        if controller.session_id is not None:
            controllers.put(controller.session_id, controller)
    return _send_response(controller)


@router.get(
    "/sessions/{session_id}/messages",
    response_model=List[ChatMessage],
    responses={404: {"description": "Unknown session", "model": ErrorResponse}},
    summary="Persisted messages of a session, oldest first",
)
async def list_messages(
    session_id: uuid.UUID,
    owner_id: str = Depends(get_owner_id),
    controllers: ChatControllerCache = Depends(get_chat_controllers),
    ai_service: AIService = Depends(get_ai_service),
    store: AIStore = Depends(get_store),
) -> List[ChatMessage]:
    controller = await _controller_for(session_id, owner_id, controllers, ai_service, store)
    return await controller.load_messages()


@router.post(
    "/sessions/{session_id}/retry",
    response_model=ChatSendResponse,
    summary="Re-send the failed turn of a session",
)
async def retry_message(
    session_id: uuid.UUID,
    owner_id: str = Depends(get_owner_id),
    controllers: ChatControllerCache = Depends(get_chat_controllers),
    ai_service: AIService = Depends(get_ai_service),
    store: AIStore = Depends(get_store),
) -> ChatSendResponse:
    controller = await _controller_for(session_id, owner_id, controllers, ai_service, store)
    await controller.retry()
    return _send_response(controller)


@router.delete(
    "/sessions/{session_id}",
    response_model=ChatCloseResponse,
    summary="Close a session view; empty sessions are deleted",
)
async def close_session(
    session_id: uuid.UUID,
    owner_id: str = Depends(get_owner_id),
    controllers: ChatControllerCache = Depends(get_chat_controllers),
    ai_service: AIService = Depends(get_ai_service),
    store: AIStore = Depends(get_store),
) -> ChatCloseResponse:
    controller = await _controller_for(session_id, owner_id, controllers, ai_service, store)
    controllers.pop(session_id)
    deleted = await controller.close()
    return ChatCloseResponse(session_id=session_id, deleted=deleted)


@router.post("/sessions/cleanup", summary="Delete the caller's stale empty sessions")
async def cleanup_sessions(
    owner_id: str = Depends(get_owner_id),
    controllers: ChatControllerCache = Depends(get_chat_controllers),
    store: AIStore = Depends(get_store),
) -> Dict[str, int]:
    deleted = await cleanup_empty_sessions(store, owner_id)
    for session_id in deleted:
        controllers.pop(session_id)
    return {"deleted": len(deleted)}
