"""
StudyVault Backend — Route Dependencies
=========================================

What:  FastAPI dependencies resolving the caller's identity and the
       lifespan-built services stored on app.state.
How:   Owner identity comes from the X-User-ID header (set by the
       authenticating gateway in front of this service).
"""

from fastapi import Header, Request

from studyvault.exceptions import ValidationError
from studyvault.services.ai_service import AIService
from studyvault.services.chat_service import ChatControllerCache
from studyvault.services.registry import AIServiceRegistry
from studyvault.services.store import AIStore


async def get_owner_id(x_user_id: str = Header(default="", alias="X-User-ID")) -> str:
    owner_id = x_user_id.strip()
    if not owner_id:
        raise ValidationError("X-User-ID header is required", field="X-User-ID")
    return owner_id


def get_registry(request: Request) -> AIServiceRegistry:
    return request.app.state.registry


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service


def get_store(request: Request) -> AIStore:
    return request.app.state.store


def get_chat_controllers(request: Request) -> ChatControllerCache:
    return request.app.state.chat_controllers
