"""
StudyVault Backend — AI Service / Capability Registry
=======================================================

What:  Owns per-owner provider configuration, the static capability table,
       credential pre-validation and probing, activation, cost math and
       usage tracking.
How:   Explicitly constructed with an AIStore and a shared httpx client
       (built in main.py's lifespan, injected into routes via app.state).
       No module-level singleton.
Who:   AIService, ChatSessionController, and the /api/ai routes.

Activation ("replace", not "toggle"):
    1. read the owner's active configs
    2. deactivate each one that is not the target, one at a time
    3. delete + insert the target row with is_active=True
    Step 3 only starts after every deactivation has completed, so at no
    point are two configs of the same owner active at once.
"""

import logging
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

import httpx

from studyvault.config import settings
from studyvault.exceptions import NotFoundError, StudyVaultError
from studyvault.schemas.ai import (
    CapabilityDescriptor,
    ProviderConfig,
    ProviderName,
    UsageRecord,
    UsageStats,
)
from studyvault.services.provider_factory import get_default_model
from studyvault.services.store import AIStore

logger = logging.getLogger(__name__)


# ── Static capability table (never persisted) ────────────────────────────
SERVICE_CAPABILITIES: Dict[ProviderName, CapabilityDescriptor] = {
    ProviderName.OPENAI: CapabilityDescriptor(
        models=("gpt-4o", "gpt-4o-mini"),
        max_context_tokens=128000,
        supports_vision=True,
        supports_streaming=True,
        cost_per_input_token=0.000005,
        cost_per_output_token=0.000015,
    ),
    ProviderName.ANTHROPIC: CapabilityDescriptor(
        models=("claude-3-5-sonnet-20241022", "claude-3-haiku-20240307"),
        max_context_tokens=200000,
        supports_vision=True,
        supports_streaming=True,
        cost_per_input_token=0.000003,
        cost_per_output_token=0.000015,
    ),
    ProviderName.GEMINI: CapabilityDescriptor(
        models=("gemini-2.0-flash", "gemini-1.5-pro", "gemini-1.5-flash"),
        max_context_tokens=1000000,
        supports_vision=True,
        supports_streaming=True,
        cost_per_input_token=0.000001,
        cost_per_output_token=0.000005,
    ),
}

# (prefix, minimum length exclusive)
_KEY_FORMATS: Dict[ProviderName, tuple] = {
    ProviderName.OPENAI: ("sk-", 20),
    ProviderName.ANTHROPIC: ("sk-ant-", 20),
    ProviderName.GEMINI: ("AIzaSy", 30),
}


def is_stored_credential(api_key: str) -> bool:
    """Heuristic for keys that are already encrypted/stored and need no re-probe."""
    return len(api_key) > 100 or "encrypted" in api_key or api_key.startswith("gAAAAA")


class AIServiceRegistry:
    """Configuration, capability and usage registry for AI providers."""

    def __init__(self, store: AIStore, http_client: httpx.AsyncClient):
        self.store = store
        self.http_client = http_client

    # ══════════════════════════════════════════════════════════════════════
    # Capabilities & cost
    # ══════════════════════════════════════════════════════════════════════

    def get_service_capabilities(self, provider) -> CapabilityDescriptor:
        return SERVICE_CAPABILITIES[ProviderName(provider)]

    def get_all_service_capabilities(self) -> Dict[ProviderName, CapabilityDescriptor]:
        return dict(SERVICE_CAPABILITIES)

    def calculate_cost(self, provider, input_tokens: int, output_tokens: int) -> float:
        capabilities = self.get_service_capabilities(provider)
        return (
            input_tokens * capabilities.cost_per_input_token
            + output_tokens * capabilities.cost_per_output_token
        )

    # ══════════════════════════════════════════════════════════════════════
    # Credentials
    # ══════════════════════════════════════════════════════════════════════

    def validate_api_key(self, provider, api_key: Optional[str]) -> bool:
        """Prefix/length format check. Performs no I/O."""
        if not api_key or not isinstance(api_key, str):
            return False
        try:
            prefix, min_length = _KEY_FORMATS[ProviderName(provider)]
        except ValueError:
            return False
        return api_key.startswith(prefix) and len(api_key) > min_length

    async def test_api_key(
        self, provider, api_key: Optional[str], owner_id: Optional[str] = None
    ) -> bool:
        """
        Confirm a credential works with the cheapest vendor call. Never raises.

        Stored (already encrypted) credentials are accepted without a call;
        malformed credentials are rejected without a call.
        """
        key = (api_key or "").strip()
        if not key:
            return False
        if is_stored_credential(key):
            logger.debug("Skipping probe for stored %s credential", provider)
            return True
        if not self.validate_api_key(provider, key):
            logger.info("Rejected malformed %s key (length=%d)", provider, len(key))
            return False

        provider = ProviderName(provider)
        try:
            response = await self._probe(provider, key)
            ok = response.is_success
        except httpx.HTTPError as e:
            logger.warning("%s key probe failed: %s", provider.value, e)
            ok = False

        logger.info("%s key probe result: %s", provider.value, "valid" if ok else "invalid")
        if owner_id:
            await self.track_usage(owner_id, provider.value, "api_key_validation", 1)
        return ok

    async def _probe(self, provider: ProviderName, key: str) -> httpx.Response:
        if provider is ProviderName.OPENAI:
            return await self.http_client.get(
                f"{settings.openai_base_url}/v1/models",
                headers={"Authorization": f"Bearer {key}"},
            )
        if provider is ProviderName.ANTHROPIC:
            return await self.http_client.get(
                f"{settings.anthropic_base_url}/v1/models",
                headers={"x-api-key": key, "anthropic-version": settings.anthropic_version},
            )
        return await self.http_client.get(
            f"{settings.gemini_base_url}/v1beta/models",
            params={"key": key},
        )

    # ══════════════════════════════════════════════════════════════════════
    # Configuration persistence
    # ══════════════════════════════════════════════════════════════════════

    async def get_user_configs(self, owner_id: str) -> List[ProviderConfig]:
        return await self.store.list_configs(owner_id)

    async def get_active_config(self, owner_id: str) -> Optional[ProviderConfig]:
        active = await self.store.list_active_configs(owner_id)
        return active[0] if active else None

    async def save_config(
        self,
        owner_id: str,
        provider,
        api_key: str,
        model: Optional[str] = None,
        is_active: bool = False,
    ) -> ProviderConfig:
        """
        Store a config, replacing any existing one for (owner, provider).

        Saving with is_active=True goes through set_active_service so the
        single-active invariant is kept.
        """
        provider = ProviderName(provider)
        if is_active:
            return await self.set_active_service(owner_id, provider, api_key=api_key, model=model)

        config = await self.store.replace_config(ProviderConfig(
            owner_id=owner_id,
            provider=provider,
            api_key=api_key,
            model=model or get_default_model(provider),
            is_active=False,
        ))
        logger.info("Saved %s config for owner %s", provider.value, owner_id)
        return config

    async def set_active_service(
        self,
        owner_id: str,
        provider,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ProviderConfig:
        """
        Make `provider` the owner's only active config.

        Raises:
            NotFoundError: no stored config for `provider` and no key given.
        """
        provider = ProviderName(provider)
        existing = await self.store.get_config(owner_id, provider.value)
        if api_key is None:
            if existing is None:
                raise NotFoundError("AI service config", provider.value)
            api_key = existing.api_key
        if not model:
            model = (existing.model if existing else "") or get_default_model(provider)

        for config in await self.store.list_active_configs(owner_id):
            if config.provider is not provider:
                await self.store.deactivate_config(config.id)
                logger.info("Deactivated %s config for owner %s", config.provider.value, owner_id)

        activated = await self.store.replace_config(ProviderConfig(
            owner_id=owner_id,
            provider=provider,
            api_key=api_key,
            model=model,
            is_active=True,
        ))
        logger.info("Activated %s (%s) for owner %s", provider.value, model, owner_id)
        return activated

    # ══════════════════════════════════════════════════════════════════════
    # Usage
    # ══════════════════════════════════════════════════════════════════════

    async def track_usage(
        self,
        owner_id: str,
        provider: str,
        operation_type: str,
        tokens_used: int,
        cost_estimate: Optional[float] = None,
    ) -> None:
        """Append a usage row. Storage failures are logged, never raised."""
        try:
            await self.store.insert_usage(UsageRecord(
                owner_id=owner_id,
                provider=str(getattr(provider, "value", provider)),
                operation_type=operation_type,
                tokens_used=tokens_used,
                date=date.today(),
                cost_estimate=cost_estimate or 0.0,
            ))
        except StudyVaultError as e:
            logger.error("Failed to track usage for owner %s: %s", owner_id, e.message)

    async def get_usage_stats(self, owner_id: str, days: int = 30) -> UsageStats:
        records = await self.store.list_usage(owner_id, since=date.today() - timedelta(days=days))

        operation_counts: Counter = Counter()
        service_counts: Counter = Counter()
        daily_usage: Dict[str, int] = defaultdict(int)
        total_tokens = 0
        total_cost = 0.0
        for record in records:
            total_tokens += record.tokens_used
            total_cost += record.cost_estimate
            operation_counts[record.operation_type] += 1
            service_counts[record.provider] += 1
            daily_usage[record.date.isoformat()] += record.tokens_used

        return UsageStats(
            total_tokens=total_tokens,
            total_cost=total_cost,
            operation_counts=dict(operation_counts),
            service_counts=dict(service_counts),
            daily_usage=dict(daily_usage),
        )
