"""
StudyVault Backend — Provider Factory
=======================================

What:  Builds the adapter for a ProviderConfig and exposes the closed set of
       supported providers with their default models.
How:   A dict from ProviderName to adapter class. There is no plugin
       registration; adding a vendor means adding a module and an entry here.
Who:   AIService, AIServiceRegistry and the chat controller.
"""

import logging
from typing import Dict, List, Optional, Type

import httpx

from studyvault.exceptions import UnsupportedProviderError
from studyvault.schemas.ai import ProviderConfig, ProviderName, ValidationResult
from studyvault.services.anthropic_service import AnthropicProvider
from studyvault.services.gemini_service import GeminiProvider
from studyvault.services.llm_base import BaseAIProvider
from studyvault.services.openai_service import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Dict[ProviderName, Type[BaseAIProvider]] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.GEMINI: GeminiProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
}

DEFAULT_MODELS: Dict[ProviderName, str] = {
    provider: cls.default_model for provider, cls in PROVIDER_CLASSES.items()
}


def _coerce_provider(provider) -> ProviderName:
    try:
        return ProviderName(provider)
    except ValueError:
        raise UnsupportedProviderError(provider) from None


def create_provider(
    config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None
) -> BaseAIProvider:
    """
    Instantiate the adapter for `config.provider`.

    Raises:
        UnsupportedProviderError: provider outside the closed set.
    """
    provider = _coerce_provider(config.provider)
    if not config.model:
        config = config.model_copy(update={"model": DEFAULT_MODELS[provider]})
    logger.debug("Creating %s adapter (model=%s)", provider.value, config.model)
    return PROVIDER_CLASSES[provider](config, http_client=http_client)


def get_supported_providers() -> List[ProviderName]:
    return list(PROVIDER_CLASSES)


def get_default_models() -> Dict[ProviderName, str]:
    return dict(DEFAULT_MODELS)


def get_default_model(provider) -> str:
    return DEFAULT_MODELS[_coerce_provider(provider)]


def validate_provider_config(
    provider: Optional[str], api_key: Optional[str], model: Optional[str] = None
) -> ValidationResult:
    """
    Pre-flight checks for a config submitted from the settings page.

    Errors block saving; warnings are shown but do not.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not provider:
        errors.append("Provider is required")
    elif provider not in {p.value for p in ProviderName}:
        errors.append(f"Unsupported AI provider: {provider}")

    key = (api_key or "").strip()
    if not key:
        errors.append("API key is required")

    if not model and not errors:
        warnings.append(f"No model specified, using default: {get_default_model(provider)}")

    if key and provider == ProviderName.OPENAI.value and not key.startswith("sk-"):
        warnings.append('OpenAI API keys typically start with "sk-"')
    if key and provider == ProviderName.GEMINI.value and len(key) < 30:
        warnings.append("Gemini API key appears to be too short")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
