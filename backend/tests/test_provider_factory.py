"""
Tests for the provider factory and pre-flight config validation.
"""

import pytest

from studyvault.exceptions import UnsupportedProviderError, ValidationError
from studyvault.schemas.ai import ProviderConfig, ProviderName
from studyvault.services.anthropic_service import AnthropicProvider
from studyvault.services.gemini_service import GeminiProvider
from studyvault.services.openai_service import OpenAIProvider
from studyvault.services.provider_factory import (
    create_provider,
    get_default_model,
    get_default_models,
    get_supported_providers,
    validate_provider_config,
)


class TestCreateProvider:
    @pytest.mark.parametrize("provider,cls", [
        ("openai", OpenAIProvider),
        ("gemini", GeminiProvider),
        ("anthropic", AnthropicProvider),
    ])
    def test_builds_matching_adapter(self, provider, cls):
        adapter = create_provider(ProviderConfig(owner_id="u", provider=provider, api_key="k"))
        assert isinstance(adapter, cls)
        assert adapter.name == provider

    def test_fills_default_model(self):
        adapter = create_provider(ProviderConfig(owner_id="u", provider="gemini", api_key="k"))
        assert adapter.model == "gemini-1.5-flash"

    def test_keeps_explicit_model(self):
        adapter = create_provider(
            ProviderConfig(owner_id="u", provider="openai", api_key="k", model="gpt-4o")
        )
        assert adapter.model == "gpt-4o"

    def test_unsupported_provider(self):
        config = ProviderConfig.model_construct(owner_id="u", provider="mistral", api_key="k", model="")
        with pytest.raises(UnsupportedProviderError) as exc_info:
            create_provider(config)
        assert exc_info.value.message == "Unsupported AI provider: mistral"
        assert isinstance(exc_info.value, ValidationError)


class TestDefaults:
    def test_supported_set_is_closed(self):
        assert set(get_supported_providers()) == {
            ProviderName.OPENAI,
            ProviderName.GEMINI,
            ProviderName.ANTHROPIC,
        }

    def test_default_models(self):
        assert get_default_models() == {
            ProviderName.OPENAI: "gpt-4o-mini",
            ProviderName.GEMINI: "gemini-1.5-flash",
            ProviderName.ANTHROPIC: "claude-3-haiku-20240307",
        }
        assert get_default_model("anthropic") == "claude-3-haiku-20240307"

    def test_default_model_for_unknown_provider(self):
        with pytest.raises(UnsupportedProviderError):
            get_default_model("cohere")


class TestValidateProviderConfig:
    def test_valid_with_model(self):
        result = validate_provider_config("openai", "sk-" + "a" * 40, "gpt-4o")
        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_missing_model_warns_with_default(self):
        result = validate_provider_config("anthropic", "sk-ant-key", None)
        assert result.is_valid is True
        assert result.warnings == ["No model specified, using default: claude-3-haiku-20240307"]

    def test_missing_provider_and_key(self):
        result = validate_provider_config(None, "  ")
        assert result.is_valid is False
        assert result.errors == ["Provider is required", "API key is required"]

    def test_unsupported_provider(self):
        result = validate_provider_config("mistral", "key", "m")
        assert result.errors == ["Unsupported AI provider: mistral"]

    def test_openai_prefix_warning(self):
        result = validate_provider_config("openai", "not-a-real-prefix", "gpt-4o")
        assert result.is_valid is True
        assert 'OpenAI API keys typically start with "sk-"' in result.warnings

    def test_short_gemini_key_warning(self):
        result = validate_provider_config("gemini", "AIzaSyshort", "gemini-1.5-pro")
        assert "Gemini API key appears to be too short" in result.warnings
