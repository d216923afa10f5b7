"""
StudyVault Backend — Anthropic Adapter
========================================

What:  BaseAIProvider implementation for the Anthropic Messages API.
How:   POST {base}/v1/messages with the x-api-key and anthropic-version
       headers. The system instruction is the dedicated top-level `system`
       field, defaulting to a generic assistant prompt.
Who:   Created by provider_factory for configs with provider="anthropic".

Wire shape:
    request   {model, max_tokens, temperature, system,
               messages: [{role: "user", content}]}
    response  content[0].text
    usage     input_tokens / output_tokens
"""

import time
from typing import Any, Dict

from studyvault.config import settings
from studyvault.schemas.ai import GenerateRequest, GenerateResult, TokenUsage
from studyvault.services.llm_base import BaseAIProvider

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."


class AnthropicProvider(BaseAIProvider):
    name = "anthropic"
    display_name = "Anthropic"
    default_model = "claude-3-haiku-20240307"

    async def generate_response(self, request: GenerateRequest) -> GenerateResult:
        self._require_credential()

        started = time.perf_counter()
        data = await self._post_json(
            f"{settings.anthropic_base_url}/v1/messages",
            body={
                "model": self.model,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "system": request.system_prompt or DEFAULT_SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": request.prompt}],
            },
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": settings.anthropic_version,
            },
        )

        content = _first_block_text(data)
        if not isinstance(content, str) or not content.strip():
            raise self._no_content()

        raw_usage = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=raw_usage.get("input_tokens") or 0,
            output_tokens=raw_usage.get("output_tokens") or 0,
        )
        self._record_call(started, usage)
        return GenerateResult(content=content, usage=usage)


def _first_block_text(data: Dict[str, Any]) -> Any:
    blocks = data.get("content") or []
    if not blocks or not isinstance(blocks[0], dict):
        return None
    return blocks[0].get("text")
