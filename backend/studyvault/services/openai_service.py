"""
StudyVault Backend — OpenAI Adapter
=====================================

What:  BaseAIProvider implementation for the OpenAI Chat Completions API.
How:   POST {base}/v1/chat/completions with a bearer token. The system
       instruction is the leading role=system message of the messages array.
Who:   Created by provider_factory for configs with provider="openai".

Wire shape:
    request   {model, messages: [{role, content}], max_tokens, temperature}
    response  choices[0].message.content
    usage     prompt_tokens / completion_tokens / total_tokens
"""

import time
from typing import Any, Dict, List

from studyvault.config import settings
from studyvault.schemas.ai import GenerateRequest, GenerateResult, TokenUsage
from studyvault.services.llm_base import BaseAIProvider


class OpenAIProvider(BaseAIProvider):
    name = "openai"
    display_name = "OpenAI"
    default_model = "gpt-4o-mini"

    async def generate_response(self, request: GenerateRequest) -> GenerateResult:
        self._require_credential()

        messages: List[Dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        started = time.perf_counter()
        data = await self._post_json(
            f"{settings.openai_base_url}/v1/chat/completions",
            body={
                "model": self.model,
                "messages": messages,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        content = _first_choice_text(data)
        if not isinstance(content, str) or not content.strip():
            raise self._no_content()

        raw_usage = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=raw_usage.get("prompt_tokens") or 0,
            output_tokens=raw_usage.get("completion_tokens") or 0,
            total_tokens=raw_usage.get("total_tokens") or 0,
        )
        self._record_call(started, usage)
        return GenerateResult(content=content, usage=usage)


def _first_choice_text(data: Dict[str, Any]) -> Any:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    return message.get("content")
