"""
StudyVault Backend — Google Gemini Adapter
============================================

What:  BaseAIProvider implementation for the Gemini generateContent REST API.
How:   POST {base}/v1beta/models/{model}:generateContent?key=<key>.
       Gemini has no separate system field in this request shape, so the
       system instruction is prepended to the user turn:
       "{system}\\n\\nUser: {prompt}".
Who:   Created by provider_factory for configs with provider="gemini".

Wire shape:
    request   {contents: [{parts: [{text}]}],
               generationConfig: {temperature, maxOutputTokens}}
    response  candidates[0].content.parts[0].text
    usage     usageMetadata.totalTokenCount (prompt/candidates counts if present)
"""

import time
from typing import Any, Dict

from studyvault.config import settings
from studyvault.schemas.ai import GenerateRequest, GenerateResult, TokenUsage
from studyvault.services.llm_base import BaseAIProvider


class GeminiProvider(BaseAIProvider):
    name = "gemini"
    display_name = "Gemini"
    default_model = "gemini-1.5-flash"

    async def generate_response(self, request: GenerateRequest) -> GenerateResult:
        self._require_credential()

        prompt = request.prompt
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\nUser: {request.prompt}"

        started = time.perf_counter()
        data = await self._post_json(
            f"{settings.gemini_base_url}/v1beta/models/{self.model}:generateContent",
            body={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": request.temperature,
                    "maxOutputTokens": request.max_tokens,
                },
            },
            params={"key": self.api_key},
        )

        content = _candidate_text(data)
        if not isinstance(content, str) or not content.strip():
            raise self._no_content()

        metadata = data.get("usageMetadata") or {}
        usage = TokenUsage(
            input_tokens=metadata.get("promptTokenCount") or 0,
            output_tokens=metadata.get("candidatesTokenCount") or 0,
            total_tokens=metadata.get("totalTokenCount") or 0,
        )
        self._record_call(started, usage)
        return GenerateResult(content=content, usage=usage)


def _candidate_text(data: Dict[str, Any]) -> Any:
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts or not isinstance(parts[0], dict):
        return None
    return parts[0].get("text")
