"""
Tests for AIService: active-provider resolution, retry, usage tracking,
and the EnhancementResult contract of the derived operations.
"""

import json

import pytest

from conftest import GEMINI_KEY, anthropic_reply, gemini_reply, openai_reply, vendor_error
from studyvault.exceptions import AIProviderError, ErrorCode, ValidationError
from studyvault.schemas.ai import EnhancementType, GenerateRequest
from studyvault.services.ai_service import NO_CREDENTIAL_MESSAGE, NOTE_ENHANCER_SYSTEM_PROMPT


class TestResolution:
    @pytest.mark.asyncio
    async def test_no_config_is_no_credential_without_network(self, ai_service, vendor, notifier, owner_id):
        with pytest.raises(AIProviderError) as exc_info:
            await ai_service.generate(owner_id, GenerateRequest(prompt="Hello"))

        assert exc_info.value.code is ErrorCode.NO_CREDENTIAL
        assert exc_info.value.message == NO_CREDENTIAL_MESSAGE
        assert vendor.calls == 0
        assert [n["error"].code for n in notifier.notifications] == [ErrorCode.NO_CREDENTIAL]

    @pytest.mark.asyncio
    async def test_blank_stored_key_is_no_credential(self, ai_service, registry, vendor, owner_id):
        await registry.set_active_service(owner_id, "gemini", api_key="   ")

        with pytest.raises(AIProviderError) as exc_info:
            await ai_service.resolve_provider(owner_id)

        assert exc_info.value.code is ErrorCode.NO_CREDENTIAL
        assert exc_info.value.provider == "gemini"
        assert vendor.calls == 0

    @pytest.mark.asyncio
    async def test_follows_the_active_provider(self, ai_service, registry, vendor, openai_owner):
        await registry.set_active_service(openai_owner, "gemini", api_key=GEMINI_KEY)
        vendor.queue(gemini_reply("from gemini"))

        result = await ai_service.generate(openai_owner, GenerateRequest(prompt="Hello"))

        assert result.content == "from gemini"
        assert "generateContent" in vendor.requests[0].url.path


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success_tracks_usage(self, ai_service, registry, vendor, openai_owner):
        vendor.queue(openai_reply("The answer", prompt_tokens=30, completion_tokens=10))

        result = await ai_service.generate(openai_owner, GenerateRequest(prompt="Question"))

        assert result.content == "The answer"
        stats = await registry.get_usage_stats(openai_owner)
        assert stats.total_tokens == 40
        assert stats.operation_counts == {"text_generation": 1}
        assert stats.total_cost == pytest.approx(30 * 0.000005 + 10 * 0.000015)

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, ai_service, vendor, openai_owner):
        vendor.queue(vendor_error(503), vendor_error(503), openai_reply("finally"))

        result = await ai_service.generate(openai_owner, GenerateRequest(prompt="Hello"))

        assert result.content == "finally"
        assert vendor.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_classified_error(self, ai_service, registry, vendor, notifier, openai_owner):
        vendor.default = vendor_error(429, "Rate limit reached")

        with pytest.raises(AIProviderError) as exc_info:
            await ai_service.generate(openai_owner, GenerateRequest(prompt="Hello"))

        assert exc_info.value.code is ErrorCode.RATE_LIMITED
        assert vendor.calls == 3
        assert [n["error"].code for n in notifier.notifications] == [ErrorCode.RATE_LIMITED]
        assert (await registry.get_usage_stats(openai_owner)).total_tokens == 0


class TestDerivedOperations:
    @pytest.mark.asyncio
    async def test_summary_success(self, ai_service, vendor, openai_owner):
        vendor.queue(openai_reply("  A short summary.  ", prompt_tokens=5, completion_tokens=5))

        result = await ai_service.generate_summary(openai_owner, "long notes")

        assert result.success is True
        assert result.data == "A short summary."
        assert result.provider == "openai"
        assert result.model == "gpt-4o-mini"
        assert result.duration_ms >= 0
        assert result.metadata["tokens_used"] == 10
        assert result.error is None

    @pytest.mark.asyncio
    async def test_failure_is_a_result_not_an_exception(self, ai_service, vendor, openai_owner):
        vendor.default = vendor_error(400, "Prompt too long")

        result = await ai_service.generate_key_points(openai_owner, "notes")

        assert result.success is False
        assert result.data is None
        assert result.error == "Prompt too long"
        assert result.error_code is ErrorCode.INVALID_REQUEST
        assert result.provider == "openai"

    @pytest.mark.asyncio
    async def test_missing_config_is_a_failed_result(self, ai_service, vendor, owner_id):
        result = await ai_service.generate_questions(owner_id, "notes")

        assert result.success is False
        assert result.error_code is ErrorCode.NO_CREDENTIAL
        assert vendor.calls == 0

    @pytest.mark.asyncio
    async def test_quiz_degraded_when_unparseable(self, ai_service, vendor, openai_owner):
        vendor.queue(openai_reply("I'd rather not."))

        result = await ai_service.generate_quiz(openai_owner, "cells")

        assert result.success is True
        assert result.data == []
        assert result.metadata["degraded"] is True

    @pytest.mark.asyncio
    async def test_quiz_questions(self, ai_service, vendor, openai_owner):
        quiz = {"questions": [{"question": "Q?", "options": ["a", "b"], "correct_answer": "a"}]}
        vendor.queue(openai_reply(json.dumps(quiz)))

        result = await ai_service.generate_quiz(openai_owner, "cells")

        assert result.metadata["degraded"] is False
        assert result.data[0]["correct_answer"] == "a"

    @pytest.mark.asyncio
    async def test_enhance_text(self, ai_service, registry, vendor, owner_id):
        await registry.set_active_service(owner_id, "anthropic", api_key="sk-ant-" + "z" * 30)
        vendor.queue(anthropic_reply("Improved prose."))

        result = await ai_service.enhance_text(owner_id, "bad prose")

        assert result.data == "Improved prose."
        assert result.provider == "anthropic"
        stats = await registry.get_usage_stats(owner_id)
        assert stats.operation_counts == {"text_enhancement": 1}


class TestEnhanceNote:
    @pytest.mark.asyncio
    async def test_structured_summary(self, ai_service, vendor, openai_owner):
        payload = {"summary": "Cells divide.", "keyTakeaways": ["mitosis"], "wordCount": {"original": 50, "summary": 2}}
        vendor.queue(openai_reply(f"```json\n{json.dumps(payload)}\n```"))

        result = await ai_service.enhance_note(openai_owner, "notes about cells", EnhancementType.SUMMARY)

        assert result.success is True
        assert result.data == payload
        assert result.metadata["degraded"] is False
        body = json.loads(vendor.requests[0].content)
        assert body["messages"][0] == {"role": "system", "content": NOTE_ENHANCER_SYSTEM_PROMPT}
        assert body["max_tokens"] == 4000
        assert "notes about cells" in body["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_prose_degrades_to_fallback(self, ai_service, vendor, openai_owner):
        vendor.queue(openai_reply("Main ideas:\n- Osmosis\n- Diffusion"))

        result = await ai_service.enhance_note(openai_owner, "notes", "key_points")

        assert result.success is True
        assert result.metadata["degraded"] is True
        assert result.data == {"keyPoints": ["Osmosis", "Diffusion"], "categories": []}

    @pytest.mark.asyncio
    async def test_usage_operation_type(self, ai_service, registry, vendor, openai_owner):
        vendor.queue(openai_reply('{"studyQuestions": ["Why?"], "reviewQuestions": []}'))

        await ai_service.enhance_note(openai_owner, "notes", EnhancementType.QUESTIONS)

        stats = await registry.get_usage_stats(openai_owner)
        assert stats.operation_counts == {"note_questions": 1}

    @pytest.mark.asyncio
    async def test_quiz_is_not_a_note_enhancement(self, ai_service, openai_owner):
        with pytest.raises(ValidationError):
            await ai_service.enhance_note(openai_owner, "notes", EnhancementType.QUIZ)
