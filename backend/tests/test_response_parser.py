"""
Tests for the response extraction & validation pipeline.

Covers:
    - Parse strategies: direct, fenced, embedded, trailing-comma repair
    - Empty / prose input never raises and carries fallback content
    - Shape validation per enhancement kind, including aliases
    - Fallback synthesis via the line heuristics
"""

import json
import time
from datetime import datetime

import pytest

from studyvault.schemas.ai import EnhancementType
from studyvault.services.response_parser import (
    build_fallback,
    extract_bullet_points,
    extract_content_from_response,
    extract_enhancement,
    extract_question_lines,
    find_balanced_region,
    parse_ai_response,
    validate_enhancement_data,
)

SUMMARY = {
    "summary": "Cells are the basic unit of life.",
    "keyTakeaways": ["Cells", "Life"],
    "wordCount": {"original": 120, "summary": 7},
}


class TestParseAIResponse:
    def test_direct_json(self):
        result = parse_ai_response(json.dumps(SUMMARY))
        assert result.success is True
        assert result.data == SUMMARY

    def test_fenced_equals_direct(self):
        fenced = f"```json\n{json.dumps(SUMMARY)}\n```"
        assert parse_ai_response(fenced).data == parse_ai_response(json.dumps(SUMMARY)).data

    def test_fence_without_language_tag(self):
        result = parse_ai_response(f"```\n{json.dumps(SUMMARY)}\n```")
        assert result.data == SUMMARY

    def test_json_embedded_in_prose(self):
        raw = f"Sure! Here is your summary: {json.dumps(SUMMARY)} Hope this helps."
        result = parse_ai_response(raw)
        assert result.success is True
        assert result.data == SUMMARY

    def test_trailing_commas_repaired(self):
        raw = 'Result: {"keyPoints": ["a", "b",], "categories": [],}'
        result = parse_ai_response(raw)
        assert result.success is True
        assert result.data == {"keyPoints": ["a", "b"], "categories": []}

    def test_dict_passthrough(self):
        assert parse_ai_response({"a": 1}).data == {"a": 1}

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_input(self, raw):
        result = parse_ai_response(raw)
        assert result.success is False
        assert result.error == "Empty response content"
        assert result.fallback_content == "No content received"

    def test_prose_is_not_an_exception(self):
        raw = "The mitochondria is the powerhouse of the cell."
        result = parse_ai_response(raw)
        assert result.success is False
        assert result.error == "Could not parse response as JSON"
        assert result.fallback_content == raw


class TestBalancedRegion:
    def test_braces_inside_strings_are_ignored(self):
        text = 'prefix {"a": "}", "b": [1, 2]} suffix'
        assert find_balanced_region(text) == '{"a": "}", "b": [1, 2]}'

    def test_array_region(self):
        assert find_balanced_region('answer: [1, [2, 3]] done') == "[1, [2, 3]]"

    def test_unbalanced_returns_none(self):
        assert find_balanced_region('{"a": [1, 2}') is None

    def test_balanced_inner_region_of_unclosed_outer(self):
        assert find_balanced_region('{"items": [1, 2] and then nothing') == "[1, 2]"

    def test_scan_resumes_after_mismatch(self):
        assert find_balanced_region('{[} then {"ok": 1}') == '{"ok": 1}'

    def test_long_unbalanced_input_scans_in_linear_time(self):
        started = time.perf_counter()
        assert find_balanced_region("{" * 50_000) is None
        assert time.perf_counter() - started < 1.0


class TestLineHeuristics:
    def test_bullets(self):
        assert extract_bullet_points("• A\n- B\nnot a bullet") == ["A", "B"]

    def test_star_bullets_and_blank_markers(self):
        assert extract_bullet_points("* one\n-\n  * two") == ["one", "two"]

    def test_questions(self):
        assert extract_question_lines("1. Q1?\nrandom line\n2. Q2?") == ["Q1?", "Q2?"]

    def test_unnumbered_question(self):
        assert extract_question_lines("Why is the sky blue?\nBecause.") == ["Why is the sky blue?"]

    def test_no_matches_is_empty(self):
        assert extract_bullet_points("plain text") == []
        assert extract_question_lines("plain text") == []


class TestValidation:
    def test_summary_aliases_and_word_count_strings(self):
        data = {"text": "A summary", "key_takeaways": ["x"], "word_count": {"original": "about 300 words"}}
        assert validate_enhancement_data(data, EnhancementType.SUMMARY) == {
            "summary": "A summary",
            "keyTakeaways": ["x"],
            "wordCount": {"original": 300, "summary": 0},
        }

    def test_summary_requires_text(self):
        assert validate_enhancement_data({"keyTakeaways": []}, "summary") is None

    def test_key_points_keep_structured_items(self):
        point = {"point": "Main", "details": ["d"], "importance": "high"}
        result = validate_enhancement_data({"key_points": [point, " plain "]}, "key_points")
        assert result == {"keyPoints": [point, "plain"], "categories": []}

    def test_questions_normalised(self):
        data = {
            "studyQuestions": ["What is DNA?", {"question": "Define RNA", "answer": "", "type": "factual"}],
            "review_questions": [{"answer": "yes"}],
        }
        result = validate_enhancement_data(data, EnhancementType.QUESTIONS)
        assert result["studyQuestions"] == [
            {"question": "What is DNA?", "answer": None, "type": None, "difficulty": None},
            {"question": "Define RNA", "answer": None, "type": "factual", "difficulty": None},
        ]
        assert result["reviewQuestions"] == [{"question": "Invalid question", "answer": "yes"}]

    def test_quiz_accepts_bare_list_and_answer_aliases(self):
        data = [{"question": "Q", "options": ["a", "b"], "correctAnswer": "b"}]
        assert validate_enhancement_data(data, EnhancementType.QUIZ) == {
            "questions": [{"question": "Q", "options": ["a", "b"], "correct_answer": "b", "explanation": ""}]
        }

    def test_wrong_shape_is_none(self):
        assert validate_enhancement_data(["a"], EnhancementType.SUMMARY) is None
        assert validate_enhancement_data({"foo": 1}, EnhancementType.QUESTIONS) is None

    def test_envelope_unwrapping(self):
        assert extract_content_from_response({"result": {"a": 1}}) == {"a": 1}
        assert extract_content_from_response({"a": 1}) == {"a": 1}
        assert extract_content_from_response(None) is None


class TestExtractEnhancement:
    def test_valid_payload(self):
        parsed = extract_enhancement(json.dumps(SUMMARY), EnhancementType.SUMMARY)
        assert parsed.success is True
        assert parsed.data["summary"] == SUMMARY["summary"]

    def test_wrapped_payload_is_unwrapped(self):
        parsed = extract_enhancement(json.dumps({"data": SUMMARY}), EnhancementType.SUMMARY)
        assert parsed.success is True
        assert parsed.data["keyTakeaways"] == ["Cells", "Life"]

    def test_prose_falls_back_to_bullets(self):
        parsed = extract_enhancement("Key ideas:\n- Osmosis\n- Diffusion", EnhancementType.KEY_POINTS)
        assert parsed.success is False
        assert parsed.error == "Could not parse response as JSON"
        assert parsed.data == {"keyPoints": ["Osmosis", "Diffusion"], "categories": []}

    def test_wrong_shape_falls_back(self):
        parsed = extract_enhancement('{"unexpected": true}', EnhancementType.QUESTIONS)
        assert parsed.success is False
        assert parsed.error == "Response did not match the expected questions shape"
        assert parsed.data == {"studyQuestions": [], "reviewQuestions": []}

    def test_empty_summary_fallback(self):
        parsed = extract_enhancement("", EnhancementType.SUMMARY)
        assert parsed.success is False
        assert parsed.data["summary"] == "No content received"

    def test_fallback_shapes(self):
        assert build_fallback(EnhancementType.KEY_POINTS, "single line") == {
            "keyPoints": ["single line"],
            "categories": [],
        }
        assert build_fallback(EnhancementType.QUIZ, "anything") == {"questions": []}
        assert build_fallback(EnhancementType.SUMMARY, "")["summary"] == "No summary available"

    def test_deeply_nested_output_degrades(self):
        raw = "[" * 100_000 + "]" * 100_000

        parsed = extract_enhancement(raw, EnhancementType.SUMMARY)

        assert parsed.success is False
        assert parsed.data["summary"].startswith("[[[")

    def test_structured_input_with_non_json_values_degrades(self):
        raw = {"note": "x", "at": datetime(2024, 1, 1)}

        parsed = extract_enhancement(raw, EnhancementType.SUMMARY)

        assert parsed.success is False
        assert parsed.error == "Response did not match the expected summary shape"
        assert "2024-01-01 00:00:00" in parsed.data["summary"]
