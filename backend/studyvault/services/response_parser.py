"""
StudyVault Backend — Response Extraction & Validation Pipeline
================================================================

What:  Turns whatever a model returned (dict, JSON string, fenced JSON,
       JSON buried in prose, or plain prose) into a typed enhancement payload.
How:   parse_ai_response() tries progressively looser strategies; the
       result is validated against the shape for the requested kind and,
       on mismatch, replaced by a fallback synthesised from the raw text.
Who:   BaseAIProvider.generate_quiz and AIService.enhance_note.
When:  After every structured generation call.

Nothing in this module raises. Callers always get a renderable payload
plus a success flag telling them whether it was degraded.

Parse order:
    1. already a dict/list  → passthrough
    2. json.loads(raw)
    3. ```json fenced block```
    4. first balanced {...} or [...] region
    5. same region after removing trailing commas
    6. give up → fallback_content = raw text
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from studyvault.schemas.ai import EnhancementType

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BULLET_PREFIX = re.compile(r"^[•\-\*]\s*")
_NUMBER_PREFIX = re.compile(r"^\d+\.\s*")
_NUMBERED_LINE = re.compile(r"^\d+\.")
_DIGITS = re.compile(r"\d+")


@dataclass
class ParsedResponse:
    success: bool
    data: Any = None
    error: Optional[str] = None
    fallback_content: Optional[str] = None


@dataclass
class ParsedEnhancement:
    """Pipeline result: `data` is always populated; success=False means degraded."""

    success: bool
    data: Dict[str, Any]
    error: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Line heuristics (shared with BaseAIProvider's derived operations)
# ══════════════════════════════════════════════════════════════════════════


def extract_bullet_points(text: str) -> List[str]:
    """Lines starting with •, - or *, marker stripped. May be empty."""
    points = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith(("•", "-", "*")):
            point = _BULLET_PREFIX.sub("", stripped)
            if point:
                points.append(point)
    return points


def extract_question_lines(text: str) -> List[str]:
    """Lines numbered "N." or ending with "?", number prefix stripped. May be empty."""
    questions = []
    for line in text.split("\n"):
        stripped = line.strip()
        if _NUMBERED_LINE.match(stripped) or stripped.endswith("?"):
            question = _NUMBER_PREFIX.sub("", stripped)
            if question:
                questions.append(question)
    return questions


# ══════════════════════════════════════════════════════════════════════════
# Parsing
# ══════════════════════════════════════════════════════════════════════════


def _try_json(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return None


def find_balanced_region(text: str) -> Optional[str]:
    """
    Return the first balanced {...} or [...] region of `text`, or None.

    Brackets inside JSON string literals (including escaped quotes) are
    ignored so that `{"a": "}"}` is scanned correctly. Single pass: a
    mismatched closer fails every bracket still open, so scanning resumes
    after it rather than at the next opener.
    """
    openers: List[int] = []
    expected: List[str] = []
    best: Optional[Tuple[int, int]] = None
    in_string = False
    escaped = False

    for i, c in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            # quotes only matter inside a region
            in_string = bool(openers)
        elif c in "{[":
            openers.append(i)
            expected.append("}" if c == "{" else "]")
        elif c in "}]":
            if not openers:
                continue
            if expected.pop() != c:
                if best is not None:
                    break
                openers.clear()
                expected.clear()
                continue
            start = openers.pop()
            if not openers:
                return text[start:i + 1]
            # nested region closed; an enclosing bracket may still fail
            if best is None or start < best[0]:
                best = (start, i + 1)

    if best is None:
        return None
    return text[best[0]:best[1]]


def parse_ai_response(raw: Any) -> ParsedResponse:
    """Best-effort conversion of a model output into a JSON value."""
    if isinstance(raw, (dict, list)):
        return ParsedResponse(success=True, data=raw)

    text = raw if isinstance(raw, str) else ("" if raw is None else str(raw))
    if not text.strip():
        return ParsedResponse(
            success=False,
            error="Empty response content",
            fallback_content="No content received",
        )

    direct = _try_json(text)
    if direct is not None:
        return ParsedResponse(success=True, data=direct)

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        inner = _try_json(fenced.group(1).strip())
        if inner is not None:
            return ParsedResponse(success=True, data=inner)

    region = find_balanced_region(text)
    if region is not None:
        extracted = _try_json(region)
        if extracted is not None:
            return ParsedResponse(success=True, data=extracted)
        repaired = _try_json(_TRAILING_COMMA.sub(r"\1", region))
        if repaired is not None:
            logger.debug("Parsed model output after trailing-comma repair")
            return ParsedResponse(success=True, data=repaired)

    return ParsedResponse(
        success=False,
        error="Could not parse response as JSON",
        fallback_content=text,
    )


def extract_content_from_response(response: Any) -> Any:
    """Unwrap the common {content|result|data|enhancement: ...} envelopes."""
    if not response:
        return None
    if isinstance(response, dict):
        for key in ("content", "result", "data", "enhancement"):
            if response.get(key):
                return response[key]
    return response


# ══════════════════════════════════════════════════════════════════════════
# Shape validation
# ══════════════════════════════════════════════════════════════════════════


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _word_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        match = _DIGITS.search(value)
        if match:
            return int(match.group(0))
    return 0


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _answer(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _validate_summary(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    summary = _first(data, "summary", "text", "content")
    if not isinstance(summary, str) or not summary.strip():
        return None
    word_count = _first(data, "wordCount", "word_count")
    if not isinstance(word_count, dict):
        word_count = {}
    return {
        "summary": summary.strip(),
        "keyTakeaways": _string_list(_first(data, "keyTakeaways", "key_takeaways")),
        "wordCount": {
            "original": _word_count(word_count.get("original")),
            "summary": _word_count(word_count.get("summary")),
        },
    }


def _validate_key_points(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    points = _first(data, "keyPoints", "key_points")
    if not isinstance(points, list):
        return None
    categories = data.get("categories")
    # items are either plain strings or {point, details, importance} objects
    normalized = [
        item if isinstance(item, dict) else str(item).strip()
        for item in points
        if isinstance(item, dict) or str(item).strip()
    ]
    return {
        "keyPoints": normalized,
        "categories": categories if isinstance(categories, list) else [],
    }


def _validate_questions(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    study = _first(data, "studyQuestions", "study_questions")
    review = _first(data, "reviewQuestions", "review_questions")
    if not isinstance(study, list) and not isinstance(review, list):
        return None

    study_questions = []
    for item in study if isinstance(study, list) else []:
        if isinstance(item, str):
            study_questions.append(
                {"question": item, "answer": None, "type": None, "difficulty": None}
            )
        elif isinstance(item, dict):
            study_questions.append({
                "question": item.get("question") or "Invalid question",
                "answer": _answer(item.get("answer")),
                "type": item.get("type"),
                "difficulty": item.get("difficulty"),
            })

    review_questions = []
    for item in review if isinstance(review, list) else []:
        if isinstance(item, str):
            review_questions.append({"question": item, "answer": None})
        elif isinstance(item, dict):
            review_questions.append({
                "question": item.get("question") or "Invalid question",
                "answer": _answer(item.get("answer")),
            })

    return {"studyQuestions": study_questions, "reviewQuestions": review_questions}


def normalize_quiz_question(item: Dict[str, Any]) -> Dict[str, Any]:
    correct = _first(item, "correct_answer", "correctAnswer", "correct")
    options = item.get("options")
    return {
        "question": item.get("question") or "Invalid question",
        "options": options if isinstance(options, list) else [],
        "correct_answer": correct,
        "explanation": item.get("explanation") or "",
    }


def _validate_quiz(data: Any) -> Optional[Dict[str, Any]]:
    questions = data if isinstance(data, list) else data.get("questions")
    if not isinstance(questions, list):
        return None
    return {
        "questions": [normalize_quiz_question(q) for q in questions if isinstance(q, dict)]
    }


_VALIDATORS = {
    EnhancementType.SUMMARY: _validate_summary,
    EnhancementType.KEY_POINTS: _validate_key_points,
    EnhancementType.QUESTIONS: _validate_questions,
}


def validate_enhancement_data(data: Any, kind: EnhancementType) -> Optional[Dict[str, Any]]:
    """Normalise `data` into the shape for `kind`; None on a shape mismatch."""
    kind = EnhancementType(kind)
    if kind is EnhancementType.QUIZ:
        if isinstance(data, (dict, list)):
            return _validate_quiz(data)
        return None
    if not isinstance(data, dict):
        return None
    return _VALIDATORS[kind](data)


# ══════════════════════════════════════════════════════════════════════════
# Fallback & pipeline entry point
# ══════════════════════════════════════════════════════════════════════════


def build_fallback(kind: EnhancementType, text: str) -> Dict[str, Any]:
    """Renderable payload for `kind` built from raw text using the line heuristics."""
    kind = EnhancementType(kind)
    text = (text or "").strip()

    if kind is EnhancementType.SUMMARY:
        return {
            "summary": text or "No summary available",
            "keyTakeaways": extract_bullet_points(text),
            "wordCount": {"original": 0, "summary": len(text.split())},
        }
    if kind is EnhancementType.KEY_POINTS:
        points = extract_bullet_points(text)
        return {"keyPoints": points or ([text] if text else []), "categories": []}
    if kind is EnhancementType.QUESTIONS:
        lines = extract_question_lines(text)
        return {
            "studyQuestions": [
                {"question": q, "answer": None, "type": None, "difficulty": None}
                for q in lines
            ],
            "reviewQuestions": [],
        }
    return {"questions": []}


def _to_text(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError, RecursionError):
        return str(value)


def extract_enhancement(raw: Any, kind: EnhancementType) -> ParsedEnhancement:
    """Parse, validate and (if needed) fall back. Never raises."""
    kind = EnhancementType(kind)
    parsed = parse_ai_response(raw)

    if parsed.success:
        candidate = parsed.data
        validated = validate_enhancement_data(candidate, kind)
        if validated is None:
            # models sometimes wrap the payload one level deeper
            unwrapped = extract_content_from_response(candidate)
            if unwrapped is not candidate:
                validated = validate_enhancement_data(unwrapped, kind)
        if validated is not None:
            return ParsedEnhancement(success=True, data=validated)
        error = f"Response did not match the expected {kind.value} shape"
        fallback_text = raw if isinstance(raw, str) else _to_text(candidate)
    else:
        error = parsed.error or "Could not parse response"
        fallback_text = parsed.fallback_content or ""

    logger.warning("Enhancement output degraded to fallback (%s): %s", kind.value, error)
    return ParsedEnhancement(
        success=False,
        data=build_fallback(kind, fallback_text),
        error=error,
    )
