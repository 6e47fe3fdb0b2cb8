"""Tolerant parsing of model responses into review dicts.

Models do not reliably return clean JSON: responses arrive wrapped in
markdown fences, with prose around the object, or cut off mid-array when the
token budget runs out. Each stage below is tried in order and reports which
stage produced the result, so callers and tests can tell a clean parse from
a salvage.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from prsift_core.models import looks_like_review

logger = logging.getLogger(__name__)

_OPEN_FENCE_RE = re.compile(r"^```(?:json)?\s*")
_CLOSE_FENCE_RE = re.compile(r"\s*```$")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class ParseStage(enum.Enum):
    STRICT = "strict"
    OBJECT_EXTRACT = "object_extract"
    FRAGMENT_EXTRACT = "fragment_extract"
    EMPTY = "empty"


@dataclass
class Parsed:
    stage: ParseStage
    reviews: list[dict] = field(default_factory=list)


@dataclass
class ParseFailure:
    stage: ParseStage
    reason: str


def strip_fences(text: str) -> str:
    # Only the outer fence; backticks inside comment strings are content.
    cleaned = _OPEN_FENCE_RE.sub("", text.strip())
    return _CLOSE_FENCE_RE.sub("", cleaned.strip())


def _reviews_from(data: Any, stage: ParseStage) -> Parsed | ParseFailure:
    if isinstance(data, list):
        return Parsed(stage, [item for item in data if isinstance(item, dict)])
    if isinstance(data, dict):
        reviews = data.get("reviews")
        if isinstance(reviews, list):
            return Parsed(stage, [item for item in reviews if isinstance(item, dict)])
        if looks_like_review(data):
            return Parsed(stage, [data])
        return ParseFailure(stage, "JSON object has no 'reviews' array")
    return ParseFailure(stage, f"unexpected JSON type {type(data).__name__}")


def _strict(text: str) -> Parsed | ParseFailure:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return ParseFailure(ParseStage.STRICT, str(e))
    return _reviews_from(data, ParseStage.STRICT)


def _object_extract(text: str) -> Parsed | ParseFailure:
    match = _OBJECT_RE.search(text)
    if match is None:
        return ParseFailure(ParseStage.OBJECT_EXTRACT, "no JSON object found")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return ParseFailure(ParseStage.OBJECT_EXTRACT, str(e))
    return _reviews_from(data, ParseStage.OBJECT_EXTRACT)


def balanced_spans(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` slices of every balanced ``{...}`` in ``text``.

    Braces inside JSON strings are ignored. Unclosed objects (a truncated
    tail) produce no span, but complete objects nested inside them do.
    """
    spans = []
    stack: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append(i)
        elif ch == "}" and stack:
            start = stack.pop()
            spans.append((start, i + 1))
    return sorted(spans)


def _fragment_extract(text: str, accept: Callable[[Any], bool]) -> Parsed | ParseFailure:
    reviews = []
    covered_until = -1
    for start, end in balanced_spans(text):
        # Spans are sorted by start; skip anything nested in an accepted object.
        if start < covered_until:
            continue
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError:
            continue
        if accept(data):
            reviews.append(data)
            covered_until = end
    if not reviews:
        return ParseFailure(ParseStage.FRAGMENT_EXTRACT, "no complete review objects found")
    return Parsed(ParseStage.FRAGMENT_EXTRACT, reviews)


def parse_reviews(text: str | None, accept: Callable[[Any], bool] = looks_like_review) -> Parsed:
    """Parse a raw model response. Never raises; total failure is ``Parsed(EMPTY, [])``."""
    if not text or not text.strip():
        return Parsed(ParseStage.EMPTY)

    cleaned = strip_fences(text)
    for step in (_strict, _object_extract):
        result = step(cleaned)
        if isinstance(result, Parsed):
            return result
        logger.debug("Parse stage %s failed: %s", result.stage.value, result.reason)

    result = _fragment_extract(cleaned, accept)
    if isinstance(result, Parsed):
        logger.info("Salvaged %d review(s) from a malformed response", len(result.reviews))
        return result
    logger.debug("Parse stage %s failed: %s", result.stage.value, result.reason)

    logger.warning("Could not parse model response as JSON: %s", text[:200])
    return Parsed(ParseStage.EMPTY)
