"""Recover a JSON value from free-form model output."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Type, Union

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ParseSuccess:
    value: Any
    strategy: str


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[ParseSuccess, ParseFailure]


def _extract_fenced_json(text: str) -> Optional[str]:
    """If the model wrapped JSON in ``` or ```json fences, return the inner content."""
    match = _FENCE_RE.search(text)
    if match and match.group(1):
        return match.group(1).strip()
    return None


def _slice_between(text: str, opener: str, closer: str) -> Optional[str]:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def recover_json(text: Optional[str], expect: Optional[Type] = None) -> ParseResult:
    """Try fenced block, direct parse, then first-bracket/last-bracket slice.

    expect (dict or list) rejects candidates of the wrong shape so that a
    stray array inside an object answer does not win.
    """
    if not isinstance(text, str) or not text.strip():
        return ParseFailure("empty response")

    candidates: List[Tuple[str, Optional[str]]] = [
        ("fenced", _extract_fenced_json(text)),
        ("direct", text.strip()),
        ("object-slice", _slice_between(text, "{", "}")),
        ("array-slice", _slice_between(text, "[", "]")),
    ]
    errors = []
    for strategy, candidate in candidates:
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except ValueError as exc:
            errors.append(f"{strategy}: {exc}")
            continue
        if expect is not None and not isinstance(value, expect):
            errors.append(f"{strategy}: got {type(value).__name__}, expected {expect.__name__}")
            continue
        return ParseSuccess(value=value, strategy=strategy)
    return ParseFailure("; ".join(errors) or "no JSON candidate found")
