"""Tolerant JSON decoding of model completions.

Models wrap JSON in markdown fences, prepend chatter, or occasionally
return something that is not JSON at all. ``parse_json_response`` tries,
in order:

1. the raw text, then the text with a wrapping code fence removed
2. the first ``{...}`` / ``[...]`` block found in the text
3. ``malformed_response_stub()`` - a well-formed, low-confidence placeholder

It never raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_WRAPPING_FENCE = re.compile(r"^\s*```(?:json|JSON)?[ \t]*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_OBJECT = re.compile(r"\{[\s\S]*\}")
_ARRAY = re.compile(r"\[[\s\S]*\]")


@dataclass(frozen=True)
class ParsedResponse:
    data: Any
    malformed: bool = False
    strategy: str = "direct"  # direct, extracted, stub


def malformed_response_stub() -> dict[str, Any]:
    """Placeholder payload for completions that could not be decoded."""
    return {
        "summary": {
            "headline": "Analysis completed but response formatting had issues.",
            "diagnostic_tone": "Please review the analysis manually.",
            "confidence": "low",
        },
        "findings": [],
        "malformed": True,
    }


def strip_code_fences(text: str) -> str:
    """Remove a markdown fence wrapping the whole of ``text``.

    Fence markers elsewhere, such as inside JSON string values, are kept.
    """
    match = _WRAPPING_FENCE.match(text)
    return (match.group(1) if match else text).strip()


def parse_json_response(text: str | None) -> ParsedResponse:
    """Decode ``text`` as JSON as leniently as possible."""
    if not text:
        return ParsedResponse(malformed_response_stub(), malformed=True, strategy="stub")

    cleaned = strip_code_fences(text)
    for candidate in (text, cleaned):
        try:
            return ParsedResponse(json.loads(candidate))
        except json.JSONDecodeError:
            continue

    matches = sorted(
        (m for m in (_OBJECT.search(cleaned), _ARRAY.search(cleaned)) if m is not None),
        key=lambda m: m.start(),
    )
    for match in matches:
        try:
            return ParsedResponse(json.loads(match.group(0)), strategy="extracted")
        except json.JSONDecodeError:
            continue

    return ParsedResponse(malformed_response_stub(), malformed=True, strategy="stub")


__all__ = [
    "ParsedResponse",
    "malformed_response_stub",
    "parse_json_response",
    "strip_code_fences",
]
