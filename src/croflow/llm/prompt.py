"""Prompt assembly and rough token arithmetic."""

from __future__ import annotations

import json
import math
from typing import Any, Iterable

from croflow.llm.protocol import Provider

_CHARS_PER_TOKEN = {Provider.GPT.value: 4.0, Provider.CLAUDE.value: 3.5}


def estimate_tokens(text: str, provider: Provider | str = Provider.GPT) -> int:
    """Approximate token count (about 4 chars/token for GPT, 3.5 for Claude)."""
    name = provider.value if isinstance(provider, Provider) else str(provider)
    ratio = _CHARS_PER_TOKEN.get(name, 4.0)
    return math.ceil(len(text) / ratio)


def truncate_to_tokens(
    text: str, max_tokens: int, provider: Provider | str = Provider.GPT
) -> str:
    """Cut ``text`` to roughly ``max_tokens``, keeping a 5% safety margin."""
    tokens = estimate_tokens(text, provider)
    if tokens <= max_tokens:
        return text
    max_chars = math.floor(len(text) * (max_tokens / tokens) * 0.95)
    return text[:max_chars] + "..."


def truncate_chars(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n\n[content truncated]"


class PromptBuilder:
    """Fluent builder joining prompt parts with blank lines.

    Example:
        >>> prompt = (
        ...     PromptBuilder()
        ...     .raw("Analyze this page.")
        ...     .section("Page Content", markdown)
        ...     .numbered(["Be specific", "Return JSON"])
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._parts: list[str] = []

    def raw(self, text: str) -> PromptBuilder:
        self._parts.append(text)
        return self

    def section(self, title: str, content: str) -> PromptBuilder:
        self._parts.append(f"## {title}\n{content}")
        return self

    def bullet_list(self, items: Iterable[str]) -> PromptBuilder:
        self._parts.append("\n".join(f"- {item}" for item in items))
        return self

    def numbered(self, items: Iterable[str]) -> PromptBuilder:
        self._parts.append("\n".join(f"{i}. {item}" for i, item in enumerate(items, 1)))
        return self

    def code(self, code: str, language: str = "") -> PromptBuilder:
        self._parts.append(f"```{language}\n{code}\n```")
        return self

    def json(self, data: Any) -> PromptBuilder:
        return self.code(json.dumps(data, indent=2, default=str), "json")

    def build(self) -> str:
        return "\n\n".join(self._parts)


__all__ = [
    "PromptBuilder",
    "estimate_tokens",
    "truncate_chars",
    "truncate_to_tokens",
]
