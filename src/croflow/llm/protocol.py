"""LLM request/response types and the backend protocol.

Manifesto:
    Pipeline stages must not know which vendor answered them. Every call
    goes through ``LLMRequest`` → ``LLMExecutionService`` → ``LLMResponse``;
    vendor SDK shapes live only inside the backend classes.

ARCHITECTURE
────────────
::

    LLMBackend (Protocol)
      ├── .name / .default_model
      └── async .complete(request, model) → Completion(text, model, usage)

    LLMRequest(prompt, provider, model, temperature, max_tokens, images, ...)
    LLMResponse(success, data | error, metadata, raw_text)
    LLMResponseMetadata(provider, model, tokens_used, estimated_cost_usd,
                        processing_time_ms)

Related modules:
    backends.py  - OpenAI and Anthropic SDK backends
    mock.py      - MockLLMBackend for tests
    service.py   - LLMExecutionService (dispatch, parse, price)

Tags:
    croflow, llm, protocol, provider-interface

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Provider(str, Enum):
    """Interchangeable language-model backends."""

    GPT = "gpt"
    CLAUDE = "claude"


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics for an LLM call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input": self.input_tokens,
            "output": self.output_tokens,
            "total": self.total_tokens,
        }


@dataclass(frozen=True)
class LLMRequest:
    """A single prompt to be answered by one provider.

    Attributes:
        prompt: User prompt text.
        provider: ``"gpt"`` or ``"claude"``.
        model: Model override; ``None`` uses the provider default.
        temperature: Sampling temperature; ``None`` uses the configured default.
        max_tokens: Completion budget; ``None`` picks a default based on images.
        images: Screenshot URLs or ``data:image/...;base64,`` URLs.
        system_prompt: System instruction override.
        json_mode: Ask the provider for a JSON object when it supports that.
    """

    prompt: str
    provider: Provider | str = Provider.GPT
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    images: tuple[str, ...] = ()
    system_prompt: str | None = None
    json_mode: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "images", tuple(self.images))

    @property
    def has_images(self) -> bool:
        return bool(self.images)


@dataclass(frozen=True)
class Completion:
    """Raw text completion as returned by a backend."""

    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None


@dataclass(frozen=True)
class LLMResponseMetadata:
    provider: str
    model: str
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    estimated_cost_usd: float = 0.0
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "tokens_used": self.tokens_used.to_dict(),
            "estimated_cost_usd": self.estimated_cost_usd,
            "processing_time_ms": round(self.processing_time_ms, 2),
        }


@dataclass(frozen=True)
class LLMResponse:
    """Tagged result of ``LLMExecutionService.execute``; never an exception.

    Attributes:
        success: True when the provider answered (even if the answer was malformed).
        data: Decoded JSON payload on success.
        error: Error message on failure.
        metadata: Provider, model, tokens, cost and timing.
        raw_text: Undecoded completion text.
    """

    success: bool
    metadata: LLMResponseMetadata
    data: Any = None
    error: str | None = None
    raw_text: str | None = None

    @property
    def malformed(self) -> bool:
        """True when the completion could not be decoded and a stub was returned."""
        return isinstance(self.data, dict) and bool(self.data.get("malformed"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "metadata": self.metadata.to_dict()}
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


@runtime_checkable
class LLMBackend(Protocol):
    """Interface every provider backend implements."""

    name: str
    default_model: str

    async def complete(self, request: LLMRequest, model: str) -> Completion:
        """Send ``request`` to ``model`` and return its completion text.

        Raises whatever the vendor SDK raises; the service catches it.
        """
        ...


__all__ = [
    "Completion",
    "LLMBackend",
    "LLMRequest",
    "LLMResponse",
    "LLMResponseMetadata",
    "Provider",
    "TokenUsage",
]
