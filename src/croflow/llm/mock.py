"""Mock LLM backend: deterministic backend for tests and offline runs.

ARCHITECTURE
────────────
::

    MockLLMBackend
      ├── async .complete(request, model) → Completion (canned or scripted)
      ├── .calls       → list of every request received
      └── .call_count  → total calls

    Configuration (checked in order):
      errors             - exceptions raised in order before any response
      responses          - mapping of prompt substrings → responses
      sequence           - list of responses returned in order
      default_response   - text returned for all other calls

Example::

    backend = MockLLMBackend(default_response='{"insights": []}')
    service = LLMExecutionService(backends={"gpt": backend})
    response = await service.execute(LLMRequest(prompt="..."))
    assert response.data == {"insights": []}

Tags:
    croflow, llm, mock, testing, deterministic
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from croflow.llm.protocol import Completion, LLMRequest, TokenUsage


@dataclass
class MockLLMBackend:
    """Scripted backend that never touches the network.

    Attributes:
        name: Provider name reported in metadata.
        default_model: Model used when the request names none.
        default_response: Text returned when nothing else matches.
        responses: Map of prompt substring → response text.
        sequence: Ordered responses, consumed one per call.
        errors: Exceptions raised (one per call) before responses are served.
        delay_seconds: Simulated latency per call.
        tokens_per_char: Approximate tokens per character (for usage).
    """

    name: str = "mock"
    default_model: str = "mock-model-v1"
    default_response: str = "{}"
    responses: dict[str, str] = field(default_factory=dict)
    sequence: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    delay_seconds: float = 0.0
    tokens_per_char: float = 0.25

    calls: list[dict[str, Any]] = field(default_factory=list, repr=False)
    _sequence_index: int = field(default=0, repr=False)

    async def complete(self, request: LLMRequest, model: str) -> Completion:
        self.calls.append({"request": request, "model": model})
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.errors:
            raise self.errors.pop(0)

        content = self._resolve_content(request.prompt)
        input_tokens = max(1, int(len(request.prompt) * self.tokens_per_char))
        output_tokens = max(1, int(len(content) * self.tokens_per_char))
        return Completion(
            text=content,
            model=model,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            finish_reason="stop",
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def last_request(self) -> LLMRequest | None:
        return self.calls[-1]["request"] if self.calls else None

    def reset(self) -> None:
        """Reset call tracking and sequence index."""
        self.calls.clear()
        self._sequence_index = 0

    def _resolve_content(self, prompt: str) -> str:
        for key, response in self.responses.items():
            if key in prompt:
                return response

        if self._sequence_index < len(self.sequence):
            content = self.sequence[self._sequence_index]
            self._sequence_index += 1
            return content

        return self.default_response


__all__ = ["MockLLMBackend"]
