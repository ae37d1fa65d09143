"""LLM Execution Service: provider-agnostic request/response layer.

Manifesto:
    Pipeline stages ask one question: "run this prompt, give me JSON".
    The service answers it the same way regardless of vendor, and it never
    raises. SDK exceptions, missing credentials, empty completions and
    malformed JSON all come back as an ``LLMResponse`` value.

ARCHITECTURE
────────────
::

    LLMExecutionService.execute(request)
      │
      ├── resolve backend by request.provider  ("gpt" | "claude" | custom)
      │     (built lazily from settings unless injected)
      ├── backend.complete(request, model)  → Completion(text, usage)
      ├── parse_json_response(text)         → data | malformed stub
      ├── PricingTable.estimate_cost(model, usage)
      ├── UsageLedger.record(...)
      └── LLMResponse(success, data | error, metadata)

    execute_with_retry(request, strategy)
      └── RetryContext + ExponentialBackoff; skips "Invalid"/"Unauthorized"

Example::

    service = LLMExecutionService(backends={"gpt": MockLLMBackend(
        default_response='```json\\n{"insights": []}\\n```')})
    response = await service.execute(LLMRequest(prompt="Analyze ..."))
    assert response.success and response.data == {"insights": []}

Tags:
    croflow, llm, service, provider-agnostic, cost-accounting

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from croflow.core.errors import LLMConfigurationError, LLMProviderError
from croflow.core.logging import get_logger
from croflow.core.settings import CroflowSettings
from croflow.core.timing import TimingResult
from croflow.execution.retry import ExponentialBackoff, RetryContext, RetryStrategy
from croflow.llm.backends import AnthropicBackend, OpenAIBackend
from croflow.llm.parsing import parse_json_response
from croflow.llm.pricing import DEFAULT_PRICING, PricingTable, UsageLedger
from croflow.llm.protocol import (
    LLMBackend,
    LLMRequest,
    LLMResponse,
    LLMResponseMetadata,
    Provider,
)

logger = get_logger(__name__)

BackendFactory = Callable[[CroflowSettings], LLMBackend]

DEFAULT_BACKEND_FACTORIES: dict[str, BackendFactory] = {
    Provider.GPT.value: lambda settings: OpenAIBackend(settings=settings),
    Provider.CLAUDE.value: lambda settings: AnthropicBackend(settings=settings),
}


class _FailedResponse(LLMProviderError):
    """Carries a failed ``LLMResponse`` through the retry loop."""

    def __init__(self, response: LLMResponse):
        super().__init__(
            response.error or "LLM request failed",
            provider=response.metadata.provider,
            model=response.metadata.model,
        )
        self.response = response


def _provider_name(provider: Provider | str) -> str:
    return provider.value if isinstance(provider, Provider) else str(provider)


class LLMExecutionService:
    """Dispatches requests to interchangeable backends.

    Attributes:
        settings: Defaults for models, tokens and retry.
        pricing: Per-model price table used for ``estimated_cost_usd``.
        ledger: Running token/cost totals across all calls.
    """

    def __init__(
        self,
        backends: Mapping[str, LLMBackend] | None = None,
        *,
        settings: CroflowSettings | None = None,
        pricing: PricingTable | None = None,
        ledger: UsageLedger | None = None,
        backend_factories: Mapping[str, BackendFactory] | None = None,
    ) -> None:
        self.settings = settings or CroflowSettings()
        self.pricing = pricing or DEFAULT_PRICING
        self.ledger = ledger or UsageLedger()
        self._backends: dict[str, LLMBackend] = {
            _provider_name(name): backend for name, backend in (backends or {}).items()
        }
        self._factories: dict[str, BackendFactory] = dict(
            DEFAULT_BACKEND_FACTORIES if backend_factories is None else backend_factories
        )

    # ------------------------------------------------------------------ #
    # Backends
    # ------------------------------------------------------------------ #

    def register_backend(self, provider: Provider | str, backend: LLMBackend) -> None:
        name = _provider_name(provider)
        self._backends[name] = backend
        logger.debug("llm.backend_registered", provider=name)

    def providers(self) -> list[str]:
        """Providers that are registered or can be built on demand."""
        return sorted(set(self._backends) | set(self._factories))

    def _resolve_backend(self, provider: str) -> LLMBackend:
        backend = self._backends.get(provider)
        if backend is not None:
            return backend
        factory = self._factories.get(provider)
        if factory is None:
            raise LLMConfigurationError(f"Unsupported provider: {provider}")
        backend = factory(self.settings)
        self._backends[provider] = backend
        return backend

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute(self, request: LLMRequest) -> LLMResponse:
        """Run ``request`` against its provider. Never raises."""
        timer = TimingResult(step="llm")
        provider = _provider_name(request.provider)
        model = request.model or "unknown"

        try:
            backend = self._resolve_backend(provider)
            model = request.model or backend.default_model
            completion = await backend.complete(request, model)
        except Exception as exc:
            timer.stop()
            message = str(exc) or type(exc).__name__
            logger.error(
                "llm.request_failed",
                provider=provider,
                model=model,
                error=message,
                error_type=type(exc).__name__,
                duration_ms=round(timer.duration_ms, 2),
            )
            return LLMResponse(
                success=False,
                error=message,
                metadata=LLMResponseMetadata(
                    provider=provider,
                    model=model,
                    processing_time_ms=timer.duration_ms,
                ),
            )

        parsed = parse_json_response(completion.text)
        cost = self.pricing.estimate_cost(completion.model, completion.usage)
        self.ledger.record(completion.model, completion.usage, cost, label=provider)
        timer.stop()

        if parsed.malformed:
            logger.warning(
                "llm.response_malformed",
                provider=provider,
                model=completion.model,
                length=len(completion.text),
            )
        logger.info(
            "llm.request_completed",
            provider=provider,
            model=completion.model,
            tokens=completion.usage.total_tokens,
            cost_usd=cost,
            parse=parsed.strategy,
            duration_ms=round(timer.duration_ms, 2),
        )
        return LLMResponse(
            success=True,
            data=parsed.data,
            raw_text=completion.text,
            metadata=LLMResponseMetadata(
                provider=provider,
                model=completion.model,
                tokens_used=completion.usage,
                estimated_cost_usd=cost,
                processing_time_ms=timer.duration_ms,
            ),
        )

    async def execute_with_retry(
        self,
        request: LLMRequest,
        strategy: RetryStrategy | None = None,
        *,
        sleep: Callable[[float], Any] | None = None,
    ) -> LLMResponse:
        """``execute`` with exponential backoff on failed responses.

        Failures whose message contains a non-retryable marker
        (``"Invalid"``, ``"Unauthorized"`` by default) are returned at once.
        """
        strategy = strategy or ExponentialBackoff.from_settings(self.settings)

        def _on_retry(attempt: int, error: BaseException, delay: float) -> None:
            logger.info(
                "llm.retry",
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(error),
            )

        ctx = RetryContext(strategy=strategy, on_retry=_on_retry)
        if sleep is not None:
            ctx.sleep = sleep

        async def _attempt() -> LLMResponse:
            response = await self.execute(request)
            if not response.success:
                raise _FailedResponse(response)
            return response

        try:
            return await ctx.run_async(_attempt)
        except _FailedResponse as failed:
            return failed.response


__all__ = ["DEFAULT_BACKEND_FACTORIES", "LLMExecutionService"]
