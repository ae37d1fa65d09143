"""croflow LLM: provider-agnostic language-model execution.

Defines the request/response types, the ``LLMBackend`` protocol with
OpenAI, Anthropic and mock backends, tolerant JSON parsing, pricing and
the ``LLMExecutionService`` that ties them together.

Tags:
    croflow, llm, provider-protocol, pricing, mock

Doc-Types:
    api-reference
"""

from croflow.llm.backends import AnthropicBackend, OpenAIBackend
from croflow.llm.mock import MockLLMBackend
from croflow.llm.parsing import ParsedResponse, malformed_response_stub, parse_json_response
from croflow.llm.pricing import DEFAULT_PRICING, ModelPricing, PricingTable, UsageLedger, estimate_cost
from croflow.llm.prompt import PromptBuilder, estimate_tokens, truncate_to_tokens
from croflow.llm.protocol import (
    Completion,
    LLMBackend,
    LLMRequest,
    LLMResponse,
    LLMResponseMetadata,
    Provider,
    TokenUsage,
)
from croflow.llm.service import LLMExecutionService

__all__ = [
    # Protocol
    "Completion",
    "LLMBackend",
    "LLMRequest",
    "LLMResponse",
    "LLMResponseMetadata",
    "Provider",
    "TokenUsage",
    # Backends
    "AnthropicBackend",
    "OpenAIBackend",
    "MockLLMBackend",
    # Service
    "LLMExecutionService",
    # Parsing
    "ParsedResponse",
    "malformed_response_stub",
    "parse_json_response",
    # Pricing
    "DEFAULT_PRICING",
    "ModelPricing",
    "PricingTable",
    "UsageLedger",
    "estimate_cost",
    # Prompt
    "PromptBuilder",
    "estimate_tokens",
    "truncate_to_tokens",
]
