"""Vendor SDK backends for the LLM execution service.

Each backend turns an ``LLMRequest`` into one SDK call and returns a
``Completion``. Payload shaping (multi-part vision content, JSON mode,
model quirks) lives here and nowhere else.

Example::

    backend = OpenAIBackend(api_key="sk-...")
    completion = await backend.complete(LLMRequest(prompt="..."), "gpt-5-mini")
"""

from __future__ import annotations

import re
from typing import Any

import anthropic
import openai

from croflow.core.errors import LLMConfigurationError, LLMProviderError
from croflow.core.logging import get_logger
from croflow.core.settings import CroflowSettings
from croflow.llm.protocol import Completion, LLMRequest, TokenUsage

logger = get_logger(__name__)

_DATA_URL = re.compile(r"^data:(image/[a-z]+);base64,(.+)$", re.DOTALL)


def _secret(value: Any) -> str | None:
    if value is None:
        return None
    return value.get_secret_value() if hasattr(value, "get_secret_value") else str(value)


# =============================================================================
# OPENAI
# =============================================================================


class OpenAIBackend:
    """Chat-completions backend (provider ``"gpt"``).

    ``gpt-5-mini`` models only accept the default temperature and do not
    reliably honour ``response_format``; both are omitted for them.
    """

    name = "gpt"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        client: Any | None = None,
        settings: CroflowSettings | None = None,
    ):
        self.settings = settings or CroflowSettings()
        self.default_model = self.settings.openai_model
        if client is None:
            key = api_key or _secret(self.settings.openai_api_key)
            if not key:
                raise LLMConfigurationError(
                    "OpenAI API key is not configured (CROFLOW_OPENAI_API_KEY)"
                )
            client = openai.AsyncOpenAI(api_key=key)
        self.client = client

    def build_payload(self, request: LLMRequest, model: str) -> dict[str, Any]:
        """Keyword arguments for ``client.chat.completions.create``."""
        user_content: str | list[dict[str, Any]]
        if request.has_images:
            user_content = [{"type": "text", "text": request.prompt}]
            user_content.extend(
                {"type": "image_url", "image_url": {"url": url}} for url in request.images
            )
        else:
            user_content = request.prompt

        default_max = (
            self.settings.llm_max_tokens_with_images
            if request.has_images
            else self.settings.llm_max_tokens
        )
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {
                    "role": "system",
                    "content": request.system_prompt or self.settings.llm_system_prompt,
                },
                {"role": "user", "content": user_content},
            ],
            "max_completion_tokens": request.max_tokens or default_max,
        }

        is_mini = "gpt-5-mini" in model
        if request.json_mode and not request.has_images and not is_mini:
            payload["response_format"] = {"type": "json_object"}
        if not is_mini:
            payload["temperature"] = (
                request.temperature
                if request.temperature is not None
                else self.settings.llm_temperature
            )
        return payload

    async def complete(self, request: LLMRequest, model: str) -> Completion:
        payload = self.build_payload(request, model)
        logger.debug(
            "llm.openai_request",
            model=model,
            images=len(request.images),
            response_format="response_format" in payload,
            temperature=payload.get("temperature"),
        )
        response = await self.client.chat.completions.create(**payload)

        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice is not None else None
        if not text:
            raise LLMProviderError("Empty response from GPT", provider=self.name, model=model)

        usage = response.usage
        return Completion(
            text=text,
            model=getattr(response, "model", None) or model,
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            finish_reason=getattr(choice, "finish_reason", None),
        )


# =============================================================================
# ANTHROPIC
# =============================================================================


class AnthropicBackend:
    """Messages API backend (provider ``"claude"``).

    Base64 data URLs become image blocks; plain URLs are passed as a text
    placeholder since the request carries no fetched bytes.
    """

    name = "claude"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        client: Any | None = None,
        settings: CroflowSettings | None = None,
    ):
        self.settings = settings or CroflowSettings()
        self.default_model = self.settings.anthropic_model
        if client is None:
            key = api_key or _secret(self.settings.anthropic_api_key)
            if not key:
                raise LLMConfigurationError(
                    "Anthropic API key is not configured (CROFLOW_ANTHROPIC_API_KEY)"
                )
            client = anthropic.AsyncAnthropic(api_key=key)
        self.client = client

    @staticmethod
    def image_block(url: str) -> dict[str, Any]:
        match = _DATA_URL.match(url)
        if match:
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": match.group(1),
                    "data": match.group(2),
                },
            }
        return {"type": "text", "text": f"[Screenshot URL: {url}]"}

    def build_payload(self, request: LLMRequest, model: str) -> dict[str, Any]:
        """Keyword arguments for ``client.messages.create``."""
        content: str | list[dict[str, Any]]
        if request.has_images:
            content = [self.image_block(url) for url in request.images]
            content.append({"type": "text", "text": request.prompt})
        else:
            content = request.prompt

        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or self.settings.llm_max_tokens,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self.settings.llm_temperature
            ),
            "messages": [{"role": "user", "content": content}],
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        return payload

    async def complete(self, request: LLMRequest, model: str) -> Completion:
        payload = self.build_payload(request, model)
        logger.debug("llm.anthropic_request", model=model, images=len(request.images))
        response = await self.client.messages.create(**payload)

        text = "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        if not text:
            raise LLMProviderError(
                "Unexpected response type from Claude", provider=self.name, model=model
            )

        usage = response.usage
        return Completion(
            text=text,
            model=getattr(response, "model", None) or model,
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            finish_reason=getattr(response, "stop_reason", None),
        )


__all__ = ["AnthropicBackend", "OpenAIBackend"]
