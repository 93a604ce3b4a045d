"""
OpenAI LLM Provider

Chat-completions provider used for SQL generation and follow-up suggestions.
"""

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from planqa.config import LLMSettings
from planqa.llm.base import BaseLLMProvider
from planqa.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)

KNOWN_FINISH_REASONS = frozenset({"stop", "length", "content_filter"})


class OpenAIProvider(BaseLLMProvider):
    """OpenAI provider over the official async SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 500,
        timeout: int = 30,
        base_url: str | None = None,
    ):
        super().__init__("openai", temperature=temperature, max_tokens=max_tokens, timeout=timeout)
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=float(timeout))
        logger.info(f"SQL generation will use {model}", extra={"model": model, "base_url": base_url})

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "OpenAIProvider":
        if not settings.openai_api_key:
            raise ValueError("LLM_OPENAI_API_KEY must be set for SQL generation")
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            base_url=settings.openai_base_url,
        )

    def _payload(self, request: LLMRequest) -> dict[str, Any]:
        payload: dict[str, Any] = dict(request.metadata)
        payload.update(
            model=request.model or self.model,
            messages=[message.model_dump(include={"role", "content"}) for message in request.messages],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        return payload

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Run one chat completion.

        Raises:
            openai.APITimeoutError: When the call exceeds ``timeout``
            openai.APIError: Any other SDK failure
        """
        payload = self._payload(self._apply_defaults(request))
        try:
            completion = await self.client.chat.completions.create(**payload)
        except openai.APITimeoutError:
            logger.error(f"Completion timed out after {self.timeout}s", extra={"model": payload["model"]})
            raise
        except openai.APIError as e:
            logger.error(f"Completion request rejected: {e}", extra={"model": payload["model"]})
            raise

        response = self._to_response(completion)
        self._log_response(response)
        return response

    def _to_response(self, completion: Any) -> LLMResponse:
        choice = completion.choices[0]
        usage = completion.usage
        return LLMResponse(
            content=choice.message.content or "",
            model=completion.model,
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
            finish_reason=self._map_finish_reason(choice.finish_reason),
            provider=self.provider_name,
        )

    @staticmethod
    def _map_finish_reason(reason: str | None) -> str:
        return reason if reason in KNOWN_FINISH_REASONS else "stop"
