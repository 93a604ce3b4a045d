"""
Base LLM Provider

The generation collaborator is opaque text in, text out: one system prompt
plus the user's question. Providers implement ``generate``; callers use
``complete`` for the single-turn exchange.
"""

import logging
from abc import ABC, abstractmethod

from planqa.llm.models import LLMMessage, LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """
    Single-turn chat-completion provider.

    Attributes:
        provider_name: Short provider id used in logs
        temperature: Sampling temperature when a request does not set one
        max_tokens: Completion budget when a request does not set one
        timeout: Per-call timeout in seconds
    """

    def __init__(self, provider_name: str, temperature: float = 0.3, max_tokens: int = 500, timeout: int = 30):
        self.provider_name = provider_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        logger.info(
            f"{provider_name} provider ready (temperature={temperature}, max_tokens={max_tokens})",
            extra={"provider": provider_name, "timeout": timeout},
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send ``request`` and return the first choice. Provider errors propagate."""

    async def complete(
        self,
        system_prompt: str,
        question: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Ask ``question`` under ``system_prompt``; unset limits use the provider defaults."""
        request = LLMRequest(
            messages=[
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=question),
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return await self.generate(request)

    def _apply_defaults(self, request: LLMRequest) -> LLMRequest:
        missing = {
            name: default
            for name, default in (("temperature", self.temperature), ("max_tokens", self.max_tokens))
            if getattr(request, name) is None
        }
        return request.model_copy(update=missing) if missing else request

    def _log_response(self, response: LLMResponse) -> None:
        logger.debug(
            f"{self.provider_name} completion: {response.usage.total_tokens} tokens, "
            f"finish_reason={response.finish_reason}",
            extra={"provider": self.provider_name, "model": response.model},
        )
