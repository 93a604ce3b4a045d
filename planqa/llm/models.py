"""
LLM Request and Response Models

What crosses the boundary to the generation collaborator. Limits left as
``None`` on a request are filled from the provider's configured defaults.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

FinishReason = Literal["stop", "length", "content_filter", "error"]


class LLMMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(..., min_length=1)


class LLMRequest(BaseModel):
    """One chat-completion call: prompt messages plus optional per-call limits."""

    messages: list[LLMMessage] = Field(..., min_length=1)
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)
    model: str | None = Field(None, description="Overrides the provider's configured model")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra keyword arguments passed straight to the SDK call",
    )


class LLMUsage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)


class LLMResponse(BaseModel):
    """Raw completion text; SQL extraction happens in the generator."""

    content: str
    model: str
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: FinishReason = "stop"
    provider: str
