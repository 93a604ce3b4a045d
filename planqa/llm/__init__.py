"""
LLM Layer

Provider abstraction plus the SQL generator built on top of it.
"""

from planqa.llm.base import BaseLLMProvider
from planqa.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from planqa.llm.openai import OpenAIProvider
from planqa.llm.sql_generator import SQLGenerator, parse_suggestions, strip_code_fences

__all__ = [
    "BaseLLMProvider",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "OpenAIProvider",
    "SQLGenerator",
    "parse_suggestions",
    "strip_code_fences",
]
