"""
SQL Generator

Turns a natural-language question plus a formatted schema block into raw
SQL text via an LLM provider. The output carries no correctness guarantee;
every statement still goes through the guardrail validators.
"""

import json
import logging
import re
from typing import Any

from planqa.config import GuardrailSettings
from planqa.llm.base import BaseLLMProvider
from planqa.models.errors import GenerationFailure
from planqa.prompts import PromptLoader

logger = logging.getLogger(__name__)

SQL_PROMPT = "sql_generator.md"
SUGGESTIONS_PROMPT = "suggestions.md"
MAX_SUGGESTIONS = 3

_FENCE_OPEN = re.compile(r"```[a-zA-Z]*\n?")
_FENCE_CLOSE = re.compile(r"```\n?")


def strip_code_fences(content: str) -> str:
    """Remove markdown code fences while keeping every statement inside them."""
    text = _FENCE_OPEN.sub("", content.strip())
    return _FENCE_CLOSE.sub("", text).strip()


def parse_suggestions(content: str) -> list[str]:
    """Parse a JSON array of suggestion strings; anything else yields []."""
    payload = json.loads(strip_code_fences(content) or "[]")
    if not isinstance(payload, list):
        return []
    return [str(item).strip() for item in payload if str(item).strip()][:MAX_SUGGESTIONS]


class SQLGenerator:
    """Prompt assembly and provider calls for SQL generation and follow-ups."""

    def __init__(
        self,
        provider: BaseLLMProvider,
        prompts: PromptLoader | None = None,
        guardrails: GuardrailSettings | None = None,
    ):
        self.provider = provider
        self.prompts = prompts or PromptLoader()
        self.guardrails = guardrails or GuardrailSettings()

    def build_system_prompt(
        self,
        schema_context: str,
        mode: str,
        allowed_tables: list[str],
        guidance: str | None = None,
        business_context: str = "",
        context_hints: list[str] | None = None,
    ) -> str:
        return self.prompts.render(
            SQL_PROMPT,
            schema=schema_context,
            mode_name=mode,
            allowed_tables=allowed_tables,
            guidance=guidance or "",
            business_context=business_context,
            context_hints=context_hints or [],
            max_rows=self.guardrails.max_rows,
            allowed_schema=self.guardrails.allowed_schema,
            table_prefix=self.guardrails.table_prefix,
        )

    async def generate_sql(
        self,
        question: str,
        schema_context: str,
        mode: str,
        allowed_tables: list[str],
        guidance: str | None = None,
        business_context: str = "",
        context_hints: list[str] | None = None,
    ) -> str:
        """
        Generate SQL for a question.

        Raises:
            GenerationFailure: The provider failed or returned no SQL
        """
        system_prompt = self.build_system_prompt(
            schema_context,
            mode,
            allowed_tables,
            guidance=guidance,
            business_context=business_context,
            context_hints=context_hints,
        )
        try:
            response = await self.provider.complete(system_prompt, question)
        except Exception as e:
            logger.error(
                f"SQL generation failed: {e}",
                extra={"stage": "generation", "mode": mode},
            )
            raise GenerationFailure(f"Failed to generate SQL: {e}") from e

        sql = strip_code_fences(response.content)
        if not sql:
            raise GenerationFailure(
                "The model returned an empty response",
                context={"finish_reason": response.finish_reason},
            )
        logger.debug(
            "Generated SQL",
            extra={"stage": "generation", "total_tokens": response.usage.total_tokens},
        )
        return sql

    async def suggest_followups(self, question: str) -> list[str]:
        """Up to three related questions; failures are logged and yield []."""
        metadata: dict[str, Any] = self.prompts.get_metadata(SUGGESTIONS_PROMPT)
        try:
            response = await self.provider.complete(
                self.prompts.load(SUGGESTIONS_PROMPT),
                question,
                temperature=metadata.get("temperature", 0.7),
                max_tokens=metadata.get("max_tokens", 200),
            )
            return parse_suggestions(response.content)
        except Exception as e:
            logger.warning(f"Suggestion generation failed: {e}", extra={"stage": "suggestions"})
            return []
