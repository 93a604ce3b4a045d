"""
PlanQA Pipeline

The orchestrator that runs a question through every guardrail stage.
"""

from planqa.pipeline.orchestrator import (
    DECLINED_MESSAGE,
    QueryPipeline,
    schema_mismatch_message,
    suggest_mode_for,
)

__all__ = ["DECLINED_MESSAGE", "QueryPipeline", "schema_mismatch_message", "suggest_mode_for"]
