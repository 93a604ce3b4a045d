"""
Classification Models

Static classifier configuration (matrix, overrides, glossary, budgets),
the semantic catalog of modes, and the classifier's result type.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Confidence = Literal["high", "medium", "low", "none"]


class MatrixEntry(BaseModel):
    """Keyword-to-table mapping rule."""

    keywords: list[str] = Field(..., min_length=1, description="Keyword phrases")
    tier1_tables: list[str] = Field(..., description="Curated, preferred tables")
    tier2_tables: list[str] = Field(default_factory=list, description="Fallback/source tables")
    override: bool = Field(default=False, description="Entry represents a hard routing rule")
    context_hint: str | None = Field(None, description="Extra guidance added to the prompt")

    model_config = ConfigDict(frozen=True)


class OverrideRule(BaseModel):
    """Trigger phrases that force tables into the selection."""

    triggers: list[str] = Field(..., min_length=1)
    required_tables: list[str] = Field(..., min_length=1)
    description: str = ""

    model_config = ConfigDict(frozen=True)


class BusinessTerm(BaseModel):
    """Glossary entry used as advisory prompt context."""

    name: str
    description: str
    computation: str = ""

    model_config = ConfigDict(frozen=True)


class PromptTrimming(BaseModel):
    """Budgets for table selection and per-table column slimming."""

    max_table_count: int = Field(default=4, gt=0)
    default_table_count: int = Field(default=2, gt=0)
    max_columns_per_table: int = Field(default=40, gt=0)
    min_columns_per_table: int = Field(default=10, ge=0)
    always_include_columns: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ConfidenceThresholds(BaseModel):
    """Hand-tuned scoring thresholds; kept as configuration."""

    high_score: int = Field(default=3, ge=1)
    high_keyword_count: int = Field(default=2, ge=1)
    medium_score: int = Field(default=1, ge=1)
    medium_keyword_count: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True)


class AnalyticsReference(BaseModel):
    """Everything the classifier and column slimming read from configuration."""

    matrix: list[MatrixEntry] = Field(default_factory=list)
    override_rules: list[OverrideRule] = Field(default_factory=list)
    terms: list[BusinessTerm] = Field(default_factory=list)
    table_keywords: dict[str, list[str]] = Field(default_factory=dict)
    prompt_trimming: PromptTrimming = Field(default_factory=PromptTrimming)
    confidence: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    default_tables: list[str] = Field(
        default_factory=lambda: ["publish.DASHt_Planning", "publish.DASHt_Resources"],
        description="Safe fallback selection when nothing matches",
    )

    model_config = ConfigDict(frozen=True)


class ModeConfig(BaseModel):
    """A named subject area with its allowed tables."""

    id: str
    name: str
    description: str = ""
    tables: list[str] = Field(default_factory=list)
    guidance: str = Field(default="", description="Mode-specific prompt guidance")

    model_config = ConfigDict(frozen=True)


class SchemaRequirement(BaseModel):
    """Columns a quick question needs from one table."""

    table: str
    columns: list[str] = Field(default_factory=list)


class QuickQuestion(BaseModel):
    """Canned question offered in the UI for one mode."""

    id: str
    text: str
    icon: str = "help-circle"
    mode: str
    required_schema: list[SchemaRequirement] = Field(default_factory=list)


class SemanticCatalog(BaseModel):
    """Modes loaded from the semantic catalog file."""

    modes: list[ModeConfig] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def get_mode(self, mode_id: str) -> ModeConfig | None:
        for mode in self.modes:
            if mode.id == mode_id:
                return mode
        return None


class MatrixMatch(BaseModel):
    """One matrix entry that matched a question."""

    keywords: list[str]
    tier1_tables: list[str]
    tier2_tables: list[str] = Field(default_factory=list)
    score: int
    override: bool = False
    context_hint: str | None = None


class ClassificationResult(BaseModel):
    """Bounded table selection plus the classifier's confidence."""

    selected_tables: list[str] = Field(..., description="Deduplicated, ordered selection")
    matched_keywords: list[str] = Field(default_factory=list)
    matched_terms: list[str] = Field(default_factory=list)
    context_hints: list[str] = Field(default_factory=list)
    is_override: bool = False
    used_default_tables: bool = False
    confidence: Confidence = "none"
    matches: list[MatrixMatch] = Field(default_factory=list, description="Debug: scored matches")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "selected_tables": ["publish.DASHt_Planning"],
                "matched_keywords": ["on hold", "hold reason"],
                "matched_terms": [],
                "context_hints": ["JobOnHold values are 'OnHold' or 'Released'"],
                "is_override": False,
                "used_default_tables": False,
                "confidence": "high",
            }
        }
    )

    @property
    def declined(self) -> bool:
        return self.confidence == "none"
