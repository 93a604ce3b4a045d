"""
Schema Models

Immutable table and column metadata loaded from the schema snapshot.
"""

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SCHEMA = "publish"


def strip_identifier_quotes(part: str) -> str:
    """Remove [bracket], "double quote" or `backtick` delimiters from one name part."""
    part = part.strip()
    if len(part) >= 2 and (part[0], part[-1]) in {("[", "]"), ('"', '"'), ("`", "`")}:
        return part[1:-1]
    return part


def qualify_table_name(name: str, default_schema: str = DEFAULT_SCHEMA) -> str:
    """
    Normalize a table reference to ``schema.table`` without delimiters.

    ``[publish].[DASHt_Planning]``, ``publish.DASHt_Planning`` and
    ``DASHt_Planning`` all become ``publish.DASHt_Planning``.
    """
    parts = [strip_identifier_quotes(p) for p in name.split(".") if p.strip()]
    if not parts:
        return ""
    if len(parts) == 1:
        return f"{default_schema}.{parts[0]}"
    return f"{parts[-2]}.{parts[-1]}"


def table_short_name(name: str) -> str:
    """Return the unqualified table name."""
    return qualify_table_name(name).split(".", 1)[-1]


class ColumnMetadata(BaseModel):
    """One column of a curated table."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(default="unknown", description="SQL Server data type")
    nullable: bool = Field(default=True, description="Whether the column accepts NULL")

    model_config = ConfigDict(frozen=True)


class TableSchema(BaseModel):
    """Ordered column list for a fully-qualified table."""

    table_name: str = Field(..., description="Fully-qualified name, e.g. publish.DASHt_Planning")
    columns: tuple[ColumnMetadata, ...] = Field(default=(), description="Columns in ordinal order")

    model_config = ConfigDict(frozen=True)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def short_name(self) -> str:
        return table_short_name(self.table_name)

    def has_column(self, name: str) -> bool:
        """Case-insensitive column membership."""
        target = strip_identifier_quotes(name).lower()
        return any(column.name.lower() == target for column in self.columns)
