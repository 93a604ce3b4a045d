"""
Application Configuration

Every knob comes from the environment (or .env).
Each concern gets its own settings class with an env prefix; the
top-level Settings nests them and is cached by get_settings().

Usage:
    from planqa.config import get_settings

    settings = get_settings()
    print(settings.guardrails.max_rows)
    print(settings.database.sqlalchemy_url())
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def resolve_project_path(path: Path) -> Path:
    """Resolve relative data/config paths against the project root."""
    return path if path.is_absolute() else PROJECT_ROOT / path


class LLMSettings(BaseSettings):
    """SQL generation model configuration."""

    openai_api_key: str | None = Field(
        None,
        description="Key for the SQL generation model",
        min_length=20,
    )
    openai_base_url: str | None = Field(
        None,
        description="Optional OpenAI-compatible base URL",
    )
    openai_model: str = Field(default="gpt-4o-mini", description="Model used for SQL generation")
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Temperature for SQL generation",
    )
    max_tokens: int = Field(
        default=500,
        gt=0,
        le=16000,
        description="Maximum tokens per SQL generation response",
    )
    suggestions_enabled: bool = Field(
        default=True,
        description="Generate follow-up question suggestions after a successful query",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Seconds before a generation call is abandoned",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        if v and not v.startswith("sk-"):
            raise ValueError("LLM_OPENAI_API_KEY must start with 'sk-'")
        return v


class DatabaseSettings(BaseSettings):
    """Analytical SQL Server connection configuration."""

    url: str | None = Field(
        None,
        description="Full SQLAlchemy URL (overrides server/database/user/password)",
    )
    server: str | None = Field(None, description="SQL Server host name")
    database: str | None = Field(None, description="Database name")
    user: str | None = Field(None, description="Database user")
    password: str | None = Field(None, description="Database password")
    driver: str = Field(
        default="ODBC Driver 18 for SQL Server",
        description="ODBC driver name used by the mssql+pyodbc dialect",
    )
    encrypt: bool = Field(default=True, description="Request an encrypted connection")
    query_timeout: int = Field(
        default=30,
        gt=0,
        le=600,
        description="Fixed per-query timeout in seconds (single attempt, no retry)",
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=20,
        description="Connection pool size",
    )

    model_config = SettingsConfigDict(
        env_prefix="SQL_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", "server", mode="before")
    @classmethod
    def normalize_empty(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Only SQL Server dialects are supported."""
        if v is None:
            return v
        scheme = v.split("://", 1)[0].split("+")[0].lower()
        if scheme != "mssql":
            raise ValueError("SQL_URL must use the mssql scheme.")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.url or (self.server and self.database))

    def sqlalchemy_url(self) -> str | None:
        """Build the SQLAlchemy URL for the configured server."""
        if self.url:
            return self.url
        if not self.is_configured:
            return None
        credentials = ""
        if self.user:
            credentials = quote_plus(self.user)
            if self.password:
                credentials += f":{quote_plus(self.password)}"
            credentials += "@"
        encrypt = "yes" if self.encrypt else "no"
        return (
            f"mssql+pyodbc://{credentials}{self.server}/{self.database}"
            f"?driver={quote_plus(self.driver)}&Encrypt={encrypt}"
        )


class GuardrailSettings(BaseSettings):
    """Limits enforced by the SQL guardrail pipeline."""

    max_rows: int = Field(
        default=100,
        gt=0,
        le=10000,
        description="Row cap injected into, or clamped on, every main SELECT",
    )
    allowed_schema: str = Field(
        default="publish",
        description="Only tables in this schema may be queried",
    )
    table_prefix: str = Field(
        default="DASHt_",
        description="Curated table naming prefix",
    )
    schema_cache_ttl_seconds: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="TTL for cached prompt schema text (0 = no expiry)",
    )
    self_check_on_startup: bool = Field(
        default=True,
        description="Run the shape validator self-check at startup (non-production only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="GUARDRAIL_",
        env_file=".env",
        extra="ignore",
    )


class DataSettings(BaseSettings):
    """Locations of static configuration and JSON stores."""

    schema_snapshot_path: Path = Field(
        default=Path("config/schema_snapshot.json"),
        description="Pre-computed table to column snapshot",
    )
    analytics_reference_path: Path = Field(
        default=Path("config/analytics_reference.yaml"),
        description="Classifier matrix, override rules, terms and budgets",
    )
    semantic_catalog_path: Path = Field(
        default=Path("config/semantic_catalog.yaml"),
        description="Modes and their allowed tables",
    )
    quick_questions_path: Path = Field(
        default=Path("config/quick_questions.yaml"),
        description="Canned questions shown per mode",
    )
    permissions_path: Path = Field(
        default=Path("data/user-permissions.json"),
        description="Per-user permission records",
    )
    query_log_path: Path = Field(
        default=Path("data/query-logs.json"),
        description="Persisted query log",
    )
    popular_queries_path: Path = Field(
        default=Path("data/popular-queries.json"),
        description="Popular question counters",
    )
    feedback_path: Path = Field(
        default=Path("data/feedback.json"),
        description="Answer feedback entries",
    )
    log_sql_text: bool | None = Field(
        default=None,
        description="Store generated SQL text in the query log (default: on outside production)",
    )
    max_log_entries: int = Field(
        default=500,
        gt=0,
        le=100000,
        description="Maximum query log entries kept",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATA_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator(
        "schema_snapshot_path",
        "analytics_reference_path",
        "semantic_catalog_path",
        "quick_questions_path",
        "permissions_path",
        "query_log_path",
        "popular_queries_path",
        "feedback_path",
    )
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        return resolve_project_path(v)


class LoggingSettings(BaseSettings):
    """Root logger setup shared by the API, the CLI and the scripts."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="logging.Formatter format string",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="asctime format",
    )
    file: Path | None = Field(
        default=None,
        description="Also write logs to this file when set",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,
        )


class Settings(BaseSettings):
    """
    Top-level PlanQA settings.

    Environment Variables:
        ENVIRONMENT: development, staging or production
        APP_NAME: Application name for logging
        API_HOST / API_PORT: API server bind address
        DIAGNOSTICS_TOKEN: Token required for /api/db/diagnostics in production
        LLM_*: SQL generation model (see LLMSettings)
        SQL_*: Analytical database (see DatabaseSettings)
        GUARDRAIL_*: Guardrail limits (see GuardrailSettings)
        DATA_*: Config and store locations (see DataSettings)
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.guardrails.max_rows
        100
        >>> settings.is_production
        False
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Production tightens admin, diagnostics and SQL logging",
    )
    app_name: str = Field(
        default="PlanQA",
        description="Name used in startup logs",
    )
    debug: bool = Field(
        default=False,
        description="Verbose error payloads",
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="Bind address for planqa serve",
    )
    api_port: int = Field(
        default=8000,
        gt=0,
        le=65535,
        description="Port for planqa serve",
    )
    diagnostics_token: str | None = Field(
        default=None,
        description="Token guarding database diagnostics in production",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)
    data: DataSettings = Field(default_factory=DataSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def log_sql_text(self) -> bool:
        """Whether generated SQL text is written to the query log."""
        if self.data.log_sql_text is None:
            return not self.is_production
        return self.data.log_sql_text

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        logging.getLogger(__name__).info(
            f"{self.app_name} configured for {self.environment}",
            extra={
                "environment": self.environment,
                "debug": self.debug,
                "llm_model": self.llm.openai_model,
                "database_configured": self.database.is_configured,
                "max_rows": self.guardrails.max_rows,
            },
        )


_DOTENV_PATH = PROJECT_ROOT / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("PLANQA_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """Drop the cached settings so the next get_settings() rereads the environment."""
    get_settings.cache_clear()
