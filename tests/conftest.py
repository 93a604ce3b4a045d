"""
Shared fixtures: isolated settings, the shipped config data and small
hand-built table schemas.
"""

import logging

import pytest

from planqa.catalog import SchemaCatalog, load_analytics_reference, load_semantic_catalog
from planqa.config import PROJECT_ROOT
from planqa.models.schema import ColumnMetadata, TableSchema

CONFIG_DIR = PROJECT_ROOT / "config"

# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture everything down to DEBUG so tests can assert on log text."""
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Point every JSON store at a temp directory and clear the settings cache.

    Runs automatically so no test writes into the repository's data/ folder
    or reaches a real database or LLM.
    """
    from planqa.config import get_settings

    get_settings.cache_clear()
    for name in ("SQL_URL", "SQL_SERVER", "SQL_DATABASE", "LLM_OPENAI_API_KEY", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PLANQA_ENV_SOURCE", "environment")
    monkeypatch.setenv("DATA_PERMISSIONS_PATH", str(tmp_path / "user-permissions.json"))
    monkeypatch.setenv("DATA_QUERY_LOG_PATH", str(tmp_path / "query-logs.json"))
    monkeypatch.setenv("DATA_POPULAR_QUERIES_PATH", str(tmp_path / "popular-queries.json"))
    monkeypatch.setenv("DATA_FEEDBACK_PATH", str(tmp_path / "feedback.json"))
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def mock_openai_api_key(monkeypatch):
    """Provide a syntactically valid OpenAI key without calling the API."""
    test_key = "sk-test-key-1234567890-abcdefghijklmnop"  # 20+ chars
    monkeypatch.setenv("LLM_OPENAI_API_KEY", test_key)
    return test_key


# ============================================================================
# Common Test Data
# ============================================================================


@pytest.fixture(scope="session")
def analytics_reference():
    """Classifier configuration shipped in config/."""
    return load_analytics_reference(CONFIG_DIR / "analytics_reference.yaml")


@pytest.fixture(scope="session")
def semantic_catalog():
    """Modes shipped in config/."""
    return load_semantic_catalog(CONFIG_DIR / "semantic_catalog.yaml")


@pytest.fixture
def catalog(analytics_reference, semantic_catalog) -> SchemaCatalog:
    """Schema catalog over the shipped snapshot and configuration."""
    schema_catalog = SchemaCatalog(
        snapshot_path=CONFIG_DIR / "schema_snapshot.json",
        reference=analytics_reference,
        semantic_catalog=semantic_catalog,
    )
    schema_catalog.refresh()
    return schema_catalog


def make_table(name: str, *columns: str) -> TableSchema:
    """Build a TableSchema from bare column names."""
    return TableSchema(table_name=name, columns=tuple(ColumnMetadata(name=c) for c in columns))


@pytest.fixture
def table_factory():
    """Factory for in-memory table schemas."""
    return make_table


@pytest.fixture
def planning_table() -> TableSchema:
    return make_table(
        "publish.DASHt_Planning",
        "JobId",
        "JobName",
        "JobOnHold",
        "JobHoldReason",
        "JobNeedDateTime",
        "JobOverdueDays",
        "PlanningAreaName",
        "NewScenarioId",
        "PlantName",
        "BlockPlant",
    )


@pytest.fixture
def sample_query() -> str:
    """Sample user question for testing."""
    return "Show jobs on hold with hold reasons"
