"""Unit tests for service construction."""

import logging
from unittest.mock import AsyncMock

import pytest

from planqa.config import get_settings
from planqa.connectors import MSSQLConnector
from planqa.connectors.base import ConnectionError as ConnectorConnectionError
from planqa.initialization import build_app_state, connect_database, log_self_check
from planqa.llm import SQLGenerator
from planqa.models.validation import SelfCheckCase, SelfCheckReport
from planqa.pipeline import QueryPipeline


class TestBuildAppState:
    def test_without_llm_or_database(self):
        state = build_app_state(get_settings())

        assert len(state["catalog"]) > 0
        assert state["quick_questions"]
        assert state["generator"] is None
        assert state["connector"] is None
        assert state["pipeline"] is None

    def test_full_configuration_builds_pipeline(self, monkeypatch, mock_openai_api_key):
        monkeypatch.setenv("SQL_SERVER", "sql.example.com")
        monkeypatch.setenv("SQL_DATABASE", "planning")

        state = build_app_state(get_settings())

        assert isinstance(state["generator"], SQLGenerator)
        assert isinstance(state["connector"], MSSQLConnector)
        assert isinstance(state["pipeline"], QueryPipeline)


class TestConnectDatabase:
    @pytest.mark.asyncio
    async def test_no_connector(self):
        assert await connect_database({"connector": None}) is False

    @pytest.mark.asyncio
    async def test_connection_failure_is_not_fatal(self):
        connector = AsyncMock()
        connector.connect = AsyncMock(side_effect=ConnectorConnectionError("unreachable"))

        assert await connect_database({"connector": connector}) is False

    @pytest.mark.asyncio
    async def test_connects(self):
        connector = AsyncMock()
        assert await connect_database({"connector": connector}) is True
        connector.connect.assert_awaited_once()


def test_log_self_check_reports_failures(caplog):
    report = SelfCheckReport(
        passed=False,
        results=[SelfCheckCase(name="JOIN rejected", passed=False, expected="rejected", actual="accepted")],
    )
    with caplog.at_level(logging.INFO, logger="planqa.initialization"):
        log_self_check(report)

    assert "FAIL: JOIN rejected" in caplog.text
    assert "Validator self-check failed" in caplog.text
