"""Tests for the Log Analytics query shapes and connector."""

import asyncio
from datetime import datetime, timedelta, timezone

from appservice_logs.connectors.guardrails import GuardrailEnforcer
from appservice_logs.connectors.log_analytics import (
    LogAnalyticsConnector,
    app_logs_query,
    correlation_query,
    error_summary_query,
    first_requests_query,
    http_errors_query,
    http_logs_query,
    kql_string,
    slow_requests_query,
)
from appservice_logs.models import TimeWindow
from tests.fakes import FakeLogsClient


WINDOW = TimeWindow.around(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc), timedelta(minutes=5))


class TestQueryShapes:
    """Tests for the prebuilt KQL builders."""

    def test_kql_string_escapes_quotes(self):
        assert kql_string('say "hi"') == '"say \\"hi\\""'
        assert kql_string("a\\b") == '"a\\\\b"'

    def test_http_errors(self):
        query = http_errors_query(30)
        assert "ago(30m)" in query
        assert "ScStatus >= 500" in query
        assert "by ScStatus, CsUriStem" in query
        assert "order by Count desc" in query

    def test_slow_requests(self):
        query = slow_requests_query(60, 2500)
        assert "TimeTaken >= 2500" in query
        assert "order by TimeTaken desc" in query

    def test_app_logs_filter_is_escaped(self):
        query = app_logs_query(60, 'bad "value"')
        assert 'ResultDescription contains "bad \\"value\\""' in query

    def test_app_logs_without_filter(self):
        assert "contains" not in app_logs_query(60)

    def test_error_summary(self):
        query = error_summary_query(1440)
        assert "ScStatus >= 400" in query
        for column in ("TotalCount", "AvgDuration", "MaxDuration", "FirstSeen", "LastSeen"):
            assert column in query

    def test_http_logs_filters(self):
        query = http_logs_query(60, status_code=502, path="/api", min_duration_ms=100)
        assert "ScStatus == 502" in query
        assert 'CsUriStem contains "/api"' in query
        assert "TimeTaken >= 100" in query

    def test_correlation_query_window(self):
        query = correlation_query(WINDOW)
        assert query.startswith("union AppServiceHTTPLogs, AppServiceConsoleLogs, AppServicePlatformLogs")
        assert "datetime('2024-01-15T10:25:00Z') .. datetime('2024-01-15T10:35:00Z')" in query
        assert "Type=$table" in query
        assert "order by TimeGenerated asc" in query

    def test_first_requests_capped(self):
        assert first_requests_query(WINDOW, 20).endswith("| take 20")


class TestLogAnalyticsConnector:
    """Tests that connector methods go through the guardrails."""

    def _connector(self):
        client = FakeLogsClient()
        return LogAnalyticsConnector(GuardrailEnforcer(client)), client

    def test_query_applies_limit(self):
        connector, client = self._connector()
        asyncio.run(connector.query("ws", "AppServiceHTTPLogs", 60))
        assert client.calls[0]["query"] == "AppServiceHTTPLogs\n| limit 500"

    def test_http_errors_uses_minutes(self):
        connector, client = self._connector()
        asyncio.run(connector.query_http_errors("ws", 15))
        start, end = client.calls[0]["timespan"]
        assert end - start == timedelta(minutes=15)

    def test_container_restarts_hours_to_minutes(self):
        connector, client = self._connector()
        asyncio.run(connector.query_container_restarts("ws", 24))
        start, end = client.calls[0]["timespan"]
        assert end - start == timedelta(hours=24)

    def test_long_range_rejected(self):
        connector, client = self._connector()
        result = asyncio.run(connector.get_error_summary("ws", 8 * 24 * 60))
        assert result.success is False
        assert client.calls == []

    def test_query_window(self):
        connector, client = self._connector()
        asyncio.run(connector.query_window("ws", correlation_query(WINDOW), WINDOW))
        assert client.calls[0]["timespan"] == (WINDOW.start, WINDOW.end)

    def test_app_logs_passes_filter(self):
        connector, client = self._connector()
        asyncio.run(connector.query_app_logs("ws", 30, filter="Traceback"))
        assert 'contains "Traceback"' in client.calls[0]["query"]

    def test_http_logs_status_filter(self):
        connector, client = self._connector()
        asyncio.run(connector.query_http_logs("ws", 60, status_code=503))
        assert "ScStatus == 503" in client.calls[0]["query"]

    def test_recent_deployments_hours_to_minutes(self):
        connector, client = self._connector()
        asyncio.run(connector.query_recent_deployments("ws", 2))
        start, end = client.calls[0]["timespan"]
        assert end - start == timedelta(hours=2)
        assert client.calls[0]["query"].startswith("AppServicePlatformLogs")
