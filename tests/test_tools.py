"""Tests for the tool surface."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from appservice_logs.config import Settings
from appservice_logs.connectors.guardrails import GuardrailEnforcer
from appservice_logs.connectors.log_analytics import LogAnalyticsConnector
from appservice_logs.context import ContextStore
from appservice_logs.errors import ArmError, ConfigurationError
from appservice_logs.models import AppInfo, Deployment, DiagnosticInfo, LogSource, LogsResult
from appservice_logs.server.sdk import allowed_tools, create_sdk_server
from appservice_logs.server.stdio import context_uri, create_server
from appservice_logs.server.tools import TOOL_NAMES, TOOLS, ToolExecutor, ToolStats
from tests.fakes import FakeLogsClient, success_response

ENV = {
    "AZURE_SUBSCRIPTION_ID": "sub-1",
    "AZURE_RESOURCE_GROUP": "rg-1",
    "AZURE_APP_NAME": "my-app",
}
WORKSPACE = "/subscriptions/sub-1/resourceGroups/rg/providers/Microsoft.OperationalInsights/workspaces/ws"


def make_executor(environ=None, diag=None, client=None, logs=None):
    arm = MagicMock()
    arm.get_diagnostic_settings = AsyncMock(return_value=diag or DiagnosticInfo())
    arm.resolve_workspace_id = AsyncMock(return_value="guid-1")
    arm.get_deployments = AsyncMock(return_value=[])
    arm.get_app_info = AsyncMock(return_value=AppInfo("my-app", "rg-1", state="Running"))
    arm.list_apps = AsyncMock(return_value=[AppInfo("a", "rg-a", state="Running")])
    arm.close = AsyncMock()
    kudu = MagicMock()
    kudu.get_recent_logs = AsyncMock(
        return_value=logs or LogsResult(success=True, source=LogSource.CONTAINER, entries=[])
    )
    kudu.close = AsyncMock()
    client = client or FakeLogsClient()
    executor = ToolExecutor(
        Settings(),
        ContextStore(environ=ENV if environ is None else environ),
        arm=arm,
        log_analytics=LogAnalyticsConnector(GuardrailEnforcer(client)),
        kudu=kudu,
    )
    return executor, arm, kudu, client


ENABLED = DiagnosticInfo(enabled=True, workspace_resource_id=WORKSPACE)


class TestToolDefinitions:
    """Tests for the tool list."""

    def test_every_tool_has_a_handler(self):
        executor, *_ = make_executor()
        assert set(TOOL_NAMES) == set(executor._handlers)

    def test_names_unique(self):
        assert len(TOOL_NAMES) == len(set(TOOL_NAMES)) == 15

    def test_schemas_are_objects(self):
        for t in TOOLS:
            assert t.inputSchema["type"] == "object"

    def test_allowed_tools_pattern(self):
        assert allowed_tools() == ["mcp__appservice-logs__*"]


class TestToolStats:
    """Tests for ToolStats."""

    def test_to_dict(self):
        stats = ToolStats()
        stats.record("a", 10.0, success=True)
        stats.record("a", 30.0, success=False)
        d = stats.to_dict()
        assert d["total_calls"] == 2
        assert d["successful_calls"] == 1
        assert d["failed_calls"] == 1
        assert d["calls_by_tool"] == {"a": 2}
        assert d["avg_response_time_ms"] == 20.0

    def test_empty_average(self):
        assert ToolStats().to_dict()["avg_response_time_ms"] == 0


class TestContextTools:
    """Tests for get_context / set_context / list_apps."""

    def test_get_context_without_target(self):
        executor, *_ = make_executor(environ={})
        assert "AZURE_SUBSCRIPTION_ID" in asyncio.run(executor.execute("get_context"))

    def test_set_then_get(self):
        executor, *_ = make_executor(environ={})
        text = asyncio.run(executor.execute(
            "set_context", {"subscription_id": "s", "resource_group": "r", "app_name": "other"}
        ))
        assert "other" in text
        assert "- App: other" in asyncio.run(executor.execute("get_context"))

    def test_set_context_missing_arguments(self):
        executor, *_ = make_executor(environ={})
        with pytest.raises(ConfigurationError, match="app_name"):
            asyncio.run(executor.execute("set_context", {"subscription_id": "s", "resource_group": "r"}))

    def test_tool_requires_context(self):
        executor, *_ = make_executor(environ={})
        with pytest.raises(ConfigurationError):
            asyncio.run(executor.execute("get_recent_logs"))
        assert executor.stats.failed_calls == 1

    def test_list_apps_uses_context_subscription(self):
        executor, arm, *_ = make_executor()
        text = asyncio.run(executor.execute("list_apps"))
        arm.list_apps.assert_awaited_once_with("sub-1", None)
        assert "- **a** (rg-a) - Running" in text

    def test_list_apps_without_subscription(self):
        executor, *_ = make_executor(environ={})
        with pytest.raises(ConfigurationError):
            asyncio.run(executor.execute("list_apps"))


class TestLogTools:
    """Tests for the log and query tools."""

    def test_query_logs_without_workspace(self):
        executor, _, _, client = make_executor()
        text = asyncio.run(executor.execute("query_logs", {"query": "AppServiceHTTPLogs"}))
        assert "Log Analytics not configured" in text
        assert client.calls == []

    def test_query_logs_caches_workspace(self):
        client = FakeLogsClient(success_response(["n"], [[1]]))
        executor, arm, _, _ = make_executor(diag=ENABLED, client=client)

        asyncio.run(executor.execute("query_logs", {"query": "T"}))
        asyncio.run(executor.execute("query_logs", {"query": "T"}))

        assert client.calls[0]["workspace_id"] == "guid-1"
        assert arm.get_diagnostic_settings.await_count == 1
        assert executor.store.get().workspace_id == "guid-1"

    def test_query_logs_rejects_long_range(self):
        executor, _, _, client = make_executor(diag=ENABLED)
        text = asyncio.run(executor.execute("query_logs", {"query": "T", "time_range_minutes": 10081}))
        assert "7 days" in text
        assert client.calls == []

    def test_query_logs_negative_range_uses_default(self):
        executor, _, _, client = make_executor(diag=ENABLED)
        asyncio.run(executor.execute("query_logs", {"query": "T", "time_range_minutes": -30}))
        start, end = client.calls[0]["timespan"]
        assert (end - start).total_seconds() == 3600

    def test_get_recent_logs(self):
        executor, _, kudu, _ = make_executor()
        asyncio.run(executor.execute("get_recent_logs", {"max_lines": 20, "filter": "error"}))
        kudu.get_recent_logs.assert_awaited_once_with("my-app", 20, "error")

    def test_get_restarts_falls_back_to_kudu(self):
        executor, _, kudu, client = make_executor()
        text = asyncio.run(executor.execute("get_restarts"))
        kudu.get_recent_logs.assert_awaited_once_with("my-app", 200)
        assert "Full restart history requires Log Analytics" in text
        assert client.calls == []

    def test_get_restarts_with_workspace(self):
        executor, _, kudu, client = make_executor(diag=ENABLED)
        asyncio.run(executor.execute("get_restarts", {"hours": 2}))
        assert client.calls[0]["query"].startswith("AppServicePlatformLogs")
        kudu.get_recent_logs.assert_not_awaited()

    def test_summarize_errors_hours(self):
        executor, _, _, client = make_executor(diag=ENABLED)
        asyncio.run(executor.execute("summarize_errors", {"hours": 2}))
        start, end = client.calls[0]["timespan"]
        assert (end - start).total_seconds() == 7200

    def test_check_diagnostics_refreshes(self):
        executor, arm, _, _ = make_executor(diag=ENABLED)
        text = asyncio.run(executor.execute("check_diagnostics"))
        assert "Diagnostic settings enabled" in text
        assert executor.store.get().diagnostics_enabled is True


class TestMetadataTools:
    """Tests for ARM-backed tools."""

    def test_get_app_info(self):
        executor, *_ = make_executor()
        assert "**my-app**" in asyncio.run(executor.execute("get_app_info"))

    def test_arm_error_propagates(self):
        executor, arm, *_ = make_executor()
        arm.get_app_info.side_effect = ArmError("Failed to get app info")
        with pytest.raises(ArmError):
            asyncio.run(executor.execute("get_app_info"))

    def test_get_deployments_limit(self):
        executor, arm, *_ = make_executor()
        asyncio.run(executor.execute("get_deployments", {"limit": 3}))
        arm.get_deployments.assert_awaited_once()
        assert arm.get_deployments.await_args.args[1] == 3

    def test_unknown_tool(self):
        executor, *_ = make_executor()
        assert asyncio.run(executor.execute("nope")) == "Unknown tool: nope"


class TestAnalysisTools:
    """Tests for correlate_events and diagnose_deployment."""

    def test_correlate_events(self):
        executor, _, _, client = make_executor(diag=ENABLED)
        text = asyncio.run(executor.execute("correlate_events", {"timestamp": "2024-01-15T10:30:00Z"}))
        assert "datetime('2024-01-15T10:25:00Z') .. datetime('2024-01-15T10:35:00Z')" in client.calls[0]["query"]
        assert "Events around 2024-01-15T10:30:00Z" in text

    def test_negative_window_uses_default(self):
        executor, _, _, client = make_executor(diag=ENABLED)
        asyncio.run(executor.execute(
            "correlate_events", {"timestamp": "2024-01-15T10:30:00Z", "window_minutes": -5}
        ))
        assert "datetime('2024-01-15T10:25:00Z') .. datetime('2024-01-15T10:35:00Z')" in client.calls[0]["query"]

    def test_diagnose_deployment_fallback(self):
        executor, arm, kudu, client = make_executor()
        arm.get_deployments.return_value = [Deployment("d1", start_time=datetime(2024, 1, 15, tzinfo=timezone.utc))]
        text = asyncio.run(executor.execute("diagnose_deployment"))

        assert client.calls == []
        kudu.get_recent_logs.assert_awaited_once_with("my-app", 100)
        assert "## Diagnosis: deployment d1" in text
        assert executor.stats.successful_calls == 1


class TestTransports:
    """Tests for the MCP and SDK server wiring."""

    def test_context_uri(self):
        assert context_uri("s", "r", "a") == "appservice://s/r/a"

    def test_create_server(self):
        executor, *_ = make_executor()
        server = create_server(executor)
        assert server.name == "appservice-logs-mcp"

    def test_create_sdk_server(self):
        executor, *_ = make_executor()
        server = create_sdk_server(executor)
        assert server["name"] == "appservice-logs"

    def test_aclose(self):
        executor, arm, kudu, _ = make_executor()
        asyncio.run(executor.aclose())
        arm.close.assert_awaited_once()
        kudu.close.assert_awaited_once()
