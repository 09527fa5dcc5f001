"""Tool definitions and execution.

Every tool resolves the session's target through the executor's
ContextStore, calls the connectors or the orchestrator, and renders the
result as markdown. Configuration and ARM metadata failures propagate as
AppServiceLogsError so the transport can report them as tool errors.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from mcp.types import Tool

from ..analysis.correlation import CorrelationOrchestrator
from ..config import Settings
from ..connectors.arm import ArmClient
from ..connectors.auth import AzureAuthManager
from ..connectors.guardrails import GuardrailEnforcer, QueryGuardrails
from ..connectors.kudu import KuduConnector
from ..connectors.log_analytics import LogAnalyticsConnector
from ..context import ContextStore, SessionContext, Target, WorkspaceResolver
from ..errors import AppServiceLogsError, ConfigurationError
from ..formatter import (
    format_app_info,
    format_context,
    format_correlation,
    format_deployments,
    format_diagnostic_info,
    format_error_summary,
    format_logs,
    format_query_result,
)

logger = logging.getLogger(__name__)

NO_WORKSPACE = (
    "Error: Log Analytics not configured. Use check_diagnostics to see status.\n\n"
    "Fallback: Use get_recent_logs for Kudu container logs."
)
RESTART_FALLBACK_LINES = 200

NO_ARGS = {"type": "object", "properties": {}}

TOOLS: list[Tool] = [
    # Context management
    Tool(
        name="get_context",
        description="Show the currently configured App Service (subscription, resource group, app name). Call this first to see which app is selected.",
        inputSchema=NO_ARGS,
    ),
    Tool(
        name="set_context",
        description="Set the App Service to query. Required before using other tools if environment variables are not set.",
        inputSchema={
            "type": "object",
            "properties": {
                "subscription_id": {"type": "string", "description": "Azure subscription ID"},
                "resource_group": {"type": "string", "description": "Resource group name"},
                "app_name": {"type": "string", "description": "App Service name"},
            },
            "required": ["subscription_id", "resource_group", "app_name"],
        },
    ),
    Tool(
        name="list_apps",
        description="List App Service apps in a subscription or resource group",
        inputSchema={
            "type": "object",
            "properties": {
                "subscription_id": {"type": "string", "description": "Azure subscription ID. Uses current context if not provided."},
                "resource_group": {"type": "string", "description": "Optional: filter by resource group"},
            },
        },
    ),
    # Discovery
    Tool(
        name="get_app_info",
        description="Get App Service details: SKU, region, URL, runtime, status",
        inputSchema=NO_ARGS,
    ),
    Tool(
        name="check_diagnostics",
        description="Check if Log Analytics diagnostic settings are enabled. Shows what log types are available.",
        inputSchema=NO_ARGS,
    ),
    # Log access
    Tool(
        name="query_logs",
        description="Run a KQL query against Log Analytics. Requires diagnostic settings to be enabled. Use check_diagnostics first.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "KQL query to execute. Example: AppServiceHTTPLogs | where ScStatus >= 500"},
                "time_range_minutes": {"type": "number", "description": "Time range in minutes (default: 60, max: 10080 = 7 days)", "default": 60},
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="get_recent_logs",
        description="Get recent container/application logs from Kudu. Always available (no diagnostic settings required).",
        inputSchema={
            "type": "object",
            "properties": {
                "max_lines": {"type": "integer", "description": "Maximum lines to return (default: 100)", "default": 100},
                "filter": {"type": "string", "description": "Optional text filter"},
            },
        },
    ),
    # Prebuilt queries
    Tool(
        name="get_http_errors",
        description="Get HTTP 5xx errors grouped by status code and path. Requires Log Analytics.",
        inputSchema={
            "type": "object",
            "properties": {
                "minutes": {"type": "number", "description": "Time range in minutes (default: 60)", "default": 60},
            },
        },
    ),
    Tool(
        name="get_slow_requests",
        description="Get requests slower than a threshold. Requires Log Analytics.",
        inputSchema={
            "type": "object",
            "properties": {
                "minutes": {"type": "number", "description": "Time range in minutes (default: 60)", "default": 60},
                "threshold_ms": {"type": "number", "description": "Latency threshold in milliseconds (default: 1000)", "default": 1000},
            },
        },
    ),
    Tool(
        name="get_deployments",
        description="Get recent deployment history, most recent first",
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Maximum deployments to return (default: 10)", "default": 10},
            },
        },
    ),
    Tool(
        name="get_restarts",
        description="Get container restart and lifecycle events. Requires Log Analytics for full history, falls back to Kudu.",
        inputSchema={
            "type": "object",
            "properties": {
                "hours": {"type": "number", "description": "Time range in hours (default: 24)", "default": 24},
            },
        },
    ),
    # Analysis
    Tool(
        name="summarize_errors",
        description="Analyze recent errors: patterns, frequency, affected endpoints. Requires Log Analytics.",
        inputSchema={
            "type": "object",
            "properties": {
                "hours": {"type": "number", "description": "Time range in hours (default: 24)", "default": 24},
            },
        },
    ),
    Tool(
        name="get_error_timeline",
        description="HTTP 5xx error counts in 5-minute bins. Requires Log Analytics.",
        inputSchema={
            "type": "object",
            "properties": {
                "minutes": {"type": "number", "description": "Time range in minutes (default: 60)", "default": 60},
            },
        },
    ),
    Tool(
        name="correlate_events",
        description="Find all events (HTTP logs, platform logs, app logs) around a specific timestamp",
        inputSchema={
            "type": "object",
            "properties": {
                "timestamp": {"type": "string", "description": "ISO timestamp to search around (e.g., 2024-01-15T10:30:00Z)"},
                "window_minutes": {"type": "number", "description": "Minutes before and after timestamp to search (default: 5)", "default": 5},
            },
            "required": ["timestamp"],
        },
    ),
    Tool(
        name="diagnose_deployment",
        description="Diagnose what happened right after a deployment: platform events, application errors and the first HTTP requests. Falls back to container logs without Log Analytics.",
        inputSchema={
            "type": "object",
            "properties": {
                "deployment_index": {"type": "integer", "description": "Which deployment to analyze, 0 = most recent (default: 0)", "default": 0},
                "window_minutes": {"type": "number", "description": "Minutes after the deployment start to analyze (default: 10)", "default": 10},
            },
        },
    ),
]

TOOL_NAMES = [t.name for t in TOOLS]


def _number(args: Mapping[str, Any], key: str, default: float) -> float:
    """Numeric argument; missing, malformed or non-positive values take the default."""
    value = args.get(key)
    try:
        number = float(value) if value is not None else 0
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _integer(args: Mapping[str, Any], key: str, default: int) -> int:
    return int(_number(args, key, default))


@dataclass
class ToolStats:
    """Per-session tool usage."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    calls_by_tool: dict[str, int] = field(default_factory=dict)
    total_response_time_ms: float = 0.0

    def record(self, name: str, duration_ms: float, success: bool) -> None:
        self.total_calls += 1
        self.calls_by_tool[name] = self.calls_by_tool.get(name, 0) + 1
        self.total_response_time_ms += duration_ms
        if success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "calls_by_tool": self.calls_by_tool,
            "avg_response_time_ms": (
                self.total_response_time_ms / self.total_calls
                if self.total_calls > 0 else 0
            ),
        }


class ToolExecutor:
    """Executes tools for one session.

    Holds the session's ContextStore, so two executors never share a target.
    """

    def __init__(
        self,
        settings: Settings,
        store: ContextStore,
        arm: ArmClient,
        log_analytics: LogAnalyticsConnector,
        kudu: KuduConnector,
        auth: AzureAuthManager | None = None,
        concurrent: bool = False,
    ):
        self.settings = settings
        self.store = store
        self.auth = auth
        self.arm = arm
        self.log_analytics = log_analytics
        self.kudu = kudu
        self.resolver = WorkspaceResolver(arm)
        self.orchestrator = CorrelationOrchestrator(
            log_analytics, kudu, arm, self.resolver, concurrent=concurrent
        )
        self.stats = ToolStats()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[str]]] = {
            "get_context": self._get_context,
            "set_context": self._set_context,
            "list_apps": self._list_apps,
            "get_app_info": self._get_app_info,
            "check_diagnostics": self._check_diagnostics,
            "query_logs": self._query_logs,
            "get_recent_logs": self._get_recent_logs,
            "get_http_errors": self._get_http_errors,
            "get_slow_requests": self._get_slow_requests,
            "get_deployments": self._get_deployments,
            "get_restarts": self._get_restarts,
            "summarize_errors": self._summarize_errors,
            "get_error_timeline": self._get_error_timeline,
            "correlate_events": self._correlate_events,
            "diagnose_deployment": self._diagnose_deployment,
        }

    async def execute(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """Run a tool and return its markdown output.

        Raises:
            AppServiceLogsError: configuration or metadata failures
        """
        handler = self._handlers.get(name)
        if handler is None:
            self.stats.record(name, 0.0, success=False)
            return f"Unknown tool: {name}"

        start_time = time.time()
        try:
            text = await handler(arguments or {})
        except AppServiceLogsError:
            self.stats.record(name, (time.time() - start_time) * 1000, success=False)
            raise
        self.stats.record(name, (time.time() - start_time) * 1000, success=True)
        return text

    async def aclose(self) -> None:
        await self.arm.close()
        await self.kudu.close()
        if self.auth is not None:
            await self.auth.close()

    async def _workspace(self, session: SessionContext) -> str | None:
        return await self.resolver.resolve(session)

    # Context management

    async def _get_context(self, args: dict[str, Any]) -> str:
        return format_context(self.store.get()).summary

    async def _set_context(self, args: dict[str, Any]) -> str:
        missing = [k for k in ("subscription_id", "resource_group", "app_name") if not args.get(k)]
        if missing:
            raise ConfigurationError(f"Missing required arguments: {', '.join(missing)}")
        target = Target(str(args["subscription_id"]), str(args["resource_group"]), str(args["app_name"]))
        self.store.set(target)
        return f"✅ Context set to **{target.app_name}** in {target.resource_group}"

    async def _list_apps(self, args: dict[str, Any]) -> str:
        session = self.store.get()
        subscription_id = args.get("subscription_id") or (session.target.subscription_id if session else None)
        if not subscription_id:
            raise ConfigurationError("No subscription ID provided and no context set.")

        apps = await self.arm.list_apps(subscription_id, args.get("resource_group"))
        if not apps:
            return "No App Service apps found."
        lines = [f"**App Service Apps** ({len(apps)})", ""]
        lines.extend(f"- **{app.name}** ({app.resource_group}) - {app.state}" for app in apps)
        return "\n".join(lines)

    # Discovery

    async def _get_app_info(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        return format_app_info(await self.arm.get_app_info(session.target)).summary

    async def _check_diagnostics(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        diag = await self.resolver.refresh(session)
        return format_diagnostic_info(diag).summary

    # Log access

    async def _query_logs(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        workspace_id = await self._workspace(session)
        if not workspace_id:
            return NO_WORKSPACE
        minutes = _number(args, "time_range_minutes", self.settings.default_time_range_minutes)
        result = await self.log_analytics.query(workspace_id, str(args.get("query") or ""), minutes)
        return format_query_result(result, "Query Results").summary

    async def _get_recent_logs(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        result = await self.kudu.get_recent_logs(
            session.target.app_name, _integer(args, "max_lines", 100), args.get("filter")
        )
        return format_logs(result).summary

    # Prebuilt queries

    async def _get_http_errors(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        workspace_id = await self._workspace(session)
        if not workspace_id:
            return NO_WORKSPACE
        minutes = _integer(args, "minutes", self.settings.default_time_range_minutes)
        return format_error_summary(await self.log_analytics.query_http_errors(workspace_id, minutes)).summary

    async def _get_slow_requests(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        workspace_id = await self._workspace(session)
        if not workspace_id:
            return NO_WORKSPACE
        minutes = _integer(args, "minutes", self.settings.default_time_range_minutes)
        threshold_ms = _integer(args, "threshold_ms", 1000)
        result = await self.log_analytics.query_slow_requests(workspace_id, minutes, threshold_ms)
        return format_query_result(result, f"Slow Requests (>{threshold_ms}ms)").summary

    async def _get_deployments(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        deployments = await self.arm.get_deployments(session.target, _integer(args, "limit", 10))
        return format_deployments(deployments).summary

    async def _get_restarts(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        hours = _integer(args, "hours", 24)
        workspace_id = await self._workspace(session)
        if workspace_id:
            result = await self.log_analytics.query_platform_logs(workspace_id, hours * 60)
            return format_query_result(result, "Platform Events (restarts, deployments)").summary

        logs = await self.kudu.get_recent_logs(session.target.app_name, RESTART_FALLBACK_LINES)
        return format_logs(logs).summary + "\n\n_Note: Full restart history requires Log Analytics._"

    # Analysis

    async def _summarize_errors(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        workspace_id = await self._workspace(session)
        if not workspace_id:
            return NO_WORKSPACE
        hours = _integer(args, "hours", 24)
        return format_error_summary(await self.log_analytics.get_error_summary(workspace_id, hours * 60)).summary

    async def _get_error_timeline(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        workspace_id = await self._workspace(session)
        if not workspace_id:
            return NO_WORKSPACE
        minutes = _integer(args, "minutes", self.settings.default_time_range_minutes)
        result = await self.log_analytics.query_error_timeline(workspace_id, minutes)
        return format_query_result(result, "HTTP 5xx errors over time").summary

    async def _correlate_events(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        correlation = await self.orchestrator.correlate_events(
            session, str(args.get("timestamp") or ""), _number(args, "window_minutes", 5)
        )
        return format_correlation(correlation).summary

    async def _diagnose_deployment(self, args: dict[str, Any]) -> str:
        session = self.store.require()
        index = args.get("deployment_index")
        report = await self.orchestrator.diagnose_deployment(
            session,
            int(index) if isinstance(index, (int, float)) else 0,
            _number(args, "window_minutes", 10),
        )
        return report.narrative


def build_executor(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
    concurrent: bool = False,
) -> ToolExecutor:
    """Wire real Azure connectors into a ToolExecutor."""
    auth = AzureAuthManager(settings)
    enforcer = GuardrailEnforcer(auth.get_logs_query_client(), QueryGuardrails.from_settings(settings))
    return ToolExecutor(
        settings,
        ContextStore(environ),
        arm=ArmClient(auth, settings),
        log_analytics=LogAnalyticsConnector(enforcer),
        kudu=KuduConnector(auth, settings),
        auth=auth,
        concurrent=concurrent,
    )
