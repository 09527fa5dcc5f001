"""Log Analytics connector: raw KQL plus prebuilt App Service queries.

All queries, prebuilt or not, go through the GuardrailEnforcer; the
prebuilt shapes are just parametrized KQL.
"""

from __future__ import annotations

from ..models import QueryResult, TimeWindow
from .guardrails import GuardrailEnforcer

HTTP_TABLE = "AppServiceHTTPLogs"
CONSOLE_TABLE = "AppServiceConsoleLogs"
PLATFORM_TABLE = "AppServicePlatformLogs"


def kql_string(value: str) -> str:
    """Quote a value as a KQL string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


# ---------------------------------------------------------------------------
# Relative-time query shapes ("last N minutes")
# ---------------------------------------------------------------------------


def http_logs_query(
    minutes: int,
    status_code: int | None = None,
    path: str | None = None,
    min_duration_ms: int | None = None,
) -> str:
    query = f"{HTTP_TABLE}\n| where TimeGenerated > ago({minutes}m)"
    if status_code:
        query += f"\n| where ScStatus == {int(status_code)}"
    if path:
        query += f"\n| where CsUriStem contains {kql_string(path)}"
    if min_duration_ms:
        query += f"\n| where TimeTaken >= {int(min_duration_ms)}"
    query += (
        "\n| project TimeGenerated, CsMethod, CsUriStem, ScStatus, TimeTaken, CsHost, UserAgent"
        "\n| order by TimeGenerated desc"
    )
    return query


def http_errors_query(minutes: int) -> str:
    return f"""{HTTP_TABLE}
| where TimeGenerated > ago({minutes}m)
| where ScStatus >= 500
| summarize Count=count(), AvgDuration=avg(TimeTaken) by ScStatus, CsUriStem
| order by Count desc"""


def slow_requests_query(minutes: int, threshold_ms: int) -> str:
    return f"""{HTTP_TABLE}
| where TimeGenerated > ago({minutes}m)
| where TimeTaken >= {int(threshold_ms)}
| project TimeGenerated, CsMethod, CsUriStem, ScStatus, TimeTaken
| order by TimeTaken desc"""


def app_logs_query(minutes: int, filter: str | None = None) -> str:
    query = f"{CONSOLE_TABLE}\n| where TimeGenerated > ago({minutes}m)"
    if filter:
        query += f"\n| where ResultDescription contains {kql_string(filter)}"
    query += "\n| project TimeGenerated, Level, ResultDescription, Host\n| order by TimeGenerated desc"
    return query


def platform_logs_query(minutes: int) -> str:
    return f"""{PLATFORM_TABLE}
| where TimeGenerated > ago({minutes}m)
| project TimeGenerated, Level, Message, ContainerName, Host
| order by TimeGenerated desc"""


def error_summary_query(minutes: int) -> str:
    return f"""{HTTP_TABLE}
| where TimeGenerated > ago({minutes}m)
| where ScStatus >= 400
| summarize
    TotalCount=count(),
    AvgDuration=avg(TimeTaken),
    MaxDuration=max(TimeTaken),
    FirstSeen=min(TimeGenerated),
    LastSeen=max(TimeGenerated)
  by ScStatus, CsUriStem
| order by TotalCount desc"""


def error_timeline_query(minutes: int, bin_minutes: int = 5) -> str:
    return f"""{HTTP_TABLE}
| where TimeGenerated > ago({minutes}m)
| where ScStatus >= 500
| summarize ErrorCount=count() by bin(TimeGenerated, {bin_minutes}m), ScStatus
| order by TimeGenerated asc"""


def container_restarts_query(hours: int) -> str:
    return f"""{PLATFORM_TABLE}
| where TimeGenerated > ago({hours}h)
| where Message contains "Container" and (Message contains "start" or Message contains "stop" or Message contains "exit")
| project TimeGenerated, Level, Message, ContainerName
| order by TimeGenerated desc"""


def recent_deployments_query(hours: int) -> str:
    return f"""{PLATFORM_TABLE}
| where TimeGenerated > ago({hours}h)
| where Message contains "deployment" or Message contains "restart"
| project TimeGenerated, Level, Message
| order by TimeGenerated desc"""


# ---------------------------------------------------------------------------
# Absolute-window query shapes (correlation and deployment diagnosis)
# ---------------------------------------------------------------------------


def correlation_query(window: TimeWindow) -> str:
    return f"""union {HTTP_TABLE}, {CONSOLE_TABLE}, {PLATFORM_TABLE}
| where {window.kql_filter()}
| project TimeGenerated, Type=$table, Message=coalesce(ResultDescription, Message, strcat(CsMethod, ' ', CsUriStem, ' ', ScStatus))
| order by TimeGenerated asc"""


def platform_events_query(window: TimeWindow) -> str:
    return f"""{PLATFORM_TABLE}
| where {window.kql_filter()}
| project TimeGenerated, Level, Message, ContainerName
| order by TimeGenerated asc"""


def console_logs_query(window: TimeWindow) -> str:
    return f"""{CONSOLE_TABLE}
| where {window.kql_filter()}
| project TimeGenerated, Level, ResultDescription
| order by TimeGenerated asc"""


def first_requests_query(window: TimeWindow, limit: int) -> str:
    return f"""{HTTP_TABLE}
| where {window.kql_filter()}
| project TimeGenerated, CsMethod, CsUriStem, ScStatus, TimeTaken
| order by TimeGenerated asc
| take {int(limit)}"""


class LogAnalyticsConnector:
    """Prebuilt and raw KQL queries against one workspace at a time."""

    def __init__(self, enforcer: GuardrailEnforcer):
        self.enforcer = enforcer

    async def query(
        self,
        workspace_id: str,
        kql: str,
        time_range_minutes: float = 60,
        window: TimeWindow | None = None,
    ) -> QueryResult:
        """Execute a KQL query with guardrails."""
        return await self.enforcer.run(workspace_id, kql, time_range_minutes, window)

    async def query_http_logs(
        self,
        workspace_id: str,
        minutes: int,
        status_code: int | None = None,
        path: str | None = None,
        min_duration_ms: int | None = None,
    ) -> QueryResult:
        return await self.query(
            workspace_id, http_logs_query(minutes, status_code, path, min_duration_ms), minutes
        )

    async def query_http_errors(self, workspace_id: str, minutes: int) -> QueryResult:
        """HTTP 5xx responses grouped by status and path, most frequent first."""
        return await self.query(workspace_id, http_errors_query(minutes), minutes)

    async def query_slow_requests(
        self, workspace_id: str, minutes: int, threshold_ms: int = 1000
    ) -> QueryResult:
        """Requests at or above ``threshold_ms``, slowest first."""
        return await self.query(workspace_id, slow_requests_query(minutes, threshold_ms), minutes)

    async def query_app_logs(
        self, workspace_id: str, minutes: int, filter: str | None = None
    ) -> QueryResult:
        """Application stdout/stderr lines."""
        return await self.query(workspace_id, app_logs_query(minutes, filter), minutes)

    async def query_platform_logs(self, workspace_id: str, minutes: int) -> QueryResult:
        """Platform events: deployments, restarts, container lifecycle."""
        return await self.query(workspace_id, platform_logs_query(minutes), minutes)

    async def get_error_summary(self, workspace_id: str, minutes: int) -> QueryResult:
        """4xx/5xx counts with first/last seen times per status and path."""
        return await self.query(workspace_id, error_summary_query(minutes), minutes)

    async def query_error_timeline(self, workspace_id: str, minutes: int) -> QueryResult:
        return await self.query(workspace_id, error_timeline_query(minutes), minutes)

    async def query_container_restarts(self, workspace_id: str, hours: int) -> QueryResult:
        return await self.query(workspace_id, container_restarts_query(hours), hours * 60)

    async def query_recent_deployments(self, workspace_id: str, hours: int) -> QueryResult:
        return await self.query(workspace_id, recent_deployments_query(hours), hours * 60)

    async def query_window(self, workspace_id: str, kql: str, window: TimeWindow) -> QueryResult:
        """Run a query whose time filter is the absolute ``window``."""
        return await self.query(workspace_id, kql, window=window)
