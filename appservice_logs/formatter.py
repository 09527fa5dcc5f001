"""Markdown rendering of tool results for an LLM reader."""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .analysis.classifier import EventCategory, classify_text
from .analysis.correlation import CorrelationResult
from .context import NO_CONTEXT_MESSAGE, SessionContext
from .models import (
    AppInfo,
    Deployment,
    DiagnosticInfo,
    LogSource,
    LogsResult,
    QueryResult,
    format_instant,
    jsonable,
)

MAX_TABLE_ROWS = 20
MAX_TABLE_COLUMNS = 6
MAX_CELL_CHARS = 50
SAMPLE_ROWS = 10
MAX_LOG_LINES = 50
PATHS_PER_STATUS = 5

DIAGNOSTICS_HELP = """To enable full log querying:
1. Go to Azure Portal → App Service → Diagnostic settings
2. Add a diagnostic setting
3. Enable log categories: AppServiceHTTPLogs, AppServiceConsoleLogs, AppServicePlatformLogs
4. Select a Log Analytics workspace as destination"""


@dataclass
class FormattedResponse:
    summary: str
    data: dict[str, Any] = field(default_factory=dict)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)[:MAX_CELL_CHARS].replace("|", "\\|").replace("\n", " ")


def markdown_table(columns: list[str], rows: list[dict[str, Any]]) -> str:
    if not columns or not rows:
        return ""
    lines = [
        "| " + " | ".join(columns) + " |",
        "| " + " | ".join("---" for _ in columns) + " |",
    ]
    for row in rows:
        lines.append("| " + " | ".join(_cell(row.get(col)) for col in columns) + " |")
    return "\n".join(lines)


def _row_as_list(row: dict[str, Any]) -> str:
    parts = [f"{key}: {jsonable(value)}" for key, value in row.items() if value is not None]
    return "- " + ", ".join(parts)


def format_app_info(info: AppInfo) -> FormattedResponse:
    lines = [
        f"**{info.name}**",
        f"- Resource group: {info.resource_group}",
        f"- Location: {info.location}",
        f"- State: {info.state}",
        f"- URL: https://{info.default_host_name}",
        f"- Kind: {info.kind}",
    ]
    if info.sku:
        lines.append(f"- SKU: {info.sku}")
    if info.linux_fx_version:
        lines.append(f"- Runtime: {info.linux_fx_version}")
    if info.windows_fx_version:
        lines.append(f"- Runtime: {info.windows_fx_version}")
    if info.http_logging_enabled is not None:
        lines.append(f"- HTTP logging: {'on' if info.http_logging_enabled else 'off'}")
    return FormattedResponse("\n".join(lines), info.to_dict())


def format_diagnostic_info(info: DiagnosticInfo) -> FormattedResponse:
    if not info.enabled:
        summary = (
            "⚠️ **Diagnostic settings not configured**\n\n"
            "Log Analytics is not enabled for this app. Only Kudu container logs are available.\n\n"
            + DIAGNOSTICS_HELP
        )
        return FormattedResponse(summary, info.to_dict())

    lines = [
        "✅ **Diagnostic settings enabled**",
        f"- Log Analytics: {'Yes' if info.workspace_resource_id else 'No'}",
    ]
    if info.storage_account_id:
        lines.append("- Storage Account: Yes")
    if info.event_hub_id:
        lines.append("- Event Hub: Yes")
    if info.categories:
        lines.append(f"- Enabled categories: {', '.join(info.categories)}")
    return FormattedResponse("\n".join(lines), info.to_dict())


def format_query_result(result: QueryResult, title: str | None = None) -> FormattedResponse:
    if not result.success:
        return FormattedResponse(f"❌ **Query failed**\n{result.error}", result.to_dict())

    if result.row_count == 0:
        message = f"No {title} found in the specified time range." if title else "No results found."
        return FormattedResponse(message, result.to_dict())

    summary = f"**{title or 'Results'}** ({result.row_count} entries)"
    if result.truncated:
        summary += " ⚠️ Results truncated - use filters to narrow down"

    if len(result.rows) <= MAX_TABLE_ROWS and len(result.columns) <= MAX_TABLE_COLUMNS:
        summary += "\n\n" + markdown_table(result.columns, result.rows)
    else:
        summary += "\n\n**Sample entries:**\n"
        summary += "\n".join(_row_as_list(row) for row in result.rows[:SAMPLE_ROWS])
        if len(result.rows) > SAMPLE_ROWS:
            summary += f"\n\n... and {len(result.rows) - SAMPLE_ROWS} more entries"

    summary += f"\n\n_Query time: {result.query_time_ms}ms_"
    return FormattedResponse(summary, result.to_dict())


def format_logs(result: LogsResult, max_display: int = MAX_LOG_LINES) -> FormattedResponse:
    if not result.success:
        return FormattedResponse(f"❌ **Failed to fetch logs**\n{result.error}", result.to_dict())

    if not result.entries:
        summary = "No recent log entries found."
        if result.fallback_error:
            summary += f"\n\n_Application log files unavailable: {result.fallback_error}_"
        return FormattedResponse(summary, result.to_dict())

    label = "application log file" if result.source is LogSource.APPLICATION_FILE else "container logs"
    shown = result.entries[-max_display:]
    summary = f"**Recent {label}** ({len(result.entries)} lines)\n\n```\n"
    summary += "\n".join(entry.content for entry in shown)
    summary += "\n```"
    if len(result.entries) > max_display:
        summary += f"\n\n_Showing last {max_display} of {len(result.entries)} lines_"
    if result.truncated:
        summary += "\n\n_Log file truncated to its most recent bytes_"
    return FormattedResponse(summary, result.to_dict())


def format_error_summary(result: QueryResult) -> FormattedResponse:
    """Group error rows by status code, listing the top paths of each."""
    if not result.success:
        return FormattedResponse(f"❌ **Query failed**\n{result.error}", result.to_dict())

    if result.row_count == 0:
        return FormattedResponse("✅ **No errors found** in the specified time range.", result.to_dict())

    by_status: dict[Any, list[dict[str, Any]]] = defaultdict(list)
    for row in result.rows:
        by_status[row.get("ScStatus")].append(row)

    lines = [f"⚠️ **Error Summary** ({result.row_count} error patterns)", ""]
    for status, rows in by_status.items():
        counts = [row.get("TotalCount") or row.get("Count") or 1 for row in rows]
        lines.append(f"### HTTP {status} ({sum(counts)} occurrences)")
        for row, count in zip(rows[:PATHS_PER_STATUS], counts):
            lines.append(f"- `{row.get('CsUriStem') or 'unknown'}`: {count} times")
        if len(rows) > PATHS_PER_STATUS:
            lines.append(f"- ... and {len(rows) - PATHS_PER_STATUS} more paths")
        lines.append("")
    return FormattedResponse("\n".join(lines).rstrip(), result.to_dict())


def _deployment_icon(deployment: Deployment) -> str:
    if deployment.succeeded:
        return "✅"
    if deployment.failed:
        return "❌"
    return "⏳"


def format_deployments(deployments: list[Deployment]) -> FormattedResponse:
    data = {"deployments": [d.to_dict() for d in deployments]}
    if not deployments:
        return FormattedResponse("No recent deployments found.", data)

    lines = [f"**Recent Deployments** ({len(deployments)})", ""]
    for index, deployment in enumerate(deployments):
        when = format_instant(deployment.end_time) if deployment.end_time else "In progress"
        lines.append(f"{_deployment_icon(deployment)} **{when}** (#{index}, id {deployment.id})")
        if deployment.message:
            lines.append(f"   {deployment.message}")
        if deployment.author:
            lines.append(f"   by {deployment.author}")
        lines.append("")
    return FormattedResponse("\n".join(lines).rstrip(), data)


def format_correlation(correlation: CorrelationResult) -> FormattedResponse:
    """Render correlated events, marking error and lifecycle lines."""
    result = correlation.result
    title = f"Events around {correlation.timestamp}"
    if not result.success or result.row_count == 0:
        return format_query_result(result, title)

    lines = [f"**{title}** ({result.row_count} events)"]
    if correlation.window:
        lines.append(
            f"Window: {format_instant(correlation.window.start)} → {format_instant(correlation.window.end)}"
        )
    if result.truncated:
        lines.append("⚠️ Results truncated - narrow the window")
    lines.append("")

    for row in result.rows:
        when = row.get("TimeGenerated")
        when = format_instant(when) if isinstance(when, datetime) else str(when or "")
        message = str(row.get("Message") or "").replace("\n", " ")
        tags = classify_text(message)
        marker = "🔴" if EventCategory.ERROR in tags else "🔄" if tags else "•"
        lines.append(f"{marker} `{when}` [{row.get('Type', '?')}] {message[:200]}")

    lines.append("")
    lines.append(f"_Query time: {result.query_time_ms}ms_")
    return FormattedResponse("\n".join(lines), correlation.to_dict())


def format_context(session: SessionContext | None) -> FormattedResponse:
    if session is None:
        return FormattedResponse(NO_CONTEXT_MESSAGE)

    target = session.target
    lines = [
        "**Current App Service**",
        f"- Subscription: {target.subscription_id}",
        f"- Resource Group: {target.resource_group}",
        f"- App: {target.app_name}",
    ]
    if session.diagnostics_enabled is True:
        lines.append(f"- Log Analytics workspace: {session.workspace_id}")
    elif session.diagnostics_enabled is False:
        lines.append("- Log Analytics: not configured (Kudu logs only)")
    return FormattedResponse("\n".join(lines), session.to_dict())
