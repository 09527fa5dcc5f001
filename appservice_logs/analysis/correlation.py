"""Multi-source correlation: events around an instant, and deployment diagnosis.

Two workflows share the same connectors:

1. ``correlate_events`` unions the HTTP, console and platform tables over
   ``[t - r, t + r]`` and returns the raw rows.
2. ``diagnose_deployment`` looks at the window right after a deployment
   started. With a Log Analytics workspace it runs three bounded queries
   and classifies their rows; without one it falls back to recent
   container output. A source that fails only empties its own section.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..connectors.arm import ArmClient
from ..connectors.kudu import KuduConnector
from ..connectors.log_analytics import (
    LogAnalyticsConnector,
    console_logs_query,
    correlation_query,
    first_requests_query,
    platform_events_query,
)
from ..context import SessionContext, WorkspaceResolver
from ..models import (
    LogsResult,
    QueryOutcome,
    QueryResult,
    TimeWindow,
    format_instant,
    parse_instant,
)
from .classifier import (
    EventCategory,
    LineKind,
    classify_http_row,
    classify_log_line,
    classify_row,
    select,
)
from .report import DiagnosisReport, FindingGroup, ReportSection, ReportStatus, SectionStatus

logger = logging.getLogger(__name__)

DEFAULT_CORRELATION_MINUTES = 5
DEFAULT_DEPLOYMENT_WINDOW_MINUTES = 10
FIRST_REQUESTS_LIMIT = 20
FALLBACK_LINE_COUNT = 100
PLATFORM_DISPLAY_LIMIT = 5
APP_ERROR_DISPLAY_LIMIT = 10
HTTP_ERROR_DISPLAY_LIMIT = FIRST_REQUESTS_LIMIT
DEPLOYMENT_LOOKUP_MINIMUM = 10

PLATFORM_SECTION = "Platform events"
APPLICATION_SECTION = "Application logs"
HTTP_SECTION = "First HTTP requests"
FALLBACK_SECTION = "Recent container logs"

NOT_CONFIGURED_MESSAGE = (
    "Log Analytics not configured. Use check_diagnostics to see status.\n\n"
    "Fallback: Use get_recent_logs for Kudu container logs."
)


@dataclass
class CorrelationResult:
    """Rows from every structured table inside one window."""

    timestamp: str
    window: TimeWindow | None
    result: QueryResult

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "window": self.window.to_dict() if self.window else None,
            "result": self.result.to_dict(),
        }


def _summary(window: TimeWindow) -> str:
    return (
        f"Analyzed {window.minutes:g} minutes after deployment "
        f"({format_instant(window.start)} to {format_instant(window.end)}). "
        "Use correlate_events with a timestamp from this report to see every event around it."
    )


def _failed_section(title: str, result: QueryResult) -> ReportSection:
    return ReportSection(
        title,
        SectionStatus.UNAVAILABLE,
        notes=[f"Query failed: {result.error or result.outcome.value}"],
    )


def platform_section(result: QueryResult) -> ReportSection:
    """Split platform events into error, startup and termination lists."""
    if not result.success:
        return _failed_section(PLATFORM_SECTION, result)
    if not result.rows:
        return ReportSection(
            PLATFORM_SECTION, SectionStatus.NONE_FOUND, notes=["No platform events found in window."]
        )

    findings = [classify_row(row, "Message", LineKind.PLATFORM, "platform") for row in result.rows]
    groups = [
        FindingGroup("Errors", select(findings, EventCategory.ERROR), PLATFORM_DISPLAY_LIMIT),
        FindingGroup("Startup sequence", select(findings, EventCategory.STARTUP), PLATFORM_DISPLAY_LIMIT),
        FindingGroup("Termination", select(findings, EventCategory.TERMINATION), PLATFORM_DISPLAY_LIMIT),
    ]
    notes = [f"{len(findings)} platform events in window."]
    if not any(g.findings for g in groups):
        notes.append("None of them are errors, startup or termination events.")
    return ReportSection(PLATFORM_SECTION, SectionStatus.POPULATED, groups, notes)


def application_section(result: QueryResult) -> ReportSection:
    """Keep only the application lines that look like errors."""
    if not result.success:
        return _failed_section(APPLICATION_SECTION, result)
    if not result.rows:
        return ReportSection(
            APPLICATION_SECTION, SectionStatus.NONE_FOUND, notes=["No application logs found in window."]
        )

    findings = [
        classify_row(row, "ResultDescription", LineKind.APPLICATION, "console") for row in result.rows
    ]
    errors = select(findings, EventCategory.ERROR)
    if not errors:
        return ReportSection(
            APPLICATION_SECTION,
            SectionStatus.POPULATED,
            notes=[f"No errors in {len(findings)} application log lines."],
        )
    return ReportSection(
        APPLICATION_SECTION,
        SectionStatus.POPULATED,
        [FindingGroup("Errors", errors, APP_ERROR_DISPLAY_LIMIT)],
    )


def http_section(result: QueryResult) -> ReportSection:
    """5xx responses individually, plus how many requests succeeded and when the first did."""
    if not result.success:
        return _failed_section(HTTP_SECTION, result)
    if not result.rows:
        return ReportSection(
            HTTP_SECTION, SectionStatus.NONE_FOUND, notes=["No HTTP requests found in window."]
        )

    findings = [classify_http_row(row) for row in result.rows]
    errors = select(findings, EventCategory.TRAFFIC_ERROR)
    successes = select(findings, EventCategory.TRAFFIC_SUCCESS)

    notes = [f"Successful requests: {len(successes)} of {len(findings)}"]
    if successes and successes[0].timestamp:
        notes.append(f"First successful request at {format_instant(successes[0].timestamp)}")
    elif not successes:
        notes.append("No successful request yet.")

    groups = [FindingGroup("5xx errors", errors, HTTP_ERROR_DISPLAY_LIMIT)] if errors else []
    return ReportSection(HTTP_SECTION, SectionStatus.POPULATED, groups, notes)


def fallback_section(logs: LogsResult) -> ReportSection:
    """Classified container lines, used when no structured source exists."""
    if not logs.success:
        return ReportSection(
            FALLBACK_SECTION,
            SectionStatus.UNAVAILABLE,
            notes=[f"Failed to fetch container logs: {logs.error}"],
        )
    if not logs.entries:
        return ReportSection(
            FALLBACK_SECTION, SectionStatus.NONE_FOUND, notes=["No recent container log lines found."]
        )

    source = logs.source.value if logs.source else "container"
    findings = [classify_log_line(line, LineKind.PLATFORM, source) for line in logs.entries]
    groups = [
        FindingGroup("Errors", select(findings, EventCategory.ERROR), PLATFORM_DISPLAY_LIMIT),
        FindingGroup("Startup sequence", select(findings, EventCategory.STARTUP), PLATFORM_DISPLAY_LIMIT),
        FindingGroup("Termination", select(findings, EventCategory.TERMINATION), PLATFORM_DISPLAY_LIMIT),
    ]
    return ReportSection(
        FALLBACK_SECTION,
        SectionStatus.POPULATED,
        groups,
        notes=[f"{len(findings)} recent lines from {source} logs (reduced confidence)."],
    )


class CorrelationOrchestrator:
    """Runs the correlation workflows for one session at a time.

    Args:
        log_analytics: structured query connector
        kudu: unstructured log connector
        arm: resource-metadata client (deployment history)
        resolver: workspace lookup for the session's target
        concurrent: run the three diagnosis queries together
    """

    def __init__(
        self,
        log_analytics: LogAnalyticsConnector,
        kudu: KuduConnector,
        arm: ArmClient,
        resolver: WorkspaceResolver,
        concurrent: bool = False,
    ):
        self.log_analytics = log_analytics
        self.kudu = kudu
        self.arm = arm
        self.resolver = resolver
        self.concurrent = concurrent

    async def correlate_events(
        self,
        session: SessionContext,
        timestamp: str | datetime,
        window_minutes: float = DEFAULT_CORRELATION_MINUTES,
    ) -> CorrelationResult:
        label = timestamp if isinstance(timestamp, str) else format_instant(timestamp)
        try:
            instant = parse_instant(timestamp)
        except ValueError:
            return CorrelationResult(
                label,
                None,
                QueryResult.failure(f"Invalid timestamp: {label!r}", QueryOutcome.REJECTED),
            )
        if window_minutes <= 0:
            return CorrelationResult(
                label,
                None,
                QueryResult.failure("Window must be a positive number of minutes", QueryOutcome.REJECTED),
            )

        window = TimeWindow.around(instant, timedelta(minutes=window_minutes))
        workspace_id = await self.resolver.resolve(session)
        if not workspace_id:
            return CorrelationResult(
                label, window, QueryResult.failure(NOT_CONFIGURED_MESSAGE, QueryOutcome.NOT_CONFIGURED)
            )

        logger.info("Correlating events for %s in %s", session.target.app_name, window.to_dict())
        result = await self.log_analytics.query_window(workspace_id, correlation_query(window), window)
        return CorrelationResult(label, window, result)

    async def diagnose_deployment(
        self,
        session: SessionContext,
        deployment_index: int = 0,
        window_minutes: float = DEFAULT_DEPLOYMENT_WINDOW_MINUTES,
    ) -> DiagnosisReport:
        anchor = f"deployment #{deployment_index}"
        if deployment_index < 0:
            return DiagnosisReport(
                anchor, None, [], "Deployment index must be 0 or greater.", ReportStatus.NOT_FOUND
            )

        limit = max(deployment_index + 1, DEPLOYMENT_LOOKUP_MINIMUM)
        deployments = await self.arm.get_deployments(session.target, limit)
        if deployment_index >= len(deployments):
            return DiagnosisReport(
                anchor,
                None,
                [],
                f"Deployment #{deployment_index} not found: {len(deployments)} deployments in history.",
                ReportStatus.NOT_FOUND,
            )

        deployment = deployments[deployment_index]
        anchor = f"deployment {deployment.id}"
        if deployment.started_at is None:
            return DiagnosisReport(
                anchor,
                None,
                [],
                f"Deployment {deployment.id} has no recorded start time.",
                ReportStatus.NOT_FOUND,
                deployment,
            )

        window = TimeWindow.after(deployment.started_at, timedelta(minutes=window_minutes))
        workspace_id = await self.resolver.resolve(session)

        if not workspace_id:
            logger.info("No workspace for %s, diagnosing from container logs", session.target.app_name)
            logs = await self.kudu.get_recent_logs(session.target.app_name, FALLBACK_LINE_COUNT)
            return DiagnosisReport(
                anchor,
                window,
                [fallback_section(logs)],
                _summary(window),
                ReportStatus.FALLBACK,
                deployment,
            )

        platform, console, http = await self._run_window_queries(workspace_id, window)
        sections = [platform_section(platform), application_section(console), http_section(http)]
        return DiagnosisReport(anchor, window, sections, _summary(window), ReportStatus.COMPLETE, deployment)

    async def _run_window_queries(
        self, workspace_id: str, window: TimeWindow
    ) -> tuple[QueryResult, QueryResult, QueryResult]:
        queries = (
            platform_events_query(window),
            console_logs_query(window),
            first_requests_query(window, FIRST_REQUESTS_LIMIT),
        )
        if self.concurrent:
            platform, console, http = await asyncio.gather(
                *(self.log_analytics.query_window(workspace_id, q, window) for q in queries)
            )
            return platform, console, http

        results = []
        for query in queries:
            results.append(await self.log_analytics.query_window(workspace_id, query, window))
        return results[0], results[1], results[2]
