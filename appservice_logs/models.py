"""Result types shared by the connectors, the analysis layer and the tools.

Every type serializes through ``to_dict()`` into JSON-safe data so the
rendering and transport layers never need backend-specific knowledge.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

# .NET emits up to 7 fractional digits; fromisoformat on 3.10 takes only 3 or 6
FRACTION_PATTERN = re.compile(r"\.(\d+)")


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Format as ``2024-01-15T10:30:00Z``."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into UTC.

    Raises:
        ValueError: if the text is not a recognizable timestamp
    """
    if isinstance(value, datetime):
        return to_utc(value)
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return to_utc(datetime.fromisoformat(text))


def jsonable(value: Any) -> Any:
    """Convert a scalar cell value into something ``json.dumps`` accepts."""
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@dataclass(frozen=True)
class TimeWindow:
    """A closed UTC interval ``[start, end]``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", to_utc(self.start))
        object.__setattr__(self, "end", to_utc(self.end))

    @classmethod
    def around(cls, instant: datetime, radius: timedelta) -> TimeWindow:
        return cls(instant - radius, instant + radius)

    @classmethod
    def after(cls, instant: datetime, length: timedelta) -> TimeWindow:
        return cls(instant, instant + length)

    @classmethod
    def last(cls, minutes: float, now: datetime | None = None) -> TimeWindow:
        end = now or datetime.now(timezone.utc)
        return cls(end - timedelta(minutes=minutes), end)

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def kql_filter(self, column: str = "TimeGenerated") -> str:
        return (
            f"{column} between (datetime('{format_instant(self.start)}') "
            f".. datetime('{format_instant(self.end)}'))"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_instant(self.start),
            "end": format_instant(self.end),
            "minutes": round(self.minutes, 2),
        }


class QueryOutcome(str, Enum):
    """How a bounded structured query ended."""

    OK = "ok"
    EMPTY = "empty"  # success, zero rows
    NO_TABLES = "no_tables"  # success, backend returned no table
    UNRECOGNIZED = "unrecognized"  # status neither success nor partial failure
    PARTIAL_FAILURE = "partial_failure"
    ERROR = "error"
    REJECTED = "rejected"  # guardrail or input validation, never dispatched
    NOT_CONFIGURED = "not_configured"  # no Log Analytics workspace


@dataclass
class QueryResult:
    """Outcome of one bounded Log Analytics query."""

    success: bool
    row_count: int
    truncated: bool
    columns: list[str]
    rows: list[dict[str, Any]]
    query_time_ms: int
    error: str | None = None
    outcome: QueryOutcome = QueryOutcome.OK
    query: str | None = None

    @classmethod
    def failure(
        cls,
        error: str,
        outcome: QueryOutcome = QueryOutcome.ERROR,
        query_time_ms: int = 0,
        query: str | None = None,
    ) -> QueryResult:
        return cls(
            success=False,
            row_count=0,
            truncated=False,
            columns=[],
            rows=[],
            query_time_ms=query_time_ms,
            error=error,
            outcome=outcome,
            query=query,
        )

    @classmethod
    def empty(
        cls,
        outcome: QueryOutcome = QueryOutcome.EMPTY,
        query_time_ms: int = 0,
        columns: list[str] | None = None,
        query: str | None = None,
    ) -> QueryResult:
        return cls(
            success=True,
            row_count=0,
            truncated=False,
            columns=columns or [],
            rows=[],
            query_time_ms=query_time_ms,
            outcome=outcome,
            query=query,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "row_count": self.row_count,
            "truncated": self.truncated,
            "columns": self.columns,
            "rows": [{k: jsonable(v) for k, v in row.items()} for row in self.rows],
            "query_time_ms": self.query_time_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class LogLine:
    """A normalized line of unstructured container or file log output."""

    timestamp: datetime
    content: str
    timestamp_parsed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_instant(self.timestamp),
            "content": self.content,
            "timestamp_parsed": self.timestamp_parsed,
        }


class LogSource(str, Enum):
    """Which Kudu tier produced a LogsResult."""

    CONTAINER = "container"
    APPLICATION_FILE = "application_file"


@dataclass
class LogsResult:
    """Outcome of an unstructured log fetch."""

    success: bool
    entries: list[LogLine] = field(default_factory=list)
    source: LogSource | None = None
    truncated: bool = False
    error: str | None = None
    fallback_error: str | None = None

    @property
    def used_fallback(self) -> bool:
        return self.source is LogSource.APPLICATION_FILE

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "source": self.source.value if self.source else None,
            "entry_count": len(self.entries),
            "entries": [e.to_dict() for e in self.entries],
            "truncated": self.truncated,
            "error": self.error,
            "fallback_error": self.fallback_error,
        }


@dataclass
class AppInfo:
    """App Service site metadata."""

    name: str
    resource_group: str
    location: str = "unknown"
    state: str = "unknown"
    default_host_name: str = ""
    kind: str = "app"
    sku: str | None = None
    linux_fx_version: str | None = None
    windows_fx_version: str | None = None
    http_logging_enabled: bool | None = None
    detailed_error_logging_enabled: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "resource_group": self.resource_group,
            "location": self.location,
            "state": self.state,
            "default_host_name": self.default_host_name,
            "kind": self.kind,
            "sku": self.sku,
            "linux_fx_version": self.linux_fx_version,
            "windows_fx_version": self.windows_fx_version,
            "http_logging_enabled": self.http_logging_enabled,
            "detailed_error_logging_enabled": self.detailed_error_logging_enabled,
        }


@dataclass
class DiagnosticInfo:
    """Where an app's diagnostic settings send its logs."""

    enabled: bool = False
    workspace_resource_id: str | None = None
    storage_account_id: str | None = None
    event_hub_id: str | None = None
    categories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "workspace_resource_id": self.workspace_resource_id,
            "storage_account_id": self.storage_account_id,
            "event_hub_id": self.event_hub_id,
            "categories": self.categories,
        }


# Kudu deployment status codes
DEPLOYMENT_FAILED = 3
DEPLOYMENT_SUCCEEDED = 4


@dataclass
class Deployment:
    """One entry of an app's deployment history."""

    id: str
    status: int | None = None
    message: str | None = None
    author: str | None = None
    deployer: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    active: bool = False

    @property
    def started_at(self) -> datetime | None:
        return self.start_time or self.end_time

    @property
    def succeeded(self) -> bool:
        return self.status == DEPLOYMENT_SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == DEPLOYMENT_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "message": self.message,
            "author": self.author,
            "deployer": self.deployer,
            "start_time": format_instant(self.start_time) if self.start_time else None,
            "end_time": format_instant(self.end_time) if self.end_time else None,
            "active": self.active,
        }
