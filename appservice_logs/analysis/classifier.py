"""Event classification for log lines and HTTP rows.

Tags are assigned from an explicit keyword table per line kind. Matching
is case-insensitive substring matching and tags are not exclusive: a
line such as "Container probe failed" is both ``startup`` and ``error``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from ..models import LogLine, format_instant, jsonable, parse_instant


class EventCategory(str, Enum):
    ERROR = "error"
    STARTUP = "startup"
    TERMINATION = "termination"
    TRAFFIC_SUCCESS = "traffic-success"
    TRAFFIC_ERROR = "traffic-error"


class LineKind(str, Enum):
    """Which keyword table applies to a line."""

    PLATFORM = "platform"  # platform events and raw container output
    APPLICATION = "application"  # application stdout/stderr


STARTUP_KEYWORDS = ("start", "probe", "running")
TERMINATION_KEYWORDS = ("terminat", "stop")

KEYWORD_TABLE: dict[LineKind, dict[EventCategory, tuple[str, ...]]] = {
    LineKind.PLATFORM: {
        EventCategory.ERROR: ("error", "fail", "crash", "oom", "memory"),
        EventCategory.STARTUP: STARTUP_KEYWORDS,
        EventCategory.TERMINATION: TERMINATION_KEYWORDS,
    },
    LineKind.APPLICATION: {
        EventCategory.ERROR: ("error", "exception", "fail"),
        EventCategory.STARTUP: STARTUP_KEYWORDS,
        EventCategory.TERMINATION: TERMINATION_KEYWORDS,
    },
}

SERVER_ERROR_STATUS = 500
CLIENT_ERROR_STATUS = 400


def classify_text(text: str | None, kind: LineKind = LineKind.PLATFORM) -> frozenset[EventCategory]:
    """Return every category whose keywords occur in ``text``."""
    if not text:
        return frozenset()
    lowered = text.lower()
    return frozenset(
        category
        for category, keywords in KEYWORD_TABLE[kind].items()
        if any(keyword in lowered for keyword in keywords)
    )


def classify_status(status: Any) -> frozenset[EventCategory]:
    """Tag an HTTP status: >= 500 is traffic-error, < 400 is traffic-success."""
    try:
        code = int(status)
    except (TypeError, ValueError):
        return frozenset()
    if code >= SERVER_ERROR_STATUS:
        return frozenset({EventCategory.TRAFFIC_ERROR})
    if code < CLIENT_ERROR_STATUS:
        return frozenset({EventCategory.TRAFFIC_SUCCESS})
    return frozenset()


def _row_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return parse_instant(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Finding:
    """A log line or query row with its category tags."""

    timestamp: datetime | None
    text: str
    categories: frozenset[EventCategory]
    source: str
    row: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def has(self, category: EventCategory) -> bool:
        return category in self.categories

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_instant(self.timestamp) if self.timestamp else None,
            "text": self.text,
            "categories": sorted(c.value for c in self.categories),
            "source": self.source,
            "row": {k: jsonable(v) for k, v in self.row.items()},
        }


def classify_row(
    row: Mapping[str, Any],
    text_field: str,
    kind: LineKind,
    source: str,
    time_field: str = "TimeGenerated",
) -> Finding:
    """Classify a structured row by the text in ``text_field``."""
    text = str(row.get(text_field) or "")
    return Finding(
        timestamp=_row_time(row.get(time_field)),
        text=text,
        categories=classify_text(text, kind),
        source=source,
        row=dict(row),
    )


def classify_http_row(row: Mapping[str, Any], source: str = "http") -> Finding:
    """Classify an AppServiceHTTPLogs row by its ScStatus."""
    text = " ".join(
        str(part) for part in (row.get("CsMethod"), row.get("CsUriStem"), row.get("ScStatus")) if part is not None
    )
    return Finding(
        timestamp=_row_time(row.get("TimeGenerated")),
        text=text,
        categories=classify_status(row.get("ScStatus")),
        source=source,
        row=dict(row),
    )


def classify_log_line(line: LogLine, kind: LineKind = LineKind.PLATFORM, source: str = "container") -> Finding:
    return Finding(
        timestamp=line.timestamp,
        text=line.content,
        categories=classify_text(line.content, kind),
        source=source,
    )


def select(findings: Iterable[Finding], category: EventCategory) -> list[Finding]:
    """Findings carrying ``category``, in their original order."""
    return [f for f in findings if f.has(category)]
