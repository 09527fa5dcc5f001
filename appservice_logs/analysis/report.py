"""Diagnosis report structure and its markdown narrative."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import Deployment, TimeWindow, format_instant
from .classifier import Finding

MAX_LINE_CHARS = 200


class SectionStatus(str, Enum):
    POPULATED = "populated"
    NONE_FOUND = "none_found"
    UNAVAILABLE = "unavailable"


class ReportStatus(str, Enum):
    COMPLETE = "complete"  # all structured sources queried
    FALLBACK = "fallback"  # container logs only, reduced confidence
    NOT_FOUND = "not_found"  # no anchor event to diagnose


def _finding_line(finding: Finding) -> str:
    when = finding.timestamp.strftime("%H:%M:%S") if finding.timestamp else "--:--:--"
    text = finding.text.replace("\n", " ")
    if len(text) > MAX_LINE_CHARS:
        text = text[: MAX_LINE_CHARS - 3] + "..."
    return f"- `{when}` {text}"


@dataclass
class FindingGroup:
    """A labelled list of findings, shown up to ``limit`` entries."""

    label: str
    findings: list[Finding]
    limit: int = 5

    @property
    def shown(self) -> list[Finding]:
        return self.findings[: self.limit]

    @property
    def hidden_count(self) -> int:
        return max(0, len(self.findings) - self.limit)

    def render(self) -> list[str]:
        lines = [f"**{self.label}** ({len(self.findings)})"]
        lines.extend(_finding_line(f) for f in self.shown)
        if self.hidden_count:
            lines.append(f"- ... and {self.hidden_count} more")
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "count": len(self.findings),
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class ReportSection:
    title: str
    status: SectionStatus
    groups: list[FindingGroup] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def render(self) -> list[str]:
        lines = [f"### {self.title}"]
        if self.status is SectionStatus.UNAVAILABLE:
            lines.append("_Unavailable_")
        for note in self.notes:
            lines.append(note)
        for group in self.groups:
            if group.findings:
                lines.append("")
                lines.extend(group.render())
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status.value,
            "groups": [g.to_dict() for g in self.groups],
            "notes": self.notes,
        }


@dataclass
class DiagnosisReport:
    """Result of a deployment diagnosis, built fresh on every call."""

    anchor: str
    window: TimeWindow | None
    sections: list[ReportSection]
    summary: str
    status: ReportStatus = ReportStatus.COMPLETE
    deployment: Deployment | None = None

    @property
    def fallback(self) -> bool:
        return self.status is ReportStatus.FALLBACK

    def section(self, title: str) -> ReportSection | None:
        for section in self.sections:
            if section.title == title:
                return section
        return None

    @property
    def narrative(self) -> str:
        lines = [f"## Diagnosis: {self.anchor}"]
        if self.window is not None:
            lines.append(
                f"Window: {format_instant(self.window.start)} → {format_instant(self.window.end)}"
            )
        if self.fallback:
            lines.append(
                "\n> Log Analytics is not configured for this app. Showing recent container "
                "logs instead; these may not cover the deployment window (reduced confidence)."
            )
        for section in self.sections:
            lines.append("")
            lines.extend(section.render())
        lines.append("")
        lines.append("### Summary")
        lines.append(self.summary)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor": self.anchor,
            "status": self.status.value,
            "window": self.window.to_dict() if self.window else None,
            "deployment": self.deployment.to_dict() if self.deployment else None,
            "sections": [s.to_dict() for s in self.sections],
            "summary": self.summary,
            "narrative": self.narrative,
        }
