"""Analysis layer: event classification and multi-source correlation.

- **classifier**: Tags log lines and HTTP rows with event categories
- **report**: Diagnosis report sections and narrative
- **correlation**: Timestamp correlation and deployment diagnosis

Usage:
    from appservice_logs.analysis import CorrelationOrchestrator

    orchestrator = CorrelationOrchestrator(log_analytics, kudu, arm, resolver)
    report = await orchestrator.diagnose_deployment(session)
    print(report.narrative)
"""

from .classifier import (
    KEYWORD_TABLE,
    EventCategory,
    Finding,
    LineKind,
    classify_http_row,
    classify_log_line,
    classify_row,
    classify_status,
    classify_text,
    select,
)
from .correlation import CorrelationOrchestrator, CorrelationResult
from .report import DiagnosisReport, FindingGroup, ReportSection, ReportStatus, SectionStatus

__all__ = [
    "KEYWORD_TABLE",
    "EventCategory",
    "Finding",
    "LineKind",
    "classify_http_row",
    "classify_log_line",
    "classify_row",
    "classify_status",
    "classify_text",
    "select",
    "CorrelationOrchestrator",
    "CorrelationResult",
    "DiagnosisReport",
    "FindingGroup",
    "ReportSection",
    "ReportStatus",
    "SectionStatus",
]
