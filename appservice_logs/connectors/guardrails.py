"""Guardrails for user-supplied KQL queries.

Every structured query goes through a GuardrailEnforcer, which:
1. Rejects time ranges longer than the configured ceiling (no backend call)
2. Appends a row cap unless the query already limits its rows
3. Attaches a server-side timeout
4. Turns every backend outcome into a QueryResult instead of raising
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

from azure.monitor.query import LogsQueryStatus

from ..config import Settings
from ..models import QueryOutcome, QueryResult, TimeWindow

logger = logging.getLogger(__name__)

ROW_LIMIT_PATTERN = re.compile(r"\|\s*(limit|take)\b", re.IGNORECASE)


class QueryBackend(Protocol):
    """The part of ``azure.monitor.query.aio.LogsQueryClient`` we rely on."""

    async def query_workspace(self, workspace_id: str, query: str, **kwargs: Any) -> Any: ...


@dataclass(frozen=True)
class QueryGuardrails:
    """Limits applied to every structured query."""

    max_rows: int = 500
    max_time_range_days: int = 7
    timeout_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> QueryGuardrails:
        return cls(
            max_rows=settings.max_rows,
            max_time_range_days=settings.max_time_range_days,
            timeout_seconds=settings.query_timeout_seconds,
        )

    @property
    def max_time_range_minutes(self) -> int:
        return self.max_time_range_days * 24 * 60

    def check_time_range(self, minutes: float) -> str | None:
        """Return a rejection message if the range is empty or too long, else None."""
        if minutes <= 0:
            return "Time range must be a positive number of minutes."
        if minutes > self.max_time_range_minutes:
            return (
                f"Time range exceeds maximum of {self.max_time_range_days} days. "
                "Use a shorter time range."
            )
        return None

    def apply_row_limit(self, query: str) -> str:
        """Append ``| limit N`` unless the query already has a limit or take clause."""
        if ROW_LIMIT_PATTERN.search(query):
            return query
        return f"{query}\n| limit {self.max_rows}"

    def build_result(
        self,
        columns: list[str],
        rows: list[dict[str, Any]],
        query_time_ms: int,
        query: str | None = None,
    ) -> QueryResult:
        """Wrap returned rows, clamping them to the row cap."""
        rows = rows[: self.max_rows]
        return QueryResult(
            success=True,
            row_count=len(rows),
            truncated=len(rows) == self.max_rows,
            columns=columns,
            rows=rows,
            query_time_ms=query_time_ms,
            outcome=QueryOutcome.OK if rows else QueryOutcome.EMPTY,
            query=query,
        )


class GuardrailEnforcer:
    """Runs bounded queries against a Log Analytics workspace.

    Example:
        enforcer = GuardrailEnforcer(auth.get_logs_query_client(), QueryGuardrails())
        result = await enforcer.run(workspace_id, "AppServiceHTTPLogs", time_range_minutes=60)
        if not result.success:
            print(result.error)
    """

    def __init__(self, backend: QueryBackend, guardrails: QueryGuardrails | None = None):
        self.backend = backend
        self.guardrails = guardrails or QueryGuardrails()

    async def run(
        self,
        workspace_id: str,
        query: str,
        time_range_minutes: float = 60,
        window: TimeWindow | None = None,
    ) -> QueryResult:
        """Execute ``query`` over ``window`` (or the last ``time_range_minutes``).

        Never raises; failures come back as ``success=False`` results.
        """
        if window is not None:
            time_range_minutes = window.minutes

        rejection = self.guardrails.check_time_range(time_range_minutes)
        if rejection:
            return QueryResult.failure(rejection, QueryOutcome.REJECTED, query=query)

        limited_query = self.guardrails.apply_row_limit(query)
        window = window or TimeWindow.last(time_range_minutes)

        start_time = time.time()
        try:
            response = await self.backend.query_workspace(
                workspace_id,
                limited_query,
                timespan=(window.start, window.end),
                server_timeout=self.guardrails.timeout_seconds,
            )
        except Exception as e:
            query_time_ms = int((time.time() - start_time) * 1000)
            logger.warning("Log Analytics query failed after %dms: %s", query_time_ms, e)
            return QueryResult.failure(str(e), QueryOutcome.ERROR, query_time_ms, limited_query)

        query_time_ms = int((time.time() - start_time) * 1000)
        return self._to_result(response, query_time_ms, limited_query)

    def _to_result(self, response: Any, query_time_ms: int, query: str) -> QueryResult:
        status = getattr(response, "status", None)

        if status == LogsQueryStatus.SUCCESS:
            tables = getattr(response, "tables", None) or []
            if not tables:
                return QueryResult.empty(QueryOutcome.NO_TABLES, query_time_ms, query=query)
            table = tables[0]
            columns = [str(c) for c in table.columns]
            rows = [dict(zip(columns, row)) for row in table.rows]
            return self.guardrails.build_result(columns, rows, query_time_ms, query)

        if status == LogsQueryStatus.PARTIAL:
            partial_error = getattr(response, "partial_error", None)
            message = getattr(partial_error, "message", None) or "Unknown error"
            logger.warning("Partial query failure: %s", message)
            return QueryResult.failure(
                f"Partial query failure: {message}",
                QueryOutcome.PARTIAL_FAILURE,
                query_time_ms,
                query,
            )

        logger.info("Query finished with unrecognized status %r", status)
        return QueryResult.empty(QueryOutcome.UNRECOGNIZED, query_time_ms, query=query)
