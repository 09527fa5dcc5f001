"""Kudu (SCM site) connector: container logs and log files.

Kudu is reachable for every App Service, with or without diagnostic
settings, so it backs every tool that must keep working when Log
Analytics is not configured.

Recent logs come from two tiers:
1. The newest docker (container) log stream
2. If that yields nothing, the newest file under /LogFiles/Application/

A failing second tier never hides the first tier's result.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from ..config import Settings
from ..errors import AppServiceLogsError, KuduError
from ..models import LogLine, LogSource, LogsResult, parse_instant
from .auth import AzureAuthManager

logger = logging.getLogger(__name__)

TIMESTAMP_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _entry_time(entry: dict[str, Any]) -> datetime:
    """Last-modified time of a docker log or VFS entry."""
    value = entry.get("lastUpdated") or entry.get("mtime")
    if not value:
        return EPOCH
    try:
        return parse_instant(str(value))
    except ValueError:
        return EPOCH


def _listing(body: Any, what: str) -> list[dict[str, Any]]:
    """Entries of a Kudu JSON listing; anything but a list is an error."""
    if not isinstance(body, list):
        raise KuduError(f"Unexpected {what} listing: {str(body)[:200]}")
    return [entry for entry in body if isinstance(entry, dict)]


def _leading_timestamp(line: str) -> datetime | None:
    match = TIMESTAMP_PATTERN.match(line)
    if not match:
        return None
    try:
        return datetime.fromisoformat(match.group(1).replace(" ", "T")).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_log_lines(
    content: str,
    max_lines: int,
    filter: str | None = None,
    now: datetime | None = None,
) -> list[LogLine]:
    """Split raw log text into LogLines.

    Blank lines are dropped and the case-insensitive ``filter`` applies
    before the last ``max_lines`` are kept, so a match is never lost to the
    tail cut. A leading ``YYYY-MM-DD HH:MM:SS`` timestamp is extracted when
    present, else the fetch time is used.
    """
    now = now or datetime.now(timezone.utc)
    lines = [line for line in content.splitlines() if line.strip()]
    if filter:
        needle = filter.lower()
        lines = [line for line in lines if needle in line.lower()]
    if max_lines > 0:
        lines = lines[-max_lines:]
    else:
        lines = []

    entries = []
    for line in lines:
        timestamp = _leading_timestamp(line)
        if timestamp:
            entries.append(LogLine(timestamp, line, timestamp_parsed=True))
        else:
            entries.append(LogLine(now, line))
    return entries


class KuduConnector:
    """Reads container and application logs through the Kudu REST API."""

    def __init__(
        self,
        auth: AzureAuthManager,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
    ):
        self.auth = auth
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=settings.kudu_timeout_seconds)

    def scm_url(self, app_name: str) -> str:
        return f"https://{app_name}.{self.settings.scm_host_suffix}"

    async def _fetch(self, url: str) -> httpx.Response:
        """GET with a bearer token; non-2xx responses raise KuduError."""
        token = await self.auth.get_kudu_token()
        try:
            response = await self.http.get(
                url,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise KuduError(f"Request to {url} failed: {e}") from e
        if response.is_error:
            raise KuduError(f"HTTP {response.status_code}: {response.reason_phrase}")
        return response

    async def list_container_logs(self, app_name: str) -> list[dict[str, Any]]:
        """List docker log descriptors (machineName, lastUpdated, size, href, path)."""
        url = f"{self.scm_url(app_name)}/api/logs/docker"
        try:
            return _listing((await self._fetch(url)).json(), "container log")
        except (KuduError, ValueError) as e:
            raise KuduError(f"Failed to list container logs: {e}") from e

    async def get_container_logs(self, app_name: str, max_lines: int = 100) -> LogsResult:
        """Fetch the most recently updated container log."""
        try:
            logs = await self.list_container_logs(app_name)
            if not logs:
                return LogsResult(success=True, source=LogSource.CONTAINER)

            recent = max(logs, key=_entry_time)
            response = await self._fetch(recent["href"])
        except (AppServiceLogsError, KeyError) as e:
            return LogsResult(success=False, source=LogSource.CONTAINER, error=str(e))

        return LogsResult(
            success=True,
            entries=parse_log_lines(response.text, max_lines),
            source=LogSource.CONTAINER,
        )

    async def list_log_files(self, app_name: str, path: str = "/LogFiles/") -> list[dict[str, Any]]:
        """List entries of a VFS directory."""
        url = f"{self.scm_url(app_name)}/api/vfs{path}"
        try:
            return _listing((await self._fetch(url)).json(), "log file")
        except (KuduError, ValueError) as e:
            raise KuduError(f"Failed to list log files: {e}") from e

    async def read_log_file(
        self, app_name: str, path: str, max_bytes: int | None = None
    ) -> tuple[str, bool]:
        """Read a VFS file, keeping only its last ``max_bytes``.

        Returns:
            (content, truncated)
        """
        url = path if path.startswith("http") else f"{self.scm_url(app_name)}/api/vfs{path}"
        max_bytes = max_bytes or self.settings.kudu_max_bytes
        try:
            data = (await self._fetch(url)).content
        except KuduError as e:
            raise KuduError(f"Failed to read log file: {e}") from e

        truncated = len(data) > max_bytes
        if truncated:
            data = data[-max_bytes:]
        return data.decode("utf-8", errors="replace"), truncated

    async def get_recent_logs(
        self,
        app_name: str,
        max_lines: int = 100,
        filter: str | None = None,
    ) -> LogsResult:
        """Get recent log lines, falling back from container logs to application log files.

        Never raises. The result's ``source`` says which tier produced it.
        """
        container_result = await self.get_container_logs(app_name, max_lines)

        if container_result.success and container_result.entries:
            if filter:
                needle = filter.lower()
                container_result.entries = [
                    e for e in container_result.entries if needle in e.content.lower()
                ]
            return container_result

        logger.info("No container logs for %s, trying application log files", app_name)
        try:
            files = await self.list_log_files(app_name, self.settings.application_log_path)
            files = [f for f in files if f.get("mime") != "inode/directory"]
            if not files:
                return LogsResult(success=True, source=LogSource.APPLICATION_FILE)

            newest = max(files, key=_entry_time)
            content, truncated = await self.read_log_file(
                app_name, newest.get("href") or f"{self.settings.application_log_path}{newest['name']}"
            )
        except (AppServiceLogsError, KeyError) as e:
            logger.warning("Application log fallback failed for %s: %s", app_name, e)
            container_result.fallback_error = str(e)
            return container_result

        return LogsResult(
            success=True,
            entries=parse_log_lines(content, max_lines, filter),
            source=LogSource.APPLICATION_FILE,
            truncated=truncated,
        )

    async def check_access(self, app_name: str) -> tuple[bool, str | None]:
        """Check whether the SCM site answers for this app."""
        try:
            await self._fetch(f"{self.scm_url(app_name)}/api/settings")
        except AppServiceLogsError as e:
            return False, str(e)
        return True, None

    async def close(self) -> None:
        await self.http.aclose()
