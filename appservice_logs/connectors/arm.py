"""ARM client: App Service metadata, diagnostic settings and deployments.

Talks to the Azure Resource Manager REST API directly with httpx using a
management-scope bearer token.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from ..config import Settings
from ..context import Target
from ..errors import ArmError
from ..models import AppInfo, Deployment, DiagnosticInfo, parse_instant
from .auth import AzureAuthManager

logger = logging.getLogger(__name__)

WEB_API_VERSION = "2023-12-01"
DIAGNOSTIC_SETTINGS_API_VERSION = "2021-05-01-preview"
WORKSPACE_API_VERSION = "2022-10-01"

RESOURCE_GROUP_PATTERN = re.compile(r"/resourceGroups/([^/]+)", re.IGNORECASE)
WORKSPACE_PATTERN = re.compile(r"/workspaces/([^/]+)", re.IGNORECASE)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return parse_instant(str(value))
    except ValueError:
        return None


def _values(body: dict[str, Any]) -> list[dict[str, Any]]:
    """Items of an ARM list response; a non-list ``value`` is malformed."""
    value = body.get("value", [])
    if not isinstance(value, list):
        raise ValueError(f"Unexpected ARM list response: {str(body)[:200]}")
    return [item for item in value if isinstance(item, dict)]


class ArmClient:
    """Read-only ARM operations for App Service apps."""

    def __init__(
        self,
        auth: AzureAuthManager,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
    ):
        self.auth = auth
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=settings.arm_timeout_seconds)

    async def _get(self, url: str, api_version: str | None = None) -> dict[str, Any]:
        """GET an ARM path (or absolute URL) and return the JSON body."""
        if url.startswith("/"):
            url = f"{self.settings.arm_endpoint}{url}"
        params = {"api-version": api_version} if api_version else None
        token = await self.auth.get_management_token()
        response = await self.http.get(
            url,
            params=params,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected ARM response from {url}")
        return body

    async def _get_paged(self, path: str, api_version: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Collect ``value`` items across ``nextLink`` pages."""
        items: list[dict[str, Any]] = []
        body = await self._get(path, api_version)
        while True:
            items.extend(_values(body))
            next_link = body.get("nextLink")
            if not next_link or (limit is not None and len(items) >= limit):
                break
            body = await self._get(next_link)
        return items[:limit] if limit is not None else items

    async def get_app_info(self, target: Target) -> AppInfo:
        """Get site details and runtime configuration.

        Raises:
            ArmError: if the site or its configuration cannot be read
        """
        try:
            site = await self._get(target.resource_id, WEB_API_VERSION)
            config = await self._get(f"{target.resource_id}/config/web", WEB_API_VERSION)
        except (httpx.HTTPError, ValueError) as e:
            raise ArmError(
                f"Failed to get app info: {e}\n"
                "Make sure you have Reader access to the App Service."
            ) from e

        props = site.get("properties", {})
        site_config = config.get("properties", {})
        return AppInfo(
            name=site.get("name") or target.app_name,
            resource_group=target.resource_group,
            location=site.get("location") or "unknown",
            state=props.get("state") or "unknown",
            default_host_name=props.get("defaultHostName") or "",
            kind=site.get("kind") or "app",
            sku=props.get("sku"),
            linux_fx_version=site_config.get("linuxFxVersion") or None,
            windows_fx_version=site_config.get("windowsFxVersion") or None,
            http_logging_enabled=site_config.get("httpLoggingEnabled"),
            detailed_error_logging_enabled=site_config.get("detailedErrorLoggingEnabled"),
        )

    async def list_apps(self, subscription_id: str, resource_group: str | None = None) -> list[AppInfo]:
        """List App Service apps in a subscription, optionally one resource group."""
        if resource_group:
            path = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}/providers/Microsoft.Web/sites"
        else:
            path = f"/subscriptions/{subscription_id}/providers/Microsoft.Web/sites"

        try:
            sites = await self._get_paged(path, WEB_API_VERSION)
        except (httpx.HTTPError, ValueError) as e:
            raise ArmError(f"Failed to list apps: {e}") from e

        apps = []
        for site in sites:
            rg = resource_group
            if not rg:
                match = RESOURCE_GROUP_PATTERN.search(site.get("id", ""))
                rg = match.group(1) if match else "unknown"
            props = site.get("properties", {})
            apps.append(
                AppInfo(
                    name=site.get("name") or "unknown",
                    resource_group=rg,
                    location=site.get("location") or "unknown",
                    state=props.get("state") or "unknown",
                    default_host_name=props.get("defaultHostName") or "",
                    kind=site.get("kind") or "app",
                )
            )
        return apps

    async def get_diagnostic_settings(self, target: Target) -> DiagnosticInfo:
        """Read the app's diagnostic settings.

        An app without diagnostic settings (or one we cannot read them for)
        is reported as not enabled.
        """
        path = f"{target.resource_id}/providers/Microsoft.Insights/diagnosticSettings"
        try:
            entries = _values(await self._get(path, DIAGNOSTIC_SETTINGS_API_VERSION))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not read diagnostic settings for %s: %s", target.app_name, e)
            return DiagnosticInfo()

        info = DiagnosticInfo()
        for setting in entries:
            props = setting.get("properties", {})
            if props.get("workspaceId"):
                info.enabled = True
                info.workspace_resource_id = props["workspaceId"]
            if props.get("storageAccountId"):
                info.storage_account_id = props["storageAccountId"]
            if props.get("eventHubAuthorizationRuleId"):
                info.event_hub_id = props["eventHubAuthorizationRuleId"]
            for log in props.get("logs", []):
                category = log.get("category") or log.get("categoryGroup")
                if log.get("enabled") and category and category not in info.categories:
                    info.categories.append(category)
        return info

    async def get_deployments(self, target: Target, limit: int = 10) -> list[Deployment]:
        """Get deployment history, most recent first. Errors yield an empty list."""
        path = f"{target.resource_id}/deployments"
        try:
            items = await self._get_paged(path, WEB_API_VERSION, limit=limit)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not list deployments for %s: %s", target.app_name, e)
            return []

        deployments = []
        for item in items:
            props = item.get("properties", {})
            deployments.append(
                Deployment(
                    id=item.get("name") or item.get("id", ""),
                    status=props.get("status"),
                    message=props.get("message"),
                    author=props.get("author"),
                    deployer=props.get("deployer"),
                    start_time=_parse_time(props.get("start_time")),
                    end_time=_parse_time(props.get("end_time")),
                    active=bool(props.get("active")),
                )
            )

        # Most recent first, regardless of the order the API used
        deployments.sort(
            key=lambda d: d.started_at or EPOCH,
            reverse=True,
        )
        return deployments

    async def resolve_workspace_id(self, workspace_resource_id: str) -> str | None:
        """Translate a workspace resource ID into the GUID the query API expects.

        Format: /subscriptions/{sub}/resourceGroups/{rg}/providers/
        Microsoft.OperationalInsights/workspaces/{name}
        """
        if not WORKSPACE_PATTERN.search(workspace_resource_id):
            return None

        try:
            body = await self._get(workspace_resource_id, WORKSPACE_API_VERSION)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not resolve workspace %s: %s", workspace_resource_id, e)
            return None

        return body.get("properties", {}).get("customerId") or None

    async def close(self) -> None:
        await self.http.aclose()
