"""Session context: which App Service the tools are pointed at.

A ContextStore is owned by one tool executor (one logical session) and
hands out a SessionContext that is passed explicitly to every operation.
The session also caches the Log Analytics workspace GUID once the
WorkspaceResolver has discovered it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from .errors import ConfigurationError
from .models import DiagnosticInfo

if TYPE_CHECKING:
    from .connectors.arm import ArmClient

logger = logging.getLogger(__name__)

ENV_SUBSCRIPTION_ID = "AZURE_SUBSCRIPTION_ID"
ENV_RESOURCE_GROUP = "AZURE_RESOURCE_GROUP"
ENV_APP_NAME = "AZURE_APP_NAME"

NO_CONTEXT_MESSAGE = (
    "No App Service configured. Use the set_context tool or set environment variables:\n"
    f"  {ENV_SUBSCRIPTION_ID}\n"
    f"  {ENV_RESOURCE_GROUP}\n"
    f"  {ENV_APP_NAME}"
)


@dataclass(frozen=True)
class Target:
    """The monitored App Service."""

    subscription_id: str
    resource_group: str
    app_name: str

    @property
    def resource_id(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.Web/sites/{self.app_name}"
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Target | None:
        """Build a target when all three environment variables are set."""
        environ = os.environ if environ is None else environ
        subscription_id = environ.get(ENV_SUBSCRIPTION_ID)
        resource_group = environ.get(ENV_RESOURCE_GROUP)
        app_name = environ.get(ENV_APP_NAME)
        if subscription_id and resource_group and app_name:
            return cls(subscription_id, resource_group, app_name)
        return None

    def to_dict(self) -> dict[str, str]:
        return {
            "subscription_id": self.subscription_id,
            "resource_group": self.resource_group,
            "app_name": self.app_name,
        }


@dataclass
class SessionContext:
    """A target plus the diagnostic details cached for it."""

    target: Target
    workspace_id: str | None = None
    diagnostics_enabled: bool | None = None

    def update_diagnostics(self, workspace_id: str | None, enabled: bool | None) -> None:
        self.workspace_id = workspace_id
        self.diagnostics_enabled = enabled

    def invalidate(self) -> None:
        """Forget cached diagnostics so the next resolve looks them up again."""
        self.workspace_id = None
        self.diagnostics_enabled = None

    def to_dict(self) -> dict[str, object]:
        return {
            **self.target.to_dict(),
            "workspace_id": self.workspace_id,
            "diagnostics_enabled": self.diagnostics_enabled,
        }


class ContextStore:
    """Holds the current SessionContext for one tool session.

    Example:
        store = ContextStore()
        store.set(Target("sub", "rg", "my-app"))
        session = store.require()
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ
        self._session: SessionContext | None = None

    def get(self) -> SessionContext | None:
        """Return the current session, creating it from the environment on first use."""
        if self._session is None:
            target = Target.from_env(self._environ)
            if target is not None:
                self._session = SessionContext(target)
        return self._session

    def set(self, target: Target) -> SessionContext:
        """Replace the current target. Any cached workspace is dropped with the old session."""
        self._session = SessionContext(target)
        logger.info("Context set to %s in %s", target.app_name, target.resource_group)
        return self._session

    def require(self) -> SessionContext:
        session = self.get()
        if session is None:
            raise ConfigurationError(NO_CONTEXT_MESSAGE)
        return session

    def clear(self) -> None:
        self._session = None


class WorkspaceResolver:
    """Finds the Log Analytics workspace GUID for a session's target.

    A positive result is cached on the session; a missing diagnostic
    setting is not, so enabling one later is picked up on the next call.
    Concurrent resolutions for the same target converge on the same GUID,
    so no locking is needed.
    """

    def __init__(self, arm: ArmClient):
        self.arm = arm

    async def resolve(self, session: SessionContext) -> str | None:
        if session.workspace_id:
            return session.workspace_id

        diag = await self.arm.get_diagnostic_settings(session.target)
        return await self._resolve_from(session, diag)

    async def refresh(self, session: SessionContext) -> DiagnosticInfo:
        """Re-read diagnostic settings, update the cache and return what was read."""
        session.invalidate()
        diag = await self.arm.get_diagnostic_settings(session.target)
        await self._resolve_from(session, diag)
        return diag

    async def _resolve_from(self, session: SessionContext, diag: DiagnosticInfo) -> str | None:
        if not diag.enabled or not diag.workspace_resource_id:
            session.update_diagnostics(None, False)
            logger.info("No Log Analytics destination configured for %s", session.target.app_name)
            return None

        workspace_id = await self.arm.resolve_workspace_id(diag.workspace_resource_id)
        if workspace_id:
            session.update_diagnostics(workspace_id, True)
            logger.info("Resolved workspace %s for %s", workspace_id, session.target.app_name)
        else:
            logger.warning("Could not resolve workspace %s", diag.workspace_resource_id)
        return workspace_id
