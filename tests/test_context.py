"""Tests for the context store and workspace resolver."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from appservice_logs.context import ContextStore, SessionContext, Target, WorkspaceResolver
from appservice_logs.errors import ConfigurationError
from appservice_logs.models import DiagnosticInfo

ENV = {
    "AZURE_SUBSCRIPTION_ID": "sub-env",
    "AZURE_RESOURCE_GROUP": "rg-env",
    "AZURE_APP_NAME": "app-env",
}


class TestTarget:
    """Tests for Target."""

    def test_resource_id(self, target):
        assert target.resource_id == (
            "/subscriptions/sub-1/resourceGroups/rg-1/providers/Microsoft.Web/sites/my-app"
        )

    def test_from_env(self):
        target = Target.from_env(ENV)
        assert target == Target("sub-env", "rg-env", "app-env")

    def test_from_env_requires_all_three(self):
        partial = {k: v for k, v in ENV.items() if k != "AZURE_APP_NAME"}
        assert Target.from_env(partial) is None


class TestContextStore:
    """Tests for ContextStore."""

    def test_empty(self):
        store = ContextStore(environ={})
        assert store.get() is None
        with pytest.raises(ConfigurationError, match="set_context"):
            store.require()

    def test_falls_back_to_environment(self):
        session = ContextStore(environ=ENV).require()
        assert session.target.app_name == "app-env"

    def test_set_replaces_and_drops_cache(self, target):
        store = ContextStore(environ=ENV)
        store.get().update_diagnostics("guid", True)

        session = store.set(target)
        assert store.get() is session
        assert session.target == target
        assert session.workspace_id is None

    def test_stores_are_independent(self, target):
        a = ContextStore(environ={})
        b = ContextStore(environ={})
        a.set(target)
        assert b.get() is None

    def test_clear(self, target):
        store = ContextStore(environ={})
        store.set(target)
        store.clear()
        assert store.get() is None


def make_arm(diag: DiagnosticInfo, workspace_id: str | None = "guid-1"):
    arm = MagicMock()
    arm.get_diagnostic_settings = AsyncMock(return_value=diag)
    arm.resolve_workspace_id = AsyncMock(return_value=workspace_id)
    return arm


class TestWorkspaceResolver:
    """Tests for resolving and caching the workspace GUID."""

    def test_resolves_and_caches(self, session):
        arm = make_arm(DiagnosticInfo(enabled=True, workspace_resource_id="/w/workspaces/x"))
        resolver = WorkspaceResolver(arm)

        assert asyncio.run(resolver.resolve(session)) == "guid-1"
        assert session.workspace_id == "guid-1"
        assert session.diagnostics_enabled is True

        assert asyncio.run(resolver.resolve(session)) == "guid-1"
        assert arm.get_diagnostic_settings.await_count == 1
        assert arm.resolve_workspace_id.await_count == 1

    def test_cached_identifier_skips_lookups(self, target):
        arm = make_arm(DiagnosticInfo())
        session = SessionContext(target, workspace_id="cached")
        assert asyncio.run(WorkspaceResolver(arm).resolve(session)) == "cached"
        arm.get_diagnostic_settings.assert_not_awaited()

    def test_not_configured(self, session):
        arm = make_arm(DiagnosticInfo(enabled=False))
        result = asyncio.run(WorkspaceResolver(arm).resolve(session))

        assert result is None
        assert session.workspace_id is None
        assert session.diagnostics_enabled is False
        arm.resolve_workspace_id.assert_not_awaited()

    def test_not_configured_is_rechecked(self, session):
        arm = make_arm(DiagnosticInfo(enabled=False))
        resolver = WorkspaceResolver(arm)
        asyncio.run(resolver.resolve(session))
        asyncio.run(resolver.resolve(session))
        assert arm.get_diagnostic_settings.await_count == 2

    def test_unresolvable_workspace(self, session):
        arm = make_arm(DiagnosticInfo(enabled=True, workspace_resource_id="/w/workspaces/x"), None)
        assert asyncio.run(WorkspaceResolver(arm).resolve(session)) is None
        assert session.workspace_id is None

    def test_refresh_rereads(self, target):
        diag = DiagnosticInfo(enabled=True, workspace_resource_id="/w/workspaces/x")
        arm = make_arm(diag, "guid-new")
        session = SessionContext(target, workspace_id="guid-old", diagnostics_enabled=True)

        result = asyncio.run(WorkspaceResolver(arm).refresh(session))
        assert result is diag
        assert session.workspace_id == "guid-new"

    def test_concurrent_resolutions_converge(self, session):
        arm = make_arm(DiagnosticInfo(enabled=True, workspace_resource_id="/w/workspaces/x"))
        resolver = WorkspaceResolver(arm)

        async def resolve_twice():
            return await asyncio.gather(resolver.resolve(session), resolver.resolve(session))

        assert asyncio.run(resolve_twice()) == ["guid-1", "guid-1"]
        assert session.workspace_id == "guid-1"
