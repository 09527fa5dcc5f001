"""CLI commands for appservice-logs."""

import asyncio
from typing import Any

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from .config import Settings, configure_logging, load_settings
from .context import Target
from .errors import AppServiceLogsError
from .server.stdio import run_stdio
from .server.tools import TOOLS, ToolExecutor, build_executor

console = Console()


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="YAML settings file")
@click.option("--subscription", help="Azure subscription ID (overrides AZURE_SUBSCRIPTION_ID)")
@click.option("--resource-group", help="Resource group (overrides AZURE_RESOURCE_GROUP)")
@click.option("--app", "app_name", help="App Service name (overrides AZURE_APP_NAME)")
@click.option("--log-level", help="Logging level (default from settings)")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    subscription: str | None,
    resource_group: str | None,
    app_name: str | None,
    log_level: str | None,
) -> None:
    """App Service Logs - Query and correlate Azure App Service logs."""
    settings = load_settings(config_path)
    configure_logging(log_level or settings.log_level)

    overrides = [subscription, resource_group, app_name]
    if any(overrides) and not all(overrides):
        raise click.UsageError("--subscription, --resource-group and --app must be given together")

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["target"] = Target(subscription, resource_group, app_name) if all(overrides) else None


def _executor(ctx: click.Context) -> ToolExecutor:
    executor = build_executor(ctx.obj["settings"])
    if ctx.obj["target"] is not None:
        executor.store.set(ctx.obj["target"])
    return executor


def _run_tool(ctx: click.Context, name: str, arguments: dict[str, Any]) -> None:
    """Run one tool against a fresh executor and print its markdown."""

    async def run() -> str:
        executor = _executor(ctx)
        try:
            return await executor.execute(name, arguments)
        finally:
            await executor.aclose()

    try:
        text = asyncio.run(run())
    except AppServiceLogsError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    console.print(Markdown(text))


@main.command("serve")
@click.option("--concurrent", is_flag=True, help="Run deployment diagnosis queries concurrently")
@click.pass_context
def serve(ctx: click.Context, concurrent: bool) -> None:
    """Run the MCP server on stdio."""
    executor = build_executor(ctx.obj["settings"], concurrent=concurrent)
    if ctx.obj["target"] is not None:
        executor.store.set(ctx.obj["target"])
    asyncio.run(run_stdio(executor))


@main.command("tools")
def list_tools() -> None:
    """List available tools."""
    table = Table(title=f"Tools ({len(TOOLS)} total)")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Arguments", style="green")
    table.add_column("Description")

    for t in TOOLS:
        properties = t.inputSchema.get("properties", {})
        required = set(t.inputSchema.get("required", []))
        args = ", ".join(f"{name}*" if name in required else name for name in properties)
        table.add_row(t.name, args or "-", t.description or "")

    console.print(table)


@main.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective settings as YAML."""
    settings: Settings = ctx.obj["settings"]
    console.print(settings.to_yaml())


@main.command("context")
@click.pass_context
def show_context(ctx: click.Context) -> None:
    """Show the configured App Service and its Log Analytics status."""
    _run_tool(ctx, "get_context", {})
    if ctx.obj["target"] is not None or _has_env_target():
        _run_tool(ctx, "check_diagnostics", {})


def _has_env_target() -> bool:
    return Target.from_env() is not None


@main.command("query")
@click.argument("kql")
@click.option("-m", "--minutes", default=60, type=float, help="Time range in minutes (max 10080)")
@click.pass_context
def query(ctx: click.Context, kql: str, minutes: float) -> None:
    """Run a KQL query against the app's Log Analytics workspace."""
    _run_tool(ctx, "query_logs", {"query": kql, "time_range_minutes": minutes})


@main.command("logs")
@click.option("-n", "--lines", default=100, type=int, help="Maximum lines to return")
@click.option("-f", "--filter", "text_filter", help="Only lines containing this text")
@click.pass_context
def logs(ctx: click.Context, lines: int, text_filter: str | None) -> None:
    """Show recent container logs from Kudu."""
    _run_tool(ctx, "get_recent_logs", {"max_lines": lines, "filter": text_filter})


@main.command("correlate")
@click.argument("timestamp")
@click.option("-w", "--window", default=5, type=float, help="Minutes before and after the timestamp")
@click.pass_context
def correlate(ctx: click.Context, timestamp: str, window: float) -> None:
    """Show every event around TIMESTAMP (e.g. 2024-01-15T10:30:00Z)."""
    _run_tool(ctx, "correlate_events", {"timestamp": timestamp, "window_minutes": window})


@main.command("diagnose")
@click.option("-i", "--index", default=0, type=int, help="Deployment to analyze, 0 = most recent")
@click.option("-w", "--window", default=10, type=float, help="Minutes after the deployment start")
@click.pass_context
def diagnose(ctx: click.Context, index: int, window: float) -> None:
    """Diagnose what happened right after a deployment."""
    _run_tool(ctx, "diagnose_deployment", {"deployment_index": index, "window_minutes": window})


if __name__ == "__main__":
    main()
