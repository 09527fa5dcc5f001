"""MCP server over stdio.

Run:
  appservice-logs serve

Exposes every tool in TOOLS plus one resource describing the current
App Service context.
"""

from __future__ import annotations

import json
import logging

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from ..errors import AppServiceLogsError
from .tools import TOOLS, ToolExecutor

logger = logging.getLogger(__name__)

SERVER_NAME = "appservice-logs-mcp"
RESOURCE_MIME_TYPE = "application/json"


def context_uri(subscription_id: str, resource_group: str, app_name: str) -> str:
    return f"appservice://{subscription_id}/{resource_group}/{app_name}"


def create_server(executor: ToolExecutor) -> Server:
    """Build an MCP Server whose handlers delegate to ``executor``."""
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        logger.info("Tool called: %s", name)
        if arguments:
            logger.debug("Arguments: %s", json.dumps(arguments, default=str))
        try:
            text = await executor.execute(name, arguments or {})
        except AppServiceLogsError as e:
            logger.warning("Tool %s failed: %s", name, e)
            raise
        return [TextContent(type="text", text=text)]

    @app.list_resources()
    async def list_resources() -> list[Resource]:
        session = executor.store.get()
        if session is None:
            return []
        target = session.target
        return [
            Resource(
                uri=context_uri(target.subscription_id, target.resource_group, target.app_name),
                name=f"App Service: {target.app_name}",
                description=f"Current app context: {target.app_name} in {target.resource_group}",
                mimeType=RESOURCE_MIME_TYPE,
            )
        ]

    @app.read_resource()
    async def read_resource(uri) -> str:
        session = executor.store.get()
        if session is None:
            return json.dumps({"error": "No app context configured"})
        return json.dumps(session.to_dict(), indent=2)

    return app


async def run_stdio(executor: ToolExecutor) -> None:
    """Serve until stdin closes, then release the executor's clients."""
    app = create_server(executor)
    logger.info("Starting %s on stdio", SERVER_NAME)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(read_stream, write_stream, app.create_initialization_options())
    finally:
        await executor.aclose()
