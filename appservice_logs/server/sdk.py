"""In-process SDK MCP server for the Claude Agent SDK.

Usage:
    executor = build_executor(load_settings())
    options = ClaudeAgentOptions(
        mcp_servers={SDK_SERVER_NAME: create_sdk_server(executor)},
        allowed_tools=allowed_tools(),
    )
"""

from __future__ import annotations

import logging
from typing import Any

from claude_agent_sdk import create_sdk_mcp_server, tool

from ..errors import AppServiceLogsError
from .tools import TOOLS, ToolExecutor

logger = logging.getLogger(__name__)

SDK_SERVER_NAME = "appservice-logs"
SDK_SERVER_VERSION = "0.1.0"


def allowed_tools() -> list[str]:
    """Tool pattern to pass as ClaudeAgentOptions(allowed_tools=...)."""
    return [f"mcp__{SDK_SERVER_NAME}__*"]


def _make_sdk_tool_handler(executor: ToolExecutor, name: str):
    """Create a handler that routes one tool through the executor."""

    async def handler(args: dict) -> dict[str, Any]:
        try:
            text = await executor.execute(name, args)
        except AppServiceLogsError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return {
                "content": [{"type": "text", "text": f"Error: {e}"}],
                "is_error": True,
            }
        return {"content": [{"type": "text", "text": text}]}

    return handler


def create_sdk_server(executor: ToolExecutor):
    """Expose every tool in TOOLS as an SDK MCP server."""
    sdk_tools = [
        tool(t.name, t.description or "", t.inputSchema)(_make_sdk_tool_handler(executor, t.name))
        for t in TOOLS
    ]
    return create_sdk_mcp_server(
        name=SDK_SERVER_NAME,
        version=SDK_SERVER_VERSION,
        tools=sdk_tools,
    )
