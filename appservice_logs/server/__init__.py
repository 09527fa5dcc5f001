"""Tool surface: definitions, execution and transports.

- **tools**: Tool schemas and the per-session ToolExecutor
- **stdio**: MCP server over stdin/stdout
- **sdk**: In-process SDK MCP server for the Claude Agent SDK
"""

from .sdk import allowed_tools, create_sdk_server
from .stdio import create_server, run_stdio
from .tools import TOOL_NAMES, TOOLS, ToolExecutor, ToolStats, build_executor

__all__ = [
    "allowed_tools",
    "create_sdk_server",
    "create_server",
    "run_stdio",
    "TOOL_NAMES",
    "TOOLS",
    "ToolExecutor",
    "ToolStats",
    "build_executor",
]
