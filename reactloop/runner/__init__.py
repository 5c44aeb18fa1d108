"""Tool providers: in-process registry and MCP servers."""

from reactloop.runner.mcp_client import MCPClient, MCPServerConfig, MCPToolProvider
from reactloop.runner.tool_provider import (
    CompositeToolProvider,
    ToolDescriptor,
    ToolProvider,
    ToolRegistry,
)

__all__ = [
    "CompositeToolProvider",
    "MCPClient",
    "MCPServerConfig",
    "MCPToolProvider",
    "ToolDescriptor",
    "ToolProvider",
    "ToolRegistry",
]
