"""MCP tool provider: exposes Model Context Protocol servers as agent tools.

Supports STDIO servers through the official MCP Python SDK and HTTP servers
speaking JSON-RPC over ``httpx``.
"""

import json
import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import httpx

from reactloop.errors import RunCancelledError
from reactloop.runner.tool_provider import ToolDescriptor, ToolProvider, stringify_result

if TYPE_CHECKING:
    from reactloop.graph.context import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class MCPServerConfig:
    """Configuration for an MCP server connection."""

    name: str
    transport: Literal["stdio", "http"] = "stdio"

    # For STDIO transport
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    # For HTTP transport
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    enabled: bool = True
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "MCPServerConfig":
        transport = data.get("transport") or ("http" if data.get("url") else "stdio")
        return cls(
            name=data.get("name") or name,
            transport=transport,
            command=data.get("command"),
            args=list(data.get("args") or []),
            env=dict(data.get("env") or {}),
            cwd=data.get("cwd"),
            url=data.get("url"),
            headers=dict(data.get("headers") or {}),
            enabled=data.get("enabled", True) is not False,
            description=data.get("description", ""),
        )


def load_server_configs(path: str | Path) -> list[MCPServerConfig]:
    """
    Read MCP server definitions from a JSON file.

    Accepted layouts: ``{"mcpServers": {name: {...}}}``, ``{"servers": [...]}``
    or a bare ``{name: {...}}`` mapping. Disabled servers are skipped.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if "mcpServers" in data:
        entries = list(data["mcpServers"].items())
    elif "servers" in data:
        entries = [(s.get("name", f"server_{i}"), s) for i, s in enumerate(data["servers"])]
    else:
        entries = list(data.items())

    configs = [MCPServerConfig.from_dict(name, entry) for name, entry in entries]
    return [config for config in configs if config.enabled]


class MCPClient:
    """
    Async client for one MCP server.

    ``connect`` opens the transport and discovers tools; ``close`` tears the
    connection down in reverse order of setup.
    """

    def __init__(self, config: MCPServerConfig):
        self.config = config
        self._exit_stack: AsyncExitStack | None = None
        self._session = None
        self._http_client: httpx.AsyncClient | None = None
        self._tools: dict[str, ToolDescriptor] = {}
        self._connected = False
        self._request_id = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the MCP server and discover its tools."""
        if self._connected:
            return

        if self.config.transport == "stdio":
            await self._connect_stdio()
        elif self.config.transport == "http":
            await self._connect_http()
        else:
            raise ValueError(f"Unsupported transport: {self.config.transport}")

        await self._discover_tools()
        self._connected = True

    async def _connect_stdio(self) -> None:
        if not self.config.command:
            raise ValueError("command is required for STDIO transport")

        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client

        # Inherit the parent environment, then apply server-specific overrides
        server_params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env={**os.environ, **self.config.env},
            cwd=self.config.cwd,
        )

        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(
                stdio_client(server_params)
            )
            self._session = await stack.enter_async_context(
                ClientSession(read_stream, write_stream)
            )
            await self._session.initialize()
        except Exception as e:
            await stack.aclose()
            raise RuntimeError(f"Failed to connect to MCP server '{self.config.name}': {e}") from e

        self._exit_stack = stack
        logger.info(f"Connected to MCP server '{self.config.name}' via STDIO")

    async def _connect_http(self) -> None:
        if not self.config.url:
            raise ValueError("url is required for HTTP transport")

        self._http_client = httpx.AsyncClient(
            base_url=self.config.url,
            headers=self.config.headers,
            timeout=30.0,
        )
        try:
            response = await self._http_client.get("/health")
            response.raise_for_status()
            logger.info(f"Connected to MCP server '{self.config.name}' via HTTP at {self.config.url}")
        except httpx.HTTPError as e:
            # Not every server has a health endpoint
            logger.warning(f"Health check failed for MCP server '{self.config.name}': {e}")

    async def _rpc(self, method: str, params: dict[str, Any], timeout: float | None = None) -> dict:
        if not self._http_client:
            raise RuntimeError("HTTP client not initialized")

        self._request_id += 1
        response = await self._http_client.post(
            "/mcp/v1",
            json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        response.raise_for_status()
        data = response.json()
        if "error" in data:
            raise RuntimeError(f"MCP error: {data['error']}")
        return data.get("result", {})

    async def _discover_tools(self) -> None:
        if self.config.transport == "stdio":
            response = await self._session.list_tools()
            tools_list = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.inputSchema,
                }
                for tool in response.tools
            ]
        else:
            tools_list = (await self._rpc("tools/list", {})).get("tools", [])

        self._tools = {}
        for tool_data in tools_list:
            descriptor = ToolDescriptor(
                name=tool_data["name"],
                description=tool_data.get("description") or "",
                provider_name=self.config.name,
                input_schema=tool_data.get("inputSchema") or {},
            )
            self._tools[descriptor.name] = descriptor

        logger.info(
            f"Discovered {len(self._tools)} tools from '{self.config.name}': {list(self._tools)}"
        )

    def list_tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> str:
        """
        Invoke a tool on the MCP server.

        Server-side tool errors are returned as ``Error: ...`` text so the
        agent records them instead of retrying.
        """
        if not self._connected:
            await self.connect()

        if tool_name not in self._tools:
            raise ValueError(f"Unknown tool: {tool_name}")

        if self.config.transport == "stdio":
            result = await self._session.call_tool(tool_name, arguments=arguments)
            text = "\n".join(
                item.text for item in (result.content or []) if hasattr(item, "text")
            )
            if getattr(result, "isError", False):
                return f"Error: {text or 'tool reported an error'}"
            return text

        result = await self._rpc("tools/call", {"name": tool_name, "arguments": arguments}, None)
        content = result.get("content", [])
        if isinstance(content, list):
            texts = [item.get("text", "") for item in content if isinstance(item, dict)]
            text = "\n".join(t for t in texts if t) or stringify_result(content)
        else:
            text = stringify_result(content)
        if result.get("isError"):
            return f"Error: {text or 'tool reported an error'}"
        return text

    async def close(self) -> None:
        """Disconnect from the MCP server."""
        if self._exit_stack is not None:
            try:
                await self._exit_stack.aclose()
            except Exception as e:
                logger.warning(f"Error closing MCP session '{self.config.name}': {e}")
            finally:
                self._exit_stack = None
                self._session = None

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

        self._connected = False
        logger.info(f"Disconnected from MCP server '{self.config.name}'")


class MCPToolProvider(ToolProvider):
    """
    Aggregates several MCP servers into one tool catalogue.

    A server that fails to connect is logged and left out of the catalogue
    rather than failing discovery for the others.
    """

    def __init__(self, configs: list[MCPServerConfig]):
        self.clients: dict[str, MCPClient] = {config.name: MCPClient(config) for config in configs}

    @classmethod
    def from_file(cls, path: str | Path) -> "MCPToolProvider":
        return cls(load_server_configs(path))

    async def list_capabilities(self) -> dict[str, list[ToolDescriptor]]:
        catalogue: dict[str, list[ToolDescriptor]] = {}
        for name, client in self.clients.items():
            try:
                await client.connect()
            except Exception as e:
                logger.error(f"❌ MCP server '{name}' unavailable: {e}")
                continue
            catalogue[name] = client.list_tools()
        return catalogue

    async def invoke(
        self,
        provider_name: str,
        operation_name: str,
        parameters: dict[str, Any],
        cancellation: "CancellationToken | None" = None,
    ) -> str:
        client = self.clients.get(provider_name)
        if client is None:
            raise ValueError(f"Unknown MCP server: {provider_name}")
        call = client.call_tool(operation_name, parameters)
        try:
            if cancellation is not None:
                return await cancellation.guard(call, label=f"Tool {operation_name}")
            return await call
        except (ValueError, RunCancelledError):
            raise
        except Exception as e:
            raise RuntimeError(
                f"Failed to call tool {operation_name} on server {provider_name}: {e}"
            ) from e

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()

    async def __aenter__(self) -> "MCPToolProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
