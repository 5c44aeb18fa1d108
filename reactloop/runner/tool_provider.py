"""Tool providers: the catalogue of operations the agent can invoke."""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from reactloop.graph.context import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class ToolDescriptor:
    """An operation exposed by a provider."""

    name: str
    description: str
    provider_name: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def parameter_names(self) -> list[str]:
        return list(self.input_schema.get("properties", {}).keys())

    @property
    def required_parameters(self) -> list[str]:
        return list(self.input_schema.get("required", []))


class ToolProvider(ABC):
    """
    Source of tool capabilities.

    ``invoke`` returns the textual result. Raising is a retryable failure for
    the action node; a result starting with ``Error:`` is a tool-reported
    failure and is recorded, not retried.
    """

    @abstractmethod
    async def list_capabilities(self) -> dict[str, list[ToolDescriptor]]:
        """Return the catalogue grouped by provider name."""

    @abstractmethod
    async def invoke(
        self,
        provider_name: str,
        operation_name: str,
        parameters: dict[str, Any],
        cancellation: "CancellationToken | None" = None,
    ) -> str:
        """Invoke one operation and return its textual result."""


def stringify_result(result: Any) -> str:
    """Convert a tool's return value to the text recorded in history."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, bytes):
        return result.decode("utf-8", errors="replace")
    if isinstance(result, (dict, list)):
        return json.dumps(result, indent=2, default=str)
    return str(result)


def schema_from_signature(func: Callable) -> dict[str, Any]:
    """Build a JSON schema for ``func``'s parameters from its signature."""
    sig = inspect.signature(func)
    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        param_type = "string"
        if param.annotation is not inspect.Parameter.empty:
            if param.annotation is int:
                param_type = "integer"
            elif param.annotation is float:
                param_type = "number"
            elif param.annotation is bool:
                param_type = "boolean"
            elif param.annotation is dict:
                param_type = "object"
            elif param.annotation is list:
                param_type = "array"

        properties[param_name] = {"type": param_type}

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    return {"type": "object", "properties": properties, "required": required}


@dataclass
class RegisteredTool:
    """A tool with its executor function."""

    descriptor: ToolDescriptor
    executor: Callable[..., Any]


class ToolRegistry(ToolProvider):
    """
    In-process tool provider backed by Python callables.

    Functions may be sync or async; they are called with the decision's
    parameters as keyword arguments.
    """

    def __init__(self):
        self._tools: dict[str, dict[str, RegisteredTool]] = {}

    def register(
        self,
        descriptor: ToolDescriptor,
        executor: Callable[..., Any],
    ) -> None:
        self._tools.setdefault(descriptor.provider_name, {})[descriptor.name] = RegisteredTool(
            descriptor=descriptor, executor=executor
        )

    def register_function(
        self,
        provider_name: str,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        """
        Register a function as a tool, auto-generating its input schema.

        Args:
            provider_name: Provider the tool is grouped under
            func: Function to register
            name: Tool name (defaults to function name)
            description: Tool description (defaults to docstring)
        """
        tool_name = name or func.__name__
        descriptor = ToolDescriptor(
            name=tool_name,
            description=(description or inspect.getdoc(func) or f"Execute {tool_name}").strip(),
            provider_name=provider_name,
            input_schema=schema_from_signature(func),
        )
        self.register(descriptor, func)
        return descriptor

    async def list_capabilities(self) -> dict[str, list[ToolDescriptor]]:
        return {
            provider: [registered.descriptor for registered in tools.values()]
            for provider, tools in self._tools.items()
        }

    async def invoke(
        self,
        provider_name: str,
        operation_name: str,
        parameters: dict[str, Any],
        cancellation: "CancellationToken | None" = None,
    ) -> str:
        registered = self._tools.get(provider_name, {}).get(operation_name)
        if registered is None:
            raise ValueError(f"Unknown tool: {provider_name}/{operation_name}")

        if cancellation is not None:
            cancellation.raise_if_cancelled()
        result = registered.executor(**parameters)
        if inspect.isawaitable(result):
            if cancellation is not None:
                result = await cancellation.guard(result, label=f"Tool {operation_name}")
            else:
                result = await result
        return stringify_result(result)


class CompositeToolProvider(ToolProvider):
    """Merges several providers into one catalogue, routing calls by provider name."""

    def __init__(self, providers: list[ToolProvider]):
        self.providers = providers
        self._routes: dict[str, ToolProvider] = {}

    async def list_capabilities(self) -> dict[str, list[ToolDescriptor]]:
        catalogue: dict[str, list[ToolDescriptor]] = {}
        self._routes = {}
        for provider in self.providers:
            for name, tools in (await provider.list_capabilities()).items():
                if name in catalogue:
                    logger.warning(f"Provider '{name}' registered twice; keeping the first")
                    continue
                catalogue[name] = tools
                self._routes[name] = provider
        return catalogue

    async def invoke(
        self,
        provider_name: str,
        operation_name: str,
        parameters: dict[str, Any],
        cancellation: "CancellationToken | None" = None,
    ) -> str:
        if not self._routes:
            await self.list_capabilities()
        provider = self._routes.get(provider_name)
        if provider is None:
            raise ValueError(f"Unknown provider: {provider_name}")
        return await provider.invoke(provider_name, operation_name, parameters, cancellation)
