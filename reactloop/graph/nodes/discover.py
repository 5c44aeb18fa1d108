"""Discovery node: loads the tool catalogue at the start of a run."""

import logging
from typing import Any

from reactloop.graph.context import RunContext
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.runner.tool_provider import ToolDescriptor, ToolProvider

logger = logging.getLogger(__name__)


class DiscoverNode(RetryingNode):
    """Entry node. A discovery failure leaves the run with an empty catalogue."""

    kind = NodeKind.DISCOVER

    def __init__(
        self,
        tools: ToolProvider,
        max_retries: int = 1,
        wait_seconds: float = 1.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", lambda prepared, error: {})
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.tools = tools

    async def prepare(self, ctx: RunContext) -> None:
        logger.info("🔍 Discovering available tools...")
        return None

    async def execute(self, prepared: None) -> dict[str, list[ToolDescriptor]]:
        return await self.tools.list_capabilities()

    async def finalize(
        self, ctx: RunContext, prepared: None, result: dict[str, list[ToolDescriptor]]
    ) -> Outcome:
        ctx.catalogue = {name: list(tools) for name, tools in (result or {}).items()}
        total = sum(len(tools) for tools in ctx.catalogue.values())
        logger.info(f"✅ Found {total} tools across {len(ctx.catalogue)} providers")
        return Outcome.DEFAULT
