"""Tool-action node: runs the staged external tool call and records the result."""

import logging
from dataclasses import dataclass
from typing import Any

from reactloop.config import ToolTimeouts
from reactloop.graph.context import (
    CancellationToken,
    HistoryEntry,
    RunContext,
    StepKind,
    new_history_id,
)
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode, with_timeout
from reactloop.runner.tool_provider import ToolProvider
from reactloop.schemas.decision import ActionSpec

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error:"
ERROR_INDICATORS = ("error:", "failed:", "unable to")
EMPTY_RESULT = "Error: Tool returned an empty result"


@dataclass
class ActionInput:
    step: int
    action: ActionSpec
    timeout: float
    cancellation: CancellationToken


def is_failed_result(text: str | None) -> bool:
    """A tool-reported failure: empty output or an ``Error:`` prefix."""
    return not text or not text.strip() or text.startswith(ERROR_PREFIX)


class ActionNode(RetryingNode):
    """
    Invokes one operation on a tool provider.

    Provider exceptions and timeouts are retried. A result the tool itself
    marks as failed is recorded with success=False so the next reasoning
    step can react to it.
    """

    kind = NodeKind.ACT

    def __init__(
        self,
        tools: ToolProvider,
        timeouts: ToolTimeouts | None = None,
        max_retries: int = 3,
        wait_seconds: float = 1.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", self.action_fallback)
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.tools = tools
        self.timeouts = timeouts or ToolTimeouts()

    async def prepare(self, ctx: RunContext) -> ActionInput | None:
        action: ActionSpec | None = ctx.pending.action
        if action is None:
            logger.info("⏭️ No action to execute, continuing...")
            return None

        step = ctx.step_index or 1
        logger.info(
            f"🛠️ Executing Action - Step {step}: {action.operation_name} ({action.provider_name})"
        )
        logger.debug(f"   Parameters: {action.parameters}")
        ctx.progress.emit_action_start(
            step,
            kind="tool_action",
            provider_name=action.provider_name,
            operation_name=action.operation_name,
            run_id=ctx.run_id,
            justification=action.justification,
        )
        return ActionInput(
            step=step,
            action=action,
            timeout=self.timeouts.for_operation(action.operation_name),
            cancellation=ctx.cancellation,
        )

    async def execute(self, prepared: ActionInput | None) -> str | None:
        if prepared is None:
            return None

        action = prepared.action
        label = f"Tool {action.operation_name}"
        call = self.tools.invoke(
            action.provider_name,
            action.operation_name,
            dict(action.parameters),
            cancellation=prepared.cancellation,
        )
        # Providers may ignore the token, so the node races it as well
        result = await prepared.cancellation.guard(
            with_timeout(call, prepared.timeout, label=label), label=label
        )

        lowered = (result or "").lower()
        if any(indicator in lowered for indicator in ERROR_INDICATORS):
            logger.warning(f"⚠️ Tool result contains error indicators: {result[:100]}")

        logger.info(f"✅ Action completed ({len(result or '')} chars)")
        return result

    async def finalize(
        self, ctx: RunContext, prepared: ActionInput | None, result: str | None
    ) -> Outcome:
        if prepared is None:
            return Outcome.DEFAULT

        action = prepared.action
        text = result if result and result.strip() else EMPTY_RESULT
        success = not is_failed_result(result)

        entry = ctx.history.append(
            HistoryEntry(
                step_index=prepared.step,
                step_kind=StepKind.TOOL_ACTION,
                provider_name=action.provider_name,
                operation_name=action.operation_name,
                parameters=dict(action.parameters),
                result_text=text,
                justification=action.justification,
                success=success,
                history_id=new_history_id("action", prepared.step),
            )
        )
        ctx.pending.action = None

        if not success:
            logger.warning(f"❌ {action.operation_name} reported failure: {text[:200]}")

        ctx.progress.emit_action_complete(
            prepared.step,
            kind="tool_action",
            history_id=entry.history_id,
            success=success,
            run_id=ctx.run_id,
            operation_name=action.operation_name,
        )
        return Outcome.DEFAULT

    @staticmethod
    def action_fallback(prepared: ActionInput | None, error: BaseException) -> str | None:
        if prepared is None:
            return None
        logger.info("🔄 Using action execution fallback...")
        return f"{ERROR_PREFIX} {error}"
