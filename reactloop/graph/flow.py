"""
Flow - drives a run through the node graph.

Starting at the entry node, the flow runs one node at a time, looks up the
next node from the returned outcome, and stops when:
- a node returns no outcome (COMPLETED)
- the outcome has no registered edge (ENDED)
- cancellation is observed (CANCELLED, after cleanup)
- a node raises (FAILED, with a textual result)

``run`` never raises except for asyncio task cancellation, which is
re-raised after cleanup.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum

from reactloop.errors import RunCancelledError
from reactloop.graph.context import RunContext
from reactloop.graph.edge import Outcome, TransitionTable
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.graph.report import cancellation_summary, error_response
from reactloop.observability import set_trace_context

logger = logging.getLogger(__name__)


class FlowStatus(StrEnum):
    """How a run ended."""

    COMPLETED = "completed"
    ENDED = "ended"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class FlowResult:
    """Result of walking the graph once."""

    status: FlowStatus
    path: list[NodeKind] = field(default_factory=list)
    error: str | None = None
    steps: int = 0

    @property
    def success(self) -> bool:
        return self.status in (FlowStatus.COMPLETED, FlowStatus.ENDED)


class Flow:
    """A directed graph of nodes wired by outcome labels."""

    def __init__(
        self,
        entry: NodeKind,
        nodes: dict[NodeKind, RetryingNode] | list[RetryingNode],
        transitions: TransitionTable | None = None,
    ):
        if isinstance(nodes, list):
            nodes = {node.kind: node for node in nodes}
        if entry not in nodes:
            raise ValueError(f"Entry node {entry} is not registered")
        self.entry = entry
        self.nodes = nodes
        self.transitions = transitions or TransitionTable()

    def register(self, from_kind: NodeKind, outcome: Outcome, to_kind: NodeKind) -> None:
        if to_kind not in self.nodes:
            raise ValueError(f"Target node {to_kind} is not registered")
        self.transitions.register(from_kind, outcome, to_kind)

    def validate(self) -> list[str]:
        """Return problems with the wiring (edges pointing at missing nodes)."""
        errors = []
        for src, outcome, dst in self.transitions.edges():
            if src not in self.nodes:
                errors.append(f"Edge {src}/{outcome} starts at unregistered node {src}")
            if dst not in self.nodes:
                errors.append(f"Edge {src}/{outcome} targets unregistered node {dst}")
        return errors

    async def run(self, ctx: RunContext) -> FlowResult:
        set_trace_context(run_id=ctx.run_id)
        path: list[NodeKind] = []
        current = self.entry

        logger.info(f"🚀 Starting run for goal: {ctx.goal[:100]}")

        try:
            while True:
                if ctx.cancelled:
                    raise RunCancelledError(ctx.cancellation.reason or "Run cancelled")

                node = self.nodes[current]
                path.append(current)
                set_trace_context(node=current.value, step=ctx.step_index)
                logger.debug(f"▶ Running node {node.name}")

                outcome = await node.run(ctx)

                if outcome is None:
                    logger.info(f"✓ Run completed at {current} after {ctx.step_index} steps")
                    return self._result(FlowStatus.COMPLETED, path, ctx)

                next_kind = self.transitions.next(current, outcome)
                if next_kind is None:
                    logger.info(f"✓ Run ended: no transition from {current} on '{outcome}'")
                    return self._result(FlowStatus.ENDED, path, ctx)

                logger.debug(f"→ {current} --{outcome}--> {next_kind}")
                current = next_kind

        except RunCancelledError as e:
            logger.info(f"⏹ Run cancelled during {current}: {e}")
            self.cleanup_cancelled(ctx)
            return self._result(FlowStatus.CANCELLED, path, ctx)

        except asyncio.CancelledError:
            ctx.cancellation.cancel("Task cancelled")
            self.cleanup_cancelled(ctx)
            raise

        except Exception as e:
            if ctx.cancelled:
                # Failure caused by tearing down an in-flight call
                logger.info(f"⏹ Run cancelled during {current}: {e}")
                self.cleanup_cancelled(ctx)
                return self._result(FlowStatus.CANCELLED, path, ctx)

            logger.error(f"❌ Run failed in {current}: {e}", exc_info=True)
            if not ctx.final_result:
                ctx.final_result = error_response(ctx.goal, e)
            return self._result(FlowStatus.FAILED, path, ctx, error=str(e))

    @staticmethod
    def cleanup_cancelled(ctx: RunContext) -> None:
        """Discard staged artifacts and guarantee a final result. Idempotent."""
        ctx.pending.clear()
        ctx.goal_status = "cancelled"
        if not ctx.final_result:
            ctx.final_result = cancellation_summary(ctx.goal, ctx.history)

    @staticmethod
    def _result(
        status: FlowStatus, path: list[NodeKind], ctx: RunContext, error: str | None = None
    ) -> FlowResult:
        return FlowResult(status=status, path=list(path), error=error, steps=ctx.step_index)
