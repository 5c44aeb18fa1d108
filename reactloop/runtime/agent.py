"""
ReAct Agent - top-level entry point for a single goal.

Wires the seven node kinds into a Flow using the standard ReAct
transitions, creates a fresh RunContext per call and turns whatever the
flow produced into a RunResult. ``execute`` always returns; internal
failures come back as an explanatory ``final_result``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from reactloop.config import RuntimeConfig
from reactloop.graph.context import CancellationToken, History, HistoryEntry, RunContext
from reactloop.graph.edge import react_transitions
from reactloop.graph.flow import Flow, FlowStatus
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.graph.nodes import (
    ActionNode,
    DiscoverNode,
    MediaGenerationNode,
    ProcessingNode,
    ReasoningNode,
    SpeechSynthesisNode,
    SummarizeNode,
)
from reactloop.graph.report import error_response
from reactloop.llm.provider import LLMProvider
from reactloop.media.gemini import GeminiMediaProvider
from reactloop.media.provider import MediaProvider
from reactloop.observability import clear_trace_context
from reactloop.runner.tool_provider import ToolProvider
from reactloop.runtime.progress import ProgressBus
from reactloop.storage.media_store import MediaStore

logger = logging.getLogger(__name__)

NO_RESULT_MESSAGE = "Agent completed but no result was generated."


@dataclass
class RunResult:
    """What a caller gets back from ``ReActAgent.execute``."""

    final_result: str
    media_asset_refs: list[str] = field(default_factory=list)
    goal_status: str = ""
    status: FlowStatus = FlowStatus.COMPLETED
    steps: int = 0
    history: list[HistoryEntry] = field(default_factory=list)
    run_id: str = ""

    @property
    def success(self) -> bool:
        return self.status in (FlowStatus.COMPLETED, FlowStatus.ENDED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "final_result": self.final_result,
            "media_asset_refs": list(self.media_asset_refs),
            "goal_status": self.goal_status,
            "status": self.status.value,
            "steps": self.steps,
            "history": [entry.model_dump(mode="json") for entry in self.history],
        }


class ReActAgent:
    """
    Runs goals through the Discover -> Reason <-> {Act, Process, Media,
    Speech} -> Summarize loop.

    Example:
        agent = ReActAgent(llm=LiteLLMProvider(), tools=registry)
        result = await agent.execute("summarize README.md", step_budget=5)
        print(result.final_result)
    """

    def __init__(
        self,
        llm: LLMProvider,
        tools: ToolProvider,
        media: MediaProvider | None = None,
        media_store: MediaStore | None = None,
        config: RuntimeConfig | None = None,
        progress: ProgressBus | None = None,
    ):
        self.config = config or RuntimeConfig()
        self.llm = llm
        self.tools = tools
        self.media = media or GeminiMediaProvider(self.config.gemini_api_key)
        self.media_store = media_store or MediaStore(self.config.media_dir)
        self.progress = progress or ProgressBus()
        self.last_context: RunContext | None = None
        self.flow = self._build_flow()

    def _build_flow(self) -> Flow:
        models = self.config.models
        nodes: list[RetryingNode] = [
            DiscoverNode(self.tools),
            ReasoningNode(self.llm, model=models.reasoning or models.default),
            ActionNode(self.tools, timeouts=self.config.tool_timeouts),
            ProcessingNode(self.llm, model=models.default),
            MediaGenerationNode(self.media, self.media_store, llm=self.llm, model=models.default),
            SpeechSynthesisNode(self.media, self.media_store, llm=self.llm, model=models.default),
            SummarizeNode(self.llm, model=models.summarization or models.default),
        ]
        for node in nodes:
            node.apply_retry_settings(self.config.retry_for(node.kind.value))

        flow = Flow(entry=NodeKind.DISCOVER, nodes=nodes, transitions=react_transitions())
        problems = flow.validate()
        if problems:
            raise ValueError(f"Invalid flow wiring: {problems}")
        return flow

    async def execute(
        self,
        goal: str,
        step_budget: int | None = None,
        cancellation: CancellationToken | None = None,
        history: list[HistoryEntry] | None = None,
    ) -> RunResult:
        """
        Run ``goal`` to completion, cancellation or failure.

        Args:
            goal: The user's request
            step_budget: Maximum reasoning steps (defaults to the configured budget)
            cancellation: Token the caller can use to stop the run
            history: Entries from an earlier run that later steps may reference

        Returns:
            RunResult with a non-empty final_result
        """
        budget = step_budget if step_budget is not None else self.config.default_step_budget
        ctx = RunContext(
            goal=goal,
            step_budget=max(1, budget),
            history=History(list(history or [])),
            cancellation=cancellation or CancellationToken(),
            progress=self.progress,
        )

        self.last_context = ctx
        logger.info(f"🤖 ReAct agent starting (budget {ctx.step_budget}): {goal[:100]}")
        try:
            flow_result = await self.flow.run(ctx)
            status = flow_result.status
        except Exception as e:
            logger.error(f"❌ Agent execution failed: {e}", exc_info=True)
            ctx.final_result = error_response(goal, e)
            status = FlowStatus.FAILED
        finally:
            await self.progress.drain()
            clear_trace_context()

        final_result = ctx.final_result or NO_RESULT_MESSAGE
        logger.info(
            f"🏁 Run {ctx.run_id} {status}: {ctx.step_index} steps, "
            f"{len(ctx.media_asset_refs)} media assets"
        )
        return RunResult(
            final_result=final_result,
            media_asset_refs=list(ctx.media_asset_refs),
            goal_status=ctx.goal_status,
            status=status,
            steps=ctx.step_index,
            history=ctx.history.entries,
            run_id=ctx.run_id,
        )

    @staticmethod
    def metrics(ctx: RunContext) -> dict[str, Any]:
        """Counters for a run context (steps, actions, tools, media, duration)."""
        return ctx.metrics()
