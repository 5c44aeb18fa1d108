"""Summarization node: writes the run's final answer."""

import logging
from dataclasses import dataclass
from typing import Any

from reactloop.graph.context import HistoryEntry, RunContext
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.graph.report import synthesize_summary
from reactloop.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that provides clear, concise summaries based on the "
    "provided information."
)
MIN_SUMMARY_LENGTH = 10


@dataclass
class SummaryInput:
    goal: str
    history: list[HistoryEntry]
    prompt: str


def build_summary_prompt(goal: str, history: list[HistoryEntry], total_steps: int) -> str:
    lines = ["# Task Summary Request", "", f"**Original User Request:** {goal or 'Unknown request'}", ""]

    if history:
        lines.append(f"## Actions Taken ({len(history)} actions in {total_steps} steps):")
        lines.append("")
        for entry in history:
            status = "✅ SUCCESS" if entry.success else "❌ FAILED"
            lines.append(
                f"### Step {entry.step_index}: {entry.operation_name} ({entry.provider_name})"
            )
            lines.append(f"**Justification:** {entry.justification}")
            lines.append(f"**Status:** {status}")
            lines.append(f"**Result:** {entry.result_text}")
            media = entry.parameters.get("assetPaths")
            if media:
                lines.append(f"**Saved files:** {', '.join(media)}")
            lines.append("")
    else:
        lines.append("## Actions Taken:")
        lines.append("No tools were used. Response based on available knowledge.")
        lines.append("")

    lines.extend(
        [
            "## Summary Instructions:",
            "Please provide a comprehensive but concise response to the user's original "
            "request based on the above information. Focus on answering their question "
            "directly and clearly. If actions were taken, incorporate the results. If no "
            "relevant actions were performed, provide the best possible response based on "
            "your knowledge.",
            "",
            "Guidelines:",
            "- Be direct and helpful",
            "- Include specific information from any tool results",
            "- If the task couldn't be completed fully, explain what was accomplished",
            "- Keep the response focused on the user's needs",
            "- Use markdown formatting for better readability if appropriate",
        ]
    )
    return "\n".join(lines)


class SummarizeNode(RetryingNode):
    """Terminal node. Falls back to a templated summary when the oracle fails."""

    kind = NodeKind.SUMMARIZE

    def __init__(
        self,
        llm: LLMProvider,
        model: str | None = None,
        max_retries: int = 2,
        wait_seconds: float = 1.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", self.summary_fallback)
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.llm = llm
        self.model = model

    async def prepare(self, ctx: RunContext) -> SummaryInput:
        history = ctx.history.entries
        logger.info(f"📝 Summarizing {len(history)} history entries")
        return SummaryInput(
            goal=ctx.goal,
            history=history,
            prompt=build_summary_prompt(ctx.goal, history, ctx.step_index),
        )

    async def execute(self, prepared: SummaryInput) -> str:
        summary = await self.cancellable(
            self.llm.complete(
                prepared.prompt,
                model=self.model,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
            )
        )
        if not summary or len(summary.strip()) < MIN_SUMMARY_LENGTH:
            raise ValueError("Summary is too short or empty")
        return summary.strip()

    async def finalize(self, ctx: RunContext, prepared: SummaryInput, result: str) -> None:
        ctx.final_result = result
        logger.info(f"🏁 Final result ready ({len(result)} chars)")
        ctx.progress.emit_final_result(ctx.step_index, final_result=result, run_id=ctx.run_id)
        return None

    @staticmethod
    def summary_fallback(prepared: SummaryInput, error: BaseException) -> str:
        logger.warning(f"⚠️ Summarization failed, using templated summary: {error}")
        return synthesize_summary(prepared.goal, prepared.history)
