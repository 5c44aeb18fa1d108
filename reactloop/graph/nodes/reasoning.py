"""
Reasoning node - picks exactly one next action per step.

Each invocation consumes one step of the run's budget. The oracle's
outcome becomes the transition label; its parameters are staged in the
context for whichever node runs next. Reaching the step budget forces
``complete`` regardless of what the oracle chose.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from reactloop.graph.context import (
    USER_REQUEST_REF,
    HistoryEntry,
    RunContext,
    StepKind,
    new_history_id,
)
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.llm.provider import LLMProvider
from reactloop.runner.tool_provider import ToolDescriptor
from reactloop.schemas.decision import (
    ActionSpec,
    Decision,
    DecisionOutcome,
    ProcessingRequest,
    decision_schema,
    parse_decision,
)

logger = logging.getLogger(__name__)

REASONING_SYSTEM_PROMPT = (
    "You are a ReAct (Reasoning + Acting) agent. Decide the single best next step "
    "and answer with JSON only."
)


@dataclass
class ExternalContentRule:
    """
    Goal pattern that maps to a fetch operation.

    Used when the oracle is unavailable: if the goal matches and the fetch
    has not been attempted yet, the run still makes progress by fetching.
    """

    name: str
    pattern: re.Pattern
    provider_name: str
    operation_name: str
    build_parameters: Callable[[re.Match], dict[str, Any]]
    justification: str = ""

    def match(self, goal: str) -> re.Match | None:
        return self.pattern.search(goal)


def _youtube_parameters(match: re.Match) -> dict[str, Any]:
    return {"video_url": f"https://www.youtube.com/watch?v={match.group(1)}", "keep_audio": False}


YOUTUBE_TRANSCRIPT_RULE = ExternalContentRule(
    name="youtube",
    pattern=re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([a-zA-Z0-9_-]+)"),
    provider_name="youtube-transcript",
    operation_name="get_youtube_transcript",
    build_parameters=_youtube_parameters,
    justification="Fetching YouTube transcript to summarize the video content",
)

DEFAULT_CONTENT_RULES = [YOUTUBE_TRANSCRIPT_RULE]


@dataclass
class ReasoningInput:
    step: int
    step_budget: int
    goal: str
    prompt: str
    history: list[HistoryEntry] = field(default_factory=list)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class ReasoningNode(RetryingNode):
    """Asks the oracle for the next Decision and stages it in the context."""

    kind = NodeKind.REASON

    def __init__(
        self,
        llm: LLMProvider,
        model: str | None = None,
        content_rules: list[ExternalContentRule] | None = None,
        allow_speech: bool = True,
        max_retries: int = 3,
        wait_seconds: float = 2.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", self.reasoning_fallback)
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.llm = llm
        self.model = model
        self.content_rules = DEFAULT_CONTENT_RULES if content_rules is None else content_rules
        self.allow_speech = allow_speech

    async def prepare(self, ctx: RunContext) -> ReasoningInput:
        step = ctx.step_index + 1
        logger.info(f"🤔 ReAct Reasoning - Step {step}/{ctx.step_budget}")
        ctx.progress.emit_step_start(step, ctx.step_budget, "reasoning", run_id=ctx.run_id)
        return ReasoningInput(
            step=step,
            step_budget=ctx.step_budget,
            goal=ctx.goal,
            prompt=self.build_prompt(ctx, step),
            history=ctx.history.entries,
        )

    async def execute(self, prepared: ReasoningInput) -> Decision:
        payload = await self.cancellable(
            self.llm.complete_structured(
                prepared.prompt,
                decision_schema(include_speech=self.allow_speech),
                model=self.model,
                system_prompt=REASONING_SYSTEM_PROMPT,
            )
        )
        decision = parse_decision(payload)

        logger.info(f"💭 Reasoning: {_truncate(decision.rationale, 300)}")
        logger.info(f"🎯 Decision: {decision.outcome} | Goal Status: {decision.goal_status}")
        if decision.action:
            logger.info(
                f"🛠️ Next Action: {decision.action.operation_name} ({decision.action.provider_name})"
            )
        return decision

    async def finalize(self, ctx: RunContext, prepared: ReasoningInput, result: Decision) -> Outcome:
        decision = result
        step = prepared.step

        ctx.step_index = step
        ctx.rationale = decision.rationale
        ctx.goal_status = decision.goal_status
        ctx.pending.clear()

        if step >= ctx.step_budget:
            logger.info(f"⏰ Reached maximum steps ({ctx.step_budget}) - forcing completion")
            ctx.goal_status = f"Completed after reaching maximum {ctx.step_budget} steps"
            outcome = Outcome.COMPLETE
        else:
            outcome = self._stage(ctx, decision)

        ctx.progress.emit_reasoning_complete(
            step,
            outcome=outcome.value,
            rationale=_truncate(decision.rationale, 200),
            goal_status=ctx.goal_status,
            run_id=ctx.run_id,
        )
        return outcome

    def _stage(self, ctx: RunContext, decision: Decision) -> Outcome:
        """Move the decision's parameters into pending artifacts."""
        match decision.outcome:
            case DecisionOutcome.CONTINUE:
                ctx.pending.action = decision.action
            case DecisionOutcome.LLM_PROCESSING:
                ref = self._materialize_user_request(ctx, decision.input_history_ref)
                ctx.pending.processing = ProcessingRequest(
                    task=decision.processing_task,
                    prompt=decision.processing_prompt,
                    input_history_ref=ref,
                )
                logger.info(f"🧠 Prepared LLM processing: {decision.processing_task} using {ref}")
            case DecisionOutcome.PROCESS_IMAGE:
                ctx.pending.media_prompt = decision.media_prompt
                ctx.pending.media_config = decision.media_config
                logger.info(f"🎨 Prepared image processing: {_truncate(decision.media_prompt, 100)}")
            case DecisionOutcome.GENERATE_SPEECH:
                ctx.pending.speech_text = decision.speech_text
                ctx.pending.speech_config = decision.speech_config
                logger.info(f"🔊 Prepared speech synthesis ({len(decision.speech_text)} chars)")
        return Outcome(decision.outcome.value)

    @staticmethod
    def _materialize_user_request(ctx: RunContext, ref: str) -> str:
        """Replace the user_request sentinel with a real history entry id."""
        members = [part.strip() for part in ref.split(",")]
        if USER_REQUEST_REF not in members:
            return ref

        existing = next(
            (
                e
                for e in ctx.history
                if e.step_kind == StepKind.USER_INPUT and e.operation_name == USER_REQUEST_REF
            ),
            None,
        )
        if existing is None:
            existing = ctx.history.append(
                HistoryEntry(
                    step_index=0,
                    step_kind=StepKind.USER_INPUT,
                    provider_name="internal",
                    operation_name=USER_REQUEST_REF,
                    result_text=ctx.goal,
                    justification="Original user request content",
                    success=True,
                    history_id=new_history_id("user", 0),
                )
            )
            logger.info(f"📝 Created user request history entry with ID: {existing.history_id}")

        return ",".join(existing.history_id if m == USER_REQUEST_REF else m for m in members)

    def reasoning_fallback(self, prepared: ReasoningInput, error: BaseException) -> Decision:
        """Decide without the oracle: fetch recognised external content once, else complete."""
        for rule in self.content_rules:
            match = rule.match(prepared.goal)
            if match is None:
                continue
            attempted = any(e.operation_name == rule.operation_name for e in prepared.history)
            if attempted:
                logger.info(f"📝 {rule.name} fetch already attempted - completing task")
                break
            logger.info(f"🎬 {rule.name} content detected - using fetch fallback")
            return Decision(
                rationale=f"Detected {rule.name} content - will fetch it first",
                outcome=DecisionOutcome.CONTINUE,
                goal_status=f"Ready to run {rule.operation_name}",
                action=ActionSpec(
                    provider_name=rule.provider_name,
                    operation_name=rule.operation_name,
                    parameters=rule.build_parameters(match),
                    justification=rule.justification,
                ),
            )

        return Decision(
            rationale=f"Reasoning failed: {error}. Completing with available information.",
            outcome=DecisionOutcome.COMPLETE,
            goal_status="Completing due to reasoning error",
        )

    # === PROMPT ===

    def build_prompt(self, ctx: RunContext, step: int) -> str:
        budget = ctx.step_budget
        remaining = budget - step
        history = ctx.history.entries

        prompt = (
            f'You are a ReAct (Reasoning + Acting) agent. Your task is to help with: "{ctx.goal}"\n\n'
        )

        prompt += "## Step Efficiency Guidelines:\n"
        prompt += f"⏱️ **Current Step**: {step}/{budget} ({remaining} steps remaining)\n"
        prompt += (
            f"🎯 **Efficiency Focus**: With {remaining} steps left, consider how to accomplish "
            "the most work in each step while maintaining quality.\n"
        )
        if remaining <= 5:
            prompt += (
                f"⚠️ **Limited Steps**: You have only {remaining} steps remaining. "
                "Plan carefully and batch operations when possible.\n"
            )
        if remaining <= 2:
            prompt += (
                f"🚨 **Critical Phase**: Only {remaining} steps left! Prioritize completing the "
                "core task. Consider using 'llm_processing' to handle multiple transformations "
                "in one step.\n"
            )
        prompt += "\n"

        prompt += self._tool_usage_tips(ctx.catalogue)
        prompt += self._catalogue_section(ctx.catalogue)

        if history:
            prompt += "## Previous Actions:\n"
            for entry in history:
                status = "SUCCESS" if entry.success else "FAILED"
                prompt += (
                    f"[{entry.history_id}] Step {entry.step_index} ({entry.step_kind}): "
                    f"{entry.operation_name} - {status}\n"
                    f"Result: {entry.result_text}\n\n"
                )

        prompt += "## Current Situation:\n"
        prompt += f"- Step {step} of {budget} ({remaining} remaining)\n"
        prompt += f"- User Request: {ctx.goal}\n"
        if history:
            successful = sum(1 for e in history if e.success)
            prompt += (
                f"- Progress: {successful} successful actions, "
                f"{len(history) - successful} failed actions\n"
            )
        prompt += "\n"

        if step == 1 and not history:
            prompt += (
                "## Initial Task Decomposition:\n"
                "Before taking any actions, work out the complete goal, the sequential steps "
                "needed, which tools each step requires, and what the final deliverable looks "
                f"like. Only {budget} steps are available.\n\n"
            )

        prompt += "## Available Decisions:\n"
        prompt += '1. **"continue"**: Use an external tool (data gathering, files, web requests)\n'
        prompt += (
            '2. **"llm_processing"**: Transform existing content with the LLM '
            "(translate, summarize, analyze, extract, fix or rewrite code)\n"
        )
        prompt += '3. **"process_image"**: Generate a new image or edit an existing one\n'
        if self.allow_speech:
            prompt += '4. **"generate_speech"**: Turn text into spoken audio\n'
        prompt += '- **"complete"**: Task is finished, ready for final summary\n\n'

        prompt += "## LLM Processing Instructions:\n"
        prompt += '- "llmTask": Type of processing (translate, summarize, analyze, fix_code, ...)\n'
        prompt += '- "llmPrompt": Detailed instructions for the LLM\n'
        prompt += '- "inputHistoryId": Content to process:\n'
        prompt += f'  * Use "{USER_REQUEST_REF}" to process the original user request\n'
        prompt += "  * Use the EXACT history ID shown in brackets above, prefix included\n"
        prompt += '  * Use comma-separated IDs for multiple entries, e.g. "llm-1-123,action-2-456"\n\n'

        prompt += "## Image Processing Instructions:\n"
        prompt += '- "imagePrompt": Detailed description, or editing instructions\n'
        prompt += (
            '- "imageConfig": Optional {"aspectRatio": "1:1"|"3:4"|"4:3"|"9:16"|"16:9", '
            '"numberOfImages": 1-4, "safetyFilterLevel": "BLOCK_MOST"|"BLOCK_SOME"|'
            '"BLOCK_FEW"|"BLOCK_NONE", "sourceImage": path of an image to edit}\n\n'
        )

        if self.allow_speech:
            prompt += "## Speech Instructions:\n"
            prompt += '- "speechText": The text to speak\n'
            prompt += '- "speechConfig": Optional {"voice": name, "style": delivery hint}\n\n'

        prompt += "## Your Task:\n"
        prompt += (
            "Analyze the situation and decide on the next action. Respond with JSON containing "
            '"reasoning", "decision", "goalStatus", plus the fields the decision requires '
            '("action" with server/tool/parameters/justification for "continue").\n\n'
        )

        prompt += "## Guidelines:\n"
        prompt += "- Use server names exactly as listed\n"
        prompt += "- Reference history IDs exactly as shown in brackets\n"
        prompt += '- Use "complete" only when the request has been fully accomplished\n'
        prompt += f"- **EFFICIENCY PRIORITY**: With {remaining} steps remaining, maximize work per step\n"
        if remaining <= 3:
            prompt += f"- **CRITICAL**: Only {remaining} steps left - focus on core requirements\n"

        return prompt

    @staticmethod
    def _catalogue_section(catalogue: dict[str, list[ToolDescriptor]]) -> str:
        if not any(catalogue.values()):
            return (
                "## Available Tools:\nNo tools are currently available. "
                "You can still reason and provide helpful responses.\n\n"
            )

        section = "## Available Tools (IMPORTANT: Use exact server names shown):\n"
        for provider_name, tools in catalogue.items():
            if not tools:
                continue
            section += f"\n**{provider_name}:**\n"
            for tool in tools:
                section += f"- **{tool.name}** (SERVER: {provider_name}): {tool.description}\n"
                params = ", ".join(f'"{p}"' for p in tool.parameter_names)
                if params:
                    section += f"  Parameters: {{{params}}}\n"
        return section + "\n"

    @staticmethod
    def _tool_usage_tips(catalogue: dict[str, list[ToolDescriptor]]) -> str:
        has_filesystem = bool(catalogue.get("filesystem"))
        has_commands = bool(catalogue.get("commands"))
        has_youtube = bool(catalogue.get("youtube-transcript"))
        if not (has_filesystem or has_commands or has_youtube):
            return ""

        tips = "## Tool Usage Experience (Best Practices):\n"
        if has_filesystem:
            tips += (
                "**Filesystem Operations:**\n"
                "- Use 'list_allowed_directories' to learn the available paths first\n"
                "- Use 'list_directory' before reading or writing files\n\n"
            )
        if has_commands:
            tips += (
                "**Command Execution:**\n"
                "- If a command fails with a syntax error, try 'command --help'\n\n"
            )
        if has_youtube:
            tips += (
                "**YouTube Operations:**\n"
                "- Pass a clean YouTube URL to transcript tools\n"
                "- Set keep_audio=false unless audio is explicitly requested\n\n"
            )
        return tips
