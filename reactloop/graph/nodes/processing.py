"""Content-processing node: transforms earlier results with the oracle."""

import logging
from dataclasses import dataclass
from typing import Any

from reactloop.errors import HistoryLookupError, MissingPendingInputError
from reactloop.graph.context import HistoryEntry, RunContext, StepKind, new_history_id
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.llm.provider import LLMProvider
from reactloop.schemas.decision import ProcessingRequest

logger = logging.getLogger(__name__)

PROCESSING_SYSTEM_PROMPT = (
    "You are a helpful assistant that processes content according to the given instructions."
)


@dataclass
class ProcessingInput:
    step: int
    request: ProcessingRequest
    content: str
    lookup_error: str | None = None

    @property
    def full_prompt(self) -> str:
        return f"{self.request.prompt}\n\nContent to process:\n{self.content}"


@dataclass
class ProcessingResult:
    text: str
    success: bool = True


class ProcessingNode(RetryingNode):
    """
    Resolves the staged history reference and asks the oracle for free text.

    An unresolvable reference is recorded as a failed entry without calling
    the oracle, so the next reasoning step can pick a valid id.
    """

    kind = NodeKind.PROCESS

    def __init__(
        self,
        llm: LLMProvider,
        model: str | None = None,
        max_retries: int = 3,
        wait_seconds: float = 1.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", self.processing_fallback)
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.llm = llm
        self.model = model

    async def prepare(self, ctx: RunContext) -> ProcessingInput:
        request: ProcessingRequest | None = ctx.pending.processing
        if request is None:
            raise MissingPendingInputError("No LLM processing request staged")

        logger.info(f"🧠 LLM Processing - Task: {request.task} (input: {request.input_history_ref})")

        content = ""
        lookup_error = None
        try:
            content = ctx.history.resolve_content(request.input_history_ref)
            logger.info(f"📄 Retrieved content: {len(content)} characters")
        except HistoryLookupError as e:
            lookup_error = str(e)
            logger.warning(f"⚠️ {lookup_error}")

        ctx.progress.emit_action_start(
            ctx.step_index,
            kind="content_processing",
            provider_name="internal",
            operation_name=request.task,
            run_id=ctx.run_id,
        )
        return ProcessingInput(
            step=ctx.step_index,
            request=request,
            content=content,
            lookup_error=lookup_error,
        )

    async def execute(self, prepared: ProcessingInput) -> ProcessingResult:
        if prepared.lookup_error:
            return ProcessingResult(text=f"Error: {prepared.lookup_error}", success=False)

        text = await self.cancellable(
            self.llm.complete(
                prepared.full_prompt,
                model=self.model,
                system_prompt=PROCESSING_SYSTEM_PROMPT,
            )
        )
        if not text or not text.strip():
            raise ValueError("LLM processing returned an empty response")

        logger.info(f"✅ LLM Processing completed: {prepared.request.task} ({len(text)} chars)")
        return ProcessingResult(text=text.strip())

    async def finalize(
        self, ctx: RunContext, prepared: ProcessingInput, result: ProcessingResult
    ) -> Outcome:
        request = prepared.request
        entry = ctx.history.append(
            HistoryEntry(
                step_index=prepared.step,
                step_kind=StepKind.CONTENT_PROCESSING,
                provider_name="internal",
                operation_name=request.task,
                parameters={
                    "inputHistoryRef": request.input_history_ref,
                    "promptLength": len(request.prompt),
                    "contentLength": len(prepared.content),
                },
                result_text=result.text,
                justification=request.prompt,
                success=result.success,
                history_id=new_history_id("llm", prepared.step),
            )
        )
        ctx.pending.processing = None
        logger.info(f"📋 LLM Processing result added to history with ID: {entry.history_id}")

        ctx.progress.emit_action_complete(
            prepared.step,
            kind="content_processing",
            history_id=entry.history_id,
            success=result.success,
            run_id=ctx.run_id,
        )
        return Outcome.CONTINUE

    @staticmethod
    def processing_fallback(prepared: ProcessingInput, error: BaseException) -> ProcessingResult:
        logger.error(f"❌ LLM Processing failed: {error}")
        return ProcessingResult(
            text=(
                f"[LLM Processing Failed: {error}]\n\n"
                f"Original task: {prepared.request.task}\n"
                f"Input history ID: {prepared.request.input_history_ref}"
            ),
            success=False,
        )
