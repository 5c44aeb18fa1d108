"""Tests for the reasoning node: staging, step budget, sentinel refs, fallback."""

import pytest

from reactloop.errors import DecisionValidationError
from reactloop.graph.context import HistoryEntry, RunContext, StepKind
from reactloop.graph.edge import Outcome
from reactloop.graph.nodes.reasoning import ReasoningNode
from reactloop.llm.mock import MockLLMProvider
from reactloop.runner.tool_provider import ToolDescriptor
from reactloop.runtime.progress import ProgressEventType

CONTINUE = {
    "reasoning": "Read the file first",
    "decision": "continue",
    "goalStatus": "reading",
    "action": {
        "server": "filesystem",
        "tool": "read_file",
        "parameters": {"path": "notes.md"},
        "justification": "need contents",
    },
}


def processing_decision(ref: str) -> dict:
    return {
        "reasoning": "Summarize the request",
        "decision": "llm_processing",
        "goalStatus": "processing",
        "llmTask": "summarize",
        "llmPrompt": "Summarize this",
        "inputHistoryId": ref,
    }


@pytest.mark.asyncio
async def test_continue_stages_action_and_advances_step():
    llm = MockLLMProvider(structured=[CONTINUE])
    ctx = RunContext(goal="summarize notes.md", step_budget=5)

    outcome = await ReasoningNode(llm).run(ctx)

    assert outcome == Outcome.CONTINUE
    assert ctx.step_index == 1
    assert ctx.pending.action.operation_name == "read_file"
    assert ctx.goal_status == "reading"
    assert ctx.rationale == "Read the file first"

    events = ctx.progress.get_history()
    kinds = [event.event_type for event in reversed(events)]
    assert kinds == [ProgressEventType.STEP_START, ProgressEventType.REASONING_COMPLETE]
    assert events[-1].payload["progress"] == "Step 1/5"
    assert events[0].payload["outcome"] == "continue"


@pytest.mark.asyncio
async def test_budget_forces_complete_on_last_step():
    llm = MockLLMProvider(structured=[CONTINUE])
    ctx = RunContext(goal="g", step_budget=3)
    ctx.step_index = 2

    outcome = await ReasoningNode(llm).run(ctx)

    assert outcome == Outcome.COMPLETE
    assert ctx.step_index == 3
    assert "maximum 3 steps" in ctx.goal_status
    assert ctx.pending.is_empty


@pytest.mark.asyncio
async def test_user_request_sentinel_creates_history_entry_once():
    llm = MockLLMProvider(
        structured=[processing_decision("user_request"), processing_decision("user_request")]
    )
    ctx = RunContext(goal="Please summarize: the quick brown fox")
    node = ReasoningNode(llm)

    await node.run(ctx)
    first_ref = ctx.pending.processing.input_history_ref
    await node.run(ctx)

    user_entries = [e for e in ctx.history if e.step_kind == StepKind.USER_INPUT]
    assert len(user_entries) == 1
    assert user_entries[0].result_text == ctx.goal
    assert user_entries[0].history_id.startswith("user-0-")
    assert first_ref == user_entries[0].history_id
    assert ctx.pending.processing.input_history_ref == first_ref


@pytest.mark.asyncio
async def test_user_request_sentinel_inside_multi_reference():
    llm = MockLLMProvider(structured=[processing_decision("action-1-100, user_request")])
    ctx = RunContext(goal="compare")

    await ReasoningNode(llm).run(ctx)

    user_id = ctx.history[0].history_id
    assert ctx.pending.processing.input_history_ref == f"action-1-100,{user_id}"


@pytest.mark.asyncio
async def test_invalid_decision_is_not_retried():
    llm = MockLLMProvider(structured=[{"reasoning": "r", "decision": "continue", "goalStatus": "s"}])
    ctx = RunContext(goal="g")

    with pytest.raises(DecisionValidationError):
        await ReasoningNode(llm).run(ctx)

    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_fallback_completes_when_oracle_unavailable():
    llm = MockLLMProvider(structured=[RuntimeError("down")] * 3)
    ctx = RunContext(goal="what is 2+2")

    outcome = await ReasoningNode(llm).run(ctx)

    assert outcome == Outcome.COMPLETE
    assert ctx.goal_status == "Completing due to reasoning error"
    assert len(llm.calls) == 3


@pytest.mark.asyncio
async def test_fallback_fetches_youtube_transcript_once():
    goal = "summarize https://www.youtube.com/watch?v=abc123XYZ_-"
    llm = MockLLMProvider(structured=[RuntimeError("down")] * 6)
    ctx = RunContext(goal=goal)
    node = ReasoningNode(llm)

    outcome = await node.run(ctx)

    assert outcome == Outcome.CONTINUE
    action = ctx.pending.action
    assert action.provider_name == "youtube-transcript"
    assert action.operation_name == "get_youtube_transcript"
    assert action.parameters == {
        "video_url": "https://www.youtube.com/watch?v=abc123XYZ_-",
        "keep_audio": False,
    }

    ctx.history.append(
        HistoryEntry(
            step_index=1,
            step_kind=StepKind.TOOL_ACTION,
            provider_name="youtube-transcript",
            operation_name="get_youtube_transcript",
            result_text="transcript",
            history_id="action-1-100",
        )
    )
    assert await node.run(ctx) == Outcome.COMPLETE


@pytest.mark.asyncio
async def test_prompt_lists_history_and_catalogue():
    llm = MockLLMProvider(structured=[CONTINUE])
    ctx = RunContext(goal="fix it", step_budget=4)
    ctx.catalogue = {
        "filesystem": [
            ToolDescriptor(
                name="read_file",
                description="Read a file",
                provider_name="filesystem",
                input_schema={"properties": {"path": {"type": "string"}}, "required": ["path"]},
            )
        ]
    }
    ctx.history.append(
        HistoryEntry(
            step_index=1,
            step_kind=StepKind.TOOL_ACTION,
            provider_name="filesystem",
            operation_name="list_dir",
            result_text="Error: permission denied",
            success=False,
            history_id="action-1-100",
        )
    )

    await ReasoningNode(llm).run(ctx)

    prompt = llm.calls[0]["prompt"]
    assert "[action-1-100]" in prompt
    assert "FAILED" in prompt
    assert "Error: permission denied" in prompt
    assert "read_file" in prompt
    assert "fix it" in prompt


@pytest.mark.asyncio
async def test_speech_outcome_hidden_when_disabled():
    llm = MockLLMProvider()
    ctx = RunContext(goal="g")

    await ReasoningNode(llm, allow_speech=False).run(ctx)

    schema = llm.calls[0]["schema"]
    assert "generate_speech" not in schema["properties"]["decision"]["enum"]
