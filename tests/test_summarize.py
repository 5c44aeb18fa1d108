"""Tests for the summarization node and templated reports."""

import pytest

from reactloop.graph.context import HistoryEntry, RunContext, StepKind
from reactloop.graph.nodes.summarize import (
    SUMMARY_SYSTEM_PROMPT,
    SummarizeNode,
    SummaryInput,
    build_summary_prompt,
)
from reactloop.graph.report import synthesize_summary
from reactloop.llm.mock import MockLLMProvider
from reactloop.runtime.progress import ProgressEventType


def history_entries():
    return [
        HistoryEntry(
            step_index=1,
            step_kind=StepKind.TOOL_ACTION,
            provider_name="filesystem",
            operation_name="read_file",
            result_text="file body",
            justification="need it",
            success=True,
            history_id="action-1-100",
        ),
        HistoryEntry(
            step_index=2,
            step_kind=StepKind.TOOL_ACTION,
            provider_name="web",
            operation_name="fetch",
            result_text="Error: 404",
            success=False,
            history_id="action-2-200",
        ),
    ]


@pytest.mark.asyncio
async def test_writes_final_result():
    llm = MockLLMProvider(texts=["The file says hello."])
    ctx = RunContext(goal="what does the file say")
    for entry in history_entries():
        ctx.history.append(entry)

    outcome = await SummarizeNode(llm).run(ctx)

    assert outcome is None
    assert ctx.final_result == "The file says hello."
    assert llm.calls[0]["system_prompt"] == SUMMARY_SYSTEM_PROMPT
    event = ctx.progress.get_history(event_type=ProgressEventType.FINAL_RESULT)[0]
    assert event.payload["final_result"] == "The file says hello."


@pytest.mark.asyncio
async def test_short_summary_falls_back_to_template():
    llm = MockLLMProvider(texts=["ok", "", "meh"])
    ctx = RunContext(goal="count files")
    for entry in history_entries():
        ctx.history.append(entry)

    await SummarizeNode(llm).run(ctx)

    assert len(llm.calls) == 2
    assert ctx.final_result == synthesize_summary("count files", ctx.history)


def test_fallback_is_idempotent():
    entries = history_entries()
    prepared = SummaryInput(goal="count files", history=entries, prompt="")

    first = SummarizeNode.summary_fallback(prepared, RuntimeError("x"))
    second = SummarizeNode.summary_fallback(prepared, RuntimeError("y"))

    assert first == second


def test_synthesized_summary_counts():
    summary = synthesize_summary("count files", history_entries())

    assert summary.startswith("I attempted to help with count files.")
    assert "2 actions were performed" in summary
    assert "(1 succeeded, 1 failed)" in summary
    assert "Some tools were successfully executed" in summary
    assert "Some actions failed" in summary
    assert "*Note: Automatic summarization failed" in summary


def test_synthesized_summary_without_history():
    summary = synthesize_summary("hi", [])
    assert "No specific tools were needed" in summary


def test_prompt_marks_status_and_media():
    entries = history_entries()
    entries.append(
        HistoryEntry(
            step_index=3,
            step_kind=StepKind.TOOL_ACTION,
            provider_name="gemini",
            operation_name="generate_images",
            parameters={"assetPaths": ["images/fox.png"]},
            result_text="Generated 1 image(s)",
            history_id="image-3-300",
        )
    )

    prompt = build_summary_prompt("draw a fox", entries, total_steps=3)

    assert prompt.startswith("# Task Summary Request")
    assert "**Original User Request:** draw a fox" in prompt
    assert "## Actions Taken (3 actions in 3 steps):" in prompt
    assert "✅ SUCCESS" in prompt
    assert "❌ FAILED" in prompt
    assert "images/fox.png" in prompt
