"""Tests for the retrying node lifecycle: retries, backoff, fallback, cancellation."""

import asyncio
import time

import pytest

from reactloop.errors import DecisionValidationError, RetriesExhaustedError, RunCancelledError
from reactloop.graph.context import RunContext
from reactloop.graph.edge import Outcome
from reactloop.graph.node import (
    NodeKind,
    RetryingNode,
    backoff_delay,
    wait_for_retry,
    with_timeout,
)


class ScriptedNode(RetryingNode):
    """Raises the queued errors in order, then returns "ok"."""

    kind = NodeKind.ACT

    def __init__(self, errors=(), **kwargs):
        super().__init__(**kwargs)
        self.errors = list(errors)
        self.execute_calls = 0
        self.finalized_with = None

    async def prepare(self, ctx):
        return "prepared"

    async def execute(self, prepared):
        self.execute_calls += 1
        if self.errors:
            error = self.errors.pop(0)
            if callable(error):
                error = error()
            raise error
        return "ok"

    async def finalize(self, ctx, prepared, result):
        self.finalized_with = result
        return Outcome.DEFAULT


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures(fast_sleep):
    node = ScriptedNode(errors=[RuntimeError("a"), RuntimeError("b")], max_retries=3)

    outcome = await node.run(RunContext(goal="g"))

    assert outcome == Outcome.DEFAULT
    assert node.execute_calls == 3
    assert node.finalized_with == "ok"
    assert fast_sleep.await_count == 2
    assert node.last_stats.attempts == 3
    assert node.last_stats.used_fallback is False


@pytest.mark.asyncio
async def test_execute_called_at_most_max_retries_times(fast_sleep):
    node = ScriptedNode(errors=[RuntimeError("x")] * 10, max_retries=3)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await node.run(RunContext(goal="g"))

    assert node.execute_calls == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, RuntimeError)
    # No wait after the final attempt
    assert fast_sleep.await_count == 2


@pytest.mark.asyncio
async def test_backoff_delays_within_jitter_bounds(fast_sleep):
    node = ScriptedNode(errors=[RuntimeError("x")] * 4, max_retries=4, wait_seconds=2.0)

    with pytest.raises(RetriesExhaustedError):
        await node.run(RunContext(goal="g"))

    delays = [call.args[0] for call in fast_sleep.await_args_list]
    assert len(delays) == 3
    for k, delay in enumerate(delays, start=1):
        base = 2.0 * 2 ** (k - 1)
        assert 0.75 * base <= delay <= 1.25 * base


def test_backoff_delay_is_capped():
    assert backoff_delay(10, 2.0, cap=30.0) == 30.0
    assert backoff_delay(1, 0.0) == 0.0


@pytest.mark.asyncio
async def test_non_retryable_error_skips_retries_and_fallback(fast_sleep):
    fallback_calls = []
    node = ScriptedNode(
        errors=[DecisionValidationError("bad decision")],
        max_retries=3,
        fallback=lambda prepared, error: fallback_calls.append(error),
    )

    with pytest.raises(DecisionValidationError):
        await node.run(RunContext(goal="g"))

    assert node.execute_calls == 1
    assert fallback_calls == []
    fast_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_sync_fallback_result_is_finalized():
    node = ScriptedNode(
        errors=[RuntimeError("x")] * 2,
        max_retries=2,
        fallback=lambda prepared, error: f"fallback for {prepared}: {error}",
    )

    outcome = await node.run(RunContext(goal="g"))

    assert outcome == Outcome.DEFAULT
    assert node.finalized_with == "fallback for prepared: x"
    assert node.last_stats.used_fallback is True


@pytest.mark.asyncio
async def test_async_fallback_is_awaited():
    async def fallback(prepared, error):
        return "async fallback"

    node = ScriptedNode(errors=[RuntimeError("x")], max_retries=1, fallback=fallback)

    await node.run(RunContext(goal="g"))

    assert node.finalized_with == "async fallback"


@pytest.mark.asyncio
async def test_cancellation_stops_retries(fast_sleep):
    ctx = RunContext(goal="g")

    def cancel_then_fail():
        ctx.cancellation.cancel("user stop")
        return RuntimeError("interrupted")

    node = ScriptedNode(errors=[cancel_then_fail], max_retries=3, fallback=lambda p, e: "unused")

    with pytest.raises(RunCancelledError, match="user stop"):
        await node.run(ctx)

    assert node.execute_calls == 1
    assert node.finalized_with is None
    fast_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancelled_before_first_attempt():
    ctx = RunContext(goal="g")
    ctx.cancellation.cancel()
    node = ScriptedNode(max_retries=3)

    with pytest.raises(RunCancelledError):
        await node.run(ctx)

    assert node.execute_calls == 0


def test_apply_retry_settings():
    from reactloop.config import RetrySettings

    node = ScriptedNode()
    node.apply_retry_settings(RetrySettings(max_retries=0, wait_seconds=4.0, max_wait_seconds=8.0))

    assert node.max_retries == 1
    assert node.wait_seconds == 4.0
    assert node.max_wait_seconds == 8.0


@pytest.mark.asyncio
async def test_with_timeout_raises_labelled_timeout():
    never = asyncio.Event()

    with pytest.raises(TimeoutError, match="Tool slow_op timed out"):
        await with_timeout(never.wait(), 0.01, label="Tool slow_op")


@pytest.mark.asyncio
async def test_with_timeout_passes_result_through():
    async def quick():
        return 42

    assert await with_timeout(quick(), 1.0) == 42
    assert await with_timeout(quick(), None) == 42


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff_wait(monkeypatch):
    monkeypatch.setattr("reactloop.graph.node.wait_for_retry", wait_for_retry)
    ctx = RunContext(goal="g")
    node = ScriptedNode(errors=[RuntimeError("flaky")] * 2, max_retries=2, wait_seconds=3.0)
    asyncio.get_running_loop().call_later(0.1, ctx.cancellation.cancel, "user stop")

    started = time.monotonic()
    with pytest.raises(RunCancelledError, match="user stop"):
        await node.run(ctx)

    assert time.monotonic() - started < 1.0
    assert node.execute_calls == 1
    assert node.finalized_with is None


@pytest.mark.asyncio
async def test_wait_for_retry_returns_after_delay():
    ctx = RunContext(goal="g")

    started = time.monotonic()
    await wait_for_retry(0.05, ctx.cancellation)

    assert time.monotonic() - started >= 0.04
    assert not ctx.cancellation.cancelled


class OracleNode(ScriptedNode):
    """Awaits a slow external call through the node's cancellation guard."""

    def __init__(self, call, **kwargs):
        super().__init__(**kwargs)
        self.call = call

    async def execute(self, prepared):
        self.execute_calls += 1
        return await self.cancellable(self.call())


@pytest.mark.asyncio
async def test_cancellable_abandons_slow_call():
    finished = []

    async def slow_call():
        await asyncio.sleep(3)
        finished.append(True)
        return "late"

    ctx = RunContext(goal="g")
    node = OracleNode(slow_call, max_retries=3, fallback=lambda p, e: "unused")
    asyncio.get_running_loop().call_later(0.1, ctx.cancellation.cancel, "user stop")

    started = time.monotonic()
    with pytest.raises(RunCancelledError, match="user stop"):
        await node.run(ctx)

    assert time.monotonic() - started < 1.0
    assert node.execute_calls == 1
    assert node.finalized_with is None
    assert finished == []


@pytest.mark.asyncio
async def test_cancellable_passes_result_and_errors_through():
    async def answer():
        return "ok"

    async def broken():
        raise ValueError("bad reply")

    ctx = RunContext(goal="g")

    assert await ctx.cancellation.guard(answer()) == "ok"
    with pytest.raises(ValueError, match="bad reply"):
        await ctx.cancellation.guard(broken())
