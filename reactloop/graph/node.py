"""
Node Protocol - the unit of work in a run.

Every node has a three-phase lifecycle:
1. prepare(ctx)   - read what it needs from the run context, once
2. execute(prep)  - do the fallible work; retried with backoff, never
                    touches the context
3. finalize(...)  - write results into the context and return an Outcome

When every execute attempt fails, an optional fallback produces a
substitute result and the node finalizes as if execute had succeeded.
Keeping all mutation in finalize means a retry can never apply a state
change twice.
"""

import asyncio
import inspect
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from reactloop.config import MAX_BACKOFF_SECONDS, RetrySettings
from reactloop.errors import NonRetryableError, RetriesExhaustedError, RunCancelledError

if TYPE_CHECKING:
    from reactloop.graph.context import CancellationToken, RunContext
    from reactloop.graph.edge import Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fallback(prepared, last_error) -> result, sync or async
Fallback = Callable[[Any, BaseException], Any | Awaitable[Any]]


class NodeKind(StrEnum):
    """The closed set of node kinds a flow is built from."""

    DISCOVER = "discover"
    REASON = "reason"
    ACT = "act"
    PROCESS = "process"
    GENERATE_MEDIA = "generate_media"
    SYNTHESIZE_SPEECH = "synthesize_speech"
    SUMMARIZE = "summarize"


def backoff_delay(attempt: int, base: float, cap: float = MAX_BACKOFF_SECONDS) -> float:
    """
    Wait before retrying after failed attempt ``attempt`` (1-based).

    ``base * 2**(attempt-1)`` with +/-25% jitter, capped at ``cap``.
    """
    jitter = random.uniform(0.75, 1.25)
    return min(base * (2 ** (attempt - 1)) * jitter, cap)


async def with_timeout(awaitable: Awaitable[T], seconds: float | None, label: str = "operation") -> T:
    """Race ``awaitable`` against a timer. The resulting TimeoutError is retryable."""
    if seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as e:
        raise TimeoutError(f"{label} timed out after {seconds:g}s") from e


async def wait_for_retry(delay: float, cancellation: "CancellationToken") -> None:
    """Sleep between attempts, waking early if the run is cancelled."""
    try:
        await asyncio.wait_for(cancellation.wait(), timeout=delay)
    except TimeoutError:
        return


@dataclass
class NodeRunStats:
    """What happened during the last ``run`` of a node."""

    attempts: int = 0
    used_fallback: bool = False
    last_error: str | None = None


class RetryingNode(ABC):
    """
    Base class for all nodes.

    Subclasses implement ``prepare``/``execute``/``finalize``; ``run`` drives
    them with retry, backoff, cancellation checks and fallback.
    """

    kind: NodeKind

    def __init__(
        self,
        max_retries: int = 1,
        wait_seconds: float = 0.0,
        max_wait_seconds: float = MAX_BACKOFF_SECONDS,
        fallback: Fallback | None = None,
        name: str | None = None,
    ):
        self.max_retries = max(1, max_retries)
        self.wait_seconds = wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self.fallback = fallback
        self.name = name or type(self).__name__
        self.last_stats = NodeRunStats()
        # Set for the duration of run() so execute can observe cancellation
        self._ctx: "RunContext | None" = None

    def apply_retry_settings(self, settings: RetrySettings) -> "RetryingNode":
        self.max_retries = max(1, settings.max_retries)
        self.wait_seconds = settings.wait_seconds
        self.max_wait_seconds = settings.max_wait_seconds
        return self

    @abstractmethod
    async def prepare(self, ctx: "RunContext") -> Any:
        """Read inputs from the context. Runs once per invocation."""

    @abstractmethod
    async def execute(self, prepared: Any) -> Any:
        """Do the fallible work. Must not mutate the context."""

    @abstractmethod
    async def finalize(self, ctx: "RunContext", prepared: Any, result: Any) -> "Outcome | None":
        """Write results into the context and pick the outcome. None ends the run."""

    def check_cancelled(self) -> None:
        """Raise RunCancelledError if the current run has been cancelled."""
        if self._ctx is not None:
            self._ctx.cancellation.raise_if_cancelled()

    async def cancellable(self, awaitable: Awaitable[T], label: str | None = None) -> T:
        """Await ``awaitable``, abandoning it if the current run is cancelled meanwhile."""
        if self._ctx is None:
            return await awaitable
        return await self._ctx.cancellation.guard(awaitable, label=label or self.name)

    async def run(self, ctx: "RunContext") -> "Outcome | None":
        """Run the full lifecycle once."""
        self._ctx = ctx
        self.last_stats = NodeRunStats()
        try:
            prepared = await self.prepare(ctx)
            result = await self._execute_with_retry(ctx, prepared)
            return await self.finalize(ctx, prepared, result)
        finally:
            self._ctx = None

    async def _execute_with_retry(self, ctx: "RunContext", prepared: Any) -> Any:
        last_error: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            ctx.cancellation.raise_if_cancelled()
            self.last_stats.attempts = attempt
            try:
                return await self.execute(prepared)
            except (NonRetryableError, RunCancelledError):
                raise
            except Exception as e:
                last_error = e
                self.last_stats.last_error = str(e)
                ctx.cancellation.raise_if_cancelled()

                if attempt == self.max_retries:
                    logger.warning(
                        f"✗ {self.name} attempt {attempt}/{self.max_retries} failed: {e}",
                        extra={"attempt": attempt},
                    )
                    break

                delay = backoff_delay(attempt, self.wait_seconds, self.max_wait_seconds)
                logger.warning(
                    f"↻ {self.name} attempt {attempt}/{self.max_retries} failed: {e}. "
                    f"Retrying in {delay:.2f}s",
                    extra={"attempt": attempt},
                )
                await wait_for_retry(delay, ctx.cancellation)

        if self.fallback is None:
            raise RetriesExhaustedError(self.name, self.max_retries, last_error) from last_error

        logger.info(f"🛟 {self.name} using fallback after {self.max_retries} attempts")
        self.last_stats.used_fallback = True
        result = self.fallback(prepared, last_error)
        if inspect.isawaitable(result):
            result = await result
        return result
