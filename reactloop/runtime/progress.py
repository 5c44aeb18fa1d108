"""
Progress Bus - observational pub/sub for run telemetry.

Nodes publish step/action events at fixed points of every run; callers
subscribe to watch a run without being able to influence it:
- Publishing never blocks: async handlers are scheduled, not awaited
- Handler failures are logged and swallowed
- Recent events are kept in a bounded history for debugging
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ProgressEventType(StrEnum):
    """Kinds of progress events a run emits."""

    STEP_START = "step_start"
    REASONING_COMPLETE = "reasoning_complete"
    ACTION_START = "action_start"
    ACTION_COMPLETE = "action_complete"
    FINAL_RESULT = "final_result"


@dataclass
class ProgressEvent:
    """A single telemetry event."""

    event_type: ProgressEventType
    step_index: int
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    run_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type.value,
            "step_index": self.step_index,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "run_id": self.run_id,
        }


# Handlers may be plain callables or coroutine functions
ProgressHandler = Callable[[ProgressEvent], Awaitable[None] | None]


@dataclass
class Subscription:
    """A subscription to progress events."""

    id: str
    event_types: set[ProgressEventType]
    handler: ProgressHandler
    filter_run: str | None = None


class ProgressBus:
    """
    Fire-and-forget event sink for run progress.

    Example:
        bus = ProgressBus()

        def on_step(event: ProgressEvent) -> None:
            print(event.payload["progress"])

        bus.subscribe(on_step, event_types=[ProgressEventType.STEP_START])
    """

    def __init__(self, max_history: int = 500):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[ProgressEvent] = []
        self._max_history = max_history
        self._subscription_counter = 0
        self._pending: set[asyncio.Future] = set()

    def subscribe(
        self,
        handler: ProgressHandler,
        event_types: list[ProgressEventType] | None = None,
        filter_run: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            handler: Callable (sync or async) invoked with each event
            event_types: Kinds to receive; None means all
            filter_run: Only receive events from this run

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types or ProgressEventType),
            handler=handler,
            filter_run=filter_run,
        )
        logger.debug(f"Subscription {sub_id} registered")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    def publish(self, event: ProgressEvent) -> None:
        """Deliver ``event`` to matching subscribers. Never raises."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        for subscription in list(self._subscriptions.values()):
            if not self._matches(subscription, event):
                continue
            try:
                result = subscription.handler(event)
            except Exception as e:
                logger.error(f"Progress handler error for {event.event_type}: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(result, event)

    def _schedule(self, awaitable: Awaitable, event: ProgressEvent) -> None:
        try:
            future = asyncio.ensure_future(awaitable)
        except RuntimeError as e:
            # No running loop to schedule on
            logger.error(f"Progress handler for {event.event_type} could not be scheduled: {e}")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error(f"Progress handler error for {event.event_type}: {exc}")

        future.add_done_callback(_done)

    def _matches(self, subscription: Subscription, event: ProgressEvent) -> bool:
        if event.event_type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        return True

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    def emit(
        self,
        event_type: ProgressEventType,
        step_index: int,
        run_id: str | None = None,
        **payload: Any,
    ) -> None:
        self.publish(
            ProgressEvent(event_type=event_type, step_index=step_index, payload=payload, run_id=run_id)
        )

    def emit_step_start(
        self, step_index: int, step_budget: int, step_type: str, run_id: str | None = None
    ) -> None:
        self.emit(
            ProgressEventType.STEP_START,
            step_index,
            run_id,
            step_type=step_type,
            progress=f"Step {step_index}/{step_budget}",
        )

    def emit_reasoning_complete(
        self,
        step_index: int,
        outcome: str,
        rationale: str,
        goal_status: str,
        run_id: str | None = None,
    ) -> None:
        self.emit(
            ProgressEventType.REASONING_COMPLETE,
            step_index,
            run_id,
            outcome=outcome,
            rationale=rationale,
            goal_status=goal_status,
        )

    def emit_action_start(
        self,
        step_index: int,
        kind: str,
        provider_name: str,
        operation_name: str,
        run_id: str | None = None,
        **extra: Any,
    ) -> None:
        self.emit(
            ProgressEventType.ACTION_START,
            step_index,
            run_id,
            kind=kind,
            provider_name=provider_name,
            operation_name=operation_name,
            **extra,
        )

    def emit_action_complete(
        self,
        step_index: int,
        kind: str,
        history_id: str,
        success: bool,
        run_id: str | None = None,
        **extra: Any,
    ) -> None:
        self.emit(
            ProgressEventType.ACTION_COMPLETE,
            step_index,
            run_id,
            kind=kind,
            history_id=history_id,
            success=success,
            **extra,
        )

    def emit_final_result(
        self, step_index: int, final_result: str, run_id: str | None = None
    ) -> None:
        self.emit(ProgressEventType.FINAL_RESULT, step_index, run_id, final_result=final_result)

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: ProgressEventType | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[ProgressEvent]:
        """Return recent events, most recent first."""
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.event_type.value] = type_counts.get(event.event_type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }
