"""
Run Context - the single mutable record threaded through every node.

Holds the goal, step counters, the append-only history, the artifacts the
reasoning node staged for the next node, the cancellation token and the
progress bus. Nodes read from it in ``prepare`` and write to it only in
``finalize``.
"""

import asyncio
import logging
import re
import threading
import time
import uuid
from collections.abc import Awaitable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from reactloop.errors import HistoryLookupError, RunCancelledError
from reactloop.runner.tool_provider import ToolDescriptor
from reactloop.runtime.progress import ProgressBus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepKind(StrEnum):
    """What produced a history entry."""

    TOOL_ACTION = "tool_action"
    CONTENT_PROCESSING = "content_processing"
    USER_INPUT = "user_input"


class HistoryEntry(BaseModel):
    """An immutable record of one step's action and result."""

    step_index: int
    step_kind: StepKind
    provider_name: str
    operation_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result_text: str = ""
    justification: str = ""
    success: bool = True
    history_id: str

    model_config = ConfigDict(frozen=True)


_id_lock = threading.Lock()
_last_timestamp_ms = 0


def new_history_id(prefix: str, step: int) -> str:
    """
    Return ``"{prefix}-{step}-{timestamp_ms}"``.

    The timestamp is forced strictly increasing within the process so two
    ids minted in the same millisecond never collide.
    """
    global _last_timestamp_ms
    with _id_lock:
        now = int(time.time() * 1000)
        if now <= _last_timestamp_ms:
            now = _last_timestamp_ms + 1
        _last_timestamp_ms = now
    return f"{prefix}-{step}-{now}"


# Prefix-insensitive shape of a history id: <prefix>-<step>-<timestamp>
HISTORY_ID_PATTERN = re.compile(r"^([a-z][a-z_]*)-(\d+)-(\d+)$")
USER_REQUEST_REF = "user_request"


class History:
    """
    Ordered, append-only sequence of history entries.

    Lookup by reference tries, in order: exact id, the same step and
    timestamp under any prefix, then substring containment in either
    direction. The last two are heuristics and can pick an unintended entry
    when ids are short or numerically close.
    """

    def __init__(self, entries: list[HistoryEntry] | None = None):
        self._entries: list[HistoryEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> HistoryEntry:
        return self._entries[index]

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    @property
    def ids(self) -> list[str]:
        return [entry.history_id for entry in self._entries]

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        return entry

    def find(self, history_id: str) -> HistoryEntry | None:
        for entry in self._entries:
            if entry.history_id == history_id:
                return entry
        return None

    def resolve(self, ref: str) -> HistoryEntry:
        """Resolve a single reference, raising HistoryLookupError if nothing matches."""
        ref = ref.strip()
        entry = self.find(ref)
        if entry is not None:
            return entry

        fallback = None
        ref_match = HISTORY_ID_PATTERN.match(ref)
        if ref_match:
            for candidate in self._entries:
                candidate_match = HISTORY_ID_PATTERN.match(candidate.history_id)
                if candidate_match and candidate_match.groups()[1:] == ref_match.groups()[1:]:
                    fallback = candidate
                    break

        if fallback is None and ref:
            for candidate in self._entries:
                if candidate.history_id in ref or ref in candidate.history_id:
                    fallback = candidate
                    break

        if fallback is None:
            raise HistoryLookupError(ref, self.ids)

        logger.warning(f"⚠️ Using fallback match for history ID: {ref} → {fallback.history_id}")
        return fallback

    def resolve_content(self, ref: str) -> str:
        """
        Return the result text a reference points at.

        A comma-separated reference yields one ``=== Content from {id} ===``
        block per member; members that do not resolve become
        ``[Content not found]``. The lookup fails only when no member resolves.
        """
        if not ref or not ref.strip():
            raise HistoryLookupError(ref, self.ids)

        if "," not in ref:
            return self.resolve(ref).result_text

        refs = [part.strip() for part in ref.split(",") if part.strip()]
        blocks = []
        resolved = 0
        for member in refs:
            try:
                text = self.resolve(member).result_text
                resolved += 1
            except HistoryLookupError:
                text = "[Content not found]"
            blocks.append(f"=== Content from {member} ===\n{text}")

        if resolved == 0:
            raise HistoryLookupError(ref, self.ids)

        combined = "\n\n".join(blocks)
        logger.info(f"📋 Combined content: {len(combined)} characters from {len(refs)} entries")
        return combined


@dataclass
class PendingArtifacts:
    """Inputs the reasoning node staged for whichever node runs next."""

    action: Any = None
    processing: Any = None
    media_prompt: str | None = None
    media_config: Any = None
    speech_text: str | None = None
    speech_config: Any = None

    def clear(self) -> None:
        self.action = None
        self.processing = None
        self.media_prompt = None
        self.media_config = None
        self.speech_text = None
        self.speech_config = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.action,
                self.processing,
                self.media_prompt,
                self.media_config,
                self.speech_text,
                self.speech_config,
            )
        )


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a run."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "Run cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T], label: str = "Operation") -> T:
        """
        Await ``awaitable`` unless the token fires first.

        On cancellation the in-flight work is cancelled and RunCancelledError
        is raised without waiting for it to finish.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task.done() and not task.cancelled():
            return task.result()
        logger.info(f"🛑 {label} abandoned: {self.reason or 'run cancelled'}")
        raise RunCancelledError(self.reason or f"{label} cancelled")


@dataclass
class RunContext:
    """State for one run. Owned by the Flow; nodes must not keep references."""

    goal: str
    step_budget: int = 10
    step_index: int = 0
    history: History = field(default_factory=History)
    pending: PendingArtifacts = field(default_factory=PendingArtifacts)
    catalogue: dict[str, list[ToolDescriptor]] = field(default_factory=dict)
    goal_status: str = ""
    rationale: str = ""
    final_result: str | None = None
    media_asset_refs: list[str] = field(default_factory=list)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    progress: ProgressBus = field(default_factory=ProgressBus)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled

    def metrics(self) -> dict[str, Any]:
        """Summary counters for the run so far."""
        entries = self.history.entries
        successful = sum(1 for e in entries if e.success)
        return {
            "run_id": self.run_id,
            "total_steps": self.step_index,
            "step_budget": self.step_budget,
            "total_actions": len(entries),
            "successful_actions": successful,
            "failed_actions": len(entries) - successful,
            "tools_used": sorted({e.operation_name for e in entries}),
            "media_assets": len(self.media_asset_refs),
            "duration_seconds": round(time.monotonic() - self.started_at, 3),
            "goal_status": self.goal_status,
        }
