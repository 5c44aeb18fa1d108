"""
Error taxonomy for the ReAct engine.

Failures fall into four families:
- Retryable: anything raised from a node's execute phase that is not listed
  below. Retried with backoff, then replaced by the node's fallback.
- Structural: NonRetryableError and subclasses. Never retried, never
  replaced by a fallback; they escape straight to the Flow.
- Tool-reported: not an exception at all. Recorded as success=False history.
- Cancellation: RunCancelledError, a termination mode with its own cleanup.
"""


class ReactLoopError(Exception):
    """Base class for all engine errors."""


class NonRetryableError(ReactLoopError):
    """A contract violation that retrying cannot fix."""


class DecisionValidationError(NonRetryableError):
    """The oracle's decision is missing a field its outcome requires."""

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.payload = payload or {}


class MissingPendingInputError(NonRetryableError):
    """A node was reached without the staged input it needs."""


class HistoryLookupError(ReactLoopError):
    """A history reference could not be resolved."""

    def __init__(self, ref: str, available: list[str]):
        self.ref = ref
        self.available = available
        super().__init__(
            f"History entry not found: {ref}. Available IDs: {', '.join(available) or 'none'}"
        )


class StructuredOutputError(ReactLoopError):
    """The oracle returned data that is not a JSON object matching the schema."""


class RetriesExhaustedError(ReactLoopError):
    """Every execute attempt failed and the node has no fallback."""

    def __init__(self, node_name: str, attempts: int, last_error: BaseException):
        self.node_name = node_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{node_name} failed after {attempts} attempts: {last_error}")


class RunCancelledError(ReactLoopError):
    """Cancellation was observed at a suspension point."""
