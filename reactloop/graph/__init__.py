"""Graph structures: run context, nodes, transitions and the flow that walks them."""

from reactloop.graph.context import (
    CancellationToken,
    History,
    HistoryEntry,
    PendingArtifacts,
    RunContext,
    StepKind,
    new_history_id,
)
from reactloop.graph.edge import Outcome, TransitionTable, react_transitions
from reactloop.graph.flow import Flow, FlowResult, FlowStatus
from reactloop.graph.node import NodeKind, RetryingNode, backoff_delay, with_timeout
from reactloop.graph.report import cancellation_summary, error_response, synthesize_summary

__all__ = [
    "CancellationToken",
    "Flow",
    "FlowResult",
    "FlowStatus",
    "History",
    "HistoryEntry",
    "NodeKind",
    "Outcome",
    "PendingArtifacts",
    "RetryingNode",
    "RunContext",
    "StepKind",
    "TransitionTable",
    "backoff_delay",
    "cancellation_summary",
    "error_response",
    "new_history_id",
    "react_transitions",
    "synthesize_summary",
    "with_timeout",
]
