"""
Transitions - how nodes connect in a flow.

A node's outcome label selects the next node through a table keyed by
``(NodeKind, Outcome)``. An outcome with no registered edge ends the run;
that is a legitimate way for a node to stop the flow, not an error.
"""

from enum import StrEnum

from reactloop.graph.node import NodeKind


class Outcome(StrEnum):
    """Labels a node may return from finalize."""

    DEFAULT = "default"
    CONTINUE = "continue"
    LLM_PROCESSING = "llm_processing"
    PROCESS_IMAGE = "process_image"
    GENERATE_SPEECH = "generate_speech"
    COMPLETE = "complete"


class TransitionTable:
    """Mapping from (node kind, outcome) to the next node kind."""

    def __init__(self):
        self._edges: dict[tuple[NodeKind, Outcome], NodeKind] = {}

    def register(self, from_kind: NodeKind, outcome: Outcome, to_kind: NodeKind) -> None:
        key = (NodeKind(from_kind), Outcome(outcome))
        existing = self._edges.get(key)
        if existing is not None and existing != to_kind:
            raise ValueError(
                f"Transition {from_kind}/{outcome} already targets {existing}, not {to_kind}"
            )
        self._edges[key] = NodeKind(to_kind)

    def next(self, from_kind: NodeKind, outcome: Outcome) -> NodeKind | None:
        return self._edges.get((from_kind, outcome))

    def edges(self) -> list[tuple[NodeKind, Outcome, NodeKind]]:
        return [(src, outcome, dst) for (src, outcome), dst in self._edges.items()]

    def __len__(self) -> int:
        return len(self._edges)


def react_transitions() -> TransitionTable:
    """
    The standard ReAct wiring.

    discover -> reason; reason fans out to act/process/media/speech and
    returns to reason after each; complete goes to summarize, which ends
    the run.
    """
    table = TransitionTable()
    table.register(NodeKind.DISCOVER, Outcome.DEFAULT, NodeKind.REASON)
    table.register(NodeKind.REASON, Outcome.CONTINUE, NodeKind.ACT)
    table.register(NodeKind.REASON, Outcome.LLM_PROCESSING, NodeKind.PROCESS)
    table.register(NodeKind.REASON, Outcome.PROCESS_IMAGE, NodeKind.GENERATE_MEDIA)
    table.register(NodeKind.REASON, Outcome.GENERATE_SPEECH, NodeKind.SYNTHESIZE_SPEECH)
    table.register(NodeKind.REASON, Outcome.COMPLETE, NodeKind.SUMMARIZE)
    table.register(NodeKind.ACT, Outcome.DEFAULT, NodeKind.REASON)
    table.register(NodeKind.PROCESS, Outcome.CONTINUE, NodeKind.REASON)
    table.register(NodeKind.GENERATE_MEDIA, Outcome.DEFAULT, NodeKind.REASON)
    table.register(NodeKind.SYNTHESIZE_SPEECH, Outcome.DEFAULT, NodeKind.REASON)
    return table
