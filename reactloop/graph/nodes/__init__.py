"""The node kinds a ReAct run is built from."""

from reactloop.graph.nodes.action import ActionNode
from reactloop.graph.nodes.discover import DiscoverNode
from reactloop.graph.nodes.media import MediaGenerationNode
from reactloop.graph.nodes.processing import ProcessingNode
from reactloop.graph.nodes.reasoning import (
    DEFAULT_CONTENT_RULES,
    ExternalContentRule,
    ReasoningNode,
)
from reactloop.graph.nodes.speech import SpeechSynthesisNode
from reactloop.graph.nodes.summarize import SummarizeNode

__all__ = [
    "DEFAULT_CONTENT_RULES",
    "ActionNode",
    "DiscoverNode",
    "ExternalContentRule",
    "MediaGenerationNode",
    "ProcessingNode",
    "ReasoningNode",
    "SpeechSynthesisNode",
    "SummarizeNode",
]
