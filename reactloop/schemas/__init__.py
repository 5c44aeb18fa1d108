"""Structured payloads exchanged with the oracle."""

from reactloop.schemas.decision import (
    ActionSpec,
    Decision,
    DecisionOutcome,
    MediaConfig,
    ProcessingRequest,
    SpeechConfig,
    decision_schema,
    parse_decision,
)

__all__ = [
    "ActionSpec",
    "Decision",
    "DecisionOutcome",
    "MediaConfig",
    "ProcessingRequest",
    "SpeechConfig",
    "decision_schema",
    "parse_decision",
]
