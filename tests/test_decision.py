"""Tests for decision parsing and the oracle schema."""

import pytest

from reactloop.errors import DecisionValidationError, NonRetryableError
from reactloop.schemas.decision import (
    DecisionOutcome,
    MediaConfig,
    decision_schema,
    parse_decision,
)


def test_parses_continue_decision_from_camel_case():
    decision = parse_decision(
        {
            "reasoning": "Need the file",
            "decision": "continue",
            "goalStatus": "reading",
            "action": {
                "server": "filesystem",
                "tool": "read_file",
                "parameters": {"path": "a.txt"},
                "justification": "get contents",
            },
        }
    )

    assert decision.outcome == DecisionOutcome.CONTINUE
    assert decision.action.provider_name == "filesystem"
    assert decision.action.operation_name == "read_file"
    assert decision.action.parameters == {"path": "a.txt"}


def test_parses_llm_processing_decision():
    decision = parse_decision(
        {
            "reasoning": "translate",
            "decision": "llm_processing",
            "goalStatus": "translating",
            "llmTask": "translate",
            "llmPrompt": "Translate to French",
            "inputHistoryId": "llm-1-100",
        }
    )

    assert decision.processing_task == "translate"
    assert decision.input_history_ref == "llm-1-100"


def test_image_config_aliases_and_defaults():
    decision = parse_decision(
        {
            "reasoning": "draw",
            "decision": "process_image",
            "goalStatus": "drawing",
            "imagePrompt": "a fox",
            "imageConfig": {"aspectRatio": "1:1", "numberOfImages": 2},
        }
    )

    assert decision.media_config.aspect_ratio == "1:1"
    assert decision.media_config.number_of_images == 2
    assert MediaConfig().aspect_ratio == "16:9"
    assert MediaConfig().number_of_images == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"reasoning": "r", "decision": "continue", "goalStatus": "s"},
        {"reasoning": "r", "decision": "llm_processing", "goalStatus": "s", "llmTask": "t"},
        {"reasoning": "r", "decision": "process_image", "goalStatus": "s", "imagePrompt": "  "},
        {"reasoning": "r", "decision": "generate_speech", "goalStatus": "s"},
    ],
    ids=["continue", "llm_processing", "process_image", "generate_speech"],
)
def test_missing_required_fields_rejected(payload):
    with pytest.raises(DecisionValidationError) as exc_info:
        parse_decision(payload)
    assert isinstance(exc_info.value, NonRetryableError)
    assert exc_info.value.payload == payload


def test_unknown_outcome_rejected():
    with pytest.raises(DecisionValidationError):
        parse_decision({"reasoning": "r", "decision": "dance", "goalStatus": "s"})


def test_non_object_rejected():
    with pytest.raises(DecisionValidationError):
        parse_decision(["not", "a", "dict"])


def test_too_many_images_rejected():
    with pytest.raises(DecisionValidationError):
        parse_decision(
            {
                "reasoning": "r",
                "decision": "process_image",
                "goalStatus": "s",
                "imagePrompt": "a fox",
                "imageConfig": {"numberOfImages": 5},
            }
        )


def test_complete_needs_no_extra_fields():
    decision = parse_decision({"reasoning": "done", "decision": "complete"})
    assert decision.outcome == DecisionOutcome.COMPLETE
    assert decision.goal_status == ""


def test_schema_without_speech():
    schema = decision_schema(include_speech=False)
    assert "generate_speech" not in schema["properties"]["decision"]["enum"]
    assert "speechText" not in schema["properties"]
    assert schema["required"] == ["reasoning", "decision", "goalStatus"]

    with_speech = decision_schema()
    assert "generate_speech" in with_speech["properties"]["decision"]["enum"]
    assert "speechText" in with_speech["properties"]
