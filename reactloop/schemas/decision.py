"""
Decision Schema - the reasoning oracle's structured output.

One Decision is produced per reasoning step. Which fields are required
depends on the chosen outcome:
- continue:        action (provider, operation, parameters)
- llm_processing:  processing task, processing prompt, input history ref
- process_image:   media prompt
- generate_speech: speech text
- complete:        nothing beyond the base fields

The oracle speaks camelCase (``reasoning``, ``decision``, ``goalStatus``,
``llmTask``...); the model accepts those names as aliases.
"""

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reactloop.errors import DecisionValidationError

AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
SafetyFilterLevel = Literal["BLOCK_MOST", "BLOCK_SOME", "BLOCK_FEW", "BLOCK_NONE"]


class DecisionOutcome(StrEnum):
    """Next actions the oracle may choose."""

    CONTINUE = "continue"
    LLM_PROCESSING = "llm_processing"
    PROCESS_IMAGE = "process_image"
    GENERATE_SPEECH = "generate_speech"
    COMPLETE = "complete"


class ActionSpec(BaseModel):
    """An external tool call chosen by the oracle."""

    provider_name: str = Field(alias="server")
    operation_name: str = Field(alias="tool")
    parameters: dict[str, Any] = Field(default_factory=dict)
    justification: str = ""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProcessingRequest(BaseModel):
    """A staged content-processing task."""

    task: str
    prompt: str
    input_history_ref: str

    model_config = ConfigDict(frozen=True)


class MediaConfig(BaseModel):
    """Image generation settings."""

    aspect_ratio: AspectRatio = Field(default="16:9", alias="aspectRatio")
    number_of_images: int = Field(default=1, ge=1, le=4, alias="numberOfImages")
    safety_filter_level: SafetyFilterLevel | None = Field(default=None, alias="safetyFilterLevel")
    # Relative path of an existing image to edit instead of generating from scratch
    source_image: str | None = Field(default=None, alias="sourceImage")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SpeechConfig(BaseModel):
    """Speech synthesis settings. A missing voice is chosen automatically."""

    voice: str | None = None
    style: str | None = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Decision(BaseModel):
    """The oracle's answer for one reasoning step."""

    rationale: str = Field(alias="reasoning")
    outcome: DecisionOutcome = Field(alias="decision")
    goal_status: str = Field(default="", alias="goalStatus")

    action: ActionSpec | None = None

    processing_task: str | None = Field(default=None, alias="llmTask")
    processing_prompt: str | None = Field(default=None, alias="llmPrompt")
    input_history_ref: str | None = Field(default=None, alias="inputHistoryId")

    media_prompt: str | None = Field(default=None, alias="imagePrompt")
    media_config: MediaConfig | None = Field(default=None, alias="imageConfig")

    speech_text: str | None = Field(default=None, alias="speechText")
    speech_config: SpeechConfig | None = Field(default=None, alias="speechConfig")

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# Fields each outcome needs, by attribute name
REQUIRED_FIELDS: dict[DecisionOutcome, tuple[str, ...]] = {
    DecisionOutcome.CONTINUE: ("action",),
    DecisionOutcome.LLM_PROCESSING: ("processing_task", "processing_prompt", "input_history_ref"),
    DecisionOutcome.PROCESS_IMAGE: ("media_prompt",),
    DecisionOutcome.GENERATE_SPEECH: ("speech_text",),
    DecisionOutcome.COMPLETE: (),
}


def parse_decision(payload: Any) -> Decision:
    """
    Validate an oracle payload into a Decision.

    Raises:
        DecisionValidationError: the payload is not an object, a field has the
            wrong type, or a field the outcome requires is missing or blank
    """
    if isinstance(payload, Decision):
        decision = payload
    else:
        if not isinstance(payload, dict):
            raise DecisionValidationError(
                f"Decision must be an object, got {type(payload).__name__}", {}
            )
        try:
            decision = Decision.model_validate(payload)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise DecisionValidationError(f"Invalid decision: {problems}", payload) from e

    missing = []
    for attr in REQUIRED_FIELDS[decision.outcome]:
        value = getattr(decision, attr)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(attr)
    if decision.action is not None and decision.outcome == DecisionOutcome.CONTINUE:
        if not decision.action.provider_name.strip() or not decision.action.operation_name.strip():
            missing.append("action.provider_name/operation_name")

    if missing:
        raise DecisionValidationError(
            f"Decision '{decision.outcome}' requires: {', '.join(missing)}",
            payload if isinstance(payload, dict) else decision.model_dump(by_alias=True),
        )

    return decision


def decision_schema(include_speech: bool = True) -> dict[str, Any]:
    """JSON schema the oracle is asked to honour."""
    outcomes = [o.value for o in DecisionOutcome]
    if not include_speech:
        outcomes.remove(DecisionOutcome.GENERATE_SPEECH.value)

    properties: dict[str, Any] = {
        "reasoning": {"type": "string"},
        "decision": {"type": "string", "enum": outcomes},
        "goalStatus": {"type": "string"},
        "action": {
            "type": "object",
            "properties": {
                "server": {"type": "string"},
                "tool": {"type": "string"},
                "parameters": {"type": "object"},
                "justification": {"type": "string"},
            },
            "required": ["server", "tool", "parameters", "justification"],
        },
        "llmTask": {"type": "string"},
        "llmPrompt": {"type": "string"},
        "inputHistoryId": {"type": "string"},
        "imagePrompt": {"type": "string"},
        "imageConfig": {
            "type": "object",
            "properties": {
                "aspectRatio": {"type": "string", "enum": ["1:1", "3:4", "4:3", "9:16", "16:9"]},
                "numberOfImages": {"type": "number", "minimum": 1, "maximum": 4},
                "safetyFilterLevel": {
                    "type": "string",
                    "enum": ["BLOCK_MOST", "BLOCK_SOME", "BLOCK_FEW", "BLOCK_NONE"],
                },
                "sourceImage": {"type": "string"},
            },
        },
    }
    if include_speech:
        properties["speechText"] = {"type": "string"}
        properties["speechConfig"] = {
            "type": "object",
            "properties": {"voice": {"type": "string"}, "style": {"type": "string"}},
        }

    return {
        "type": "object",
        "properties": properties,
        "required": ["reasoning", "decision", "goalStatus"],
    }
