"""LLM Provider abstraction for pluggable LLM backends."""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from reactloop.errors import StructuredOutputError

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Abstract language oracle - plug in any LLM backend.

    Nodes only ever need two things from the model: free text, and a JSON
    object conforming to a schema. Implementations handle authentication,
    request formatting and transport errors; any exception they raise is a
    retryable failure for the calling node.
    """

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """
        Generate free text for a prompt.

        Args:
            prompt: User prompt
            model: Model override, None for the provider default
            system_prompt: Optional system prompt

        Returns:
            The generated text
        """

    @abstractmethod
    async def complete_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        """
        Generate a JSON object conforming to ``schema``.

        Raises:
            StructuredOutputError: the model did not return a usable object
        """


def parse_json_object(text: str, schema: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Extract a JSON object from model output.

    Tolerates markdown code fences and leading/trailing prose. When a schema
    is given, its top-level ``required`` keys must be present.
    """
    if not text or not text.strip():
        raise StructuredOutputError("Empty response from model")

    candidates = [text.strip()]
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    data: Any = None
    for candidate in candidates:
        try:
            data = json.loads(candidate)
            break
        except json.JSONDecodeError:
            continue

    if not isinstance(data, dict):
        raise StructuredOutputError(f"Model did not return a JSON object: {text[:200]}")

    if schema:
        missing = [key for key in schema.get("required", []) if key not in data]
        if missing:
            raise StructuredOutputError(f"Response missing required keys: {', '.join(missing)}")

    return data
