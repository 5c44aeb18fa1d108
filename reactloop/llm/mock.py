"""Scripted LLM provider for tests and dry runs."""

from collections import deque
from collections.abc import Iterable
from typing import Any

from reactloop.llm.provider import LLMProvider

# A scripted reply: a value, an exception to raise, or a callable of the prompt
Reply = Any


class MockLLMProvider(LLMProvider):
    """
    Returns queued replies in order and records every call.

    Queued exceptions are raised instead of returned; callables receive the
    prompt and their return value is used. When a queue runs dry the
    ``default_*`` value is returned.
    """

    def __init__(
        self,
        texts: Iterable[Reply] | None = None,
        structured: Iterable[Reply] | None = None,
        default_text: str = "Mock response",
        default_structured: dict[str, Any] | None = None,
    ):
        self.texts: deque[Reply] = deque(texts or [])
        self.structured: deque[Reply] = deque(structured or [])
        self.default_text = default_text
        self.default_structured = default_structured or {
            "reasoning": "Nothing left to do",
            "decision": "complete",
            "goalStatus": "done",
        }
        self.calls: list[dict[str, Any]] = []

    @staticmethod
    def _resolve(reply: Reply, prompt: str) -> Any:
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> str:
        self.calls.append(
            {"kind": "complete", "prompt": prompt, "model": model, "system_prompt": system_prompt}
        )
        reply = self.texts.popleft() if self.texts else self.default_text
        return self._resolve(reply, prompt)

    async def complete_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(
            {
                "kind": "structured",
                "prompt": prompt,
                "schema": schema,
                "model": model,
                "system_prompt": system_prompt,
            }
        )
        reply = self.structured.popleft() if self.structured else dict(self.default_structured)
        return self._resolve(reply, prompt)
