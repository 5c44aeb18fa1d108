"""LiteLLM-backed provider: one interface over OpenAI, Anthropic, Gemini, Ollama, ..."""

import json
import logging
from typing import Any

import litellm

from reactloop.llm.provider import LLMProvider, LLMResponse, parse_json_object

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    Language oracle over ``litellm.acompletion``.

    Model strings follow LiteLLM's ``provider/model`` convention, e.g.
    ``anthropic/claude-sonnet-4-20250514`` or ``gemini/gemini-2.5-flash``.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        **extra_kwargs: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_kwargs = extra_kwargs

    async def _acomplete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            **self.extra_kwargs,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if response_format:
            kwargs["response_format"] = response_format

        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        result = LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or kwargs["model"],
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=getattr(choice, "finish_reason", "") or "",
            raw_response=response,
        )
        logger.debug(
            f"LLM call {result.model}: {result.input_tokens} in / {result.output_tokens} out",
            extra={"model": result.model},
        )
        return result

    @staticmethod
    def _messages(prompt: str, system_prompt: str | None) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> str:
        response = await self._acomplete(self._messages(prompt, system_prompt), model=model)
        return response.content

    async def complete_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        instructions = (
            "Respond with a single JSON object that conforms to this JSON schema. "
            "Do not include any other text.\n\n"
            f"{json.dumps(schema, indent=2)}"
        )
        system = f"{system_prompt}\n\n{instructions}" if system_prompt else instructions
        response = await self._acomplete(
            self._messages(prompt, system),
            model=model,
            response_format={"type": "json_object"},
        )
        return parse_json_object(response.content, schema)
