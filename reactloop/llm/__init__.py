"""LLM provider abstraction."""

from reactloop.llm.litellm import LiteLLMProvider
from reactloop.llm.mock import MockLLMProvider
from reactloop.llm.provider import LLMProvider, LLMResponse, parse_json_object

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
    "parse_json_object",
]
