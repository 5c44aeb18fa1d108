"""Shared fixtures: scripted oracle, in-process tools, fake media backend."""

from unittest.mock import AsyncMock

import pytest

from reactloop.graph.context import RunContext
from reactloop.llm.mock import MockLLMProvider
from reactloop.media.provider import MediaAsset, MediaProvider
from reactloop.observability import clear_trace_context
from reactloop.runner.tool_provider import ToolRegistry
from reactloop.storage.media_store import MediaStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config loading at an empty location so user settings never leak in."""
    monkeypatch.setenv("REACTLOOP_CONFIG", str(tmp_path / "missing-config.json"))
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    yield
    clear_trace_context()


@pytest.fixture(autouse=True)
def fast_sleep(monkeypatch):
    """Replace retry backoff waits; the mock records requested delays."""
    sleep = AsyncMock()
    monkeypatch.setattr("reactloop.graph.node.wait_for_retry", sleep)
    return sleep


class FakeMediaProvider(MediaProvider):
    """Returns queued asset lists (or raises queued exceptions)."""

    def __init__(self, images=None, speech=None):
        self.images = list(images or [])
        self.speech = list(speech or [])
        self.image_calls: list[dict] = []
        self.speech_calls: list[dict] = []

    @staticmethod
    def _next(queue):
        reply = queue.pop(0) if queue else []
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def generate_images(self, prompt, config, source=None):
        self.image_calls.append({"prompt": prompt, "config": config, "source": source})
        return self._next(self.images)

    async def synthesize_speech(self, text, voice="kore"):
        self.speech_calls.append({"text": text, "voice": voice})
        return self._next(self.speech)


def png_asset(prompt: str = "a fox") -> MediaAsset:
    return MediaAsset(data=PNG_BYTES, mime_type="image/png", kind="image", prompt=prompt)


def pcm_asset() -> MediaAsset:
    return MediaAsset(data=b"\x01\x00" * 50, mime_type="audio/L16;rate=24000", kind="audio")


@pytest.fixture
def llm():
    return MockLLMProvider()


@pytest.fixture
def registry():
    tools = ToolRegistry()

    def read_file(path: str) -> str:
        """Read a file."""
        return f"contents of {path}"

    tools.register_function("filesystem", read_file)
    return tools


@pytest.fixture
def media_store(tmp_path):
    return MediaStore(tmp_path / "media")


@pytest.fixture
def ctx():
    return RunContext(goal="test goal", step_budget=10)
