"""Tests for image generation, speech synthesis and the media store."""

import struct

import pytest

from reactloop.errors import RunCancelledError
from reactloop.graph.context import RunContext
from reactloop.graph.edge import Outcome
from reactloop.graph.nodes.media import (
    MediaGenerationNode,
    extract_image_prompt,
    rule_based_enhancement,
    simplify_prompt,
)
from reactloop.graph.nodes.speech import SpeechSynthesisNode, clean_text_for_speech
from reactloop.llm.mock import MockLLMProvider
from reactloop.schemas.decision import MediaConfig, SpeechConfig
from reactloop.storage.media_store import parse_audio_mime, pcm_to_wav
from tests.conftest import PNG_BYTES, FakeMediaProvider, pcm_asset, png_asset


def image_ctx(prompt: str = "a red fox", config: MediaConfig | None = None) -> RunContext:
    ctx = RunContext(goal="draw a picture of a red fox")
    ctx.step_index = 1
    ctx.pending.media_prompt = prompt
    ctx.pending.media_config = config
    return ctx


class TestMediaGenerationNode:
    @pytest.mark.asyncio
    async def test_saves_assets_and_records_refs(self, media_store):
        media = FakeMediaProvider(images=[[png_asset()]])
        llm = MockLLMProvider(texts=["A red fox in golden light"])
        ctx = image_ctx()

        outcome = await MediaGenerationNode(media, media_store, llm=llm).run(ctx)

        assert outcome == Outcome.DEFAULT
        assert media.image_calls[0]["prompt"] == "A red fox in golden light"
        assert len(ctx.media_asset_refs) == 1
        ref = ctx.media_asset_refs[0]
        assert ref.startswith("images/")
        assert (media_store.base_dir / ref).read_bytes() == PNG_BYTES

        entry = ctx.history[0]
        assert entry.success is True
        assert entry.operation_name == "generate_images"
        assert entry.history_id.startswith("image-1-")
        assert entry.parameters["assetPaths"] == [ref]
        assert entry.parameters["aspectRatio"] == "16:9"
        assert entry.parameters["numberOfImages"] == 1
        assert ctx.pending.media_prompt is None

    @pytest.mark.asyncio
    async def test_zero_assets_ends_run(self, media_store):
        media = FakeMediaProvider(images=[[]])
        ctx = image_ctx()

        outcome = await MediaGenerationNode(media, media_store, enhance_prompts=False).run(ctx)

        assert outcome is None
        assert ctx.history[0].success is False
        assert ctx.media_asset_refs == []

    @pytest.mark.asyncio
    async def test_failure_retries_once_with_simplified_prompt(self, media_store):
        errors = [RuntimeError("quota")] * 3
        media = FakeMediaProvider(images=[*errors, [png_asset()]])
        ctx = image_ctx(prompt="A very detailed castle, at dusk")

        outcome = await MediaGenerationNode(media, media_store, enhance_prompts=False).run(ctx)

        assert outcome == Outcome.DEFAULT
        assert len(media.image_calls) == 4
        assert media.image_calls[-1]["prompt"] == "A castle"

    @pytest.mark.asyncio
    async def test_fallback_failure_yields_no_assets(self, media_store):
        media = FakeMediaProvider(images=[RuntimeError("down")] * 4)
        ctx = image_ctx()

        outcome = await MediaGenerationNode(media, media_store, enhance_prompts=False).run(ctx)

        assert outcome is None

    @pytest.mark.asyncio
    async def test_enhancement_failure_uses_rules(self, media_store):
        media = FakeMediaProvider(images=[[png_asset()]])
        llm = MockLLMProvider(texts=[RuntimeError("no llm")])
        ctx = image_ctx(prompt="sunset over mountains")

        await MediaGenerationNode(media, media_store, llm=llm).run(ctx)

        assert media.image_calls[0]["prompt"].startswith("Stunning, photorealistic sunset")

    @pytest.mark.asyncio
    async def test_cancel_during_prompt_enhancement_skips_generation(self, media_store):
        media = FakeMediaProvider(images=[[png_asset()]])
        ctx = image_ctx()

        def enhance_then_stop(prompt):
            ctx.cancellation.cancel("user stop")
            return "A red fox in golden light"

        llm = MockLLMProvider(texts=[enhance_then_stop])

        with pytest.raises(RunCancelledError, match="user stop"):
            await MediaGenerationNode(media, media_store, llm=llm).run(ctx)

        assert media.image_calls == []
        assert len(ctx.history) == 0

    @pytest.mark.asyncio
    async def test_prompt_falls_back_to_goal(self, media_store):
        media = FakeMediaProvider(images=[[png_asset()]])
        ctx = image_ctx(prompt=None)

        await MediaGenerationNode(media, media_store, enhance_prompts=False).run(ctx)

        assert media.image_calls[0]["prompt"] == "a red fox"

    @pytest.mark.asyncio
    async def test_source_image_switches_to_editing(self, media_store):
        source = media_store.base_dir / "images" / "original.png"
        source.parent.mkdir(parents=True)
        source.write_bytes(PNG_BYTES)
        media = FakeMediaProvider(images=[[png_asset()]])
        ctx = image_ctx(
            prompt="make it blue", config=MediaConfig(source_image="images/original.png")
        )

        await MediaGenerationNode(media, media_store, enhance_prompts=False).run(ctx)

        call = media.image_calls[0]
        assert call["source"].data == PNG_BYTES
        assert call["source"].mime_type == "image/png"
        assert ctx.history[0].operation_name == "edit_images"


class TestPromptHelpers:
    def test_extract_strips_trigger_words(self):
        assert extract_image_prompt("draw a picture of a red fox") == "a red fox"
        assert extract_image_prompt("what is the weather") == "what is the weather"

    def test_simplify(self):
        assert simplify_prompt("A very detailed castle, at dusk") == "A castle"
        assert len(simplify_prompt("x" * 300)) == 100

    def test_rule_categories(self):
        assert rule_based_enhancement("flowchart of login").startswith("Clean, professional")
        assert rule_based_enhancement("a dragon").startswith("Epic, highly detailed")
        assert rule_based_enhancement("a teacup").startswith("High-quality, photorealistic")


def speech_ctx(text: str = "**Hello** there", config: SpeechConfig | None = None) -> RunContext:
    ctx = RunContext(goal="read this aloud")
    ctx.step_index = 2
    ctx.pending.speech_text = text
    ctx.pending.speech_config = config
    return ctx


class TestSpeechSynthesisNode:
    @pytest.mark.asyncio
    async def test_pcm_saved_as_wav(self, media_store):
        media = FakeMediaProvider(speech=[[pcm_asset()]])
        ctx = speech_ctx(config=SpeechConfig(voice="Puck"))
        llm = MockLLMProvider()

        outcome = await SpeechSynthesisNode(media, media_store, llm=llm).run(ctx)

        assert outcome == Outcome.DEFAULT
        assert llm.calls == []
        assert media.speech_calls == [{"text": "Hello there", "voice": "puck"}]

        ref = ctx.media_asset_refs[0]
        assert ref.startswith("audio/") and ref.endswith(".wav")
        data = (media_store.base_dir / ref).read_bytes()
        assert data[:4] == b"RIFF"
        assert len(data) == 44 + 100

        entry = ctx.history[0]
        assert entry.history_id.startswith("speech-2-")
        assert entry.parameters["voice"] == "puck"
        assert entry.parameters["processedText"] == "Hello there"
        assert ctx.pending.speech_text is None

    @pytest.mark.asyncio
    async def test_invalid_voice_selection_defaults_to_kore(self, media_store):
        media = FakeMediaProvider(speech=[[pcm_asset()]])
        llm = MockLLMProvider(texts=["Robot"])

        await SpeechSynthesisNode(media, media_store, llm=llm).run(speech_ctx())

        assert media.speech_calls[0]["voice"] == "kore"

    @pytest.mark.asyncio
    async def test_oracle_voice_selection(self, media_store):
        media = FakeMediaProvider(speech=[[pcm_asset()]])
        llm = MockLLMProvider(texts=["Charon\n"])

        await SpeechSynthesisNode(media, media_store, llm=llm).run(speech_ctx())

        assert media.speech_calls[0]["voice"] == "charon"

    @pytest.mark.asyncio
    async def test_cancel_during_voice_selection_skips_synthesis(self, media_store):
        media = FakeMediaProvider(speech=[[pcm_asset()]])
        ctx = speech_ctx()

        def pick_then_stop(prompt):
            ctx.cancellation.cancel("user stop")
            return "charon"

        llm = MockLLMProvider(texts=[pick_then_stop])

        with pytest.raises(RunCancelledError, match="user stop"):
            await SpeechSynthesisNode(media, media_store, llm=llm).run(ctx)

        assert media.speech_calls == []
        assert len(ctx.history) == 0

    @pytest.mark.asyncio
    async def test_no_audio_ends_run(self, media_store):
        media = FakeMediaProvider(speech=[RuntimeError("tts down")] * 2)

        outcome = await SpeechSynthesisNode(media, media_store).run(speech_ctx())

        assert outcome is None


def test_clean_text_for_speech():
    assert clean_text_for_speech("**Hello** 😀 `world`\n# Title") == "Hello world Title"
    assert clean_text_for_speech("*soft*   words\n\n") == "soft words"


def test_pcm_to_wav_header():
    pcm = b"\x00\x01" * 10
    wav = pcm_to_wav(pcm, sample_rate=16000)

    assert len(wav) == 44 + len(pcm)
    assert wav[:4] == b"RIFF" and wav[8:12] == b"WAVE" and wav[36:40] == b"data"
    assert struct.unpack("<I", wav[4:8])[0] == 36 + len(pcm)
    assert struct.unpack("<I", wav[24:28])[0] == 16000
    assert struct.unpack("<H", wav[34:36])[0] == 16
    assert struct.unpack("<I", wav[40:44])[0] == len(pcm)


def test_parse_audio_mime():
    assert parse_audio_mime("audio/L16;rate=24000") == {
        "sample_rate": 24000,
        "bits_per_sample": 16,
        "channels": 1,
    }
    assert parse_audio_mime("audio/L24; rate=48000")["bits_per_sample"] == 24
    assert parse_audio_mime("audio/pcm")["sample_rate"] == 24000


def test_store_rejects_refs_outside_base(media_store):
    with pytest.raises(ValueError):
        media_store.load("../outside.png")
