"""Speech-synthesis node: turns staged text into audio files."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from reactloop.errors import RunCancelledError
from reactloop.graph.context import HistoryEntry, RunContext, StepKind, new_history_id
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.llm.provider import LLMProvider
from reactloop.media.provider import AVAILABLE_VOICES, DEFAULT_VOICE, MediaAsset, MediaProvider
from reactloop.schemas.decision import SpeechConfig
from reactloop.storage.media_store import MediaStore

logger = logging.getLogger(__name__)

_EMOJI = re.compile(
    "[\U0001f600-\U0001f64f\U0001f300-\U0001f5ff\U0001f680-\U0001f6ff"
    "\U0001f1e0-\U0001f1ff\u2600-\u26ff\u2700-\u27bf]"
)
_MARKDOWN = [
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"`(.*?)`"), r"\1"),
    (re.compile(r"^#{1,6}\s*(.*?)$", re.M), r"\1"),
]

VOICE_SELECTION_PROMPT = """You are an expert at selecting the most appropriate voice for text-to-speech conversion.

User Request Context: "{goal}"
Text to Convert: "{text}"

Available Voices:
{voices}

Select the voice that best fits the content's formality, emotional tone and any explicit preference in the request.

Respond with ONLY the voice name from the list above, no explanations or quotes."""


def clean_text_for_speech(text: str) -> str:
    """Remove emoji and markdown markup, then collapse whitespace."""
    cleaned = _EMOJI.sub("", text)
    for pattern, replacement in _MARKDOWN:
        cleaned = pattern.sub(replacement, cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


@dataclass
class SpeechInput:
    step: int
    text: str
    processed_text: str
    voice: str


class SpeechSynthesisNode(RetryingNode):
    """Synthesizes speech for the staged text. No audio ends the run."""

    kind = NodeKind.SYNTHESIZE_SPEECH

    def __init__(
        self,
        media: MediaProvider,
        store: MediaStore,
        llm: LLMProvider | None = None,
        model: str | None = None,
        max_retries: int = 2,
        wait_seconds: float = 5.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", lambda prepared, error: [])
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.media = media
        self.store = store
        self.llm = llm
        self.model = model

    async def prepare(self, ctx: RunContext) -> SpeechInput:
        text = ctx.pending.speech_text or ctx.goal
        config: SpeechConfig | None = ctx.pending.speech_config
        processed = clean_text_for_speech(text)

        if config and config.voice and config.voice.lower() in AVAILABLE_VOICES:
            voice = config.voice.lower()
        else:
            voice = await self._select_voice(ctx.goal, processed)
            self.check_cancelled()

        step = ctx.step_index or 1
        logger.info(f"🔊 Speech synthesis - Step {step}: {len(processed)} chars, voice {voice}")
        ctx.progress.emit_action_start(
            step,
            kind="speech_synthesis",
            provider_name="gemini",
            operation_name="synthesize_speech",
            run_id=ctx.run_id,
            voice=voice,
        )
        return SpeechInput(step=step, text=text, processed_text=processed, voice=voice)

    async def _select_voice(self, goal: str, text: str) -> str:
        if self.llm is None:
            return DEFAULT_VOICE
        excerpt = text[:500] + ("..." if len(text) > 500 else "")
        prompt = VOICE_SELECTION_PROMPT.format(
            goal=goal or "No specific context",
            text=excerpt,
            voices="\n".join(f"- {voice}" for voice in AVAILABLE_VOICES),
        )
        try:
            reply = await self.cancellable(
                self.llm.complete(prompt, model=self.model), label="Voice selection"
            )
        except RunCancelledError:
            raise
        except Exception as e:
            logger.warning(f"⚠️ Voice selection failed, using default: {e}")
            return DEFAULT_VOICE
        selected = (reply or "").strip().strip('"').lower()
        if selected in AVAILABLE_VOICES:
            logger.info(f"🎯 Selected voice: {selected}")
            return selected
        logger.warning(f"⚠️ Invalid voice {selected!r}, using default")
        return DEFAULT_VOICE

    async def execute(self, prepared: SpeechInput) -> list[MediaAsset]:
        if not prepared.processed_text:
            raise ValueError("No text to synthesize")
        assets = await self.cancellable(
            self.media.synthesize_speech(prepared.processed_text, prepared.voice)
        )
        logger.info(f"✅ Synthesized {len(assets)} audio asset(s)")
        return assets

    async def finalize(
        self, ctx: RunContext, prepared: SpeechInput, result: list[MediaAsset]
    ) -> Outcome | None:
        refs: list[str] = []
        for index, asset in enumerate(result or []):
            try:
                refs.append(self.store.save(asset, index))
            except OSError as e:
                logger.error(f"❌ Failed to save audio {index + 1}: {e}")

        success = len(refs) > 0
        summary = (
            f"Generated speech with voice {prepared.voice}: " + ", ".join(refs)
            if success
            else "Error: No audio was generated"
        )
        entry = ctx.history.append(
            HistoryEntry(
                step_index=prepared.step,
                step_kind=StepKind.TOOL_ACTION,
                provider_name="gemini",
                operation_name="synthesize_speech",
                parameters={
                    "text": prepared.text,
                    "processedText": prepared.processed_text,
                    "voice": prepared.voice,
                    "assetPaths": refs,
                },
                result_text=summary,
                justification="Convert text to speech",
                success=success,
                history_id=new_history_id("speech", prepared.step),
            )
        )
        ctx.media_asset_refs.extend(refs)
        ctx.pending.speech_text = None
        ctx.pending.speech_config = None

        ctx.progress.emit_action_complete(
            prepared.step,
            kind="speech_synthesis",
            history_id=entry.history_id,
            success=success,
            run_id=ctx.run_id,
            asset_paths=refs,
        )

        if not success:
            logger.warning("⚠️ No audio generated, ending run")
            return None
        return Outcome.DEFAULT
