"""Gemini media provider over the google-genai SDK."""

import logging
from typing import Any

from reactloop.media.provider import DEFAULT_VOICE, MediaAsset, MediaProvider
from reactloop.schemas.decision import MediaConfig

logger = logging.getLogger(__name__)

IMAGE_MODEL = "gemini-2.0-flash-preview-image-generation"
TTS_MODEL = "gemini-2.5-flash-preview-tts"


class GeminiMediaProvider(MediaProvider):
    """
    Image generation/editing and text-to-speech through Gemini.

    The SDK is imported when the client is first needed so the engine can
    run without media credentials.
    """

    def __init__(
        self,
        api_key: str | None,
        image_model: str = IMAGE_MODEL,
        tts_model: str = TTS_MODEL,
    ):
        self.api_key = api_key
        self.image_model = image_model
        self.tts_model = tts_model
        self._client: Any = None

    def _get_client(self) -> Any:
        if not self.api_key:
            raise RuntimeError("Gemini API key is required for media generation")
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate_images(
        self,
        prompt: str,
        config: MediaConfig,
        source: MediaAsset | None = None,
    ) -> list[MediaAsset]:
        from google.genai import types

        client = self._get_client()
        parts: list[Any] = [types.Part.from_text(text=prompt)]
        if source is not None:
            parts.append(types.Part.from_bytes(data=source.data, mime_type=source.mime_type))

        assets: list[MediaAsset] = []
        # The image model returns one image per call
        for _ in range(config.number_of_images):
            response = await client.aio.models.generate_content(
                model=self.image_model,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
            assets.extend(self._extract(response, prompt, "image", config.aspect_ratio))

        logger.info(f"✅ Gemini returned {len(assets)} image(s)")
        return assets

    async def synthesize_speech(self, text: str, voice: str = DEFAULT_VOICE) -> list[MediaAsset]:
        from google.genai import types

        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self.tts_model,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                    )
                ),
            ),
        )
        assets = self._extract(response, text, "audio")
        for asset in assets:
            asset.metadata["voice"] = voice
        return assets

    @staticmethod
    def _extract(
        response: Any, prompt: str, kind: str, aspect_ratio: str | None = None
    ) -> list[MediaAsset]:
        assets = []
        for candidate in getattr(response, "candidates", None) or []:
            filtered = str(getattr(candidate, "finish_reason", "")).endswith("SAFETY")
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is None or not inline.data:
                    continue
                mime = inline.mime_type or ""
                if not mime.startswith(kind):
                    continue
                metadata = {"aspectRatio": aspect_ratio} if aspect_ratio else {}
                assets.append(
                    MediaAsset(
                        data=inline.data,
                        mime_type=mime,
                        kind=kind,
                        prompt=prompt,
                        safety_filtered=filtered,
                        metadata=metadata,
                    )
                )
        return assets
