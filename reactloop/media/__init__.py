"""Media generation backends."""

from reactloop.media.gemini import GeminiMediaProvider
from reactloop.media.provider import AVAILABLE_VOICES, DEFAULT_VOICE, MediaAsset, MediaProvider

__all__ = [
    "AVAILABLE_VOICES",
    "DEFAULT_VOICE",
    "GeminiMediaProvider",
    "MediaAsset",
    "MediaProvider",
]
