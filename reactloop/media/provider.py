"""Media provider abstraction: image generation and speech synthesis backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from reactloop.schemas.decision import MediaConfig

# Prebuilt voices accepted by the speech backend
AVAILABLE_VOICES = (
    "achernar", "achird", "algenib", "algieba", "alnilam", "aoede", "autonoe",
    "callirrhoe", "charon", "despina", "enceladus", "erinome", "fenrir",
    "gacrux", "iapetus", "kore", "laomedeia", "leda", "orus", "puck",
    "pulcherrima", "rasalgethi", "sadachbia", "sadaltager", "schedar",
    "sulafat", "umbriel", "vindemiatrix", "zephyr", "zubenelgenubi",
)  # fmt: skip
DEFAULT_VOICE = "kore"


@dataclass
class MediaAsset:
    """Raw bytes produced by a media backend, before they are saved."""

    data: bytes
    mime_type: str
    kind: str = "image"  # "image" or "audio"
    prompt: str = ""
    safety_filtered: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class MediaProvider(ABC):
    """
    Pluggable generation backend.

    An empty list means nothing was produced (usually content filtering);
    raising is a retryable failure for the calling node.
    """

    @abstractmethod
    async def generate_images(
        self,
        prompt: str,
        config: MediaConfig,
        source: MediaAsset | None = None,
    ) -> list[MediaAsset]:
        """Generate images, or edit ``source`` when given."""

    @abstractmethod
    async def synthesize_speech(self, text: str, voice: str = DEFAULT_VOICE) -> list[MediaAsset]:
        """Turn text into audio assets."""
