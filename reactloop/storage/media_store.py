"""
File-based storage for generated media.

Directory structure:
{base_dir}/
  images/
    image-{timestamp}-{n}.png
  audio/
    speech-{timestamp}-{n}.wav

Refs returned by ``save`` are POSIX paths relative to ``base_dir``.
"""

import logging
import mimetypes
import struct
from datetime import UTC, datetime
from pathlib import Path

from reactloop.media.provider import MediaAsset

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 24000
DEFAULT_BITS_PER_SAMPLE = 16
DEFAULT_CHANNELS = 1
WAV_HEADER_SIZE = 44

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
}


def parse_audio_mime(mime_type: str) -> dict[str, int]:
    """
    Read PCM parameters from a mime type like ``audio/L16;rate=24000``.

    Missing values fall back to 24 kHz, 16-bit, mono.
    """
    file_type, *params = [piece.strip() for piece in mime_type.split(";")]
    _, _, fmt = file_type.partition("/")

    bits = DEFAULT_BITS_PER_SAMPLE
    if fmt.upper().startswith("L") and fmt[1:].isdigit():
        bits = int(fmt[1:])

    rate = DEFAULT_SAMPLE_RATE
    for param in params:
        key, _, value = param.partition("=")
        if key.strip() == "rate" and value.strip().isdigit():
            rate = int(value.strip())

    return {"sample_rate": rate, "bits_per_sample": bits, "channels": DEFAULT_CHANNELS}


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    bits_per_sample: int = DEFAULT_BITS_PER_SAMPLE,
    channels: int = DEFAULT_CHANNELS,
) -> bytes:
    """Prefix raw little-endian PCM with a 44-byte RIFF/WAVE header."""
    byte_rate = sample_rate * channels * bits_per_sample // 8
    block_align = channels * bits_per_sample // 8
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + len(pcm),
        b"WAVE",
        b"fmt ",
        16,  # PCM fmt chunk size
        1,  # PCM format
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        len(pcm),
    )
    return header + pcm


def _is_raw_pcm(mime_type: str) -> bool:
    mime = mime_type.lower()
    return mime.startswith("audio/l16") or mime.startswith("audio/pcm")


class MediaStore:
    """Writes media assets beneath ``base_dir`` and reads them back by ref."""

    SUBDIRS = {"image": "images", "audio": "audio"}
    PREFIXES = {"image": "image", "audio": "speech"}

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def save(self, asset: MediaAsset, index: int = 0) -> str:
        """Write one asset and return its relative ref."""
        data = asset.data
        mime_type = asset.mime_type
        if asset.kind == "audio" and _is_raw_pcm(mime_type):
            data = pcm_to_wav(data, **parse_audio_mime(mime_type))
            mime_type = "audio/wav"

        subdir = self.SUBDIRS.get(asset.kind, asset.kind)
        prefix = self.PREFIXES.get(asset.kind, asset.kind)
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        suffix = self._extension(mime_type)

        target_dir = self.base_dir / subdir
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{prefix}-{timestamp}-{index + 1}{suffix}"
        path.write_bytes(data)

        ref = path.relative_to(self.base_dir).as_posix()
        logger.info(f"💾 Saved {asset.kind} asset: {ref} ({len(data)} bytes)")
        return ref

    def load(self, ref: str) -> MediaAsset:
        """Read a previously saved asset (or any file under ``base_dir``)."""
        path = self._resolve(ref)
        if not path.is_file():
            raise FileNotFoundError(f"Media asset not found: {ref}")
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        kind = "audio" if mime_type.startswith("audio") else "image"
        return MediaAsset(data=path.read_bytes(), mime_type=mime_type, kind=kind)

    def _resolve(self, ref: str) -> Path:
        candidate = Path(ref).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self.base_dir.resolve()):
            raise ValueError(f"Media ref escapes the media directory: {ref}")
        return resolved

    @staticmethod
    def _extension(mime_type: str) -> str:
        base = mime_type.split(";")[0].strip().lower()
        return _EXTENSIONS.get(base) or mimetypes.guess_extension(base) or ".bin"
