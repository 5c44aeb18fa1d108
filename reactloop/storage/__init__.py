"""Storage for generated media."""

from reactloop.storage.media_store import MediaStore, parse_audio_mime, pcm_to_wav

__all__ = ["MediaStore", "parse_audio_mime", "pcm_to_wav"]
