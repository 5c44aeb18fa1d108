"""Runtime: the agent entry point and the progress bus."""

from reactloop.runtime.progress import ProgressBus, ProgressEvent, ProgressEventType

__all__ = ["ProgressBus", "ProgressEvent", "ProgressEventType"]
