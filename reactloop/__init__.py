"""reactloop - a Reason/Act/Observe task-orchestration engine."""

from reactloop.runtime.agent import ReActAgent, RunResult

__version__ = "0.1.0"

__all__ = ["ReActAgent", "RunResult", "__version__"]
