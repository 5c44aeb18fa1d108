"""Shared reactloop configuration utilities.

Centralises reading of ~/.reactloop/configuration.json so that the agent,
the CLI and every node share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

REACTLOOP_CONFIG_FILE = Path.home() / ".reactloop" / "configuration.json"

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_STEP_BUDGET = 10
MAX_BACKOFF_SECONDS = 30.0


def _config_path() -> Path:
    override = os.environ.get("REACTLOOP_CONFIG")
    return Path(override) if override else REACTLOOP_CONFIG_FILE


def get_reactloop_config() -> dict[str, Any]:
    """Load configuration from ~/.reactloop/configuration.json (or $REACTLOOP_CONFIG)."""
    path = _config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the user's preferred LLM model string (e.g. 'anthropic/claude-sonnet-4-20250514')."""
    llm = get_reactloop_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_reactloop_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable specified in configuration."""
    llm = get_reactloop_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_gemini_api_key() -> str | None:
    """Return the Gemini key used by the media provider."""
    media = get_reactloop_config().get("media", {})
    env_var = media.get("api_key_env_var")
    if env_var:
        return os.environ.get(env_var)
    return os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")


def get_media_dir() -> Path:
    """Return the directory generated media is written beneath."""
    media = get_reactloop_config().get("media", {})
    if media.get("output_dir"):
        return Path(media["output_dir"]).expanduser()
    return Path.cwd()


# ---------------------------------------------------------------------------
# Node retry / timeout settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrySettings:
    """Retry policy for a single node kind."""

    max_retries: int = 3
    wait_seconds: float = 1.0
    max_wait_seconds: float = MAX_BACKOFF_SECONDS


DEFAULT_RETRIES: dict[str, RetrySettings] = {
    "discover": RetrySettings(max_retries=1, wait_seconds=1.0),
    "reason": RetrySettings(max_retries=3, wait_seconds=2.0),
    "act": RetrySettings(max_retries=3, wait_seconds=1.0),
    "process": RetrySettings(max_retries=3, wait_seconds=1.0),
    "generate_media": RetrySettings(max_retries=3, wait_seconds=2.0),
    "synthesize_speech": RetrySettings(max_retries=2, wait_seconds=5.0),
    "summarize": RetrySettings(max_retries=2, wait_seconds=1.0),
}


def get_retry_settings() -> dict[str, RetrySettings]:
    """Merge per-node overrides from the "retries" config section onto the defaults."""
    merged = dict(DEFAULT_RETRIES)
    overrides = get_reactloop_config().get("retries", {})
    if isinstance(overrides, dict):
        for kind, values in overrides.items():
            if not isinstance(values, dict):
                continue
            base = merged.get(kind, RetrySettings())
            merged[kind] = RetrySettings(
                max_retries=int(values.get("max_retries", base.max_retries)),
                wait_seconds=float(values.get("wait_seconds", base.wait_seconds)),
                max_wait_seconds=float(values.get("max_wait_seconds", base.max_wait_seconds)),
            )
    return merged


@dataclass(frozen=True)
class ToolTimeouts:
    """Timeout classes for tool invocations, in seconds."""

    default: float = 30.0
    slow: float = 360.0
    slow_markers: tuple[str, ...] = ("youtube", "transcript", "video")

    def for_operation(self, operation_name: str) -> float:
        name = operation_name.lower()
        if any(marker in name for marker in self.slow_markers):
            return self.slow
        return self.default


@dataclass(frozen=True)
class ModelConfig:
    """Which model each kind of oracle call uses. None means the provider default."""

    default: str | None = None
    reasoning: str | None = None
    summarization: str | None = None


def get_model_config() -> ModelConfig:
    models = get_reactloop_config().get("models", {})
    if not isinstance(models, dict):
        return ModelConfig()
    return ModelConfig(
        default=models.get("default"),
        reasoning=models.get("reasoning"),
        summarization=models.get("summarization"),
    )


# ---------------------------------------------------------------------------
# RuntimeConfig – shared by the agent and the CLI
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Engine runtime configuration loaded from ~/.reactloop/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = 0.7
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
    models: ModelConfig = field(default_factory=get_model_config)
    retries: dict[str, RetrySettings] = field(default_factory=get_retry_settings)
    tool_timeouts: ToolTimeouts = field(default_factory=ToolTimeouts)
    media_dir: Path = field(default_factory=get_media_dir)
    gemini_api_key: str | None = field(default_factory=get_gemini_api_key)
    default_step_budget: int = DEFAULT_STEP_BUDGET

    def retry_for(self, kind: str) -> RetrySettings:
        return self.retries.get(kind, RetrySettings())
