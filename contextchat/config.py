"""
Configuration management for contextchat.

Settings live in ~/.contextchat/config.json. Environment variables override
the file, and a project-local .env is loaded first so keys and overrides can
be kept next to the code.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigError

CONFIG_PATH = Path.home() / ".contextchat" / "config.json"
DEFAULT_HISTORY_DIR = Path.home() / ".cache" / "contextchat"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class ModelConfig:
    """Remote model selection."""

    default_model: str = "sonnet"
    max_tokens: int = 4096
    temperature: float = 0.1


@dataclass
class ContextConfig:
    """
    File context synchronization policy.

    diff_threshold: send full content instead of a diff when the encoded diff
        is larger than this fraction of the full content.
    retrack_after_commit: update tracked snapshots after every committed turn.
        When False, snapshots keep the content from first transmission.
    include_tracked: re-check every tracked file on each turn, not only the
        files named in the request.
    """

    diff_threshold: float = 0.7
    retrack_after_commit: bool = True
    include_tracked: bool = True


@dataclass
class SocketConfig:
    """Loopback TCP listener for inbound prompts."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 4000
    restart_delay: float = 1.0


@dataclass
class HistoryConfig:
    """Conversation history persistence."""

    directory: str = str(DEFAULT_HISTORY_DIR)
    persist_every_turn: bool = True


@dataclass
class InputConfig:
    """Input multiplexing policy."""

    # Sources whose arrival cancels an in-flight streamed response
    interrupt_sources: list[str] = field(default_factory=lambda: ["interactive"])


@dataclass
class ChatConfig:
    """Complete contextchat configuration."""

    models: ModelConfig = field(default_factory=ModelConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    socket: SocketConfig = field(default_factory=SocketConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    input: InputConfig = field(default_factory=InputConfig)

    @classmethod
    def load(cls, path: Path | None = None, env: bool = True) -> "ChatConfig":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Config file (default: ~/.contextchat/config.json)
            env: Apply CONTEXTCHAT_* environment overrides

        Returns:
            ChatConfig with defaults for anything unspecified

        Raises:
            ConfigError: If the file exists but is not valid JSON
        """
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                raise ConfigError(f"Cannot read config {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {path} must contain a JSON object")

        config = cls(
            models=ModelConfig(**_filter_dataclass_fields(data.get("models", {}), ModelConfig)),
            context=ContextConfig(**_filter_dataclass_fields(data.get("context", {}), ContextConfig)),
            socket=SocketConfig(**_filter_dataclass_fields(data.get("socket", {}), SocketConfig)),
            history=HistoryConfig(**_filter_dataclass_fields(data.get("history", {}), HistoryConfig)),
            input=InputConfig(**_filter_dataclass_fields(data.get("input", {}), InputConfig)),
        )
        if env:
            config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply CONTEXTCHAT_* environment overrides (highest priority)."""
        load_dotenv()

        model = os.environ.get("CONTEXTCHAT_MODEL")
        if model:
            self.models.default_model = model

        threshold = os.environ.get("CONTEXTCHAT_DIFF_THRESHOLD")
        if threshold:
            try:
                self.context.diff_threshold = float(threshold)
            except ValueError as e:
                raise ConfigError(f"CONTEXTCHAT_DIFF_THRESHOLD must be a number: {threshold!r}") from e

        port = os.environ.get("CONTEXTCHAT_PORT")
        if port:
            try:
                self.socket.port = int(port)
            except ValueError as e:
                raise ConfigError(f"CONTEXTCHAT_PORT must be an integer: {port!r}") from e

        history_dir = os.environ.get("CONTEXTCHAT_HISTORY_DIR")
        if history_dir:
            self.history.directory = history_dir

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


__all__ = [
    "CONFIG_PATH",
    "ChatConfig",
    "ContextConfig",
    "HistoryConfig",
    "InputConfig",
    "ModelConfig",
    "SocketConfig",
]
