"""
History persistence for contextchat.

One JSON file per working directory under ~/.cache/contextchat/, named after
the percent-encoded directory path.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from pydantic import ValidationError

from .config import DEFAULT_HISTORY_DIR
from .errors import HistoryIOError
from .session import Session

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    """Key-value persistence of sessions, keyed by working directory."""

    def load(self, key: str) -> Session | None:
        ...

    def save(self, key: str, session: Session) -> None:
        ...

    def clear(self, key: str) -> bool:
        ...


class JsonHistoryStore:
    """
    Stores each session as ``<base_dir>/<percent-encoded cwd>.json``.

    Writes go to a temp file in the same directory and are renamed into
    place, so a crash mid-write never leaves a truncated history behind.
    """

    def __init__(self, base_dir: Path | str | None = None):
        """
        Initialize history store.

        Args:
            base_dir: Directory for history files (default: ~/.cache/contextchat)
        """
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_HISTORY_DIR

    def path_for(self, key: str) -> Path:
        """History file for a working directory."""
        return self.base_dir / f"{quote(key, safe='')}.json"

    def load(self, key: str) -> Session | None:
        """
        Load the session for ``key``.

        Returns:
            Session, or None if no history exists

        Raises:
            HistoryIOError: If the file exists but cannot be read or parsed
        """
        history_file = self.path_for(key)
        if not history_file.exists():
            return None

        try:
            session = Session.model_validate_json(history_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            raise HistoryIOError(f"Cannot load history {history_file}: {e}") from e

        logger.info(f"Loaded {len(session.messages)} messages from {history_file}")
        return session

    def save(self, key: str, session: Session) -> None:
        """
        Atomically write the session for ``key``.

        Raises:
            HistoryIOError: If the file cannot be written
        """
        target_path = self.path_for(key)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix="history_", dir=self.base_dir)
        except OSError as e:
            raise HistoryIOError(f"Cannot save history to {self.base_dir}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(session.model_dump_json(indent=2))
            # Atomic rename
            os.replace(temp_path, target_path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                logger.debug(f"Could not remove temp file {temp_path}")
            raise HistoryIOError(f"Cannot save history {target_path}: {e}") from e

        logger.debug(f"Saved {len(session.messages)} messages to {target_path}")

    def clear(self, key: str) -> bool:
        """
        Delete the history for ``key``.

        Returns:
            True if a history file was removed, False if none existed
        """
        history_file = self.path_for(key)
        if not history_file.exists():
            logger.info(f"No history at {history_file}; nothing to clear")
            return False
        try:
            history_file.unlink()
        except OSError as e:
            raise HistoryIOError(f"Cannot clear history {history_file}: {e}") from e
        logger.info(f"Cleared history {history_file}")
        return True


__all__ = ["HistoryStore", "JsonHistoryStore"]
