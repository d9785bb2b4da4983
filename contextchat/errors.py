"""Error taxonomy for contextchat.

"Not tracked" is deliberately absent: ``FileTracker.lookup`` returns ``None``
for an unknown (path, range) and callers send full content.
"""

from __future__ import annotations


class ContextChatError(Exception):
    """Base class for all contextchat errors."""


class TransportError(ContextChatError):
    """Remote call failed (network, auth, or provider error).

    Aborts the current turn only; history is left untouched.
    """

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class DiffComputationError(ContextChatError):
    """Content could not be diffed (binary or otherwise non-text)."""


class SocketAcceptError(ContextChatError):
    """Accepting or reading an inbound socket connection failed."""

    def __init__(self, message: str, connection_id: int | None = None):
        super().__init__(message)
        self.connection_id = connection_id


class HistoryIOError(ContextChatError):
    """History could not be loaded, saved, or cleared."""


class ConfigError(ContextChatError):
    """Configuration file is malformed."""


__all__ = [
    "ConfigError",
    "ContextChatError",
    "DiffComputationError",
    "HistoryIOError",
    "SocketAcceptError",
    "TransportError",
]
