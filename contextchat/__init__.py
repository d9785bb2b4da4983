"""contextchat: terminal chat with a remote code assistant.

Keeps track of which files (and line ranges) the remote model has already
seen, so later turns send only a line diff, or nothing when the file is
unchanged.

Layers:
- Context: FileTracker snapshots + DiffEngine (Myers line diff)
- Session: StreamingSession turn state machine, JSON history per directory
- Input: InputMultiplexer over one-shot prompt, piped stdin, terminal, socket
"""

__version__ = "0.1.0"

from .config import ChatConfig
from .context import ContextPayload, ContextResolver, ResolvedContext, choose_payload
from .diff_engine import DiffEngine, DiffRecord, PayloadKind, apply_diff, compute_diff
from .errors import (
    ConfigError,
    ContextChatError,
    DiffComputationError,
    HistoryIOError,
    SocketAcceptError,
    TransportError,
)
from .file_tracker import FileTracker
from .history import HistoryStore, JsonHistoryStore
from .input_multiplexer import (
    InputEvent,
    InputMultiplexer,
    InteractiveLine,
    OneShotPrompt,
    PipedText,
    SocketPayload,
)
from .remote_client import MultiProviderClient, RemoteClient, TurnRequest
from .session import ChatMessage, FileRange, Role, Session, TrackedFile
from .streaming_session import StreamingSession, TurnResult, TurnState, TurnStatus

__all__ = [
    # Context
    "FileTracker",
    "DiffEngine",
    "DiffRecord",
    "PayloadKind",
    "compute_diff",
    "apply_diff",
    "ContextPayload",
    "ContextResolver",
    "ResolvedContext",
    "choose_payload",
    # Session
    "StreamingSession",
    "TurnResult",
    "TurnState",
    "TurnStatus",
    "Session",
    "ChatMessage",
    "Role",
    "FileRange",
    "TrackedFile",
    "HistoryStore",
    "JsonHistoryStore",
    # Input
    "InputMultiplexer",
    "InputEvent",
    "OneShotPrompt",
    "PipedText",
    "InteractiveLine",
    "SocketPayload",
    # Remote
    "RemoteClient",
    "MultiProviderClient",
    "TurnRequest",
    # Config & errors
    "ChatConfig",
    "ContextChatError",
    "TransportError",
    "DiffComputationError",
    "SocketAcceptError",
    "HistoryIOError",
    "ConfigError",
]
