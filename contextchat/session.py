"""
Session models for contextchat.

Pydantic models for the per-directory conversation state: the ordered chat
history plus the files the remote side has already seen.
"""

from __future__ import annotations

import hashlib
import re
import time
from enum import Enum

from pydantic import BaseModel, Field

_RANGE_RE = re.compile(r"^(\d*)-(\d*)$")


def fingerprint(content: str) -> str:
    """Content hash used to detect changes cheaply."""
    return hashlib.sha256(content.encode("utf-8", errors="surrogatepass")).hexdigest()


class FileRange(BaseModel):
    """
    Inclusive, 1-based line range of a file.

    ``end == 0`` means "to the end of the file".
    """

    start: int = 1
    end: int = 0

    model_config = {"frozen": True}

    @classmethod
    def from_text(cls, text: str) -> "FileRange | None":
        """Parse ``start-end``; missing start is 1, missing end is EOF."""
        match = _RANGE_RE.match(text.strip())
        if not match:
            return None
        start = int(match.group(1)) if match.group(1) else 1
        end = int(match.group(2)) if match.group(2) else 0
        return cls(start=max(start, 1), end=max(end, 0))

    def slice(self, content: str) -> str:
        """Return the lines of ``content`` covered by this range, endings kept."""
        lines = content.splitlines(keepends=True)
        stop = self.end if self.end else None
        return "".join(lines[self.start - 1 : stop])

    def __str__(self) -> str:
        if self.end == 0:
            return f"{self.start}-"
        return f"{self.start}-{self.end}"


def parse_file_arg(arg: str) -> tuple[str, FileRange | None]:
    """
    Split a ``path[:start-end]`` argument into path and optional range.

    A trailing ``:suffix`` that is not a range is kept as part of the path.
    """
    path, sep, suffix = arg.strip().rpartition(":")
    if sep and path:
        file_range = FileRange.from_text(suffix)
        if file_range is not None:
            return path, file_range
    return arg.strip(), None


def tracking_key(path: str, file_range: FileRange | None) -> str:
    """Identity of a tracked (path, range) pair."""
    if file_range is None:
        return path
    return f"{path}:{file_range}"


class TrackedFile(BaseModel):
    """Snapshot of a file (or line range) exactly as last sent to the remote."""

    path: str
    range: FileRange | None = None
    last_sent_content: str
    fingerprint: str
    updated_at: float = Field(default_factory=time.time)

    @property
    def key(self) -> str:
        return tracking_key(self.path, self.range)

    @property
    def location(self) -> str:
        """Human-readable ``path[:start-end]``."""
        return self.key


class Role(str, Enum):
    """Sender of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """
    One entry of the conversation history. Immutable once created.

    ``context`` carries the rendered file payload attached to a user turn so
    the remote keeps seeing it in later requests; ``content`` is what the
    user actually typed.
    """

    role: Role
    content: str
    timestamp: float = Field(default_factory=time.time)
    context: str = ""

    model_config = {"frozen": True}

    def to_api(self) -> dict[str, str]:
        """Message dict in the shape both provider SDKs accept."""
        if self.context:
            return {"role": self.role.value, "content": f"{self.context}\n\n{self.content}"}
        return {"role": self.role.value, "content": self.content}


class Session(BaseModel):
    """
    Conversation state for one working directory.

    Only StreamingSession mutates a live Session; everyone else works on
    ``snapshot()``.
    """

    working_dir: str
    messages: list[ChatMessage] = Field(default_factory=list)
    tracked_files: dict[str, TrackedFile] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    model_config = {"extra": "ignore"}

    def append(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.updated_at = time.time()

    def clear(self) -> None:
        """Drop history and tracked files."""
        self.messages.clear()
        self.tracked_files.clear()
        self.updated_at = time.time()

    def snapshot(self) -> "Session":
        """Deep copy safe to read while a turn is being committed."""
        return self.model_copy(deep=True)

    def api_messages(self) -> list[dict[str, str]]:
        return [m.to_api() for m in self.messages]


__all__ = [
    "ChatMessage",
    "FileRange",
    "Role",
    "Session",
    "TrackedFile",
    "fingerprint",
    "parse_file_arg",
    "tracking_key",
]
