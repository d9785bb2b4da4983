"""FileTracker - snapshots of file content already sent to the remote."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator

from .session import FileRange, TrackedFile, fingerprint, tracking_key

logger = logging.getLogger(__name__)


class FileTracker:
    """
    Records what each (path, range) looked like when it was last transmitted.

    Never touches the filesystem: callers read files and hand content in.
    A new range on an already tracked path is a separate entry.

    The backing dict may be shared with a ``Session`` so that persisting the
    session persists the snapshots too.
    """

    def __init__(self, entries: dict[str, TrackedFile] | None = None):
        self._entries: dict[str, TrackedFile] = entries if entries is not None else {}

    def register(self, path: str, file_range: FileRange | None, content: str) -> TrackedFile:
        """
        Record ``content`` as the transmitted snapshot for (path, range).

        Args:
            path: Absolute file path
            file_range: Optional line range
            content: Exact text that was sent

        Returns:
            The stored TrackedFile
        """
        tracked = TrackedFile(
            path=path,
            range=file_range,
            last_sent_content=content,
            fingerprint=fingerprint(content),
            updated_at=time.time(),
        )
        self._entries[tracked.key] = tracked
        logger.debug(f"Tracking {tracked.key} ({len(content)} chars)")
        return tracked

    def lookup(self, path: str, file_range: FileRange | None) -> str | None:
        """Last sent content, or None when (path, range) is not tracked."""
        tracked = self._entries.get(tracking_key(path, file_range))
        if tracked is None:
            return None
        return tracked.last_sent_content

    def get(self, path: str, file_range: FileRange | None) -> TrackedFile | None:
        return self._entries.get(tracking_key(path, file_range))

    def update(self, path: str, file_range: FileRange | None, content: str) -> TrackedFile:
        """Replace the snapshot after a successful send."""
        existing = self.get(path, file_range)
        if existing is not None and existing.fingerprint == fingerprint(content):
            return existing
        return self.register(path, file_range, content)

    def is_tracked(self, path: str, file_range: FileRange | None) -> bool:
        return tracking_key(path, file_range) in self._entries

    def forget(self, path: str, file_range: FileRange | None) -> bool:
        """Stop tracking (path, range). Returns True if it was tracked."""
        return self._entries.pop(tracking_key(path, file_range), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> dict[str, TrackedFile]:
        """Copy of all entries; safe to read while the tracker is updated."""
        return {key: tracked.model_copy() for key, tracked in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TrackedFile]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: str) -> bool:
        return key in self._entries


__all__ = ["FileTracker"]
