"""Context resolution - turn file references into a minimal payload."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .diff_engine import DEFAULT_DIFF_THRESHOLD, DiffEngine, DiffRecord, PayloadKind
from .errors import DiffComputationError
from .file_tracker import FileTracker
from .prompts import render_file_diff, render_full_file
from .session import FileRange, parse_file_arg, tracking_key

logger = logging.getLogger(__name__)

FileReader = Callable[[Path], str]


def read_text_file(path: Path) -> str:
    """Read a file as UTF-8; undecodable bytes are replaced, not fatal."""
    return path.read_bytes().decode("utf-8", errors="replace")


@dataclass
class ContextPayload:
    """
    One file's contribution to a turn.

    content is what goes over the wire: the full text for FULL, the encoded
    diff for DIFF, and "" for UNCHANGED. snapshot is the current text that
    becomes the tracked state once the turn commits.
    """

    path: str
    range: FileRange | None
    kind: PayloadKind
    content: str
    snapshot: str
    record: DiffRecord | None = None

    @property
    def location(self) -> str:
        return tracking_key(self.path, self.range)

    def render(self) -> str:
        if self.kind is PayloadKind.FULL:
            first_line = self.range.start if self.range else 1
            return render_full_file(self.location, self.content, first_line)
        if self.kind is PayloadKind.DIFF:
            return render_file_diff(self.location, self.content)
        return ""


@dataclass
class ResolvedContext:
    """Payloads for a turn plus the references that could not be read."""

    payloads: list[ContextPayload] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def render(self) -> str:
        """Context text attached to the user message; empty if nothing to send."""
        parts = [p.render() for p in self.payloads]
        return "\n\n".join(part for part in parts if part)

    @property
    def is_empty(self) -> bool:
        return not self.render()


def choose_payload(
    previous: str | None,
    current: str,
    threshold: float = DEFAULT_DIFF_THRESHOLD,
    path: str = "",
    file_range: FileRange | None = None,
    engine: DiffEngine | None = None,
) -> ContextPayload:
    """
    Build the payload for one file: FULL, DIFF, or a zero-length UNCHANGED.

    Raises:
        DiffComputationError: If either side is not text
    """
    engine = engine or DiffEngine(threshold=threshold)
    kind, record = engine.choose(previous, current)

    if kind is PayloadKind.DIFF and record is not None:
        # Number lines by file position, as the full rendering does
        wire = record.encode(line_offset=file_range.start - 1 if file_range else 0)
    elif kind is PayloadKind.FULL:
        wire = current
    else:
        wire = ""

    return ContextPayload(path=path, range=file_range, kind=kind, content=wire, snapshot=current, record=record)


class ContextResolver:
    """
    Resolve file references against the tracker.

    Tracked files get a diff (or nothing, when unchanged); new files are sent
    in full. Any read or diff problem degrades to sending full content, and a
    file that cannot be read at all is skipped with a warning.
    """

    def __init__(
        self,
        tracker: FileTracker,
        engine: DiffEngine | None = None,
        working_dir: Path | str | None = None,
        reader: FileReader = read_text_file,
        include_tracked: bool = True,
    ):
        self.tracker = tracker
        self.engine = engine or DiffEngine()
        self.working_dir = Path(working_dir or Path.cwd())
        self.reader = reader
        self.include_tracked = include_tracked

    def _absolute(self, path: str) -> str:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.working_dir / p
        return str(p.resolve())

    def resolve(self, file_args: Iterable[str] | None = None) -> ResolvedContext:
        """
        Build the context payload for a turn.

        Args:
            file_args: ``path[:start-end]`` references attached to the turn

        Returns:
            ResolvedContext; the tracker is NOT modified here
        """
        resolved = ResolvedContext()
        targets: list[tuple[str, FileRange | None]] = []
        seen: set[str] = set()

        for arg in file_args or []:
            if not arg.strip():
                continue
            path, file_range = parse_file_arg(arg)
            path = self._absolute(path)
            key = tracking_key(path, file_range)
            if key not in seen:
                seen.add(key)
                targets.append((path, file_range))

        explicit = set(seen)
        if self.include_tracked:
            for tracked in self.tracker:
                if tracked.key not in seen:
                    seen.add(tracked.key)
                    targets.append((tracked.path, tracked.range))

        for path, file_range in targets:
            key = tracking_key(path, file_range)
            try:
                payload = self._resolve_one(path, file_range)
            except OSError as e:
                if key in explicit:
                    logger.warning(f"Cannot read {key}: {e}")
                    resolved.skipped.append(key)
                else:
                    logger.debug(f"Tracked file {key} no longer readable: {e}")
                continue
            resolved.payloads.append(payload)

        return resolved

    def _resolve_one(self, path: str, file_range: FileRange | None) -> ContextPayload:
        content = self.reader(Path(path))
        if file_range is not None:
            content = file_range.slice(content)

        previous = self.tracker.lookup(path, file_range)
        try:
            payload = choose_payload(previous, content, path=path, file_range=file_range, engine=self.engine)
        except DiffComputationError as e:
            logger.warning(f"Diff failed for {tracking_key(path, file_range)}, sending full content: {e}")
            payload = ContextPayload(path=path, range=file_range, kind=PayloadKind.FULL, content=content, snapshot=content)

        logger.info(f"{payload.location}: {payload.kind.value} ({len(payload.content)} chars)")
        return payload


__all__ = [
    "ContextPayload",
    "ContextResolver",
    "FileReader",
    "ResolvedContext",
    "choose_payload",
    "read_text_file",
]
