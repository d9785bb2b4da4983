"""
DiffEngine - minimal line diffs between a sent snapshot and current content.

Uses Myers' O(N*D) shortest-edit-script algorithm over interned lines.
Lines keep their endings, so applying a DiffRecord reproduces the current
text byte for byte, including a missing trailing newline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .errors import DiffComputationError

logger = logging.getLogger(__name__)

DEFAULT_DIFF_THRESHOLD = 0.7


class EditOp(Enum):
    """Kind of a line-run edit."""

    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class Edit:
    """
    A run of consecutive lines sharing one operation.

    old_start / new_start are 0-based line indexes into the previous and
    current text. For an INSERT, old_start is the position in the previous
    text before which the lines are inserted.
    """

    op: EditOp
    old_start: int
    new_start: int
    lines: tuple[str, ...]

    def render(self, line_offset: int = 0) -> str:
        """
        Wire format: ``+ <new line no> text`` / ``- <old line no> text``.

        line_offset shifts the numbers, so a diff of a range starting at
        file line 10 is numbered from 10 like its full rendering.
        """
        if self.op is EditOp.INSERT:
            sign, first = "+", self.new_start + 1 + line_offset
        elif self.op is EditOp.DELETE:
            sign, first = "-", self.old_start + 1 + line_offset
        else:
            first = self.old_start + 1 + line_offset
            return "".join(f"{first + i} {_strip_eol(line)}\n" for i, line in enumerate(self.lines))
        return "".join(f"{sign} {first + i} {_strip_eol(line)}\n" for i, line in enumerate(self.lines))


@dataclass(frozen=True)
class DiffRecord:
    """Ordered edit script turning the previous text into the current one."""

    edits: tuple[Edit, ...] = field(default_factory=tuple)

    @property
    def changes(self) -> tuple[Edit, ...]:
        """Non-EQUAL edits: the part worth transmitting."""
        return tuple(e for e in self.edits if e.op is not EditOp.EQUAL)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def inserted_lines(self) -> int:
        return sum(len(e.lines) for e in self.edits if e.op is EditOp.INSERT)

    @property
    def deleted_lines(self) -> int:
        return sum(len(e.lines) for e in self.edits if e.op is EditOp.DELETE)

    def encode(self, line_offset: int = 0) -> str:
        """Wire form of the changes; empty when nothing changed."""
        return "".join(e.render(line_offset) for e in self.changes)


def _strip_eol(line: str) -> str:
    return line.rstrip("\r\n")


def _split_lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def _intern(a: list[str], b: list[str]) -> tuple[list[int], list[int]]:
    """Map identical lines to the same integer for cheap comparison."""
    table: dict[str, int] = {}
    ids_a = [table.setdefault(line, len(table)) for line in a]
    ids_b = [table.setdefault(line, len(table)) for line in b]
    return ids_a, ids_b


def _myers(a: list[int], b: list[int]) -> list[tuple[EditOp, int, int]]:
    """
    Shortest edit script between two integer sequences.

    Returns per-line (op, old_index, new_index) in forward order. Deletions
    are preferred over insertions on ties, so a replaced block comes out as
    all deletes followed by all inserts.
    """
    n, m = len(a), len(b)
    max_d = n + m
    offset = max_d + 1
    v = [0] * (2 * max_d + 3)
    trace: list[list[int]] = []

    for d in range(max_d + 1):
        trace.append(v.copy())
        done = False
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]  # down: insertion
            else:
                x = v[offset + k - 1] + 1  # right: deletion
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                done = True
                break
        if done:
            break

    # Backtrack from (n, m) to (0, 0)
    edits: list[tuple[EditOp, int, int]] = []
    x, y = n, m
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[offset + prev_k]
        prev_y = prev_x - prev_k

        while x > prev_x and y > prev_y:
            edits.append((EditOp.EQUAL, x - 1, y - 1))
            x -= 1
            y -= 1

        if d > 0:
            if x == prev_x:
                edits.append((EditOp.INSERT, x, y - 1))
            else:
                edits.append((EditOp.DELETE, x - 1, y))

        x, y = prev_x, prev_y

    edits.reverse()
    return edits


def _coalesce(
    steps: list[tuple[EditOp, int, int]], old: list[str], new: list[str]
) -> tuple[Edit, ...]:
    """Merge per-line steps into runs of the same operation."""
    runs: list[Edit] = []
    for op, i, j in steps:
        line = new[j] if op is EditOp.INSERT else old[i]
        if runs and runs[-1].op is op:
            last = runs[-1]
            contiguous = (
                (op is EditOp.INSERT and j == last.new_start + len(last.lines))
                or (op is EditOp.DELETE and i == last.old_start + len(last.lines))
                or (op is EditOp.EQUAL and i == last.old_start + len(last.lines))
            )
            if contiguous:
                runs[-1] = Edit(op, last.old_start, last.new_start, last.lines + (line,))
                continue
        runs.append(Edit(op, i, j, (line,)))
    return tuple(runs)


def _check_text(text: str, which: str) -> None:
    if "\x00" in text:
        raise DiffComputationError(f"{which} content looks binary (contains NUL bytes)")


def compute_diff(previous: str, current: str) -> DiffRecord:
    """
    Compute the minimal line-level DiffRecord from previous to current.

    Pure: identical inputs always give an identical record.

    Raises:
        DiffComputationError: If either side is not text
    """
    _check_text(previous, "previous")
    _check_text(current, "current")

    old, new = _split_lines(previous), _split_lines(current)
    ids_old, ids_new = _intern(old, new)
    return DiffRecord(edits=_coalesce(_myers(ids_old, ids_new), old, new))


def apply_diff(previous: str, record: DiffRecord) -> str:
    """
    Rebuild the current text from the previous text and a record's changes.

    Only the non-EQUAL edits are consulted, mirroring what the remote side
    receives.
    """
    old = _split_lines(previous)
    out: list[str] = []
    cursor = 0
    for edit in record.changes:
        out.extend(old[cursor : edit.old_start])
        if edit.op is EditOp.DELETE:
            cursor = edit.old_start + len(edit.lines)
        else:
            cursor = edit.old_start
            out.extend(edit.lines)
    out.extend(old[cursor:])
    return "".join(out)


class PayloadKind(Enum):
    """How a file is represented in a turn's context."""

    FULL = "full"
    DIFF = "diff"
    UNCHANGED = "unchanged"


@dataclass
class DiffEngine:
    """
    Stateless diff policy.

    threshold: fall back to full content when the encoded diff is larger
        than this fraction of the full content.
    """

    threshold: float = DEFAULT_DIFF_THRESHOLD

    def compute(self, previous: str, current: str) -> DiffRecord:
        return compute_diff(previous, current)

    def choose(self, previous: str | None, current: str) -> tuple[PayloadKind, DiffRecord | None]:
        """
        Decide between full content, a diff, or "no change".

        Args:
            previous: Last sent content, or None when the file is not tracked
            current: Current content

        Returns:
            (kind, record) where record is set only for DIFF

        Raises:
            DiffComputationError: If content is not text
        """
        if previous is None:
            return PayloadKind.FULL, None
        if previous == current:
            return PayloadKind.UNCHANGED, None

        record = self.compute(previous, current)
        if record.is_empty:
            return PayloadKind.UNCHANGED, None
        # Line endings never reach the remote: content is rendered line by line
        if previous.splitlines() == current.splitlines():
            logger.debug("Only line endings changed")
            return PayloadKind.UNCHANGED, None

        encoded_size = len(record.encode())
        if encoded_size > self.threshold * len(current):
            logger.info(
                f"Diff too large ({encoded_size} > {self.threshold:.0%} of {len(current)}), sending full content"
            )
            return PayloadKind.FULL, None
        return PayloadKind.DIFF, record


__all__ = [
    "DEFAULT_DIFF_THRESHOLD",
    "DiffEngine",
    "DiffRecord",
    "Edit",
    "EditOp",
    "PayloadKind",
    "apply_diff",
    "compute_diff",
]
