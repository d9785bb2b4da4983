"""
Prompt templates for contextchat.

System prompts per turn kind plus the wording used to present file context
(full content or diff) to the remote model.
"""

from __future__ import annotations

from enum import Enum


class TurnKind(Enum):
    """What the turn is for; selects the system prompt."""

    CODE = "code"
    COMMIT = "commit"
    GIT = "git"


GENERAL = """\
You are an expert software engineer. Suggest the minimal, most effective solution.
Focus on core logic, avoid boilerplate, and prefer idiomatic implementations.
Work under the hood, no fluff, just clean and purposeful code."""

CODE = """\
Given a function, class, or snippet, complete or improve it with minimal,
efficient, and idiomatic code. Avoid abstraction unless necessary.
No comments unless the logic is complex.

Files are sent once in full and marked [load-once]. Afterwards you only
receive their updates as line diffs: "+ N text" inserts line N of the new
version, "- N text" deletes line N of the previous version. Apply updates to
your copy of the file; do not ask for the full file again."""

COMMIT = """\
Write a commit message using the Commitizen convention. Use the correct type
(feat, fix, chore, refactor, docs, test, etc.) and provide a concise description
of the main change. If relevant, include a scope and a short body explaining
why the change was made. Reply with the commit message only."""

GIT = """\
You are a Git power user. Given a Git task, provide the most efficient and correct
command(s) or configuration. Prefer short, safe, and reproducible commands.
Explain only if the operation is not self-explanatory."""

_KIND_PROMPTS = {
    TurnKind.CODE: CODE,
    TurnKind.COMMIT: COMMIT,
    TurnKind.GIT: GIT,
}


def build_system_prompt(kind: TurnKind = TurnKind.CODE) -> str:
    """System prompt for a turn of the given kind."""
    return f"{GENERAL}\n\n{_KIND_PROMPTS[kind]}"


def number_lines(content: str, first_line: int = 1) -> str:
    """Prefix each line with its line number."""
    lines = content.splitlines()
    width = len(str(first_line + len(lines)))
    return "\n".join(f"{first_line + i:>{width}} {line}" for i, line in enumerate(lines))


def render_full_file(location: str, content: str, first_line: int = 1) -> str:
    """Full file content, sent the first time a file (or range) is seen."""
    return f"File: {location} [load-once]\n\n{number_lines(content, first_line)}"


def render_file_diff(location: str, encoded_diff: str) -> str:
    """Updates of an already sent file."""
    return f"Here the updates of the file {location}:\n\n{encoded_diff}".rstrip("\n")


def render_commit_request(staged_diff: str, instructions: str | None = None) -> str:
    """User message for commit message generation."""
    parts = [f"Staged changes:\n\n{staged_diff.rstrip()}"]
    if instructions:
        parts.append(instructions)
    return "\n\n".join(parts)


__all__ = [
    "CODE",
    "COMMIT",
    "GENERAL",
    "GIT",
    "TurnKind",
    "build_system_prompt",
    "number_lines",
    "render_commit_request",
    "render_file_diff",
    "render_full_file",
]
