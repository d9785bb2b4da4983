"""
ChatApp - wires config, remote client, history and input into a session.

Modes:
    once         a prompt and/or piped stdin, one turn, then exit
    interactive  terminal lines and socket payloads until exit/quit
    commit       commit message for the staged diff, no history
    git          git command(s) for a task, no history
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

from .config import ChatConfig
from .errors import ContextChatError, HistoryIOError, TransportError
from .history import HistoryStore, JsonHistoryStore
from .input_multiplexer import (
    InputEvent,
    InputMultiplexer,
    SocketPayload,
    default_terminal,
    startup_event,
)
from .prompts import TurnKind, render_commit_request
from .remote_client import MultiProviderClient, RemoteClient
from .streaming_session import StreamingSession, TurnResult, TurnStatus

logger = logging.getLogger(__name__)

PROMPT = "\n\n> "


def staged_diff(working_dir: Path | str) -> str:
    """
    Output of ``git diff --staged``.

    Raises:
        ContextChatError: If git is missing or the directory is not a repository
    """
    try:
        completed = subprocess.run(
            ["git", "diff", "--staged"],
            cwd=working_dir,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise ContextChatError("git is not installed") from e
    except subprocess.CalledProcessError as e:
        raise ContextChatError(f"git diff failed: {e.stderr.strip() or e}") from e
    return completed.stdout


class ChatApp:
    """Runs contextchat in one of its modes."""

    def __init__(
        self,
        config: ChatConfig,
        client: RemoteClient | None = None,
        history_store: HistoryStore | None = None,
        working_dir: Path | str | None = None,
        model: str | None = None,
        output: TextIO | None = None,
        terminal: TextIO | None = None,
    ):
        self.config = config
        self.working_dir = Path(working_dir or Path.cwd()).resolve()
        self.model = model or config.models.default_model
        self.output = output or sys.stdout
        self.terminal = terminal
        self._client = client
        self._history_store = history_store

    @property
    def client(self) -> RemoteClient:
        if self._client is None:
            self._client = MultiProviderClient(default_model=self.model)
        return self._client

    @property
    def history_store(self) -> HistoryStore:
        if self._history_store is None:
            self._history_store = JsonHistoryStore(self.config.history.directory)
        return self._history_store

    def _write(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()

    def _open_session(self) -> StreamingSession:
        return StreamingSession.open(
            self.client,
            self.history_store,
            config=self.config,
            working_dir=self.working_dir,
            on_token=self._write,
            model=self.model,
        )

    def _report(self, result: TurnResult) -> None:
        if result.status is TurnStatus.CANCELLED:
            self._write("\n[cancelled]")
        elif result.status is TurnStatus.FAILED:
            print(f"\nError: {result.error} (type 'retry' to resend)", file=sys.stderr)
        elif isinstance(result.error, HistoryIOError):
            print(f"\nWarning: history not saved: {result.error}", file=sys.stderr)
        for skipped in result.context.skipped:
            print(f"Warning: could not read {skipped}", file=sys.stderr)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def run(
        self,
        prompt: str | None = None,
        piped_text: str | None = None,
        files: Iterable[str] = (),
    ) -> int:
        """Run once when there is startup input, otherwise interactively."""
        event = startup_event(prompt, piped_text, files)
        if event is not None:
            return await self.run_once(event)
        return await self.run_interactive(files)

    async def run_once(self, event: InputEvent) -> int:
        """Single turn from a one-shot prompt or piped stdin."""
        session = self._open_session()
        try:
            result = await session.run_turn(event.text, event.files)
        finally:
            if not session.close():
                print("Warning: history not saved", file=sys.stderr)
        self._write("\n")
        self._report(result)
        return 0 if result.committed else 1

    async def run_interactive(self, files: Iterable[str] = ()) -> int:
        """Read terminal lines and socket payloads until exit."""
        terminal = self.terminal if self.terminal is not None else default_terminal()
        if terminal is None and not self.config.socket.enabled:
            print("No prompt given, stdin is not a terminal and the socket is disabled.", file=sys.stderr)
            return 1

        session = self._open_session()
        mux = InputMultiplexer(
            host=self.config.socket.host,
            port=self.config.socket.port,
            socket_enabled=self.config.socket.enabled,
            terminal=terminal,
            interrupt_sources=self.config.input.interrupt_sources,
            restart_delay=self.config.socket.restart_delay,
        )
        # Startup files apply to the first turn only
        first_files = tuple(files)

        logger.info(f"Interactive session in {self.working_dir}")
        await mux.start()
        try:
            self._write("> ")
            while (event := await mux.next_event()) is not None:
                try:
                    if event.command == "exit":
                        mux.drain()
                        break
                    first_files = await self._handle_event(session, event, first_files, mux.interrupt)
                finally:
                    mux.complete()
                self._write(PROMPT)
        finally:
            await mux.aclose()
            if not session.close():
                print("Warning: history not saved", file=sys.stderr)
        self._write("\n")
        return 0

    async def _handle_event(
        self,
        session: StreamingSession,
        event: InputEvent,
        first_files: tuple[str, ...],
        interrupt: asyncio.Event,
    ) -> tuple[str, ...]:
        if event.command == "clear":
            try:
                session.clear()
            except HistoryIOError as e:
                print(f"Warning: {e}", file=sys.stderr)
            self._write("History cleared")
            return first_files

        if event.text.strip().lower() == "retry":
            if session.pending_turn is None:
                self._write("Nothing to retry")
                return first_files
            self._report(await session.retry(cancel=interrupt))
            return first_files

        if isinstance(event, SocketPayload):
            self._write(f"[socket #{event.connection_id}] {event.text}\n")
        result = await session.run_turn(event.text, event.files + first_files, cancel=interrupt)
        self._report(result)
        # Keep the startup files until they have actually been sent
        return () if result.committed else first_files

    async def commit(self, instructions: str | None = None, piped_text: str | None = None) -> int:
        """Stream a commit message for the staged changes (or piped diff)."""
        diff = piped_text if piped_text and piped_text.strip() else staged_diff(self.working_dir)
        if not diff.strip():
            print(
                "Git diff is empty. Ensure you are in a repository and that the changes are staged.",
                file=sys.stderr,
            )
            return 1

        logger.info(f"Generating commit message for {len(diff)} chars of diff")
        return await self._generate(render_commit_request(diff, instructions), TurnKind.COMMIT)

    async def git(self, task: str | None = None, piped_text: str | None = None) -> int:
        """Stream git command(s) for a task; piped text (e.g. git output) follows it."""
        request = "\n\n".join(part.strip() for part in (task, piped_text) if part and part.strip())
        if not request:
            print("No git task given.", file=sys.stderr)
            return 1
        return await self._generate(request, TurnKind.GIT)

    async def _generate(self, prompt: str, kind: TurnKind) -> int:
        """One stateless streamed answer: no history read or written."""
        session = StreamingSession(
            self.client,
            config=self.config,
            working_dir=self.working_dir,
            on_token=self._write,
            model=self.model,
        )
        try:
            await session.generate(prompt, kind)
        except TransportError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        self._write("\n")
        return 0

    async def list_models(self) -> int:
        try:
            models = await self.client.list_models()
        except TransportError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        for model in models:
            self._write(f"{model}\n")
        return 0

    def clear_history(self) -> int:
        if self.history_store.clear(str(self.working_dir)):
            self._write("Chat cleared successfully\n")
        else:
            self._write("Chat not found; skipping clearing.\n")
        return 0


__all__ = ["ChatApp", "staged_diff"]
