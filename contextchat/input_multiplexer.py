"""
InputMultiplexer - one ordered stream of user turns from many sources.

Sources: a one-shot prompt or piped stdin (non-interactive, one turn), and in
interactive mode the terminal plus a loopback TCP listener. Everything funnels
through a single asyncio.Queue; that queue is the only synchronization point
between the listeners and the session.

Socket framing: newline-delimited. Every non-empty line of a connection is
one payload; bytes left without a trailing newline when the peer closes are
the last payload. A payload may name files with ``path[:range][,...]@prompt``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import sys
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, TextIO

from .errors import SocketAcceptError

logger = logging.getLogger(__name__)

# Long single-line payloads (pasted code) are fine
SOCKET_LINE_LIMIT = 1 << 20

_FILE_PREFIX_RE = re.compile(r"^(\S+)@(.*)$", re.DOTALL)


class InputSource(str, Enum):
    """Where an input event came from."""

    ONE_SHOT = "one_shot"
    PIPED = "piped"
    INTERACTIVE = "interactive"
    SOCKET = "socket"


class MultiplexerState(Enum):
    """Lifecycle of the multiplexer."""

    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    DISPATCHED = "dispatched"
    CLOSED = "closed"


COMMANDS = {"exit": "exit", "quit": "exit", "clear": "clear"}


@dataclass(frozen=True)
class InputEvent:
    """One user turn worth of input."""

    source: ClassVar[InputSource]

    text: str
    files: tuple[str, ...] = ()

    @property
    def command(self) -> str | None:
        """``exit`` or ``clear`` when the text is a session command."""
        return COMMANDS.get(self.text.strip().lower())


@dataclass(frozen=True)
class OneShotPrompt(InputEvent):
    source: ClassVar[InputSource] = InputSource.ONE_SHOT


@dataclass(frozen=True)
class PipedText(InputEvent):
    source: ClassVar[InputSource] = InputSource.PIPED


@dataclass(frozen=True)
class InteractiveLine(InputEvent):
    source: ClassVar[InputSource] = InputSource.INTERACTIVE


@dataclass(frozen=True)
class SocketPayload(InputEvent):
    source: ClassVar[InputSource] = InputSource.SOCKET

    connection_id: int = 0


def parse_socket_request(raw: str) -> tuple[str, list[str]]:
    """
    Split ``files@prompt`` into prompt and file references.

    Only a whitespace-free prefix counts as a file list, so a prompt that
    merely contains "@" is passed through untouched.
    """
    text = raw.strip()
    match = _FILE_PREFIX_RE.match(text)
    if not match:
        return text, []
    files = [f for f in match.group(1).split(",") if f]
    return match.group(2).strip(), files


def startup_event(
    prompt: str | None,
    piped_text: str | None,
    files: Iterable[str] = (),
) -> InputEvent | None:
    """
    Event for non-interactive mode, or None to go interactive.

    A prompt and piped text together form a single turn: the prompt is the
    instruction, the piped text follows it.
    """
    prompt = (prompt or "").strip()
    piped = (piped_text or "").strip()
    file_refs = tuple(files)

    if prompt and piped:
        return OneShotPrompt(f"{prompt}\n\n{piped}", file_refs)
    if prompt:
        return OneShotPrompt(prompt, file_refs)
    if piped:
        return PipedText(piped, file_refs)
    return None


class InputMultiplexer:
    """
    Serializes input events from every source into one FIFO.

    Only one event is DISPATCHED at a time; whatever arrives meanwhile waits
    in arrival order and is never dropped, except by ``drain()``. When an
    event from an interrupting source arrives during a dispatch, the
    ``interrupt`` signal is set so the session can cancel its stream; the
    event itself stays queued.

    Interrupting sources default to the terminal only: a socket payload
    queues behind the running turn instead of cancelling it. Add "socket"
    to ``interrupt_sources`` to let any new event cancel the stream.

    Usage:
        mux = InputMultiplexer(terminal=sys.stdin)
        await mux.start()
        while (event := await mux.next_event()) is not None:
            ...
            mux.complete()
        await mux.aclose()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 4000,
        socket_enabled: bool = True,
        terminal: TextIO | Iterable[str] | None = None,
        interrupt_sources: Iterable[InputSource | str] = (InputSource.INTERACTIVE,),
        restart_delay: float = 1.0,
    ):
        self.host = host
        self.port = port
        self.socket_enabled = socket_enabled
        self.terminal = terminal
        self.interrupt_sources = {InputSource(s) for s in interrupt_sources}
        self.restart_delay = restart_delay

        self.state = MultiplexerState.IDLE
        self.interrupt = asyncio.Event()
        self.listening = asyncio.Event()
        self.socket_errors: list[SocketAcceptError] = []

        self._queue: asyncio.Queue[InputEvent | None] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._connection_ids = itertools.count(1)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closing = False

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def submit(self, event: InputEvent) -> None:
        """Queue an event; signal an interrupt if one is being handled."""
        if self._closing:
            logger.debug(f"Multiplexer closed, ignoring {event.source.value} event")
            return
        self._queue.put_nowait(event)
        logger.debug(f"Queued {event.source.value} event ({self._queue.qsize()} pending)")
        if self.state is MultiplexerState.DISPATCHED and event.source in self.interrupt_sources:
            logger.info(f"Interrupt from {event.source.value} input")
            self.interrupt.set()

    async def start(self) -> None:
        """Start the terminal reader and socket listener (interactive mode)."""
        self._loop = asyncio.get_running_loop()
        if self.socket_enabled:
            self._tasks.append(asyncio.create_task(self._serve_socket(), name="contextchat-socket"))
        if self.terminal is not None:
            thread = threading.Thread(
                target=self._read_terminal,
                args=(self.terminal,),
                name="contextchat-terminal",
                daemon=True,
            )
            thread.start()

    def _read_terminal(self, terminal: TextIO | Iterable[str]) -> None:
        """Blocking line reader; runs in a daemon thread so exit never waits on it."""
        loop = self._loop
        assert loop is not None
        try:
            for line in terminal:
                text = line.strip()
                if text:
                    loop.call_soon_threadsafe(self.submit, InteractiveLine(text))
        except (OSError, ValueError, RuntimeError) as e:
            logger.warning(f"Terminal input failed: {e}")
        try:
            loop.call_soon_threadsafe(self.close)
        except RuntimeError:
            logger.debug("Event loop closed before end of terminal input")

    async def _serve_socket(self) -> None:
        """Accept loop; restarts the listener after failures."""
        while not self._closing:
            try:
                server = await asyncio.start_server(
                    self._handle_connection, self.host, self.port, limit=SOCKET_LINE_LIMIT
                )
            except OSError as e:
                self._record_socket_error(SocketAcceptError(f"Cannot listen on {self.host}:{self.port}: {e}"), e)
                await asyncio.sleep(self.restart_delay)
                continue

            self.port = server.sockets[0].getsockname()[1]
            logger.info(f"Listening on {self.host}:{self.port}")
            self.listening.set()
            try:
                async with server:
                    await server.serve_forever()
            except OSError as e:
                self._record_socket_error(SocketAcceptError(f"Listener on {self.host}:{self.port} failed: {e}"), e)
                self.listening.clear()
                await asyncio.sleep(self.restart_delay)

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        connection_id = next(self._connection_ids)
        peer = writer.get_extra_info("peername")
        logger.info(f"Connection {connection_id} from {peer}")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                prompt, files = parse_socket_request(line.decode("utf-8", errors="replace"))
                if prompt or files:
                    self.submit(SocketPayload(prompt, tuple(files), connection_id=connection_id))
        except (OSError, ValueError) as e:
            self._record_socket_error(
                SocketAcceptError(f"Connection {connection_id} failed: {e}", connection_id=connection_id), e
            )
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                logger.debug(f"Connection {connection_id} closed uncleanly")

    def _record_socket_error(self, error: SocketAcceptError, cause: BaseException) -> None:
        error.__cause__ = cause
        self.socket_errors.append(error)
        logger.warning(str(error))

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def next_event(self) -> InputEvent | None:
        """
        Wait for the next event and mark it DISPATCHED.

        Returns:
            The event, or None once the multiplexer is closed and drained
        """
        if self.state is MultiplexerState.CLOSED:
            return None
        if self.state is MultiplexerState.DISPATCHED:
            raise RuntimeError("Previous event not completed")

        self.state = MultiplexerState.AWAITING_INPUT
        event = await self._queue.get()
        if event is None:
            self.state = MultiplexerState.CLOSED
            return None

        self.interrupt.clear()
        self.state = MultiplexerState.DISPATCHED
        logger.debug(f"Dispatched {event.source.value} event")
        return event

    def complete(self) -> None:
        """Mark the dispatched event as handled."""
        if self.state is MultiplexerState.DISPATCHED:
            self.state = MultiplexerState.IDLE

    def pending(self) -> int:
        """Number of queued, undispatched events."""
        # The close sentinel stays queued until next_event consumes it
        sentinel = 1 if self._closing and self.state is not MultiplexerState.CLOSED else 0
        return self._queue.qsize() - sentinel

    def drain(self) -> int:
        """Drop every queued event (explicit clear/quit). Returns how many."""
        dropped = 0
        closing = False
        while not self._queue.empty():
            if self._queue.get_nowait() is None:
                closing = True
            else:
                dropped += 1
        if closing:
            self._queue.put_nowait(None)
        if dropped:
            logger.info(f"Dropped {dropped} queued events")
        return dropped

    def close(self) -> None:
        """Stop accepting input; queued events are still delivered first."""
        if self._closing:
            return
        self._closing = True
        self._queue.put_nowait(None)

    async def aclose(self) -> None:
        """Close and stop listener tasks."""
        self.close()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self.listening.clear()


def default_terminal() -> TextIO | None:
    """stdin when it is an interactive terminal, else None."""
    return sys.stdin if sys.stdin.isatty() else None


__all__ = [
    "InputEvent",
    "InputMultiplexer",
    "InputSource",
    "InteractiveLine",
    "MultiplexerState",
    "OneShotPrompt",
    "PipedText",
    "SocketPayload",
    "default_terminal",
    "parse_socket_request",
    "startup_event",
]
