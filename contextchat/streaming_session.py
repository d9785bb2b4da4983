"""
StreamingSession - the turn state machine.

A turn goes IDLE -> CONTEXT_RESOLVING -> SENDING -> STREAMING_RESPONSE ->
COMMITTING -> IDLE. FAILED can be entered from any of them and always falls
back to IDLE. Only a committed turn changes the session: cancelled and failed
turns leave history and tracked snapshots exactly as they were.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .config import ChatConfig
from .context import ContextResolver, FileReader, ResolvedContext, read_text_file
from .diff_engine import DiffEngine
from .errors import ContextChatError, HistoryIOError, TransportError
from .file_tracker import FileTracker
from .history import HistoryStore
from .prompts import TurnKind, build_system_prompt
from .remote_client import RemoteClient, TurnRequest
from .session import ChatMessage, Role, Session

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Any]


class TurnState(Enum):
    """Where the current turn is."""

    IDLE = "idle"
    CONTEXT_RESOLVING = "context_resolving"
    SENDING = "sending"
    STREAMING_RESPONSE = "streaming_response"
    COMMITTING = "committing"
    FAILED = "failed"


class TurnStatus(Enum):
    """How a turn ended."""

    COMMITTED = "committed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingTurn:
    """A failed turn kept for an explicit retry."""

    prompt: str
    files: tuple[str, ...] = ()
    kind: TurnKind = TurnKind.CODE


@dataclass
class TurnResult:
    """Outcome of one turn."""

    status: TurnStatus
    prompt: str
    response: str = ""
    context: ResolvedContext = field(default_factory=ResolvedContext)
    error: ContextChatError | None = None
    history_saved: bool = False

    @property
    def committed(self) -> bool:
        return self.status is TurnStatus.COMMITTED


class StreamingSession:
    """
    Drives turns against a RemoteClient for one working directory.

    The session is the only writer of its ``Session``; anything else should
    read ``snapshot()``.

    Example:
        session = StreamingSession.open(client, JsonHistoryStore(), config)
        result = await session.run_turn("explain this", files=["main.py:10-40"])
    """

    def __init__(
        self,
        client: RemoteClient,
        history_store: HistoryStore | None = None,
        session: Session | None = None,
        config: ChatConfig | None = None,
        working_dir: Path | str | None = None,
        on_token: TokenCallback | None = None,
        reader: FileReader = read_text_file,
        model: str | None = None,
    ):
        """
        Initialize a streaming session.

        Args:
            client: Remote model client
            history_store: Where committed turns are persisted (None: memory only)
            session: Existing session state (default: empty)
            config: Configuration (default: ChatConfig())
            working_dir: Directory that keys the history and anchors relative paths
            on_token: Called with every streamed fragment as it arrives
            reader: Reads a file's full text for context resolution
            model: Model alias or id (default: config.models.default_model)
        """
        self.client = client
        self.history_store = history_store
        self.config = config or ChatConfig()
        self.working_dir = str(Path(working_dir or Path.cwd()).resolve())
        self.session = session or Session(working_dir=self.working_dir)
        self.on_token = on_token
        self.model = model or self.config.models.default_model

        self.tracker = FileTracker(self.session.tracked_files)
        self.engine = DiffEngine(threshold=self.config.context.diff_threshold)
        self.resolver = ContextResolver(
            self.tracker,
            self.engine,
            working_dir=self.working_dir,
            reader=reader,
            include_tracked=self.config.context.include_tracked,
        )

        self.state = TurnState.IDLE
        self.pending_turn: PendingTurn | None = None

    @classmethod
    def open(
        cls,
        client: RemoteClient,
        history_store: HistoryStore,
        config: ChatConfig | None = None,
        working_dir: Path | str | None = None,
        **kwargs: Any,
    ) -> "StreamingSession":
        """
        Create a session with history loaded from the store.

        An unreadable history is logged and replaced by an empty session;
        the broken file is only overwritten by the next committed turn.
        """
        key = str(Path(working_dir or Path.cwd()).resolve())
        try:
            session = history_store.load(key)
        except HistoryIOError as e:
            logger.warning(f"Starting with empty history: {e}")
            session = None
        return cls(client, history_store, session=session, config=config, working_dir=key, **kwargs)

    @property
    def history_key(self) -> str:
        return self.working_dir

    def _transition(self, state: TurnState) -> None:
        logger.debug(f"Turn state {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        prompt: str,
        files: Iterable[str] | None = None,
        cancel: asyncio.Event | None = None,
        kind: TurnKind = TurnKind.CODE,
    ) -> TurnResult:
        """
        Run one turn: resolve context, stream the response, commit.

        Args:
            prompt: The user's text
            files: ``path[:start-end]`` references to attach
            cancel: When set during streaming, the response is discarded
            kind: Selects the system prompt

        Returns:
            TurnResult; TransportError is reported in it, not raised
        """
        if self.state is not TurnState.IDLE:
            raise RuntimeError(f"Turn already in progress ({self.state.value})")

        file_refs = tuple(files or ())
        try:
            self._transition(TurnState.CONTEXT_RESOLVING)
            context = self.resolver.resolve(file_refs)
            user_message = ChatMessage(role=Role.USER, content=prompt, context=context.render())

            self._transition(TurnState.SENDING)
            request = self._build_request(user_message.to_api()["content"], self.session.api_messages(), kind)
            try:
                response = await self._stream(request, cancel)
            except TransportError as e:
                self._transition(TurnState.FAILED)
                logger.error(f"Turn failed: {e}")
                self.pending_turn = PendingTurn(prompt, file_refs, kind)
                return TurnResult(TurnStatus.FAILED, prompt, context=context, error=e)

            if response is None:
                return TurnResult(TurnStatus.CANCELLED, prompt, context=context)

            self._transition(TurnState.COMMITTING)
            save_error = self._commit(user_message, response, context)
            self.pending_turn = None
            return TurnResult(
                TurnStatus.COMMITTED,
                prompt,
                response=response,
                context=context,
                error=save_error,
                history_saved=save_error is None and self._persisting,
            )
        finally:
            self._transition(TurnState.IDLE)

    async def retry(self, cancel: asyncio.Event | None = None) -> TurnResult:
        """Re-run the last failed turn."""
        if self.pending_turn is None:
            raise ValueError("No failed turn to retry")
        pending = self.pending_turn
        logger.info("Retrying failed turn")
        return await self.run_turn(pending.prompt, pending.files, cancel=cancel, kind=pending.kind)

    async def generate(
        self,
        prompt: str,
        kind: TurnKind = TurnKind.COMMIT,
        cancel: asyncio.Event | None = None,
    ) -> str | None:
        """
        Stateless streamed call: no history sent, nothing committed.

        Returns:
            The full response, or None if cancelled

        Raises:
            TransportError: If the remote call fails
        """
        if self.state is not TurnState.IDLE:
            raise RuntimeError(f"Turn already in progress ({self.state.value})")

        self._transition(TurnState.SENDING)
        try:
            return await self._stream(self._build_request(prompt, [], kind), cancel)
        finally:
            self._transition(TurnState.IDLE)

    def _build_request(self, user_message: str, history: list[dict[str, str]], kind: TurnKind) -> TurnRequest:
        return TurnRequest(
            model=self.model,
            user_message=user_message,
            history=history,
            system=build_system_prompt(kind),
            max_tokens=self.config.models.max_tokens,
            temperature=self.config.models.temperature,
        )

    async def _stream(self, request: TurnRequest, cancel: asyncio.Event | None) -> str | None:
        """
        Consume the token stream, racing it against ``cancel``.

        Returns:
            The concatenated response, or None when cancelled
        """
        buffer: list[str] = []
        stream = self.client.send_turn(request)

        async def consume() -> None:
            async for fragment in stream:
                if self.state is not TurnState.STREAMING_RESPONSE:
                    self._transition(TurnState.STREAMING_RESPONSE)
                buffer.append(fragment)
                logger.debug(f"Fragment: {fragment!r}")
                if self.on_token is not None:
                    self.on_token(fragment)

        consumer = asyncio.create_task(consume())
        waiter = asyncio.create_task(cancel.wait()) if cancel is not None else None
        try:
            if waiter is None:
                await consumer
            else:
                await asyncio.wait({consumer, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if waiter is not None:
                waiter.cancel()
            if not consumer.done():
                consumer.cancel()
                try:
                    await consumer
                except asyncio.CancelledError:
                    logger.info(f"Response cancelled after {len(buffer)} fragments")
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
                buffer.clear()

        if consumer.cancelled():
            return None
        # Re-raises TransportError from the stream
        consumer.result()
        return "".join(buffer)

    def _commit(self, user_message: ChatMessage, response: str, context: ResolvedContext) -> HistoryIOError | None:
        """Append the turn, update snapshots, persist. Returns a save error, if any."""
        self.session.append(user_message)
        self.session.append(ChatMessage(role=Role.ASSISTANT, content=response))

        retrack = self.config.context.retrack_after_commit
        for payload in context.payloads:
            if retrack or not self.tracker.is_tracked(payload.path, payload.range):
                self.tracker.update(payload.path, payload.range, payload.snapshot)

        if not self._persisting:
            return None
        try:
            self.save()
        except HistoryIOError as e:
            logger.warning(f"Turn kept in memory only: {e}")
            return e
        return None

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    @property
    def _persisting(self) -> bool:
        return self.history_store is not None and self.config.history.persist_every_turn

    def save(self) -> None:
        """
        Persist the session.

        Raises:
            HistoryIOError: If the store cannot write it
        """
        if self.history_store is None:
            return
        self.history_store.save(self.history_key, self.session)

    def close(self) -> bool:
        """Persist at session end. Returns False if that failed."""
        try:
            self.save()
        except HistoryIOError as e:
            logger.warning(f"History not saved at exit: {e}")
            return False
        return True

    def clear(self) -> bool:
        """
        Forget history and tracked files, in memory and in the store.

        Returns:
            True if a stored history was removed
        """
        if self.state is not TurnState.IDLE:
            raise RuntimeError("Cannot clear during a turn")
        self.session.clear()
        self.pending_turn = None
        logger.info("Session cleared")
        if self.history_store is None:
            return False
        return self.history_store.clear(self.history_key)

    def snapshot(self) -> Session:
        """Read-only copy of the session."""
        return self.session.snapshot()


__all__ = [
    "PendingTurn",
    "StreamingSession",
    "TokenCallback",
    "TurnResult",
    "TurnState",
    "TurnStatus",
]
