"""Tests for InputMultiplexer ordering, interrupts and socket framing."""

import asyncio

import pytest

from contextchat.input_multiplexer import (
    InputMultiplexer,
    InputSource,
    InteractiveLine,
    MultiplexerState,
    OneShotPrompt,
    PipedText,
    SocketPayload,
    parse_socket_request,
    startup_event,
)


class TestParseSocketRequest:
    """Tests for the files@prompt request form."""

    def test_plain_prompt(self):
        assert parse_socket_request("explain this\n") == ("explain this", [])

    def test_files_prefix(self):
        assert parse_socket_request("a.py:1-10,b.py@what changed?") == ("what changed?", ["a.py:1-10", "b.py"])

    def test_at_sign_inside_prompt_is_not_a_file_list(self):
        assert parse_socket_request("mail me at dev@example.com") == ("mail me at dev@example.com", [])


class TestStartupEvent:
    """Non-interactive short-circuit."""

    def test_nothing_means_interactive(self):
        assert startup_event(None, None) is None
        assert startup_event("  ", "\n") is None

    def test_prompt_only(self):
        event = startup_event("explain", None, ["a.py"])
        assert event == OneShotPrompt("explain", ("a.py",))
        assert event.source is InputSource.ONE_SHOT

    def test_piped_only(self):
        event = startup_event(None, "stack trace\n")
        assert isinstance(event, PipedText)
        assert event.text == "stack trace"

    def test_prompt_and_piped_merge(self):
        event = startup_event("explain this failure", "Traceback ...\n")
        assert isinstance(event, OneShotPrompt)
        assert event.text == "explain this failure\n\nTraceback ..."

    def test_commands(self):
        assert InteractiveLine("quit").command == "exit"
        assert InteractiveLine(" Exit ").command == "exit"
        assert InteractiveLine("clear").command == "clear"
        assert InteractiveLine("clear the cache").command is None


class TestQueueing:
    """Events are dispatched one at a time, in arrival order."""

    @pytest.mark.asyncio
    async def test_arrival_order_and_nothing_dropped(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(PipedText("from pipe"))
        mux.submit(SocketPayload("from socket", connection_id=1))

        first = await mux.next_event()
        assert first == PipedText("from pipe")
        assert mux.state is MultiplexerState.DISPATCHED
        assert mux.pending() == 1

        mux.complete()
        second = await mux.next_event()
        assert second == SocketPayload("from socket", connection_id=1)

    @pytest.mark.asyncio
    async def test_one_event_in_flight(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("a"))
        await mux.next_event()

        with pytest.raises(RuntimeError):
            await mux.next_event()

    @pytest.mark.asyncio
    async def test_waits_for_input(self):
        mux = InputMultiplexer(socket_enabled=False)
        waiter = asyncio.create_task(mux.next_event())
        await asyncio.sleep(0)
        assert mux.state is MultiplexerState.AWAITING_INPUT

        mux.submit(InteractiveLine("late"))
        assert (await asyncio.wait_for(waiter, timeout=1)).text == "late"

    @pytest.mark.asyncio
    async def test_drain_drops_queued_events(self):
        mux = InputMultiplexer(socket_enabled=False)
        for text in ("a", "b", "c"):
            mux.submit(InteractiveLine(text))

        assert mux.drain() == 3
        assert mux.pending() == 0

    @pytest.mark.asyncio
    async def test_close_delivers_queued_events_first(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("last words"))
        mux.close()
        mux.submit(InteractiveLine("ignored"))

        assert (await mux.next_event()).text == "last words"
        mux.complete()
        assert await mux.next_event() is None
        assert mux.state is MultiplexerState.CLOSED


class TestInterrupt:
    """Interrupt signal during a dispatch."""

    @pytest.mark.asyncio
    async def test_interactive_input_interrupts(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("first"))
        await mux.next_event()

        mux.submit(InteractiveLine("second"))

        assert mux.interrupt.is_set()
        # The interrupting event is kept
        assert mux.pending() == 1

    @pytest.mark.asyncio
    async def test_socket_input_does_not_interrupt_by_default(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("first"))
        await mux.next_event()

        mux.submit(SocketPayload("queued", connection_id=1))

        assert not mux.interrupt.is_set()

    @pytest.mark.asyncio
    async def test_interrupt_sources_configurable(self):
        mux = InputMultiplexer(socket_enabled=False, interrupt_sources=["socket"])
        mux.submit(InteractiveLine("first"))
        await mux.next_event()

        mux.submit(SocketPayload("now", connection_id=1))

        assert mux.interrupt.is_set()

    @pytest.mark.asyncio
    async def test_interrupt_cleared_on_next_dispatch(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("first"))
        await mux.next_event()
        mux.submit(InteractiveLine("second"))
        mux.complete()

        await mux.next_event()

        assert not mux.interrupt.is_set()

    @pytest.mark.asyncio
    async def test_no_interrupt_while_idle(self):
        mux = InputMultiplexer(socket_enabled=False)
        mux.submit(InteractiveLine("first"))
        assert not mux.interrupt.is_set()


class TestTerminal:
    """Terminal reader thread."""

    @pytest.mark.asyncio
    async def test_lines_become_events_then_close(self):
        mux = InputMultiplexer(socket_enabled=False, terminal=["hello\n", "\n", "quit\n"])
        await mux.start()

        first = await asyncio.wait_for(mux.next_event(), timeout=1)
        mux.complete()
        second = await asyncio.wait_for(mux.next_event(), timeout=1)
        mux.complete()

        assert first == InteractiveLine("hello")
        assert second.command == "exit"
        # End of input closes the multiplexer
        assert await asyncio.wait_for(mux.next_event(), timeout=1) is None
        await mux.aclose()


class TestSocket:
    """Loopback listener with newline framing."""

    @pytest.mark.asyncio
    async def test_newline_delimited_payloads(self):
        mux = InputMultiplexer(host="127.0.0.1", port=0)
        await mux.start()
        await asyncio.wait_for(mux.listening.wait(), timeout=2)

        _, writer = await asyncio.open_connection("127.0.0.1", mux.port)
        writer.write(b"main.py:1-5@first question\n\nsecond question\ntrailing")
        await writer.drain()
        writer.close()
        await writer.wait_closed()

        events = []
        for _ in range(3):
            events.append(await asyncio.wait_for(mux.next_event(), timeout=2))
            mux.complete()

        assert [(e.text, e.files) for e in events] == [
            ("first question", ("main.py:1-5",)),
            ("second question", ()),
            ("trailing", ()),
        ]
        assert {e.connection_id for e in events} == {1}
        await mux.aclose()

    @pytest.mark.asyncio
    async def test_connection_ids_increase(self):
        mux = InputMultiplexer(host="127.0.0.1", port=0)
        await mux.start()
        await asyncio.wait_for(mux.listening.wait(), timeout=2)

        events = []
        for text in (b"one\n", b"two\n"):
            _, writer = await asyncio.open_connection("127.0.0.1", mux.port)
            writer.write(text)
            await writer.drain()
            writer.close()
            await writer.wait_closed()
            events.append(await asyncio.wait_for(mux.next_event(), timeout=2))
            mux.complete()

        first, second = events

        assert (first.text, first.connection_id) == ("one", 1)
        assert (second.text, second.connection_id) == ("two", 2)
        await mux.aclose()

    @pytest.mark.asyncio
    async def test_listener_restarts_after_bind_failure(self):
        blocker = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = blocker.sockets[0].getsockname()[1]

        mux = InputMultiplexer(host="127.0.0.1", port=port, restart_delay=0.05)
        await mux.start()
        await asyncio.sleep(0.1)
        assert mux.socket_errors
        assert not mux.listening.is_set()

        blocker.close()
        await blocker.wait_closed()
        await asyncio.wait_for(mux.listening.wait(), timeout=2)
        await mux.aclose()
