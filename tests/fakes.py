"""Test doubles for the remote side."""

import asyncio

from contextchat.errors import TransportError
from contextchat.remote_client import ModelDescriptor, Provider, TurnRequest

# Fragment marker: block the stream until the consumer cancels it
HOLD = object()


class ScriptedRemoteClient:
    """
    In-memory RemoteClient.

    Each call to send_turn consumes the next script: a list of text
    fragments, TransportError instances (raised when reached), or HOLD.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests: list[TurnRequest] = []
        self.holding = asyncio.Event()
        self.closed = False

    async def send_turn(self, request: TurnRequest):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else []
        try:
            for fragment in script:
                if fragment is HOLD:
                    self.holding.set()
                    await asyncio.Event().wait()
                elif isinstance(fragment, TransportError):
                    raise fragment
                else:
                    yield fragment
        finally:
            self.closed = True

    async def list_models(self):
        return [ModelDescriptor(id="scripted-1", provider=Provider.ANTHROPIC, display_name="Scripted")]
