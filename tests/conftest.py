"""
Shared pytest fixtures for godot-mcp tests.

This module provides:
- MockGodotPeer: a real WebSocket server on an ephemeral port that speaks the
  editor plugin's command protocol
- FakeGodot: an in-memory stand-in for GodotConnection used by tool and
  resource tests
"""

import asyncio
import json
import socket
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
import websockets
from websockets.exceptions import ConnectionClosed


# =============================================================================
# WebSocket peer
# =============================================================================

Responder = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def pong_responder(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Answer every command with a success result."""
    return {"status": "success", "result": {"pong": True, "type": message.get("type")}}


class MockGodotPeer:
    """
    Minimal Godot editor plugin.

    Every received command is recorded. ``responder`` maps a command to the
    reply fields (``status``, ``result``, ``message``); returning None holds
    the command so a test can answer it later with ``reply``.
    """

    def __init__(self, responder: Responder = pong_responder):
        self.responder = responder
        self.received: List[Dict[str, Any]] = []
        self.connections: List[Any] = []
        self._server: Any = None

    async def start(self) -> "MockGodotPeer":
        self._server = await websockets.serve(self._handle, "127.0.0.1", 0)
        return self

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    @property
    def url(self) -> str:
        return f"ws://127.0.0.1:{self.port}"

    async def _handle(self, ws) -> None:
        self.connections.append(ws)
        try:
            async for raw in ws:
                message = json.loads(raw)
                self.received.append(message)
                reply = self.responder(message)
                if reply is not None:
                    await ws.send(json.dumps({**reply, "commandId": message["commandId"]}))
        except ConnectionClosed:
            pass

    async def reply(self, message: Dict[str, Any], reply: Dict[str, Any]) -> None:
        await self.send({**reply, "commandId": message["commandId"]})

    async def send(self, payload: Any) -> None:
        """Push a frame to the most recent client."""
        data = payload if isinstance(payload, str) else json.dumps(payload)
        await self.connections[-1].send(data)

    async def drop_clients(self) -> None:
        """Close every client connection from the server side."""
        for ws in list(self.connections):
            await ws.close(code=1001, reason="Editor closing")

    async def wait_for_received(self, count: int, timeout: float = 2.0) -> None:
        async def _poll():
            while len(self.received) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it is true or *timeout* seconds pass."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest_asyncio.fixture
async def godot_peer():
    peer = await MockGodotPeer().start()
    yield peer
    await peer.stop()


class StalledListener:
    """TCP listener that accepts connections but never answers the WebSocket handshake."""

    def __init__(self):
        self.accepted = 0
        self._writers: List[asyncio.StreamWriter] = []
        self._server: Any = None

    async def start(self) -> "StalledListener":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.accepted += 1
        self._writers.append(writer)

    @property
    def url(self) -> str:
        return f"ws://127.0.0.1:{self._server.sockets[0].getsockname()[1]}"

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()


@pytest_asyncio.fixture
async def stalled_listener():
    listener = await StalledListener().start()
    yield listener
    await listener.stop()


# =============================================================================
# Fake connection
# =============================================================================

class FakeGodot:
    """
    Records commands and answers them from ``responses``.

    A response may be a value, a callable taking the params, or an exception
    instance to raise.
    """

    def __init__(self):
        self.responses: Dict[str, Any] = {}
        self.calls: List[tuple] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.connected = False

    async def send_command(self, command_type: str, params: Optional[Dict[str, Any]] = None) -> Any:
        params = params or {}
        self.calls.append((command_type, params))
        response = self.responses.get(command_type)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    def last_call(self, command_type: str) -> Dict[str, Any]:
        for name, params in reversed(self.calls):
            if name == command_type:
                return params
        raise AssertionError(f"{command_type} was never sent")

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def on(self, event, callback) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def off(self, event, callback) -> None:
        if callback in self.listeners.get(event, []):
            self.listeners[event].remove(callback)

    def has_listener(self, event, callback) -> bool:
        return callback in self.listeners.get(event, [])

    def listener_count(self, event) -> int:
        return len(self.listeners.get(event, []))

    def emit(self, event, payload) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(payload)


@pytest.fixture
def fake_godot():
    return FakeGodot()


def tool_text(result) -> str:
    """Text of the first content block of a tool call result."""
    return result.content[0].text
