"""WebSocket connection to the Godot editor's MCP command server.

A single ``GodotConnection`` is shared by every tool and resource handler.
Commands are multiplexed over one socket and matched to their responses by
``commandId``; messages that carry an ``event`` name instead are fanned out to
registered listeners.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://127.0.0.1:9080"

# Godot's WebSocketPeer accepts frames up to 64MB.
MAX_MESSAGE_SIZE = 64 * 1024 * 1024

EventCallback = Callable[[Any], None]


class GodotError(Exception):
    """Base class for failures talking to the Godot editor."""


class ConnectFailure(GodotError):
    """The socket could not be opened within the retry budget."""


class SendFailure(GodotError):
    """The socket was not open when a command had to be written."""


class RemoteError(GodotError):
    """Godot answered a command with an error status."""


class CommandTimeout(GodotError):
    """No response arrived before the per-command deadline."""


class ClosedWhilePending(GodotError):
    """The socket closed while a command was waiting for its response."""


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class _PendingCommand:
    command_type: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class GodotConnection:
    """Request/response RPC facade and event bus over one WebSocket."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 20.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        connect_timeout: float | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout if connect_timeout is not None else timeout

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, _PendingCommand] = {}
        self._next_id = 0
        self._listeners: dict[str, list[EventCallback]] = {}
        self._connect_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task | None = None
        logger.debug("GodotConnection created for %s", self.url)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pending_count(self) -> int:
        """Number of commands still waiting for a response."""
        return len(self._pending)

    def is_connected(self) -> bool:
        return (
            self._state is ConnectionState.CONNECTED
            and self._ws is not None
            and self._ws.state is State.OPEN
        )

    # --- Connecting ---

    async def connect(self) -> None:
        """Open the socket, retrying up to ``max_retries`` times.

        Safe to call while connected (no-op) and from several tasks at once:
        concurrent callers wait on the same attempt.
        """
        if self.is_connected():
            return
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.get_running_loop().create_task(self._connect_with_retries())
        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # The shared attempt was cancelled by disconnect(), not this caller.
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                raise ConnectFailure("Connection closed") from None
            raise
        finally:
            if task.done() and self._connect_task is task:
                self._connect_task = None

    async def _connect_with_retries(self) -> None:
        self._state = ConnectionState.CONNECTING
        attempts = self.max_retries + 1
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            logger.info("Connecting to Godot WebSocket server at %s... (attempt %d/%d)", self.url, attempt, attempts)
            try:
                await self._open()
                return
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                last_error = e
                if attempt < attempts:
                    logger.warning("Connection attempt failed: %s. Retrying in %.1fs...", e, self.retry_delay)
                    await asyncio.sleep(self.retry_delay)
        self._state = ConnectionState.DISCONNECTED
        reason = str(last_error) or type(last_error).__name__
        raise ConnectFailure(f"Could not connect to Godot at {self.url}: {reason}") from last_error

    async def _open(self) -> None:
        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    compression=None,
                    max_size=MAX_MESSAGE_SIZE,
                    open_timeout=None,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            raise asyncio.TimeoutError("Connection timeout") from None
        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._reader = asyncio.get_running_loop().create_task(self._read_loop(ws))
        logger.info("WebSocket connection established")

    # --- Commands ---

    async def send_command(self, command_type: str, params: dict[str, Any] | None = None) -> Any:
        """Send a command and wait for its correlated response.

        Returns the ``result`` field of a success response. Raises a
        ``GodotError`` subclass on connect failure, remote error, timeout or
        socket closure.
        """
        if not self.is_connected():
            try:
                await self.connect()
            except GodotError as e:
                raise ConnectFailure(f"Failed to connect: {e}") from e

        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            raise SendFailure("WebSocket not connected")

        command_id = f"cmd_{self._next_id}"
        self._next_id += 1

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(self.timeout, self._expire, command_id)
        self._pending[command_id] = _PendingCommand(command_type, future, timer)

        data = json.dumps({"type": command_type, "params": params or {}, "commandId": command_id})
        logger.debug("Sending command: %s", data)
        try:
            await ws.send(data)
        except ConnectionClosed as e:
            self._discard(command_id)
            if future.done():
                return await future
            future.cancel()
            raise SendFailure(f"WebSocket not connected: {e}") from e

        try:
            return await future
        finally:
            self._discard(command_id)

    def _expire(self, command_id: str) -> None:
        pending = self._pending.pop(command_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning("Command %s (%s) timed out after %.3fs", command_id, pending.command_type, self.timeout)
        pending.future.set_exception(CommandTimeout(f"Command timed out: {pending.command_type}"))

    def _discard(self, command_id: str) -> None:
        pending = self._pending.pop(command_id, None)
        if pending is not None:
            pending.timer.cancel()

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(ClosedWhilePending(reason))
        if pending:
            logger.info("Rejected %d pending command(s): %s", len(pending), reason)

    # --- Inbound ---

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_message(raw)
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("Error reading from Godot, closing connection")
            await ws.close(code=1011, reason="Client error")
        finally:
            self._on_closed(ws)

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Error parsing message from Godot: %s", e)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object message from Godot: %r", message)
            return

        logger.debug("Received message: %s", message)
        if "commandId" in message:
            if not isinstance(message["commandId"], str):
                logger.warning("Ignoring response with invalid commandId: %r", message["commandId"])
                return
            self._resolve(message)
        elif "event" in message:
            data = message.get("data")
            self._emit(str(message["event"]), data if data is not None else message)

    def _resolve(self, message: dict[str, Any]) -> None:
        command_id = message["commandId"]
        pending = self._pending.pop(command_id, None)
        if pending is None:
            logger.debug("Discarding response for unknown or expired command %s", command_id)
            return
        pending.timer.cancel()
        if pending.future.done():
            return
        if message.get("status") == "success":
            pending.future.set_result(message.get("result"))
        else:
            pending.future.set_exception(RemoteError(message.get("message") or "Unknown error"))

    def _on_closed(self, ws: Any) -> None:
        # A socket we already let go of (explicit disconnect) is not ours to handle.
        if ws is not self._ws:
            return
        was_connected = self._state is ConnectionState.CONNECTED
        logger.warning(
            "WebSocket closed (code: %s, reason: %s)",
            getattr(ws, "close_code", None),
            getattr(ws, "close_reason", None) or "No reason provided",
        )
        self._ws = None
        self._reader = None
        self._state = ConnectionState.DISCONNECTED
        self._fail_pending("Connection closed")
        if was_connected:
            self._schedule_reconnect()

    # --- Reconnect ---

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_handle is not None or self._reconnect_task is not None

    def _schedule_reconnect(self) -> None:
        if self.reconnecting:
            return
        logger.info("Reconnecting to Godot in %.1fs", self.retry_delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.retry_delay, self._start_reconnect)

    def _start_reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except GodotError as e:
            logger.warning("Automatic reconnect failed: %s", e)
        finally:
            self._reconnect_task = None

    # --- Teardown ---

    async def disconnect(self) -> None:
        """Reject pending commands and close the socket. Idempotent."""
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        self._fail_pending("Connection closed")
        ws, self._ws = self._ws, None
        self._state = ConnectionState.DISCONNECTED
        if ws is None:
            return
        try:
            await ws.close(code=1000, reason="Client disconnecting")
        except (OSError, WebSocketException) as e:
            logger.error("Error during disconnect: %s", e)
        logger.info("Disconnected from Godot")

    # --- Events ---

    def on(self, event: str, callback: EventCallback) -> None:
        """Register ``callback`` for notifications named ``event``."""
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)
            if not listeners:
                del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def has_listener(self, event: str, callback: EventCallback) -> bool:
        return callback in self._listeners.get(event, ())

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(payload)
            except Exception:
                logger.exception("Listener for '%s' raised", event)
