"""
Tests for GodotConnection against a real in-process WebSocket peer.

Tests cover:
- Request/response correlation, including out-of-order replies
- Remote errors, timeouts and late replies
- Disconnect and peer-initiated closure rejecting pending commands
- Automatic reconnect after closure
- Event fan-out to listeners
- Connect retries and failure
"""

import asyncio
import logging

import pytest

from conftest import MockGodotPeer, unused_port, wait_until
from godot_mcp.connection import (
    ClosedWhilePending,
    CommandTimeout,
    ConnectFailure,
    ConnectionState,
    GodotConnection,
    RemoteError,
)


def make_connection(peer: MockGodotPeer, **kwargs) -> GodotConnection:
    kwargs.setdefault("timeout", 2.0)
    kwargs.setdefault("retry_delay", 0.05)
    return GodotConnection(peer.url, **kwargs)


def hold(message):
    return None


# =============================================================================
# Request / response
# =============================================================================


class TestSendCommand:

    @pytest.mark.asyncio
    async def test_returns_result_and_sends_envelope(self, godot_peer):
        conn = make_connection(godot_peer)
        try:
            result = await conn.send_command("ping")
        finally:
            await conn.disconnect()

        assert result == {"pong": True, "type": "ping"}
        assert godot_peer.received == [{"type": "ping", "params": {}, "commandId": "cmd_0"}]

    @pytest.mark.asyncio
    async def test_command_ids_increase(self, godot_peer):
        conn = make_connection(godot_peer)
        try:
            await conn.send_command("a", {"x": 1})
            await conn.send_command("b")
        finally:
            await conn.disconnect()

        assert [m["commandId"] for m in godot_peer.received] == ["cmd_0", "cmd_1"]
        assert godot_peer.received[0]["params"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_connects_lazily(self, godot_peer):
        conn = make_connection(godot_peer)
        assert conn.state is ConnectionState.DISCONNECTED
        try:
            await conn.send_command("ping")
            assert conn.is_connected()
            assert conn.state is ConnectionState.CONNECTED
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_out_of_order_responses_are_matched_by_id(self, godot_peer):
        godot_peer.responder = hold
        conn = make_connection(godot_peer)
        try:
            await conn.connect()
            first = asyncio.create_task(conn.send_command("first"))
            second = asyncio.create_task(conn.send_command("second"))
            await godot_peer.wait_for_received(2)

            by_type = {m["type"]: m for m in godot_peer.received}
            await godot_peer.reply(by_type["second"], {"status": "success", "result": "two"})
            await godot_peer.reply(by_type["first"], {"status": "success", "result": "one"})

            assert await first == "one"
            assert await second == "two"
            assert conn.pending_count == 0
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_error_response_raises_remote_error(self, godot_peer):
        godot_peer.responder = lambda m: {"status": "error", "message": "Node not found"}
        conn = make_connection(godot_peer)
        try:
            with pytest.raises(RemoteError, match="Node not found"):
                await conn.send_command("get_node")
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_error_without_message(self, godot_peer):
        godot_peer.responder = lambda m: {"status": "error"}
        conn = make_connection(godot_peer)
        try:
            with pytest.raises(RemoteError, match="Unknown error"):
                await conn.send_command("broken")
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_missing_result_resolves_to_none(self, godot_peer):
        godot_peer.responder = lambda m: {"status": "success"}
        conn = make_connection(godot_peer)
        try:
            assert await conn.send_command("noop") is None
        finally:
            await conn.disconnect()


# =============================================================================
# Timeouts and stray frames
# =============================================================================


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_late_reply_is_discarded(self, godot_peer):
        godot_peer.responder = hold
        conn = GodotConnection(godot_peer.url, timeout=0.05, connect_timeout=2.0)
        try:
            with pytest.raises(CommandTimeout, match="Command timed out: slow_command"):
                await conn.send_command("slow_command")
            assert conn.pending_count == 0

            # The late answer must not disturb the next command.
            await godot_peer.reply(godot_peer.received[0], {"status": "success", "result": "late"})
            godot_peer.responder = lambda m: {"status": "success", "result": "fresh"}
            assert await conn.send_command("next") == "fresh"
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_frames_are_ignored(self, godot_peer):
        conn = make_connection(godot_peer)
        try:
            await conn.connect()
            await godot_peer.send("not json at all")
            await godot_peer.send("[1, 2, 3]")
            await godot_peer.send({"commandId": "cmd_999", "status": "success", "result": 1})
            assert (await conn.send_command("ping"))["pong"] is True
            assert conn.is_connected()
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_non_string_command_id_keeps_session(self, godot_peer):
        godot_peer.responder = hold
        conn = make_connection(godot_peer)
        try:
            await conn.connect()
            pending = asyncio.create_task(conn.send_command("waiting"))
            await godot_peer.wait_for_received(1)

            await godot_peer.send({"commandId": ["x"], "status": "success"})
            await godot_peer.send({"commandId": {"id": 1}, "status": "success"})
            await godot_peer.reply(godot_peer.received[0], {"status": "success", "result": "kept"})

            assert await pending == "kept"
            assert conn.is_connected()
            assert len(godot_peer.connections) == 1
        finally:
            await conn.disconnect()


# =============================================================================
# Closure and reconnect
# =============================================================================


class TestClosure:

    @pytest.mark.asyncio
    async def test_disconnect_rejects_all_pending(self, godot_peer):
        godot_peer.responder = hold
        conn = make_connection(godot_peer)
        await conn.connect()
        tasks = [asyncio.create_task(conn.send_command(f"cmd{i}")) for i in range(3)]
        await godot_peer.wait_for_received(3)

        await conn.disconnect()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, ClosedWhilePending) for r in results)
        assert conn.pending_count == 0
        assert conn.state is ConnectionState.DISCONNECTED
        assert not conn.is_connected()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, godot_peer):
        conn = make_connection(godot_peer)
        await conn.disconnect()
        await conn.send_command("ping")
        await conn.disconnect()
        await conn.disconnect()
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_peer_close_rejects_pending_then_reconnects(self, godot_peer):
        godot_peer.responder = hold
        conn = make_connection(godot_peer)
        try:
            await conn.connect()
            pending = asyncio.create_task(conn.send_command("waiting"))
            await godot_peer.wait_for_received(1)

            await godot_peer.drop_clients()

            with pytest.raises(ClosedWhilePending):
                await pending
            await wait_until(lambda: len(godot_peer.connections) == 2 and conn.is_connected())

            godot_peer.responder = lambda m: {"status": "success", "result": "back"}
            assert await conn.send_command("after_reconnect") == "back"
            assert godot_peer.received[-1]["commandId"] == "cmd_1"
        finally:
            await conn.disconnect()

    @pytest.mark.asyncio
    async def test_no_reconnect_after_explicit_disconnect(self, godot_peer):
        conn = make_connection(godot_peer)
        await conn.connect()
        await conn.disconnect()
        await asyncio.sleep(0.15)
        assert len(godot_peer.connections) == 1
        assert not conn.reconnecting


# =============================================================================
# Events
# =============================================================================


class TestEvents:

    @pytest.mark.asyncio
    async def test_listeners_called_in_registration_order(self, godot_peer):
        calls = []
        conn = make_connection(godot_peer)
        conn.on("debug_output_frame", lambda data: calls.append(("first", data)))
        conn.on("debug_output_frame", lambda data: calls.append(("second", data)))
        try:
            await conn.connect()
            await godot_peer.send({"event": "debug_output_frame", "data": {"lines": ["hello"]}})
            await wait_until(lambda: len(calls) == 2)
        finally:
            await conn.disconnect()

        assert calls == [("first", {"lines": ["hello"]}), ("second", {"lines": ["hello"]})]

    @pytest.mark.asyncio
    async def test_event_without_data_passes_whole_message(self, godot_peer):
        calls = []
        conn = make_connection(godot_peer)
        conn.on("execution_paused", calls.append)
        try:
            await conn.connect()
            await godot_peer.send({"event": "execution_paused", "session_id": 1})
            await wait_until(lambda: len(calls) == 1)
        finally:
            await conn.disconnect()

        assert calls[0] == {"event": "execution_paused", "session_id": 1}

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, godot_peer):
        calls = []

        def broken(data):
            raise RuntimeError("boom")

        conn = make_connection(godot_peer)
        conn.on("breakpoint_hit", broken)
        conn.on("breakpoint_hit", calls.append)
        try:
            await conn.connect()
            await godot_peer.send({"event": "breakpoint_hit", "data": {"line": 3}})
            await wait_until(lambda: len(calls) == 1)
        finally:
            await conn.disconnect()

        assert calls == [{"line": 3}]

    def test_off_removes_listener(self):
        conn = GodotConnection()
        listener = lambda data: None  # noqa: E731
        conn.on("evt", listener)
        assert conn.has_listener("evt", listener)
        assert conn.listener_count("evt") == 1
        conn.off("evt", listener)
        conn.off("evt", listener)
        assert conn.listener_count("evt") == 0
        assert not conn.has_listener("evt", listener)


# =============================================================================
# Connecting
# =============================================================================


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_failure_after_retries(self, caplog):
        caplog.set_level(logging.INFO, logger="godot_mcp.connection")
        conn = GodotConnection(f"ws://127.0.0.1:{unused_port()}", max_retries=2, retry_delay=0.01, timeout=1.0)

        with pytest.raises(ConnectFailure, match="Could not connect to Godot"):
            await conn.connect()

        attempts = [r for r in caplog.records if "attempt" in r.getMessage() and "Connecting" in r.getMessage()]
        assert [r.getMessage().split("(attempt ")[1] for r in attempts] == ["1/3)", "2/3)", "3/3)"]
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_command_reports_connect_failure(self):
        conn = GodotConnection(f"ws://127.0.0.1:{unused_port()}", max_retries=0, retry_delay=0.01, timeout=1.0)
        with pytest.raises(ConnectFailure, match="Failed to connect"):
            await conn.send_command("ping")
        assert conn.pending_count == 0

    @pytest.mark.asyncio
    async def test_handshake_timeout_counts_as_failed_attempt(self, stalled_listener, caplog):
        caplog.set_level(logging.INFO, logger="godot_mcp.connection")
        conn = GodotConnection(stalled_listener.url, timeout=5.0, connect_timeout=0.1, max_retries=1, retry_delay=0.01)

        with pytest.raises(ConnectFailure, match="Connection timeout"):
            await conn.connect()

        attempts = [r for r in caplog.records if "(attempt " in r.getMessage()]
        assert len(attempts) == 2
        assert stalled_listener.accepted == 2
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_during_handshake_rejects_caller(self, stalled_listener):
        conn = GodotConnection(stalled_listener.url, timeout=5.0, max_retries=0)
        sending = asyncio.create_task(conn.send_command("ping"))
        await wait_until(lambda: stalled_listener.accepted == 1)

        await conn.disconnect()

        with pytest.raises(ConnectFailure, match="Connection closed"):
            await sending
        assert conn.state is ConnectionState.DISCONNECTED
        assert conn.pending_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_socket(self, godot_peer):
        conn = make_connection(godot_peer)
        try:
            await asyncio.gather(conn.connect(), conn.connect(), conn.connect())
            assert conn.is_connected()
            assert len(godot_peer.connections) == 1
        finally:
            await conn.disconnect()
