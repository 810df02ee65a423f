"""
Unit tests for the live-reload registry (ReloadHub) and its Starlette adapter.

Run with:
    pytest tests/test_ws_hub.py -v
"""

import asyncio
import json
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from signup_service.ws_events import RELOAD_MESSAGE, WELCOME_MESSAGE
from signup_service.ws_hub import ReloadHub, TransportSendError, WebSocketTransport

from .fakes import FakeTransport


class TestAccept:
    """Registration and welcome frame."""

    def test_accept_registers_and_sends_welcome(self, hub):
        transport = FakeTransport()
        client_id = hub.accept(transport, "127.0.0.1:5000")

        assert len(hub) == 1
        assert hub.client_ids() == [client_id]
        assert hub.get(client_id).remote_address == "127.0.0.1:5000"
        welcome = transport.messages[0]
        assert welcome["type"] == "connected"
        assert welcome["clientId"] == client_id
        assert welcome["message"] == WELCOME_MESSAGE
        assert welcome["timestamp"].endswith("Z")

    def test_ids_are_unique(self, hub):
        ids = {hub.accept(FakeTransport()) for _ in range(50)}
        assert len(ids) == 50

    def test_welcome_failure_keeps_registration(self, hub):
        client_id = hub.accept(FakeTransport(fail_send=True))
        assert hub.get(client_id) is not None


class TestBroadcast:
    """Fan-out statistics and cleanup."""

    def test_empty_registry(self, hub):
        stats = hub.broadcast({})
        assert stats.to_dict() == {"successCount": 0, "errorCount": 0, "totalClients": 0}

    def test_reload_frame_shape(self, hub):
        transport = FakeTransport()
        hub.accept(transport)
        stats = hub.broadcast({"reason": "deploy", "source": "ci", "type": "hijack"})

        assert stats.to_dict() == {"successCount": 1, "errorCount": 0, "totalClients": 1}
        reload_msg = transport.messages[-1]
        assert reload_msg["type"] == "reload"
        assert reload_msg["message"] == RELOAD_MESSAGE
        assert reload_msg["reason"] == "deploy"
        assert reload_msg["source"] == "ci"
        assert "timestamp" in reload_msg

    def test_caller_fields_override_message(self, hub):
        transport = FakeTransport()
        hub.accept(transport)
        hub.broadcast({"message": "custom"})
        assert transport.messages[-1]["message"] == "custom"

    def test_extra_values_passed_through_untyped(self, hub):
        transport = FakeTransport()
        hub.accept(transport)

        stats = hub.broadcast({"message": 123, "timestamp": 0, "build": None, "files": ["a.py"]})

        assert stats.successCount == 1
        reload_msg = transport.messages[-1]
        assert reload_msg["type"] == "reload"
        assert reload_msg["message"] == 123
        assert reload_msg["timestamp"] == 0
        assert "build" in reload_msg and reload_msg["build"] is None
        assert reload_msg["files"] == ["a.py"]

    def test_no_extra_gives_default_frame(self, hub):
        transport = FakeTransport()
        hub.accept(transport)
        hub.broadcast()

        reload_msg = transport.messages[-1]
        assert set(reload_msg) == {"type", "message", "timestamp"}
        assert reload_msg["message"] == RELOAD_MESSAGE

    def test_closed_transport_dropped_without_error(self, hub):
        alive, dead = FakeTransport(), FakeTransport()
        hub.accept(alive)
        dead_id = hub.accept(dead)
        dead.is_open = False

        stats = hub.broadcast({"reason": "x"})

        assert stats.to_dict() == {"successCount": 1, "errorCount": 0, "totalClients": 1}
        assert hub.get(dead_id) is None

    def test_failing_send_counts_error_and_drops(self, hub):
        alive, broken = FakeTransport(), FakeTransport()
        hub.accept(alive)
        broken_id = hub.accept(broken)
        broken.fail_send = True

        stats = hub.broadcast({"reason": "x"})

        assert stats.to_dict() == {"successCount": 1, "errorCount": 1, "totalClients": 1}
        assert hub.get(broken_id) is None

    def test_registry_holds_only_open_sockets_after_broadcast(self):
        rng = random.Random(1234)
        hub = ReloadHub()
        transports = {}

        for _ in range(500):
            op = rng.choice(["accept", "accept", "close", "error", "die", "broadcast"])
            ids = hub.client_ids()
            if op == "accept":
                t = FakeTransport(fail_send=rng.random() < 0.1)
                transports[hub.accept(t)] = t
            elif op == "close" and ids:
                hub.on_close(rng.choice(ids))
            elif op == "error" and ids:
                hub.on_error(rng.choice(ids))
            elif op == "die" and ids:
                transports[rng.choice(ids)].is_open = False
            elif op == "broadcast":
                stats = hub.broadcast({"reason": "fuzz"})
                remaining = hub.client_ids()
                assert stats.totalClients == len(remaining)
                for client_id in remaining:
                    assert hub.get(client_id).transport.is_open
                    assert not transports[client_id].fail_send


class TestInbound:
    """Client -> server frames."""

    def test_ping_gets_unicast_pong(self, hub):
        sender, other = FakeTransport(), FakeTransport()
        sender_id = hub.accept(sender)
        hub.accept(other)

        hub.on_message(sender_id, json.dumps({"type": "ping"}))

        assert [m["type"] for m in sender.messages] == ["connected", "pong"]
        assert [m["type"] for m in other.messages] == ["connected"]

    def test_unknown_type_ignored(self, hub):
        transport = FakeTransport()
        client_id = hub.accept(transport)
        hub.on_message(client_id, json.dumps({"type": "hello"}))
        assert len(transport.sent) == 1

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", b"\xff\xfe", None, 42])
    def test_malformed_frames_ignored(self, hub, raw):
        transport = FakeTransport()
        client_id = hub.accept(transport)
        hub.on_message(client_id, raw)
        assert len(transport.sent) == 1
        assert hub.get(client_id) is not None

    def test_pong_failure_removes_client(self, hub):
        transport = FakeTransport()
        client_id = hub.accept(transport)
        transport.fail_send = True
        hub.on_message(client_id, '{"type": "ping"}')
        assert hub.get(client_id) is None

    def test_close_and_error_remove(self, hub):
        a = hub.accept(FakeTransport())
        b = hub.accept(FakeTransport())
        hub.on_close(a)
        hub.on_error(b)
        hub.on_close(a)
        assert len(hub) == 0

    def test_close_all(self, hub):
        transports = [FakeTransport() for _ in range(3)]
        for t in transports:
            hub.accept(t)
        assert hub.close_all() == 3
        assert len(hub) == 0
        assert all(t.close_codes == [1001] for t in transports)


def _fake_ws():
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.mark.asyncio
class TestWebSocketTransport:
    """Queue hand-off between the hub and the socket writer."""

    async def test_writer_drains_in_order(self):
        ws = _fake_ws()
        transport = WebSocketTransport(ws, max_queue=10)
        transport.send("a")
        transport.send("b")

        writer = asyncio.create_task(transport.run_writer())
        for _ in range(5):
            await asyncio.sleep(0)
        writer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await writer

        assert [c.args[0] for c in ws.send_text.await_args_list] == ["a", "b"]

    async def test_full_queue_raises(self):
        transport = WebSocketTransport(_fake_ws(), max_queue=1)
        transport.send("a")
        with pytest.raises(TransportSendError):
            transport.send("b")

    async def test_send_after_close_raises(self):
        ws = _fake_ws()
        transport = WebSocketTransport(ws)
        transport.mark_closed()
        assert not transport.is_open
        with pytest.raises(TransportSendError):
            transport.send("a")

    async def test_writer_error_marks_closed(self):
        ws = _fake_ws()
        ws.send_text.side_effect = RuntimeError("gone")
        transport = WebSocketTransport(ws)
        transport.send("a")
        await transport.run_writer()
        assert not transport.is_open
