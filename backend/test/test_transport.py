"""시그널링 전송 테스트 (인메모리 / WebSocket)."""

import asyncio
import json

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from peerchat.errors import TransportError
from peerchat.signaling import InMemoryTransport, SignalingConfig, WebSocketTransport


def fast_config(**kwargs) -> SignalingConfig:
    options = {"SIGNALING_TOKEN": None, "RECONNECT_BASE_DELAY": 0.01, "RECONNECT_MAX_DELAY": 0.05}
    options.update(kwargs)
    return SignalingConfig(**options)


# ============================================================
# InMemoryTransport
# ============================================================

def test_async_handlers_run_in_arrival_order():
    async def scenario():
        transport = InMemoryTransport()
        log = []

        async def slow(data):
            log.append(("slow-start", data["n"]))
            await asyncio.sleep(0.01)
            log.append(("slow-end", data["n"]))

        transport.on("offer", slow)
        transport.on("offer", lambda data: log.append(("sync", data["n"])))

        await transport.deliver("offer", {"n": 1})
        await transport.deliver("offer", {"n": 2})

        assert log == [
            ("slow-start", 1), ("slow-end", 1), ("sync", 1),
            ("slow-start", 2), ("slow-end", 2), ("sync", 2),
        ]

    asyncio.run(scenario())


def test_failing_handler_does_not_block_others():
    async def scenario():
        transport = InMemoryTransport()
        seen = []

        def broken(data):
            raise RuntimeError("boom")

        transport.on("answer", broken)
        transport.on("answer", seen.append)
        await transport.deliver("answer", {"ok": True})
        assert seen == [{"ok": True}]

    asyncio.run(scenario())


def test_off_removes_handlers():
    async def scenario():
        transport = InMemoryTransport()
        seen = []
        transport.on("offer", seen.append)
        transport.on("answer", seen.append)

        transport.off("offer", seen.append)
        transport.off("answer")
        await transport.deliver("offer", {})
        await transport.deliver("answer", {})

        assert seen == []
        assert transport.handler_count("offer") == 0

    asyncio.run(scenario())


def test_linked_transports_exchange_messages():
    async def scenario():
        a, b = InMemoryTransport(), InMemoryTransport()
        a.link(b)
        received = []
        b.on("offer", received.append)

        await a.send("offer", {"roomId": "r"})
        assert received == [{"roomId": "r"}]
        assert a.sent == [("offer", {"roomId": "r"})]
        assert a.sent_events("offer") == [{"roomId": "r"}]

    asyncio.run(scenario())


def test_send_while_disconnected_raises():
    async def scenario():
        transport = InMemoryTransport()
        events = []
        transport.on("disconnect", events.append)
        await transport.disconnect()

        assert not transport.connected
        assert events == [{"reason": "closed"}]
        with pytest.raises(TransportError):
            await transport.send("join_queue")

    asyncio.run(scenario())


# ============================================================
# WebSocketTransport
# ============================================================

class FakeWebSocket:
    def __init__(self, closed: bool = False):
        self.closed = closed
        self.messages = []

    async def send(self, raw):
        if self.closed:
            raise ConnectionClosed(None, None)
        self.messages.append(json.loads(raw))


def test_url_carries_token():
    plain = WebSocketTransport(url="ws://example.test/ws", config=fast_config())
    assert plain.url == "ws://example.test/ws"

    with_token = WebSocketTransport(url="ws://example.test/ws", token="s3cret", config=fast_config())
    assert with_token.url == "ws://example.test/ws?token=s3cret"


def test_backoff_delay_is_capped():
    config = SignalingConfig(RECONNECT_BASE_DELAY=1.0, RECONNECT_MAX_DELAY=5.0)
    assert [config.backoff_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_raw_messages_are_parsed_and_dispatched():
    async def scenario():
        transport = WebSocketTransport(url="ws://example.test/ws", config=fast_config())
        seen = []
        transport.on("match_found", seen.append)
        transport.on("queue_left", seen.append)

        await transport._handle_raw(json.dumps({"type": "match_found", "data": {"roomId": "r"}}))
        await transport._handle_raw(json.dumps({"type": "queue_left", "data": None}))
        await transport._handle_raw("not json")
        await transport._handle_raw(json.dumps({"data": {}}))
        await transport._handle_raw(json.dumps(["match_found"]))

        assert seen == [{"roomId": "r"}, {}]

    asyncio.run(scenario())


def test_send_serializes_envelope():
    async def scenario():
        transport = WebSocketTransport(url="ws://example.test/ws", config=fast_config())
        with pytest.raises(TransportError):
            await transport.send("join_queue")

        transport._ws = FakeWebSocket()
        await transport.send("offer", {"roomId": "r"})
        assert transport._ws.messages == [{"type": "offer", "data": {"roomId": "r"}}]

        transport._ws = FakeWebSocket(closed=True)
        with pytest.raises(TransportError):
            await transport.send("answer", {})

    asyncio.run(scenario())


def test_connect_timeout_raises_transport_error():
    async def scenario():
        transport = WebSocketTransport(url="ws://127.0.0.1:9/ws", config=fast_config())
        with pytest.raises(TransportError):
            await transport.connect(timeout=0.2)
        assert not transport.connected
        await transport.close()

    asyncio.run(scenario())


def test_round_trip_against_websocket_server():
    async def scenario():
        received = []
        got_message = asyncio.Event()

        async def handler(ws):
            await ws.send(json.dumps({"type": "peer_id", "data": {"peer_id": "abc"}}))
            async for raw in ws:
                received.append(json.loads(raw))
                got_message.set()

        async with websockets.serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            transport = WebSocketTransport(url=f"ws://127.0.0.1:{port}", config=fast_config())
            events = []
            peer_ids = []
            assigned = asyncio.Event()

            transport.on("connect", lambda data: events.append("connect"))

            def on_peer_id(data):
                peer_ids.append(data["peer_id"])
                assigned.set()

            transport.on("peer_id", on_peer_id)

            await transport.connect(timeout=2.0)
            assert transport.connected
            await asyncio.wait_for(assigned.wait(), timeout=2.0)

            await transport.send("join_queue", {})
            await asyncio.wait_for(got_message.wait(), timeout=2.0)
            await transport.close()

        assert events == ["connect"]
        assert peer_ids == ["abc"]
        assert received == [{"type": "join_queue", "data": {}}]
        assert not transport.connected

    asyncio.run(scenario())
