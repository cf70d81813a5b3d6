# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any, Sequence

import pytest

import adapters.asr.channel_relay as relay_mod
from adapters.asr.channel_relay import ChannelRelay
from config import UpstreamConfig
from protocol.upstream import Token
from session.channel import Channel
from session.connection_status import ConnectionState


_CLOSED = object()


class FakeUpstreamSocket:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self, *, send_gate: asyncio.Event | None = None) -> None:
        self.sent: list[Any] = []
        self.closed = False
        self.fail_sends = False
        self.send_gate = send_gate
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, data: Any) -> None:
        # Only audio waits on the gate; the config frame goes straight out
        if self.send_gate is not None and isinstance(data, bytes):
            await self.send_gate.wait()
        if self.closed or self.fail_sends:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSED)

    def push(self, message: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def fail(self, exc: Exception) -> None:
        self._incoming.put_nowait(exc)

    def __aiter__(self) -> "FakeUpstreamSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self.closed = True
            raise item
        return item

    @property
    def audio(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]


class FakeConnector:
    """Replaces websockets' connect(); optionally blocks or fails."""

    def __init__(
        self,
        *,
        fail_times: int = 0,
        gate: asyncio.Event | None = None,
        send_gate: asyncio.Event | None = None,
    ) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sockets: list[FakeUpstreamSocket] = []
        self.fail_times = fail_times
        self.gate = gate
        self.send_gate = send_gate

    async def __call__(self, url: str, **kwargs: Any) -> FakeUpstreamSocket:
        self.calls.append((url, kwargs))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_times > 0:
            self.fail_times -= 1
            raise OSError("connection refused")
        sock = FakeUpstreamSocket(send_gate=self.send_gate)
        self.sockets.append(sock)
        return sock


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(relay_mod, "log_event", logged.append)
    monkeypatch.setattr("observability.metrics.log_event", logged.append)
    return logged


def make_relay(
    connector: FakeConnector,
    *,
    reconnect_delay_ms: int = 10,
    max_reconnect_attempts: int | None = None,
) -> tuple[ChannelRelay, list[Sequence[Token]]]:
    batches: list[Sequence[Token]] = []

    async def on_tokens(tokens: Sequence[Token]) -> None:
        batches.append(tokens)

    relay = ChannelRelay(
        channel=Channel.CUSTOMER,
        config=UpstreamConfig(
            api_key="test-key",
            url="wss://upstream.test/stream",
            reconnect_delay_ms=reconnect_delay_ms,
            max_reconnect_attempts=max_reconnect_attempts,
        ),
        on_tokens=on_tokens,
        session_id="sess_test",
        connect=connector,
    )
    return relay, batches


async def settle(seconds: float = 0.01) -> None:
    await asyncio.sleep(seconds)


# ---------------------------------------------------------------------
# Queueing + connect idempotence
# ---------------------------------------------------------------------

def test_sends_while_disconnected_trigger_one_attempt_then_drain_in_order():
    async def run() -> None:
        gate = asyncio.Event()
        connector = FakeConnector(gate=gate)
        relay, _ = make_relay(connector)

        assert relay.state is ConnectionState.DISCONNECTED
        await relay.send(b"\x01\x00")
        await relay.send(b"\x02\x00")
        await relay.send(b"\x03\x00")
        await settle()

        assert len(connector.calls) == 1
        assert relay.connect_attempts == 1
        assert relay.state is ConnectionState.CONNECTING
        assert relay.pending_count == 3

        gate.set()
        await settle()

        sock = connector.sockets[0]
        assert relay.state is ConnectionState.READY
        assert relay.pending_count == 0
        assert json.loads(sock.sent[0])["api_key"] == "test-key"
        assert sock.audio == [b"\x01\x00", b"\x02\x00", b"\x03\x00"]

        await relay.close()

    asyncio.run(run())


def test_connect_is_idempotent():
    async def run() -> None:
        connector = FakeConnector()
        relay, _ = make_relay(connector)

        relay.connect()
        relay.connect()
        await settle()
        relay.connect()

        assert len(connector.calls) == 1
        assert relay.state is ConnectionState.READY
        url, kwargs = connector.calls[0]
        assert url == "wss://upstream.test/stream"
        assert "max_size" in kwargs

        await relay.close()

    asyncio.run(run())


def test_ready_relay_transmits_immediately():
    async def run() -> None:
        connector = FakeConnector()
        relay, _ = make_relay(connector)
        relay.connect()
        await settle()

        await relay.send(b"\xAA\xBB")

        assert connector.sockets[0].audio == [b"\xAA\xBB"]
        assert relay.pending_count == 0

        await relay.close()

    asyncio.run(run())


def test_chunks_sent_during_drain_queue_behind_it():
    async def run() -> None:
        gate = asyncio.Event()
        send_gate = asyncio.Event()
        connector = FakeConnector(gate=gate, send_gate=send_gate)
        relay, _ = make_relay(connector)

        await relay.send(b"\x01\x00")
        await relay.send(b"\x02\x00")
        gate.set()
        await settle()

        # Drain is parked on the first queued chunk
        assert relay.state is ConnectionState.READY
        await relay.send(b"\x03\x00")
        assert relay.pending_count == 2
        assert connector.sockets[0].audio == []

        send_gate.set()
        await settle()
        await relay.send(b"\x04\x00")

        assert connector.sockets[0].audio == [b"\x01\x00", b"\x02\x00", b"\x03\x00", b"\x04\x00"]
        assert len(connector.calls) == 1

        await relay.close()

    asyncio.run(run())


def test_failed_immediate_send_is_resent_on_next_connection(
    quiet_logs: list[dict[str, Any]],
):
    async def run() -> None:
        connector = FakeConnector()
        relay, _ = make_relay(connector, reconnect_delay_ms=10)
        relay.connect()
        await settle()

        first = connector.sockets[0]
        first.fail_sends = True
        await relay.send(b"\x0A\x00")
        assert relay.pending_count == 1

        first.fail(OSError("connection reset"))
        await settle(0.06)

        assert len(connector.calls) == 2
        assert first.audio == []
        assert connector.sockets[1].audio == [b"\x0A\x00"]
        assert relay.pending_count == 0

        await relay.close()

    asyncio.run(run())
    assert any(e["event_type"] == "UPSTREAM_SEND_FAILED" for e in quiet_logs)


# ---------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------

def test_token_batches_are_forwarded_in_order():
    async def run() -> list[Sequence[Token]]:
        connector = FakeConnector()
        relay, batches = make_relay(connector)
        relay.connect()
        await settle()

        sock = connector.sockets[0]
        sock.push({"tokens": [{"text": "Hel", "is_final": False}]})
        sock.push({"not": "a batch"})
        sock.push({"tokens": [{"text": "Hello", "is_final": True}]})
        await settle()

        await relay.close()
        return batches

    batches = asyncio.run(run())
    assert batches == [
        (Token("Hel", False),),
        (Token("Hello", True),),
    ]


def test_error_code_closes_without_reconnect_when_queue_empty(quiet_logs: list[dict[str, Any]]):
    async def run() -> tuple[ChannelRelay, FakeConnector]:
        connector = FakeConnector()
        relay, _ = make_relay(connector)
        relay.connect()
        await settle()

        connector.sockets[0].push({"error_code": 400, "error_message": "bad audio"})
        await settle(0.05)
        return relay, connector

    relay, connector = asyncio.run(run())
    assert connector.sockets[0].closed
    assert relay.state is ConnectionState.DISCONNECTED
    assert len(connector.calls) == 1
    assert any(e["event_type"] == "UPSTREAM_ERROR" for e in quiet_logs)


def test_finished_closes_socket_and_keeps_relay_usable():
    async def run() -> None:
        connector = FakeConnector()
        relay, _ = make_relay(connector)
        relay.connect()
        await settle()

        connector.sockets[0].push({"finished": True})
        await settle()
        assert relay.state is ConnectionState.DISCONNECTED

        # Next audio reopens lazily
        await relay.send(b"\x05\x00")
        await settle()
        assert len(connector.calls) == 2
        assert connector.sockets[1].audio == [b"\x05\x00"]

        await relay.close()

    asyncio.run(run())


# ---------------------------------------------------------------------
# Reconnect
# ---------------------------------------------------------------------

def test_transport_error_reconnects_after_delay():
    async def run() -> None:
        connector = FakeConnector()
        relay, _ = make_relay(connector, reconnect_delay_ms=20)
        relay.connect()
        await settle()

        connector.sockets[0].fail(OSError("connection reset"))
        await settle(0.005)
        assert relay.state is ConnectionState.DISCONNECTED
        assert len(connector.calls) == 1

        await settle(0.08)
        assert len(connector.calls) == 2
        assert relay.state is ConnectionState.READY

        await relay.close()

    asyncio.run(run())


def test_connect_failure_retries_until_success():
    async def run() -> None:
        connector = FakeConnector(fail_times=2)
        relay, _ = make_relay(connector, reconnect_delay_ms=5)
        await relay.send(b"\x07\x00")
        await settle(0.1)

        assert len(connector.calls) == 3
        assert relay.state is ConnectionState.READY
        assert connector.sockets[0].audio == [b"\x07\x00"]

        await relay.close()

    asyncio.run(run())


def test_reconnect_cap_stops_retrying(quiet_logs: list[dict[str, Any]]):
    async def run() -> FakeConnector:
        connector = FakeConnector(fail_times=100)
        relay, _ = make_relay(connector, reconnect_delay_ms=5, max_reconnect_attempts=2)
        relay.connect()
        await settle(0.1)
        assert relay.state is ConnectionState.DISCONNECTED
        return connector

    connector = asyncio.run(run())
    # Initial attempt + 2 reconnects
    assert len(connector.calls) == 3
    assert any(e["event_type"] == "UPSTREAM_RECONNECT_ABANDONED" for e in quiet_logs)


def test_audio_after_reconnect_cap_is_queued_without_new_attempts():
    async def run() -> None:
        connector = FakeConnector(fail_times=1000)
        relay, _ = make_relay(connector, reconnect_delay_ms=5, max_reconnect_attempts=2)
        relay.connect()
        await settle(0.1)
        assert len(connector.calls) == 3

        chunks = [bytes([n, 0]) for n in range(10)]
        for chunk in chunks:
            await relay.send(chunk)
            await settle(0.02)

        assert len(connector.calls) == 3
        assert relay.state is ConnectionState.DISCONNECTED
        assert relay.pending_count == len(chunks)

        # An explicit connect lifts the cap
        connector.fail_times = 0
        relay.connect()
        await settle()

        assert len(connector.calls) == 4
        assert relay.state is ConnectionState.READY
        assert connector.sockets[0].audio == chunks

        await relay.send(b"\xFF\x00")
        assert connector.sockets[0].audio[-1] == b"\xFF\x00"

        await relay.close()

    asyncio.run(run())


def test_audio_sent_while_reopening_is_queued_then_drained():
    async def run() -> None:
        gate = asyncio.Event()
        gate.set()
        connector = FakeConnector(gate=gate)
        relay, _ = make_relay(connector, reconnect_delay_ms=10)
        relay.connect()
        await settle()

        # Server closes; hold the next connect so audio stays queued
        gate.clear()
        await connector.sockets[0].close()
        await settle(0.005)
        await relay.send(b"\x09\x00")
        assert relay.state is ConnectionState.CONNECTING
        assert relay.pending_count == 1

        gate.set()
        await settle(0.05)
        assert connector.sockets[1].audio == [b"\x09\x00"]

        await relay.close()

    asyncio.run(run())


# ---------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------

def test_close_cancels_scheduled_reconnect():
    async def run() -> tuple[ChannelRelay, FakeConnector]:
        connector = FakeConnector(fail_times=100)
        relay, _ = make_relay(connector, reconnect_delay_ms=30)
        relay.connect()
        await settle(0.005)
        assert len(connector.calls) == 1

        await relay.close()
        await settle(0.1)
        return relay, connector

    relay, connector = asyncio.run(run())
    assert relay.state is ConnectionState.CLOSING
    assert len(connector.calls) == 1


def test_close_while_ready_closes_socket_and_stays_closing():
    async def run() -> tuple[ChannelRelay, FakeConnector]:
        connector = FakeConnector()
        relay, _ = make_relay(connector, reconnect_delay_ms=5)
        relay.connect()
        await settle()

        await relay.close()
        await settle(0.05)
        return relay, connector

    relay, connector = asyncio.run(run())
    assert connector.sockets[0].closed
    assert relay.state is ConnectionState.CLOSING
    assert len(connector.calls) == 1


def test_close_during_connect_cancels_attempt():
    async def run() -> tuple[ChannelRelay, FakeConnector]:
        connector = FakeConnector(gate=asyncio.Event())
        relay, _ = make_relay(connector)
        relay.connect()
        await settle()

        await relay.close()
        await settle()
        return relay, connector

    relay, connector = asyncio.run(run())
    assert relay.state is ConnectionState.CLOSING
    assert connector.sockets == []
