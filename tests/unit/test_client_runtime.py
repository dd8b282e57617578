# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

from websockets.datastructures import Headers
from websockets.exceptions import InvalidStatus
from websockets.http11 import Response

from client.connection_state import ConnectionState
from client.events import (
    AttemptFailed,
    ConnectRequested,
    DisconnectRequested,
    EventType,
    FatalError,
    HandshakeAck,
    SessionHandleUpdated,
)
from client.retry import ReconnectionPolicy
from client.runtime import ConnectionRuntime, classify_open_failure
from constants import RECONNECT_EXHAUSTED_MESSAGE, RELAY_NOT_CONFIGURED_MESSAGE
from protocol.messages import WireMessage

from fakes import FakeConnector, FakeSocket, until

# Millisecond delays keep reconnection tests fast without touching the reducer
FAST = ReconnectionPolicy(max_attempts=2, initial_delay_ms=1, max_delay_ms=5)


class Recorder:
    def __init__(self) -> None:
        self.messages: list[str | bytes] = []
        self.opened = 0
        self.changes: list[tuple[bool, ConnectionState]] = []
        self.errors: list[str] = []

    def on_open(self) -> None:
        self.opened += 1

    def on_change(self, connected: bool, state: ConnectionState) -> None:
        self.changes.append((connected, state))


def build_url(handle: str | None) -> str:
    return "ws://relay/ws" + (f"?resume_handle={handle}" if handle else "")


def make_runtime(connector: FakeConnector, rec: Recorder) -> ConnectionRuntime:
    return ConnectionRuntime(
        policy=FAST,
        build_url=build_url,
        on_message=rec.messages.append,
        connector=connector,
        on_open=rec.on_open,
        on_connection_change=rec.on_change,
        on_error=rec.errors.append,
        session_id="s1",
    )


def connect() -> ConnectRequested:
    return ConnectRequested(event_type=EventType.CONNECT_REQUESTED, ts_ms=0)


def ack() -> HandshakeAck:
    return HandshakeAck(event_type=EventType.HANDSHAKE_ACK, ts_ms=0)


def invalid_status(code: int) -> InvalidStatus:
    return InvalidStatus(Response(code, "status", Headers()))


# ---------------------------------------------------------------------
# Open failure classification
# ---------------------------------------------------------------------

def test_http_500_is_fatal():
    event = classify_open_failure(invalid_status(500))

    assert isinstance(event, FatalError)
    assert event.reason == RELAY_NOT_CONFIGURED_MESSAGE


def test_other_failures_are_transient():
    assert isinstance(classify_open_failure(invalid_status(403)), AttemptFailed)
    assert isinstance(classify_open_failure(OSError("refused")), AttemptFailed)


# ---------------------------------------------------------------------
# Socket lifecycle
# ---------------------------------------------------------------------

def test_connect_open_receive_and_ack(log_events):
    async def scenario() -> None:
        sock = FakeSocket()
        connector = FakeConnector([sock])
        rec = Recorder()
        runtime = make_runtime(connector, rec)

        runtime.handle_event(connect())
        await until(lambda: runtime.socket_open)
        assert rec.opened == 1
        assert runtime.state.connection is ConnectionState.CONNECTING

        sock.push('{"type":"setup_complete"}')
        await until(lambda: rec.messages != [])
        runtime.handle_event(ack())

        assert runtime.state.is_connected
        assert rec.changes == [(True, ConnectionState.CONNECTED)]
        assert connector.urls == ["ws://relay/ws"]

        await runtime.shutdown()

    asyncio.run(scenario())


def test_sends_are_delivered_in_order(log_events):
    async def scenario() -> None:
        sock = FakeSocket()
        rec = Recorder()
        runtime = make_runtime(FakeConnector([sock]), rec)

        assert not runtime.send(WireMessage(type="text", text="too early"))

        runtime.handle_event(connect())
        await until(lambda: runtime.socket_open)
        for text in ("a", "b", "c"):
            assert runtime.send(WireMessage(type="text", text=text))

        await until(lambda: len(sock.sent) == 3)
        assert sock.sent == [
            '{"type":"text","text":"a"}',
            '{"type":"text","text":"b"}',
            '{"type":"text","text":"c"}',
        ]

        await runtime.shutdown()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Reconnection
# ---------------------------------------------------------------------

def test_drop_reconnects_with_resumable_handle(log_events):
    async def scenario() -> None:
        first, second = FakeSocket(), FakeSocket()
        connector = FakeConnector([first, second])
        rec = Recorder()
        runtime = make_runtime(connector, rec)

        runtime.handle_event(connect())
        await until(lambda: runtime.socket_open)
        runtime.handle_event(ack())
        runtime.handle_event(SessionHandleUpdated(
            event_type=EventType.SESSION_HANDLE,
            ts_ms=0,
            handle="h1",
            resumable=True,
        ))

        first.drop()
        await until(lambda: rec.opened == 2)
        runtime.handle_event(ack())

        assert connector.urls == ["ws://relay/ws", "ws://relay/ws?resume_handle=h1"]
        assert rec.changes == [
            (True, ConnectionState.CONNECTED),
            (False, ConnectionState.RECONNECTING),
            (True, ConnectionState.CONNECTED),
        ]
        assert rec.errors == []
        assert first.closed

        await runtime.shutdown()

    asyncio.run(scenario())


def test_exhausted_attempts_end_in_error(log_events):
    async def scenario() -> None:
        connector = FakeConnector([])
        rec = Recorder()
        runtime = make_runtime(connector, rec)

        runtime.handle_event(connect())
        await until(lambda: runtime.state.connection is ConnectionState.ERROR)

        # Initial connect + max_attempts reconnections
        assert len(connector.urls) == 3
        assert rec.errors == [RECONNECT_EXHAUSTED_MESSAGE]
        assert runtime.state.last_error == RECONNECT_EXHAUSTED_MESSAGE

        await runtime.shutdown()

    asyncio.run(scenario())


def test_relay_without_credential_is_not_retried(log_events):
    async def scenario() -> None:
        connector = FakeConnector([invalid_status(500)])
        rec = Recorder()
        runtime = make_runtime(connector, rec)

        runtime.handle_event(connect())
        await until(lambda: runtime.state.connection is ConnectionState.ERROR)
        await asyncio.sleep(0.02)

        assert len(connector.urls) == 1
        assert rec.errors == [RELAY_NOT_CONFIGURED_MESSAGE]

    asyncio.run(scenario())


def test_disconnect_closes_socket_and_stops_reconnecting(log_events):
    async def scenario() -> None:
        sock = FakeSocket()
        connector = FakeConnector([sock])
        rec = Recorder()
        runtime = make_runtime(connector, rec)

        runtime.handle_event(connect())
        await until(lambda: runtime.socket_open)
        runtime.handle_event(ack())

        runtime.handle_event(DisconnectRequested(event_type=EventType.DISCONNECT_REQUESTED, ts_ms=0))
        await runtime.wait_closed()
        await asyncio.sleep(0.02)

        assert sock.closed
        assert not runtime.socket_open
        assert runtime.state.connection is ConnectionState.DISCONNECTED
        assert len(connector.urls) == 1
        assert rec.changes[-1] == (False, ConnectionState.DISCONNECTED)

    asyncio.run(scenario())


def test_handler_failure_does_not_end_the_socket(log_events):
    async def scenario() -> tuple[Recorder, ConnectionRuntime]:
        sock = FakeSocket()
        rec = Recorder()

        def on_message(raw: str | bytes) -> None:
            if raw == "boom":
                raise TypeError("unhashable frame")
            rec.messages.append(raw)

        runtime = ConnectionRuntime(
            policy=FAST,
            build_url=build_url,
            on_message=on_message,
            connector=FakeConnector([sock]),
            on_open=rec.on_open,
            on_connection_change=rec.on_change,
            on_error=rec.errors.append,
            session_id="s1",
        )

        runtime.handle_event(connect())
        await until(lambda: runtime.socket_open)
        sock.push("boom")
        sock.push('{"type":"setup_complete"}')
        await until(lambda: rec.messages != [])

        assert runtime.socket_open
        await runtime.shutdown()
        return rec, runtime

    rec, _ = asyncio.run(scenario())

    assert rec.messages == ['{"type":"setup_complete"}']
    assert rec.opened == 1
    failed = [e for e in log_events if e["event_type"] == "CLIENT_MESSAGE_HANDLER_FAILED"]
    assert failed[0]["error"] == "TypeError: unhashable frame"
