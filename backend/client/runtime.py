"""
Runtime execution shell for a client connection.

Responsibilities:
- Own the connection state
- Call the pure reducer
- Execute commands with side effects (socket, timers, callbacks)
- Convert socket outcomes and timer expiry into events
- Serialize outbound messages per socket

Non-responsibilities:
- Interpreting relay messages (the on_message callback does that)
- Audio, transcripts, tool calls (client.session.LiveSession)
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from client.commands import (
    CancelReconnectTimer,
    CloseSocket,
    Command,
    LogEvent,
    NotifyConnectionChange,
    NotifyError,
    OpenSocket,
    StartReconnectTimer,
)
from client.connection_state import ClientState, ConnectionState
from client.events import (
    AttemptFailed,
    Event,
    EventType,
    FatalError,
    ReconnectTimerFired,
    TransportDropped,
)
from client.reducer import reduce
from client.retry import ReconnectionPolicy
from constants import RELAY_NOT_CONFIGURED_MESSAGE, UPSTREAM_MAX_MESSAGE_BYTES
from observability.logger import log_event, now_ms
from protocol.messages import WireMessage


TIMER_RECONNECT = "reconnect"


class ClientSocket(Protocol):
    """What the runtime requires from a relay socket (fakes implement this in tests)."""

    async def send(self, message: str) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


ClientConnector = Callable[[str], Awaitable[ClientSocket]]


async def open_relay_socket(url: str) -> ClientSocket:
    """Default connector: a websockets client connection."""
    return await ws_connect(url, max_size=UPSTREAM_MAX_MESSAGE_BYTES)


def classify_open_failure(exc: BaseException) -> Event:
    """
    Map a failed open onto an event.

    HTTP 500 from the relay means it has no upstream credential: retrying
    cannot help, so it is fatal. Everything else is transient.
    """
    if isinstance(exc, InvalidStatus) and exc.response.status_code == 500:
        return FatalError(
            event_type=EventType.FATAL_ERROR,
            ts_ms=now_ms(),
            reason=RELAY_NOT_CONFIGURED_MESSAGE,
        )
    return AttemptFailed(
        event_type=EventType.ATTEMPT_FAILED,
        ts_ms=now_ms(),
        reason=f"{type(exc).__name__}: {exc}",
    )


class ConnectionRuntime:
    """
    Runtime execution boundary for one client connection.

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - All side effects occur *after* state has been updated
    - At most one socket (and one open attempt) exists at a time
    - Timers emit events back into handle_event (single entry point)
    - Outbound messages are sent in the order send() was called
    """

    def __init__(
        self,
        *,
        policy: ReconnectionPolicy,
        build_url: Callable[[str | None], str],
        on_message: Callable[[str | bytes], None],
        connector: ClientConnector = open_relay_socket,
        on_open: Callable[[], None] | None = None,
        on_connection_change: Callable[[bool, ConnectionState], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        session_id: str | None = None,
    ) -> None:
        self._policy = policy
        self._build_url = build_url
        self._on_message = on_message
        self._connector = connector
        self._on_open = on_open
        self._on_connection_change = on_connection_change
        self._on_error = on_error
        self._session_id = session_id

        self._state = ClientState()
        self._timers: dict[str, asyncio.Task[None]] = {}

        self._socket: ClientSocket | None = None
        self._socket_task: asyncio.Task[None] | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ClientState:
        """
        Current immutable connection state.

        Only mutated internally via the reducer.
        """
        return self._state

    @property
    def socket_open(self) -> bool:
        return self._socket is not None

    def handle_event(self, event: Event) -> None:
        """
        Process a single event: reduce, swap state, execute commands in order.

        This is the *only* entry point for events affecting connection state:
        caller intent, socket outcomes and timer expiry all converge here.
        """
        new_state, commands = reduce(self._state, event, policy=self._policy)
        self._state = new_state

        for cmd in commands:
            self._execute_command(cmd)

    def send(self, message: WireMessage) -> bool:
        """
        Queue a message on the current socket.

        Returns:
            False when no socket is open (message dropped).
        """
        if self._outbox is None:
            return False
        self._outbox.put_nowait(message.to_json())
        return True

    async def wait_closed(self) -> None:
        """Wait for sockets being closed in the background."""
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel timers, close the socket, and wait for teardown."""
        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)
        self._close_socket("shutdown")
        await self.wait_closed()

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _execute_command(self, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "event_type": "CLIENT_" + cmd.event["event_type"],
                "session_id": self._session_id,
            })

        elif isinstance(cmd, OpenSocket):
            self._open_socket(cmd)

        elif isinstance(cmd, CloseSocket):
            self._close_socket(cmd.reason)

        elif isinstance(cmd, StartReconnectTimer):
            self._start_timer(
                timer_id=TIMER_RECONNECT,
                duration_ms=cmd.delay_ms,
                make_event=lambda: ReconnectTimerFired(
                    event_type=EventType.RECONNECT_TIMER_FIRED,
                    ts_ms=now_ms(),
                ),
            )

        elif isinstance(cmd, CancelReconnectTimer):
            self._cancel_timer(TIMER_RECONNECT)

        elif isinstance(cmd, NotifyConnectionChange):
            if self._on_connection_change is not None:
                self._on_connection_change(cmd.connected, cmd.state)

        elif isinstance(cmd, NotifyError):
            if self._on_error is not None:
                self._on_error(cmd.message)

        else:
            raise ValueError(f"Unknown command: {cmd!r}")

    # ------------------------------------------------------------------
    # Socket
    # ------------------------------------------------------------------

    def _open_socket(self, cmd: OpenSocket) -> None:
        self._close_socket("superseded")
        url = self._build_url(cmd.resume_handle)

        log_event({
            "event_type": "CLIENT_SOCKET_OPENING",
            "session_id": self._session_id,
            "attempt": cmd.attempt,
            "resuming": cmd.resume_handle is not None,
        })
        self._socket_task = asyncio.create_task(self._run_socket(url))

    async def _run_socket(self, url: str) -> None:
        try:
            socket = await self._connector(url)
        except (OSError, TimeoutError, WebSocketException) as e:
            self.handle_event(classify_open_failure(e))
            return

        outbox: asyncio.Queue[str] = asyncio.Queue()
        self._socket = socket
        self._outbox = outbox
        self._writer_task = asyncio.create_task(self._drain_outbox(socket, outbox))

        if self._on_open is not None:
            self._on_open()

        reason = "closed"
        try:
            async for raw in socket:
                try:
                    self._on_message(raw)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    log_event({
                        "event_type": "CLIENT_MESSAGE_HANDLER_FAILED",
                        "session_id": self._session_id,
                        "error": f"{type(e).__name__}: {e}",
                    })
        except ConnectionClosed as e:
            reason = f"connection lost: {e}"

        if self._socket is socket:
            self.handle_event(TransportDropped(
                event_type=EventType.TRANSPORT_DROPPED,
                ts_ms=now_ms(),
                reason=reason,
            ))

    async def _drain_outbox(self, socket: ClientSocket, outbox: asyncio.Queue[str]) -> None:
        while True:
            text = await outbox.get()
            try:
                await socket.send(text)
            except ConnectionClosed as e:
                log_event({
                    "event_type": "CLIENT_SEND_FAILED",
                    "session_id": self._session_id,
                    "error": str(e),
                    "dropped": outbox.qsize() + 1,
                })
                return

    def _close_socket(self, reason: str) -> None:
        """Abandon the current socket (and any open in flight). Idempotent."""
        task = self._socket_task
        self._socket_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        writer = self._writer_task
        self._writer_task = None
        if writer is not None and not writer.done():
            writer.cancel()

        socket = self._socket
        self._socket = None
        self._outbox = None

        if socket is not None:
            log_event({
                "event_type": "CLIENT_SOCKET_CLOSING",
                "session_id": self._session_id,
                "reason": reason,
            })
            closing = asyncio.create_task(socket.close())
            self._closing.add(closing)
            closing.add_done_callback(self._closing.discard)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        make_event: Callable[[], Event],
    ) -> None:
        """
        Start (or restart) a timer that re-enters handle_event on expiry.

        A timer with the same id is cancelled first, so there is never more
        than one pending reconnection.
        """
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                # Timer was cancelled - this is normal
                return
            self._timers.pop(timer_id, None)
            self.handle_event(make_event())

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
