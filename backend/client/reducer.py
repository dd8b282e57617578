"""
Pure connection reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
- Reconnection attempts are serialized: a new attempt is only opened when
  the timer fires with no attempt in flight.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
from client.connection_state import TERMINAL_STATES, ClientState, ConnectionState
from client.events import (
    AttemptFailed,
    ConnectRequested,
    DisconnectRequested,
    Event,
    FatalError,
    HandshakeAck,
    ReconnectTimerFired,
    SessionHandleUpdated,
    TransportDropped,
)
from client.retry import (
    ReconnectionPolicy,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from constants import RECONNECT_EXHAUSTED_MESSAGE, SESSION_CONTEXT_LOST_MESSAGE


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: ClientState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "event_type": event.event_type.value,
            "connection_state": state.connection.value,
            "attempt": state.attempt.attempt,
            "decision": decision,
            "details": details or {},
        }
    )


def _state_changed(old: ClientState, new: ClientState, event: Event, source: str) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.connection.value,
            "to_state": new.connection.value,
            "source": source,
        },
    )


def _ignored(state: ClientState, event: Event) -> tuple[ClientState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignored"),)


def _connection_flip(old: ClientState, new: ClientState) -> tuple[Command, ...]:
    if old.is_connected == new.is_connected:
        return ()
    return (NotifyConnectionChange(connected=new.is_connected, state=new.connection),)


def _fail(
    state: ClientState,
    event: Event,
    message: str,
    source: str,
) -> tuple[ClientState, tuple[Command, ...]]:
    new_state = replace(
        state,
        connection=ConnectionState.ERROR,
        attempt_in_flight=False,
        timer_armed=False,
        resuming=False,
        last_error=message,
    )
    return new_state, (
        CancelReconnectTimer(),
        CloseSocket(reason=source),
        NotifyError(message=message),
        *_connection_flip(state, new_state),
        _state_changed(state, new_state, event, source),
    )


def _schedule_next_attempt(
    state: ClientState,
    event: Event,
    policy: ReconnectionPolicy,
    reason: str,
) -> tuple[ClientState, tuple[Command, ...]]:
    """Arm the backoff timer for the next attempt, or give up."""
    attempt = state.attempt if state.connection is ConnectionState.RECONNECTING else reset_attempt()

    if not should_retry(policy=policy, attempt=attempt):
        return _fail(state, event, RECONNECT_EXHAUSTED_MESSAGE, "attempts_exhausted")

    upcoming = next_attempt(attempt)
    delay_ms = get_retry_delay_ms(policy=policy, attempt=upcoming)

    new_state = replace(
        state,
        connection=ConnectionState.RECONNECTING,
        attempt=upcoming,
        attempt_in_flight=False,
        timer_armed=True,
        resuming=False,
    )

    return new_state, (
        CloseSocket(reason=reason),
        StartReconnectTimer(delay_ms=delay_ms, attempt=upcoming.attempt),
        *_connection_flip(state, new_state),
        _state_changed(state, new_state, event, "transport_lost"),
        _log(new_state, event, "reconnect_scheduled", {
            "delay_ms": delay_ms,
            "reason": reason,
            "resumable": state.can_resume,
        }),
    )


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: ClientState,
    event: Event,
    *,
    policy: ReconnectionPolicy,
) -> tuple[ClientState, tuple[Command, ...]]:
    """
    Pure reducer for the client connection state machine.

    Given the current state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects
    """
    conn = state.connection

    # ------------------------------------------------------------------
    # Explicit disconnect: from any state
    # ------------------------------------------------------------------
    if isinstance(event, DisconnectRequested):
        if conn is ConnectionState.DISCONNECTED:
            return _ignored(state, event)

        new_state = ClientState(connection=ConnectionState.DISCONNECTED)
        return new_state, (
            CancelReconnectTimer(),
            CloseSocket(reason="client_disconnect"),
            *_connection_flip(state, new_state),
            _state_changed(state, new_state, event, "disconnect_requested"),
        )

    # ------------------------------------------------------------------
    # Connect: only from idle / terminal states
    # ------------------------------------------------------------------
    if isinstance(event, ConnectRequested):
        if conn not in TERMINAL_STATES:
            return _ignored(state, event)

        new_state = ClientState(
            connection=ConnectionState.CONNECTING,
            attempt_in_flight=True,
        )
        return new_state, (
            OpenSocket(resume_handle=None, attempt=0),
            _state_changed(state, new_state, event, "connect_requested"),
        )

    # ------------------------------------------------------------------
    # Resumption handle bookkeeping
    # ------------------------------------------------------------------
    if isinstance(event, SessionHandleUpdated):
        if conn in TERMINAL_STATES:
            return _ignored(state, event)

        new_state = replace(state, resume_handle=event.handle, resumable=event.resumable)
        return new_state, (
            _log(new_state, event, "session_handle_updated", {"resumable": event.resumable}),
        )

    # ------------------------------------------------------------------
    # Fatal configuration errors
    # ------------------------------------------------------------------
    if isinstance(event, FatalError):
        if conn in TERMINAL_STATES:
            return _ignored(state, event)
        return _fail(state, event, event.reason, "fatal_error")

    # ------------------------------------------------------------------
    # Handshake acknowledged
    # ------------------------------------------------------------------
    if isinstance(event, HandshakeAck):
        if conn not in (ConnectionState.CONNECTING, ConnectionState.RECONNECTING):
            return _ignored(state, event)
        if not state.attempt_in_flight:
            return _ignored(state, event)

        new_state = replace(
            state,
            connection=ConnectionState.CONNECTED,
            attempt=reset_attempt(),
            attempt_in_flight=False,
            timer_armed=False,
            resuming=False,
            last_error=None,
        )

        cmds: list[Command] = []
        if conn is ConnectionState.RECONNECTING and not state.resuming:
            cmds.append(NotifyError(message=SESSION_CONTEXT_LOST_MESSAGE))

        return new_state, (
            *cmds,
            *_connection_flip(state, new_state),
            _state_changed(state, new_state, event, "handshake_ack"),
            _log(new_state, event, "connected", {"resumed": state.resuming}),
        )

    # ------------------------------------------------------------------
    # Transport loss / failed attempts
    # ------------------------------------------------------------------
    if isinstance(event, (TransportDropped, AttemptFailed)):
        if conn is ConnectionState.CONNECTED and isinstance(event, TransportDropped):
            return _schedule_next_attempt(state, event, policy, event.reason)

        if conn in (ConnectionState.CONNECTING, ConnectionState.RECONNECTING) and state.attempt_in_flight:
            return _schedule_next_attempt(state, event, policy, event.reason)

        # Stale: belongs to a socket we already abandoned
        return _ignored(state, event)

    # ------------------------------------------------------------------
    # Backoff elapsed
    # ------------------------------------------------------------------
    if isinstance(event, ReconnectTimerFired):
        if conn is not ConnectionState.RECONNECTING or not state.timer_armed:
            return _ignored(state, event)
        if state.attempt_in_flight:
            return _ignored(state, event)

        resume_handle = state.resume_handle if state.can_resume else None
        new_state = replace(
            state,
            attempt_in_flight=True,
            timer_armed=False,
            resuming=resume_handle is not None,
        )
        return new_state, (
            OpenSocket(resume_handle=resume_handle, attempt=state.attempt.attempt),
            _log(new_state, event, "reconnect_attempt", {
                "attempt": state.attempt.attempt,
                "resuming": resume_handle is not None,
            }),
        )

    return _ignored(state, event)
