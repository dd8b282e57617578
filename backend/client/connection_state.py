"""
Client connection state.

Rules:
- ConnectionState defines ONLY the observable connection states.
- ClientState is a pure data model owned by the reducer.
- Everything a UI shows (connected / connecting flags) is derived from
  ClientState, never stored separately.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from client.retry import RetryAttempt, reset_attempt


class ConnectionState(str, Enum):
    """
    Observable connection states.

    idle -> connecting -> connected -> reconnecting -> connected
    reconnecting -> error (attempts exhausted)
    any -> disconnected (explicit disconnect)

    disconnected and error are terminal until a new explicit connect.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    DISCONNECTED = "disconnected"


TERMINAL_STATES: frozenset[ConnectionState] = frozenset({
    ConnectionState.IDLE,
    ConnectionState.ERROR,
    ConnectionState.DISCONNECTED,
})


@dataclass(frozen=True)
class ClientState:
    """Immutable snapshot of all connection-machine state."""

    connection: ConnectionState = ConnectionState.IDLE

    # Reconnection attempts made during the current outage
    attempt: RetryAttempt = field(default_factory=reset_attempt)

    # A socket open is in flight (attempts are never overlapped)
    attempt_in_flight: bool = False

    # A reconnection timer is armed
    timer_armed: bool = False

    # The in-flight reconnection carries a resumption handle
    resuming: bool = False

    # Latest session-resumption handle issued upstream
    resume_handle: str | None = None
    resumable: bool = False

    last_error: str | None = None

    # ------------------------------------------------------------------
    # Derived observables
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.connection in (ConnectionState.CONNECTING, ConnectionState.RECONNECTING)

    @property
    def can_resume(self) -> bool:
        return self.resumable and self.resume_handle is not None
