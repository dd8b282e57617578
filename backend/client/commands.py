"""
Side-effect command definitions for the connection reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from client.connection_state import ConnectionState

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and runtime dispatch.
    """

    # Transport
    OPEN_SOCKET = "OPEN_SOCKET"
    CLOSE_SOCKET = "CLOSE_SOCKET"

    # Timers
    START_RECONNECT_TIMER = "START_RECONNECT_TIMER"
    CANCEL_RECONNECT_TIMER = "CANCEL_RECONNECT_TIMER"

    # Caller notifications
    NOTIFY_CONNECTION_CHANGE = "NOTIFY_CONNECTION_CHANGE"
    NOTIFY_ERROR = "NOTIFY_ERROR"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenSocket(Command):
    """
    Open the relay socket.

    resume_handle is set only when the stored handle is resumable.
    attempt is 0 for the initial connect, N for the Nth reconnection.
    """
    resume_handle: str | None
    attempt: int
    command_type: CommandType = CommandType.OPEN_SOCKET


@dataclass(frozen=True)
class CloseSocket(Command):
    """Close the relay socket and abandon any in-flight open."""
    reason: str
    command_type: CommandType = CommandType.CLOSE_SOCKET


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartReconnectTimer(Command):
    """Arm the single reconnection timer."""
    delay_ms: int
    attempt: int
    command_type: CommandType = CommandType.START_RECONNECT_TIMER


@dataclass(frozen=True)
class CancelReconnectTimer(Command):
    """Disarm the reconnection timer (idempotent)."""
    command_type: CommandType = CommandType.CANCEL_RECONNECT_TIMER


# =============================================================================
# Notification Commands
# =============================================================================

@dataclass(frozen=True)
class NotifyConnectionChange(Command):
    """Tell the caller that the connected flag flipped."""
    connected: bool
    state: ConnectionState
    command_type: CommandType = CommandType.NOTIFY_CONNECTION_CHANGE


@dataclass(frozen=True)
class NotifyError(Command):
    """Surface an error message to the caller."""
    message: str
    command_type: CommandType = CommandType.NOTIFY_ERROR


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log line; runtime enriches it with the session id."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
