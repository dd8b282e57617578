"""
Event definitions for the client connection reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the connection reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Caller intent
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    HANDSHAKE_ACK = "HANDSHAKE_ACK"
    ATTEMPT_FAILED = "ATTEMPT_FAILED"
    TRANSPORT_DROPPED = "TRANSPORT_DROPPED"
    FATAL_ERROR = "FATAL_ERROR"

    # ------------------------------------------------------------------
    # Session resumption
    # ------------------------------------------------------------------
    SESSION_HANDLE = "SESSION_HANDLE"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    RECONNECT_TIMER_FIRED = "RECONNECT_TIMER_FIRED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event.

    event_type is an explicit discriminant.
    ts_ms is wall-clock milliseconds (observability only).
    """
    event_type: EventType
    ts_ms: int


# =============================================================================
# Concrete Events
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(Event):
    """Caller asked to connect."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """Caller asked to disconnect."""


@dataclass(frozen=True)
class HandshakeAck(Event):
    """The relay reported setup_complete on the current socket."""


@dataclass(frozen=True)
class AttemptFailed(Event):
    """The socket could not be opened."""
    reason: str


@dataclass(frozen=True)
class TransportDropped(Event):
    """An open socket closed or failed."""
    reason: str


@dataclass(frozen=True)
class FatalError(Event):
    """Unrecoverable configuration problem (e.g. relay has no credential)."""
    reason: str


@dataclass(frozen=True)
class SessionHandleUpdated(Event):
    """The upstream issued a new resumption handle."""
    handle: str
    resumable: bool


@dataclass(frozen=True)
class ReconnectTimerFired(Event):
    """The backoff delay before the next reconnection attempt elapsed."""
