"""
Relay session container.

- Holds the logical conversation's identity and upstream configuration
- Tracks the latest session-resumption handle issued by the upstream
- Owns the FIFO of downstream messages awaiting delivery
- Owned and mutated by RelaySession (session.gateway)
- NOT a state machine
- Contains no translation logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from collections import deque

from session.connection_status import ConnectionStatus


# ---------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------


@dataclass
class VoiceSession:
    """Mutable container for a single relayed conversation."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str | None
    voice: str
    system_instruction: str
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Session resumption
    # ------------------------------------------------------------------

    resume_handle: str | None = None
    resumable: bool = False

    # ------------------------------------------------------------------
    # Connection / gateway-controlled state
    # ------------------------------------------------------------------

    connection_status: ConnectionStatus = ConnectionStatus.DOWN

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def __post_init__(self) -> None:
        self._control_out: deque[dict[str, Any]] = deque()

    # ------------------------------------------------------------------
    # Resumption
    # ------------------------------------------------------------------

    def update_handle(self, handle: str, resumable: bool | None) -> None:
        """
        Replace the resumption handle with the newest one issued upstream.

        A missing resumable flag is treated as not resumable.
        """
        self.resume_handle = handle
        self.resumable = bool(resumable)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """
        Return standard logging context for this session.

        Intended for gateway / observability enrichment.
        """
        return {
            "session_id": self.session_id,
            "connection_status": self.connection_status.value,
        }

    def enqueue_control(self, msg: dict[str, Any]) -> None:
        """
        Enqueue a downstream message for gateway delivery to the client.

        Messages are buffered in FIFO order and later retrieved via
        drain_control().
        """
        self._control_out.append(msg)

    def drain_control(self) -> tuple[dict[str, Any], ...]:
        """
        Atomically drain all pending downstream messages.

        Returns:
            A FIFO-ordered tuple of messages. Returns an empty tuple if no
            messages are pending.

        After this call, the queue is empty.
        """
        if not self._control_out:
            return ()
        out = tuple(self._control_out)
        self._control_out.clear()
        return out
