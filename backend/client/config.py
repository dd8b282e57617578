"""
Client configuration.

Frozen dataclasses only: the session reads them once at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from audio.vad import VadOptions
from client.retry import ReconnectionPolicy
from client.tools import ToolDefinition
from constants import PLAYBACK_MIN_BUFFER_MS, TRANSCRIPT_DEBOUNCE_MS
from observability.logger import log_event


class DebugLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    VERBOSE = "verbose"


DebugCallback = Callable[[DebugLevel, str, Any], None]


@dataclass(frozen=True)
class ClientConfig:
    """
    Everything a LiveSession needs to know up front.

    `debug` is either a flag (True routes debug lines to the JSON log) or a
    callback receiving (level, message, data).
    """
    relay_url: str
    session_id: str | None = None
    voice: str | None = None
    welcome_message: str | None = None
    min_buffer_ms: int = PLAYBACK_MIN_BUFFER_MS
    transcript_debounce_ms: int = TRANSCRIPT_DEBOUNCE_MS
    reconnection: ReconnectionPolicy = field(default_factory=ReconnectionPolicy)
    tools: tuple[ToolDefinition, ...] = ()
    vad: VadOptions | None = None
    debug: Union[bool, DebugCallback] = False

    def __post_init__(self) -> None:
        if not self.relay_url:
            raise ValueError("relay_url is required")
        scheme = urlsplit(self.relay_url).scheme
        if scheme not in ("ws", "wss"):
            raise ValueError(f"relay_url must be a ws:// or wss:// URL, got {self.relay_url!r}")
        if self.min_buffer_ms < 0:
            raise ValueError("min_buffer_ms must be >= 0")
        if self.transcript_debounce_ms < 0:
            raise ValueError("transcript_debounce_ms must be >= 0")
        object.__setattr__(self, "tools", tuple(self.tools))

    def connect_url(self, resume_handle: str | None = None) -> str:
        """Relay URL with the per-connection query parameters appended."""
        parts = urlsplit(self.relay_url)
        query = parse_qsl(parts.query, keep_blank_values=True)

        if self.voice:
            query.append(("voice", self.voice))
        if self.session_id:
            query.append(("session_id", self.session_id))
        if resume_handle:
            query.append(("resume_handle", resume_handle))
        if self.tools:
            query.append(("tools", "1"))

        return urlunsplit(parts._replace(query=urlencode(query)))

    def emit_debug(self, level: DebugLevel, message: str, data: Any = None) -> None:
        """Route a debug line according to `debug`. No-op when disabled."""
        if not self.debug:
            return
        if callable(self.debug):
            self.debug(level, message, data)
            return
        log_event({
            "event_type": "CLIENT_DEBUG",
            "session_id": self.session_id,
            "level": level.value,
            "message": message,
            "data": data,
        })
