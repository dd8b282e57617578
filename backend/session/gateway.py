"""
Relay session gateway.

Responsibilities:
- Owns VoiceSession lifecycle for one downstream connection
- Builds the upstream setup message (optionally waiting for the client's tool catalog)
- Gates client messages until setup completion is observed or inferred
- Emits `setup_complete` downstream exactly once
- Translates client messages upstream and upstream messages downstream
- Tracks tool calls so tool results can be answered by name
- Tracks the latest session-resumption handle

NOT responsible for:
- Socket I/O (server.routes flushes GatewayResult in both directions)
- Timers (routes schedules the setup-tools deadline and calls on_tools_timeout)
- Retrying anything

Setup completion inferred from the first serverContent is a best-effort
heuristic for an upstream that omits the acknowledgement; it is not a
guaranteed upstream contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from constants import PAYLOAD_PREVIEW_CHARS, UPSTREAM_CONNECT_FAILED_MESSAGE
from observability.logger import log_event
from observability.metrics import discard_timer, start_timer, stop_timer
from protocol.messages import (
    ClientMessageType,
    ProtocolError,
    WireMessage,
    decode_json_object,
    parse_client_message,
)
from protocol.upstream import (
    build_setup_message,
    build_tool_response,
    translate_client_message,
    translate_upstream_message,
)
from session.connection_status import ConnectionStatus
from session.voice_session import VoiceSession

if TYPE_CHECKING:
    from config import AppConfig


def _preview(payload: str | bytes) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return repr(bytes(payload[:PAYLOAD_PREVIEW_CHARS]))
    return payload[:PAYLOAD_PREVIEW_CHARS]


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        JSON messages to send to the client, in order

    upstream_json:
        JSON messages to send upstream, in order
    """
    outbound_json: tuple[dict[str, Any], ...] = ()
    upstream_json: tuple[dict[str, Any], ...] = ()


# ------------------------------------------------------------------
# RelaySession
# ------------------------------------------------------------------

class RelaySession:
    """
    One gateway == one downstream connection == one upstream connection.

    All methods are synchronous and side-effect free apart from logging;
    the caller performs the sends described by the returned GatewayResult.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        voice: str | None = None,
        session_id: str | None = None,
        resume_handle: str | None = None,
        wait_for_tools: bool = False,
    ) -> None:
        self._config = config
        self.session = VoiceSession(
            session_id=session_id,
            voice=voice or config.default_voice,
            system_instruction=config.default_system_instruction,
            resume_handle=resume_handle,
        )

        self._wait_for_tools = wait_for_tools
        self._tools: list[dict[str, Any]] | None = None
        self._upstream_open = False
        self._setup_sent = False
        self._setup_done = False
        self._setup_timer_id: str | None = None

        # call_id -> tool name, until the client answers
        self._pending_tool_calls: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self.session.session_id

    @property
    def setup_sent(self) -> bool:
        return self._setup_sent

    @property
    def setup_complete(self) -> bool:
        """True once setup completion was observed or inferred."""
        return self._setup_done

    @property
    def awaiting_tools(self) -> bool:
        """Upstream is open but the setup is held for the client's tool catalog."""
        return self._upstream_open and not self._setup_sent

    @property
    def pending_tool_calls(self) -> dict[str, str]:
        return dict(self._pending_tool_calls)

    # ------------------------------------------------------------------
    # Upstream lifecycle
    # ------------------------------------------------------------------

    def on_upstream_open(self) -> GatewayResult:
        """Called once the upstream socket is open."""
        self._upstream_open = True
        self.session.connection_status = ConnectionStatus.CONNECTING

        log_event({
            "event_type": "UPSTREAM_OPEN",
            "session_id": self.session_id,
            "voice": self.session.voice,
            "resuming": self.session.resume_handle is not None,
            "wait_for_tools": self._wait_for_tools,
        })

        if self._wait_for_tools and self._tools is None:
            return GatewayResult()
        return self._send_setup()

    def on_tools_timeout(self) -> GatewayResult:
        """The setup-tools deadline elapsed; send the setup without tools if still held."""
        if self._setup_sent or not self._upstream_open:
            return GatewayResult()

        log_event({
            "event_type": "SETUP_TOOLS_TIMEOUT",
            "session_id": self.session_id,
        })
        return self._send_setup()

    def on_upstream_failed(self, error: str) -> GatewayResult:
        """Upstream transport error: surface a generic error to the client."""
        log_event({
            "event_type": "UPSTREAM_FAILED",
            "session_id": self.session_id,
            "error": error,
        })
        self.session.enqueue_control(WireMessage.error(UPSTREAM_CONNECT_FAILED_MESSAGE).to_dict())
        return GatewayResult(outbound_json=self.session.drain_control())

    def on_upstream_closed(self, reason: str) -> GatewayResult:
        """Upstream closed: tell the client why. The caller then closes the client socket."""
        self.session.connection_status = ConnectionStatus.DOWN
        self._discard_setup_timer()

        log_event({
            "event_type": "UPSTREAM_CLOSED",
            "session_id": self.session_id,
            "reason": reason,
            "pending_tool_calls": len(self._pending_tool_calls),
        })

        self.session.enqueue_control(WireMessage.disconnected(reason).to_dict())
        return GatewayResult(outbound_json=self.session.drain_control())

    def on_client_closed(self, reason: str) -> None:
        """Downstream closed: the session ends and pending tool calls are abandoned."""
        self.session.connection_status = ConnectionStatus.DOWN
        self._discard_setup_timer()
        self._pending_tool_calls.clear()

        log_event({
            "event_type": "CLIENT_CLOSED",
            "session_id": self.session_id,
            "reason": reason,
        })

    # ------------------------------------------------------------------
    # Client -> Upstream
    # ------------------------------------------------------------------

    def on_client_message(self, payload: str | bytes) -> GatewayResult:
        """Route one inbound client message."""
        try:
            msg = parse_client_message(payload)
        except ProtocolError as e:
            log_event({
                "event_type": "CLIENT_MESSAGE_DROPPED",
                "session_id": self.session_id,
                "error": str(e),
                "payload_preview": _preview(payload),
            })
            return GatewayResult()

        # The tool catalog is part of the handshake, so it bypasses setup gating
        if msg.type == ClientMessageType.SETUP_TOOLS.value:
            return self._on_setup_tools(msg)

        if not self._setup_done:
            log_event({
                "event_type": "CLIENT_MESSAGE_BEFORE_SETUP",
                "session_id": self.session_id,
                "msg_type": msg.type,
            })
            return GatewayResult()

        if msg.type == ClientMessageType.TOOL_RESULT.value:
            return self._on_tool_result(msg)

        upstream = translate_client_message(msg)
        if upstream is None:
            return GatewayResult()
        return GatewayResult(upstream_json=(upstream,))

    def _on_setup_tools(self, msg: WireMessage) -> GatewayResult:
        if self._setup_sent:
            log_event({
                "event_type": "SETUP_TOOLS_LATE",
                "session_id": self.session_id,
                "tools": len(msg.tools or []),
            })
            return GatewayResult()

        self._tools = list(msg.tools or [])
        log_event({
            "event_type": "SETUP_TOOLS_RECEIVED",
            "session_id": self.session_id,
            "tools": [t["name"] for t in self._tools],
        })

        if self._upstream_open:
            return self._send_setup()
        return GatewayResult()

    def _on_tool_result(self, msg: WireMessage) -> GatewayResult:
        call_id = msg.tool_call_id or ""
        name = self._pending_tool_calls.pop(call_id, None)

        if name is None:
            log_event({
                "event_type": "TOOL_RESULT_UNKNOWN_CALL",
                "session_id": self.session_id,
                "tool_call_id": call_id,
            })
            return GatewayResult()

        log_event({
            "event_type": "TOOL_RESULT_FORWARDED",
            "session_id": self.session_id,
            "tool_call_id": call_id,
            "tool_name": name,
        })

        self.session.enqueue_control(WireMessage.tool_result_ack(call_id).to_dict())
        return GatewayResult(
            outbound_json=self.session.drain_control(),
            upstream_json=(build_tool_response(call_id=call_id, name=name, result=msg.result),),
        )

    # ------------------------------------------------------------------
    # Upstream -> Client
    # ------------------------------------------------------------------

    def on_upstream_message(self, payload: str | bytes) -> GatewayResult:
        """
        Route one inbound upstream frame.

        Malformed payloads are logged and dropped; the session continues.
        """
        try:
            translation = translate_upstream_message(decode_json_object(payload))
        except ProtocolError as e:
            log_event({
                "event_type": "UPSTREAM_MESSAGE_DROPPED",
                "session_id": self.session_id,
                "error": str(e),
                "payload_preview": _preview(payload),
            })
            return GatewayResult()

        if translation.setup_complete:
            self._mark_setup_complete(inferred=False)
            return GatewayResult(outbound_json=self.session.drain_control())

        if translation.has_content and not self._setup_done:
            self._mark_setup_complete(inferred=True)

        if translation.is_error:
            log_event({
                "event_type": "UPSTREAM_ERROR",
                "session_id": self.session_id,
                "message": translation.messages[0].message,
            })

        for call in translation.tool_calls:
            self._pending_tool_calls[call.call_id] = call.name
            log_event({
                "event_type": "TOOL_CALL_RECEIVED",
                "session_id": self.session_id,
                "tool_call_id": call.call_id,
                "tool_name": call.name,
            })

        for call_id in translation.cancelled_tool_calls:
            self._pending_tool_calls.pop(call_id, None)
            log_event({
                "event_type": "TOOL_CALL_CANCELLED",
                "session_id": self.session_id,
                "tool_call_id": call_id,
            })

        for msg in translation.messages:
            if msg.handle is not None:
                self.session.update_handle(msg.handle, msg.resumable)
                log_event({
                    "event_type": "SESSION_HANDLE_UPDATED",
                    "session_id": self.session_id,
                    "resumable": self.session.resumable,
                })
            self.session.enqueue_control(msg.to_dict())

        return GatewayResult(outbound_json=self.session.drain_control())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _send_setup(self) -> GatewayResult:
        if self._setup_sent:
            return GatewayResult()

        self._setup_sent = True
        self._setup_timer_id = start_timer("upstream_setup")

        setup = build_setup_message(
            model=self._config.model,
            voice=self.session.voice,
            system_instruction=self.session.system_instruction,
            resume_handle=self.session.resume_handle,
            tools=self._tools,
        )

        log_event({
            "event_type": "SETUP_SENT",
            "session_id": self.session_id,
            "model": self._config.model,
            "tools": len(self._tools or []),
        })
        return GatewayResult(upstream_json=(setup,))

    def _mark_setup_complete(self, *, inferred: bool) -> None:
        if self._setup_done:
            return

        self._setup_done = True
        self.session.connection_status = ConnectionStatus.UP

        if self._setup_timer_id is not None:
            stop_timer(
                self._setup_timer_id,
                session_id=self.session_id,
                details={"inferred": inferred},
            )
            self._setup_timer_id = None

        log_event({
            "event_type": "SETUP_COMPLETE",
            "session_id": self.session_id,
            "inferred": inferred,
        })
        self.session.enqueue_control(WireMessage.setup_complete().to_dict())

    def _discard_setup_timer(self) -> None:
        if self._setup_timer_id is not None:
            discard_timer(self._setup_timer_id)
            self._setup_timer_id = None
