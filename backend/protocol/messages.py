"""
Client <-> relay JSON message envelopes.

Every message is a JSON object keyed by a `type` discriminator:

- Client -> Relay:
    frame | audio | text | tool_result | setup_tools

- Relay -> Client:
    setup_complete | response | audio | turn_complete |
    input_transcription | output_transcription | session_handle |
    error | disconnected | tool_call | tool_result

Fields not applicable to a given message type are omitted on the wire.
One WireMessage is exchanged per logical event; nothing is batched.

Usage example:

    try:
        msg = parse_client_message(payload)
    except ProtocolError as e:
        log_event({
            "event_type": "CLIENT_MESSAGE_DROPPED",
            "error": str(e),
        })
        return

    if msg.type == ClientMessageType.TEXT:
        ...

    await ws.send_text(WireMessage.response("Hello").to_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Type, TypeVar


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for envelope protocol errors."""


class MalformedMessage(ProtocolError):
    """
    Raised when a payload is not a JSON object or lacks required fields.

    The message is unsafe to process and must be dropped; the session
    continues.
    """


class UnknownMessageType(ProtocolError):
    """Raised when the `type` discriminator is not recognized."""


# -------------------------
# Discriminators
# -------------------------

class ClientMessageType(str, Enum):
    """Messages a client may send to the relay."""
    FRAME = "frame"
    AUDIO = "audio"
    TEXT = "text"
    TOOL_RESULT = "tool_result"
    SETUP_TOOLS = "setup_tools"


class RelayMessageType(str, Enum):
    """Messages the relay sends to a client."""
    SETUP_COMPLETE = "setup_complete"
    RESPONSE = "response"
    AUDIO = "audio"
    TURN_COMPLETE = "turn_complete"
    INPUT_TRANSCRIPTION = "input_transcription"
    OUTPUT_TRANSCRIPTION = "output_transcription"
    SESSION_HANDLE = "session_handle"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


# Python attribute -> wire key, where they differ
_WIRE_NAMES: dict[str, str] = {
    "mime_type": "mimeType",
    "tool_call_id": "toolCallId",
    "tool_name": "toolName",
}
_ATTR_NAMES: dict[str, str] = {v: k for k, v in _WIRE_NAMES.items()}


# -------------------------
# Envelope
# -------------------------

@dataclass(frozen=True)
class WireMessage:
    """
    Tagged union of all client/relay messages.

    Only the fields meaningful for `type` are set; the rest stay None and
    are omitted by to_dict().
    """
    type: str
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None
    message: str | None = None
    reason: str | None = None
    handle: str | None = None
    resumable: bool | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    args: dict[str, Any] | None = None
    result: Any = None
    tools: list[dict[str, Any]] | None = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Wire representation with inapplicable fields omitted."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            out[_WIRE_NAMES.get(f.name, f.name)] = value
        return out

    def to_json(self) -> str:
        """Compact JSON text frame."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @staticmethod
    def from_dict(data: dict[str, Any]) -> WireMessage:
        """
        Build from a decoded JSON object.

        Unknown keys are ignored.
        """
        known = {f.name for f in fields(WireMessage)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            attr = _ATTR_NAMES.get(key, key)
            if attr in known:
                kwargs[attr] = value
        if not isinstance(kwargs.get("type"), str):
            raise MalformedMessage("missing or non-string 'type'")
        return WireMessage(**kwargs)

    # ------------------------------------------------------------------
    # Relay -> Client constructors
    # ------------------------------------------------------------------

    @staticmethod
    def setup_complete() -> WireMessage:
        return WireMessage(type=RelayMessageType.SETUP_COMPLETE.value)

    @staticmethod
    def response(text: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.RESPONSE.value, text=text)

    @staticmethod
    def audio(*, mime_type: str | None, data: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.AUDIO.value, mime_type=mime_type, data=data)

    @staticmethod
    def turn_complete() -> WireMessage:
        return WireMessage(type=RelayMessageType.TURN_COMPLETE.value)

    @staticmethod
    def input_transcription(text: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.INPUT_TRANSCRIPTION.value, text=text)

    @staticmethod
    def output_transcription(text: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.OUTPUT_TRANSCRIPTION.value, text=text)

    @staticmethod
    def session_handle(handle: str, resumable: bool | None) -> WireMessage:
        return WireMessage(
            type=RelayMessageType.SESSION_HANDLE.value,
            handle=handle,
            resumable=resumable,
        )

    @staticmethod
    def error(message: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.ERROR.value, message=message)

    @staticmethod
    def disconnected(reason: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.DISCONNECTED.value, reason=reason)

    @staticmethod
    def tool_call(*, tool_call_id: str, tool_name: str, args: dict[str, Any]) -> WireMessage:
        return WireMessage(
            type=RelayMessageType.TOOL_CALL.value,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            args=args,
        )

    @staticmethod
    def tool_result_ack(tool_call_id: str) -> WireMessage:
        return WireMessage(type=RelayMessageType.TOOL_RESULT.value, tool_call_id=tool_call_id)


# -------------------------
# Parsing
# -------------------------

_E = TypeVar("_E", ClientMessageType, RelayMessageType)


def decode_json_object(payload: str | bytes) -> dict[str, Any]:
    """
    Decode a text or binary frame into a JSON object.

    Binary frames are interpreted as UTF-8 text.

    Raises:
        MalformedMessage if the payload is not a JSON object.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"payload is not UTF-8: {e}") from e

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessage(f"expected JSON object, got {type(data).__name__}")
    return data


def _parse(payload: str | bytes, kinds: Type[_E]) -> tuple[WireMessage, _E]:
    msg = WireMessage.from_dict(decode_json_object(payload))
    try:
        kind = kinds(msg.type)
    except ValueError as e:
        raise UnknownMessageType(f"unknown message type: {msg.type!r}") from e
    return msg, kind


def _require_str(msg: WireMessage, attr: str) -> None:
    if not isinstance(getattr(msg, attr), str):
        key = _WIRE_NAMES.get(attr, attr)
        raise MalformedMessage(f"{msg.type} requires string '{key}'")


def parse_client_message(payload: str | bytes) -> WireMessage:
    """
    Parse and validate one client -> relay message.

    Raises:
        MalformedMessage, UnknownMessageType
    """
    msg, kind = _parse(payload, ClientMessageType)

    if kind in (ClientMessageType.FRAME, ClientMessageType.AUDIO):
        _require_str(msg, "data")
        if msg.mime_type is not None:
            _require_str(msg, "mime_type")
    elif kind is ClientMessageType.TEXT:
        _require_str(msg, "text")
    elif kind is ClientMessageType.TOOL_RESULT:
        _require_str(msg, "tool_call_id")
    elif kind is ClientMessageType.SETUP_TOOLS:
        if not isinstance(msg.tools, list):
            raise MalformedMessage("setup_tools requires list 'tools'")
        for tool in msg.tools:
            if not isinstance(tool, dict) or not isinstance(tool.get("name"), str):
                raise MalformedMessage("every tool needs a string 'name'")

    return msg


def _optional(msg: WireMessage, attr: str, kind: type) -> None:
    value = getattr(msg, attr)
    if value is not None and not isinstance(value, kind):
        key = _WIRE_NAMES.get(attr, attr)
        raise MalformedMessage(f"{msg.type} has non-{kind.__name__} '{key}'")


def parse_relay_message(payload: str | bytes) -> WireMessage:
    """
    Parse and validate one relay -> client message (client side).

    Raises:
        MalformedMessage, UnknownMessageType
    """
    msg, kind = _parse(payload, RelayMessageType)

    if kind in (
        RelayMessageType.RESPONSE,
        RelayMessageType.INPUT_TRANSCRIPTION,
        RelayMessageType.OUTPUT_TRANSCRIPTION,
    ):
        _require_str(msg, "text")
    elif kind is RelayMessageType.AUDIO:
        _require_str(msg, "data")
        _optional(msg, "mime_type", str)
    elif kind is RelayMessageType.SESSION_HANDLE:
        _require_str(msg, "handle")
        _optional(msg, "resumable", bool)
    elif kind is RelayMessageType.ERROR:
        _optional(msg, "message", str)
    elif kind is RelayMessageType.DISCONNECTED:
        _optional(msg, "reason", str)
    elif kind is RelayMessageType.TOOL_CALL:
        _require_str(msg, "tool_call_id")
        _require_str(msg, "tool_name")
        _optional(msg, "args", dict)
    elif kind is RelayMessageType.TOOL_RESULT:
        _require_str(msg, "tool_call_id")

    return msg
