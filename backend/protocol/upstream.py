"""
Upstream (Gemini Live BidiGenerateContent) message translation.

Pure functions only: no sockets, no session state, no logging.
The session gateway owns ordering, setup gating and tool-call bookkeeping.

Client -> Upstream:
    frame  -> realtimeInput.mediaChunks[{mimeType: image/jpeg, data}]
    audio  -> realtimeInput.mediaChunks[{mimeType, data}]
    text   -> clientContent{turns: [{role: user, parts: [{text}]}], turnComplete: true}

Upstream -> Client:
    error                    -> error{message}
    setupComplete            -> (setup signal; gateway emits setup_complete once)
    sessionResumptionUpdate  -> session_handle{handle, resumable}
    serverContent            -> response / audio / input_transcription /
                                output_transcription / turn_complete
    toolCall                 -> tool_call{toolCallId, toolName, args} per call
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from constants import (
    AUDIO_IN_MIME_TYPE,
    IMAGE_FRAME_MIME_TYPE,
    UPSTREAM_ERROR_MESSAGE_DEFAULT,
    UPSTREAM_MEDIA_RESOLUTION,
)
from protocol.messages import ClientMessageType, MalformedMessage, WireMessage


# -------------------------
# Setup
# -------------------------

def function_declarations(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Map a client tool catalog onto upstream function declarations."""
    out: list[dict[str, Any]] = []
    for tool in tools:
        decl: dict[str, Any] = {"name": tool["name"]}
        if tool.get("description") is not None:
            decl["description"] = tool["description"]
        if tool.get("parameters") is not None:
            decl["parameters"] = tool["parameters"]
        out.append(decl)
    return out


def build_setup_message(
    *,
    model: str,
    voice: str,
    system_instruction: str,
    resume_handle: str | None = None,
    tools: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    The single setup message sent when the upstream socket opens.

    Requests audio output with the given prebuilt voice and enables input and
    output transcription, session resumption and sliding-window context
    compression.
    """
    session_resumption: dict[str, Any] = {}
    if resume_handle:
        session_resumption["handle"] = resume_handle

    setup: dict[str, Any] = {
        "model": model,
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "mediaResolution": UPSTREAM_MEDIA_RESOLUTION,
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": voice},
                },
            },
        },
        "systemInstruction": {"parts": [{"text": system_instruction}]},
        "inputAudioTranscription": {},
        "outputAudioTranscription": {},
        "sessionResumption": session_resumption,
        "contextWindowCompression": {"slidingWindow": {}},
    }

    if tools:
        setup["tools"] = [{"functionDeclarations": function_declarations(tools)}]

    return {"setup": setup}


# -------------------------
# Client -> Upstream
# -------------------------

def _media_chunk(mime_type: str, data: str) -> dict[str, Any]:
    return {"realtimeInput": {"mediaChunks": [{"mimeType": mime_type, "data": data}]}}


def translate_client_message(msg: WireMessage) -> dict[str, Any] | None:
    """
    Translate a media/text client message to its upstream shape.

    Returns:
        The upstream message, or None for types the gateway handles itself
        (tool_result, setup_tools).
    """
    if msg.type == ClientMessageType.FRAME.value:
        return _media_chunk(IMAGE_FRAME_MIME_TYPE, msg.data or "")

    if msg.type == ClientMessageType.AUDIO.value:
        return _media_chunk(msg.mime_type or AUDIO_IN_MIME_TYPE, msg.data or "")

    if msg.type == ClientMessageType.TEXT.value:
        return {
            "clientContent": {
                "turns": [{"role": "user", "parts": [{"text": msg.text}]}],
                "turnComplete": True,
            }
        }

    return None


def build_tool_response(*, call_id: str, name: str, result: Any) -> dict[str, Any]:
    """
    Upstream reply for one tool call.

    Non-object results are wrapped as {"result": value}; the upstream
    expects a JSON object response.
    """
    response = result if isinstance(result, dict) else {"result": result}
    return {
        "toolResponse": {
            "functionResponses": [
                {"id": call_id, "name": name, "response": response},
            ]
        }
    }


# -------------------------
# Upstream -> Client
# -------------------------

@dataclass(frozen=True)
class UpstreamToolCall:
    """One function call requested by the model."""
    call_id: str
    name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class UpstreamTranslation:
    """
    Result of translating one upstream message.

    messages:
        Downstream messages in emission order (setup_complete excluded).

    setup_complete:
        Upstream explicitly acknowledged the setup.

    has_content:
        A serverContent payload was present (used to infer setup completion).

    is_error:
        The upstream reported an error (forwarded, does not close the session).

    tool_calls:
        Function calls requested by this message, in order.

    cancelled_tool_calls:
        Call ids the model withdrew.
    """
    messages: tuple[WireMessage, ...] = ()
    setup_complete: bool = False
    has_content: bool = False
    is_error: bool = False
    tool_calls: tuple[UpstreamToolCall, ...] = ()
    cancelled_tool_calls: tuple[str, ...] = ()


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _translate_server_content(content: dict[str, Any]) -> list[WireMessage]:
    out: list[WireMessage] = []

    parts = _obj(content.get("modelTurn")).get("parts") or []
    if not isinstance(parts, list):
        raise MalformedMessage("serverContent.modelTurn.parts is not a list")

    for part in parts:
        part = _obj(part)

        text = part.get("text")
        if isinstance(text, str) and text:
            out.append(WireMessage.response(text))

        inline = _obj(part.get("inlineData"))
        mime_type = inline.get("mimeType")
        if isinstance(mime_type, str) and mime_type.startswith("audio/"):
            out.append(WireMessage.audio(mime_type=mime_type, data=inline.get("data") or ""))

    input_text = _obj(content.get("inputTranscription")).get("text")
    if isinstance(input_text, str) and input_text:
        out.append(WireMessage.input_transcription(input_text))

    output_text = _obj(content.get("outputTranscription")).get("text")
    if isinstance(output_text, str) and output_text:
        out.append(WireMessage.output_transcription(output_text))

    if content.get("turnComplete"):
        out.append(WireMessage.turn_complete())

    return out


def _translate_tool_call(tool_call: dict[str, Any]) -> tuple[list[WireMessage], list[UpstreamToolCall]]:
    calls = tool_call.get("functionCalls") or []
    if not isinstance(calls, list):
        raise MalformedMessage("toolCall.functionCalls is not a list")

    messages: list[WireMessage] = []
    parsed: list[UpstreamToolCall] = []
    for call in calls:
        call = _obj(call)
        call_id = call.get("id")
        name = call.get("name")
        if not isinstance(call_id, str) or not isinstance(name, str):
            raise MalformedMessage("function call missing 'id' or 'name'")
        args = _obj(call.get("args"))
        parsed.append(UpstreamToolCall(call_id=call_id, name=name, args=args))
        messages.append(WireMessage.tool_call(tool_call_id=call_id, tool_name=name, args=args))
    return messages, parsed


def translate_upstream_message(data: dict[str, Any]) -> UpstreamTranslation:
    """
    Translate one decoded upstream message.

    Precedence mirrors the upstream's message shapes: an error payload or a
    setup acknowledgement ends translation; otherwise resumption updates,
    server content and tool calls are unpacked in that order.

    Raises:
        MalformedMessage if a recognized section has the wrong shape.
    """
    if data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else None
        return UpstreamTranslation(
            messages=(WireMessage.error(message or UPSTREAM_ERROR_MESSAGE_DEFAULT),),
            is_error=True,
        )

    if "setupComplete" in data or "setup_complete" in data:
        return UpstreamTranslation(setup_complete=True)

    messages: list[WireMessage] = []
    tool_calls: list[UpstreamToolCall] = []
    cancelled: list[str] = []
    has_content = False

    update = data.get("sessionResumptionUpdate")
    if update is not None:
        update = _obj(update)
        handle = update.get("newHandle") or update.get("new_handle")
        if handle:
            messages.append(WireMessage.session_handle(str(handle), update.get("resumable")))

    content = data.get("serverContent")
    if content is not None:
        if not isinstance(content, dict):
            raise MalformedMessage("serverContent is not an object")
        has_content = True
        messages.extend(_translate_server_content(content))

    tool_call = data.get("toolCall")
    if tool_call is not None:
        call_messages, tool_calls = _translate_tool_call(_obj(tool_call))
        messages.extend(call_messages)

    cancellation = data.get("toolCallCancellation")
    if cancellation is not None:
        ids = _obj(cancellation).get("ids") or []
        cancelled = [str(i) for i in ids] if isinstance(ids, list) else []

    return UpstreamTranslation(
        messages=tuple(messages),
        has_content=has_content,
        tool_calls=tuple(tool_calls),
        cancelled_tool_calls=tuple(cancelled),
    )
