# pylint: disable=missing-module-docstring,missing-function-docstring,redefined-outer-name

import json
from typing import Any

import pytest

from config import AppConfig
from session.connection_status import ConnectionStatus
from session.gateway import RelaySession


def make_gateway(config: AppConfig, **kwargs: Any) -> RelaySession:
    return RelaySession(config=config, session_id="s1", **kwargs)


def open_and_complete(gateway: RelaySession) -> None:
    gateway.on_upstream_open()
    gateway.on_upstream_message(json.dumps({"setupComplete": {}}))


def text(value: str) -> str:
    return json.dumps({"type": "text", "text": value})


def types(outbound: tuple[dict[str, Any], ...]) -> list[str]:
    return [m["type"] for m in outbound]


# ---------------------------------------------------------------------
# Setup handshake
# ---------------------------------------------------------------------

def test_setup_sent_on_upstream_open(app_config, log_events):
    gateway = make_gateway(app_config, voice="Puck")

    result = gateway.on_upstream_open()

    assert result.outbound_json == ()
    (setup,) = result.upstream_json
    assert setup["setup"]["model"] == "models/test-model"
    voice = setup["setup"]["generationConfig"]["speechConfig"]["voiceConfig"]
    assert voice["prebuiltVoiceConfig"]["voiceName"] == "Puck"
    assert gateway.setup_sent
    assert gateway.session.connection_status is ConnectionStatus.CONNECTING
    assert any(e["event_type"] == "SETUP_SENT" for e in log_events)


def test_default_voice_from_config(app_config, log_events):
    gateway = make_gateway(app_config)
    assert gateway.session.voice == "Zephyr"


def test_resume_handle_goes_into_setup(app_config, log_events):
    gateway = make_gateway(app_config, resume_handle="h-1")

    (setup,) = gateway.on_upstream_open().upstream_json

    assert setup["setup"]["sessionResumption"] == {"handle": "h-1"}


def test_client_messages_before_setup_are_not_forwarded(app_config, log_events):
    gateway = make_gateway(app_config)
    gateway.on_upstream_open()

    result = gateway.on_client_message(text("too early"))

    assert result.upstream_json == ()
    assert result.outbound_json == ()
    assert any(e["event_type"] == "CLIENT_MESSAGE_BEFORE_SETUP" for e in log_events)


def test_setup_complete_emitted_exactly_once(app_config, log_events):
    gateway = make_gateway(app_config)
    gateway.on_upstream_open()

    first = gateway.on_upstream_message(json.dumps({"setupComplete": {}}))
    second = gateway.on_upstream_message(json.dumps({"setup_complete": {}}))

    assert types(first.outbound_json) == ["setup_complete"]
    assert second.outbound_json == ()
    assert gateway.setup_complete
    assert gateway.session.connection_status is ConnectionStatus.UP


def test_setup_complete_inferred_from_first_server_content(app_config, log_events):
    gateway = make_gateway(app_config)
    gateway.on_upstream_open()

    result = gateway.on_upstream_message(json.dumps({
        "serverContent": {"modelTurn": {"parts": [{"text": "Hi"}]}},
    }))
    late_ack = gateway.on_upstream_message(json.dumps({"setupComplete": {}}))

    assert types(result.outbound_json) == ["setup_complete", "response"]
    assert late_ack.outbound_json == ()
    assert [e["inferred"] for e in log_events if e["event_type"] == "SETUP_COMPLETE"] == [True]


def test_setup_handshake_emits_latency_metric(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    metrics = [e for e in log_events if e["event_type"] == "METRIC_TIMER"]

    assert [m["metric"] for m in metrics] == ["upstream_setup"]
    assert metrics[0]["details"] == {"inferred": False}


# ---------------------------------------------------------------------
# Client -> upstream
# ---------------------------------------------------------------------

def test_text_forwarded_as_single_complete_turn(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_client_message(text("hello"))

    assert result.upstream_json == ({
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"text": "hello"}]}],
            "turnComplete": True,
        }
    },)


def test_audio_forwarded_in_order(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    chunks = []
    for data in ("AAA", "BBB", "CCC"):
        result = gateway.on_client_message(json.dumps({"type": "audio", "data": data}))
        chunks.extend(m["realtimeInput"]["mediaChunks"][0]["data"] for m in result.upstream_json)

    assert chunks == ["AAA", "BBB", "CCC"]


def test_binary_client_frames_are_decoded(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_client_message(text("hi").encode("utf-8"))

    assert len(result.upstream_json) == 1


def test_malformed_client_message_dropped_and_session_continues(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    dropped = gateway.on_client_message("{not json")
    unknown = gateway.on_client_message(json.dumps({"type": "bogus"}))
    ok = gateway.on_client_message(text("still here"))

    assert dropped.upstream_json == () and unknown.upstream_json == ()
    assert len(ok.upstream_json) == 1
    assert sum(e["event_type"] == "CLIENT_MESSAGE_DROPPED" for e in log_events) == 2


# ---------------------------------------------------------------------
# Upstream -> client
# ---------------------------------------------------------------------

def test_malformed_upstream_message_dropped(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_upstream_message(b"\x00\x01 not json")

    assert result.outbound_json == ()
    assert any(e["event_type"] == "UPSTREAM_MESSAGE_DROPPED" for e in log_events)


def test_upstream_error_forwarded_without_completing_setup(app_config, log_events):
    gateway = make_gateway(app_config)
    gateway.on_upstream_open()

    result = gateway.on_upstream_message(json.dumps({"error": {"message": "bad model"}}))

    assert result.outbound_json == ({"type": "error", "message": "bad model"},)
    assert not gateway.setup_complete


def test_session_handle_tracked_and_forwarded(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_upstream_message(json.dumps({
        "sessionResumptionUpdate": {"newHandle": "h-9", "resumable": True},
    }))

    assert result.outbound_json == ({"type": "session_handle", "handle": "h-9", "resumable": True},)
    assert gateway.session.resume_handle == "h-9"
    assert gateway.session.resumable


def test_upstream_close_tells_client_why(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_upstream_closed("Session expired")

    assert result.outbound_json == ({"type": "disconnected", "reason": "Session expired"},)
    assert gateway.session.connection_status is ConnectionStatus.DOWN


def test_upstream_failure_surfaces_generic_error(app_config, log_events):
    gateway = make_gateway(app_config)

    result = gateway.on_upstream_failed("ConnectionRefusedError")

    assert result.outbound_json == ({"type": "error", "message": "Connection to AI failed"},)


# ---------------------------------------------------------------------
# Tool catalog
# ---------------------------------------------------------------------

TOOLS = [{"name": "lookup", "description": "Find things", "parameters": {"type": "object"}}]


def setup_tools() -> str:
    return json.dumps({"type": "setup_tools", "tools": TOOLS})


def test_setup_held_until_tools_arrive(app_config, log_events):
    gateway = make_gateway(app_config, wait_for_tools=True)

    assert gateway.on_upstream_open().upstream_json == ()
    assert gateway.awaiting_tools

    (setup,) = gateway.on_client_message(setup_tools()).upstream_json

    assert setup["setup"]["tools"] == [{"functionDeclarations": TOOLS}]
    assert not gateway.awaiting_tools


def test_tools_timeout_sends_setup_without_tools(app_config, log_events):
    gateway = make_gateway(app_config, wait_for_tools=True)
    gateway.on_upstream_open()

    (setup,) = gateway.on_tools_timeout().upstream_json
    late = gateway.on_client_message(setup_tools())

    assert "tools" not in setup["setup"]
    assert late.upstream_json == ()
    assert any(e["event_type"] == "SETUP_TOOLS_LATE" for e in log_events)
    assert gateway.on_tools_timeout().upstream_json == ()


def test_tools_received_before_open_are_declared(app_config, log_events):
    gateway = make_gateway(app_config)

    assert gateway.on_client_message(setup_tools()).upstream_json == ()
    (setup,) = gateway.on_upstream_open().upstream_json

    assert setup["setup"]["tools"][0]["functionDeclarations"][0]["name"] == "lookup"


# ---------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------

def tool_call(call_id: str = "abc", name: str = "lookup") -> str:
    return json.dumps({
        "toolCall": {"functionCalls": [{"id": call_id, "name": name, "args": {"q": "x"}}]},
    })


def tool_result(call_id: str, result: Any) -> str:
    return json.dumps({"type": "tool_result", "toolCallId": call_id, "result": result})


def test_tool_call_forwarded_and_result_answered_by_name(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    call = gateway.on_upstream_message(tool_call())
    assert call.outbound_json == ({
        "type": "tool_call",
        "toolCallId": "abc",
        "toolName": "lookup",
        "args": {"q": "x"},
    },)
    assert gateway.pending_tool_calls == {"abc": "lookup"}

    result = gateway.on_client_message(tool_result("abc", "42"))

    assert result.upstream_json == ({
        "toolResponse": {
            "functionResponses": [{"id": "abc", "name": "lookup", "response": {"result": "42"}}],
        }
    },)
    assert result.outbound_json == ({"type": "tool_result", "toolCallId": "abc"},)
    assert gateway.pending_tool_calls == {}


def test_tool_result_for_unknown_call_is_dropped(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)

    result = gateway.on_client_message(tool_result("nope", {}))

    assert result.upstream_json == ()
    assert any(e["event_type"] == "TOOL_RESULT_UNKNOWN_CALL" for e in log_events)


def test_cancelled_tool_call_is_forgotten(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)
    gateway.on_upstream_message(tool_call())

    gateway.on_upstream_message(json.dumps({"toolCallCancellation": {"ids": ["abc"]}}))

    assert gateway.pending_tool_calls == {}
    assert gateway.on_client_message(tool_result("abc", 1)).upstream_json == ()


def test_client_close_abandons_pending_calls(app_config, log_events):
    gateway = make_gateway(app_config)
    open_and_complete(gateway)
    gateway.on_upstream_message(tool_call())

    gateway.on_client_closed("client_disconnect")

    assert gateway.pending_tool_calls == {}
    assert any(e["event_type"] == "CLIENT_CLOSED" for e in log_events)


@pytest.mark.parametrize("payload", [{"setupComplete": {}}, {"serverContent": {}}])
def test_every_event_carries_session_id(app_config, log_events, payload):
    gateway = make_gateway(app_config)
    gateway.on_upstream_open()
    gateway.on_upstream_message(json.dumps(payload))

    gateway_events = [e for e in log_events if e["event_type"] != "METRIC_TIMER"]
    assert gateway_events
    assert all(e["session_id"] == "s1" for e in gateway_events)
