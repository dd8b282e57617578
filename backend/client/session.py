"""
LiveSession: client facade over the relay.

Owns, for one logical conversation:
- the connection runtime (state machine, socket, reconnection timer)
- the audio pipeline (microphone -> capture -> relay, relay -> playback -> speaker)
- the transcript aggregator and its debounce timer
- the tool-call bridge

Every observable is derived from the canonical state held by those parts;
nothing is cached separately.

Audio devices are created through factories so that headless use (and
tests) never opens sounddevice. With enable_audio=False the session is
text-only, but playback scheduling still runs so is_speaking stays
meaningful.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol

import numpy as np

from audio.capture import CaptureError, CapturePipeline
from audio.codec import CodecError, decode_base64, encode_base64, parse_pcm_rate, pcm16le_to_float32
from audio.frames import AudioFrame
from audio.playback import PlaybackScheduler, ScheduledChunk
from audio.resampler import Resampler
from client.config import ClientConfig, DebugLevel
from client.connection_state import TERMINAL_STATES, ConnectionState
from client.events import (
    ConnectRequested,
    DisconnectRequested,
    EventType,
    HandshakeAck,
    SessionHandleUpdated,
)
from client.runtime import ClientConnector, ConnectionRuntime, open_relay_socket
from client.tools import ToolCallBridge, ToolHandler
from client.transcripts import Role, Transcript, TranscriptAggregator
from constants import AUDIO_IN_MIME_TYPE, AUDIO_OUT_SAMPLE_RATE_HZ, UPSTREAM_ERROR_MESSAGE_DEFAULT
from observability.logger import log_event, now_ms
from protocol.messages import (
    ClientMessageType,
    ProtocolError,
    RelayMessageType,
    WireMessage,
    parse_relay_message,
)


class AudioInput(Protocol):
    def open(self) -> int: ...

    def close(self) -> None: ...


class AudioOutput(Protocol):
    def open(self) -> int: ...

    def submit(self, chunk: ScheduledChunk) -> None: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


MicrophoneFactory = Callable[..., AudioInput]
SpeakerFactory = Callable[[], AudioOutput]


def _default_microphone(*, on_block: Callable[[np.ndarray], None], loop: asyncio.AbstractEventLoop) -> AudioInput:
    # sounddevice needs PortAudio at import time; only load it when audio is used
    from audio.devices import MicrophoneInput  # pylint: disable=import-outside-toplevel
    return MicrophoneInput(on_block=on_block, loop=loop)


def _default_speaker() -> AudioOutput:
    from audio.devices import SpeakerOutput  # pylint: disable=import-outside-toplevel
    return SpeakerOutput()


class LiveSession:
    """
    One voice conversation with the model through the relay.

    Lifecycle:
        session = LiveSession(ClientConfig(relay_url="ws://localhost:8000/ws"))
        await session.connect()
        ...
        session.disconnect()

    connect() returns once the first attempt is under way; completion is
    reported through on_connection_change and connection_state.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        on_transcript: Callable[[Transcript], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_connection_change: Callable[[bool], None] | None = None,
        on_tool_call: ToolHandler | None = None,
        connector: ClientConnector = open_relay_socket,
        enable_audio: bool = True,
        microphone_factory: MicrophoneFactory = _default_microphone,
        speaker_factory: SpeakerFactory = _default_speaker,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._on_error = on_error
        self._on_connection_change = on_connection_change
        self._enable_audio = enable_audio
        self._microphone_factory = microphone_factory
        self._speaker_factory = speaker_factory
        self._clock = clock

        self._runtime = ConnectionRuntime(
            policy=config.reconnection,
            build_url=config.connect_url,
            on_message=self._on_raw_message,
            connector=connector,
            on_open=self._on_socket_open,
            on_connection_change=self._handle_connection_change,
            on_error=self._report_error,
            session_id=config.session_id,
        )
        self._transcripts = TranscriptAggregator(
            debounce_ms=config.transcript_debounce_ms,
            on_transcript=on_transcript,
            clock_ms=self._clock_ms,
        )
        self._bridge = ToolCallBridge(
            send_result=self._send_tool_result_message,
            handler=on_tool_call,
            session_id=config.session_id,
        )
        self._scheduler = PlaybackScheduler(
            sample_rate_hz=AUDIO_OUT_SAMPLE_RATE_HZ,
            min_buffer_ms=config.min_buffer_ms,
            clock=clock,
        )
        self._resamplers: dict[int, Resampler] = {}

        self._microphone: AudioInput | None = None
        self._speaker: AudioOutput | None = None
        self._capture: CapturePipeline | None = None

        self._muted = False
        self._error: str | None = None
        self._welcome_sent = False
        self._debounce_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._runtime.state.connection

    @property
    def is_connected(self) -> bool:
        return self._runtime.state.is_connected

    @property
    def is_connecting(self) -> bool:
        return self._runtime.state.is_connecting

    @property
    def is_speaking(self) -> bool:
        """True while scheduled model audio is still ahead of the clock."""
        return self._scheduler.is_playing()

    @property
    def is_user_speaking(self) -> bool:
        """True while the VAD gate is open (always False without VAD)."""
        return self._capture is not None and self._capture.is_user_speaking

    @property
    def is_muted(self) -> bool:
        return self._muted

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def transcripts(self) -> tuple[Transcript, ...]:
        return self._transcripts.transcripts

    @property
    def streaming_text(self) -> str | None:
        """Assistant text not yet finalized."""
        return self._transcripts.streaming_text(Role.ASSISTANT)

    @property
    def streaming_user_text(self) -> str | None:
        """User text not yet finalized."""
        return self._transcripts.streaming_text(Role.USER)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Acquire audio devices and open the relay connection.

        Ignored unless the session is idle, disconnected, or in error.
        Device failures are reported through on_error and the session
        continues without audio.
        """
        if self.connection_state not in TERMINAL_STATES:
            return

        self._error = None
        self._welcome_sent = False

        self._runtime.handle_event(ConnectRequested(
            event_type=EventType.CONNECT_REQUESTED,
            ts_ms=now_ms(),
        ))

        if self._enable_audio:
            self._start_audio(asyncio.get_running_loop())

    def disconnect(self) -> None:
        """
        Stop everything now: capture, playback, pending tool calls, the
        reconnection timer and the socket.
        """
        self._stop_audio()
        self._cancel_debounce()
        self._transcripts.reset()
        self._bridge.cancel_all()

        self._runtime.handle_event(DisconnectRequested(
            event_type=EventType.DISCONNECT_REQUESTED,
            ts_ms=now_ms(),
        ))

    async def wait_closed(self) -> None:
        """Wait for background socket teardown and running tool handlers."""
        await self._runtime.wait_closed()
        await self._bridge.drain()

    def send_text(self, text: str) -> bool:
        """
        Send a text turn to the model.

        Returns:
            False when not connected (nothing is sent).
        """
        if not self.is_connected or not text:
            return False
        return self._runtime.send(WireMessage(type=ClientMessageType.TEXT.value, text=text))

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        if self._capture is not None:
            self._capture.set_muted(muted)

    def clear_transcripts(self) -> None:
        self._transcripts.clear()

    def send_tool_result(self, tool_call_id: str, result: Any) -> bool:
        """
        Answer a pending tool call.

        Returns:
            False for unknown (or already answered) ids.
        """
        return self._bridge.resolve(tool_call_id, result)

    # ------------------------------------------------------------------
    # Runtime callbacks
    # ------------------------------------------------------------------

    def _on_socket_open(self) -> None:
        if self._config.tools:
            self._runtime.send(WireMessage(
                type=ClientMessageType.SETUP_TOOLS.value,
                tools=[tool.to_dict() for tool in self._config.tools],
            ))

    def _send_tool_result_message(self, tool_call_id: str, result: Any) -> bool:
        return self._runtime.send(WireMessage(
            type=ClientMessageType.TOOL_RESULT.value,
            tool_call_id=tool_call_id,
            result=result,
        ))

    def _handle_connection_change(self, connected: bool, state: ConnectionState) -> None:
        if not connected:
            # Audio from the lost socket belongs to a turn that will never complete
            self._reset_playback()
        if state in TERMINAL_STATES:
            self._stop_audio()

        self._config.emit_debug(DebugLevel.INFO, "connection changed", {
            "connected": connected,
            "state": state.value,
        })
        if self._on_connection_change is not None:
            self._on_connection_change(connected)

    def _report_error(self, message: str) -> None:
        self._error = message
        if self.connection_state is ConnectionState.ERROR:
            self._stop_audio()
        self._config.emit_debug(DebugLevel.ERROR, message)
        if self._on_error is not None:
            self._on_error(message)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _on_raw_message(self, raw: str | bytes) -> None:
        try:
            msg = parse_relay_message(raw)
        except ProtocolError as e:
            log_event({
                "event_type": "CLIENT_MESSAGE_DROPPED",
                "session_id": self._config.session_id,
                "error": str(e),
            })
            return

        self._config.emit_debug(DebugLevel.VERBOSE, "message received", {"type": msg.type})
        self._dispatch(msg)

    def _dispatch(self, msg: WireMessage) -> None:
        kind = RelayMessageType(msg.type)

        if kind is RelayMessageType.SETUP_COMPLETE:
            self._runtime.handle_event(HandshakeAck(
                event_type=EventType.HANDSHAKE_ACK,
                ts_ms=now_ms(),
            ))
            if self._config.welcome_message and not self._welcome_sent and self.is_connected:
                self._welcome_sent = True
                self.send_text(self._config.welcome_message)

        elif kind is RelayMessageType.SESSION_HANDLE:
            if msg.handle:
                self._runtime.handle_event(SessionHandleUpdated(
                    event_type=EventType.SESSION_HANDLE,
                    ts_ms=now_ms(),
                    handle=msg.handle,
                    resumable=bool(msg.resumable),
                ))

        elif kind is RelayMessageType.AUDIO:
            self._play(msg)

        elif kind in (RelayMessageType.RESPONSE, RelayMessageType.OUTPUT_TRANSCRIPTION):
            self._add_fragment(Role.ASSISTANT, msg.text)

        elif kind is RelayMessageType.INPUT_TRANSCRIPTION:
            self._add_fragment(Role.USER, msg.text)

        elif kind is RelayMessageType.TURN_COMPLETE:
            self._cancel_debounce()
            self._transcripts.flush_all()
            self._flush_playback()

        elif kind is RelayMessageType.TOOL_CALL:
            if msg.tool_call_id and msg.tool_name:
                self._bridge.on_tool_call(msg.tool_call_id, msg.tool_name, msg.args or {})

        elif kind is RelayMessageType.ERROR:
            self._report_error(msg.message or UPSTREAM_ERROR_MESSAGE_DEFAULT)

        elif kind is RelayMessageType.DISCONNECTED:
            # The socket close that follows drives reconnection
            log_event({
                "event_type": "CLIENT_UPSTREAM_DISCONNECTED",
                "session_id": self._config.session_id,
                "reason": msg.reason,
            })

        elif kind is RelayMessageType.TOOL_RESULT:
            log_event({
                "event_type": "CLIENT_TOOL_RESULT_ACKED",
                "session_id": self._config.session_id,
                "tool_call_id": msg.tool_call_id,
            })

    # ------------------------------------------------------------------
    # Transcripts
    # ------------------------------------------------------------------

    def _clock_ms(self) -> int:
        return int(self._clock() * 1000)

    def _add_fragment(self, role: Role, text: str | None) -> None:
        if not text:
            return
        self._transcripts.add_fragment(role, text)
        self._schedule_debounce()

    def _schedule_debounce(self) -> None:
        self._cancel_debounce()
        deadline = self._transcripts.next_deadline_ms()
        if deadline is None:
            return
        delay_s = max(deadline - self._clock_ms(), 0) / 1000.0
        self._debounce_timer = asyncio.get_running_loop().call_later(delay_s, self._on_debounce)

    def _on_debounce(self) -> None:
        self._debounce_timer = None
        self._transcripts.tick()
        self._schedule_debounce()

    def _cancel_debounce(self) -> None:
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _play(self, msg: WireMessage) -> None:
        if not msg.data:
            return
        try:
            rate = parse_pcm_rate(msg.mime_type, AUDIO_OUT_SAMPLE_RATE_HZ)
            samples = pcm16le_to_float32(decode_base64(msg.data))
        except CodecError as e:
            log_event({
                "event_type": "CLIENT_AUDIO_DROPPED",
                "session_id": self._config.session_id,
                "error": str(e),
            })
            return

        resampler = self._resamplers.get(rate)
        if resampler is None:
            resampler = Resampler(rate, self._scheduler.sample_rate_hz)
            self._resamplers[rate] = resampler

        self._submit(self._scheduler.enqueue(resampler.process(samples)))

    def _submit(self, chunks: list[ScheduledChunk]) -> None:
        if self._speaker is None:
            return
        for chunk in chunks:
            self._speaker.submit(chunk)

    def _flush_playback(self) -> None:
        """End of turn: drain resampler lookahead, then release withheld audio."""
        for resampler in self._resamplers.values():
            self._submit(self._scheduler.enqueue(resampler.flush()))
        self._submit(self._scheduler.flush())

    def _reset_playback(self) -> None:
        for resampler in self._resamplers.values():
            resampler.reset()
        self._scheduler.reset()
        if self._speaker is not None:
            self._speaker.clear()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def _on_mic_block(self, block: np.ndarray) -> None:
        if self._capture is not None:
            self._capture.process(block)

    def _send_audio_frame(self, frame: AudioFrame) -> None:
        if not self.is_connected:
            return
        self._runtime.send(WireMessage(
            type=ClientMessageType.AUDIO.value,
            data=encode_base64(frame.pcm_bytes),
            mime_type=AUDIO_IN_MIME_TYPE,
        ))

    # ------------------------------------------------------------------
    # Device ownership
    # ------------------------------------------------------------------

    def _start_audio(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._speaker is None:
            speaker = self._speaker_factory()
            try:
                rate = speaker.open()
            except CaptureError as e:
                self._report_error(str(e))
            else:
                self._speaker = speaker
                self._use_output_rate(rate)

        if self._microphone is None:
            microphone = self._microphone_factory(on_block=self._on_mic_block, loop=loop)
            try:
                input_rate = microphone.open()
            except CaptureError as e:
                self._report_error(str(e))
                return
            self._microphone = microphone
            self._capture = CapturePipeline(
                send_frame=self._send_audio_frame,
                input_rate_hz=input_rate,
                vad_options=self._config.vad,
                session_id=self._config.session_id,
            )
            self._capture.set_muted(self._muted)

    def _use_output_rate(self, rate: int) -> None:
        if rate == self._scheduler.sample_rate_hz:
            return
        self._scheduler = PlaybackScheduler(
            sample_rate_hz=rate,
            min_buffer_ms=self._config.min_buffer_ms,
            clock=self._clock,
        )
        self._resamplers.clear()

    def _stop_audio(self) -> None:
        """Release devices. Idempotent."""
        microphone = self._microphone
        self._microphone = None
        if microphone is not None:
            microphone.close()

        self._capture = None
        self._reset_playback()

        speaker = self._speaker
        self._speaker = None
        if speaker is not None:
            speaker.close()
