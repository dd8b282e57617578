"""
Microphone capture pipeline.

Responsibilities:
- Accept raw float32 capture blocks at the device rate
- Resample to the 16kHz wire rate when the device could not capture at it
- Re-chunk into 20ms frames and encode each as PCM16LE
- Hand every frame to the sender immediately (no batching beyond one frame)
- Optionally gate frames on voice activity

Non-responsibilities:
- Device ownership (audio.devices.MicrophoneInput)
- Transport (the sender callback decides what to do with a frame)
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

import numpy as np

from audio.codec import float32_to_pcm16le
from audio.frame_generator import FrameAligner, samples_per_frame
from audio.frames import AudioFrame
from audio.resampler import Resampler
from audio.vad import EnergyVAD, VadEvent, VadOptions
from constants import AUDIO_FRAME_MS, AUDIO_IN_SAMPLE_RATE_HZ
from observability.logger import log_event, now_ms


class CaptureError(Exception):
    """
    Raised when the capture device is denied or unavailable.

    Never retried automatically: recovering requires user action.
    """


class GateState(str, Enum):
    """Voice-activity gate position."""
    CLOSED = "closed"      # silence; frames dropped
    PENDING = "pending"    # onset seen; frames held until confirmed
    OPEN = "open"          # confirmed speech; frames pass through


class SpeechGate:
    """
    Passes frames only between a confirmed speech start and speech end.

    Frames captured between onset and confirmation are held, then released
    in order on confirmation. A misfire discards them, so a false trigger
    never emits audio.
    """

    def __init__(self) -> None:
        self.state = GateState.CLOSED
        self._held: list[np.ndarray] = []

    def admit(self, frame: np.ndarray, events: list[VadEvent]) -> list[np.ndarray]:
        """
        Apply the detector boundaries observed on `frame`.

        Returns:
            Frames to send now, oldest first.
        """
        out: list[np.ndarray] = []

        for event in events:
            if event is VadEvent.SPEECH_START and self.state is GateState.CLOSED:
                self.state = GateState.PENDING
                self._held = []

        if self.state is GateState.PENDING:
            self._held.append(frame)
        elif self.state is GateState.OPEN:
            out.append(frame)

        for event in events:
            if event is VadEvent.SPEECH_CONFIRMED and self.state is GateState.PENDING:
                self.state = GateState.OPEN
                out.extend(self._held)
                self._held = []
            elif event is VadEvent.MISFIRE:
                self.state = GateState.CLOSED
                self._held = []
            elif event is VadEvent.SPEECH_END:
                if self.state is GateState.PENDING:
                    out.extend(self._held)
                self.state = GateState.CLOSED
                self._held = []

        return out

    @property
    def is_open(self) -> bool:
        """True while confirmed speech is passing through."""
        return self.state is GateState.OPEN

    def reset(self) -> None:
        """Close the gate and drop held frames."""
        self.state = GateState.CLOSED
        self._held = []


class CapturePipeline:
    """
    Turns capture blocks into outbound AudioFrames.

    One pipeline per session. Not thread-safe: feed it from the event loop.
    """

    def __init__(
        self,
        *,
        send_frame: Callable[[AudioFrame], None],
        input_rate_hz: int = AUDIO_IN_SAMPLE_RATE_HZ,
        vad_options: VadOptions | None = None,
        vad: EnergyVAD | None = None,
        session_id: str | None = None,
    ) -> None:
        self._send_frame = send_frame
        self._session_id = session_id
        self._resampler = Resampler(input_rate_hz, AUDIO_IN_SAMPLE_RATE_HZ)
        self._aligner = FrameAligner(samples_per_frame())

        if vad is None and vad_options is not None:
            vad = EnergyVAD(vad_options, frame_ms=AUDIO_FRAME_MS)
        self._vad = vad
        self._gate = SpeechGate() if vad is not None else None

        self._muted = False
        self._seq = 0

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def muted(self) -> bool:
        """Muted pipelines drop every block."""
        return self._muted

    def set_muted(self, muted: bool) -> None:
        """Mute/unmute. Muting also discards partial frames and held speech."""
        self._muted = muted
        if muted:
            self.reset()

    @property
    def is_user_speaking(self) -> bool:
        """True while the voice-activity gate is open (always False without VAD)."""
        return self._gate is not None and self._gate.is_open

    @property
    def frames_sent(self) -> int:
        """Frames handed to the sender so far."""
        return self._seq

    def reset(self) -> None:
        """Drop partial frames, resampler history and detector state."""
        self._resampler.reset()
        self._aligner.clear_buffer()
        if self._vad is not None:
            self._vad.reset()
        if self._gate is not None:
            self._gate.reset()

    # ------------------------------------------------------------------
    # Data path
    # ------------------------------------------------------------------

    def process(self, block: np.ndarray) -> list[AudioFrame]:
        """
        Feed one capture block (mono float32 at input_rate_hz).

        Returns:
            Frames sent during this call.
        """
        if self._muted:
            return []

        mono = np.asarray(block, dtype=np.float32)
        if mono.ndim > 1:
            mono = mono.mean(axis=1)

        resampled = self._resampler.process(mono)
        sent: list[AudioFrame] = []

        for frame in self._aligner.add(resampled):
            if self._vad is None or self._gate is None:
                ready = [frame]
            else:
                was_open = self._gate.is_open
                ready = self._gate.admit(frame, self._vad.observe(frame))
                if was_open != self._gate.is_open:
                    log_event({
                        "event_type": "VAD_GATE_CHANGED",
                        "session_id": self._session_id,
                        "open": self._gate.is_open,
                    })

            for samples in ready:
                sent.append(self._emit(samples))

        return sent

    def _emit(self, samples: np.ndarray) -> AudioFrame:
        self._seq += 1
        frame = AudioFrame(
            sequence_num=self._seq,
            pcm_bytes=float32_to_pcm16le(samples),
            sample_rate_hz=AUDIO_IN_SAMPLE_RATE_HZ,
            ts_ms=now_ms(),
        )
        self._send_frame(frame)
        return frame
