"""
A minimal, energy-based Voice Activity Detection (VAD) module.

Provides a simple RMS-energy detector intended for real-time capture
pipelines. It operates on short, fixed-size frames (float32 samples) and
reports speech boundaries:

- SPEECH_START:     first frame whose speech probability crosses the threshold
- SPEECH_CONFIRMED: `min_speech_duration_ms` of active frames accumulated
- SPEECH_END:       silence lasted `silence_duration_ms` after confirmation
- MISFIRE:          silence lasted `silence_duration_ms` before confirmation

Any other detector emitting the same boundaries can replace it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from constants import (
    AUDIO_FRAME_MS,
    VAD_ENERGY_FULL_SCALE_RMS,
    VAD_MIN_SPEECH_DURATION_MS,
    VAD_SILENCE_DURATION_MS,
    VAD_THRESHOLD,
)


class VadEvent(str, Enum):
    """Speech boundary reported by a detector."""
    SPEECH_START = "speech_start"
    SPEECH_CONFIRMED = "speech_confirmed"
    SPEECH_END = "speech_end"
    MISFIRE = "misfire"


@dataclass(frozen=True)
class VadOptions:
    """
    Voice activity configuration.

    threshold:
        Speech probability threshold (0-1).
    min_speech_duration_ms:
        Speech shorter than this is a misfire and emits no audio.
    silence_duration_ms:
        Silence required before speech is considered ended.
    """
    threshold: float = VAD_THRESHOLD
    min_speech_duration_ms: int = VAD_MIN_SPEECH_DURATION_MS
    silence_duration_ms: int = VAD_SILENCE_DURATION_MS

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        if self.min_speech_duration_ms < 0:
            raise ValueError("min_speech_duration_ms must be >= 0")
        if self.silence_duration_ms < 0:
            raise ValueError("silence_duration_ms must be >= 0")


def speech_probability(f32: np.ndarray) -> float:
    """Map a frame's RMS energy onto [0, 1]."""
    if f32.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(f32, dtype=np.float64))))
    return min(1.0, rms / VAD_ENERGY_FULL_SCALE_RMS)


class EnergyVAD:
    """
    Simple energy-based Voice Activity Detector (VAD).

    For each observed frame, the RMS energy is mapped to a speech probability
    and compared against the threshold. Durations are counted in frames of
    `frame_ms`, so the detector is clock-free and deterministic.
    """

    def __init__(self, options: VadOptions | None = None, *, frame_ms: int = AUDIO_FRAME_MS):
        if frame_ms <= 0:
            raise ValueError("frame_ms must be > 0")
        self._options = options or VadOptions()
        self._frame_ms = frame_ms
        self._in_speech = False
        self._confirmed = False
        self._speech_ms = 0
        self._silence_ms = 0

    @property
    def in_speech(self) -> bool:
        """True between SPEECH_START and SPEECH_END/MISFIRE."""
        return self._in_speech

    def observe(self, f32: np.ndarray) -> list[VadEvent]:
        """
        Observe a single audio frame and update VAD state.

        Returns:
            Boundaries crossed by this frame, in order (usually zero or one).
        """
        active = speech_probability(np.asarray(f32, dtype=np.float32)) >= self._options.threshold
        events: list[VadEvent] = []

        if not self._in_speech:
            if not active:
                return events
            self._in_speech = True
            self._speech_ms = 0
            self._silence_ms = 0
            events.append(VadEvent.SPEECH_START)

        if active:
            self._speech_ms += self._frame_ms
            self._silence_ms = 0
            if not self._confirmed and self._speech_ms >= self._options.min_speech_duration_ms:
                self._confirmed = True
                events.append(VadEvent.SPEECH_CONFIRMED)
            return events

        self._silence_ms += self._frame_ms
        if self._silence_ms < self._options.silence_duration_ms:
            return events

        confirmed = self._confirmed
        self.reset()
        events.append(VadEvent.SPEECH_END if confirmed else VadEvent.MISFIRE)
        return events

    def reset(self) -> None:
        """
        Reset the internal VAD state.

        Subsequent detection requires a fresh onset.
        """
        self._in_speech = False
        self._confirmed = False
        self._speech_ms = 0
        self._silence_ms = 0
