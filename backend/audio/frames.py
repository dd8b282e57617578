"""
Audio frame primitives.

Pure data containers only.
No behavior beyond derived durations, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass

from constants import AUDIO_SAMPLE_WIDTH_BYTES


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical outbound audio frame produced by the capture pipeline.

    sequence_num:
        Local monotonic counter in arrival order. Used for logging only;
        the wire protocol carries no sequence numbers (the transport
        delivers in order).

    pcm_bytes:
        PCM16LE mono audio bytes.

    sample_rate_hz:
        Declared sample rate of pcm_bytes.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was produced.
        Used for observability only.
    """
    sequence_num: int
    pcm_bytes: bytes
    sample_rate_hz: int
    ts_ms: int

    @property
    def num_samples(self) -> int:
        """Sample count (mono)."""
        return len(self.pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def duration_s(self) -> float:
        """Frame duration in seconds."""
        return self.num_samples / self.sample_rate_hz
