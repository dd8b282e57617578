"""
Frame alignment utilities.

Purpose:
- Re-chunk arbitrarily sized capture blocks into fixed-size frames
  (20ms at 16kHz by default) without loss.

Design:
- No IO, no timing.
- Trailing partial frames are held until enough samples arrive.
"""

from __future__ import annotations

import numpy as np

from constants import AUDIO_FRAME_MS, AUDIO_IN_SAMPLE_RATE_HZ


def samples_per_frame(
    *,
    sample_rate_hz: int = AUDIO_IN_SAMPLE_RATE_HZ,
    frame_duration_ms: int = AUDIO_FRAME_MS,
) -> int:
    """
    Samples in one frame.

    Raises:
        ValueError if parameters are invalid.
    """
    if sample_rate_hz <= 0:
        raise ValueError("sample_rate_hz must be > 0")
    if frame_duration_ms <= 0:
        raise ValueError("frame_duration_ms must be > 0")

    n = (sample_rate_hz * frame_duration_ms) // 1000
    if n <= 0:
        raise ValueError("samples_per_frame must be > 0")
    return n


class FrameAligner:
    """Rechunk float32 audio to exact frame boundaries without loss."""

    def __init__(self, frame_size: int) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        self.frame_size = frame_size
        self._buffer = np.zeros(0, dtype=np.float32)

    def add(self, samples: np.ndarray) -> list[np.ndarray]:
        """Add audio and return complete frames, oldest first."""
        chunk = np.asarray(samples, dtype=np.float32).reshape(-1)
        if chunk.size:
            self._buffer = np.concatenate((self._buffer, chunk))

        whole = len(self._buffer) // self.frame_size
        if whole == 0:
            return []

        end = whole * self.frame_size
        frames = [
            self._buffer[offset: offset + self.frame_size].copy()
            for offset in range(0, end, self.frame_size)
        ]
        self._buffer = self._buffer[end:]
        return frames

    @property
    def pending_samples(self) -> int:
        """Samples held back waiting for a complete frame."""
        return len(self._buffer)

    def clear_buffer(self) -> None:
        """Clear the aligner's internal buffer."""
        self._buffer = np.zeros(0, dtype=np.float32)
