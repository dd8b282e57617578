"""
Gapless playback scheduling.

Requirements:
- Chunks play back-to-back on a shared timeline: chunk n+1 starts exactly
  when chunk n ends (never before, never overlapping)
- Nothing plays until a minimum pre-roll duration is buffered
- Chunks are never reordered; the scheduler may only delay
- Teardown discards pending chunks and resets the cursor

The scheduler owns no device. It decides *when* each chunk plays and hands
released chunks to a sink (see audio.devices.SpeakerOutput).
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque

import numpy as np

from constants import PLAYBACK_MIN_BUFFER_MS


@dataclass(frozen=True)
class ScheduledChunk:
    """
    A chunk released for playback.

    index:
        Monotonic release index (arrival order).
    start_s / end_s:
        Position on the scheduler clock's timeline.
    """
    index: int
    samples: np.ndarray
    start_s: float
    end_s: float

    @property
    def duration_s(self) -> float:
        """Chunk duration in seconds."""
        return self.end_s - self.start_s


class PlaybackScheduler:
    """
    Chains decoded audio chunks on a monotonically advancing cursor.

    Buffering rules:
    - Before playback starts (or after the timeline has drained), chunks are
      withheld until `min_buffer_ms` of audio is pending, then released
      together as one chained run.
    - While playing, each chunk is released immediately and starts at the
      previous chunk's end.
    - flush() releases withheld audio early (end of a short turn).
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int,
        min_buffer_ms: int = PLAYBACK_MIN_BUFFER_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if min_buffer_ms < 0:
            raise ValueError("min_buffer_ms must be >= 0")

        self.sample_rate_hz = sample_rate_hz
        self._min_buffer_s = min_buffer_ms / 1000.0
        self._clock = clock

        self._pending: Deque[np.ndarray] = deque()
        self._pending_s: float = 0.0
        self._cursor_s: float | None = None
        self._next_index: int = 0

    # -------------------------
    # Core operations
    # -------------------------

    def enqueue(self, samples: np.ndarray) -> list[ScheduledChunk]:
        """
        Append a decoded chunk (already at sample_rate_hz).

        Returns:
            Chunks released for playback by this call (possibly empty).
        """
        chunk = np.asarray(samples, dtype=np.float32).reshape(-1)
        if chunk.size == 0:
            return []

        self._pending.append(chunk)
        self._pending_s += chunk.size / self.sample_rate_hz

        if self.is_playing() or self._pending_s >= self._min_buffer_s:
            return self._release()
        return []

    def flush(self) -> list[ScheduledChunk]:
        """Release all withheld chunks regardless of the pre-roll threshold."""
        return self._release()

    def reset(self) -> int:
        """
        Discard all pending chunks and reset the cursor.

        Returns:
            Number of discarded chunks.
        """
        dropped = len(self._pending)
        self._pending.clear()
        self._pending_s = 0.0
        self._cursor_s = None
        return dropped

    # -------------------------
    # Introspection helpers
    # -------------------------

    def is_playing(self) -> bool:
        """True while released audio is still ahead of the clock."""
        return self._cursor_s is not None and self._cursor_s > self._clock()

    @property
    def next_start_s(self) -> float | None:
        """Cursor: where the next released chunk will start (None before first release)."""
        return self._cursor_s

    @property
    def buffered_s(self) -> float:
        """Withheld (not yet released) audio in seconds."""
        return self._pending_s

    def __len__(self) -> int:
        return len(self._pending)

    def snapshot(self) -> dict[str, float | int | None]:
        """Lightweight snapshot for logging."""
        return {
            "pending_chunks": len(self._pending),
            "buffered_s": self._pending_s,
            "next_start_s": self._cursor_s,
            "released": self._next_index,
        }

    # -------------------------
    # Internals
    # -------------------------

    def _release(self) -> list[ScheduledChunk]:
        now = self._clock()
        cursor = now if self._cursor_s is None else max(self._cursor_s, now)

        out: list[ScheduledChunk] = []
        while self._pending:
            chunk = self._pending.popleft()
            end = cursor + chunk.size / self.sample_rate_hz
            out.append(
                ScheduledChunk(
                    index=self._next_index,
                    samples=chunk,
                    start_s=cursor,
                    end_s=end,
                )
            )
            self._next_index += 1
            cursor = end

        self._pending_s = 0.0
        if out:
            self._cursor_s = cursor
        return out
