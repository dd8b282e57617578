"""
Fixed-ratio streaming resampler for the capture and playback paths.

Capture:  device native rate -> 16kHz wire rate
Playback: 24kHz upstream rate -> device native rate

Audio arrives in small blocks (20 ms capture callbacks, arbitrary inbound
chunks), so the filter state must carry across calls: resampling a stream
block by block yields the same samples as resampling the whole signal at
once with scipy.signal.resample_poly.

Filter model (identical to resample_poly's defaults):
- up/down: rate ratio reduced by gcd
- g: Kaiser-windowed FIR (beta 5.0), 2*half_len + 1 taps, half_len = 10*max(up, down)
- y[n] = sum_m x[m] * g[half_len + n*down - m*up]

Output n needs input up to index (n*down + half_len) // up, so each call
holds back a short lookahead (half_len / up input samples) until the next
block arrives or flush() is called.
"""

from __future__ import annotations

from math import gcd

import numpy as np
from scipy import signal

_KAISER_BETA = 5.0
_HALF_LEN_PER_RATE = 10


class Resampler:
    """
    Converts a float32 mono stream from one fixed sample rate to another.

    One instance per stream. reset() between unrelated streams (new turn,
    reconnection), flush() at the end of a stream to drain the lookahead.
    """

    def __init__(self, src_rate_hz: int, dst_rate_hz: int) -> None:
        if src_rate_hz <= 0 or dst_rate_hz <= 0:
            raise ValueError("sample rates must be > 0")

        self.src_rate_hz = src_rate_hz
        self.dst_rate_hz = dst_rate_hz

        g = gcd(src_rate_hz, dst_rate_hz)
        self._up = dst_rate_hz // g
        self._down = src_rate_hz // g

        max_rate = max(self._up, self._down)
        self._half_len = _HALF_LEN_PER_RATE * max_rate
        self._taps = (
            signal.firwin(2 * self._half_len + 1, 1.0 / max_rate, window=("kaiser", _KAISER_BETA))
            * self._up
        )
        # Inputs contributing to one output, rounded up so every phase fits
        self._span = 2 * self._half_len // self._up + 2

        self.reset()

    @property
    def is_passthrough(self) -> bool:
        """True when source and destination rates match."""
        return self._up == self._down

    @property
    def pending_input(self) -> int:
        """Input samples held as filter history and lookahead."""
        return len(self._buf)

    def reset(self) -> None:
        """Forget the stream: history, lookahead and position."""
        self._buf = np.zeros(0, dtype=np.float32)
        self._buf_start = 0     # stream index of self._buf[0]
        self._received = 0      # input samples seen so far
        self._next_out = 0      # stream index of the next output sample

    def process(self, samples: np.ndarray) -> np.ndarray:
        """
        Feed one block; return every output sample that is now complete.

        Returns float32 clipped to [-1, 1].
        """
        f32 = np.asarray(samples, dtype=np.float32).reshape(-1)
        if self.is_passthrough:
            return f32
        if f32.size == 0:
            return np.zeros(0, dtype=np.float32)

        self._buf = np.concatenate((self._buf, f32))
        self._received += f32.size

        # Largest n with (n*down + half_len) // up <= received - 1
        ready = -(-(self._received * self._up - self._half_len) // self._down)
        return self._emit(max(ready, self._next_out))

    def flush(self) -> np.ndarray:
        """
        End of stream: emit the held-back tail as if the input continued
        with silence, then reset.
        """
        if self.is_passthrough or self._received == 0:
            self.reset()
            return np.zeros(0, dtype=np.float32)

        total = -(-(self._received * self._up) // self._down)
        last_needed = ((total - 1) * self._down + self._half_len) // self._up
        missing = last_needed - (self._received - 1)
        if missing > 0:
            self._buf = np.concatenate((self._buf, np.zeros(missing, dtype=np.float32)))

        out = self._emit(total)
        self.reset()
        return out

    def output_length(self, n_samples: int) -> int:
        """Total output samples for an n-sample stream (after flush)."""
        if self.is_passthrough:
            return n_samples
        return -(-n_samples * self._up // self._down)

    def _emit(self, end: int) -> np.ndarray:
        """Compute outputs [next_out, end) from the buffered input."""
        if end <= self._next_out:
            return np.zeros(0, dtype=np.float32)

        up, down, half_len = self._up, self._down, self._half_len

        n = np.arange(self._next_out, end)
        m_hi = (n * down + half_len) // up
        m = m_hi[:, None] - np.arange(self._span)[None, :]
        k = half_len + n[:, None] * down - m * up

        valid = (m >= 0) & (k <= 2 * half_len)
        local = np.clip(m - self._buf_start, 0, len(self._buf) - 1)
        x = np.where(valid, self._buf[local], 0.0)
        w = np.where(valid, self._taps[np.clip(k, 0, 2 * half_len)], 0.0)
        out = (x * w).sum(axis=1)

        self._next_out = end

        # Keep only the inputs the next output can still reach
        keep_from = max(-(-(end * down - half_len) // up), self._buf_start)
        self._buf = self._buf[keep_from - self._buf_start:]
        self._buf_start = keep_from

        return np.clip(out, -1.0, 1.0).astype(np.float32)
