"""
Audio device handles (sounddevice / PortAudio).

Ownership rules:
- MicrophoneInput exclusively owns the input stream for a session's lifetime
- SpeakerOutput exclusively owns the output stream
- Both expose an explicit close() that is safe to call on every exit path

PortAudio callbacks run on a C thread; captured blocks are handed to the
event loop with call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import Any, Callable, Deque

import numpy as np
import sounddevice as sd

from audio.capture import CaptureError
from audio.playback import ScheduledChunk
from constants import AUDIO_FRAME_MS, AUDIO_IN_SAMPLE_RATE_HZ, DEVICE_SAMPLE_RATE_HZ_DEFAULT
from observability.logger import log_event


def _default_rate(kind: str, device: int | str | None) -> int:
    info = sd.query_devices(device, kind)
    rate = int(info.get("default_samplerate") or 0)
    return rate if rate > 0 else DEVICE_SAMPLE_RATE_HZ_DEFAULT


class MicrophoneInput:
    """
    Microphone stream handle.

    Captures at 16kHz when the device accepts it, otherwise at the device's
    native rate (the capture pipeline resamples).
    """

    def __init__(
        self,
        *,
        on_block: Callable[[np.ndarray], None],
        loop: asyncio.AbstractEventLoop,
        device: int | str | None = None,
    ) -> None:
        self._on_block = on_block
        self._loop = loop
        self._device = device
        self._stream: sd.InputStream | None = None
        self.sample_rate_hz: int = AUDIO_IN_SAMPLE_RATE_HZ

    @property
    def is_open(self) -> bool:
        """True while the stream is running."""
        return self._stream is not None

    def open(self) -> int:
        """
        Acquire the device and start capture.

        Returns:
            The capture sample rate actually used.

        Raises:
            CaptureError if the device is denied or unavailable.
        """
        if self._stream is not None:
            return self.sample_rate_hz

        try:
            try:
                sd.check_input_settings(
                    device=self._device,
                    channels=1,
                    dtype="float32",
                    samplerate=AUDIO_IN_SAMPLE_RATE_HZ,
                )
                rate = AUDIO_IN_SAMPLE_RATE_HZ
            except (sd.PortAudioError, ValueError):
                rate = _default_rate("input", self._device)

            stream = sd.InputStream(
                device=self._device,
                samplerate=rate,
                channels=1,
                dtype="float32",
                blocksize=(rate * AUDIO_FRAME_MS) // 1000,
                callback=self._callback,
                latency="low",
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureError(f"microphone unavailable: {e}") from e

        self._stream = stream
        self.sample_rate_hz = rate
        log_event({
            "event_type": "MIC_OPENED",
            "sample_rate_hz": rate,
            "device": self._device,
        })
        return rate

    def close(self) -> None:
        """Stop capture and release the device. Idempotent."""
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        log_event({"event_type": "MIC_CLOSED"})

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        if status:
            self._loop.call_soon_threadsafe(
                log_event, {"event_type": "MIC_STATUS", "status": str(status)}
            )
        block = indata[:, 0].copy()
        self._loop.call_soon_threadsafe(self._on_block, block)


class SpeakerOutput:
    """
    Playback stream handle.

    Runs at the device's native rate. Released chunks are written back to
    back in submission order; the callback fills silence when starved.
    """

    def __init__(self, *, device: int | str | None = None) -> None:
        self._device = device
        self._stream: sd.OutputStream | None = None
        self._chunks: Deque[np.ndarray] = deque()
        self._offset = 0
        self._lock = threading.Lock()
        self.sample_rate_hz: int = DEVICE_SAMPLE_RATE_HZ_DEFAULT

    def open(self) -> int:
        """
        Acquire the output device and start the stream.

        Returns:
            The device sample rate (resample playback audio to it).
        """
        if self._stream is not None:
            return self.sample_rate_hz

        try:
            rate = _default_rate("output", self._device)
            stream = sd.OutputStream(
                device=self._device,
                samplerate=rate,
                channels=1,
                dtype="float32",
                callback=self._callback,
                latency="low",
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureError(f"speaker unavailable: {e}") from e

        self._stream = stream
        self.sample_rate_hz = rate
        log_event({"event_type": "SPEAKER_OPENED", "sample_rate_hz": rate})
        return rate

    def submit(self, chunk: ScheduledChunk) -> None:
        """Queue a released chunk behind everything already submitted."""
        with self._lock:
            self._chunks.append(chunk.samples)

    def clear(self) -> None:
        """Drop everything not yet played."""
        with self._lock:
            self._chunks.clear()
            self._offset = 0

    def close(self) -> None:
        """Stop playback and release the device. Idempotent."""
        self.clear()
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        log_event({"event_type": "SPEAKER_CLOSED"})

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        out = outdata[:, 0]
        written = 0
        with self._lock:
            while written < frames and self._chunks:
                head = self._chunks[0]
                take = min(frames - written, len(head) - self._offset)
                out[written: written + take] = head[self._offset: self._offset + take]
                written += take
                self._offset += take
                if self._offset >= len(head):
                    self._chunks.popleft()
                    self._offset = 0
        out[written:] = 0.0
