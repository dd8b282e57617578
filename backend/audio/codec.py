"""
Wire codec: float samples <-> PCM16LE bytes <-> base64 text.

Pure, stateless, deterministic.

Invariants:
- PCM16 signed, little-endian, regardless of host byte order
- Mono
- Float samples are clamped to [-1.0, 1.0] before quantization (never wrapped)
"""

from __future__ import annotations

import base64
import binascii

import numpy as np

from constants import PCM16_MAX, PCM16_MIN, PCM16_SCALE

# Explicit little-endian int16; never the platform-native view
_PCM16LE = np.dtype("<i2")


class CodecError(ValueError):
    """Raised when a transport payload cannot be decoded."""


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Convert float samples in [-1.0, 1.0] to PCM16 little-endian bytes.

    Out-of-range values are clamped. NaN is treated as silence.
    """
    f32 = np.asarray(samples, dtype=np.float32)
    if f32.size == 0:
        return b""

    f32 = np.nan_to_num(f32, nan=0.0, posinf=1.0, neginf=-1.0)
    clipped = np.clip(f32, -1.0, 1.0)

    # Same scale as decode; +1.0 saturates at +32767
    scaled = np.round(clipped.astype(np.float64) * PCM16_SCALE)
    ints = np.clip(scaled, PCM16_MIN, PCM16_MAX).astype(_PCM16LE)
    return ints.tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the dangling byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype=_PCM16LE)
    return audio_i16.astype(np.float32) / PCM16_SCALE


def encode_base64(payload: bytes) -> str:
    """Binary -> ASCII base64 text for JSON envelopes."""
    return base64.b64encode(payload).decode("ascii")


def decode_base64(text: str) -> bytes:
    """
    ASCII base64 text -> binary.

    Raises:
        CodecError on invalid input.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CodecError(f"invalid base64 payload: {e}") from e


def parse_pcm_rate(mime_type: str | None, default: int) -> int:
    """
    Extract the sample rate from a mime type like ``audio/pcm;rate=24000``.

    Returns `default` when the parameter is missing or unparsable.
    """
    if not mime_type:
        return default

    for param in mime_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.strip().lower() == "rate":
            try:
                rate = int(value.strip())
            except ValueError:
                return default
            return rate if rate > 0 else default

    return default
