"""
CONSTANTS
---------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Outbound audio (client -> relay -> upstream): PCM16LE mono @ 16kHz
# =============================================================================

AUDIO_IN_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_IN_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES

AUDIO_IN_MIME_TYPE: Final[str] = f"audio/pcm;rate={AUDIO_IN_SAMPLE_RATE_HZ}"

# =============================================================================
# Inbound audio (upstream -> relay -> client): PCM16LE mono @ 24kHz
# =============================================================================

AUDIO_OUT_SAMPLE_RATE_HZ: Final[int] = 24_000

# Typical device rate when the platform does not report one
DEVICE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 48_000

# PCM16 full scale
PCM16_SCALE: Final[float] = 32768.0
PCM16_MAX: Final[int] = 32767
PCM16_MIN: Final[int] = -32768

# =============================================================================
# Image frames (screen share)
# =============================================================================

IMAGE_FRAME_MIME_TYPE: Final[str] = "image/jpeg"

# =============================================================================
# Upstream service
# =============================================================================

UPSTREAM_WS_URL_DEFAULT: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
UPSTREAM_MODEL_DEFAULT: Final[str] = "models/gemini-2.5-flash-native-audio-preview-12-2025"
UPSTREAM_MEDIA_RESOLUTION: Final[str] = "MEDIA_RESOLUTION_MEDIUM"
UPSTREAM_MAX_MESSAGE_BYTES: Final[int] = 2**24

VOICE_DEFAULT: Final[str] = "Zephyr"

SYSTEM_INSTRUCTION_DEFAULT: Final[str] = """You are a helpful AI assistant having a real-time voice conversation.

Guidelines:
- Speak naturally and conversationally
- Be concise - give direct answers
- Ask clarifying questions if needed

You're having a real-time voice conversation. Respond as if speaking, not writing."""

UPSTREAM_ERROR_MESSAGE_DEFAULT: Final[str] = "Gemini API error"
UPSTREAM_CONNECT_FAILED_MESSAGE: Final[str] = "Connection to AI failed"
UPSTREAM_CLOSED_REASON_DEFAULT: Final[str] = "Connection closed"

# =============================================================================
# Relay handshake
# =============================================================================

# Upper bound on holding the setup message while waiting for `setup_tools`
SETUP_TOOLS_WAIT_MS: Final[int] = 2_000

# Log preview truncation for malformed payloads
PAYLOAD_PREVIEW_CHARS: Final[int] = 100

# =============================================================================
# Client reconnection policy defaults
# =============================================================================

RECONNECT_MAX_ATTEMPTS: Final[int] = 5
RECONNECT_INITIAL_DELAY_MS: Final[int] = 1_000
RECONNECT_MAX_DELAY_MS: Final[int] = 10_000
RECONNECT_BACKOFF_FACTOR: Final[float] = 2.0

# =============================================================================
# Playback / transcripts
# =============================================================================

PLAYBACK_MIN_BUFFER_MS: Final[int] = 200
TRANSCRIPT_DEBOUNCE_MS: Final[int] = 1_500

# =============================================================================
# Voice activity detection defaults
# =============================================================================

VAD_THRESHOLD: Final[float] = 0.5
VAD_MIN_SPEECH_DURATION_MS: Final[int] = 250
VAD_SILENCE_DURATION_MS: Final[int] = 300

# RMS energy that maps to speech probability 1.0 in the energy detector
VAD_ENERGY_FULL_SCALE_RMS: Final[float] = 0.1

# =============================================================================
# Tool calls
# =============================================================================

TOOL_NO_HANDLER_ERROR: Final[str] = "No handler registered for tool calls"

# =============================================================================
# Client-facing error messages
# =============================================================================

RECONNECT_EXHAUSTED_MESSAGE: Final[str] = "Max reconnection attempts reached"
SESSION_CONTEXT_LOST_MESSAGE: Final[str] = (
    "Reconnected with a new session; previous conversation context was lost"
)
RELAY_NOT_CONFIGURED_MESSAGE: Final[str] = "Relay is not configured (HTTP 500)"
