"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No relay logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    SYSTEM_INSTRUCTION_DEFAULT,
    UPSTREAM_MODEL_DEFAULT,
    UPSTREAM_WS_URL_DEFAULT,
    VOICE_DEFAULT,
)


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable relay configuration.

    Constructed once at process startup.
    Passed downward to routes and the session gateway.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Upstream credential (server-side only, never sent to clients)
    # ------------------------------------------------------------------

    google_ai_api_key: str | None

    # ------------------------------------------------------------------
    # Upstream session defaults
    # ------------------------------------------------------------------

    upstream_ws_url: str
    model: str
    default_voice: str
    default_system_instruction: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str
    port: int

    @property
    def has_credential(self) -> bool:
        """True when an upstream API key is configured."""
        return bool(self.google_ai_api_key)

    def upstream_url(self) -> str:
        """
        Full upstream URL including the credential.

        Raises:
            ConfigError if no credential is configured.
        """
        if not self.google_ai_api_key:
            raise ConfigError("GOOGLE_AI_API_KEY not configured")
        return f"{self.upstream_ws_url}?key={self.google_ai_api_key}"

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        A missing GOOGLE_AI_API_KEY is not fatal here: the relay answers
        every upgrade request with HTTP 500 until it is configured.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            google_ai_api_key=os.environ.get("GOOGLE_AI_API_KEY") or None,

            upstream_ws_url=os.environ.get("GEMINI_WS_URL", UPSTREAM_WS_URL_DEFAULT),
            model=os.environ.get("GEMINI_MODEL", UPSTREAM_MODEL_DEFAULT),
            default_voice=os.environ.get("GEMINI_VOICE") or VOICE_DEFAULT,
            default_system_instruction=(
                os.environ.get("GEMINI_SYSTEM_INSTRUCTION") or SYSTEM_INSTRUCTION_DEFAULT
            ),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "8000")),
        )
