# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from config import AppConfig
from observability import logger


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        env="test",
        log_level="INFO",
        google_ai_api_key="test-key",
        upstream_ws_url="wss://upstream.invalid/ws",
        model="models/test-model",
        default_voice="Zephyr",
        default_system_instruction="You are a test assistant.",
        enable_json_logs=True,
        host="127.0.0.1",
        port=8000,
    )


@pytest.fixture
def log_events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Capture every JSONL event emitted through observability.logger."""
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: captured.append(json.loads(line)))
    monkeypatch.setattr(logger, "_enabled", True)
    return captured
