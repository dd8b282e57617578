"""
Reconnection retry policy helpers.

Purpose:
- Centralize the exponential backoff rules
- Keep the reducer pure
- Allow the runtime to make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import (
    RECONNECT_BACKOFF_FACTOR,
    RECONNECT_INITIAL_DELAY_MS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_MS,
)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectionPolicy:
    """
    Exponential backoff parameters.

    max_attempts:
        Reconnection attempts allowed per outage (the initial connect is
        not counted).
    initial_delay_ms:
        Delay before the first reconnection attempt.
    max_delay_ms:
        Upper bound for any single delay.
    backoff_factor:
        Multiplier applied for each further attempt.
    """
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    initial_delay_ms: int = RECONNECT_INITIAL_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    backoff_factor: float = RECONNECT_BACKOFF_FACTOR

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be >= 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1")


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 means no reconnection attempt has been made yet.
    - attempt >= 1 means the Nth reconnection attempt is scheduled or in flight.
    - This value is used only for retry policy decisions
      (max attempts, backoff delay), never for control flow.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """
    Advance to the next retry attempt.

    Returns a new RetryAttempt with attempt incremented by 1.
    """
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


def should_retry(*, policy: ReconnectionPolicy, attempt: RetryAttempt) -> bool:
    """
    Returns True if another reconnection attempt is allowed.

    attempt = number of reconnection attempts already made
    """
    return attempt.attempt < policy.max_attempts


# =============================================================================
# Delay Calculation
# =============================================================================

def get_retry_delay_ms(*, policy: ReconnectionPolicy, attempt: RetryAttempt) -> int:
    """
    Returns the delay before reconnection attempt N (1-based).

    delay(N) = min(initial * factor ** (N - 1), max)
    """
    n = max(attempt.attempt, 1)
    delay = policy.initial_delay_ms * policy.backoff_factor ** (n - 1)
    return int(min(delay, policy.max_delay_ms))
