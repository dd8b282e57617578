"""
Debounced transcript aggregation.

Transcription arrives as a stream of small fragments per speaker. The
aggregator appends fragments to a per-role buffer and finalizes the buffer
into an immutable Transcript once the role has been quiet for the debounce
window.

Timer model (one timer per role, no wall-clock inside):
- Each fragment (re)arms the role's timer: armed at T, fires at T + delay
- tick(now) finalizes every role whose deadline has passed
- flush_all() (turn complete) finalizes every role immediately

The caller drives tick() from a real timer; tests pass a logical clock.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from constants import TRANSCRIPT_DEBOUNCE_MS


class Role(str, Enum):
    """Who said it."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Transcript:
    """A finalized utterance. Never mutated after creation."""
    id: str
    role: Role
    text: str
    timestamp: datetime


@dataclass
class _RoleBuffer:
    text: str = ""
    armed_at_ms: int | None = None
    deadline_ms: int | None = None

    def clear(self) -> None:
        self.text = ""
        self.armed_at_ms = None
        self.deadline_ms = None


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def _new_transcript_id() -> str:
    return f"tr_{uuid.uuid4().hex[:12]}"


class TranscriptAggregator:
    """
    Per-role fragment accumulator with debounce finalization.

    Finalized transcripts are kept in order and also passed to
    `on_transcript` as they are created.
    """

    def __init__(
        self,
        *,
        debounce_ms: int = TRANSCRIPT_DEBOUNCE_MS,
        on_transcript: Callable[[Transcript], None] | None = None,
        clock_ms: Callable[[], int] = _monotonic_ms,
        id_factory: Callable[[], str] = _new_transcript_id,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")

        self._debounce_ms = debounce_ms
        self._on_transcript = on_transcript
        self._clock_ms = clock_ms
        self._id_factory = id_factory

        self._buffers: dict[Role, _RoleBuffer] = {role: _RoleBuffer() for role in Role}
        self._transcripts: list[Transcript] = []

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def add_fragment(self, role: Role, text: str, now_ms: int | None = None) -> None:
        """Append a fragment and (re)arm the role's debounce timer."""
        if not text:
            return

        now = self._clock_ms() if now_ms is None else now_ms
        buf = self._buffers[role]
        buf.text += text
        buf.armed_at_ms = now
        buf.deadline_ms = now + self._debounce_ms

    def tick(self, now_ms: int | None = None) -> list[Transcript]:
        """Finalize every role whose timer has fired by `now_ms`."""
        now = self._clock_ms() if now_ms is None else now_ms
        out: list[Transcript] = []
        for role in Role:
            deadline = self._buffers[role].deadline_ms
            if deadline is not None and deadline <= now:
                transcript = self._finalize(role)
                if transcript is not None:
                    out.append(transcript)
        return out

    def flush_all(self) -> list[Transcript]:
        """Finalize both roles immediately (turn complete)."""
        out: list[Transcript] = []
        for role in Role:
            transcript = self._finalize(role)
            if transcript is not None:
                out.append(transcript)
        return out

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def transcripts(self) -> tuple[Transcript, ...]:
        return tuple(self._transcripts)

    def streaming_text(self, role: Role) -> str | None:
        """Unfinalized text for `role`, or None when nothing is pending."""
        return self._buffers[role].text or None

    def next_deadline_ms(self) -> int | None:
        """Earliest armed deadline across roles (None when no timer is armed)."""
        deadlines = [b.deadline_ms for b in self._buffers.values() if b.deadline_ms is not None]
        return min(deadlines) if deadlines else None

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Forget finalized transcripts (pending buffers are kept)."""
        self._transcripts.clear()

    def reset(self) -> None:
        """Drop pending buffers and disarm all timers."""
        for buf in self._buffers.values():
            buf.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, role: Role) -> Transcript | None:
        buf = self._buffers[role]
        text = buf.text
        buf.clear()

        if not text.strip():
            return None

        transcript = Transcript(
            id=self._id_factory(),
            role=role,
            text=text,
            timestamp=datetime.now(timezone.utc),
        )
        self._transcripts.append(transcript)

        if self._on_transcript is not None:
            self._on_transcript(transcript)
        return transcript
