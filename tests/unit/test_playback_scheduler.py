# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.playback import PlaybackScheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def chunk(n: int) -> np.ndarray:
    return np.zeros(n, dtype=np.float32)


def make(clock: FakeClock, min_buffer_ms: int = 200) -> PlaybackScheduler:
    # 1 kHz keeps sample counts readable: 100 samples = 100 ms
    return PlaybackScheduler(sample_rate_hz=1000, min_buffer_ms=min_buffer_ms, clock=clock)


# ---------------------------------------------------------------------
# Pre-roll
# ---------------------------------------------------------------------

def test_withholds_until_min_buffer_reached():
    clock = FakeClock()
    scheduler = make(clock)

    assert scheduler.enqueue(chunk(100)) == []
    assert scheduler.buffered_s == pytest.approx(0.1)
    assert not scheduler.is_playing()

    released = scheduler.enqueue(chunk(100))

    assert [c.index for c in released] == [0, 1]
    assert scheduler.buffered_s == 0.0
    assert scheduler.is_playing()


def test_flush_releases_short_turn_early():
    clock = FakeClock()
    scheduler = make(clock)
    scheduler.enqueue(chunk(50))

    released = scheduler.flush()

    assert len(released) == 1
    assert released[0].start_s == 0.0
    assert released[0].end_s == pytest.approx(0.05)


# ---------------------------------------------------------------------
# Gapless chaining
# ---------------------------------------------------------------------

def test_chunks_chain_back_to_back():
    clock = FakeClock()
    scheduler = make(clock, min_buffer_ms=0)

    released = []
    for n in (100, 40, 60):
        released.extend(scheduler.enqueue(chunk(n)))
        clock.now += 0.01

    starts = [c.start_s for c in released]
    ends = [c.end_s for c in released]

    assert starts[0] == 0.0
    assert starts[1:] == pytest.approx(ends[:-1])
    assert scheduler.next_start_s == pytest.approx(0.2)


def test_chunk_released_while_playing_skips_pre_roll():
    clock = FakeClock()
    scheduler = make(clock)
    scheduler.enqueue(chunk(200))

    clock.now = 0.1
    released = scheduler.enqueue(chunk(10))

    assert len(released) == 1
    assert released[0].start_s == pytest.approx(0.2)


def test_cursor_never_schedules_in_the_past():
    clock = FakeClock()
    scheduler = make(clock)
    scheduler.enqueue(chunk(200))

    # Timeline drained; new audio needs a fresh pre-roll and starts at "now"
    clock.now = 5.0
    assert not scheduler.is_playing()
    assert scheduler.enqueue(chunk(100)) == []

    released = scheduler.enqueue(chunk(100))
    assert released[0].start_s == 5.0


# ---------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------

def test_reset_discards_pending_and_cursor():
    clock = FakeClock()
    scheduler = make(clock)
    scheduler.enqueue(chunk(200))
    scheduler.enqueue(chunk(10))
    scheduler.enqueue(chunk(10))

    clock.now = 10.0
    scheduler.enqueue(chunk(50))

    assert scheduler.reset() == 1
    assert scheduler.next_start_s is None
    assert len(scheduler) == 0
    assert not scheduler.is_playing()


def test_invalid_parameters_raise():
    with pytest.raises(ValueError):
        PlaybackScheduler(sample_rate_hz=0)
    with pytest.raises(ValueError):
        PlaybackScheduler(sample_rate_hz=24000, min_buffer_ms=-1)
