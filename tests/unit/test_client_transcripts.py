# pylint: disable=missing-module-docstring,missing-function-docstring

import itertools

import pytest

from client.transcripts import Role, Transcript, TranscriptAggregator


def make(**kwargs) -> tuple[TranscriptAggregator, list[Transcript]]:
    finalized: list[Transcript] = []
    counter = itertools.count(1)
    aggregator = TranscriptAggregator(
        debounce_ms=1500,
        on_transcript=finalized.append,
        clock_ms=lambda: 0,
        id_factory=lambda: f"t{next(counter)}",
        **kwargs,
    )
    return aggregator, finalized


# ---------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------

def test_fragments_accumulate_until_quiet_period():
    aggregator, finalized = make()

    aggregator.add_fragment(Role.ASSISTANT, "Hel", now_ms=0)
    aggregator.add_fragment(Role.ASSISTANT, "lo ", now_ms=1000)

    assert aggregator.tick(now_ms=2000) == []
    assert aggregator.streaming_text(Role.ASSISTANT) == "Hello "

    (transcript,) = aggregator.tick(now_ms=2500)

    assert transcript.text == "Hello "
    assert transcript.role is Role.ASSISTANT
    assert transcript.id == "t1"
    assert finalized == [transcript]
    assert aggregator.streaming_text(Role.ASSISTANT) is None


def test_each_fragment_rearms_the_timer():
    aggregator, _ = make()

    aggregator.add_fragment(Role.USER, "a", now_ms=0)
    assert aggregator.next_deadline_ms() == 1500

    aggregator.add_fragment(Role.USER, "b", now_ms=1400)
    assert aggregator.next_deadline_ms() == 2900


def test_roles_are_debounced_independently():
    aggregator, _ = make()

    aggregator.add_fragment(Role.USER, "hi", now_ms=0)
    aggregator.add_fragment(Role.ASSISTANT, "hello", now_ms=1000)

    (user,) = aggregator.tick(now_ms=1500)

    assert user.role is Role.USER
    assert aggregator.streaming_text(Role.ASSISTANT) == "hello"
    assert aggregator.next_deadline_ms() == 2500


def test_turn_complete_finalizes_immediately():
    aggregator, finalized = make()

    aggregator.add_fragment(Role.ASSISTANT, "Hel", now_ms=0)
    aggregator.add_fragment(Role.ASSISTANT, "lo ", now_ms=10)
    aggregator.flush_all()

    assert [t.text for t in finalized] == ["Hello "]
    # The timer was disarmed: nothing fires later
    assert aggregator.tick(now_ms=10_000) == []
    assert aggregator.next_deadline_ms() is None


def test_flush_orders_user_before_assistant():
    aggregator, _ = make()

    aggregator.add_fragment(Role.ASSISTANT, "answer", now_ms=0)
    aggregator.add_fragment(Role.USER, "question", now_ms=0)

    assert [t.role for t in aggregator.flush_all()] == [Role.USER, Role.ASSISTANT]


def test_whitespace_only_buffer_is_not_finalized():
    aggregator, finalized = make()

    aggregator.add_fragment(Role.USER, "  ", now_ms=0)

    assert aggregator.tick(now_ms=1500) == []
    assert finalized == []


def test_empty_fragment_does_not_arm_timer():
    aggregator, _ = make()
    aggregator.add_fragment(Role.USER, "", now_ms=0)
    assert aggregator.next_deadline_ms() is None


# ---------------------------------------------------------------------
# Observables / reset
# ---------------------------------------------------------------------

def test_transcripts_accumulate_in_order_and_clear():
    aggregator, _ = make()

    for i, text in enumerate(("one", "two")):
        aggregator.add_fragment(Role.USER, text, now_ms=i * 10_000)
        aggregator.tick(now_ms=i * 10_000 + 1500)

    assert [t.text for t in aggregator.transcripts] == ["one", "two"]

    aggregator.clear()
    assert aggregator.transcripts == ()


def test_reset_drops_pending_text():
    aggregator, finalized = make()
    aggregator.add_fragment(Role.ASSISTANT, "partial", now_ms=0)

    aggregator.reset()

    assert aggregator.streaming_text(Role.ASSISTANT) is None
    assert aggregator.flush_all() == []
    assert finalized == []


def test_logical_clock_is_used_when_now_is_omitted():
    now = [0]
    aggregator = TranscriptAggregator(debounce_ms=100, clock_ms=lambda: now[0])

    aggregator.add_fragment(Role.USER, "x")
    now[0] = 99
    assert aggregator.tick() == []
    now[0] = 100
    assert len(aggregator.tick()) == 1


def test_negative_debounce_raises():
    with pytest.raises(ValueError):
        TranscriptAggregator(debounce_ms=-1)
