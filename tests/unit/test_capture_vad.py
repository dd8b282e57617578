# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.capture import CapturePipeline, GateState, SpeechGate
from audio.frames import AudioFrame
from audio.vad import EnergyVAD, VadEvent, VadOptions, speech_probability
from constants import AUDIO_BYTES_PER_FRAME_PCM, AUDIO_SAMPLES_PER_FRAME


LOUD = np.full(AUDIO_SAMPLES_PER_FRAME, 0.5, dtype=np.float32)
QUIET = np.zeros(AUDIO_SAMPLES_PER_FRAME, dtype=np.float32)

# 5 frames of speech to confirm, 2 frames of silence to end
SHORT_OPTIONS = VadOptions(threshold=0.5, min_speech_duration_ms=100, silence_duration_ms=40)


@pytest.fixture(autouse=True)
def _silence_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("observability.logger._print", lambda line: None)


def make_pipeline(**kwargs) -> tuple[CapturePipeline, list[AudioFrame]]:
    sent: list[AudioFrame] = []
    pipeline = CapturePipeline(send_frame=sent.append, **kwargs)
    return pipeline, sent


# ---------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------

def test_speech_probability_scales_with_energy():
    assert speech_probability(QUIET) == 0.0
    assert speech_probability(LOUD) == 1.0
    assert speech_probability(np.zeros(0, dtype=np.float32)) == 0.0


def test_vad_reports_start_confirm_end():
    vad = EnergyVAD(SHORT_OPTIONS)

    events: list[VadEvent] = []
    for _ in range(5):
        events.extend(vad.observe(LOUD))
    for _ in range(2):
        events.extend(vad.observe(QUIET))

    assert events == [VadEvent.SPEECH_START, VadEvent.SPEECH_CONFIRMED, VadEvent.SPEECH_END]
    assert not vad.in_speech


def test_vad_short_burst_is_a_misfire():
    vad = EnergyVAD(SHORT_OPTIONS)

    events: list[VadEvent] = []
    for _ in range(3):
        events.extend(vad.observe(LOUD))
    for _ in range(2):
        events.extend(vad.observe(QUIET))

    assert events == [VadEvent.SPEECH_START, VadEvent.MISFIRE]


def test_vad_options_validation():
    with pytest.raises(ValueError):
        VadOptions(threshold=1.5)
    with pytest.raises(ValueError):
        VadOptions(min_speech_duration_ms=-1)
    with pytest.raises(ValueError):
        VadOptions(silence_duration_ms=-1)


# ---------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------

def test_gate_holds_onset_and_releases_in_order_on_confirmation():
    gate = SpeechGate()
    a, b = np.full(4, 0.1, dtype=np.float32), np.full(4, 0.2, dtype=np.float32)

    assert gate.admit(a, [VadEvent.SPEECH_START]) == []
    assert gate.state is GateState.PENDING

    released = gate.admit(b, [VadEvent.SPEECH_CONFIRMED])

    assert [float(f[0]) for f in released] == pytest.approx([0.1, 0.2])
    assert gate.is_open


def test_gate_misfire_discards_held_frames():
    gate = SpeechGate()
    gate.admit(LOUD, [VadEvent.SPEECH_START])

    assert gate.admit(QUIET, [VadEvent.MISFIRE]) == []
    assert gate.state is GateState.CLOSED


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

def test_ungated_pipeline_sends_every_frame_immediately():
    pipeline, sent = make_pipeline()

    frames = pipeline.process(np.zeros(AUDIO_SAMPLES_PER_FRAME * 3, dtype=np.float32))

    assert len(frames) == 3
    assert sent == frames
    assert [f.sequence_num for f in sent] == [1, 2, 3]
    assert all(len(f.pcm_bytes) == AUDIO_BYTES_PER_FRAME_PCM for f in sent)
    assert all(f.sample_rate_hz == 16000 for f in sent)


def test_native_rate_is_resampled_to_16khz_frames():
    pipeline, sent = make_pipeline(input_rate_hz=48000)

    # 20 ms device blocks; the resampler holds back a short lookahead
    for _ in range(3):
        pipeline.process(np.zeros(960, dtype=np.float32))

    assert len(sent) == 2
    assert all(f.num_samples == AUDIO_SAMPLES_PER_FRAME for f in sent)


def test_multichannel_blocks_are_downmixed():
    pipeline, sent = make_pipeline()

    pipeline.process(np.zeros((AUDIO_SAMPLES_PER_FRAME, 2), dtype=np.float32))

    assert len(sent) == 1


def test_muted_pipeline_sends_nothing():
    pipeline, sent = make_pipeline()
    pipeline.set_muted(True)

    pipeline.process(np.zeros(AUDIO_SAMPLES_PER_FRAME * 2, dtype=np.float32))

    assert pipeline.muted
    assert sent == []


def test_vad_misfire_emits_no_audio():
    pipeline, sent = make_pipeline(vad_options=SHORT_OPTIONS)

    for _ in range(3):
        pipeline.process(LOUD)
    for _ in range(4):
        pipeline.process(QUIET)

    assert sent == []
    assert not pipeline.is_user_speaking


def test_vad_confirmed_speech_includes_onset_and_trailing_silence():
    pipeline, sent = make_pipeline(vad_options=SHORT_OPTIONS)

    for _ in range(6):
        pipeline.process(LOUD)
    assert pipeline.is_user_speaking

    for _ in range(4):
        pipeline.process(QUIET)

    # 6 speech frames (5 held then released) + 2 silence frames until the end
    assert len(sent) == 8
    assert [f.sequence_num for f in sent] == list(range(1, 9))
    assert not pipeline.is_user_speaking
