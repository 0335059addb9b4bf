"""Tests for the individual tempo algorithms."""

import threading

import numpy as np
import pytest

from tempofuse.analysis.algorithms import (
    AutocorrelationAlgorithm,
    BeatTrackerAlgorithm,
    OnsetAlgorithm,
    PlpAlgorithm,
    SpectralAlgorithm,
    WaveletEnergyAlgorithm,
    build_algorithms,
)
from tempofuse.analysis.algorithms.wavelet import haar_bands
from tempofuse.analysis.models import AudioWindow, DetectionContext
from tests.conftest import generate_click_track, make_window

ALL = [
    OnsetAlgorithm,
    AutocorrelationAlgorithm,
    SpectralAlgorithm,
    WaveletEnergyAlgorithm,
    BeatTrackerAlgorithm,
    PlpAlgorithm,
]

# The tempogram resolves a few BPM per bin over a 6 s window.
TOLERANCE = {PlpAlgorithm: 4.0}


@pytest.mark.parametrize("algorithm_cls", ALL)
def test_click_track_120(algorithm_cls, context, click_120):
    reading = algorithm_cls().evaluate(make_window(click_120), context)
    assert reading is not None
    assert reading.algorithm_id == algorithm_cls.algorithm_id
    assert abs(reading.bpm - 120) < TOLERANCE.get(algorithm_cls, 3.0), f"{reading.algorithm_id}: {reading.bpm:.1f} BPM"
    assert 0.0 < reading.confidence <= 1.0


@pytest.mark.parametrize("algorithm_cls", [OnsetAlgorithm, AutocorrelationAlgorithm])
def test_click_track_90(algorithm_cls, context, click_90):
    reading = algorithm_cls().evaluate(make_window(click_90), context)
    assert reading is not None
    # A tempo twice as fast is the only acceptable confusion here.
    assert min(abs(reading.bpm - 90), abs(reading.bpm - 180)) < 3


@pytest.mark.parametrize("algorithm_cls", ALL)
def test_silence_abstains(algorithm_cls, context, silence):
    assert algorithm_cls().evaluate(make_window(silence), context) is None


@pytest.mark.parametrize("algorithm_cls", ALL)
def test_cancelled_window_abstains(algorithm_cls, context, click_120):
    cancel = threading.Event()
    cancel.set()
    assert algorithm_cls().evaluate(make_window(click_120), context, cancel) is None


@pytest.mark.parametrize("algorithm_cls", ALL)
def test_reading_within_range(algorithm_cls, context):
    audio = generate_click_track(bpm=150, duration_seconds=6)
    reading = algorithm_cls().evaluate(make_window(audio, start_time=3.0), context)
    if reading is not None:
        assert context.min_bpm <= reading.bpm <= context.max_bpm
        assert reading.timestamp == pytest.approx(9.0)


def test_algorithms_are_stateless(context, click_120):
    algorithm = AutocorrelationAlgorithm()
    first = algorithm.evaluate(make_window(click_120), context)
    second = algorithm.evaluate(make_window(click_120), context)
    assert first.bpm == second.bpm
    assert first.confidence == second.confidence


def test_out_of_range_estimate_is_moved_by_harmonic(context, click_120):
    algorithm = AutocorrelationAlgorithm()
    reading = algorithm._reading(240.0, 0.7, make_window(click_120), context, lag=25.0)
    assert reading.bpm == pytest.approx(120.0)
    assert reading.metadata["raw_bpm"] == pytest.approx(240.0)
    assert reading.metadata["range_multiplier"] == 0.5
    assert reading.metadata["lag"] == 25.0


def test_estimate_without_harmonic_in_range_abstains(context, click_120):
    assert AutocorrelationAlgorithm()._reading(10.0, 0.7, make_window(click_120), context) is None


def test_haar_bands_split_energy():
    rng = np.random.default_rng(1)
    signal = rng.standard_normal(1024)
    bands = haar_bands(signal, levels=3)
    assert len(bands) == 4
    assert [len(b) for b in bands] == [512, 256, 128, 128]
    total = sum(float(np.sum(b ** 2)) for b in bands)
    assert total == pytest.approx(float(np.sum(signal ** 2)), rel=1e-6)


def test_wavelet_levels_validated():
    with pytest.raises(ValueError):
        WaveletEnergyAlgorithm(levels=0)


def test_build_algorithms_keeps_order():
    algorithms = build_algorithms(["spectral", "onset"], wavelet_levels=3)
    assert [a.algorithm_id for a in algorithms] == ["spectral", "onset"]
    wavelet = build_algorithms(["wavelet"], wavelet_levels=3)[0]
    assert wavelet.levels == 3


def test_build_algorithms_rejects_unknown():
    with pytest.raises(ValueError, match="unknown algorithm"):
        build_algorithms(["onset", "neural"])


def test_onset_strength_computed_once_per_window(context, click_120, monkeypatch):
    import librosa

    calls = []
    original = librosa.onset.onset_strength

    def counting(*args, **kwargs):
        calls.append(kwargs.get("hop_length"))
        return original(*args, **kwargs)

    monkeypatch.setattr(librosa.onset, "onset_strength", counting)
    window = make_window(click_120)
    for algorithm in (SpectralAlgorithm(), BeatTrackerAlgorithm(), PlpAlgorithm()):
        assert algorithm.evaluate(window, context) is not None
    assert calls == [512]


def test_window_feature_is_read_only():
    window = AudioWindow(samples=np.zeros(8), start_time=0.0, sample_rate=8)
    first = window.feature(("double",), lambda: np.arange(4.0))
    second = window.feature(("double",), lambda: np.zeros(4))
    assert second is first
    assert not first.flags.writeable


def test_onset_handles_sample_rate_below_filter_cutoff():
    ctx = DetectionContext(sample_rate=64, min_bpm=60, max_bpm=200, window_duration=6.0)
    noise = np.random.default_rng(3).standard_normal(6 * 64).astype(np.float32)
    window = AudioWindow(samples=noise, start_time=0.0, sample_rate=64)
    reading = OnsetAlgorithm().evaluate(window, ctx)
    if reading is not None:
        assert ctx.min_bpm <= reading.bpm <= ctx.max_bpm


def test_build_algorithms_includes_beat_tracking_variants():
    algorithms = build_algorithms(["dp_beat_tracker", "plp_tempogram"])
    assert [type(a) for a in algorithms] == [BeatTrackerAlgorithm, PlpAlgorithm]
