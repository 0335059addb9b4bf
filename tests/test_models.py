"""Tests for the core data models and configuration."""

import numpy as np
import pytest

from tempofuse.analysis.models import (
    AlgorithmHistory,
    AudioWindow,
    ConsensusSettings,
    DetectionContext,
)
from tempofuse.config import Settings


def test_window_length_from_context():
    ctx = DetectionContext(sample_rate=44100, min_bpm=60, max_bpm=200, window_duration=6.0)
    assert ctx.window_length == 264600


@pytest.mark.parametrize("kwargs", [
    dict(sample_rate=0, min_bpm=60, max_bpm=200, window_duration=6.0),
    dict(sample_rate=44100.5, min_bpm=60, max_bpm=200, window_duration=6.0),
    dict(sample_rate=44100, min_bpm=200, max_bpm=60, window_duration=6.0),
    dict(sample_rate=44100, min_bpm=120, max_bpm=120, window_duration=6.0),
    dict(sample_rate=44100, min_bpm=-10, max_bpm=200, window_duration=6.0),
    dict(sample_rate=44100, min_bpm=60, max_bpm=200, window_duration=0.0),
])
def test_invalid_context_rejected(kwargs):
    with pytest.raises(ValueError):
        DetectionContext(**kwargs)


def test_context_range_helpers():
    ctx = DetectionContext(sample_rate=1000, min_bpm=60, max_bpm=200, window_duration=2.0)
    assert ctx.contains(60) and ctx.contains(200)
    assert not ctx.contains(59.9)
    assert ctx.clamp(250) == 200
    assert ctx.clamp(10) == 60


@pytest.mark.parametrize("kwargs", [
    dict(history_size=0),
    dict(history_size=2, min_readings_for_outlier_detection=3),
    dict(algorithm_outlier_threshold=0),
    dict(cluster_tolerance=-1),
    dict(min_cluster_size=0),
    dict(smoothing_factor=0.0),
    dict(smoothing_factor=1.5),
])
def test_invalid_consensus_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        ConsensusSettings(**kwargs)


def test_audio_window_is_a_read_only_copy():
    samples = np.linspace(-1, 1, 1000, dtype=np.float32)
    window = AudioWindow(samples=samples, start_time=2.0, sample_rate=500)
    samples[0] = 0.5
    assert window.samples[0] == pytest.approx(-1.0)
    with pytest.raises(ValueError):
        window.samples[0] = 0.0
    assert len(window) == 1000
    assert window.duration == pytest.approx(2.0)
    assert window.end_time == pytest.approx(4.0)


def test_history_is_bounded():
    history = AlgorithmHistory(max_size=3)
    assert history.median is None
    for bpm in (100, 120, 121, 119):
        history.append(bpm)
    assert len(history) == 3
    assert history.values == [120.0, 121.0, 119.0]
    assert history.median == pytest.approx(120.0)


def test_settings_build_context_and_consensus():
    config = Settings(sample_rate=44100, window_duration=6.0, hop_duration=4.0, history_size=5,
                      min_readings_for_outlier_detection=2)
    ctx = config.detection_context()
    assert ctx.window_length == 264600
    assert config.consensus_settings().history_size == 5


def test_settings_reject_hop_longer_than_window():
    with pytest.raises(ValueError):
        Settings(window_duration=4.0, hop_duration=5.0)


def test_settings_reject_unknown_consensus():
    with pytest.raises(ValueError):
        Settings(consensus="majority")


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("TEMPOFUSE_MIN_BPM", "70")
    monkeypatch.setenv("TEMPOFUSE_CONSENSUS", "baseline")
    config = Settings()
    assert config.min_bpm == 70
    assert config.consensus == "baseline"
