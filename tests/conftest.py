"""Shared test fixtures for live tempo detection tests."""

import threading

import numpy as np
import pytest
from fastapi.testclient import TestClient

from tempofuse.analysis.algorithms import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.main import app


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def generate_click_track(
    bpm: float,
    duration_seconds: float = 10.0,
    sr: int = 22050,
    beats_per_bar: int = 4,
    accent_ratio: float = 2.0,
) -> np.ndarray:
    """Generate a synthetic click track with accented downbeats.

    Returns mono float32 audio at the given sample rate.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm  # seconds per beat
    click_duration = 0.02  # 20ms click
    click_samples = int(click_duration * sr)

    # Short sine burst with exponential decay
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    beat = 0
    time = 0.0
    while time < duration_seconds:
        sample_pos = int(time * sr)
        amplitude = accent_ratio if beat % beats_per_bar == 0 else 1.0

        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude

        time += beat_interval
        beat += 1

    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak

    return audio.astype(np.float32)


def make_window(audio: np.ndarray, sr: int = 22050, start_time: float = 0.0, index: int = 0) -> AudioWindow:
    return AudioWindow(samples=audio, start_time=start_time, sample_rate=sr, index=index)


def reading(algorithm_id: str, bpm: float, confidence: float = 0.8) -> BpmReading:
    return BpmReading(algorithm_id=algorithm_id, bpm=bpm, confidence=confidence, timestamp=0.0)


class FixedAlgorithm(TempoAlgorithm):
    """Test double: always reports the same BPM, optionally slowly or by raising."""

    def __init__(self, algorithm_id: str, bpm: float | None = 120.0, confidence: float = 0.8,
                 delay: float = 0.0, error: Exception | None = None):
        self.algorithm_id = algorithm_id
        self.label = algorithm_id.title()
        self.bpm = bpm
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.windows: list[AudioWindow] = []
        self.started = threading.Event()
        self.cancelled = False

    def evaluate(self, window, context, cancel=None):
        self.windows.append(window)
        self.started.set()
        if self.delay:
            waiter = cancel if cancel is not None else threading.Event()
            if waiter.wait(self.delay):
                self.cancelled = True
                return None
        if self.error is not None:
            raise self.error
        if self.bpm is None:
            return None
        return BpmReading(
            algorithm_id=self.algorithm_id,
            bpm=self.bpm,
            confidence=self.confidence,
            timestamp=window.end_time,
            label=self.label,
        )


@pytest.fixture
def context():
    """22.05 kHz, 60-200 BPM, 6 s windows."""
    return DetectionContext(sample_rate=22050, min_bpm=60, max_bpm=200, window_duration=6.0)


@pytest.fixture
def click_120():
    """Click track at 120 BPM, 8 seconds."""
    return generate_click_track(bpm=120, duration_seconds=8)


@pytest.fixture
def click_90():
    """Click track at 90 BPM, 8 seconds."""
    return generate_click_track(bpm=90, duration_seconds=8)


@pytest.fixture
def silence():
    return np.zeros(22050 * 6, dtype=np.float32)
