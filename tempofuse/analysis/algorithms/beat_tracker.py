"""Dynamic-programming beat tracking."""

import threading

import librosa
import numpy as np
from scipy.stats import trim_mean

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import is_silent


class BeatTrackerAlgorithm(TempoAlgorithm):
    """Tempo from the beat sequence picked by librosa's DP beat tracker.

    The tracker (Ellis 2007) chooses the beat times that maximise onset
    strength under a penalty for deviating from a steady period. The tempo
    is the trimmed mean of the resulting beat intervals, so it follows the
    audio rather than the tracker's tempo prior. Confidence blends how much
    stronger the onsets are on the beats than elsewhere with how regular
    the intervals are.
    """

    algorithm_id = "dp_beat_tracker"
    label = "DP Beat Tracker"

    def __init__(
        self,
        n_fft: int = 2048,
        hop_length: int = 512,
        tightness: float = 100.0,
        min_beats: int = 3,
        max_analysis_seconds: float = 8.0,
        min_confidence: float = 0.3,
    ):
        self.n_fft = n_fft
        self.hop_length = hop_length
        self.tightness = tightness
        self.min_beats = min_beats
        self.max_analysis_seconds = max_analysis_seconds
        self.min_confidence = min_confidence

    def evaluate(
        self,
        window: AudioWindow,
        context: DetectionContext,
        cancel: threading.Event | None = None,
    ) -> BpmReading | None:
        samples = self._recent(window)
        if is_silent(samples) or len(samples) < self.n_fft:
            return None

        envelope, rate = self._onset_strength(window, samples, self.n_fft, self.hop_length)
        if len(envelope) < 16 or float(np.max(envelope)) <= 0 or self._cancelled(cancel):
            return None

        _tempo, beats = librosa.beat.beat_track(
            onset_envelope=envelope,
            sr=window.sample_rate,
            hop_length=self.hop_length,
            start_bpm=context.clamp(120.0),
            tightness=self.tightness,
            units="frames",
        )
        if len(beats) < self.min_beats or self._cancelled(cancel):
            return None

        intervals = np.diff(beats).astype(np.float64)
        intervals = intervals[intervals > 0]
        if len(intervals) < self.min_beats - 1:
            return None
        period = float(trim_mean(intervals, 0.1))  # frames
        bpm = 60.0 * rate / period

        on_beat = float(np.mean(envelope[beats]))
        overall = float(np.mean(envelope))
        salience = float(np.clip(2.0 * on_beat / (on_beat + overall) - 1.0, 0.0, 1.0))
        regularity = float(np.clip(1.0 - np.std(intervals) / np.mean(intervals), 0.0, 1.0))
        confidence = 0.25 + 0.5 * salience + 0.25 * regularity
        if confidence < self.min_confidence:
            return None

        return self._reading(
            bpm,
            confidence,
            window,
            context,
            beats=len(beats),
            salience=salience,
            regularity=regularity,
        )
