"""Autocorrelation of the energy envelope."""

import threading

import numpy as np

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import energy_envelope, find_periodicity, is_silent


class AutocorrelationAlgorithm(TempoAlgorithm):
    """Strongest envelope self-similarity lag within the BPM range.

    The RMS envelope is computed over ``frame_seconds`` sub-frames, so the
    lag search runs at the envelope rate rather than the audio rate. The peak
    lag is refined with parabolic interpolation and mapped to
    ``60 * envelope_rate / lag``. Confidence is the prominence of that peak
    over the next strongest non-harmonic peak.
    """

    algorithm_id = "autocorrelation"
    label = "Autocorrelation"

    def __init__(
        self,
        frame_seconds: float = 0.01,
        max_analysis_seconds: float = 8.0,
        min_confidence: float = 0.1,
    ):
        self.frame_seconds = frame_seconds
        self.max_analysis_seconds = max_analysis_seconds
        self.min_confidence = min_confidence

    def evaluate(
        self,
        window: AudioWindow,
        context: DetectionContext,
        cancel: threading.Event | None = None,
    ) -> BpmReading | None:
        samples = self._recent(window)
        if is_silent(samples):
            return None

        envelope, rate = energy_envelope(samples, window.sample_rate, self.frame_seconds)
        if self._cancelled(cancel):
            return None

        estimate = find_periodicity(np.sqrt(envelope), rate, context)
        if estimate is None or estimate.confidence < self.min_confidence:
            return None

        return self._reading(
            estimate.bpm,
            estimate.confidence,
            window,
            context,
            lag_seconds=estimate.lag / rate,
            strength=estimate.strength,
            contrast=estimate.contrast,
        )
