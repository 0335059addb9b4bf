"""Predominant local pulse from the Fourier tempogram."""

import threading

import librosa
import numpy as np

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import find_periodicity, is_silent


class PlpAlgorithm(TempoAlgorithm):
    """Periodicity of librosa's predominant local pulse (PLP) curve.

    PLP keeps only the strongest tempogram component, restricted to the
    BPM range, in each frame and overlap-adds the resulting sinusoids. The
    curve is close to a clean sinusoid at the beat rate, so an
    autocorrelation peak search on it gives a stable period even when the
    onsets themselves are noisy.
    """

    algorithm_id = "plp_tempogram"
    label = "Tempogram PLP"

    def __init__(
        self,
        n_fft: int = 2048,
        hop_length: int = 512,
        win_length: int = 384,
        max_analysis_seconds: float = 8.0,
        min_confidence: float = 0.2,
    ):
        self.n_fft = n_fft
        self.hop_length = hop_length
        self.win_length = win_length
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

        pulse = librosa.beat.plp(
            onset_envelope=envelope,
            sr=window.sample_rate,
            hop_length=self.hop_length,
            win_length=min(self.win_length, len(envelope)),
            tempo_min=context.min_bpm,
            tempo_max=context.max_bpm,
        )
        if self._cancelled(cancel):
            return None

        estimate = find_periodicity(pulse - float(np.mean(pulse)), rate, context)
        if estimate is None:
            return None
        confidence = float(np.clip(0.4 + 0.45 * estimate.strength, 0.0, 0.85))
        if confidence < self.min_confidence:
            return None

        return self._reading(
            estimate.bpm,
            confidence,
            window,
            context,
            strength=estimate.strength,
            contrast=estimate.contrast,
        )
