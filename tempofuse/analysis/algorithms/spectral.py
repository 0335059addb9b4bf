"""Spectral-flux periodicity via the spectrum of the flux envelope."""

import threading

import numpy as np
from scipy.signal import get_window

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import is_silent, parabolic_interpolation


class SpectralAlgorithm(TempoAlgorithm):
    """Tempo as the dominant modulation frequency of the spectral flux.

    librosa's onset strength gives a spectral-flux envelope; its own
    magnitude spectrum (Hann tapered, zero padded) is searched over the BPM
    band. Each candidate frequency also collects half the magnitude found at
    twice that frequency, which favours the fundamental over its overtones.
    Confidence is the share of in-band power under the peak's main lobe,
    rescaled so a flat spectrum scores zero.
    """

    algorithm_id = "spectral"
    label = "Spectral Flux"

    def __init__(
        self,
        n_fft: int = 2048,
        hop_length: int = 512,
        zero_pad: int = 8,
        max_analysis_seconds: float = 8.0,
        min_confidence: float = 0.05,
    ):
        self.n_fft = n_fft
        self.hop_length = hop_length
        self.zero_pad = zero_pad
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

        flux, rate = self._onset_strength(window, samples, self.n_fft, self.hop_length)
        if len(flux) < 16 or self._cancelled(cancel):
            return None

        flux = flux.astype(np.float64) - float(np.mean(flux))
        if float(np.dot(flux, flux)) <= 1e-12:
            return None

        n = 1 << int(np.ceil(np.log2(len(flux) * self.zero_pad)))
        spectrum = np.abs(np.fft.rfft(flux * get_window("hann", len(flux)), n))
        bpm_axis = np.fft.rfftfreq(n, d=1.0 / rate) * 60.0

        band = np.flatnonzero((bpm_axis >= context.min_bpm) & (bpm_axis <= context.max_bpm))
        if len(band) < 3:
            return None

        doubled = np.interp(2.0 * bpm_axis[band], bpm_axis, spectrum, right=0.0)
        score = spectrum[band] + 0.5 * doubled
        k = int(np.argmax(score))
        refined_bin, _ = parabolic_interpolation(spectrum, int(band[k]))
        bpm = refined_bin * rate / n * 60.0

        power = spectrum[band] ** 2
        total = float(np.sum(power))
        if total <= 0:
            return None
        # Hann main lobe spans two original bins either side of the peak.
        lobe = int(np.ceil(2.0 * n / len(flux)))
        concentration = float(np.sum(power[max(0, k - lobe):k + lobe + 1])) / total
        lobe_share = min(1.0, (2 * lobe + 1) / len(band))
        if lobe_share < 1.0:
            confidence = (concentration - lobe_share) / (1.0 - lobe_share)
        else:
            confidence = concentration
        if confidence < self.min_confidence:
            return None

        return self._reading(
            bpm,
            confidence,
            window,
            context,
            concentration=concentration,
            fft_size=n,
        )
