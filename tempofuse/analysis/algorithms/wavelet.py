"""Multi-resolution (Haar wavelet) sub-band energy tempo estimation."""

import threading

import numpy as np

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import find_periodicity, is_silent, onset_novelty
from tempofuse.audio.preprocessing import downsample

_SQRT2 = np.sqrt(2.0)


def haar_bands(samples: np.ndarray, levels: int) -> list[np.ndarray]:
    """Haar decomposition into ``levels`` detail bands plus the final approximation.

    Band ``i`` (0-based) of the details is sampled at ``rate / 2**(i + 1)``;
    the approximation shares the rate of the last detail band.
    """
    bands = []
    current = np.asarray(samples, dtype=np.float64)
    for _ in range(levels):
        if len(current) < 2:
            break
        n = len(current) // 2 * 2
        even, odd = current[0:n:2], current[1:n:2]
        bands.append((even - odd) / _SQRT2)
        current = (even + odd) / _SQRT2
    if bands:
        bands.append(current)
    return bands


class WaveletEnergyAlgorithm(TempoAlgorithm):
    """Sum of per-band onset envelopes from a Haar multi-resolution split.

    Audio is decimated to about ``target_rate`` Hz, split into ``levels``
    octave sub-bands, and each band's absolute amplitude is block-averaged
    and resampled onto a common ``envelope_rate`` grid. Bands carrying
    negligible energy are skipped. The normalized band novelties are summed
    and searched with the shared autocorrelation peak finder.
    """

    algorithm_id = "wavelet"
    label = "Wavelet Energy"

    def __init__(
        self,
        levels: int = 4,
        target_rate: int = 4000,
        envelope_rate: float = 100.0,
        band_tolerance: float = 0.04,
        max_analysis_seconds: float = 8.0,
        min_confidence: float = 0.1,
    ):
        if levels < 1:
            raise ValueError("levels must be at least 1")
        self.levels = levels
        self.target_rate = target_rate
        self.envelope_rate = envelope_rate
        self.band_tolerance = band_tolerance
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

        audio, rate = downsample(np.asarray(samples, dtype=np.float64), window.sample_rate, self.target_rate)
        duration = len(audio) / rate
        grid = np.arange(int(duration * self.envelope_rate)) / self.envelope_rate
        if len(grid) < 16:
            return None

        bands = haar_bands(audio, self.levels)
        n_details = len(bands) - 1
        envelopes = []
        for level, band in enumerate(bands):
            if self._cancelled(cancel):
                return None
            depth = min(level + 1, n_details)
            band_rate = rate / 2 ** depth
            block = max(1, int(round(band_rate / self.envelope_rate)))
            n_blocks = len(band) // block
            if n_blocks < 2:
                continue
            env = np.abs(band[:n_blocks * block]).reshape(n_blocks, block).mean(axis=1)
            times = (np.arange(n_blocks) + 0.5) * block / band_rate
            envelopes.append(np.interp(grid, times, env))

        if not envelopes:
            return None
        loudest = max(float(np.mean(e)) for e in envelopes)
        novelties = []
        for env in envelopes:
            if float(np.mean(env)) < 1e-3 * loudest:
                continue
            nov = onset_novelty(env)
            std = float(np.std(nov))
            if std > 0:
                novelties.append(nov / std)
        if not novelties:
            return None

        combined = np.sum(novelties, axis=0)
        estimate = find_periodicity(combined, self.envelope_rate, context)
        if estimate is None:
            return None

        band_bpms = []
        for nov in novelties:
            band_estimate = find_periodicity(nov, self.envelope_rate, context)
            if band_estimate is not None:
                band_bpms.append(band_estimate.bpm)
        agreeing = sum(
            1 for b in band_bpms if abs(b - estimate.bpm) <= self.band_tolerance * estimate.bpm
        )
        agreement = agreeing / len(novelties)
        confidence = 0.6 * estimate.confidence + 0.4 * agreement
        if confidence < self.min_confidence:
            return None

        return self._reading(
            estimate.bpm,
            confidence,
            window,
            context,
            bands=len(novelties),
            band_bpms=band_bpms,
            agreement=agreement,
            strength=estimate.strength,
        )
