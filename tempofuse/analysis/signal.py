"""Periodicity helpers shared by the tempo algorithms."""

from dataclasses import dataclass

import numpy as np
from scipy.signal import correlate, find_peaks

from tempofuse.analysis.models import DetectionContext

# RMS below this is treated as silence (about -60 dBFS).
SILENCE_RMS = 1e-3

# Harmonic multipliers tried, in order, for an estimate outside the BPM range.
_HARMONICS = (0.5, 2.0, 1 / 3, 3.0, 0.25, 4.0, 2 / 3, 1.5)

# Estimates this close to a bound are clamped rather than harmonically moved.
_EDGE_TOLERANCE = 0.01


@dataclass
class PeriodEstimate:
    """Dominant periodicity found in an envelope."""
    lag: float  # envelope frames, sub-frame refined
    bpm: float
    strength: float  # normalized autocorrelation at the lag
    contrast: float  # prominence over the strongest competing peak
    confidence: float


def is_silent(samples: np.ndarray, floor: float = SILENCE_RMS) -> bool:
    if len(samples) == 0:
        return True
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    return rms < floor


def energy_envelope(
    samples: np.ndarray,
    sample_rate: float,
    frame_seconds: float = 0.01,
) -> tuple[np.ndarray, float]:
    """Mean-square energy over consecutive, non-overlapping sub-frames.

    Returns (envelope, envelope_rate).
    """
    frame = max(1, int(round(sample_rate * frame_seconds)))
    rate = sample_rate / frame
    n_frames = len(samples) // frame
    if n_frames == 0:
        return np.zeros(0), rate
    frames = np.asarray(samples[:n_frames * frame], dtype=np.float64).reshape(n_frames, frame)
    return np.mean(frames ** 2, axis=1), rate


def onset_novelty(envelope: np.ndarray) -> np.ndarray:
    """Half-wave rectified derivative of the log-compressed envelope."""
    if len(envelope) < 2:
        return np.zeros(len(envelope))
    peak = float(np.max(envelope))
    if peak <= 0:
        return np.zeros(len(envelope))
    compressed = np.log1p(1000.0 * envelope / peak)
    diff = np.diff(compressed, prepend=compressed[0])
    return np.maximum(diff, 0.0)


def autocorrelation(signal: np.ndarray) -> np.ndarray:
    """Biased autocorrelation for non-negative lags, normalized so lag 0 is 1.

    The biased estimate tapers long lags, so a period beats its own multiples.
    """
    x = np.asarray(signal, dtype=np.float64)
    x = x - np.mean(x) if len(x) else x
    energy = float(np.dot(x, x))
    if energy <= 1e-12:
        return np.zeros(len(x))
    ac = correlate(x, x, mode="full", method="fft")[len(x) - 1:]
    return ac / ac[0]


def lag_range(rate: float, context: DetectionContext) -> tuple[int, int]:
    """Inclusive lag bounds (in frames at *rate*) implied by the BPM bounds."""
    min_lag = max(1, int(np.floor(60.0 * rate / context.max_bpm)))
    max_lag = int(np.ceil(60.0 * rate / context.min_bpm))
    return min_lag, max_lag


def parabolic_interpolation(values: np.ndarray, index: int) -> tuple[float, float]:
    """Refine a discrete peak with a parabola through its two neighbours.

    Returns (fractional_index, interpolated_value).
    """
    if index <= 0 or index >= len(values) - 1:
        return float(index), float(values[index])
    a, b, c = float(values[index - 1]), float(values[index]), float(values[index + 1])
    denom = a - 2 * b + c
    if denom == 0:
        return float(index), b
    offset = float(np.clip(0.5 * (a - c) / denom, -0.5, 0.5))
    return index + offset, b - 0.25 * (a - c) * offset


def _is_harmonic(lag: float, reference: float, tolerance: float = 0.06) -> bool:
    ratio = lag / reference if lag >= reference else reference / lag
    return abs(ratio - round(ratio)) < tolerance


def find_periodicity(
    envelope: np.ndarray,
    rate: float,
    context: DetectionContext,
) -> PeriodEstimate | None:
    """Find the strongest autocorrelation peak within the BPM range.

    Ties between equally strong peaks go to the shorter lag (faster tempo).
    The competing peak used for the contrast ignores integer multiples and
    fractions of the winning lag.
    """
    ac = autocorrelation(envelope)
    min_lag, max_lag = lag_range(rate, context)
    max_lag = min(max_lag, len(ac) - 2)
    if max_lag - min_lag < 2:
        return None

    # Include one neighbour each side so peaks sitting on a bound are found.
    offset = min_lag - 1
    peaks, _ = find_peaks(ac[offset:max_lag + 2])
    lags = peaks + offset
    lags = lags[(lags >= min_lag) & (lags <= max_lag)]
    lags = lags[ac[lags] > 0]
    if len(lags) == 0:
        return None

    order = np.argsort(-ac[lags], kind="stable")
    best = int(lags[order[0]])
    refined, value = parabolic_interpolation(ac, best)
    value = float(np.clip(value, 0.0, 1.0))
    if value <= 0:
        return None

    competitor = 0.0
    for lag in lags[order[1:]]:
        if _is_harmonic(float(lag), refined):
            continue
        competitor = max(0.0, float(ac[lag]))
        break
    contrast = (value - competitor) / value

    return PeriodEstimate(
        lag=refined,
        bpm=60.0 * rate / refined,
        strength=value,
        contrast=contrast,
        confidence=float(np.clip(0.5 * value + 0.5 * contrast, 0.0, 1.0)),
    )


def coerce_to_range(bpm: float, context: DetectionContext) -> tuple[float, float] | None:
    """Move *bpm* into the context range.

    Values within 1% of a bound are clamped; otherwise the first harmonic
    multiple landing in range is used. Returns (bpm, multiplier), or None
    when nothing fits.
    """
    if not np.isfinite(bpm) or bpm <= 0:
        return None
    low = context.min_bpm * (1 - _EDGE_TOLERANCE)
    high = context.max_bpm * (1 + _EDGE_TOLERANCE)
    if low <= bpm <= high:
        return context.clamp(bpm), 1.0
    for factor in _HARMONICS:
        candidate = bpm * factor
        if context.contains(candidate):
            return candidate, factor
    return None
