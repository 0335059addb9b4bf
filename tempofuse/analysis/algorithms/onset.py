"""Onset/energy tempo estimation from inter-onset intervals."""

import threading

import numpy as np
from scipy.signal import find_peaks

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import energy_envelope, is_silent, onset_novelty
from tempofuse.audio.preprocessing import high_pass_filter


class OnsetAlgorithm(TempoAlgorithm):
    """Detect energy onsets and reduce their intervals to one dominant period.

    Onsets are local maxima of the onset novelty that exceed an adaptive
    threshold: the trailing mean plus ``threshold_k`` standard deviations.
    Intervals are folded by octaves into the BPM range and grouped; the
    largest group's mean interval is the period.
    """

    algorithm_id = "onset"
    label = "Onset Energy"

    def __init__(
        self,
        frame_seconds: float = 0.01,
        threshold_k: float = 1.5,
        trailing_seconds: float = 1.0,
        interval_tolerance: float = 0.04,
        min_onsets: int = 4,
        max_analysis_seconds: float = 12.0,
    ):
        self.frame_seconds = frame_seconds
        self.threshold_k = threshold_k
        self.trailing_seconds = trailing_seconds
        self.interval_tolerance = interval_tolerance
        self.min_onsets = min_onsets
        self.max_analysis_seconds = max_analysis_seconds

    def evaluate(
        self,
        window: AudioWindow,
        context: DetectionContext,
        cancel: threading.Event | None = None,
    ) -> BpmReading | None:
        samples = self._recent(window)
        if is_silent(samples):
            return None

        filtered = high_pass_filter(samples, window.sample_rate)
        envelope, rate = energy_envelope(filtered, window.sample_rate, self.frame_seconds)
        if len(envelope) < 8 or self._cancelled(cancel):
            return None

        onsets = self._pick_onsets(onset_novelty(envelope), rate, context)
        if len(onsets) < self.min_onsets:
            return None

        intervals = np.diff(onsets) / rate
        group, n_folded = self._dominant_group(intervals, context)
        if len(group) < 2:
            return None

        period = float(np.mean(group))
        cv = float(np.std(group)) / period
        consistency = 1.0 / (1.0 + (cv / 0.05) ** 2)
        support = len(group) / n_folded
        confidence = consistency * (0.5 + 0.5 * support)

        return self._reading(
            60.0 / period,
            confidence,
            window,
            context,
            onsets=len(onsets),
            interval_cv=cv,
            support=support,
        )

    def _pick_onsets(self, novelty: np.ndarray, rate: float, context: DetectionContext) -> np.ndarray:
        # Allow eighth notes at the fastest tempo.
        min_distance = max(1, int(rate * 30.0 / context.max_bpm))
        candidates, _ = find_peaks(novelty, distance=min_distance)
        if len(candidates) == 0:
            return candidates

        trailing = max(2, int(self.trailing_seconds * rate))
        csum = np.concatenate([[0.0], np.cumsum(novelty)])
        csq = np.concatenate([[0.0], np.cumsum(novelty ** 2)])
        global_mean = float(np.mean(novelty))
        global_std = float(np.std(novelty))

        onsets = []
        for idx in candidates:
            start = max(0, idx - trailing)
            count = idx - start
            if count < trailing // 2:
                # Not enough history yet at the start of the window.
                mean, std = global_mean, global_std
            else:
                mean = (csum[idx] - csum[start]) / count
                std = np.sqrt(max(0.0, (csq[idx] - csq[start]) / count - mean ** 2))
            if novelty[idx] > 0 and novelty[idx] > mean + self.threshold_k * std:
                onsets.append(idx)
        return np.asarray(onsets, dtype=np.int64)

    def _dominant_group(self, intervals: np.ndarray, context: DetectionContext) -> tuple[list[float], int]:
        """Return (largest interval group, number of usable intervals)."""
        min_period = 60.0 / context.max_bpm
        max_period = 60.0 / context.min_bpm

        folded = []
        for interval in intervals:
            p = float(interval)
            if p <= 0:
                continue
            while p < min_period:
                p *= 2
            while p > max_period:
                p /= 2
            if min_period <= p <= max_period:
                folded.append(p)
        if not folded:
            return [], 0

        folded.sort()
        groups = [[folded[0]]]
        for p in folded[1:]:
            if p - groups[-1][-1] <= self.interval_tolerance * p:
                groups[-1].append(p)
            else:
                groups.append([p])

        # Largest group; ties go to the tighter group, then the shorter period.
        best = min(groups, key=lambda g: (-len(g), float(np.std(g)) / float(np.mean(g)), g[0]))
        return best, len(folded)
