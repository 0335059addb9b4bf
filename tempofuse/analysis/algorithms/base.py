"""Contract shared by every tempo-estimation algorithm."""

import logging
import threading
from abc import ABC, abstractmethod

import librosa
import numpy as np

from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext
from tempofuse.analysis.signal import coerce_to_range

logger = logging.getLogger(__name__)


class TempoAlgorithm(ABC):
    """One tempo-estimation strategy: window of samples -> zero or one reading.

    Implementations are pure functions of (window, context): no I/O, no
    state carried between calls. Each caps the audio it looks at so a single
    call stays within a bounded CPU budget, and checks *cancel* between
    stages so a timed-out or stopped cycle can abandon work early.
    """

    algorithm_id: str = ""
    label: str = ""

    # Only the most recent audio is analysed.
    max_analysis_seconds: float = 8.0

    @abstractmethod
    def evaluate(
        self,
        window: AudioWindow,
        context: DetectionContext,
        cancel: threading.Event | None = None,
    ) -> BpmReading | None:
        """Estimate the tempo of *window*, or return None to abstain."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.algorithm_id!r})"

    def _recent(self, window: AudioWindow) -> np.ndarray:
        n = int(window.sample_rate * self.max_analysis_seconds)
        return window.samples[-n:] if 0 < n < len(window.samples) else window.samples

    def _onset_strength(
        self,
        window: AudioWindow,
        samples: np.ndarray,
        n_fft: int = 2048,
        hop_length: int = 512,
    ) -> tuple[np.ndarray, float]:
        """librosa spectral-flux onset strength of *samples*, shared per window.

        Returns (envelope, envelope_rate).
        """
        key = ("onset_strength", len(samples), n_fft, hop_length)
        envelope = window.feature(key, lambda: librosa.onset.onset_strength(
            y=np.ascontiguousarray(samples, dtype=np.float32),
            sr=window.sample_rate,
            n_fft=n_fft,
            hop_length=hop_length,
        ))
        return envelope, window.sample_rate / hop_length

    @staticmethod
    def _cancelled(cancel: threading.Event | None) -> bool:
        return cancel is not None and cancel.is_set()

    def _reading(
        self,
        bpm: float,
        confidence: float,
        window: AudioWindow,
        context: DetectionContext,
        **metadata,
    ) -> BpmReading | None:
        """Build a reading, moving *bpm* into range or abstaining."""
        coerced = coerce_to_range(bpm, context)
        if coerced is None:
            logger.debug(f"{self.algorithm_id}: {bpm:.1f} BPM has no in-range harmonic, abstaining")
            return None
        value, multiplier = coerced
        metadata["raw_bpm"] = float(bpm)
        if multiplier != 1.0:
            metadata["range_multiplier"] = multiplier
        return BpmReading(
            algorithm_id=self.algorithm_id,
            bpm=float(value),
            confidence=float(np.clip(confidence, 0.0, 1.0)),
            timestamp=window.end_time,
            label=self.label,
            metadata=metadata,
        )
