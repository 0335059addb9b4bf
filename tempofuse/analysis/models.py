"""Core data models for live tempo detection."""

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


@dataclass(frozen=True)
class DetectionContext:
    """Immutable analysis configuration shared by every stage."""
    sample_rate: int  # Hz
    min_bpm: float
    max_bpm: float
    window_duration: float  # seconds

    def __post_init__(self):
        if not isinstance(self.sample_rate, (int, np.integer)) or self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be a positive integer, got {self.sample_rate!r}")
        if self.min_bpm <= 0 or self.max_bpm <= 0:
            raise ValueError("BPM bounds must be positive")
        if self.min_bpm >= self.max_bpm:
            raise ValueError(f"min_bpm ({self.min_bpm}) must be below max_bpm ({self.max_bpm})")
        if self.window_duration <= 0:
            raise ValueError("window_duration must be positive")

    @property
    def window_length(self) -> int:
        """Number of samples in one analysis window."""
        return int(round(self.sample_rate * self.window_duration))

    def clamp(self, bpm: float) -> float:
        return min(self.max_bpm, max(self.min_bpm, bpm))

    def contains(self, bpm: float) -> bool:
        return self.min_bpm <= bpm <= self.max_bpm


@dataclass(frozen=True)
class ConsensusSettings:
    """Tuning for the consensus engines."""
    history_size: int = 10
    min_readings_for_outlier_detection: int = 3
    algorithm_outlier_threshold: float = 8.0  # BPM
    cluster_tolerance: float = 3.0  # BPM gap between neighbours
    min_cluster_size: int = 2
    smoothing_factor: float = 0.25

    def __post_init__(self):
        if self.history_size <= 0:
            raise ValueError("history_size must be positive")
        if self.min_readings_for_outlier_detection <= 0:
            raise ValueError("min_readings_for_outlier_detection must be positive")
        if self.min_readings_for_outlier_detection > self.history_size:
            raise ValueError("min_readings_for_outlier_detection cannot exceed history_size")
        if self.algorithm_outlier_threshold <= 0:
            raise ValueError("algorithm_outlier_threshold must be positive")
        if self.cluster_tolerance <= 0:
            raise ValueError("cluster_tolerance must be positive")
        if self.min_cluster_size <= 0:
            raise ValueError("min_cluster_size must be positive")
        if not 0.0 < self.smoothing_factor <= 1.0:
            raise ValueError("smoothing_factor must be in (0, 1]")


@dataclass(frozen=True, eq=False)
class AudioWindow:
    """A fixed-length, read-only snapshot of the sample stream.

    Derived features shared by several algorithms are computed once per
    window through :meth:`feature`.
    """
    samples: np.ndarray
    start_time: float  # seconds of stream time at the first sample
    sample_rate: int
    index: int = 0
    _features: dict = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self):
        samples = np.array(self.samples, dtype=np.float32, copy=True).ravel()
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def feature(self, key: tuple, compute: Callable[[], np.ndarray]) -> np.ndarray:
        """Return the cached feature *key*, computing it on first use.

        Concurrent callers asking for the same key wait for one computation.
        The result is read-only.
        """
        with self._lock:
            if key not in self._features:
                value = np.asarray(compute())
                value.setflags(write=False)
                self._features[key] = value
            return self._features[key]


@dataclass(frozen=True)
class BpmReading:
    """A BPM estimate from a single algorithm for one window."""
    algorithm_id: str
    bpm: float
    confidence: float  # 0.0-1.0
    timestamp: float = field(default_factory=time.time)
    label: str = ""
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


class AlgorithmHistory:
    """Bounded history of one algorithm's recent BPM values."""

    def __init__(self, max_size: int):
        self._values: deque[float] = deque(maxlen=max_size)

    def append(self, bpm: float) -> None:
        self._values.append(float(bpm))

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> list[float]:
        return list(self._values)

    @property
    def median(self) -> float | None:
        if not self._values:
            return None
        return float(np.median(self._values))


@dataclass(frozen=True)
class ConsensusResult:
    """Fused tempo for one analysis cycle."""
    bpm: float | None
    confidence: float
    cluster: tuple[str, ...] = ()
    readings: tuple[BpmReading, ...] = ()
    timestamp: float = field(default_factory=time.time)
    weights: dict[str, float] = field(default_factory=dict, compare=False)
    raw_bpm: float | None = None
    rejected: tuple[str, ...] = ()
    # "cluster" | "weighted_median" | "carry_forward" | "empty"
    source: str = "cluster"


class DetectionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    BUFFERING = "buffering"
    ANALYZING = "analyzing"
    STREAMING_RESULTS = "streaming_results"
    ERROR = "error"


@dataclass(frozen=True)
class StateChange:
    """An observable coordinator state transition."""
    state: DetectionState
    message: str | None = None
    timestamp: float = field(default_factory=time.time)
