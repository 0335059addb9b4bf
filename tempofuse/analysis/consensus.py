"""Multi-algorithm tempo consensus.

Readings are clustered by sorting on BPM and splitting wherever the gap to
the next value exceeds the cluster tolerance, so the result depends only on
the set of readings, never on their order. The largest cluster wins (ties:
higher mean confidence, then smaller spread, then lower BPM) provided it has
at least ``min_cluster_size`` members; otherwise the confidence-weighted
median of all readings is used with reduced confidence.

Two policies share that machinery: ``BaselineConsensusEngine`` is
stateless, ``RobustConsensusEngine`` adds per-algorithm outlier rejection
and exponential smoothing across cycles.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from tempofuse.analysis.models import AlgorithmHistory, BpmReading, ConsensusResult, ConsensusSettings

logger = logging.getLogger(__name__)

# Confidence multipliers for degraded cycles.
FALLBACK_PENALTY = 0.5
REJECTION_PENALTY = 0.8
CARRY_FORWARD_DECAY = 0.5


@dataclass
class Cluster:
    """Readings whose sorted BPM values are chained within tolerance."""
    members: list[BpmReading]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def mean_confidence(self) -> float:
        return float(np.mean([r.confidence for r in self.members]))

    @property
    def spread(self) -> float:
        bpms = [r.bpm for r in self.members]
        return max(bpms) - min(bpms)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(r.algorithm_id for r in self.members)


def cluster_readings(readings: Iterable[BpmReading], tolerance: float) -> list[Cluster]:
    """Group readings into clusters of consecutive BPM gaps <= *tolerance*."""
    ordered = sorted(readings, key=lambda r: (r.bpm, r.algorithm_id))
    if not ordered:
        return []
    clusters = [Cluster(members=[ordered[0]])]
    for reading in ordered[1:]:
        if reading.bpm - clusters[-1].members[-1].bpm <= tolerance:
            clusters[-1].members.append(reading)
        else:
            clusters.append(Cluster(members=[reading]))
    return clusters


def select_cluster(clusters: list[Cluster], min_size: int) -> Cluster | None:
    """Pick the winning cluster, or None when no cluster is large enough."""
    if not clusters:
        return None
    best = min(
        clusters,
        key=lambda c: (-c.size, -c.mean_confidence, c.spread, c.members[0].bpm),
    )
    return best if best.size >= min_size else None


def weighted_mean(readings: list[BpmReading]) -> float:
    """Confidence-weighted mean BPM (plain mean if every confidence is 0)."""
    bpms = np.array([r.bpm for r in readings])
    weights = np.array([r.confidence for r in readings])
    if weights.sum() <= 0:
        return float(bpms.mean())
    return float(np.dot(bpms, weights) / weights.sum())


def weighted_median(readings: list[BpmReading]) -> float:
    """Lower confidence-weighted median BPM."""
    ordered = sorted(readings, key=lambda r: (r.bpm, r.algorithm_id))
    weights = np.array([r.confidence for r in ordered])
    if weights.sum() <= 0:
        return float(np.median([r.bpm for r in ordered]))
    cumulative = np.cumsum(weights)
    idx = int(np.searchsorted(cumulative, cumulative[-1] / 2.0))
    return float(ordered[idx].bpm)


def _weights(members: list[BpmReading]) -> dict[str, float]:
    total = sum(r.confidence for r in members)
    if total <= 0:
        return {r.algorithm_id: 1.0 / len(members) for r in members}
    return {r.algorithm_id: r.confidence / total for r in members}


class ConsensusEngine(ABC):
    """Fuses one cycle's readings into exactly one ConsensusResult."""

    def __init__(self, settings: ConsensusSettings | None = None, algorithm_count: int | None = None):
        self.settings = settings or ConsensusSettings()
        if algorithm_count is not None and algorithm_count <= 0:
            raise ValueError("algorithm_count must be positive")
        self.algorithm_count = algorithm_count

    @abstractmethod
    def fuse(self, readings: Iterable[BpmReading], timestamp: float | None = None) -> ConsensusResult:
        """Combine readings from one analysis cycle."""

    def reset(self) -> None:
        """Forget any state carried between cycles."""

    def _cluster_confidence(self, cluster: Cluster, n_readings: int) -> float:
        total = max(self.algorithm_count or n_readings, cluster.size)
        agreement = cluster.size / total
        tightness = 1.0 / (1.0 + cluster.spread / self.settings.cluster_tolerance)
        confidence = 0.4 * agreement + 0.3 * tightness + 0.3 * cluster.mean_confidence
        return float(np.clip(confidence, 0.0, 1.0))

    def _fallback_confidence(self, readings: list[BpmReading]) -> float:
        total = max(self.algorithm_count or len(readings), len(readings))
        mean_conf = float(np.mean([r.confidence for r in readings]))
        return float(np.clip(FALLBACK_PENALTY * mean_conf * (0.5 + 0.5 * len(readings) / total), 0.0, 1.0))

    def _combine(self, readings: list[BpmReading]) -> tuple[float, float, list[BpmReading], str]:
        """Return (raw_bpm, confidence, contributing readings, source)."""
        clusters = cluster_readings(readings, self.settings.cluster_tolerance)
        winner = select_cluster(clusters, self.settings.min_cluster_size)
        if winner is not None:
            return (
                weighted_mean(winner.members),
                self._cluster_confidence(winner, len(readings)),
                winner.members,
                "cluster",
            )
        logger.debug(f"No cluster of {self.settings.min_cluster_size}+ among {len(readings)} readings, "
                     f"using weighted median")
        return weighted_median(readings), self._fallback_confidence(readings), list(readings), "weighted_median"


class BaselineConsensusEngine(ConsensusEngine):
    """Stateless reference policy: cluster this cycle's readings, no history."""

    def fuse(self, readings: Iterable[BpmReading], timestamp: float | None = None) -> ConsensusResult:
        readings = tuple(readings)
        stamp = timestamp if timestamp is not None else time.time()
        if not readings:
            return ConsensusResult(bpm=None, confidence=0.0, timestamp=stamp, source="empty")

        raw, confidence, members, source = self._combine(list(readings))
        return ConsensusResult(
            bpm=raw,
            confidence=confidence,
            cluster=tuple(r.algorithm_id for r in members),
            readings=readings,
            timestamp=stamp,
            weights=_weights(members),
            raw_bpm=raw,
            source=source,
        )


class RobustConsensusEngine(ConsensusEngine):
    """History-aware policy with self-referential outlier rejection and smoothing.

    Each reading is compared with the median of its own algorithm's recent
    history (taken before the reading is added). Once that history holds at
    least ``min_readings_for_outlier_detection`` values, a reading further
    than ``algorithm_outlier_threshold`` BPM from it sits out this cycle's
    clustering. Every reading is still appended to its history.

    The fused value is smoothed as ``a * raw + (1 - a) * previous``. With
    no surviving readings the previous smoothed value is carried forward at
    decayed confidence. ``fuse`` calls are serialized.
    """

    def __init__(self, settings: ConsensusSettings | None = None, algorithm_count: int | None = None):
        super().__init__(settings, algorithm_count)
        self._lock = threading.Lock()
        self._histories: dict[str, AlgorithmHistory] = {}
        self._smoothed: float | None = None
        self._confidence = 0.0

    @property
    def smoothed_bpm(self) -> float | None:
        return self._smoothed

    def history(self, algorithm_id: str) -> AlgorithmHistory | None:
        return self._histories.get(algorithm_id)

    def reset(self) -> None:
        with self._lock:
            self._histories.clear()
            self._smoothed = None
            self._confidence = 0.0

    def is_outlier(self, reading: BpmReading) -> bool:
        """True if *reading* deviates too far from its algorithm's history."""
        history = self._histories.get(reading.algorithm_id)
        if history is None or len(history) < self.settings.min_readings_for_outlier_detection:
            return False
        return abs(reading.bpm - history.median) > self.settings.algorithm_outlier_threshold

    def fuse(self, readings: Iterable[BpmReading], timestamp: float | None = None) -> ConsensusResult:
        readings = tuple(readings)
        stamp = timestamp if timestamp is not None else time.time()
        with self._lock:
            survivors: list[BpmReading] = []
            rejected: list[str] = []
            for reading in readings:
                if self.is_outlier(reading):
                    rejected.append(reading.algorithm_id)
                else:
                    survivors.append(reading)
                history = self._histories.setdefault(
                    reading.algorithm_id, AlgorithmHistory(self.settings.history_size),
                )
                history.append(reading.bpm)

            if rejected:
                logger.info(f"Outliers rejected this cycle: {', '.join(rejected)}")

            if not survivors:
                return self._carry_forward(readings, rejected, stamp)

            raw, confidence, members, source = self._combine(survivors)
            if rejected:
                confidence *= REJECTION_PENALTY
            smoothed = self._smooth(raw)
            self._smoothed = smoothed
            self._confidence = confidence

            return ConsensusResult(
                bpm=smoothed,
                confidence=confidence,
                cluster=tuple(r.algorithm_id for r in members),
                readings=readings,
                timestamp=stamp,
                weights=_weights(members),
                raw_bpm=raw,
                rejected=tuple(rejected),
                source=source,
            )

    def _smooth(self, raw: float) -> float:
        if self._smoothed is None:
            return raw
        alpha = self.settings.smoothing_factor
        return alpha * raw + (1.0 - alpha) * self._smoothed

    def _carry_forward(
        self,
        readings: tuple[BpmReading, ...],
        rejected: list[str],
        stamp: float,
    ) -> ConsensusResult:
        self._confidence *= CARRY_FORWARD_DECAY
        if self._smoothed is None:
            self._confidence = 0.0
        logger.debug(f"No surviving readings, carrying forward {self._smoothed}")
        return ConsensusResult(
            bpm=self._smoothed,
            confidence=self._confidence,
            readings=readings,
            timestamp=stamp,
            raw_bpm=None,
            rejected=tuple(rejected),
            source="carry_forward",
        )
