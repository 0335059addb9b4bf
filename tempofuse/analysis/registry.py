"""Fan-out of one analysis window to every configured algorithm."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait

from tempofuse.analysis.algorithms import TempoAlgorithm
from tempofuse.analysis.models import AudioWindow, BpmReading, DetectionContext

logger = logging.getLogger(__name__)


class AlgorithmRegistry:
    """Owns the ordered, fixed set of algorithms and evaluates them in parallel.

    A variant that raises, returns an out-of-range value or misses the
    per-cycle deadline contributes no reading for that cycle; the others
    are unaffected. Timed-out variants see the cycle's cancel event set.
    """

    def __init__(self, algorithms: list[TempoAlgorithm], timeout: float = 5.0):
        if not algorithms:
            raise ValueError("At least one tempo algorithm must be registered")
        ids = [a.algorithm_id for a in algorithms]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate algorithm ids: {ids}")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._algorithms = tuple(algorithms)
        self.timeout = timeout
        # Headroom for stragglers that ignore cancellation.
        self._pool = ThreadPoolExecutor(
            max_workers=2 * len(algorithms),
            thread_name_prefix="tempo-algo",
        )

    @property
    def algorithms(self) -> tuple[TempoAlgorithm, ...]:
        return self._algorithms

    @property
    def ids(self) -> list[str]:
        return [a.algorithm_id for a in self._algorithms]

    def __len__(self) -> int:
        return len(self._algorithms)

    def by_id(self, algorithm_id: str) -> TempoAlgorithm:
        for algorithm in self._algorithms:
            if algorithm.algorithm_id == algorithm_id:
                return algorithm
        raise KeyError(algorithm_id)

    def evaluate(
        self,
        window: AudioWindow,
        context: DetectionContext,
        cancel: threading.Event | None = None,
    ) -> list[BpmReading]:
        """Run every algorithm on *window*; return readings in registry order."""
        cancel = cancel if cancel is not None else threading.Event()
        started = time.monotonic()
        futures = [
            self._pool.submit(algorithm.evaluate, window, context, cancel)
            for algorithm in self._algorithms
        ]
        _done, pending = wait(futures, timeout=self.timeout)
        if pending:
            # Late results are discarded.
            cancel.set()
            for future in pending:
                future.cancel()

        readings: list[BpmReading] = []
        for algorithm, future in zip(self._algorithms, futures):
            name = algorithm.algorithm_id
            if future in pending:
                logger.warning(f"  {name}: timed out after {self.timeout:.1f}s, skipped this cycle")
                continue
            try:
                reading = future.result()
            except Exception as e:
                logger.warning(f"  {name}: failed ({type(e).__name__}: {e}), skipped this cycle")
                continue
            if reading is None:
                logger.debug(f"  {name}: abstained")
                continue
            if not context.contains(reading.bpm):
                logger.warning(f"  {name}: {reading.bpm:.1f} BPM outside range, dropped")
                continue
            logger.info(f"  {name}: {reading.bpm:.1f} BPM (confidence {reading.confidence:.2f})")
            readings.append(reading)

        logger.debug(f"Window {window.index}: {len(readings)}/{len(self)} readings "
                     f"in {time.monotonic() - started:.2f}s")
        return readings

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
