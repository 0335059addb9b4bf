"""Ring buffer for the live sample stream."""

from __future__ import annotations

import numpy as np


class StreamBuffer:
    """Fixed-capacity ring buffer holding the most recent samples.

    Single writer (the ingestion path). Readers only ever get copies via
    :meth:`snapshot`, so a window can never observe a concurrent append.

    Parameters
    ----------
    sr:
        Sample rate in Hz.
    capacity:
        Maximum number of samples retained.
    """

    def __init__(self, sr: int, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._sr = sr
        self._capacity = int(capacity)
        self._buffer = np.zeros(self._capacity, dtype=np.float32)
        self._write_pos = 0
        self._length = 0  # how many valid samples are in the buffer
        self._total = 0  # samples ever written

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, chunk: np.ndarray) -> None:
        """Append a chunk of samples.

        If the chunk is larger than the capacity, only its last
        ``capacity`` samples are kept.
        """
        chunk = np.asarray(chunk, dtype=np.float32).ravel()
        n = len(chunk)

        if n == 0:
            return
        self._total += n

        if n >= self._capacity:
            self._buffer[:] = chunk[-self._capacity:]
            self._write_pos = 0
            self._length = self._capacity
            return

        end = self._write_pos + n
        if end <= self._capacity:
            self._buffer[self._write_pos:end] = chunk
        else:
            first = self._capacity - self._write_pos
            self._buffer[self._write_pos:] = chunk[:first]
            self._buffer[:n - first] = chunk[first:]

        self._write_pos = end % self._capacity
        self._length = min(self._length + n, self._capacity)

    def snapshot(self, n_samples: int) -> tuple[np.ndarray, int]:
        """Copy the most recent *n_samples* samples.

        Returns (samples, start_index) where ``start_index`` is the absolute
        stream position of the first returned sample. Raises ``ValueError``
        if fewer samples are buffered.
        """
        if n_samples > self._length:
            raise ValueError(f"requested {n_samples} samples, only {self._length} buffered")

        start = (self._write_pos - n_samples) % self._capacity
        if start + n_samples <= self._capacity:
            samples = self._buffer[start:start + n_samples].copy()
        else:
            first = self._capacity - start
            samples = np.concatenate([
                self._buffer[start:],
                self._buffer[:n_samples - first],
            ])
        return samples, self._total - n_samples

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        """Number of samples currently retained."""
        return self._length

    @property
    def total_samples(self) -> int:
        """Number of samples appended since creation or the last clear."""
        return self._total

    @property
    def duration(self) -> float:
        """Current buffer duration in seconds."""
        return self._length / self._sr

    def clear(self) -> None:
        """Reset the buffer."""
        self._buffer[:] = 0
        self._write_pos = 0
        self._length = 0
        self._total = 0
