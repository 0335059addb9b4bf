"""Audio source contract and the sources shipped with the package.

Live capture (microphone, loopback) lives outside this package; anything
that can deliver float sample chunks at a fixed rate plugs in by
implementing :class:`AudioSource`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from pathlib import Path

import numpy as np

from tempofuse.audio.loader import load_audio
from tempofuse.audio.preprocessing import to_float_samples

logger = logging.getLogger(__name__)


class AudioSourceError(Exception):
    """The audio source cannot deliver samples; fatal for the session."""


class DeviceUnavailableError(AudioSourceError):
    pass


class PermissionDeniedError(AudioSourceError):
    pass


class AudioSource(ABC):
    """A cancellable, continuous stream of mono sample chunks at ``sample_rate``."""

    sample_rate: int

    async def start(self) -> None:
        """Acquire the device. May raise :class:`AudioSourceError`."""

    async def stop(self) -> None:
        """Release the device; an active :meth:`chunks` iteration ends."""

    @abstractmethod
    def chunks(self) -> AsyncIterator[np.ndarray]:
        """Iterate over float32 chunks until the source ends or is stopped."""


class ArrayAudioSource(AudioSource):
    """Serve an in-memory signal chunk by chunk.

    With ``realtime=True`` chunks are paced at the signal's own rate;
    otherwise they are delivered as fast as the consumer takes them.
    """

    def __init__(
        self,
        audio: np.ndarray,
        sample_rate: int,
        chunk_duration: float = 0.1,
        realtime: bool = False,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = int(sample_rate)
        self._audio = to_float_samples(audio)
        self._chunk = max(1, int(round(sample_rate * chunk_duration)))
        self._realtime = realtime
        self._running = False

    @property
    def duration(self) -> float:
        return len(self._audio) / self.sample_rate

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def chunks(self) -> AsyncIterator[np.ndarray]:
        if not self._running:
            raise AudioSourceError("source has not been started")
        delay = self._chunk / self.sample_rate if self._realtime else 0.0
        for start in range(0, len(self._audio), self._chunk):
            if not self._running:
                return
            yield self._audio[start:start + self._chunk].copy()
            await asyncio.sleep(delay)


class FileAudioSource(ArrayAudioSource):
    """Decode an audio file on :meth:`start`, then stream it like an array."""

    def __init__(
        self,
        path: str | Path,
        sample_rate: int = 44100,
        chunk_duration: float = 0.1,
        realtime: bool = False,
    ) -> None:
        super().__init__(np.zeros(0, dtype=np.float32), sample_rate, chunk_duration, realtime)
        self.path = Path(path)

    async def start(self) -> None:
        if not self.path.is_file():
            raise DeviceUnavailableError(f"audio file not found: {self.path}")
        loop = asyncio.get_running_loop()
        try:
            audio, _sr = await loop.run_in_executor(None, load_audio, str(self.path), self.sample_rate)
        except PermissionError as e:
            raise PermissionDeniedError(str(e)) from e
        except Exception as e:
            raise DeviceUnavailableError(f"cannot decode {self.path.name}: {e}") from e
        self._audio = audio
        logger.info(f"Loaded {self.path.name}: {self.duration:.1f}s at {self.sample_rate}Hz")
        await super().start()


_END = object()


class QueueAudioSource(AudioSource):
    """Push-based source: producers call :meth:`push`; :meth:`chunks` drains.

    :meth:`fail` injects an :class:`AudioSourceError` that the consumer sees
    after the chunks already queued.
    :meth:`start` discards anything left over from a previous session,
    including the end marker queued by :meth:`stop`.
    """

    def __init__(self, sample_rate: int, max_chunks: int = 256) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = int(sample_rate)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_chunks)

    def push(self, chunk) -> None:
        """Queue a chunk (float array, int PCM array or Float32 bytes).

        When the queue is full the oldest chunk is dropped.
        """
        samples = to_float_samples(chunk)
        if len(samples) == 0:
            return
        if self._queue.full():
            self._queue.get_nowait()
            logger.warning("Audio queue full, dropped oldest chunk")
        self._queue.put_nowait(samples)

    def close(self) -> None:
        self._put_control(_END)

    def fail(self, error: AudioSourceError) -> None:
        self._put_control(error)

    def _put_control(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def start(self) -> None:
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.debug(f"Discarded {dropped} stale queue items")

    async def stop(self) -> None:
        self.close()

    async def chunks(self) -> AsyncIterator[np.ndarray]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, AudioSourceError):
                raise item
            yield item
