"""Live detection orchestrator: sample stream -> windows -> readings -> consensus."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable

from tempofuse.analysis.algorithms import build_algorithms
from tempofuse.analysis.consensus import BaselineConsensusEngine, ConsensusEngine, RobustConsensusEngine
from tempofuse.analysis.models import AudioWindow, ConsensusResult, DetectionContext, DetectionState, StateChange
from tempofuse.analysis.registry import AlgorithmRegistry
from tempofuse.audio.source import AudioSource
from tempofuse.audio.stream import StreamBuffer

logger = logging.getLogger(__name__)

_CLOSED = object()

_ACTIVE = (
    DetectionState.LISTENING,
    DetectionState.BUFFERING,
    DetectionState.ANALYZING,
    DetectionState.STREAMING_RESULTS,
)


class Subscription:
    """Bounded async iterator over coordinator events.

    Ends when the coordinator stops. If the consumer falls behind, the
    oldest undelivered event is dropped.
    """

    def __init__(self, registry: list["Subscription"], maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._registry = registry
        registry.append(self)

    def put(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            logger.warning("Subscriber too slow, dropped oldest event")
        self._queue.put_nowait(item)

    def close(self) -> None:
        self.put(_CLOSED)
        self._detach()

    def _detach(self) -> None:
        if self in self._registry:
            self._registry.remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            self._detach()
            raise StopAsyncIteration
        return item


class DetectorCoordinator:
    """Drives the sliding-window analysis pipeline for one audio source.

    ``idle -> listening`` on :meth:`start`, ``buffering`` once samples
    arrive, then ``analyzing`` / ``streaming_results`` for every window.
    :meth:`stop` returns to ``idle`` from any state; a failing source moves
    to ``error`` until :meth:`stop`.

    The first window is analysed once ``window_length`` samples have
    arrived and then one every ``hop_length`` samples, so consecutive
    windows share ``window_length - hop_length`` samples. At most one
    analysis cycle is in flight; a hop reached while one is running is
    skipped rather than queued. With ``skip_late_windows=False`` ingestion
    waits for the running cycle instead, for offline sources that can be
    paused.

    Ingestion, analysis and emission all run on the event loop; only the
    algorithm fan-out leaves it (``run_in_executor`` into the registry's
    thread pool). Consensus is fused on the analysis task, one cycle at a
    time, so results come out in window order.
    """

    def __init__(
        self,
        source: AudioSource,
        registry: AlgorithmRegistry,
        engine: ConsensusEngine,
        context: DetectionContext,
        hop_duration: float = 4.0,
        no_audio_warning: float = 3.0,
        skip_late_windows: bool = True,
    ) -> None:
        if hop_duration <= 0 or hop_duration > context.window_duration:
            raise ValueError("hop_duration must be in (0, window_duration]")
        if source.sample_rate != context.sample_rate:
            raise ValueError(
                f"source delivers {source.sample_rate}Hz but context expects {context.sample_rate}Hz"
            )
        self.source = source
        self.registry = registry
        self.engine = engine
        self.context = context
        self.hop_duration = hop_duration
        self.no_audio_warning = no_audio_warning
        self.skip_late_windows = skip_late_windows

        self.window_length = context.window_length
        self.hop_length = int(round(context.sample_rate * hop_duration))
        self._buffer = StreamBuffer(context.sample_rate, capacity=self.window_length + self.hop_length)

        self._state = DetectionState.IDLE
        self._message: str | None = None
        self._session = 0
        self._result_subs: list[Subscription] = []
        self._state_subs: list[Subscription] = []
        self._result_listeners: list[Callable[[ConsensusResult], None]] = []
        self._state_listeners: list[Callable[[StateChange], None]] = []

        self._windows: asyncio.Queue | None = None
        self._idle: asyncio.Event | None = None
        self._ingest_task: asyncio.Task | None = None
        self._analysis_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._cancel: threading.Event | None = None
        self._busy = False
        self._next_boundary = self.window_length
        self._cycle_index = 0

        self.latest_result: ConsensusResult | None = None
        self.cycles_completed = 0
        self.skipped_hops = 0

    @classmethod
    def from_settings(cls, source: AudioSource, config=None, **kwargs) -> "DetectorCoordinator":
        """Assemble the pipeline from :class:`tempofuse.config.Settings`."""
        if config is None:
            from tempofuse.config import settings as config
        context = config.detection_context()
        registry = AlgorithmRegistry(
            build_algorithms(config.algorithms, wavelet_levels=config.wavelet_levels),
            timeout=config.algorithm_timeout,
        )
        engine_cls = RobustConsensusEngine if config.consensus == "robust" else BaselineConsensusEngine
        engine = engine_cls(config.consensus_settings(), algorithm_count=len(registry))
        return cls(
            source,
            registry,
            engine,
            context,
            hop_duration=config.hop_duration,
            no_audio_warning=config.no_audio_warning,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> DetectionState:
        return self._state

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def overlap_length(self) -> int:
        return self.window_length - self.hop_length

    @property
    def is_active(self) -> bool:
        return self._state in _ACTIVE

    def results(self, maxsize: int = 64) -> Subscription:
        """Async iterator of consensus results; ends at :meth:`stop`."""
        return Subscription(self._result_subs, maxsize)

    def states(self, maxsize: int = 64) -> Subscription:
        """Async iterator of state changes; ends at :meth:`stop`."""
        return Subscription(self._state_subs, maxsize)

    def add_result_listener(self, listener: Callable[[ConsensusResult], None]) -> None:
        self._result_listeners.append(listener)

    def add_state_listener(self, listener: Callable[[StateChange], None]) -> None:
        self._state_listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin a session. Source failures leave the coordinator in ``error``."""
        if self._state is not DetectionState.IDLE:
            raise RuntimeError(f"cannot start while {self._state.value}; call stop() first")

        self._session += 1
        session = self._session
        self._buffer.clear()
        self.engine.reset()
        self._next_boundary = self.window_length
        self._cycle_index = 0
        self._busy = False
        self._cancel = None
        self.latest_result = None
        self.cycles_completed = 0
        self.skipped_hops = 0
        self._windows = asyncio.Queue(maxsize=1)
        self._idle = asyncio.Event()
        self._idle.set()

        logger.info(f"Starting: {self.context.sample_rate}Hz, window {self.context.window_duration}s "
                    f"({self.window_length} samples), hop {self.hop_duration}s ({self.hop_length} samples), "
                    f"algorithms {self.registry.ids}")
        self._set_state(DetectionState.LISTENING, "Waiting for audio")

        try:
            await self.source.start()
        except Exception as e:
            self._fail(e, "Audio source failed to start")
            return

        self._analysis_task = asyncio.create_task(self._analysis_loop(session))
        self._ingest_task = asyncio.create_task(self._ingest_loop(session))
        if self.no_audio_warning > 0:
            self._watchdog_task = asyncio.create_task(self._watchdog(session))

    async def stop(self) -> None:
        """Cancel ingestion and any in-flight cycle, then return to ``idle``.

        No result is emitted once this returns.
        """
        if self._state is DetectionState.IDLE:
            return
        self._session += 1
        if self._cancel is not None:
            self._cancel.set()

        tasks = [t for t in (self._ingest_task, self._analysis_task, self._watchdog_task) if t is not None]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        self._ingest_task = self._analysis_task = self._watchdog_task = None

        try:
            await self.source.stop()
        except Exception as e:
            logger.warning(f"Audio source did not stop cleanly: {e}")

        self._busy = False
        self._windows = None
        if self._idle is not None:
            self._idle.set()
        self._set_state(DetectionState.IDLE, "Stopped")
        for sub in list(self._result_subs) + list(self._state_subs):
            sub.close()
        logger.info(f"Stopped after {self.cycles_completed} cycles ({self.skipped_hops} hops skipped)")

    async def join(self) -> None:
        """Wait until the source is exhausted and the last cycle has finished."""
        if self._ingest_task is not None:
            await asyncio.wait([self._ingest_task])
        if self._idle is not None and self._state in _ACTIVE:
            await self._idle.wait()

    def close(self) -> None:
        """Release the registry's worker threads."""
        self.registry.shutdown()

    # ------------------------------------------------------------------
    # Ingestion (single writer)
    # ------------------------------------------------------------------

    async def _ingest_loop(self, session: int) -> None:
        received = False
        try:
            async for chunk in self.source.chunks():
                if session != self._session:
                    return
                if len(chunk) == 0:
                    continue
                if not received:
                    received = True
                    logger.info(f"First audio chunk: {len(chunk)} samples")
                    self._set_state(
                        DetectionState.BUFFERING,
                        f"Buffering {self.context.window_duration:.1f}s of audio",
                    )
                await self._ingest(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if session == self._session:
                self._fail(e, "Audio input failed")
            return
        logger.info(f"Audio source ended after {self._buffer.total_samples / self.context.sample_rate:.1f}s")

    async def _ingest(self, chunk) -> None:
        # Split at hop boundaries so every window ends exactly on one.
        pos = 0
        while pos < len(chunk):
            room = self._next_boundary - self._buffer.total_samples
            piece = chunk[pos:pos + room]
            self._buffer.append(piece)
            pos += len(piece)
            if self._buffer.total_samples == self._next_boundary:
                await self._on_boundary()
                self._next_boundary += self.hop_length

    async def _on_boundary(self) -> None:
        at = self._buffer.total_samples / self.context.sample_rate
        if self._busy and not self.skip_late_windows:
            await self._idle.wait()
        if self._busy:
            self.skipped_hops += 1
            logger.warning(f"Analysis still running at {at:.2f}s, skipping this hop")
            return
        samples, start_index = self._buffer.snapshot(self.window_length)
        window = AudioWindow(
            samples=samples,
            start_time=start_index / self.context.sample_rate,
            sample_rate=self.context.sample_rate,
            index=self._cycle_index,
        )
        self._cycle_index += 1
        self._busy = True
        self._idle.clear()
        self._windows.put_nowait(window)

    # ------------------------------------------------------------------
    # Analysis (serialized)
    # ------------------------------------------------------------------

    async def _analysis_loop(self, session: int) -> None:
        loop = asyncio.get_running_loop()
        windows = self._windows
        while True:
            window = await windows.get()
            cancel = threading.Event()
            self._cancel = cancel
            try:
                self._set_state(
                    DetectionState.ANALYZING,
                    f"Analyzing {window.start_time:.1f}-{window.end_time:.1f}s",
                )
                logger.info(f"Cycle {window.index}: window {window.start_time:.2f}-{window.end_time:.2f}s")
                readings = await loop.run_in_executor(
                    None, self.registry.evaluate, window, self.context, cancel,
                )
                if session != self._session:
                    return
                result = self.engine.fuse(readings, timestamp=window.end_time)
                self._emit(result)
            except asyncio.CancelledError:
                cancel.set()
                raise
            except Exception as e:
                logger.exception(f"Analysis cycle {window.index} failed")
                if session == self._session:
                    self._fail(e, "Analysis failed")
                return
            finally:
                self._busy = False
                if windows.empty():
                    self._idle.set()

    def _emit(self, result: ConsensusResult) -> None:
        self.latest_result = result
        self.cycles_completed += 1
        if result.bpm is None:
            logger.info("CONSENSUS: no tempo yet")
            status = "No tempo yet"
        else:
            logger.info(f"CONSENSUS: {result.bpm:.1f} BPM (confidence {result.confidence:.2f}, "
                        f"{result.source}, cluster {list(result.cluster)})")
            status = f"{result.bpm:.1f} BPM"
        for sub in list(self._result_subs):
            sub.put(result)
        for listener in self._result_listeners:
            try:
                listener(result)
            except Exception:
                logger.exception("Result listener failed")
        self._set_state(DetectionState.STREAMING_RESULTS, status)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def _watchdog(self, session: int) -> None:
        await asyncio.sleep(self.no_audio_warning)
        if session == self._session and self._state is DetectionState.LISTENING:
            logger.warning(f"No audio received after {self.no_audio_warning:.0f}s, still waiting")
            self._set_state(DetectionState.LISTENING, "No audio received yet")

    def _fail(self, error: Exception, what: str) -> None:
        logger.error(f"{what}: {error}")
        self._session += 1
        if self._cancel is not None:
            self._cancel.set()
        current = asyncio.current_task()
        for task in (self._analysis_task, self._watchdog_task, self._ingest_task):
            if task is not None and task is not current:
                task.cancel()
        self._busy = False
        if self._idle is not None:
            self._idle.set()
        self._set_state(DetectionState.ERROR, str(error) or type(error).__name__)

    def _set_state(self, state: DetectionState, message: str | None = None) -> None:
        self._state = state
        self._message = message
        change = StateChange(state=state, message=message)
        logger.debug(f"State: {state.value}" + (f" ({message})" if message else ""))
        for sub in list(self._state_subs):
            sub.put(change)
        for listener in self._state_listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("State listener failed")
