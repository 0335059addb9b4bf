"""Command-line entry point: stream an audio file through the live detector."""

import argparse
import asyncio
import json
import logging
import sys

from tempofuse.analysis.coordinator import DetectorCoordinator
from tempofuse.analysis.models import ConsensusResult, DetectionState
from tempofuse.api.schemas import result_to_message
from tempofuse.audio.source import FileAudioSource
from tempofuse.config import Settings, settings

logger = logging.getLogger(__name__)


def format_result(result: ConsensusResult) -> str:
    if result.bpm is None:
        return f"{result.timestamp:8.2f}s      --- BPM  (no tempo yet)"
    agreeing = ",".join(result.cluster) or "-"
    return (f"{result.timestamp:8.2f}s  {result.bpm:7.1f} BPM  "
            f"conf {result.confidence:.2f}  {result.source:<15} [{agreeing}]")


async def stream_file(path: str, config: Settings, realtime: bool = False, as_json: bool = False) -> int:
    source = FileAudioSource(
        path,
        sample_rate=config.sample_rate,
        chunk_duration=config.chunk_duration_ms / 1000.0,
        realtime=realtime,
    )
    coordinator = DetectorCoordinator.from_settings(source, config, skip_late_windows=realtime)

    def emit(result: ConsensusResult) -> None:
        if as_json:
            print(json.dumps(result_to_message(result)), flush=True)
        else:
            print(format_result(result), flush=True)

    coordinator.add_result_listener(emit)
    try:
        await coordinator.start()
        if coordinator.state is not DetectionState.ERROR:
            await coordinator.join()
        failure = coordinator.message if coordinator.state is DetectionState.ERROR else None
    finally:
        await coordinator.stop()
        coordinator.close()

    if failure:
        print(f"error: {failure}", file=sys.stderr)
        return 1
    if coordinator.cycles_completed == 0:
        window = config.window_duration
        print(f"error: {path} is shorter than one {window:.1f}s analysis window", file=sys.stderr)
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="tempofuse-stream",
        description="Stream an audio file through the live multi-algorithm tempo detector",
    )
    parser.add_argument("file", help="Audio file to analyse")
    parser.add_argument("--realtime", action="store_true",
                        help="Pace chunks at the file's own rate instead of as fast as possible")
    parser.add_argument("--json", action="store_true", help="Print one JSON message per result")
    parser.add_argument("--algorithms", default=None,
                        help="Comma-separated algorithm ids (default: the configured list)")
    parser.add_argument("--consensus", choices=["robust", "baseline"], default=None)
    parser.add_argument("--window", type=float, default=None, help="Window duration in seconds")
    parser.add_argument("--hop", type=float, default=None, help="Hop duration in seconds")
    parser.add_argument("--min-bpm", type=float, default=None)
    parser.add_argument("--max-bpm", type=float, default=None)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline progress")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        "algorithms": args.algorithms.split(",") if args.algorithms else None,
        "consensus": args.consensus,
        "window_duration": args.window,
        "hop_duration": args.hop,
        "min_bpm": args.min_bpm,
        "max_bpm": args.max_bpm,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        config = Settings(**overrides) if overrides else settings
        return asyncio.run(stream_file(args.file, config, realtime=args.realtime, as_json=args.json))
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    sys.exit(main())
