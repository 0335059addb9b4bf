"""Tests for the audio sources."""

import numpy as np
import pytest
import soundfile as sf

from tempofuse.audio.loader import load_audio
from tempofuse.audio.source import (
    ArrayAudioSource,
    AudioSourceError,
    DeviceUnavailableError,
    FileAudioSource,
    QueueAudioSource,
)
from tests.conftest import generate_click_track


async def collect(source):
    return [chunk async for chunk in source.chunks()]


@pytest.mark.asyncio
async def test_array_source_chunks():
    source = ArrayAudioSource(np.ones(250, dtype=np.float32), 100, chunk_duration=1.0)
    await source.start()
    chunks = await collect(source)
    assert [len(c) for c in chunks] == [100, 100, 50]


@pytest.mark.asyncio
async def test_array_source_requires_start():
    source = ArrayAudioSource(np.ones(10), 100)
    with pytest.raises(AudioSourceError):
        await collect(source)


@pytest.mark.asyncio
async def test_queue_source_drains_then_ends():
    source = QueueAudioSource(100)
    await source.start()
    source.push(np.ones(10, dtype=np.float32))
    source.push(np.array([0.5, 0.25], dtype="<f4").tobytes())
    source.close()
    chunks = await collect(source)
    assert [c.tolist() for c in chunks] == [[1.0] * 10, [0.5, 0.25]]


@pytest.mark.asyncio
async def test_queue_source_drops_oldest_when_full():
    source = QueueAudioSource(100, max_chunks=2)
    for value in (0.1, 0.2, 0.3):
        source.push(np.full(4, value, dtype=np.float32))
    first = await source.chunks().__anext__()
    assert first[0] == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_queue_source_failure_surfaces_after_pending_chunks():
    source = QueueAudioSource(100)
    source.push(np.ones(4))
    source.fail(DeviceUnavailableError("unplugged"))
    received = []
    with pytest.raises(DeviceUnavailableError):
        async for chunk in source.chunks():
            received.append(chunk)
    assert len(received) == 1


@pytest.mark.asyncio
async def test_queue_source_start_discards_previous_session():
    source = QueueAudioSource(100)
    await source.start()
    source.push(np.ones(4))
    await source.stop()

    await source.start()
    source.push(np.full(2, 0.5, dtype=np.float32))
    source.close()
    chunks = await collect(source)
    assert [c.tolist() for c in chunks] == [[0.5, 0.5]]


@pytest.mark.asyncio
async def test_file_source_loads_wav(tmp_path):
    path = tmp_path / "click.wav"
    sf.write(str(path), generate_click_track(bpm=120, duration_seconds=2, sr=22050), 22050)

    source = FileAudioSource(path, sample_rate=22050, chunk_duration=0.5)
    await source.start()
    chunks = await collect(source)
    assert source.duration == pytest.approx(2.0, abs=0.01)
    assert len(chunks) == 4


@pytest.mark.asyncio
async def test_file_source_missing_file(tmp_path):
    source = FileAudioSource(tmp_path / "nope.wav")
    with pytest.raises(DeviceUnavailableError):
        await source.start()


@pytest.mark.asyncio
async def test_file_source_undecodable(tmp_path):
    path = tmp_path / "junk.wav"
    path.write_bytes(b"not audio at all")
    source = FileAudioSource(path)
    with pytest.raises(DeviceUnavailableError):
        await source.start()


def test_load_audio_normalizes(tmp_path):
    path = tmp_path / "quiet.wav"
    sf.write(str(path), 0.25 * generate_click_track(bpm=100, duration_seconds=1, sr=22050), 22050)
    audio, sr = load_audio(str(path), sr=None)
    assert sr == 22050
    assert audio.dtype == np.float32
    assert np.max(np.abs(audio)) == pytest.approx(1.0, abs=1e-3)
