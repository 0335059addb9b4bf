"""Tests for the HTTP and WebSocket API."""

import numpy as np
import pytest

from tempofuse.api.websocket import get_settings
from tempofuse.config import Settings
from tempofuse.main import app
from tests.conftest import generate_click_track

SR = 8000


@pytest.fixture
def live_settings():
    config = Settings(
        sample_rate=SR,
        window_duration=2.0,
        hop_duration=1.0,
        algorithms=["onset", "autocorrelation"],
        no_audio_warning=0,
    )
    app.dependency_overrides[get_settings] = lambda: config
    yield config
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_live_websocket_streams_consensus(client, live_settings):
    audio = generate_click_track(bpm=120, duration_seconds=3, sr=SR)
    chunk = SR // 10

    with client.websocket_connect("/api/ws/live") as ws:
        first = ws.receive_json()
        assert first["type"] == "state"
        assert first["state"] == "listening"

        for start in range(0, len(audio), chunk):
            ws.send_bytes(audio[start:start + chunk].astype("<f4").tobytes())

        messages = []
        for _ in range(50):
            message = ws.receive_json()
            messages.append(message)
            if message["type"] == "consensus":
                break

    consensus = messages[-1]
    assert consensus["type"] == "consensus"
    assert consensus["timestamp"] == pytest.approx(2.0)
    assert 0.0 <= consensus["confidence"] <= 1.0
    states = [m["state"] for m in messages if m["type"] == "state"]
    assert "buffering" in states
    assert "analyzing" in states
