"""WebSocket endpoint for live tempo detection."""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from tempofuse.analysis.coordinator import DetectorCoordinator
from tempofuse.api.schemas import ErrorMessage, result_to_message, state_to_message
from tempofuse.audio.source import QueueAudioSource
from tempofuse.config import Settings, settings

logger = logging.getLogger(__name__)

router = APIRouter()

_OUTBOX_SIZE = 64


def get_settings() -> Settings:
    return settings


@router.websocket("/ws/live")
async def live_detection(websocket: WebSocket, config: Settings = Depends(get_settings)):
    """Live tempo detection via WebSocket.

    Protocol:
    - Client sends binary Float32 PCM chunks (mono, ``config.sample_rate`` Hz)
    - Server sends JSON messages:
      - {"type": "state", "state": "listening", "message": ..., "timestamp": T}
      - {"type": "consensus", "bpm": B, "confidence": C, "cluster": [...], ...}
      - {"type": "error", "message": ...}
    """
    await websocket.accept()

    source = QueueAudioSource(config.sample_rate)
    coordinator = DetectorCoordinator.from_settings(source, config)
    outbox: asyncio.Queue = asyncio.Queue(maxsize=_OUTBOX_SIZE)

    def enqueue(message: dict) -> None:
        if outbox.full():
            outbox.get_nowait()
        outbox.put_nowait(message)

    coordinator.add_state_listener(lambda change: enqueue(state_to_message(change)))
    coordinator.add_result_listener(lambda result: enqueue(result_to_message(result)))

    async def sender():
        while True:
            await websocket.send_json(await outbox.get())

    send_task = asyncio.create_task(sender())
    logger.info("Live client connected")

    try:
        await coordinator.start()
        while True:
            data = await websocket.receive_bytes()
            source.push(data)
    except WebSocketDisconnect:
        logger.info("Live client disconnected")
    except Exception as e:
        logger.exception("Live session failed")
        try:
            await websocket.send_json(ErrorMessage(message=str(e)).model_dump())
        except Exception:
            pass
    finally:
        await coordinator.stop()
        coordinator.close()
        send_task.cancel()
