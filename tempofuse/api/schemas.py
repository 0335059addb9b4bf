"""Pydantic message models for the live WebSocket."""

from pydantic import BaseModel

from tempofuse.analysis.models import ConsensusResult, StateChange


class ReadingResponse(BaseModel):
    algorithm_id: str
    label: str = ""
    bpm: float
    confidence: float


class StateMessage(BaseModel):
    type: str = "state"
    state: str
    message: str | None = None
    timestamp: float


class ConsensusMessage(BaseModel):
    type: str = "consensus"
    bpm: float | None
    confidence: float
    raw_bpm: float | None = None
    source: str = "cluster"
    cluster: list[str] = []
    rejected: list[str] = []
    readings: list[ReadingResponse] = []
    weights: dict[str, float] = {}
    timestamp: float


class ErrorMessage(BaseModel):
    type: str = "error"
    message: str


def state_to_message(change: StateChange) -> dict:
    return StateMessage(
        state=change.state.value,
        message=change.message,
        timestamp=change.timestamp,
    ).model_dump()


def result_to_message(result: ConsensusResult) -> dict:
    """Convert a ConsensusResult to a dict for JSON serialization."""
    return ConsensusMessage(
        bpm=result.bpm,
        confidence=result.confidence,
        raw_bpm=result.raw_bpm,
        source=result.source,
        cluster=list(result.cluster),
        rejected=list(result.rejected),
        readings=[
            ReadingResponse(
                algorithm_id=r.algorithm_id,
                label=r.label,
                bpm=r.bpm,
                confidence=r.confidence,
            )
            for r in result.readings
        ],
        weights=dict(result.weights),
        timestamp=result.timestamp,
    ).model_dump()
