"""Application configuration."""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

from tempofuse.analysis.models import ConsensusSettings, DetectionContext


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio
    sample_rate: int = 44100
    chunk_duration_ms: int = 100  # ms per ingested chunk

    # Analysis windows
    min_bpm: float = 60.0
    max_bpm: float = 200.0
    window_duration: float = 6.0
    hop_duration: float = 4.0
    no_audio_warning: float = 3.0

    # Algorithms
    algorithms: list[str] = ["onset", "autocorrelation", "spectral", "wavelet"]
    algorithm_timeout: float = 5.0
    wavelet_levels: int = 4

    # Consensus
    consensus: str = "robust"  # "robust" | "baseline"
    history_size: int = 10
    min_readings_for_outlier_detection: int = 3
    algorithm_outlier_threshold: float = 8.0
    cluster_tolerance: float = 3.0
    min_cluster_size: int = 2
    smoothing_factor: float = 0.25

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_prefix": "TEMPOFUSE_"}

    @field_validator("consensus")
    @classmethod
    def _known_consensus(cls, value: str) -> str:
        if value not in ("robust", "baseline"):
            raise ValueError(f"unknown consensus policy {value!r}")
        return value

    @model_validator(mode="after")
    def _hop_fits_window(self) -> "Settings":
        if self.hop_duration <= 0 or self.hop_duration > self.window_duration:
            raise ValueError("hop_duration must be in (0, window_duration]")
        return self

    def detection_context(self) -> DetectionContext:
        return DetectionContext(
            sample_rate=self.sample_rate,
            min_bpm=self.min_bpm,
            max_bpm=self.max_bpm,
            window_duration=self.window_duration,
        )

    def consensus_settings(self) -> ConsensusSettings:
        return ConsensusSettings(
            history_size=self.history_size,
            min_readings_for_outlier_detection=self.min_readings_for_outlier_detection,
            algorithm_outlier_threshold=self.algorithm_outlier_threshold,
            cluster_tolerance=self.cluster_tolerance,
            min_cluster_size=self.min_cluster_size,
            smoothing_factor=self.smoothing_factor,
        )


settings = Settings()
