"""Tempo algorithm subpackage: one strategy per module."""

from tempofuse.analysis.algorithms.base import TempoAlgorithm
from tempofuse.analysis.algorithms.onset import OnsetAlgorithm
from tempofuse.analysis.algorithms.autocorrelation import AutocorrelationAlgorithm
from tempofuse.analysis.algorithms.spectral import SpectralAlgorithm
from tempofuse.analysis.algorithms.wavelet import WaveletEnergyAlgorithm
from tempofuse.analysis.algorithms.beat_tracker import BeatTrackerAlgorithm
from tempofuse.analysis.algorithms.plp import PlpAlgorithm

ALGORITHMS: dict[str, type[TempoAlgorithm]] = {
    OnsetAlgorithm.algorithm_id: OnsetAlgorithm,
    AutocorrelationAlgorithm.algorithm_id: AutocorrelationAlgorithm,
    SpectralAlgorithm.algorithm_id: SpectralAlgorithm,
    WaveletEnergyAlgorithm.algorithm_id: WaveletEnergyAlgorithm,
    BeatTrackerAlgorithm.algorithm_id: BeatTrackerAlgorithm,
    PlpAlgorithm.algorithm_id: PlpAlgorithm,
}


def build_algorithms(names: list[str], wavelet_levels: int = 4) -> list[TempoAlgorithm]:
    """Instantiate algorithms from an ordered list of ids."""
    algorithms: list[TempoAlgorithm] = []
    for name in names:
        if name not in ALGORITHMS:
            raise ValueError(f"unknown algorithm {name!r}; expected one of {sorted(ALGORITHMS)}")
        if name == WaveletEnergyAlgorithm.algorithm_id:
            algorithms.append(WaveletEnergyAlgorithm(levels=wavelet_levels))
        else:
            algorithms.append(ALGORITHMS[name]())
    return algorithms


__all__ = [
    "ALGORITHMS",
    "TempoAlgorithm",
    "OnsetAlgorithm",
    "AutocorrelationAlgorithm",
    "SpectralAlgorithm",
    "WaveletEnergyAlgorithm",
    "BeatTrackerAlgorithm",
    "PlpAlgorithm",
    "build_algorithms",
]
