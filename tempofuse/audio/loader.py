"""Audio file decoding for file-backed sources."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import librosa
import numpy as np

from tempofuse.audio.preprocessing import normalize


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int | None = 44100,
) -> tuple[np.ndarray, int]:
    """Decode an audio file or buffer to peak-normalized mono float32.

    Parameters
    ----------
    file_path_or_buffer:
        Path to an audio file or a BytesIO buffer containing audio data.
    sr:
        Target sample rate, or ``None`` to keep the file's native rate.

    Returns
    -------
    tuple[np.ndarray, int]
        A tuple of (audio_array, sample_rate).
    """
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    return normalize(audio).astype(np.float32), int(sample_rate)
