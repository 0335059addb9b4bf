"""Audio preprocessing utilities."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, resample_poly, sosfilt


def normalize(audio: np.ndarray) -> np.ndarray:
    """Peak-normalize audio to the range [-1, 1].

    If the audio is silent (all zeros), it is returned unchanged.
    """
    peak = np.max(np.abs(audio)) if len(audio) else 0.0
    if peak == 0:
        return audio
    return audio / peak


def high_pass_filter(
    audio: np.ndarray,
    sr: int,
    cutoff: float = 40.0,
) -> np.ndarray:
    """Apply a Butterworth high-pass filter.

    Parameters
    ----------
    audio:
        Input audio signal.
    sr:
        Sample rate in Hz.
    cutoff:
        High-pass cutoff frequency in Hz. Defaults to 40 Hz, which removes
        DC offset and rumble without touching kick drums. Audio whose
        Nyquist frequency is at or below the cutoff is returned unchanged.
    """
    if cutoff >= sr / 2:
        return audio
    sos = butter(N=4, Wn=cutoff, btype="high", fs=sr, output="sos")
    return sosfilt(sos, audio)


def downsample(audio: np.ndarray, sr: int, target_sr: int) -> tuple[np.ndarray, int]:
    """Polyphase-decimate *audio* by an integer factor towards *target_sr*.

    Returns (audio, effective_sr). Audio already at or below the target rate
    is returned unchanged.
    """
    factor = int(sr // target_sr)
    if factor <= 1:
        return audio, sr
    return resample_poly(audio, 1, factor), sr // factor


def to_float_samples(chunk) -> np.ndarray:
    """Convert an incoming chunk to a flat float32 array in [-1, 1].

    Accepts float arrays (passed through), integer PCM arrays (scaled by
    their dtype range) and raw little-endian Float32 bytes. Multichannel
    (frames x channels) input is averaged down to mono.
    """
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        usable = len(chunk) - len(chunk) % 4
        arr = np.frombuffer(bytes(chunk[:usable]), dtype="<f4")
    else:
        arr = np.asarray(chunk)
    if np.issubdtype(arr.dtype, np.integer):
        info = np.iinfo(arr.dtype)
        arr = arr.astype(np.float32) / float(max(abs(info.min), info.max))
    if arr.ndim == 2:
        arr = arr.mean(axis=1)
    return np.clip(arr.astype(np.float32, copy=False).ravel(), -1.0, 1.0)
