"""Signed linear audio helpers."""

from typing import Iterator

import numpy as np

from audiosocket.utils.exceptions import AudioSocketError

SLIN_SAMPLE_RATE = 8000
SLIN_SAMPLE_WIDTH = 2
DEFAULT_FRAME_DURATION_MS = 20


def frame_size_bytes(
    sample_rate: int = SLIN_SAMPLE_RATE,
    frame_duration_ms: int = DEFAULT_FRAME_DURATION_MS,
    sample_width: int = SLIN_SAMPLE_WIDTH,
) -> int:
    """Bytes per frame of mono audio (320 for 8kHz, 20ms, 16-bit)."""
    return int(sample_rate * frame_duration_ms / 1000) * sample_width


def iter_frames(data: bytes, frame_size: int) -> Iterator[bytes]:
    """Split audio into frames; the last one keeps whatever remains.

    The final frame is not padded.
    """
    if frame_size < 1:
        raise AudioSocketError(f"Invalid frame size: {frame_size}")
    view = memoryview(data)
    for offset in range(0, len(data), frame_size):
        yield bytes(view[offset : offset + frame_size])


def silence(num_bytes: int) -> bytes:
    """Signed linear silence."""
    return bytes(num_bytes)


def bytes_to_numpy(
    audio_bytes: bytes,
    sample_width: int = SLIN_SAMPLE_WIDTH,
    normalize: bool = True,
) -> np.ndarray:
    """Convert raw audio bytes to numpy array.

    Args:
        audio_bytes: Raw PCM audio bytes (little-endian)
        sample_width: Bytes per sample (2 for 16-bit)
        normalize: If True, normalize to [-1, 1] float32

    Returns:
        Audio as numpy array
    """
    if not audio_bytes:
        return np.array([], dtype=np.float32 if normalize else np.int16)

    if sample_width == 2:
        if len(audio_bytes) % 2:
            raise AudioSocketError(f"Odd byte count for 16-bit audio: {len(audio_bytes)}")
        audio = np.frombuffer(audio_bytes, dtype="<i2")
    elif sample_width == 1:
        audio = np.frombuffer(audio_bytes, dtype=np.int8).astype(np.int16) * 256
    else:
        raise AudioSocketError(f"Unsupported sample width: {sample_width}")

    if normalize:
        return audio.astype(np.float32) / 32768.0
    return audio


def calculate_rms(audio: np.ndarray) -> float:
    """Calculate RMS (root mean square) of audio.

    Args:
        audio: Audio samples (normalized float32)

    Returns:
        RMS value (0.0 to ~1.0 for normalized audio)
    """
    if len(audio) == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio**2)))


def is_speech_present(
    audio: np.ndarray,
    threshold: float = 0.01,
) -> bool:
    """Simple energy-based speech detection."""
    return calculate_rms(audio) > threshold
