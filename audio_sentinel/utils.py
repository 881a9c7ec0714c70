# audio_sentinel/utils.py
"""Utility functions for the anomaly detection system."""

import glob
import io
import logging
import os
from typing import List, Tuple

import librosa
import numpy as np
from scipy.io import wavfile

from .errors import DecodeError

logger = logging.getLogger(__name__)

AUDIO_PATTERNS = ("*.wav", "*.flac", "*.ogg", "*.mp3")


def setup_logging(level: int = logging.INFO):
    """Setup logging configuration."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def get_file_paths(directory: str, patterns=AUDIO_PATTERNS) -> List[str]:
    """Get audio file paths in a directory.

    Args:
        directory: Directory to search in
        patterns: Glob patterns to match

    Returns:
        Sorted list of file paths
    """
    if isinstance(patterns, str):
        patterns = (patterns,)

    files = []
    for pattern in patterns:
        search_pattern = os.path.join(directory, pattern)
        logger.info(f"Searching for files in: {search_pattern}")
        files.extend(glob.glob(search_pattern))

    if not files:
        raise ValueError(f"No audio files found in {directory}")

    return sorted(set(files))


def load_audio(path: str) -> Tuple[np.ndarray, int]:
    """Decode an audio file to a mono float32 waveform at its native rate.

    Raises:
        DecodeError: If the file cannot be read or holds no samples
    """
    try:
        y, sr = librosa.load(path, sr=None, mono=True)
    except Exception as e:
        raise DecodeError(f"Could not decode {path}: {e}") from e

    if y.size == 0:
        raise DecodeError(f"{path} contains no audio samples")
    return y.astype(np.float32), int(sr)


def encode_wav(waveform: np.ndarray, sample_rate: int) -> bytes:
    """Encode a float waveform as 16-bit PCM WAV bytes."""
    pcm = np.clip(np.asarray(waveform, dtype=np.float32), -1.0, 1.0)
    buffer = io.BytesIO()
    wavfile.write(buffer, int(sample_rate), (pcm * 32767).astype(np.int16))
    return buffer.getvalue()
