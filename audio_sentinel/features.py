# audio_sentinel/features.py
"""Feature extraction module for audio processing."""

import logging
from typing import Iterator, Optional

import numpy as np
import librosa

from .config import FeatureConfig

logger = logging.getLogger(__name__)


class FeatureExtractor:
    """Magnitude-spectrum feature pipeline.

    Turns a mono waveform into fixed-width frames of STFT magnitudes, scaled
    by a fixed gain and clamped to ``[0, max_value]`` so that dividing by
    ``max_value`` yields network input in ``[0, 1]``.
    """

    def __init__(self, config: Optional[FeatureConfig] = None):
        self.config = config if config is not None else FeatureConfig()

    @property
    def frame_width(self) -> int:
        return self.config.n_bins

    def n_frames(self, n_samples: int) -> int:
        """Number of full windows in a waveform of ``n_samples``."""
        if n_samples < self.config.n_fft:
            return 0
        return 1 + (n_samples - self.config.n_fft) // self.config.hop_length

    def iter_frames(self, waveform: np.ndarray) -> Iterator[np.ndarray]:
        """Lazily yield one feature frame per hop.

        The STFT is computed ``block_frames`` windows at a time so long
        recordings are never transformed in one piece.

        Args:
            waveform: Mono samples, any float dtype.

        Yields:
            np.ndarray: float32 frame of width ``n_bins``
        """
        y = np.ascontiguousarray(np.asarray(waveform, dtype=np.float32).reshape(-1))
        total = self.n_frames(len(y))
        hop = self.config.hop_length
        n_fft = self.config.n_fft

        for first in range(0, total, self.config.block_frames):
            count = min(self.config.block_frames, total - first)
            start = first * hop
            end = (first + count - 1) * hop + n_fft
            block = self._magnitudes(y[start:end])
            for row in block:
                yield row

    def extract(self, waveform: np.ndarray) -> np.ndarray:
        """Extract all frames as a 2-D ``(n_frames, n_bins)`` array."""
        frames = list(self.iter_frames(waveform))
        if not frames:
            return np.zeros((0, self.config.n_bins), dtype=np.float32)
        return np.stack(frames)

    def training_frames(self, waveform: np.ndarray) -> np.ndarray:
        """Extract a strided subsample of at most ``max_training_frames``."""
        frames = self.extract(waveform)
        limit = self.config.max_training_frames
        if len(frames) <= limit:
            return frames
        stride = max(1, len(frames) // limit)
        return frames[::stride][:limit]

    def frame_times(self, n_frames: int, sample_rate: int) -> np.ndarray:
        """Start time in seconds of each frame."""
        return np.arange(n_frames) * (self.config.hop_length / float(sample_rate))

    def frame_amplitude(self, frame: np.ndarray) -> float:
        """Mean level of a frame as a percentage of full scale."""
        frame = np.asarray(frame, dtype=np.float32)
        if frame.size == 0:
            return 0.0
        return float(np.mean(frame) / (self.config.max_value / 100.0))

    def apply_voice_shield(self, frame: np.ndarray) -> np.ndarray:
        """Attenuate the speech band so talking near the mic is not scored."""
        low, high = self.config.voice_band
        shielded = np.array(frame, dtype=np.float32, copy=True)
        shielded[low:high] *= self.config.voice_attenuation
        return shielded

    def _magnitudes(self, y: np.ndarray) -> np.ndarray:
        """STFT magnitudes for a block, shape ``(frames, n_bins)``."""
        spectrum = librosa.stft(
            y=y,
            n_fft=self.config.n_fft,
            hop_length=self.config.hop_length,
            window='hann',
            center=False
        )
        magnitudes = np.abs(spectrum[:self.config.n_bins, :]).T
        return np.clip(magnitudes * self.config.gain, 0.0, self.config.max_value).astype(np.float32)
