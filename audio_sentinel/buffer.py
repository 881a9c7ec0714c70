# audio_sentinel/buffer.py
"""In-memory collection of labelled feature batches awaiting training."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class Label(str, Enum):
    NORMAL = 'Normal'
    ANOMALY = 'Anomaly'


@dataclass(frozen=True)
class TrainingSample:
    """One recording's worth of feature frames and its label."""
    id: str
    frames: np.ndarray
    label: Label
    sample_rate: int
    created_at: float = field(default_factory=time.time)


class TrainingBuffer:
    """Append-only store of training samples, cleared wholesale."""

    def __init__(self):
        self._samples: List[TrainingSample] = []

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> List[TrainingSample]:
        return list(self._samples)

    def add(self, sample_id: str, frames: np.ndarray, label, sample_rate: int) -> TrainingSample:
        """Append a sample.

        Args:
            sample_id: Caller-chosen identifier, e.g. the source file name
            frames: 2-D array of feature frames
            label: ``Label`` or its string value ("Normal"/"Anomaly")
            sample_rate: Rate of the audio the frames came from

        Returns:
            TrainingSample: The stored sample
        """
        frames = np.array(frames, dtype=np.float32, copy=True)
        if frames.ndim != 2:
            raise ValueError(f"frames must be 2-D, got shape {frames.shape}")
        frames.setflags(write=False)

        sample = TrainingSample(
            id=sample_id,
            frames=frames,
            label=Label(label),
            sample_rate=int(sample_rate)
        )
        self._samples.append(sample)
        logger.debug(f"Buffered {sample.label.value} sample {sample_id} ({len(frames)} frames)")
        return sample

    def clear(self) -> None:
        self._samples = []

    def frames(self, label: Label, width: Optional[int] = None) -> np.ndarray:
        """All frames with ``label`` stacked into one array."""
        rows = [s.frames for s in self._samples if s.label == label and len(s.frames)]
        if not rows:
            return np.zeros((0, width or 0), dtype=np.float32)
        return np.vstack(rows)

    @property
    def sample_rate(self) -> Optional[int]:
        """Rate of the most recently added sample."""
        if not self._samples:
            return None
        return self._samples[-1].sample_rate
