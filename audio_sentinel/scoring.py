# audio_sentinel/scoring.py
"""Per-frame scoring with a sliding-window smoother."""

from collections import deque
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from .detector import DetectorState
from .errors import ConfigurationError
from .features import FeatureExtractor


@dataclass(frozen=True)
class ScoredFrame:
    timestamp: float
    raw_score: float
    smoothed_score: float
    amplitude: float
    is_anomaly: bool = False


class StreamingScorer:
    """Scores frames one at a time and smooths them over a short window.

    The smoothed score is the unweighted mean of the last ``window`` raw
    scores. Live capture and file scans share this class; only the source
    of the frames differs.
    """

    def __init__(self,
                 detector,
                 window: int = 8,
                 extractor: Optional[FeatureExtractor] = None):
        if window <= 0:
            raise ConfigurationError(f"window must be positive, got {window}")
        self.detector = detector
        self.window = window
        self.extractor = extractor if extractor is not None else FeatureExtractor()
        self._scores = deque(maxlen=window)

    def reset(self) -> None:
        self._scores.clear()

    def process(self, frame: np.ndarray, timestamp: float) -> ScoredFrame:
        """Score one frame and fold it into the window."""
        result = self.detector.score(frame)
        self._scores.append(result.score)
        smoothed = float(sum(self._scores) / len(self._scores))

        is_anomaly = False
        if self.detector.state == DetectorState.IDLE:
            is_anomaly = smoothed > self.detector.effective_threshold()

        return ScoredFrame(
            timestamp=float(timestamp),
            raw_score=result.score,
            smoothed_score=smoothed,
            amplitude=self.extractor.frame_amplitude(frame),
            is_anomaly=is_anomaly
        )

    def scan(self, waveform: np.ndarray, sample_rate: int) -> Iterator[ScoredFrame]:
        """Lazily score every frame of a recording.

        Timestamps are frame start offsets in seconds.
        """
        period = self.extractor.config.hop_length / float(sample_rate)
        for i, frame in enumerate(self.extractor.iter_frames(waveform)):
            yield self.process(frame, i * period)
