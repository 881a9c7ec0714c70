# audio_sentinel/analysis.py
"""One analysis session: a file scan or a live capture and its incidents."""

import logging
from collections import deque
from typing import Callable, List, Optional

import numpy as np

from .calibration import AutoCalibration, auto_calibrate
from .features import FeatureExtractor
from .scoring import ScoredFrame, StreamingScorer
from .segmentation import Incident, segment_incidents
from .utils import load_audio
from .verification import IncidentVerifier, verify_incident

logger = logging.getLogger(__name__)


class AnalysisSession:
    """Scored timeline of one recording or live session.

    Incidents are never stored: ``incidents()`` recomputes them from the
    scored frames and the detector's current effective threshold, so they
    always agree with the active sensitivity and base threshold.

    Args:
        detector: The AcousticDetector to score with
        extractor: Feature extractor; defaults to ``FeatureExtractor()``
        live: Use the live smoothing window and keep only a bounded history
    """

    def __init__(self, detector, extractor: Optional[FeatureExtractor] = None, live: bool = False):
        self.detector = detector
        self.extractor = extractor if extractor is not None else FeatureExtractor()
        self.live = live

        detection = detector.detection
        window = detection.live_window if live else detection.file_window
        self.scorer = StreamingScorer(detector, window, self.extractor)

        self._frames = deque(maxlen=detection.live_history) if live else []
        self.waveform: Optional[np.ndarray] = None
        self.sample_rate: Optional[int] = None
        self.source: Optional[str] = None

    @property
    def frames(self) -> List[ScoredFrame]:
        return list(self._frames)

    def reset(self) -> None:
        """Discard everything from the previous session."""
        self._frames.clear()
        self.scorer.reset()
        self.waveform = None
        self.sample_rate = None
        self.source = None

    def process_frame(self, frame: np.ndarray, timestamp: float) -> ScoredFrame:
        """Score one live frame and append it to the history."""
        scored = self.scorer.process(frame, timestamp)
        self._frames.append(scored)
        return scored

    def analyze_waveform(self,
                         waveform: np.ndarray,
                         sample_rate: int,
                         calibrate: bool = True,
                         on_progress: Optional[Callable[[float], None]] = None) -> List[ScoredFrame]:
        """Score a whole recording, replacing the current session.

        Frames are published only once the scan completes. With
        ``calibrate`` the sensitivity is then auto-calibrated to the
        recording.
        """
        self.reset()
        waveform = np.asarray(waveform, dtype=np.float32).reshape(-1)
        total = self.extractor.n_frames(len(waveform))
        block = self.extractor.config.block_frames

        scanned = []
        for scored in self.scorer.scan(waveform, sample_rate):
            scanned.append(scored)
            if on_progress is not None and len(scanned) % block == 0:
                on_progress(len(scanned) / total)

        self._frames.extend(scanned)
        self.waveform = waveform
        self.sample_rate = int(sample_rate)
        logger.info(f"Scanned {len(scanned)} frames ({len(waveform) / float(sample_rate):.1f}s of audio)")

        if calibrate:
            self.auto_calibrate()
        if on_progress is not None:
            on_progress(1.0)
        return self.frames

    def analyze_file(self, path: str, calibrate: bool = True,
                     on_progress: Optional[Callable[[float], None]] = None) -> List[ScoredFrame]:
        """Decode and scan an audio file.

        Raises:
            DecodeError: If the file cannot be decoded; the session is left empty
        """
        self.reset()
        logger.info(f"Scanning {path}")
        waveform, sample_rate = load_audio(path)
        frames = self.analyze_waveform(waveform, sample_rate, calibrate=calibrate, on_progress=on_progress)
        self.source = path
        return frames

    def auto_calibrate(self) -> Optional[AutoCalibration]:
        """Fit the detector's sensitivity to this session's score statistics."""
        frames = self._frames
        result = auto_calibrate(
            [f.smoothed_score for f in frames],
            [f.amplitude for f in frames],
            self.detector.base_threshold,
            self.detector.detection
        )
        if result is None:
            return None

        self.detector.set_sensitivity(result.sensitivity)
        logger.info(f"Auto-calibration: baseline noise level {result.mean:.2f}")
        logger.info(f"Auto-calibration: energy compensation +{(result.energy_factor - 1) * 100:.0f}%")
        logger.info(f"Auto-calibration: new threshold {result.target_threshold:.2f}")
        return result

    def incidents(self) -> List[Incident]:
        """Incidents for the current effective threshold."""
        if not self._frames:
            return []
        detection = self.detector.detection
        return segment_incidents(
            [(f.timestamp, f.smoothed_score) for f in self._frames],
            self.detector.effective_threshold(),
            merge_gap=detection.merge_gap,
            high_ratio=detection.high_ratio,
            medium_ratio=detection.medium_ratio,
            default_frame_period=detection.default_frame_period
        )

    def verified_incidents(self,
                           verifier: Optional[IncidentVerifier],
                           padding: float = 1.0) -> List[Incident]:
        """Incidents annotated by an external verifier.

        Only file sessions keep the audio needed for clips; live incidents
        come back unverified.
        """
        incidents = self.incidents()
        if self.waveform is None:
            verifier = None
        return [
            verify_incident(incident, self.waveform, self.sample_rate, verifier, padding)
            for incident in incidents
        ]
