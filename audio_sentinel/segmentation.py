# audio_sentinel/segmentation.py
"""Turns a scored timeline into discrete anomaly incidents."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .errors import ConfigurationError

# Absorbs float error in differences of frame timestamps
GAP_TOLERANCE = 1e-9


class Severity(str, Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


class Verification(str, Enum):
    PENDING = 'Pending'
    VERIFIED = 'Verified'
    FALSE_POSITIVE = 'FalsePositive'
    UNVERIFIED = 'Unverified'


@dataclass(frozen=True)
class Incident:
    id: str
    start_offset: float
    duration: float
    peak_intensity: float
    severity: Severity
    frame_index: int = 0
    verification: Verification = Verification.PENDING
    verification_reason: Optional[str] = None

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration


def classify_severity(intensity: float, high_ratio: float = 3.0, medium_ratio: float = 1.8) -> Severity:
    if intensity > high_ratio:
        return Severity.HIGH
    if intensity > medium_ratio:
        return Severity.MEDIUM
    return Severity.LOW


def segment_incidents(points: Iterable[Tuple[float, float]],
                      threshold: float,
                      merge_gap: float = 0.8,
                      high_ratio: float = 3.0,
                      medium_ratio: float = 1.8,
                      frame_period: Optional[float] = None,
                      default_frame_period: float = 0.032) -> List[Incident]:
    """Group above-threshold points into incidents.

    A point qualifies when its score is strictly above ``threshold``. A
    qualifying point joins the open incident if it lies within ``merge_gap``
    seconds of that incident's last qualifying point; otherwise it opens a
    new one. An incident lasts from its first to its last qualifying point,
    but never less than one frame period.

    Args:
        points: ``(timestamp, smoothed_score)`` pairs in timestamp order
        threshold: Effective threshold, in score units
        merge_gap: Largest gap in seconds bridged inside one incident
        high_ratio: Peak intensity above which an incident is High
        medium_ratio: Peak intensity above which an incident is Medium
        frame_period: Seconds per frame; inferred from the first two points
            when omitted

    Returns:
        list: Incidents ordered by start offset, non-overlapping

    Raises:
        ConfigurationError: If threshold is not positive
    """
    if threshold is None or threshold <= 0:
        raise ConfigurationError(f"threshold must be positive, got {threshold!r}")

    points = [(float(t), float(s)) for t, s in points]
    if not points:
        return []

    if frame_period is None:
        frame_period = points[1][0] - points[0][0] if len(points) > 1 else default_frame_period
        if frame_period <= 0:
            frame_period = default_frame_period

    incidents: List[Incident] = []
    start = last = peak = None
    first_index = 0

    def close(next_start=None):
        duration = max(frame_period, last - start)
        if next_start is not None:
            duration = min(duration, next_start - start)
        incidents.append(Incident(
            id=f"incident-{first_index}",
            start_offset=start,
            duration=duration,
            peak_intensity=peak,
            severity=classify_severity(peak, high_ratio, medium_ratio),
            frame_index=first_index
        ))

    for i, (timestamp, score) in enumerate(points):
        if score <= threshold:
            continue
        intensity = score / threshold
        if start is not None and timestamp - last <= merge_gap + GAP_TOLERANCE:
            last = timestamp
            peak = max(peak, intensity)
            continue
        if start is not None:
            close(next_start=timestamp)
        start = last = timestamp
        peak = intensity
        first_index = i

    if start is not None:
        close()
    return incidents
