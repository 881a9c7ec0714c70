# audio_sentinel/calibration.py
"""Decision threshold calibration from reconstruction-error statistics."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .config import DetectionConfig
from .errors import CalibrationError, ConfigurationError, TrainingError
from .evaluation import evaluate_scores

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


@dataclass
class CalibrationOutcome:
    """Result of a training run and the calibration that follows it."""
    status: OutcomeStatus
    message: str
    base_threshold: Optional[float] = None
    normal_percentile: Optional[float] = None
    anomaly_percentile: Optional[float] = None
    distribution: Optional[Tuple[float, float, float]] = None
    metrics: Dict[str, float] = field(default_factory=dict)

    def raise_for_status(self) -> None:
        """Raise TrainingError if the run failed."""
        if self.status == OutcomeStatus.ERROR:
            raise TrainingError(self.message)


@dataclass(frozen=True)
class AutoCalibration:
    """Intermediate values of a sigma-rule calibration on one recording."""
    mean: float
    stddev: float
    avg_amplitude: float
    energy_factor: float
    target_threshold: float
    sensitivity: float


def effective_threshold(base_threshold: Optional[float],
                        sensitivity: Optional[float],
                        scale: float = 10000.0) -> float:
    """Live decision threshold in score units.

    ``base_threshold * (2 / sensitivity) * scale``; a smaller sensitivity
    raises the threshold.

    Raises:
        ConfigurationError: If an input is unset or sensitivity is not positive
    """
    if base_threshold is None:
        raise ConfigurationError("base_threshold is not set; train or load a model first")
    if sensitivity is None:
        raise ConfigurationError("sensitivity is not set")
    if sensitivity <= 0:
        raise ConfigurationError(f"sensitivity must be positive, got {sensitivity}")
    if base_threshold < 0:
        raise ConfigurationError(f"base_threshold must be non-negative, got {base_threshold}")
    return float(base_threshold) * (2.0 / float(sensitivity)) * float(scale)


def fit_score_distribution(errors: np.ndarray) -> Optional[Tuple[float, float, float]]:
    """Fit a gamma distribution to the errors, or None if they are degenerate."""
    errors = np.asarray(errors, dtype=np.float64)
    if len(errors) < 3 or not np.all(np.isfinite(errors)) or np.ptp(errors) == 0:
        return None
    try:
        shape, loc, scale = stats.gamma.fit(errors)
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Gamma fit of error distribution failed: {e}")
        return None
    return float(shape), float(loc), float(scale)


def calibrate_training(normal_errors: np.ndarray,
                       anomaly_errors: Optional[np.ndarray] = None,
                       config: Optional[DetectionConfig] = None) -> CalibrationOutcome:
    """Derive ``base_threshold`` from training reconstruction errors.

    The threshold is the Normal error percentile plus a safety margin. When
    Anomaly errors are supplied and their low percentile sits above the
    Normal percentile, the threshold is tightened to the midpoint.

    Args:
        normal_errors: Unscaled per-frame MSE of Normal training frames
        anomaly_errors: Optional per-frame MSE of held-out Anomaly frames
        config: Calibration constants

    Returns:
        CalibrationOutcome: SUCCESS or WARNING with the chosen threshold

    Raises:
        CalibrationError: If there are no Normal errors
    """
    config = config if config is not None else DetectionConfig()
    normal_errors = np.asarray(normal_errors, dtype=np.float64).reshape(-1)
    if normal_errors.size == 0:
        raise CalibrationError("No baseline data: at least one Normal sample is required")

    p_normal = float(np.percentile(normal_errors, config.percentile))
    outcome = CalibrationOutcome(
        status=OutcomeStatus.SUCCESS,
        message="Model trained on the Normal baseline",
        base_threshold=p_normal * config.margin,
        normal_percentile=p_normal,
        distribution=fit_score_distribution(normal_errors)
    )

    if anomaly_errors is None or len(anomaly_errors) == 0:
        return outcome

    anomaly_errors = np.asarray(anomaly_errors, dtype=np.float64).reshape(-1)
    p_anomaly = float(np.percentile(anomaly_errors, config.anomaly_percentile))
    outcome.anomaly_percentile = p_anomaly

    if p_anomaly > p_normal:
        outcome.base_threshold = (p_normal + p_anomaly) / 2.0
        outcome.message = "Clean separation between Normal and Anomaly; threshold set to the midpoint"
    else:
        outcome.status = OutcomeStatus.WARNING
        outcome.message = "Normal and Anomaly errors overlap; consider reducing latent_dim"

    outcome.metrics = evaluate_scores(normal_errors, anomaly_errors, outcome.base_threshold)
    return outcome


def auto_calibrate(smoothed_scores: Sequence[float],
                   amplitudes: Sequence[float],
                   base_threshold: Optional[float],
                   config: Optional[DetectionConfig] = None) -> Optional[AutoCalibration]:
    """Pick a sensitivity from the score statistics of one recording.

    ``target = (mean + sigma * stddev) * (1 + avg_amplitude / energy_divisor)``
    and the sensitivity is solved so the effective threshold equals the
    target, then clamped to the configured bounds.

    Returns:
        AutoCalibration, or None when there are no scores
    """
    config = config if config is not None else DetectionConfig()
    scores = np.asarray(smoothed_scores, dtype=np.float64).reshape(-1)
    if scores.size == 0:
        logger.warning("Auto-calibration skipped: no scores to analyse")
        return None

    # Threshold at unit sensitivity; also validates base_threshold
    reference = effective_threshold(base_threshold, 1.0, config.threshold_scale)

    mean = float(np.mean(scores))
    stddev = float(np.sqrt(np.mean(np.square(scores - mean))))
    amps = np.asarray(amplitudes, dtype=np.float64).reshape(-1)
    avg_amplitude = float(np.mean(amps)) if amps.size else 0.0

    energy_factor = 1.0 + avg_amplitude / config.energy_divisor
    target = (mean + config.sigma * stddev) * energy_factor

    if target > 0:
        sensitivity = reference / target
    else:
        sensitivity = config.max_sensitivity
    sensitivity = min(config.max_sensitivity, max(config.min_sensitivity, sensitivity))

    return AutoCalibration(
        mean=mean,
        stddev=stddev,
        avg_amplitude=avg_amplitude,
        energy_factor=energy_factor,
        target_threshold=target,
        sensitivity=sensitivity
    )
