# audio_sentinel/train.py
"""Training module for the anomaly detection system."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import numpy as np

from .calibration import CalibrationOutcome, OutcomeStatus, calibrate_training

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EpochProgress:
    """Emitted once per completed epoch."""
    epoch: int
    epochs: int
    loss: float


class TrainingRun:
    """One training pass over the detector's Normal baseline.

    Iterating the run trains the model one epoch at a time and yields an
    ``EpochProgress`` after each. ``cancel()`` stops the run at the next
    epoch boundary; a cancelled or failed run restores the weights and
    threshold the detector had before it started. Closing the iterator
    early has the same effect as cancelling.

    ``outcome`` is set once the run finishes.
    """

    def __init__(self,
                 detector,
                 normal_frames: np.ndarray,
                 anomaly_frames: np.ndarray,
                 sample_rate: Optional[int],
                 on_epoch_end: Optional[Callable[[EpochProgress], None]] = None):
        self.detector = detector
        self.config = detector.config
        self.normal_frames = normal_frames
        self.anomaly_frames = anomaly_frames
        self.sample_rate = sample_rate
        self.on_epoch_end = on_epoch_end
        self.outcome: Optional[CalibrationOutcome] = None
        self._cancelled = False
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request a stop at the next epoch boundary."""
        self._cancelled = True

    def __iter__(self) -> Iterator[EpochProgress]:
        if self._started:
            raise RuntimeError("A TrainingRun can only be iterated once")
        self._started = True
        return self._run()

    def run(self) -> CalibrationOutcome:
        """Train to completion and return the outcome."""
        for _ in self:
            pass
        return self.outcome

    def _run(self) -> Iterator[EpochProgress]:
        detector = self.detector
        snapshot = detector._begin_training()
        epochs = self.config.epochs

        logger.info(
            f"Starting model training: {len(self.normal_frames)} Normal frames, "
            f"{len(self.anomaly_frames)} held-out Anomaly frames, {epochs} epochs"
        )

        try:
            x = self.normal_frames.astype(np.float32) / detector.max_value
            for epoch in range(epochs):
                if self._cancelled:
                    break
                loss = detector._fit_epoch(x, epoch)
                progress = EpochProgress(epoch=epoch + 1, epochs=epochs, loss=loss)
                if progress.epoch == 1 or progress.epoch % 10 == 0:
                    logger.info(f"Epoch {progress.epoch}/{epochs} - loss: {loss:.8f}")
                if self.on_epoch_end is not None:
                    self.on_epoch_end(progress)
                yield progress

            if self._cancelled:
                detector._restore(snapshot)
                self.outcome = CalibrationOutcome(
                    status=OutcomeStatus.WARNING,
                    message="Training cancelled; previous model restored",
                    base_threshold=detector.base_threshold
                )
                logger.warning(self.outcome.message)
                return

            logger.info("Calculating anomaly threshold...")
            normal_errors = detector.reconstruction_errors(self.normal_frames)
            anomaly_errors = detector.reconstruction_errors(self.anomaly_frames) if len(self.anomaly_frames) else None
            self.outcome = calibrate_training(normal_errors, anomaly_errors, detector.detection)
            detector._finish_training(self.outcome.base_threshold, self.sample_rate)
            logger.info(f"{self.outcome.message} (base threshold {self.outcome.base_threshold:.6g})")

        except GeneratorExit:
            self._cancelled = True
            detector._restore(snapshot)
            logger.warning("Training run closed early; previous model restored")
            raise
        except Exception as e:
            logger.error(f"Error during training: {str(e)}")
            detector._restore(snapshot)
            self.outcome = CalibrationOutcome(
                status=OutcomeStatus.ERROR,
                message=f"Training failed: {e}",
                base_threshold=detector.base_threshold
            )
