# audio_sentinel/detector.py
"""Owned model context: network, calibration state and training buffer."""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np

from .buffer import Label, TrainingBuffer
from .calibration import CalibrationOutcome, effective_threshold
from .config import DetectionConfig, ModelConfig
from .errors import CalibrationError, ConfigurationError, DetectorBusyError
from .model import SpectralAutoencoder, build_model
from .persistence import ModelPersistence
from .train import EpochProgress, TrainingRun

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    UNTRAINED = 'untrained'
    IDLE = 'idle'
    TRAINING = 'training'


@dataclass(frozen=True)
class ScoreResult:
    score: float
    is_anomaly: bool


NEUTRAL_SCORE = ScoreResult(score=0.0, is_anomaly=False)


class AcousticDetector:
    """Autoencoder-based acoustic anomaly detector.

    One instance owns one network and its calibration state. Scoring and
    training are mutually exclusive: ``score`` returns a neutral result
    whenever the detector is untrained or a training run is in progress.

    Args:
        input_dim: Feature frame width W
        config: Model configuration; defaults to ``ModelConfig()``
        detection: Scoring/calibration constants
        sample_rate: Initial sample rate reported to callers
        max_value: Feature ceiling used to normalise frames to [0, 1]
    """

    def __init__(self,
                 input_dim: int = 128,
                 config: Optional[ModelConfig] = None,
                 detection: Optional[DetectionConfig] = None,
                 sample_rate: int = 16000,
                 max_value: float = 255.0):
        self.input_dim = input_dim
        self.detection = detection if detection is not None else DetectionConfig()
        self.max_value = max_value
        self.sample_rate = sample_rate
        self.sensitivity = self.detection.sensitivity
        self.base_threshold: Optional[float] = None
        self.trained_at: Optional[str] = None
        self.buffer = TrainingBuffer()

        self._state = DetectorState.UNTRAINED
        self._state_lock = threading.Lock()
        self._model_lock = threading.Lock()
        self.config = config if config is not None else ModelConfig()
        self.config.validate(input_dim)
        self._model = build_model(input_dim, self.config)

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def is_training(self) -> bool:
        return self._state == DetectorState.TRAINING

    @property
    def model(self) -> SpectralAutoencoder:
        return self._model

    def configure(self, config: Optional[ModelConfig] = None, **overrides) -> ModelConfig:
        """Rebuild the network with fresh weights.

        Overrides are applied on top of ``config`` (or the current config).
        The config is validated before anything is touched, so an invalid
        one leaves the current model intact. The base threshold is cleared
        and must be recalibrated by training.

        Raises:
            ConfigurationError: If the resulting config is invalid
            DetectorBusyError: If a training run is in progress
        """
        new_config = config if config is not None else self.config
        if overrides:
            new_config = dataclasses.replace(new_config, **overrides)
        new_config.validate(self.input_dim)

        with self._state_lock:
            if self._state == DetectorState.TRAINING:
                raise DetectorBusyError("Cannot reconfigure while training")
            model = build_model(self.input_dim, new_config)
            with self._model_lock:
                self._model = model
                self.config = new_config
                self.base_threshold = None
                self.trained_at = None
                self._state = DetectorState.UNTRAINED

        logger.info(f"Model rebuilt with {new_config.to_dict()}")
        return new_config

    def add_sample(self, sample_id: str, frames: np.ndarray, label, sample_rate: int):
        """Buffer a labelled batch of frames for the next training run."""
        frames = np.asarray(frames, dtype=np.float32)
        if frames.ndim != 2 or frames.shape[1] != self.input_dim:
            raise ValueError(f"Expected frames of shape (n, {self.input_dim}), got {frames.shape}")
        return self.buffer.add(sample_id, frames, label, sample_rate)

    def clear_buffer(self) -> None:
        self.buffer.clear()

    def start_training(self, on_epoch_end: Optional[Callable[[EpochProgress], None]] = None) -> TrainingRun:
        """Prepare a training run over the buffered samples.

        Only Normal frames are used as reconstruction targets; Anomaly
        frames are held out for calibration.

        Raises:
            CalibrationError: If the buffer holds no Normal frames
            DetectorBusyError: If a training run is already in progress
        """
        if self.is_training:
            raise DetectorBusyError("Model is busy training")

        normal = self.buffer.frames(Label.NORMAL, self.input_dim)
        if len(normal) == 0:
            raise CalibrationError("No baseline data: add at least one Normal sample before training")
        anomaly = self.buffer.frames(Label.ANOMALY, self.input_dim)

        return TrainingRun(self, normal, anomaly, self.buffer.sample_rate, on_epoch_end)

    def train(self, on_epoch_end: Optional[Callable[[EpochProgress], None]] = None) -> CalibrationOutcome:
        """Train on the buffered samples to completion and calibrate."""
        return self.start_training(on_epoch_end).run()

    def reconstruction_errors(self, frames: np.ndarray) -> np.ndarray:
        """Unscaled per-frame MSE for raw ``[0, max_value]`` frames."""
        frames = np.asarray(frames, dtype=np.float32).reshape(-1, self.input_dim)
        with self._model_lock:
            return self._model.reconstruction_errors(frames / self.max_value)

    def score(self, frame: np.ndarray) -> ScoreResult:
        """Score one frame; neutral while untrained or training."""
        if self._state != DetectorState.IDLE:
            return NEUTRAL_SCORE

        frame = np.asarray(frame, dtype=np.float32)
        if frame.size != self.input_dim:
            raise ValueError(f"Expected a frame of width {self.input_dim}, got {frame.size}")

        with self._model_lock:
            if self._state != DetectorState.IDLE:
                return NEUTRAL_SCORE
            error = self._model.reconstruction_errors(frame.reshape(1, -1) / self.max_value)[0]
            threshold = self.effective_threshold()

        score = float(error) * self.detection.score_scale
        return ScoreResult(score=score, is_anomaly=score > threshold)

    def set_sensitivity(self, value: float) -> None:
        if value is None or value <= 0:
            raise ConfigurationError(f"sensitivity must be positive, got {value!r}")
        self.sensitivity = float(value)
        logger.info(f"Sensitivity set to {self.sensitivity:.3f}")

    def effective_threshold(self) -> float:
        """Decision threshold in score units for the current sensitivity."""
        return effective_threshold(self.base_threshold, self.sensitivity, self.detection.threshold_scale)

    def metadata(self) -> Dict:
        return {
            'sample_rate': self.sample_rate,
            'input_dim': self.input_dim,
            'trained_at': self.trained_at,
            'base_threshold': self.base_threshold,
            'config': self.config.to_dict()
        }

    def save(self) -> bytes:
        """Serialise the network and its calibration state as one bundle."""
        with self._model_lock:
            return ModelPersistence.to_bytes(self._model, self.metadata())

    def load(self, data: bytes) -> None:
        """Replace the active model with a saved bundle.

        The bundle is fully parsed and validated before anything is swapped
        in; on failure the current model stays active.

        Raises:
            ModelLoadError: If the bundle is malformed or incompatible
            DetectorBusyError: If a training run is in progress
        """
        if self.is_training:
            raise DetectorBusyError("Cannot load a model while training")

        model, metadata = ModelPersistence.from_bytes(data, expected_input_dim=self.input_dim)

        with self._state_lock:
            if self._state == DetectorState.TRAINING:
                raise DetectorBusyError("Cannot load a model while training")
            with self._model_lock:
                self._model = model
                self.config = model.config
                self.sample_rate = metadata['sample_rate']
                self.base_threshold = metadata['base_threshold']
                self.trained_at = metadata.get('trained_at')
                self._state = DetectorState.IDLE if self.base_threshold is not None else DetectorState.UNTRAINED

        logger.info(f"Model loaded (sample rate {self.sample_rate}, base threshold {self.base_threshold})")

    # Training run hooks

    def _begin_training(self) -> Dict:
        with self._state_lock:
            if self._state == DetectorState.TRAINING:
                raise DetectorBusyError("Model is busy training")
            snapshot = {
                'weights': self._model.get_weights(),
                'base_threshold': self.base_threshold,
                'trained_at': self.trained_at,
                'state': self._state
            }
            self._state = DetectorState.TRAINING
        return snapshot

    def _fit_epoch(self, x: np.ndarray, epoch: int) -> float:
        with self._model_lock:
            history = self._model.fit(
                x, x,
                batch_size=self.config.batch_size,
                epochs=epoch + 1,
                initial_epoch=epoch,
                shuffle=True,
                verbose=0
            )
        return float(history.history['loss'][-1])

    def _finish_training(self, base_threshold: float, sample_rate: Optional[int]) -> None:
        with self._state_lock:
            self.base_threshold = float(base_threshold)
            if sample_rate:
                self.sample_rate = int(sample_rate)
            self.trained_at = datetime.now(timezone.utc).isoformat()
            self._state = DetectorState.IDLE

    def _restore(self, snapshot: Dict) -> None:
        with self._state_lock:
            with self._model_lock:
                self._model.set_weights(snapshot['weights'])
                self._model.compile_model(self.config.learning_rate)
            self.base_threshold = snapshot['base_threshold']
            self.trained_at = snapshot['trained_at']
            self._state = snapshot['state']
