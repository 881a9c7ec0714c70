# audio_sentinel/config.py
"""Configuration for the acoustic anomaly detection system."""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional, Tuple
import json

from .errors import ConfigurationError


class _SerializableConfig:
    """Dict/JSON round-tripping shared by the config dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert config to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]):
        """Create config from dictionary."""
        try:
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e

    @classmethod
    def from_json(cls, json_str: str):
        """Create config from JSON string."""
        config_dict = json.loads(json_str)
        return cls.from_dict(config_dict)


@dataclass(frozen=True)
class ModelConfig(_SerializableConfig):
    """Autoencoder training and architecture parameters."""
    # Training
    epochs: int = 80
    learning_rate: float = 5e-4
    batch_size: int = 32

    # Model architecture
    latent_dim: int = 8
    hidden_dims: Tuple[int, ...] = (64, 32)

    def __post_init__(self):
        # JSON hands lists back; keep the field hashable
        object.__setattr__(self, 'hidden_dims', tuple(self.hidden_dims))

    def encoder_dims(self) -> Tuple[int, ...]:
        """Hidden widths that actually narrow towards the bottleneck."""
        return tuple(d for d in self.hidden_dims if d > self.latent_dim)

    def validate(self, input_dim: int) -> None:
        """Raise ConfigurationError if the config cannot build a model.

        Args:
            input_dim: Width of the feature frames the model will see.
        """
        if not isinstance(self.epochs, int) or self.epochs <= 0:
            raise ConfigurationError(f"epochs must be a positive integer, got {self.epochs!r}")
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if not self.learning_rate or self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate!r}")
        if not isinstance(self.latent_dim, int) or self.latent_dim <= 0:
            raise ConfigurationError(f"latent_dim must be a positive integer, got {self.latent_dim!r}")
        if self.latent_dim >= input_dim:
            raise ConfigurationError(
                f"latent_dim ({self.latent_dim}) must be smaller than the input width ({input_dim})"
            )
        if any(not isinstance(d, int) or d <= 0 for d in self.hidden_dims):
            raise ConfigurationError(f"hidden_dims must be positive integers, got {self.hidden_dims!r}")


@dataclass(frozen=True)
class FeatureConfig(_SerializableConfig):
    """Spectral feature extraction parameters."""
    n_fft: int = 256
    hop_length: int = 512
    n_bins: int = 128
    gain: float = 1800.0
    max_value: float = 255.0

    # Frames kept per training sample (strided subsample)
    max_training_frames: int = 100
    # Frames computed per step when scanning long recordings
    block_frames: int = 300

    # Live-mode speech attenuation over bins [low, high)
    voice_band: Tuple[int, int] = (9, 40)
    voice_attenuation: float = 0.2

    def __post_init__(self):
        object.__setattr__(self, 'voice_band', tuple(self.voice_band))
        if self.n_bins > self.n_fft // 2 + 1:
            raise ConfigurationError(
                f"n_bins ({self.n_bins}) exceeds the {self.n_fft // 2 + 1} bins of a {self.n_fft}-point FFT"
            )
        if self.hop_length <= 0 or self.block_frames <= 0:
            raise ConfigurationError("hop_length and block_frames must be positive")


@dataclass(frozen=True)
class DetectionConfig(_SerializableConfig):
    """Scoring, calibration and segmentation constants.

    The defaults are empirical: the reporting scales make MSE values readable,
    the sigma rule and energy divisor drive auto-calibration, and the merge
    gap and severity ratios shape incidents.
    """
    # Scoring
    score_scale: float = 10000.0
    threshold_scale: float = 10000.0

    # Sensitivity knob
    sensitivity: float = 2.0
    min_sensitivity: float = 0.1
    max_sensitivity: float = 10.0

    # Training-time calibration
    percentile: float = 99.0
    margin: float = 1.05
    anomaly_percentile: float = 10.0

    # Auto-calibration
    sigma: float = 3.5
    energy_divisor: float = 100.0

    # Segmentation
    merge_gap: float = 0.8
    high_ratio: float = 3.0
    medium_ratio: float = 1.8
    default_frame_period: float = 0.032

    # Streaming
    file_window: int = 8
    live_window: int = 5
    live_history: int = 150


@dataclass
class MonitorConfig(_SerializableConfig):
    """Live capture parameters."""
    sample_rate: int = 16000
    block_duration: float = 0.064
    voice_shield: bool = True
    device: Optional[int] = None
    # Consecutive failed blocks before the processing thread gives up
    max_consecutive_errors: int = 10
