# audio_sentinel/__init__.py
"""
Acoustic anomaly detection for machine condition monitoring.
"""

__version__ = '1.0.0'

from .config import ModelConfig, FeatureConfig, DetectionConfig, MonitorConfig
from .errors import (
    SentinelError,
    ConfigurationError,
    CalibrationError,
    DetectorBusyError,
    TrainingError,
    ModelLoadError,
    DecodeError
)
from .features import FeatureExtractor
from .buffer import Label, TrainingBuffer, TrainingSample
from .model import SpectralAutoencoder
from .calibration import (
    CalibrationOutcome,
    OutcomeStatus,
    AutoCalibration,
    auto_calibrate,
    calibrate_training,
    effective_threshold
)
from .train import EpochProgress, TrainingRun
from .detector import AcousticDetector, DetectorState, ScoreResult
from .persistence import ModelPersistence
from .scoring import ScoredFrame, StreamingScorer
from .segmentation import Incident, Severity, Verification, segment_incidents
from .analysis import AnalysisSession
from .verification import HttpIncidentVerifier, VerificationResult, verify_incident
from .monitor import LiveMonitor

__all__ = [
    'ModelConfig',
    'FeatureConfig',
    'DetectionConfig',
    'MonitorConfig',
    'SentinelError',
    'ConfigurationError',
    'CalibrationError',
    'DetectorBusyError',
    'TrainingError',
    'ModelLoadError',
    'DecodeError',
    'FeatureExtractor',
    'Label',
    'TrainingBuffer',
    'TrainingSample',
    'SpectralAutoencoder',
    'CalibrationOutcome',
    'OutcomeStatus',
    'AutoCalibration',
    'auto_calibrate',
    'calibrate_training',
    'effective_threshold',
    'EpochProgress',
    'TrainingRun',
    'AcousticDetector',
    'DetectorState',
    'ScoreResult',
    'ModelPersistence',
    'ScoredFrame',
    'StreamingScorer',
    'Incident',
    'Severity',
    'Verification',
    'segment_incidents',
    'AnalysisSession',
    'HttpIncidentVerifier',
    'VerificationResult',
    'verify_incident',
    'LiveMonitor'
]
