# audio_sentinel/errors.py
"""Exceptions raised by the detection engine."""


class SentinelError(Exception):
    """Base class for all detection engine errors."""


class ConfigurationError(SentinelError, ValueError):
    """Invalid configuration or an unset threshold input."""


class CalibrationError(SentinelError):
    """Calibration cannot run, e.g. there is no Normal baseline data."""


class DetectorBusyError(SentinelError):
    """A training run is already in progress."""


class TrainingError(SentinelError):
    """Training failed; the previous model is still active."""


class ModelLoadError(SentinelError, ValueError):
    """A persisted model bundle is malformed or incompatible."""


class DecodeError(SentinelError):
    """Audio input could not be decoded."""
