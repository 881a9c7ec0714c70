"""Unit tests for the detector lifecycle: training, scoring and rollback."""

from __future__ import annotations

import unittest
from unittest import mock

import numpy as np

from audio_sentinel.buffer import Label
from audio_sentinel.calibration import OutcomeStatus
from audio_sentinel.config import ModelConfig
from audio_sentinel.detector import NEUTRAL_SCORE, AcousticDetector, DetectorState
from audio_sentinel.errors import CalibrationError, ConfigurationError, DetectorBusyError, TrainingError

WIDTH = 16
SMALL_CONFIG = ModelConfig(epochs=3, batch_size=16, latent_dim=4, hidden_dims=(8,))


def _normal_frames(n: int = 64, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.uniform(20.0, 40.0, size=(n, WIDTH)).astype(np.float32)


def _make_detector(trained: bool = False) -> AcousticDetector:
    detector = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
    detector.add_sample("normal-1", _normal_frames(), Label.NORMAL, 16_000)
    if trained:
        detector.train()
    return detector


def _weights_equal(a, b) -> bool:
    return len(a) == len(b) and all(np.array_equal(x, y) for x, y in zip(a, b))


class TestDetectorTraining(unittest.TestCase):
    """Tests for training and calibration."""

    def test_untrained_scores_neutral(self) -> None:
        detector = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
        self.assertEqual(detector.state, DetectorState.UNTRAINED)
        self.assertEqual(detector.score(np.zeros(WIDTH)), NEUTRAL_SCORE)

    def test_train_requires_normal_data(self) -> None:
        detector = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
        detector.add_sample("anomaly-1", _normal_frames(8), "Anomaly", 16_000)
        with self.assertRaises(CalibrationError):
            detector.train()
        self.assertEqual(detector.state, DetectorState.UNTRAINED)

    def test_add_sample_checks_width(self) -> None:
        detector = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
        with self.assertRaises(ValueError):
            detector.add_sample("bad", np.zeros((4, WIDTH + 1)), Label.NORMAL, 16_000)
        self.assertEqual(len(detector.buffer), 0)

    def test_train_calibrates_above_normal_percentile(self) -> None:
        """base_threshold is at least the p99 of Normal reconstruction errors."""
        progress = []
        detector = _make_detector()
        outcome = detector.train(on_epoch_end=progress.append)

        self.assertEqual(outcome.status, OutcomeStatus.SUCCESS)
        self.assertEqual(detector.state, DetectorState.IDLE)
        self.assertEqual([p.epoch for p in progress], [1, 2, 3])
        self.assertTrue(all(np.isfinite(p.loss) for p in progress))

        errors = detector.reconstruction_errors(_normal_frames())
        self.assertGreaterEqual(detector.base_threshold, np.percentile(errors, 99) * (1 - 1e-6))
        self.assertIsNotNone(detector.trained_at)
        self.assertEqual(detector.sample_rate, 16_000)

    def test_train_with_anomaly_holdout(self) -> None:
        detector = _make_detector()
        loud = np.full((32, WIDTH), 255.0, dtype=np.float32)
        detector.add_sample("anomaly-1", loud, Label.ANOMALY, 16_000)
        outcome = detector.train()

        self.assertIn(outcome.status, (OutcomeStatus.SUCCESS, OutcomeStatus.WARNING))
        self.assertIsNotNone(outcome.anomaly_percentile)
        self.assertIn('auc', outcome.metrics)

    def test_score_after_training(self) -> None:
        detector = _make_detector(trained=True)
        result = detector.score(_normal_frames(1)[0])
        self.assertGreaterEqual(result.score, 0.0)
        self.assertEqual(result.is_anomaly, result.score > detector.effective_threshold())

        with self.assertRaises(ValueError):
            detector.score(np.zeros(WIDTH + 2))

    def test_set_sensitivity(self) -> None:
        detector = _make_detector(trained=True)
        before = detector.effective_threshold()
        detector.set_sensitivity(4.0)
        self.assertAlmostEqual(detector.effective_threshold(), before / 2)
        for bad in (0, -1.0, None):
            with self.assertRaises(ConfigurationError):
                detector.set_sensitivity(bad)


class TestDetectorConfigure(unittest.TestCase):
    """Tests for reconfiguration."""

    def test_invalid_config_keeps_model(self) -> None:
        detector = _make_detector(trained=True)
        model = detector.model
        base = detector.base_threshold

        with self.assertRaises(ConfigurationError):
            detector.configure(latent_dim=WIDTH)
        with self.assertRaises(ConfigurationError):
            detector.configure(epochs=0)

        self.assertIs(detector.model, model)
        self.assertEqual(detector.base_threshold, base)
        self.assertEqual(detector.state, DetectorState.IDLE)

    def test_valid_config_resets_calibration(self) -> None:
        detector = _make_detector(trained=True)
        config = detector.configure(latent_dim=2)

        self.assertEqual(config.latent_dim, 2)
        self.assertEqual(detector.config.latent_dim, 2)
        self.assertIsNone(detector.base_threshold)
        self.assertEqual(detector.state, DetectorState.UNTRAINED)
        self.assertEqual(detector.score(np.zeros(WIDTH)), NEUTRAL_SCORE)
        # The buffer survives a rebuild
        self.assertEqual(len(detector.buffer), 1)


class TestTrainingRun(unittest.TestCase):
    """Tests for TrainingRun progress, busy state and rollback."""

    def test_busy_while_training(self) -> None:
        detector = _make_detector(trained=True)
        run = detector.start_training()
        epochs = iter(run)
        next(epochs)

        self.assertEqual(detector.state, DetectorState.TRAINING)
        self.assertEqual(detector.score(np.zeros(WIDTH)), NEUTRAL_SCORE)
        with self.assertRaises(DetectorBusyError):
            detector.start_training()
        with self.assertRaises(DetectorBusyError):
            detector.configure(latent_dim=2)

        for _ in epochs:
            pass
        self.assertEqual(detector.state, DetectorState.IDLE)
        self.assertEqual(run.outcome.status, OutcomeStatus.SUCCESS)

    def test_cancel_restores_previous_model(self) -> None:
        detector = _make_detector(trained=True)
        weights = detector.model.get_weights()
        base = detector.base_threshold

        run = detector.start_training()
        epochs = iter(run)
        next(epochs)
        run.cancel()
        remaining = list(epochs)

        self.assertEqual(remaining, [])
        self.assertTrue(run.cancelled)
        self.assertEqual(run.outcome.status, OutcomeStatus.WARNING)
        self.assertTrue(_weights_equal(detector.model.get_weights(), weights))
        self.assertEqual(detector.base_threshold, base)
        self.assertEqual(detector.state, DetectorState.IDLE)

    def test_closing_iterator_restores_previous_model(self) -> None:
        detector = _make_detector()
        weights = detector.model.get_weights()

        epochs = iter(detector.start_training())
        next(epochs)
        epochs.close()

        self.assertTrue(_weights_equal(detector.model.get_weights(), weights))
        self.assertEqual(detector.state, DetectorState.UNTRAINED)
        self.assertIsNone(detector.base_threshold)

    def test_failure_restores_previous_model(self) -> None:
        detector = _make_detector(trained=True)
        weights = detector.model.get_weights()
        base = detector.base_threshold

        with mock.patch.object(detector, '_fit_epoch', side_effect=RuntimeError("out of memory")):
            outcome = detector.train()

        self.assertEqual(outcome.status, OutcomeStatus.ERROR)
        self.assertTrue(outcome.message.startswith("Training failed"))
        with self.assertRaises(TrainingError):
            outcome.raise_for_status()
        self.assertTrue(_weights_equal(detector.model.get_weights(), weights))
        self.assertEqual(detector.base_threshold, base)
        self.assertEqual(detector.state, DetectorState.IDLE)

    def test_run_iterates_once(self) -> None:
        run = _make_detector().start_training()
        run.run()
        with self.assertRaises(RuntimeError):
            iter(run)


if __name__ == "__main__":
    unittest.main()
