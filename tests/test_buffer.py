"""Unit tests for the training buffer and config serialisation."""

from __future__ import annotations

import unittest

import numpy as np

from audio_sentinel.buffer import Label, TrainingBuffer
from audio_sentinel.config import DetectionConfig, ModelConfig
from audio_sentinel.errors import ConfigurationError


class TestTrainingBuffer(unittest.TestCase):
    """Tests for TrainingBuffer."""

    def test_add_copies_and_freezes(self) -> None:
        buffer = TrainingBuffer()
        frames = np.ones((3, 4), dtype=np.float32)
        sample = buffer.add("pump-01.wav", frames, "Normal", 16_000)
        frames[:] = 0

        self.assertEqual(sample.label, Label.NORMAL)
        self.assertTrue(np.all(sample.frames == 1.0))
        with self.assertRaises(ValueError):
            sample.frames[0, 0] = 5.0

    def test_frames_by_label(self) -> None:
        buffer = TrainingBuffer()
        buffer.add("a", np.zeros((2, 4)), Label.NORMAL, 16_000)
        buffer.add("b", np.ones((3, 4)), Label.ANOMALY, 16_000)
        buffer.add("c", np.zeros((5, 4)), Label.NORMAL, 44_100)

        self.assertEqual(buffer.frames(Label.NORMAL).shape, (7, 4))
        self.assertEqual(buffer.frames(Label.ANOMALY).shape, (3, 4))
        self.assertEqual(buffer.sample_rate, 44_100)
        self.assertEqual(len(buffer), 3)

    def test_empty_label(self) -> None:
        buffer = TrainingBuffer()
        self.assertEqual(buffer.frames(Label.ANOMALY, 128).shape, (0, 128))
        self.assertIsNone(buffer.sample_rate)

    def test_rejects_bad_input(self) -> None:
        buffer = TrainingBuffer()
        with self.assertRaises(ValueError):
            buffer.add("flat", np.zeros(4), Label.NORMAL, 16_000)
        with self.assertRaises(ValueError):
            buffer.add("odd", np.zeros((2, 4)), "Suspicious", 16_000)
        self.assertEqual(len(buffer), 0)

    def test_clear(self) -> None:
        buffer = TrainingBuffer()
        buffer.add("a", np.zeros((2, 4)), Label.NORMAL, 16_000)
        buffer.clear()
        self.assertEqual(len(buffer), 0)
        self.assertEqual(buffer.samples, [])


class TestConfig(unittest.TestCase):
    """Tests for config validation and serialisation."""

    def test_json_round_trip(self) -> None:
        config = ModelConfig(epochs=5, latent_dim=6, hidden_dims=(48, 24))
        self.assertEqual(ModelConfig.from_json(config.to_json()), config)
        self.assertEqual(DetectionConfig.from_dict(DetectionConfig().to_dict()), DetectionConfig())

    def test_unknown_field(self) -> None:
        with self.assertRaises(ConfigurationError):
            ModelConfig.from_dict({'epochs': 5, 'dropout': 0.2})

    def test_validate(self) -> None:
        ModelConfig().validate(128)
        for bad in (ModelConfig(latent_dim=128), ModelConfig(epochs=0), ModelConfig(learning_rate=0.0),
                    ModelConfig(batch_size=-1), ModelConfig(hidden_dims=(64, 0))):
            with self.subTest(config=bad):
                with self.assertRaises(ConfigurationError):
                    bad.validate(128)

    def test_encoder_dims_skip_narrow_layers(self) -> None:
        self.assertEqual(ModelConfig(latent_dim=8, hidden_dims=(64, 32)).encoder_dims(), (64, 32))
        self.assertEqual(ModelConfig(latent_dim=40, hidden_dims=(64, 32)).encoder_dims(), (64,))


if __name__ == "__main__":
    unittest.main()
