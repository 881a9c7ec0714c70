"""Unit tests for model bundle save/load."""

from __future__ import annotations

import base64
import json
import os
import tempfile
import unittest

import numpy as np

from audio_sentinel.buffer import Label
from audio_sentinel.config import ModelConfig
from audio_sentinel.detector import AcousticDetector, DetectorState
from audio_sentinel.errors import ModelLoadError
from audio_sentinel.persistence import ModelPersistence

WIDTH = 16
SMALL_CONFIG = ModelConfig(epochs=2, batch_size=16, latent_dim=4, hidden_dims=(8,))


def _trained_detector() -> AcousticDetector:
    rng = np.random.default_rng(11)
    detector = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
    detector.add_sample("normal", rng.uniform(0, 60, size=(48, WIDTH)), Label.NORMAL, 22_050)
    detector.train()
    return detector


def _edit_bundle(data: bytes, edit) -> bytes:
    bundle = json.loads(data.decode('utf-8'))
    edit(bundle)
    return json.dumps(bundle).encode('utf-8')


class TestModelPersistence(unittest.TestCase):
    """Tests for ModelPersistence and AcousticDetector.save/load."""

    @classmethod
    def setUpClass(cls) -> None:
        cls.source = _trained_detector()
        cls.bundle = cls.source.save()

    def test_round_trip_is_exact(self) -> None:
        """Weights, threshold and config survive a save/load unchanged."""
        target = AcousticDetector(input_dim=WIDTH)
        target.load(self.bundle)

        self.assertEqual(target.state, DetectorState.IDLE)
        self.assertEqual(target.base_threshold, self.source.base_threshold)
        self.assertEqual(target.sample_rate, 22_050)
        self.assertEqual(target.config, SMALL_CONFIG)
        self.assertEqual(target.trained_at, self.source.trained_at)
        for restored, original in zip(target.model.get_weights(), self.source.model.get_weights()):
            np.testing.assert_array_equal(restored, original)

        frame = np.linspace(0, 200, WIDTH)
        self.assertEqual(target.score(frame).score, self.source.score(frame).score)

    def test_bundle_layout(self) -> None:
        bundle = json.loads(self.bundle.decode('utf-8'))
        self.assertEqual(set(bundle), {'topology', 'weights', 'weight_layout', 'metadata'})
        self.assertEqual(bundle['topology']['class_name'], 'SpectralAutoencoder')
        self.assertEqual(bundle['metadata']['input_dim'], WIDTH)
        self.assertEqual(bundle['metadata']['format_version'], 1)
        self.assertEqual(len(bundle['weight_layout']), len(self.source.model.get_weights()))

        total = sum(int(np.prod(entry['shape'])) for entry in bundle['weight_layout'])
        self.assertEqual(len(base64.b64decode(bundle['weights'])), total * 4)

    def _assert_rejected_without_change(self, data: bytes) -> None:
        target = _trained_detector()
        weights = target.model.get_weights()
        base = target.base_threshold

        with self.assertRaises(ModelLoadError):
            target.load(data)

        self.assertEqual(target.state, DetectorState.IDLE)
        self.assertEqual(target.base_threshold, base)
        for current, previous in zip(target.model.get_weights(), weights):
            np.testing.assert_array_equal(current, previous)

    def test_malformed_bundles_keep_current_model(self) -> None:
        def truncate(bundle):
            blob = base64.b64decode(bundle['weights'])
            bundle['weights'] = base64.b64encode(blob[:-4]).decode('ascii')

        def pad(bundle):
            blob = base64.b64decode(bundle['weights'])
            bundle['weights'] = base64.b64encode(blob + b'\x00' * 4).decode('ascii')

        def reshape(bundle):
            bundle['weight_layout'][0]['shape'] = [WIDTH, 99]

        def drop_threshold(bundle):
            del bundle['metadata']['base_threshold']

        def foreign_class(bundle):
            bundle['topology']['class_name'] = 'Sequential'

        def future_format(bundle):
            bundle['metadata']['format_version'] = 99

        def invalid_config(bundle):
            bundle['metadata']['config']['latent_dim'] = 0

        def inconsistent_topology(bundle):
            bundle['topology']['config']['config']['latent_dim'] = 3

        def negative_threshold(bundle):
            bundle['metadata']['base_threshold'] = -1.0

        def text_threshold(bundle):
            bundle['metadata']['base_threshold'] = 'high'

        def nan_threshold(bundle):
            bundle['metadata']['base_threshold'] = float('nan')

        def text_sample_rate(bundle):
            bundle['metadata']['sample_rate'] = 'abc'

        def zero_sample_rate(bundle):
            bundle['metadata']['sample_rate'] = 0

        def numeric_trained_at(bundle):
            bundle['metadata']['trained_at'] = 123

        cases = [b'not json', b'{}', b'[1, 2, 3]']
        cases += [
            _edit_bundle(self.bundle, edit)
            for edit in (truncate, pad, reshape, drop_threshold, foreign_class, future_format,
                         invalid_config, inconsistent_topology, negative_threshold, text_threshold,
                         nan_threshold, text_sample_rate, zero_sample_rate, numeric_trained_at)
        ]
        for data in cases:
            with self.subTest(data=data[:40]):
                self._assert_rejected_without_change(data)

    def test_width_mismatch_rejected(self) -> None:
        wider = AcousticDetector(input_dim=WIDTH * 2, config=SMALL_CONFIG)
        with self.assertRaises(ModelLoadError):
            wider.load(self.bundle)
        self.assertEqual(wider.state, DetectorState.UNTRAINED)

    def test_untrained_bundle_loads_untrained(self) -> None:
        untrained = AcousticDetector(input_dim=WIDTH, config=SMALL_CONFIG)
        target = _trained_detector()
        target.load(untrained.save())
        self.assertEqual(target.state, DetectorState.UNTRAINED)
        self.assertIsNone(target.base_threshold)

    def test_bundle_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = ModelPersistence.save_bundle(self.source, os.path.join(tmp, 'models', 'pump'))
            self.assertTrue(path.endswith(ModelPersistence.BUNDLE_EXTENSION))
            self.assertTrue(os.path.exists(path))

            target = AcousticDetector(input_dim=WIDTH)
            ModelPersistence.load_bundle(target, path)
            self.assertEqual(target.base_threshold, self.source.base_threshold)

            with self.assertRaises(ModelLoadError):
                ModelPersistence.load_bundle(target, os.path.join(tmp, 'missing.sentinel'))


if __name__ == "__main__":
    unittest.main()
