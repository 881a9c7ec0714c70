#!/usr/bin/env python3
"""Main script for training an acoustic anomaly detector from labelled recordings."""

import os
import sys
import argparse
import logging
from typing import List

from tqdm.auto import tqdm

from audio_sentinel.buffer import Label
from audio_sentinel.calibration import OutcomeStatus
from audio_sentinel.config import FeatureConfig, ModelConfig
from audio_sentinel.detector import AcousticDetector
from audio_sentinel.errors import DecodeError, SentinelError
from audio_sentinel.features import FeatureExtractor
from audio_sentinel.persistence import ModelPersistence
from audio_sentinel.utils import setup_logging, get_file_paths, load_audio

logger = logging.getLogger(__name__)


def load_samples(detector: AcousticDetector,
                 extractor: FeatureExtractor,
                 files: List[str],
                 label: Label) -> int:
    """Decode files and buffer their training frames under one label.

    Files that cannot be decoded are logged and skipped.

    Returns:
        Number of files added to the buffer
    """
    added = 0
    for file_path in tqdm(files, desc=f"Extracting {label.value} features"):
        try:
            waveform, sample_rate = load_audio(file_path)
        except DecodeError as e:
            logger.warning(f"Skipping {file_path}: {e}")
            continue

        frames = extractor.training_frames(waveform)
        if len(frames) == 0:
            logger.warning(f"Skipping {file_path}: shorter than one analysis window")
            continue

        detector.add_sample(os.path.basename(file_path), frames, label, sample_rate)
        added += 1
    return added


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Train an acoustic anomaly detector'
    )
    parser.add_argument(
        '--normal-dir',
        type=str,
        required=True,
        help='Directory of recordings of normal machine operation'
    )
    parser.add_argument(
        '--anomaly-dir',
        type=str,
        default=None,
        help='Optional directory of known-anomalous recordings used for calibration'
    )
    parser.add_argument(
        '--output',
        type=str,
        default=f"model{ModelPersistence.BUNDLE_EXTENSION}",
        help='Path of the model bundle to write'
    )
    parser.add_argument('--epochs', type=int, default=ModelConfig.epochs)
    parser.add_argument('--latent-dim', type=int, default=ModelConfig.latent_dim)
    parser.add_argument('--learning-rate', type=float, default=ModelConfig.learning_rate)
    parser.add_argument('--batch-size', type=int, default=ModelConfig.batch_size)
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser.parse_args()


def main():
    """Main execution function."""
    args = parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        model_config = ModelConfig(
            epochs=args.epochs,
            learning_rate=args.learning_rate,
            batch_size=args.batch_size,
            latent_dim=args.latent_dim
        )
        feature_config = FeatureConfig()
        extractor = FeatureExtractor(feature_config)
        detector = AcousticDetector(input_dim=feature_config.n_bins, config=model_config)

        normal_files = get_file_paths(args.normal_dir)
        anomaly_files = get_file_paths(args.anomaly_dir) if args.anomaly_dir else []
        logger.info(f"Found {len(normal_files)} normal files and {len(anomaly_files)} anomaly files")

        if load_samples(detector, extractor, normal_files, Label.NORMAL) == 0:
            logger.error("No usable normal recordings. Aborting training.")
            sys.exit(1)
        load_samples(detector, extractor, anomaly_files, Label.ANOMALY)

        progress = tqdm(total=model_config.epochs, desc="Training")

        def on_epoch_end(update):
            progress.set_postfix(loss=f"{update.loss:.6f}")
            progress.update(1)

        try:
            outcome = detector.train(on_epoch_end=on_epoch_end)
        finally:
            progress.close()

        outcome.raise_for_status()
        if outcome.status == OutcomeStatus.WARNING:
            logger.warning(outcome.message)
        else:
            logger.info(outcome.message)
        for name, value in outcome.metrics.items():
            logger.info(f"  - {name}: {value:.4f}")

        path = ModelPersistence.save_bundle(detector, args.output)
        logger.info(f"Training completed successfully; model written to {path}")

    except (SentinelError, ValueError) as e:
        logger.error(f"Error during training: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
