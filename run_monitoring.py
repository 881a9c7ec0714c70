#!/usr/bin/env python3
"""Audio anomaly monitoring: scan a recording or listen to a live device."""

import sys
import time
import argparse
import logging
from typing import List

from tqdm.auto import tqdm

from audio_sentinel.analysis import AnalysisSession
from audio_sentinel.config import FeatureConfig, MonitorConfig
from audio_sentinel.detector import AcousticDetector
from audio_sentinel.errors import SentinelError
from audio_sentinel.features import FeatureExtractor
from audio_sentinel.monitor import LiveMonitor
from audio_sentinel.persistence import ModelPersistence
from audio_sentinel.segmentation import Incident
from audio_sentinel.utils import setup_logging
from audio_sentinel.verification import HttpIncidentVerifier

logger = logging.getLogger(__name__)


def report_incidents(incidents: List[Incident]) -> None:
    """Print one line per incident."""
    if not incidents:
        print("No anomalies detected")
        return

    print(f"{len(incidents)} incident(s):")
    for incident in incidents:
        line = (
            f"  {incident.start_offset:8.2f}s  {incident.duration:6.2f}s  "
            f"peak x{incident.peak_intensity:.2f}  {incident.severity.value:<6}"
        )
        if incident.verification_reason:
            line += f"  [{incident.verification.value}] {incident.verification_reason}"
        print(line)


def scan_file(detector: AcousticDetector, extractor: FeatureExtractor, args) -> None:
    """Scan one recording and report its incidents."""
    session = AnalysisSession(detector, extractor)
    progress = tqdm(total=100, desc="Scanning", unit="%")

    def on_progress(fraction: float):
        progress.update(int(fraction * 100) - progress.n)

    try:
        session.analyze_file(args.file, calibrate=args.sensitivity is None, on_progress=on_progress)
    finally:
        progress.close()

    if session.sample_rate != detector.sample_rate:
        logger.warning(
            f"{args.file} is sampled at {session.sample_rate} Hz but the model was trained at "
            f"{detector.sample_rate} Hz; scores may be unreliable"
        )

    logger.info(f"Effective threshold: {detector.effective_threshold():.2f}")
    if args.verify:
        incidents = session.verified_incidents(HttpIncidentVerifier(url=args.verifier_url))
    else:
        incidents = session.incidents()
    report_incidents(incidents)


def listen(detector: AcousticDetector, extractor: FeatureExtractor, args) -> None:
    """Monitor the capture device until interrupted."""
    config = MonitorConfig(
        sample_rate=args.sample_rate or detector.sample_rate,
        voice_shield=not args.no_voice_shield,
        device=args.device
    )

    def on_frame(frame):
        if frame.is_anomaly:
            logger.warning(
                f"ANOMALY DETECTED: score {frame.smoothed_score:.2f} "
                f"(threshold {detector.effective_threshold():.2f}, level {frame.amplitude:.0f}%)"
            )

    monitor = LiveMonitor(detector, config, extractor, on_frame=on_frame)
    monitor.start()
    try:
        while monitor.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        monitor.stop()

    report_incidents(monitor.session.incidents())


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Acoustic anomaly monitoring'
    )
    parser.add_argument(
        '--model',
        type=str,
        required=True,
        help='Path to a trained model bundle'
    )
    parser.add_argument(
        '--file',
        type=str,
        default=None,
        help='Scan this recording instead of listening to the microphone'
    )
    parser.add_argument(
        '--sensitivity',
        type=float,
        default=None,
        help='Fixed sensitivity; file scans auto-calibrate when omitted'
    )
    parser.add_argument(
        '--verify',
        action='store_true',
        help='Ask the verification service to review each incident'
    )
    parser.add_argument(
        '--verifier-url',
        type=str,
        default=None,
        help='Verification endpoint (default: $SENTINEL_VERIFIER_URL)'
    )
    parser.add_argument(
        '--sample-rate',
        type=int,
        default=None,
        help='Capture sample rate (default: the rate the model was trained at)'
    )
    parser.add_argument('--device', type=int, default=None, help='Input device index')
    parser.add_argument('--no-voice-shield', action='store_true', help='Do not attenuate the speech band')
    return parser.parse_args()


def main():
    """Main execution function."""
    setup_logging()
    args = parse_args()

    try:
        feature_config = FeatureConfig()
        extractor = FeatureExtractor(feature_config)
        detector = AcousticDetector(input_dim=feature_config.n_bins)
        ModelPersistence.load_bundle(detector, args.model)

        if args.sensitivity is not None:
            detector.set_sensitivity(args.sensitivity)

        if args.file:
            scan_file(detector, extractor, args)
        else:
            listen(detector, extractor, args)

    except SentinelError as e:
        logger.error(f"Error in monitoring application: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
