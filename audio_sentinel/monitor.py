# audio_sentinel/monitor.py
"""Real-time audio monitoring from a capture device."""

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

import numpy as np

from .analysis import AnalysisSession
from .config import MonitorConfig
from .errors import SentinelError
from .features import FeatureExtractor
from .scoring import ScoredFrame

logger = logging.getLogger(__name__)


class LiveMonitor:
    """Streams microphone audio through the detector.

    The device callback only queues raw blocks; a processing thread cuts
    them into hop-spaced windows, scores each one and appends it to a live
    ``AnalysisSession``. ``stop()`` may be called at any time: it closes the
    stream and joins the thread without flushing anything.
    """

    def __init__(self,
                 detector,
                 config: Optional[MonitorConfig] = None,
                 extractor: Optional[FeatureExtractor] = None,
                 on_frame: Optional[Callable[[ScoredFrame], None]] = None):
        self.detector = detector
        self.config = config if config is not None else MonitorConfig()
        self.extractor = extractor if extractor is not None else FeatureExtractor()
        self.session = AnalysisSession(detector, self.extractor, live=True)
        self.on_frame = on_frame

        self.block_size = int(self.config.sample_rate * self.config.block_duration)

        # Processing queue
        self.audio_queue: queue.Queue = queue.Queue()
        self.scores_queue: queue.Queue = queue.Queue()

        # Frame assembly
        self._pending = np.zeros(0, dtype=np.float32)
        self._skip = 0

        # State
        self.running = False
        self.stream = None
        self.process_thread: Optional[threading.Thread] = None

    def audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Callback for audio stream."""
        if status:
            logger.warning(f"Audio callback status: {status}")
        self.audio_queue.put(indata.copy())

    def consume(self, samples: np.ndarray) -> List[ScoredFrame]:
        """Cut newly captured samples into frames and score them."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if self._skip:
            dropped = min(self._skip, len(samples))
            samples = samples[dropped:]
            self._skip -= dropped
        self._pending = np.concatenate([self._pending, samples])

        n_fft = self.extractor.config.n_fft
        hop = self.extractor.config.hop_length
        scored = []
        while len(self._pending) >= n_fft:
            frame = self.extractor.extract(self._pending[:n_fft])[0]
            if self.config.voice_shield:
                frame = self.extractor.apply_voice_shield(frame)
            result = self.session.process_frame(frame, time.time())
            scored.append(result)
            self.scores_queue.put(result)
            if self.on_frame is not None:
                self.on_frame(result)

            if len(self._pending) >= hop:
                self._pending = self._pending[hop:]
            else:
                self._skip = hop - len(self._pending)
                self._pending = np.zeros(0, dtype=np.float32)
        return scored

    def process_audio(self) -> None:
        """Process audio data from queue.

        Engine errors are logged; after ``max_consecutive_errors`` failures
        in a row monitoring stops.
        """
        failures = 0
        while self.running:
            try:
                audio_data = self.audio_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.consume(audio_data)
            except (SentinelError, ValueError) as e:
                failures += 1
                logger.error(f"Error processing audio: {e}")
                if failures >= self.config.max_consecutive_errors:
                    logger.error(f"Stopping live monitoring after {failures} consecutive failures")
                    self.running = False
                continue
            failures = 0

    def start(self) -> None:
        """Start monitoring."""
        import sounddevice as sd

        if self.running:
            return
        self.session.reset()
        self._pending = np.zeros(0, dtype=np.float32)
        self._skip = 0
        self.running = True

        self.stream = sd.InputStream(
            channels=1,
            samplerate=self.config.sample_rate,
            blocksize=self.block_size,
            device=self.config.device,
            dtype='float32',
            callback=self.audio_callback
        )
        self.stream.start()

        self.process_thread = threading.Thread(target=self.process_audio, daemon=True)
        self.process_thread.start()
        logger.info(f"Live monitoring started at {self.config.sample_rate} Hz")

    def stop(self) -> None:
        """Stop monitoring and release the capture device."""
        self.running = False

        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None

        if self.process_thread is not None:
            self.process_thread.join()
            self.process_thread = None
        logger.info("Live monitoring stopped")
