# audio_sentinel/verification.py
"""Optional second-opinion check of finalized incidents.

A verifier receives a short audio clip around an incident and judges
whether it is a genuine mechanical anomaly. Its answer only annotates the
incident: when no verifier is configured or it fails, the incident is kept
and marked unverified.
"""

import base64
import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import numpy as np

from .segmentation import Incident, Verification
from .utils import encode_wav

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Analyze this audio snippet from a factory floor. A statistical anomaly was detected. "
    "Determine whether it is a genuine mechanical failure (grinding, bearing failure, "
    "irregular RPM) or human speech / background noise. "
    'Return JSON with "isRealAnomaly" (boolean) and "reason" (string).'
)


@dataclass(frozen=True)
class VerificationResult:
    is_real_anomaly: bool
    reason: str


class IncidentVerifier(Protocol):
    def verify(self, clip: bytes, mime_type: str) -> VerificationResult:
        ...


class HttpIncidentVerifier:
    """Posts a base64 WAV clip to a verification service.

    The service answers with ``{"isRealAnomaly": bool, "reason": str}``.
    """

    def __init__(self,
                 url: Optional[str] = None,
                 timeout: float = 10.0,
                 prompt: str = DEFAULT_PROMPT,
                 transport: Optional[httpx.BaseTransport] = None):
        self.url = url or os.getenv("SENTINEL_VERIFIER_URL", "http://localhost:8003/verify/audio")
        self.timeout = timeout
        self.prompt = prompt
        self.transport = transport

    def verify(self, clip: bytes, mime_type: str = "audio/wav") -> VerificationResult:
        payload = {
            "audio": base64.b64encode(clip).decode("ascii"),
            "mimeType": mime_type,
            "prompt": self.prompt,
        }
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            resp = client.post(self.url, json=payload)
            resp.raise_for_status()
            body = resp.json()

        verdict = body.get("isRealAnomaly")
        if not isinstance(verdict, bool):
            raise ValueError(f"Verifier response lacks a boolean isRealAnomaly: {body!r}")
        return VerificationResult(is_real_anomaly=verdict, reason=str(body.get("reason") or "No details"))


def extract_clip(waveform: np.ndarray, sample_rate: int, incident: Incident, padding: float = 1.0) -> np.ndarray:
    """Samples covering the incident plus ``padding`` seconds either side."""
    start = max(0, int((incident.start_offset - padding) * sample_rate))
    end = min(len(waveform), int(np.ceil((incident.end_offset + padding) * sample_rate)))
    return np.asarray(waveform[start:end], dtype=np.float32)


def verify_incident(incident: Incident,
                    waveform: np.ndarray,
                    sample_rate: int,
                    verifier: Optional[IncidentVerifier],
                    padding: float = 1.0) -> Incident:
    """Annotate an incident with the verifier's judgement.

    Returns a new Incident; the input is never discarded or mutated.
    """
    if verifier is None:
        return dataclasses.replace(
            incident,
            verification=Verification.UNVERIFIED,
            verification_reason="No verifier configured"
        )

    clip = encode_wav(extract_clip(waveform, sample_rate, incident, padding), sample_rate)
    try:
        result = verifier.verify(clip, "audio/wav")
    except Exception as e:
        logger.error(f"Verification of {incident.id} failed: {e}")
        return dataclasses.replace(
            incident,
            verification=Verification.UNVERIFIED,
            verification_reason="Verification failed; treated as a genuine anomaly"
        )

    status = Verification.VERIFIED if result.is_real_anomaly else Verification.FALSE_POSITIVE
    logger.info(f"{incident.id} verified as {status.value}: {result.reason}")
    return dataclasses.replace(incident, verification=status, verification_reason=result.reason)
