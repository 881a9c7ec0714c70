"""Unit tests for incident verification."""

from __future__ import annotations

import base64
import json
import unittest

import httpx
import numpy as np

from audio_sentinel.segmentation import Incident, Severity, Verification
from audio_sentinel.verification import (
    HttpIncidentVerifier,
    VerificationResult,
    extract_clip,
    verify_incident,
)

SR = 1_000


def _incident() -> Incident:
    return Incident(
        id="incident-16",
        start_offset=0.5,
        duration=1.0,
        peak_intensity=2.4,
        severity=Severity.MEDIUM,
        frame_index=16,
    )


class FixedVerifier:
    def __init__(self, result: VerificationResult):
        self.result = result
        self.calls = []

    def verify(self, clip, mime_type):
        self.calls.append((clip, mime_type))
        return self.result


class BrokenVerifier:
    def verify(self, clip, mime_type):
        raise ConnectionError("service unavailable")


class TestVerifyIncident(unittest.TestCase):
    """Tests for verify_incident."""

    def setUp(self) -> None:
        self.waveform = np.sin(np.linspace(0, 200, SR * 10)).astype(np.float32) * 0.3
        self.incident = _incident()

    def test_no_verifier(self) -> None:
        result = verify_incident(self.incident, self.waveform, SR, None)
        self.assertEqual(result.verification, Verification.UNVERIFIED)
        self.assertEqual(result.id, self.incident.id)

    def test_confirmed(self) -> None:
        verifier = FixedVerifier(VerificationResult(True, "bearing grind"))
        result = verify_incident(self.incident, self.waveform, SR, verifier)

        self.assertEqual(result.verification, Verification.VERIFIED)
        self.assertEqual(result.verification_reason, "bearing grind")
        clip, mime_type = verifier.calls[0]
        self.assertEqual(mime_type, "audio/wav")
        self.assertTrue(clip.startswith(b"RIFF"))

    def test_rejected_is_kept(self) -> None:
        verifier = FixedVerifier(VerificationResult(False, "human speech"))
        result = verify_incident(self.incident, self.waveform, SR, verifier)
        self.assertEqual(result.verification, Verification.FALSE_POSITIVE)
        self.assertEqual(result.start_offset, self.incident.start_offset)

    def test_failure_treated_as_real(self) -> None:
        result = verify_incident(self.incident, self.waveform, SR, BrokenVerifier())
        self.assertEqual(result.verification, Verification.UNVERIFIED)
        self.assertIn("genuine", result.verification_reason)
        self.assertEqual(self.incident.verification, Verification.PENDING)

    def test_clip_padding(self) -> None:
        clip = extract_clip(self.waveform, SR, self.incident, padding=1.0)
        # 0.5s start clamps to 0; end is 2.5s
        self.assertEqual(len(clip), 2_500)

        late = Incident("incident-x", 9.5, 0.4, 1.5, Severity.LOW)
        self.assertEqual(len(extract_clip(self.waveform, SR, late, padding=1.0)), 1_500)


class TestHttpIncidentVerifier(unittest.TestCase):
    """Tests for HttpIncidentVerifier with a mocked transport."""

    def _verifier(self, handler) -> HttpIncidentVerifier:
        return HttpIncidentVerifier(url="http://verifier.test/verify/audio", transport=httpx.MockTransport(handler))

    def test_posts_clip_and_parses_verdict(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"isRealAnomaly": True, "reason": "irregular RPM"})

        result = self._verifier(handler).verify(b"RIFFdata", "audio/wav")

        self.assertEqual(result, VerificationResult(True, "irregular RPM"))
        body = requests[0]
        self.assertEqual(body["mimeType"], "audio/wav")
        self.assertEqual(base64.b64decode(body["audio"]), b"RIFFdata")
        self.assertIn("prompt", body)

    def test_malformed_response(self) -> None:
        verifier = self._verifier(lambda request: httpx.Response(200, json={"isRealAnomaly": "yes"}))
        with self.assertRaises(ValueError):
            verifier.verify(b"RIFF", "audio/wav")

    def test_server_error_leaves_incident_unverified(self) -> None:
        verifier = self._verifier(lambda request: httpx.Response(503))
        waveform = np.zeros(SR * 5, dtype=np.float32)
        result = verify_incident(_incident(), waveform, SR, verifier)
        self.assertEqual(result.verification, Verification.UNVERIFIED)


if __name__ == "__main__":
    unittest.main()
