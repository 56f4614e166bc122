"""
Endpoint tests for POST /api/classify, /health and /metrics.
Uses an instant mock classifier so no test waits on the simulated delay.
"""

import io
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import Settings
from app.main import create_app
from app.predictor import DEFAULT_CATALOG, MockClassifier

CONDITIONS = {entry.condition for entry in DEFAULT_CATALOG}
MIB = 1024 * 1024


def jpeg_bytes(size=(64, 48)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(200, 150, 120)).save(buf, format="JPEG")
    return buf.getvalue()


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class RecordingClassifier(MockClassifier):
    """Mock classifier that remembers every image it was asked about."""

    def __init__(self, **kwargs):
        super().__init__(delay_seconds=0, seed=7, **kwargs)
        self.calls = []

    async def classify(self, image):
        self.calls.append(image)
        return await super().classify(image)


class BrokenClassifier:
    name = "broken"

    def __init__(self, message="backend unavailable"):
        self.message = message

    async def classify(self, image):
        raise RuntimeError(self.message)


@pytest.fixture
def classifier():
    return RecordingClassifier()


@pytest.fixture
def client(classifier):
    app = create_app(settings=Settings(classify_delay_ms=0), classifier=classifier)
    with TestClient(app) as c:
        yield c


class TestClassifySuccess:
    def test_returns_catalog_entry(self, client):
        """A valid image yields one of the four catalog entries."""
        r = client.post("/api/classify", files={"image": ("lesion.jpg", jpeg_bytes(), "image/jpeg")})
        assert r.status_code == 200
        body = r.json()
        assert set(body) == {"condition", "confidence", "severity", "description", "timestamp"}
        assert body["condition"] in CONDITIONS
        assert 0.0 <= body["confidence"] <= 1.0
        assert body["severity"] in ("low", "medium", "high")

    def test_matches_catalog_fields(self, client):
        """Confidence, severity and description come from the chosen entry."""
        body = client.post("/api/classify", files={"image": ("a.png", jpeg_bytes(), "image/png")}).json()
        entry = next(e for e in DEFAULT_CATALOG if e.condition == body["condition"])
        assert body["confidence"] == pytest.approx(entry.confidence)
        assert body["severity"] == entry.severity
        assert body["description"] == entry.description

    def test_timestamp_not_before_request(self, client):
        """Timestamp parses as ISO-8601 and is no earlier than request start (ms granularity)."""
        start = datetime.now(timezone.utc)
        # Stamps carry milliseconds only
        start = start.replace(microsecond=start.microsecond // 1000 * 1000)
        body = client.post("/api/classify", files={"image": ("a.jpg", jpeg_bytes(), "image/jpeg")}).json()
        assert body["timestamp"].endswith("Z")
        assert parse_timestamp(body["timestamp"]) >= start

    def test_shape_invariant_across_calls(self, client):
        """Repeated submissions may differ in entry but never in shape."""
        data = jpeg_bytes()
        bodies = [
            client.post("/api/classify", files={"image": ("a.jpg", data, "image/jpeg")}).json()
            for _ in range(12)
        ]
        assert all(set(b) == set(bodies[0]) for b in bodies)
        assert {b["condition"] for b in bodies} <= CONDITIONS

    def test_any_image_subtype_accepted(self, client):
        """Content type only has to start with image/."""
        r = client.post("/api/classify", files={"image": ("x.heic", b"not decoded", "image/heic")})
        assert r.status_code == 200

    def test_classifier_receives_upload(self, client, classifier):
        data = jpeg_bytes()
        client.post("/api/classify", files={"image": ("lesion.jpg", data, "image/jpeg")})
        assert len(classifier.calls) == 1
        upload = classifier.calls[0]
        assert upload.filename == "lesion.jpg"
        assert upload.content_type == "image/jpeg"
        assert upload.size == len(data)
        assert upload.data == data


class TestClassifyRejections:
    def test_missing_file(self, client, classifier):
        """Multipart body without an image part → 400."""
        r = client.post("/api/classify", data={"other": "value"})
        assert r.status_code == 400
        assert r.json() == {"error": "No image file provided"}
        assert classifier.calls == []

    def test_empty_body(self, client):
        r = client.post("/api/classify")
        assert r.status_code == 400
        assert r.json()["error"] == "No image file provided"

    def test_wrong_field_name(self, client):
        """A file under any other field name is refused, not ignored."""
        r = client.post("/api/classify", files={"file": ("a.jpg", jpeg_bytes(), "image/jpeg")})
        assert r.status_code == 400
        assert r.json() == {
            "error": "Only one image file is allowed",
            "details": "Unexpected file field: file",
        }

    def test_non_image_rejected_before_handler(self, client, classifier):
        """A text file never reaches the classifier."""
        r = client.post("/api/classify", files={"image": ("notes.txt", b"hello", "text/plain")})
        assert r.status_code == 415
        assert r.json() == {"error": "Only image files are allowed"}
        assert classifier.calls == []

    def test_two_image_parts_rejected(self, client, classifier):
        """Exactly one file under "image"; a second one fails the whole request."""
        files = [
            ("image", ("a.jpg", jpeg_bytes(), "image/jpeg")),
            ("image", ("b.jpg", jpeg_bytes(), "image/jpeg")),
        ]
        r = client.post("/api/classify", files=files)
        assert r.status_code == 400
        assert r.json()["error"] == "Only one image file is allowed"
        assert classifier.calls == []

    def test_second_part_type_does_not_matter(self, client, classifier):
        """Multiple parts are refused before any type check on the last one."""
        files = [
            ("image", ("a.jpg", jpeg_bytes(), "image/jpeg")),
            ("image", ("b.txt", b"y", "text/plain")),
        ]
        r = client.post("/api/classify", files=files)
        assert r.status_code == 400
        assert classifier.calls == []

    def test_extra_file_field_rejected(self, client, classifier):
        files = [
            ("image", ("a.jpg", jpeg_bytes(), "image/jpeg")),
            ("other", ("b.jpg", jpeg_bytes(), "image/jpeg")),
        ]
        r = client.post("/api/classify", files=files)
        assert r.status_code == 400
        assert r.json() == {
            "error": "Only one image file is allowed",
            "details": "Unexpected file field: other",
        }
        assert classifier.calls == []

    def test_file_under_other_field_only(self, client):
        r = client.post("/api/classify", files={"other": ("b.jpg", jpeg_bytes(), "image/jpeg")})
        assert r.status_code == 400
        assert r.json()["details"] == "Unexpected file field: other"

    def test_plain_text_field_alongside_image_allowed(self, client, classifier):
        """Only extra *file* parts are refused; ordinary form fields pass."""
        r = client.post(
            "/api/classify",
            data={"note": "left forearm"},
            files={"image": ("a.jpg", jpeg_bytes(), "image/jpeg")},
        )
        assert r.status_code == 200
        assert len(classifier.calls) == 1

    def test_exactly_limit_accepted(self, client):
        """A file of exactly 10 MiB is accepted."""
        payload = b"\xff" * (10 * MIB)
        r = client.post("/api/classify", files={"image": ("big.jpg", payload, "image/jpeg")})
        assert r.status_code == 200

    def test_one_byte_over_rejected(self, client, classifier):
        """One byte over 10 MiB is rejected before classification."""
        payload = b"\xff" * (10 * MIB + 1)
        r = client.post("/api/classify", files={"image": ("big.jpg", payload, "image/jpeg")})
        assert r.status_code == 413
        assert r.json()["error"] == "File too large"
        assert classifier.calls == []

    def test_oversized_body_rejected_by_content_length(self):
        """Bodies far beyond the limit are refused before multipart parsing."""
        classifier = RecordingClassifier()
        app = create_app(settings=Settings(max_upload_bytes=1024), classifier=classifier)
        with TestClient(app) as c:
            payload = b"\x00" * (200 * 1024)
            r = c.post("/api/classify", files={"image": ("big.png", payload, "image/png")})
        assert r.status_code == 413
        assert r.json()["error"] == "File too large"
        assert classifier.calls == []


class TestClassifyFailures:
    def test_classifier_error_returns_500(self):
        app = create_app(classifier=BrokenClassifier())
        with TestClient(app) as c:
            r = c.post("/api/classify", files={"image": ("a.jpg", jpeg_bytes(), "image/jpeg")})
        assert r.status_code == 500
        assert r.json() == {
            "error": "Failed to process image classification",
            "details": "backend unavailable",
        }

    def test_error_without_message(self):
        app = create_app(classifier=BrokenClassifier(message=""))
        with TestClient(app) as c:
            r = c.post("/api/classify", files={"image": ("a.jpg", jpeg_bytes(), "image/jpeg")})
        assert r.status_code == 500
        assert r.json()["details"] == "Unknown error"


class TestSystemEndpoints:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "classifier": "mock", "version": "1.0.0"}

    def test_log_level_from_settings(self):
        logger = logging.getLogger("healthvision-api")
        try:
            create_app(settings=Settings(log_level="WARNING"), classifier=RecordingClassifier())
            assert logger.level == logging.WARNING
        finally:
            create_app(settings=Settings(log_level="INFO"), classifier=RecordingClassifier())
        assert logger.level == logging.INFO

    def test_metrics_exposes_counters(self, client):
        client.post("/api/classify", files={"image": ("a.jpg", jpeg_bytes(), "image/jpeg")})
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "healthvision_request_total" in r.text
        assert "healthvision_prediction_condition_total" in r.text
