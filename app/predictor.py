"""
Classification backends.

The endpoint only knows the `Classifier` protocol. `MockClassifier` stands in
for a real inference service: it waits a fixed delay and returns one entry
of a fixed catalog, regardless of the uploaded image.
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

from app.config import Settings
from app.schemas import CatalogEntry, ClassificationResult, UploadedImage

DEFAULT_CATALOG: tuple[CatalogEntry, ...] = (
    CatalogEntry(
        condition="Melanoma",
        confidence=0.87,
        severity="high",
        description=(
            "Detected suspicious pigmented lesion. Recommend immediate "
            "dermatological consultation for further evaluation."
        ),
    ),
    CatalogEntry(
        condition="Benign Nevus",
        confidence=0.92,
        severity="low",
        description=(
            "Appears to be a benign mole. Continue regular skin monitoring "
            "and annual dermatological check-ups."
        ),
    ),
    CatalogEntry(
        condition="Seborrheic Keratosis",
        confidence=0.78,
        severity="low",
        description=(
            "Common benign skin growth. No immediate treatment required "
            "unless cosmetically bothersome."
        ),
    ),
    CatalogEntry(
        condition="Basal Cell Carcinoma",
        confidence=0.83,
        severity="medium",
        description=(
            "Possible skin cancer detected. Recommend dermatological "
            "evaluation for confirmation and treatment planning."
        ),
    ),
)

Selector = Callable[[Sequence[CatalogEntry]], CatalogEntry]


def utc_timestamp(now: datetime | None = None) -> str:
    """
    ISO-8601 UTC timestamp with millisecond precision and a `Z` suffix.

    Sub-millisecond digits are truncated, not rounded, so the stamp may read
    up to 1 ms earlier than a microsecond-precision clock reading taken just
    before it. Compare against it at millisecond granularity.
    """
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Classifier(Protocol):
    """Anything that turns an uploaded image into a classification result."""

    name: str

    async def classify(self, image: UploadedImage) -> ClassificationResult:
        ...


class MockClassifier:
    """Simulated inference: sleep, then pick a canned catalog entry."""

    name = "mock"

    def __init__(
        self,
        catalog: Sequence[CatalogEntry] = DEFAULT_CATALOG,
        delay_seconds: float = 2.0,
        seed: int | None = None,
        selector: Selector | None = None,
    ):
        if not catalog:
            raise ValueError("catalog must contain at least one entry")
        self.catalog = tuple(catalog)
        self.delay_seconds = delay_seconds
        self._rng = random.Random(seed)
        self._select = selector or self._rng.choice

    @classmethod
    def from_settings(cls, settings: Settings) -> "MockClassifier":
        return cls(
            delay_seconds=settings.classify_delay_ms / 1000,
            seed=settings.classifier_seed,
        )

    async def classify(self, image: UploadedImage) -> ClassificationResult:
        # Placeholder for a call to a real inference backend
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        entry = self._select(self.catalog)
        return ClassificationResult(**entry.model_dump(), timestamp=utc_timestamp())
