"""
Pydantic schemas for request/response validation.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high"]


class UploadedImage(BaseModel):
    """An accepted upload. Lives for one request only."""

    filename: str
    content_type: str
    size: int
    data: bytes = Field(repr=False)


class CatalogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition: str
    confidence: float = Field(ge=0.0, le=1.0)
    severity: Severity
    description: str


class ClassificationResult(BaseModel):
    condition: str
    confidence: float = Field(ge=0.0, le=1.0)
    severity: Severity
    description: str
    timestamp: str      # ISO-8601, UTC, e.g. 2024-05-01T12:00:00.000Z


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class HealthResponse(BaseModel):
    status: str
    classifier: str
    version: str = "1.0.0"
