"""
Upload client for the classification API.

Mirrors the browser page: pick or drop an image, preview it, analyze it,
show the result card, clear. Runs headless so it can be scripted and tested.

Usage:
    python -m client.upload_client path/to/lesion.jpg --url http://localhost:8000
"""

import argparse
import base64
import io
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import requests
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ValidationError

logger = logging.getLogger("healthvision-client")

CLASSIFY_PATH = "/api/classify"

SEVERITY_COLORS = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
}


class ClientState(str, Enum):
    EMPTY = "empty"
    PREVIEWING = "previewing"
    ANALYZING = "analyzing"
    RESULT_SHOWN = "result_shown"


@dataclass
class SelectedFile:
    filename: str
    content_type: str
    data: bytes

    @classmethod
    def from_path(cls, path: str | Path) -> "SelectedFile":
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, content_type=content_type, data=path.read_bytes())

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


@dataclass
class Preview:
    data_url: str
    width: int | None = None
    height: int | None = None


class Prediction(BaseModel):
    """Result card payload; mirrors the server's ClassificationResult."""

    condition: str
    confidence: float
    severity: str
    description: str
    timestamp: str | None = None


ANALYSIS_ERROR = Prediction(
    condition="Analysis Error",
    confidence=0.0,
    severity="medium",
    description="Unable to analyze image. Please try again or contact support if the problem persists.",
)


def severity_color(severity: str) -> str:
    """Badge color for a severity tier; unknown tiers render gray."""
    return SEVERITY_COLORS.get(severity, "gray")


def make_preview(file: SelectedFile) -> Preview:
    """Data URL of the raw bytes, plus dimensions when Pillow can decode them."""
    encoded = base64.b64encode(file.data).decode("ascii")
    preview = Preview(data_url=f"data:{file.content_type};base64,{encoded}")
    try:
        with Image.open(io.BytesIO(file.data)) as img:
            preview.width, preview.height = img.size
    except (UnidentifiedImageError, OSError):
        pass  # non-image picked through the file dialog; no dimensions
    return preview


class UploadClient:
    """Four-state upload flow: empty → previewing → analyzing → result_shown."""

    def __init__(self, base_url: str = "http://localhost:8000", session=None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.state = ClientState.EMPTY
        self.selected: SelectedFile | None = None
        self.preview: Preview | None = None
        self.prediction: Prediction | None = None

    @property
    def can_analyze(self) -> bool:
        return self.selected is not None and self.state != ClientState.ANALYZING

    def select_file(self, file: SelectedFile) -> None:
        """File-picker path: accepts whatever the user chose."""
        self.selected = file
        self.prediction = None
        self.preview = make_preview(file)
        self.state = ClientState.PREVIEWING

    def drop_file(self, file: SelectedFile) -> bool:
        """Drag-and-drop path: non-image files are ignored."""
        if not file.is_image:
            logger.debug(f"ignored drop of {file.filename} ({file.content_type})")
            return False
        self.select_file(file)
        return True

    def analyze(self) -> Prediction | None:
        """
        Submit the selected file and store the outcome.

        Always ends in RESULT_SHOWN: any transport, HTTP or decoding failure
        yields the "Analysis Error" fallback instead of raising.
        """
        if not self.can_analyze:
            return self.prediction

        self.state = ClientState.ANALYZING
        file = self.selected
        try:
            response = self.session.post(
                f"{self.base_url}{CLASSIFY_PATH}",
                files={"image": (file.filename, file.data, file.content_type)},
                timeout=self.timeout,
            )
            if not 200 <= response.status_code < 300:
                raise RuntimeError(f"HTTP error! status: {response.status_code}")
            self.prediction = Prediction.model_validate(response.json())
        except (requests.RequestException, RuntimeError, ValidationError, ValueError) as e:
            logger.error(f"Error analyzing image: {e}")
            self.prediction = ANALYSIS_ERROR
        finally:
            self.state = ClientState.RESULT_SHOWN

        return self.prediction

    def clear(self) -> None:
        self.selected = None
        self.preview = None
        self.prediction = None
        self.state = ClientState.EMPTY

    def render_card(self) -> str:
        """Plain-text result card for the current prediction."""
        if self.prediction is None:
            return ""
        p = self.prediction
        lines = [
            f"{p.condition}  [{p.severity.upper()} · {severity_color(p.severity)}]",
            f"Confidence: {p.confidence * 100:.1f}%",
            p.description,
        ]
        if p.timestamp:
            lines.append(f"Analyzed at {p.timestamp}")
        return "\n".join(lines)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Upload an image for classification")
    parser.add_argument("image", type=str, help="Path to the image file")
    parser.add_argument("--url", type=str, default="http://localhost:8000")
    args = parser.parse_args()

    client = UploadClient(args.url)
    client.select_file(SelectedFile.from_path(args.image))
    print(f"[Preview] {client.selected.filename} {client.preview.width}x{client.preview.height}")
    client.analyze()
    print(client.render_card())
