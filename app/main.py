"""
FastAPI service for mock skin-lesion classification.

Endpoints:
  GET  /health         → Health check
  POST /api/classify   → Classify an uploaded image (multipart field "image")
  GET  /metrics        → Prometheus metrics
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.config import LOG_LEVEL, Settings
from app.predictor import Classifier, MockClassifier
from app.schemas import ClassificationResult, ErrorResponse, HealthResponse, UploadedImage

# ── Structured JSON-like logging ─────────────────────────────────────────────
logging.basicConfig(
    level=LOG_LEVEL,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
)
logger = logging.getLogger("healthvision-api")

# ── Prometheus Metrics ────────────────────────────────────────────────────────
REQUEST_COUNT = Counter(
    "healthvision_request_total",
    "Total number of requests",
    ["endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "healthvision_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
PREDICTION_CONDITIONS = Counter(
    "healthvision_prediction_condition_total",
    "Count of returned conditions",
    ["condition", "severity"],
)

CLASSIFY_PATH = "/api/classify"
IMAGE_FIELD = "image"
SINGLE_FILE_ERROR = "Only one image file is allowed"
NO_IMAGE_ERROR = "No image file provided"
WRONG_TYPE_ERROR = "Only image files are allowed"
TOO_LARGE_ERROR = "File too large"
PROCESSING_ERROR = "Failed to process image classification"


class APIError(Exception):
    """Error rendered as an `ErrorResponse` body with the given status."""

    def __init__(self, status_code: int, error: str, details: str | None = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


def error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def read_image_upload(
    request: Request,
    image: UploadFile | None = File(None, description="Image file (any image/* type, max 10 MiB)"),
) -> UploadedImage | None:
    """
    Validate the `image` part before the handler runs: exactly one file, under
    `image` only, of an image type, within the size limit.

    Returns None when no file was sent; the handler decides what that means.
    """
    # Parsed once by FastAPI; this returns the cached form
    form = await request.form()
    count = len(form.getlist(IMAGE_FIELD))
    if count > 1:
        logger.warning(f"rejected upload | reason=multiple count={count}")
        raise APIError(400, SINGLE_FILE_ERROR, f"Expected one file under '{IMAGE_FIELD}'")
    unexpected = sorted(
        {key for key, value in form.multi_items() if key != IMAGE_FIELD and isinstance(value, StarletteUploadFile)}
    )
    if unexpected:
        logger.warning(f"rejected upload | reason=unexpected-field fields={unexpected}")
        raise APIError(400, SINGLE_FILE_ERROR, f"Unexpected file field: {', '.join(unexpected)}")

    if image is None:
        return None

    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        logger.warning(f"rejected upload | reason=type content_type={content_type!r} file={image.filename}")
        raise APIError(415, WRONG_TYPE_ERROR)

    limit = request.app.state.settings.max_upload_bytes
    image.file.seek(0, os.SEEK_END)
    size = image.file.tell()
    image.file.seek(0)
    if size > limit:
        logger.warning(f"rejected upload | reason=size size={size} limit={limit} file={image.filename}")
        raise APIError(413, TOO_LARGE_ERROR, f"Maximum file size is {limit} bytes")

    data = await image.read()
    return UploadedImage(
        filename=image.filename or "upload",
        content_type=content_type,
        size=len(data),
        data=data,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    classifier = app.state.classifier
    logger.info(f"Classifier ready: {classifier.name}")
    yield
    logger.info("Shutting down")


def create_app(settings: Settings | None = None, classifier: Classifier | None = None) -> FastAPI:
    settings = settings or Settings()
    logger.setLevel(settings.log_level)

    app = FastAPI(
        title="HealthVision Classifier API",
        description="Mock skin-lesion image classification API.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.classifier = classifier or MockClassifier.from_settings(settings)

    # ── Transport guards & error rendering ───────────────────────────────────

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        length = request.headers.get("content-length", "")
        if length.isdigit() and int(length) > settings.max_request_bytes:
            logger.warning(f"rejected request | reason=content-length length={length} path={request.url.path}")
            REQUEST_COUNT.labels(endpoint=request.url.path, status="413").inc()
            return error_response(413, TOO_LARGE_ERROR, f"Maximum file size is {settings.max_upload_bytes} bytes")
        return await call_next(request)

    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError):
        REQUEST_COUNT.labels(endpoint=request.url.path, status=str(exc.status_code)).inc()
        return error_response(exc.status_code, exc.error, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # The only input is the image part, so any malformed form means no usable file
        REQUEST_COUNT.labels(endpoint=request.url.path, status="400").inc()
        errors = exc.errors()
        details = errors[0].get("msg") if errors else None
        return error_response(400, NO_IMAGE_ERROR, details)

    # ── Endpoints ─────────────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint — returns service and classifier status."""
        start = time.time()
        REQUEST_COUNT.labels(endpoint="/health", status="200").inc()
        REQUEST_LATENCY.labels(endpoint="/health").observe(time.time() - start)
        return HealthResponse(status="ok", classifier=request.app.state.classifier.name)

    @app.post(
        CLASSIFY_PATH,
        response_model=ClassificationResult,
        tags=["Inference"],
        responses={
            400: {"model": ErrorResponse},
            413: {"model": ErrorResponse},
            415: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        },
    )
    async def classify(request: Request, upload: UploadedImage | None = Depends(read_image_upload)):
        """
        Accept an image upload and return a classification result.

        - **image**: Image file, any `image/*` type up to 10 MiB
        """
        start = time.time()

        if upload is None:
            raise APIError(400, NO_IMAGE_ERROR)

        classifier: Classifier = request.app.state.classifier
        try:
            result = await classifier.classify(upload)
        except Exception as e:
            logger.exception(f"Classification error: {e}")
            raise APIError(500, PROCESSING_ERROR, str(e) or "Unknown error") from e

        latency = time.time() - start
        REQUEST_COUNT.labels(endpoint=CLASSIFY_PATH, status="200").inc()
        REQUEST_LATENCY.labels(endpoint=CLASSIFY_PATH).observe(latency)
        PREDICTION_CONDITIONS.labels(condition=result.condition, severity=result.severity).inc()

        logger.info(
            f"classify | condition={result.condition} "
            f"confidence={result.confidence:.2f} "
            f"severity={result.severity} "
            f"latency={latency:.3f}s "
            f"file={upload.filename} size={upload.size}"
        )

        return result

    @app.get("/metrics", tags=["System"], include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
