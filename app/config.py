"""
Runtime configuration read from environment variables.
"""

import os
from dataclasses import dataclass

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MiB
CLASSIFY_DELAY_MS = int(os.getenv("CLASSIFY_DELAY_MS", "2000"))
CLASSIFIER_SEED = os.getenv("CLASSIFIER_SEED")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD_BYTES = 64 * 1024


@dataclass(frozen=True)
class Settings:
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    classify_delay_ms: int = CLASSIFY_DELAY_MS
    classifier_seed: int | None = int(CLASSIFIER_SEED) if CLASSIFIER_SEED else None
    log_level: str = LOG_LEVEL

    @property
    def max_request_bytes(self) -> int:
        return self.max_upload_bytes + MULTIPART_OVERHEAD_BYTES
