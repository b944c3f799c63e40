"""Live polling constants shared across the SDK.

These values are referenced by the rate limiter, submission pipeline,
presentation controller, aggregation engine and account side channel.

Several constants can be overridden via environment variables so that
deployments can tune abuse limits and disclosure thresholds without code
changes.
"""

import os

# --- Rate limiting (free-text / image submissions only) ---
# Overridable via RATE_LIMIT_WINDOW_SECONDS / RATE_LIMIT_MAX env vars.
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "3"))

# --- Presentation ---
# Interval between AdminState liveness touches while presenting.
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30"))

# --- Aggregation ---
# Charts are shown only when the unique-respondent rate is strictly above
# this fraction of the expected participant count.
DISCLOSURE_THRESHOLD = float(os.getenv("DISCLOSURE_THRESHOLD", "0.30"))

# Response-rate band shown on the event summary.
RATE_BAND_LOW = "low"
RATE_BAND_HIGH = "high"

# Fixed bucket domain and default labels of 5-point rating questions.
RATING_SCALE: tuple[int, ...] = (1, 2, 3, 4, 5)
DEFAULT_RATING_LABELS: dict[int, str] = {
    1: "Very dissatisfied",
    2: "Dissatisfied",
    3: "Neutral",
    4: "Satisfied",
    5: "Very satisfied",
}

# --- Image processing ---
MAX_INPUT_BYTES = int(os.getenv("MAX_IMAGE_INPUT_BYTES", str(20 * 1024 * 1024)))
MAX_OUTPUT_BYTES = int(os.getenv("MAX_IMAGE_OUTPUT_BYTES", str(5 * 1024 * 1024)))
MAX_IMAGE_DIMENSION = int(os.getenv("MAX_IMAGE_DIMENSION", "800"))
# Encode qualities tried in order until the output fits MAX_OUTPUT_BYTES.
JPEG_QUALITIES: tuple[int, ...] = (85, 60)
IMAGE_CONTENT_TYPE = "image/jpeg"

# --- Moderation ---
DEFAULT_MODERATION_MODEL = "omni-moderation-latest"

# A response is blocked when any of these classifier categories is flagged.
# Everything else the classifier reports (harassment, self-harm, ...) is
# recorded for the admin but does not block.
BLOCKING_CATEGORIES: frozenset[str] = frozenset({
    "violence",
    "violence/graphic",
    "hate",
    "hate/threatening",
    "sexual",
    "sexual/minors",
})

# --- Account side channel ---
VERIFICATION_CODE_TTL_SECONDS = int(os.getenv("VERIFICATION_CODE_TTL_SECONDS", "600"))
DELETION_TOKEN_TTL_SECONDS = int(os.getenv("DELETION_TOKEN_TTL_SECONDS", "1800"))
VERIFICATION_CODE_LENGTH = 6
