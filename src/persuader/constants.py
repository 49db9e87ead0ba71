"""Default values and limits shared across the pipeline."""
from __future__ import annotations

DEFAULT_RETRIES = 3
MAX_RETRIES = 10

DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_TOKENS = 4096

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

# Backoff for retryable provider errors only.
BASE_RETRY_DELAY_MS = 1000.0
RETRY_DELAY_MULTIPLIER = 1.5
MAX_RETRY_DELAY_MS = 10_000.0

# Status codes worth retrying: request timeout, rate limit, and server errors.
RETRYABLE_HTTP_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})

# Guard against pathological schemas when describing them.
MAX_DESCRIPTION_DEPTH = 8

GENERIC_SCHEMA_DESCRIPTION = "a JSON value matching the expected schema"
