"""Small HTTP-related constants shared across sparkbatch.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

API_VERSION = "api/v4"

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_INTERVAL_S = 1.0

# Multiplicative jitter applied to 429 backoff; spreads retries from many
# clients hitting the same tenant limit.
RETRY_RANDOMIZATION_FACTOR = 0.5

BATCH_CHUNK_SIZE = 200
DEFAULT_MAX_CHUNKS = 100

SDK_NAME = "Spark Python SDK"
DEFAULT_CALL_PURPOSE = "Async Batch Execution"

# Header names (lowercase; httpx headers are case-insensitive).
REQUEST_ID_HEADER = "x-request-id"
TENANT_HEADER = "x-tenant-name"
SYNTHETIC_KEY_HEADER = "x-synthetic-key"
RETRY_AFTER_HEADERS: tuple[str, ...] = ("x-retry-after", "retry-after")

# Status checks made by Pipeline.wait_for_results before giving up.
DEFAULT_POLL_ATTEMPTS = 10
