"""sparkbatch: asynchronous batch execution against the Spark calculation engine.

Public API:
    - Client: facade exposing ``client.batches``
    - Config: configuration dataclass
    - Pipeline: push/pull/close/cancel on one batch job
    - create_chunks / to_chunks: build chunks from datasets or JSON
"""

from __future__ import annotations

import logging

from sparkbatch.auth import AccessToken, Authorization, OAuth
from sparkbatch.batches import Batches, Pipeline
from sparkbatch.chunking import create_chunks, to_chunks
from sparkbatch.client import Client
from sparkbatch.config import BaseUrl, Config
from sparkbatch.errors import (
    ApiError,
    ConfigurationError,
    DuplicateChunkError,
    ErrorKind,
    InternetError,
    InvalidInputError,
    MissingHeaderError,
    RateLimitError,
    RequestAbortedError,
    RetryTimeoutError,
    SdkError,
    SparkError,
    StateConflictError,
    UnauthorizedError,
    classify,
)
from sparkbatch.executor import HttpRequest, HttpResponse, Interceptor, RequestExecutor
from sparkbatch.models import (
    BatchCreated,
    BatchDescribed,
    BatchDisposed,
    BatchInfo,
    BatchResult,
    BatchStatus,
    Chunk,
    ChunkData,
    ChunkResult,
    PipelineStats,
    RecordSubmitted,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("sparkbatch")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("sparkbatch").addHandler(logging.NullHandler())

# Re-export for convenience
__all__ = [
    "AccessToken",
    "ApiError",
    "Authorization",
    "BaseUrl",
    "BatchCreated",
    "BatchDescribed",
    "BatchDisposed",
    "BatchInfo",
    "BatchResult",
    "BatchStatus",
    "Batches",
    "Chunk",
    "ChunkData",
    "ChunkResult",
    "Client",
    "Config",
    "ConfigurationError",
    "DuplicateChunkError",
    "ErrorKind",
    "HttpRequest",
    "HttpResponse",
    "Interceptor",
    "InternetError",
    "InvalidInputError",
    "MissingHeaderError",
    "OAuth",
    "Pipeline",
    "PipelineStats",
    "RateLimitError",
    "RecordSubmitted",
    "RequestAbortedError",
    "RequestExecutor",
    "RetryTimeoutError",
    "SdkError",
    "SparkError",
    "StateConflictError",
    "UnauthorizedError",
    "classify",
    "create_chunks",
    "to_chunks",
]
