"""Exception hierarchy for sparkbatch.

Three families share the ``SparkError`` base:

- ``SdkError``: client-side usage errors. Raised synchronously, never retried,
  never touch the network.
- ``ApiError``: transport/API failures keyed by HTTP status (see ``classify``).
  They carry an ``ErrorCause`` snapshot so a failure can be diagnosed without
  re-running the call.
- ``RetryTimeoutError`` / ``RequestAbortedError``: bounded polling ran out of
  attempts, or the caller aborted a pending request.

Every error exposes ``kind`` so callers can branch on a value instead of on
the class.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import json
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping

REDACTED = "[REDACTED]"

# Header names whose values must never end up in logs or error causes.
_SECRET_HEADERS: frozenset[str] = frozenset({"authorization", "x-synthetic-key"})


class ErrorKind(str, Enum):
    """Closed set of error classifications."""

    CONNECTIVITY = "connectivity"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNSUPPORTED_MEDIA = "unsupported_media"
    UNPROCESSABLE = "unprocessable"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    GATEWAY_TIMEOUT = "gateway_timeout"
    UNKNOWN = "unknown"

    INVALID_INPUT = "invalid_input"
    STATE_CONFLICT = "state_conflict"
    DUPLICATE_CHUNK = "duplicate_chunk"
    MISSING_HEADER = "missing_header"
    CONFIGURATION = "configuration"
    RETRY_TIMEOUT = "retry_timeout"
    ABORTED = "aborted"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of *headers* with credential values masked."""
    return {
        k: (REDACTED if k.lower() in _SECRET_HEADERS else v) for k, v in headers.items()
    }


@dataclass(frozen=True)
class RequestSnapshot:
    """What was sent."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class ResponseSnapshot:
    """What came back."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw: str = ""


@dataclass(frozen=True)
class ErrorCause:
    """Request/response snapshot attached to every ``ApiError``."""

    request: RequestSnapshot
    response: ResponseSnapshot | None = None

    def __post_init__(self) -> None:
        """Strip credentials so the cause is always safe to log verbatim."""
        object.__setattr__(
            self,
            "request",
            RequestSnapshot(
                method=self.request.method,
                url=self.request.url,
                headers=redact_headers(self.request.headers),
                body=self.request.body,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "request": {
                "method": self.request.method,
                "url": self.request.url,
                "headers": dict(self.request.headers),
                "body": self.request.body,
            }
        }
        if self.response is not None:
            out["response"] = {
                "status": self.response.status,
                "headers": dict(self.response.headers),
                "body": self.response.body,
                "raw": self.response.raw,
            }
        return out


class SparkError(Exception):
    """Base exception for all sparkbatch errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN

    def __init__(
        self, message: str, *, hint: str | None = None, cause: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.cause = cause
        self.timestamp = datetime.now(UTC).isoformat()

    @property
    def details(self) -> str:
        """Describe the cause (if any) as a string."""
        cause = self.cause
        if cause is None:
            return ""
        if isinstance(cause, BaseException):
            return str(cause)
        if isinstance(cause, str):
            return cause
        if isinstance(cause, ErrorCause):
            cause = cause.to_dict()
        try:
            return json.dumps(cause, default=str)
        except (TypeError, ValueError):
            return repr(cause)

    def to_dict(self) -> dict[str, Any]:
        cause = self.cause.to_dict() if isinstance(self.cause, ErrorCause) else self.cause
        if isinstance(cause, BaseException):
            cause = str(cause)
        return {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            "hint": self.hint,
            "cause": cause,
            "timestamp": self.timestamp,
        }


# --- Usage errors ---


class SdkError(SparkError):
    """Client-side usage error; raised before any network call."""

    kind = ErrorKind.INVALID_INPUT


class ConfigurationError(SdkError):
    """Configuration validation or resolution failed."""

    kind = ErrorKind.CONFIGURATION


class InvalidInputError(SdkError):
    """Arguments were missing or malformed."""


class StateConflictError(SdkError):
    """Operation is not allowed in the pipeline's current state."""

    kind = ErrorKind.STATE_CONFLICT

    def __init__(self, message: str, *, state: str, hint: str | None = None) -> None:
        super().__init__(message, hint=hint, cause={"state": state})
        self.state = state


class DuplicateChunkError(SdkError):
    """A chunk id was resubmitted under the ``throw`` policy."""

    kind = ErrorKind.DUPLICATE_CHUNK

    def __init__(
        self, message: str, *, chunk_id: str, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint, cause={"chunk_id": chunk_id})
        self.chunk_id = chunk_id


class MissingHeaderError(SdkError):
    """Columnar data has no header row to prefix onto each chunk."""

    kind = ErrorKind.MISSING_HEADER


# --- Flow-control outcomes ---


class RetryTimeoutError(SparkError):
    """A polling loop exhausted its attempts without reaching a final state.

    Distinct from ``ApiError``: the last response was fine, just not done.
    """

    kind = ErrorKind.RETRY_TIMEOUT

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_result: Any = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.attempts = attempts
        self.last_result = last_result


class RequestAbortedError(SparkError):
    """The caller's cancellation signal aborted a pending request."""

    kind = ErrorKind.ABORTED


# --- API errors ---


class ApiError(SparkError):
    """An HTTP round trip failed.

    ``status`` is the HTTP status code (``0`` for connectivity failures, ``None``
    for statuses outside the known set).
    """

    default_details: ClassVar[str] = "unknown error"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        cause: ErrorCause | None = None,
        hint: str | None = None,
    ) -> None:
        prefix = f"{status} " if status else ""
        super().__init__(f"{prefix}{message}".strip(), hint=hint, cause=cause)
        self.status = status

    @property
    def details(self) -> str:
        return super().details or self.default_details

    @property
    def request_id(self) -> str:
        """Return the request id used for support escalation, if known."""
        cause = self.cause
        if not isinstance(cause, ErrorCause):
            return ""
        if cause.response is not None:
            rid = _header(cause.response.headers, "x-request-id")
            if rid:
                return rid
        return _header(cause.request.headers, "x-request-id")

    @property
    def response_body(self) -> Any:
        cause = self.cause
        if isinstance(cause, ErrorCause) and cause.response is not None:
            return cause.response.body
        return None

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["status"] = self.status
        out["request_id"] = self.request_id
        return out


class InternetError(ApiError):
    kind = ErrorKind.CONNECTIVITY
    default_details = "no internet access"


class BadRequestError(ApiError):
    kind = ErrorKind.BAD_REQUEST
    default_details = "bad request"


class UnauthorizedError(ApiError):
    kind = ErrorKind.UNAUTHORIZED
    default_details = "access unauthorized"


class ForbiddenError(ApiError):
    kind = ErrorKind.FORBIDDEN
    default_details = "permission denied"


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND
    default_details = "content not found"


class ConflictError(ApiError):
    kind = ErrorKind.CONFLICT
    default_details = "resource conflict"


class UnsupportedMediaTypeError(ApiError):
    kind = ErrorKind.UNSUPPORTED_MEDIA
    default_details = "unsupported media type"


class UnprocessableEntityError(ApiError):
    kind = ErrorKind.UNPROCESSABLE
    default_details = "unprocessable entity"


class RateLimitError(ApiError):
    """Rate limit exceeded (HTTP 429)."""

    kind = ErrorKind.RATE_LIMITED
    default_details = "rate limit exceeded"


class InternalServerError(ApiError):
    kind = ErrorKind.SERVER_ERROR
    default_details = "internal server error"


class ServiceUnavailableError(ApiError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_details = "service unavailable"


class GatewayTimeoutError(ApiError):
    kind = ErrorKind.GATEWAY_TIMEOUT
    default_details = "gateway timeout"


class UnknownApiError(ApiError):
    kind = ErrorKind.UNKNOWN


_ERRORS_BY_STATUS: dict[int, type[ApiError]] = {
    0: InternetError,
    400: BadRequestError,
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    415: UnsupportedMediaTypeError,
    422: UnprocessableEntityError,
    429: RateLimitError,
    500: InternalServerError,
    503: ServiceUnavailableError,
    504: GatewayTimeoutError,
}

_HTTP_ERROR_HINTS: dict[int, str] = {
    0: "Check network connectivity and the configured base URL.",
    401: "Verify the API key, bearer token, or OAuth client credentials.",
    403: "Check that the credentials are allowed to access this tenant/service.",
    404: "Check the batch id or service locator.",
    429: "Rate limit exceeded; wait and retry, or lower request concurrency.",
    503: "Service unavailable; retry later.",
}


def classify(
    status: int | None,
    message: str,
    *,
    cause: ErrorCause | None = None,
    hint: str | None = None,
) -> ApiError:
    """Map an HTTP status to its typed error. Never fails.

    Unknown statuses (and ``None``) classify as ``UnknownApiError`` while keeping
    the original status on the instance.
    """
    err_cls: type[ApiError] = UnknownApiError
    if status is not None:
        err_cls = _ERRORS_BY_STATUS.get(status, UnknownApiError)
        if hint is None:
            hint = _HTTP_ERROR_HINTS.get(status)
    return err_cls(message, status=status, cause=cause, hint=hint)


def _header(headers: Mapping[str, str], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return ""

