from __future__ import annotations

import pytest

from sparkbatch.errors import (
    REDACTED,
    ApiError,
    BadRequestError,
    ConflictError,
    DuplicateChunkError,
    ErrorCause,
    ErrorKind,
    ForbiddenError,
    GatewayTimeoutError,
    InternalServerError,
    InternetError,
    MissingHeaderError,
    NotFoundError,
    RateLimitError,
    RequestSnapshot,
    ResponseSnapshot,
    SdkError,
    ServiceUnavailableError,
    SparkError,
    StateConflictError,
    UnauthorizedError,
    UnknownApiError,
    UnprocessableEntityError,
    UnsupportedMediaTypeError,
    classify,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("status", "expected", "kind"),
    [
        (0, InternetError, ErrorKind.CONNECTIVITY),
        (400, BadRequestError, ErrorKind.BAD_REQUEST),
        (401, UnauthorizedError, ErrorKind.UNAUTHORIZED),
        (403, ForbiddenError, ErrorKind.FORBIDDEN),
        (404, NotFoundError, ErrorKind.NOT_FOUND),
        (409, ConflictError, ErrorKind.CONFLICT),
        (415, UnsupportedMediaTypeError, ErrorKind.UNSUPPORTED_MEDIA),
        (422, UnprocessableEntityError, ErrorKind.UNPROCESSABLE),
        (429, RateLimitError, ErrorKind.RATE_LIMITED),
        (500, InternalServerError, ErrorKind.SERVER_ERROR),
        (503, ServiceUnavailableError, ErrorKind.SERVICE_UNAVAILABLE),
        (504, GatewayTimeoutError, ErrorKind.GATEWAY_TIMEOUT),
    ],
)
def test_classify_maps_known_statuses(
    status: int, expected: type[ApiError], kind: ErrorKind
) -> None:
    err = classify(status, "failed to fetch")

    assert type(err) is expected
    assert err.kind is kind
    assert err.status == status


@pytest.mark.parametrize("status", [None, 302, 418, 502, 599])
def test_classify_is_total_for_unknown_statuses(status: int | None) -> None:
    err = classify(status, "odd")

    assert isinstance(err, UnknownApiError)
    assert err.kind is ErrorKind.UNKNOWN
    assert err.status == status


def test_api_error_message_carries_status_prefix() -> None:
    assert str(classify(404, "failed to fetch <x>")) == "404 failed to fetch <x>"
    assert str(classify(None, "failed")) == "failed"
    assert str(classify(0, "offline")) == "offline"


def test_classify_attaches_actionable_hints() -> None:
    assert classify(401, "nope").hint is not None
    assert classify(429, "slow down").hint is not None
    assert classify(401, "nope", hint="custom").hint == "custom"


def test_api_error_details_fall_back_to_default() -> None:
    assert NotFoundError("missing", status=404).details == "content not found"
    assert InternetError("offline", status=0).details == "no internet access"


def test_error_cause_redacts_credentials() -> None:
    cause = ErrorCause(
        RequestSnapshot(
            method="GET",
            url="https://example.test",
            headers={"Authorization": "Bearer secret", "x-synthetic-key": "key", "x-a": "1"},
        )
    )

    assert cause.request.headers["Authorization"] == REDACTED
    assert cause.request.headers["x-synthetic-key"] == REDACTED
    assert cause.request.headers["x-a"] == "1"
    assert "secret" not in str(cause.to_dict())


def test_request_id_prefers_response_header() -> None:
    request = RequestSnapshot("GET", "https://x", headers={"x-request-id": "req-1"})
    with_response = ErrorCause(
        request, ResponseSnapshot(status=500, headers={"x-request-id": "resp-1"})
    )
    without_response = ErrorCause(request)

    assert classify(500, "boom", cause=with_response).request_id == "resp-1"
    assert classify(500, "boom", cause=without_response).request_id == "req-1"
    assert classify(500, "boom").request_id == ""


def test_api_error_to_dict_is_json_friendly() -> None:
    cause = ErrorCause(
        RequestSnapshot("POST", "https://x", headers={"x-request-id": "r"}, body={"a": 1}),
        ResponseSnapshot(status=422, body={"error": "bad"}, raw='{"error": "bad"}'),
    )
    err = classify(422, "rejected", cause=cause)
    data = err.to_dict()

    assert data["name"] == "UnprocessableEntityError"
    assert data["kind"] == "unprocessable"
    assert data["status"] == 422
    assert data["request_id"] == "r"
    assert data["cause"]["response"]["body"] == {"error": "bad"}
    assert err.response_body == {"error": "bad"}


def test_usage_errors_share_the_sdk_family() -> None:
    """Usage errors are catchable as SdkError and SparkError, never as ApiError."""
    errors = [
        StateConflictError("closed", state="closed"),
        DuplicateChunkError("dup", chunk_id="0001"),
        MissingHeaderError("no header"),
    ]

    for err in errors:
        assert isinstance(err, SdkError)
        assert isinstance(err, SparkError)
        assert not isinstance(err, ApiError)


def test_usage_errors_expose_their_subject() -> None:
    state_err = StateConflictError("cannot push", state="cancelled")
    dup_err = DuplicateChunkError("dup", chunk_id="0001")

    assert state_err.kind is ErrorKind.STATE_CONFLICT
    assert state_err.state == "cancelled"
    assert dup_err.kind is ErrorKind.DUPLICATE_CHUNK
    assert dup_err.chunk_id == "0001"
    assert dup_err.details == '{"chunk_id": "0001"}'
