"""Resilient request execution.

One ``RequestExecutor.request()`` call is one logical HTTP call:

1. ``before_request`` interceptors
2. auth header injection
3. transport call (timeout, optional cancellation event)
4. ``after_request`` interceptors
5. classification: success, bounded retry (401 with OAuth, 429), or typed error

Retries are a sequential loop over a ``RetryContext``; nothing is fanned out.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field, replace
import logging
from typing import TYPE_CHECKING, Any, Literal, Protocol
import uuid

import httpx

from sparkbatch._http import REQUEST_ID_HEADER, TENANT_HEADER
from sparkbatch.errors import (
    REDACTED,
    ErrorCause,
    InternetError,
    RequestAbortedError,
    RequestSnapshot,
    ResponseSnapshot,
    classify,
    redact_headers,
)
from sparkbatch.retry import RetryContext, backoff_delay_s, retry_after_s

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from sparkbatch.auth import AuthProvider
    from sparkbatch.config import Config

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class HttpRequest:
    """Outgoing request as seen by interceptors."""

    method: HttpMethod
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    body: Any = None
    form: dict[str, str] | None = None


@dataclass(frozen=True)
class HttpResponse:
    """Buffered response; ``data`` holds parsed JSON when the body is JSON."""

    status: int
    headers: dict[str, str]
    data: Any = None
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.status < 400


class Interceptor(Protocol):
    """Hooks around every HTTP attempt. Either method may be omitted."""

    def before_request(self, request: HttpRequest) -> HttpRequest: ...

    def after_request(self, response: HttpResponse) -> HttpResponse: ...


def _user_agent() -> str:
    from sparkbatch import __version__

    return f"sparkbatch/{__version__} python-httpx/{httpx.__version__}"


class RequestExecutor:
    """Issue HTTP calls with auth, interceptors, retry and error classification.

    The logger and auth provider are injected; by default the module logger
    and ``config.auth`` are used. The executor owns its ``httpx.AsyncClient``
    unless one is passed in.
    """

    def __init__(
        self,
        config: Config,
        *,
        client: httpx.AsyncClient | None = None,
        auth: AuthProvider | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.auth: AuthProvider = auth if auth is not None else config.auth
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout_s, follow_redirects=False
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def url(self, endpoint: str) -> str:
        """Absolute URL of a versioned API endpoint for the configured tenant."""
        return self.config.base.api(endpoint)

    def default_headers(
        self, headers: Mapping[str, str] | None = None
    ) -> dict[str, str]:
        """Merge order: User-Agent, config extras, per-call *headers*, then ids."""
        return {
            "User-Agent": _user_agent(),
            **self.config.extra_headers,
            **(headers or {}),
            REQUEST_ID_HEADER: str(uuid.uuid4()),
            TENANT_HEADER: self.config.base.tenant,
        }

    async def request(
        self,
        method: HttpMethod,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        form: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> HttpResponse:
        """Perform one logical call and return the successful response.

        Raises:
            InternetError: the server could not be reached (not retried).
            RequestAbortedError: *cancel_event* was set before completion.
            ApiError: any other status >= 400, or retries exhausted.
        """
        base = HttpRequest(
            method=method,
            url=url,
            headers=self.default_headers(headers),
            params=dict(params) if params is not None else None,
            body=body,
            form=dict(form) if form is not None else None,
        )
        ctx = RetryContext(
            base_interval_s=self.config.retry_interval_s,
            max_attempts=self.config.max_retries,
        )
        self.logger.debug("%s %s", method, url)

        while True:
            _raise_if_aborted(cancel_event, base)
            if getattr(self.auth, "needs_token", False):
                await self.auth.refresh(self._client)

            request = self._prepare(base)
            response = await self._send(request, timeout_s, cancel_event)
            response = self._after(response)

            if response.ok:
                return response

            status = response.status
            if status == 401 and self.auth.method == "oauth" and ctx.can_retry:
                self.logger.warning(
                    "unauthorized; refreshing OAuth2 token (retry %d of %d)",
                    ctx.attempt + 1,
                    ctx.max_attempts,
                )
                await self.auth.refresh(self._client)
                ctx = ctx.next()
                continue

            if status == 429 and ctx.can_retry:
                delay = retry_after_s(response.headers)
                if delay is None:
                    delay = backoff_delay_s(ctx.attempt, ctx.base_interval_s)
                self.logger.warning(
                    "rate limited; retrying in %.3fs (retry %d of %d)",
                    delay,
                    ctx.attempt + 1,
                    ctx.max_attempts,
                )
                if delay > 0:
                    await self.sleep(delay)
                ctx = ctx.next()
                continue

            raise classify(
                status,
                f"failed to fetch <{url}>",
                cause=_cause(request, response),
            )

    def _prepare(self, base: HttpRequest) -> HttpRequest:
        request = base
        for interceptor in self.config.interceptors:
            hook = getattr(interceptor, "before_request", None)
            if callable(hook):
                request = hook(request)
        return replace(request, headers={**request.headers, **self.auth.as_headers()})

    def _after(self, response: HttpResponse) -> HttpResponse:
        for interceptor in self.config.interceptors:
            hook = getattr(interceptor, "after_request", None)
            if callable(hook):
                response = hook(response)
        return response

    async def _send(
        self,
        request: HttpRequest,
        timeout_s: float | None,
        cancel_event: asyncio.Event | None,
    ) -> HttpResponse:
        call = self._transport(request, timeout_s)
        if cancel_event is None:
            return await call

        sending = asyncio.ensure_future(call)
        waiting = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait(
                {sending, waiting}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiting.cancel()
            if not sending.done():
                sending.cancel()
                with suppress(asyncio.CancelledError):
                    await sending

        if sending.cancelled():
            self.logger.info("request aborted: %s %s", request.method, request.url)
            raise RequestAbortedError(
                f"request to <{request.url}> was aborted",
                cause=ErrorCause(_snapshot(request)),
            )
        return sending.result()

    async def _transport(
        self, request: HttpRequest, timeout_s: float | None
    ) -> HttpResponse:
        kwargs: dict[str, Any] = {"headers": request.headers, "params": request.params}
        if request.form is not None:
            kwargs["data"] = request.form
        elif request.body is not None:
            kwargs["json"] = request.body
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s

        try:
            raw = await self._client.request(request.method, request.url, **kwargs)
        except httpx.TimeoutException as exc:
            raise InternetError(
                f"request to <{request.url}> timed out",
                status=0,
                cause=ErrorCause(_snapshot(request)),
                hint="Increase timeout_s or check the service health.",
            ) from exc
        except httpx.TransportError as exc:
            raise InternetError(
                f"failed to fetch <{request.url}>",
                status=0,
                cause=ErrorCause(_snapshot(request)),
                hint="Check network connectivity and the configured base URL.",
            ) from exc

        return _buffer(raw)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _buffer(raw: httpx.Response) -> HttpResponse:
    data: Any = None
    if "application/json" in raw.headers.get("content-type", ""):
        try:
            data = raw.json()
        except ValueError:
            data = None
    return HttpResponse(
        status=raw.status_code,
        headers={k.lower(): v for k, v in raw.headers.items()},
        data=data,
        content=raw.content,
    )


def _snapshot(request: HttpRequest) -> RequestSnapshot:
    url = request.url
    if request.params:
        url = str(httpx.URL(url, params=request.params))
    body = request.body
    if request.form is not None:
        body = {k: REDACTED if "secret" in k else v for k, v in request.form.items()}
    return RequestSnapshot(
        method=request.method,
        url=url,
        headers=redact_headers(request.headers),
        body=body,
    )


def _cause(request: HttpRequest, response: HttpResponse) -> ErrorCause:
    return ErrorCause(
        _snapshot(request),
        ResponseSnapshot(
            status=response.status,
            headers=dict(response.headers),
            body=response.data,
            raw=response.text,
        ),
    )


def _raise_if_aborted(event: asyncio.Event | None, request: HttpRequest) -> None:
    if event is not None and event.is_set():
        raise RequestAbortedError(
            f"request to <{request.url}> was aborted",
            cause=ErrorCause(_snapshot(request)),
        )
