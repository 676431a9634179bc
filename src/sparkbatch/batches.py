"""Batch jobs: creation (``Batches``) and per-job pipelines (``Pipeline``).

A ``Pipeline`` is a client-side handle on a server-side batch job. It tracks a
local state (``open`` → ``closed`` | ``cancelled``) and a registry of pushed
chunk ids so duplicate ids can be handled before anything hits the network.
The server stays authoritative; ``stats`` is bookkeeping only.

A handle assumes serialized use: concurrent pushes through one ``Pipeline``
need external synchronization.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import datetime
import logging
import math
import re
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from sparkbatch._http import (
    BATCH_CHUNK_SIZE,
    DEFAULT_CALL_PURPOSE,
    DEFAULT_MAX_CHUNKS,
    DEFAULT_POLL_ATTEMPTS,
    SDK_NAME,
)
from sparkbatch.chunking import create_chunks, new_chunk_id, to_chunks
from sparkbatch.errors import (
    DuplicateChunkError,
    InvalidInputError,
    SdkError,
    StateConflictError,
    UnknownApiError,
)
from sparkbatch.models import (
    BatchCreated,
    BatchDescribed,
    BatchDisposed,
    BatchInfo,
    BatchResult,
    BatchStatus,
    Chunk,
    ChunkData,
    DuplicatePolicy,
    PipelineState,
    PipelineStats,
    RecordSubmitted,
)
from sparkbatch.retry import poll_until

if TYPE_CHECKING:
    from collections.abc import Callable

    from sparkbatch.executor import HttpResponse, RequestExecutor

M = TypeVar("M", bound=BaseModel)

logger = logging.getLogger(__name__)

_DUPLICATE_POLICIES: frozenset[str] = frozenset({"ignore", "replace", "throw"})
_LOCATOR = re.compile(r"^([^/]+)/([^\[]+)(?:\[(.*?)\])?$")


def service_uri(locator: str) -> str:
    """Normalize a service locator to the short form the batch API expects.

    Understands ``folder/service[version]``, the long
    ``folders/folder/services/service[version]`` form, ``service/<id>`` and
    ``version/<id>``.
    """
    value = (locator or "").strip().strip("/")
    value = value.replace("folders/", "", 1).replace("services/", "", 1)
    match = _LOCATOR.match(value)
    if not match:
        raise InvalidInputError(
            f"invalid service locator <{locator}>",
            hint="Use 'folder/service', 'folder/service[version]', "
            "'service/<id>' or 'version/<id>'.",
        )
    folder, service, version = match.groups()
    if folder in ("service", "version"):
        return f"{folder}/{service}"
    return f"{folder}/{service}[{version}]" if version else f"{folder}/{service}"


def _join(value: str | Sequence[str] | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return ",".join(value)


def _error_percentage(accuracy: float | None) -> int:
    acc = 1.0 if accuracy is None else max(0.0, min(float(accuracy), 1.0))
    # Rounded first so 0.95 yields 5, not 6, despite float error.
    return math.ceil(round((1 - acc) * 100, 6))


def _parse(model: type[M], response: HttpResponse, url: str) -> M:
    if not isinstance(response.data, Mapping):
        raise UnknownApiError(
            f"expected a JSON object from <{url}>",
            status=response.status,
            hint="The server returned an empty or non-JSON body.",
        )
    try:
        return model.model_validate(response.data)
    except ValidationError as exc:
        raise UnknownApiError(
            f"unexpected response payload from <{url}>",
            status=response.status,
            hint="The server returned a body that does not match the batch API.",
        ) from exc


class Batches:
    """Entry point for batch jobs of one tenant."""

    def __init__(self, executor: RequestExecutor) -> None:
        self._executor = executor

    async def describe(self) -> BatchDescribed:
        """Describe in-progress and recent batch jobs across the tenant."""
        url = self._executor.url("batch/status")
        response = await self._executor.request("GET", url)
        return _parse(BatchDescribed, response, url)

    async def create(
        self,
        service: str,
        *,
        version_id: str | None = None,
        active_since: datetime | str | None = None,
        subservices: str | Sequence[str] | None = None,
        selected_outputs: str | Sequence[str] | None = None,
        call_purpose: str | None = None,
        source_system: str | None = None,
        correlation_id: str | None = None,
        unique_record_key: str | None = None,
        min_runners: int | None = None,
        max_runners: int | None = None,
        chunks_per_vm: int | None = None,
        runners_per_vm: int | None = None,
        max_input_size: int | None = None,
        max_output_size: int | None = None,
        accuracy: float | None = None,
    ) -> BatchCreated:
        """Create a batch job for *service* and return its server record.

        Worker tuning (``min_runners`` through ``max_output_size``) is passed
        through as-is. ``accuracy`` in ``[0, 1]`` becomes the acceptable error
        percentage; the default of 1.0 tolerates no errors.
        """
        if isinstance(active_since, datetime):
            active_since = active_since.isoformat()

        payload: dict[str, Any] = {
            "service": service_uri(service),
            "version_id": version_id,
            "version_by_timestamp": active_since,
            "subservice": _join(subservices),
            "output": _join(selected_outputs),
            "call_purpose": call_purpose or DEFAULT_CALL_PURPOSE,
            "source_system": source_system or SDK_NAME,
            "correlation_id": correlation_id,
            "unique_record_key": unique_record_key,
            "initial_workers": min_runners,
            "max_workers": max_runners,
            "chunks_per_request": chunks_per_vm,
            "runner_thread_count": runners_per_vm,
            "max_input_size": max_input_size,
            "max_output_size": max_output_size,
            "acceptable_error_percentage": _error_percentage(accuracy),
        }
        body = {k: v for k, v in payload.items() if v is not None}

        url = self._executor.url("batch")
        response = await self._executor.request("POST", url, body=body)
        created = _parse(BatchCreated, response, url)
        logger.info("created batch pipeline <%s> for %s", created.id, body["service"])
        return created

    def of(self, batch_id: str) -> Pipeline:
        """Return a pipeline handle for an existing batch job."""
        return Pipeline(batch_id, self._executor, logger=self._executor.logger)


class Pipeline:
    """Client-side state machine for one batch job."""

    def __init__(
        self,
        batch_id: str,
        executor: RequestExecutor,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._id = (batch_id or "").strip()
        if not self._id:
            error = InvalidInputError("batch pipeline id is required to proceed")
            self.logger.error(error.message)
            raise error
        self._executor = executor
        self._state: PipelineState = "open"
        self._chunks: dict[str, int] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_disposed(self) -> bool:
        """Whether this handle was closed or cancelled.

        Local state only; call ``get_status()`` for the server's view.
        """
        return self._state in ("closed", "cancelled")

    @property
    def stats(self) -> PipelineStats:
        return PipelineStats(chunks=len(self._chunks), records=sum(self._chunks.values()))

    def __repr__(self) -> str:
        return f"Pipeline(id={self._id!r}, state={self._state!r})"

    def _url(self, suffix: str = "") -> str:
        return self._executor.url(f"batch/{self._id}{suffix}")

    async def get_info(self) -> BatchInfo:
        url = self._url()
        return _parse(BatchInfo, await self._executor.request("GET", url), url)

    async def get_status(self) -> BatchStatus:
        url = self._url("/status")
        return _parse(BatchStatus, await self._executor.request("GET", url), url)

    async def push(
        self,
        *,
        chunks: Sequence[Chunk] | None = None,
        data: ChunkData | None = None,
        inputs: Sequence[Any] | None = None,
        raw: str | None = None,
        if_duplicated: DuplicatePolicy = "replace",
        chunk_size: int = BATCH_CHUNK_SIZE,
    ) -> RecordSubmitted:
        """Submit chunks of records to the batch job.

        Exactly one source is used, first match wins: ``raw`` (JSON chunk
        payload), ``chunks``, ``data`` (one inline chunk), ``inputs``
        (auto-chunked by ``chunk_size``).

        Chunk ids already pushed through this handle are handled per
        ``if_duplicated``: ``ignore`` skips the chunk with a warning,
        ``replace`` assigns a fresh id, ``throw`` raises
        ``DuplicateChunkError`` before anything is sent.

        Returns the server's running submission counters. When every chunk is
        skipped nothing is posted and the current status is returned.
        """
        self._assert_state("push", ("closed", "cancelled"))
        if if_duplicated not in _DUPLICATE_POLICIES:
            raise self._fail(
                InvalidInputError(
                    f"unknown duplicate policy {if_duplicated!r}",
                    hint="Use 'ignore', 'replace' or 'throw'.",
                )
            )

        candidates = self._collect(
            chunks=chunks, data=data, inputs=inputs, raw=raw, chunk_size=chunk_size
        )
        resolved = self._assess(candidates, if_duplicated)

        if not resolved:
            self.logger.info("no new chunks to push to batch pipeline <%s>", self._id)
            status = await self.get_status()
            return RecordSubmitted.model_validate(status.model_dump())

        url = self._url("/chunks")
        body = {"chunks": [chunk.to_dict() for chunk in resolved]}
        submitted = _parse(
            RecordSubmitted,
            await self._executor.request("POST", url, body=body),
            url,
        )

        for chunk in resolved:
            self._chunks[chunk.id] = chunk.record_count
        self.logger.info(
            "pushed %d records to batch pipeline <%s>",
            submitted.record_submitted,
            self._id,
        )
        return submitted

    async def pull(self, max_chunks: int = DEFAULT_MAX_CHUNKS) -> BatchResult:
        """Fetch up to *max_chunks* completed chunk results."""
        self._assert_state("pull", ("cancelled",))
        if isinstance(max_chunks, bool) or not isinstance(max_chunks, int) or max_chunks < 1:
            raise self._fail(
                InvalidInputError(f"max_chunks must be a positive integer, got {max_chunks!r}")
            )

        url = self._url("/chunkresults")
        response = await self._executor.request(
            "GET", url, params={"max_chunks": max_chunks}
        )
        result = _parse(BatchResult, response, url)
        self.logger.info(
            "%d available records from batch pipeline <%s>",
            result.status.records_available,
            self._id,
        )
        return result

    async def close(self) -> BatchDisposed:
        """Stop accepting data; submitted records are still processed."""
        return await self._dispose("closed")

    async def cancel(self) -> BatchDisposed:
        """Stop all processing; results can no longer be pulled."""
        return await self._dispose("cancelled")

    async def wait_for_results(
        self,
        max_attempts: int | None = None,
        base_interval_s: float | None = None,
    ) -> BatchStatus:
        """Poll ``get_status()`` until every submitted record is available.

        Raises:
            RetryTimeoutError: records were still pending after *max_attempts* checks.
        """
        return await poll_until(
            self.get_status,
            done=lambda status: not status.is_pending,
            max_attempts=DEFAULT_POLL_ATTEMPTS if max_attempts is None else max_attempts,
            base_interval_s=(
                self._executor.config.retry_interval_s
                if base_interval_s is None
                else base_interval_s
            ),
            sleep=self._executor.sleep,
            what=f"batch pipeline <{self._id}>",
        )

    async def _dispose(self, target: PipelineState) -> BatchDisposed:
        action = "close" if target == "closed" else "cancel"
        self._assert_state(action, ("closed", "cancelled"))

        url = self._url()
        response = await self._executor.request(
            "PATCH", url, body={"batch_status": target}
        )
        disposed = _parse(BatchDisposed, response, url)
        self._state = target
        self.logger.info("batch pipeline <%s> has been %s", self._id, target)
        return disposed

    def _assert_state(self, action: str, rejected: tuple[PipelineState, ...]) -> None:
        if self._state in rejected:
            raise self._fail(
                StateConflictError(
                    f"cannot {action}: batch pipeline <{self._id}> is already {self._state}",
                    state=self._state,
                )
            )

    def _fail(self, error: Exception) -> Exception:
        self.logger.error("%s", error)
        return error

    def _collect(
        self,
        *,
        chunks: Sequence[Chunk] | None,
        data: ChunkData | None,
        inputs: Sequence[Any] | None,
        raw: str | None,
        chunk_size: int,
    ) -> list[Chunk]:
        if raw is not None and raw.strip():
            parsed = self._checked(lambda: to_chunks(raw))
            if parsed:
                return parsed
        if chunks:
            return [_as_chunk(chunk) for chunk in chunks]
        if data is not None:
            data = _as_chunk_data(data)
            if data.inputs:
                return [Chunk(id=new_chunk_id(), data=data)]
        if inputs:
            return self._checked(lambda: create_chunks(inputs, chunk_size=chunk_size))

        raise self._fail(
            InvalidInputError(
                f"wrong data params were provided for this pipeline <{self._id}>",
                hint="Provide either raw, chunks, data, or inputs to proceed.",
            )
        )

    def _checked(self, build: Callable[[], list[Chunk]]) -> list[Chunk]:
        try:
            return build()
        except SdkError as exc:
            self.logger.error("%s", exc)
            raise

    def _assess(self, chunks: list[Chunk], policy: str) -> list[Chunk]:
        accepted: list[Chunk] = []
        seen: set[str] = set()
        for chunk in chunks:
            chunk_id = chunk.id.strip() or new_chunk_id()
            if chunk_id in self._chunks or chunk_id in seen:
                if policy == "ignore":
                    self.logger.warning(
                        "chunk id <%s> is duplicated for batch pipeline <%s>; skipping it",
                        chunk_id,
                        self._id,
                    )
                    continue
                if policy == "throw":
                    raise self._fail(
                        DuplicateChunkError(
                            f"chunk id <{chunk_id}> is duplicated for batch pipeline <{self._id}>",
                            chunk_id=chunk_id,
                            hint="Use unique chunk ids or if_duplicated='replace'.",
                        )
                    )
                replacement = new_chunk_id()
                self.logger.info(
                    "chunk id <%s> is duplicated for batch pipeline <%s> "
                    "and has been replaced with <%s>",
                    chunk_id,
                    self._id,
                    replacement,
                )
                chunk_id = replacement

            seen.add(chunk_id)
            accepted.append(chunk if chunk.id == chunk_id else replace(chunk, id=chunk_id))
        return accepted


def _as_chunk(value: Chunk | Mapping[str, Any]) -> Chunk:
    if isinstance(value, Chunk):
        return value
    if isinstance(value, Mapping):
        return Chunk.from_dict(value)
    raise InvalidInputError(f"expected a Chunk or a mapping, got {type(value).__name__}")


def _as_chunk_data(value: ChunkData | Mapping[str, Any]) -> ChunkData:
    if isinstance(value, ChunkData):
        return value
    if isinstance(value, Mapping):
        return ChunkData(
            inputs=list(value.get("inputs") or []),
            parameters=dict(value.get("parameters") or {}),
            summary=value.get("summary"),
        )
    raise InvalidInputError(f"expected ChunkData or a mapping, got {type(value).__name__}")
