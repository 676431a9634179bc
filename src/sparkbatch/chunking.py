"""Split datasets into pipeline chunks and parse chunk payloads."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
import json
import logging
from typing import Any
import uuid

from sparkbatch._http import BATCH_CHUNK_SIZE
from sparkbatch.errors import InvalidInputError, MissingHeaderError
from sparkbatch.models import Chunk, ChunkData

logger = logging.getLogger(__name__)


def new_chunk_id() -> str:
    return str(uuid.uuid4())


def create_chunks(
    dataset: Sequence[Any],
    *,
    chunk_size: int = BATCH_CHUNK_SIZE,
    parameters: Mapping[str, Any] | None = None,
    summary: Mapping[str, Any] | None = None,
    headers: Sequence[str] | None = None,
) -> list[Chunk]:
    """Split *dataset* into chunks of at most *chunk_size* records.

    Columnar data (rows are lists) needs a header row: either *headers* or, when
    omitted, the first row of *dataset*. The header is repeated at the top of
    every chunk's inputs and is not counted in ``size``. Mapping records carry
    their own field names and are chunked as-is.

    The input is never mutated; chunk order follows record order.

    Raises:
        MissingHeaderError: records are neither rows with a header nor mappings.
    """
    if isinstance(dataset, (str, bytes)) or not isinstance(dataset, Sequence):
        raise InvalidInputError(
            f"dataset must be a list of records, got {type(dataset).__name__}"
        )
    size = max(1, int(chunk_size))
    if not dataset:
        return []

    header, rows = _split_header(dataset, headers)
    params = dict(parameters or {})
    agg = dict(summary) if summary is not None else None

    chunks: list[Chunk] = []
    for start in range(0, len(rows), size):
        batch = list(rows[start : start + size])
        inputs = [list(header), *batch] if header is not None else batch
        chunks.append(
            Chunk(
                id=new_chunk_id(),
                data=ChunkData(inputs=inputs, parameters=dict(params), summary=agg),
                size=len(batch),
            )
        )

    logger.debug("split %d records into %d chunks", len(rows), len(chunks))
    return chunks


def _split_header(
    dataset: Sequence[Any], headers: Sequence[str] | None
) -> tuple[list[Any] | None, Sequence[Any]]:
    if headers is not None:
        if not headers:
            raise MissingHeaderError(
                "headers must not be empty",
                hint="Pass the column names of the dataset, or omit headers.",
            )
        return list(headers), dataset

    first = dataset[0]
    if isinstance(first, Mapping):
        return None, dataset
    if isinstance(first, (list, tuple)):
        return list(first), dataset[1:]
    raise MissingHeaderError(
        "cannot derive a header row from the dataset",
        hint="Provide headers=[...] or make the first row the list of column names.",
    )


def to_chunks(raw: str | bytes | Mapping[str, Any] | Sequence[Any]) -> list[Chunk]:
    """Parse a chunk payload into ``Chunk`` objects.

    Accepts ``{"chunks": [...]}``, a bare list of chunks, or a single chunk,
    either already decoded or as a JSON string. Missing ids are generated,
    missing parameters default to ``{}`` and missing sizes are derived.
    """
    payload: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise InvalidInputError(
                "failed to parse chunk data as JSON",
                hint='Expected {"chunks": [...]}, a list of chunks, or one chunk.',
                cause=exc,
            ) from exc

    if isinstance(payload, Mapping) and "chunks" in payload:
        items = payload["chunks"]
    elif isinstance(payload, Mapping):
        items = [payload]
    else:
        items = payload

    if not isinstance(items, list):
        raise InvalidInputError(
            f"invalid chunk data: expected a list of chunks, got {type(items).__name__}"
        )

    chunks: list[Chunk] = []
    for index, item in enumerate(items):
        data = item.get("data") if isinstance(item, Mapping) else None
        if not isinstance(data, Mapping) or not isinstance(data.get("inputs"), list):
            raise InvalidInputError(
                f"invalid chunk at index {index}: data.inputs must be a list"
            )
        chunk = Chunk.from_dict(item)
        if not chunk.id:
            chunk = replace(chunk, id=new_chunk_id())
        chunks.append(chunk)
    return chunks
