"""Batch wire types.

``Chunk``/``ChunkData`` are what callers build and push. The pydantic models
describe server responses; unknown fields are kept (``extra="allow"``) so a
server-side addition never breaks parsing.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PipelineState = Literal["open", "closed", "cancelled"]
DuplicatePolicy = Literal["ignore", "replace", "throw"]


def count_records(inputs: list[Any]) -> int:
    """Records in *inputs*, not counting the header row of columnar data."""
    if not inputs:
        return 0
    if isinstance(inputs[0], list):
        return len(inputs) - 1
    return len(inputs)


@dataclass(frozen=True)
class ChunkData:
    """Records of one chunk plus the parameters shared by all of them."""

    inputs: list[Any]
    parameters: dict[str, Any] = field(default_factory=dict)
    #: Aggregation directives, e.g. ``{"aggregation": [{"output_name": ..., "operator": "SUM"}]}``.
    summary: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"inputs": self.inputs, "parameters": self.parameters}
        if self.summary is not None:
            out["summary"] = self.summary
        return out


@dataclass(frozen=True)
class Chunk:
    """One submission unit of a batch pipeline."""

    id: str
    data: ChunkData
    size: int | None = None

    @property
    def record_count(self) -> int:
        return self.size if self.size is not None else count_records(self.data.inputs)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "data": self.data.to_dict(), "size": self.record_count}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Chunk:
        data = raw.get("data") or {}
        inputs = list(data.get("inputs") or [])
        size = raw.get("size")
        return cls(
            id=str(raw.get("id") or ""),
            data=ChunkData(
                inputs=inputs,
                parameters=dict(data.get("parameters") or {}),
                summary=data.get("summary"),
            ),
            size=int(size) if size is not None else None,
        )


@dataclass(frozen=True)
class PipelineStats:
    """Client-side submission totals; advisory, the server is authoritative."""

    chunks: int = 0
    records: int = 0


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow")


class BatchStatus(_Model):
    """Server-side progress of one batch."""

    batch_status: str | None = None
    pipeline_status: str | None = None
    input_buffer_used_bytes: int | None = None
    input_buffer_remaining_bytes: int | None = None
    output_buffer_used_bytes: int | None = None
    output_buffer_remaining_bytes: int | None = None
    records_available: int = 0
    records_completed: int = 0
    record_submitted: int = 0
    compute_time_ms: float | None = None
    request_timestamp: str | None = None

    @property
    def is_pending(self) -> bool:
        """Whether submitted records are still waiting to become available."""
        return self.records_available < self.record_submitted

    @property
    def input_buffer_utilization(self) -> float | None:
        used = self.input_buffer_used_bytes
        remaining = self.input_buffer_remaining_bytes
        if used is None or remaining is None or used + remaining <= 0:
            return None
        return used / (used + remaining)


class RecordSubmitted(BatchStatus):
    """Running submission counters returned by a push."""


class ResultStatus(BatchStatus):
    response_timestamp: str | None = None
    chunks_completed: int | None = None
    chunks_submitted: int | None = None
    chunks_available: int | None = None
    workers_in_use: int | None = None


class ChunkResult(_Model):
    id: str
    outputs: list[Any] = Field(default_factory=list)
    summary_output: list[Any] = Field(default_factory=list)
    warnings: list[Any] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)
    process_time: list[float] = Field(default_factory=list)


class BatchResult(_Model):
    """Completed chunk results plus an overall status block."""

    data: list[ChunkResult] = Field(default_factory=list)
    status: ResultStatus = Field(default_factory=ResultStatus)

    @property
    def record_count(self) -> int:
        return sum(len(chunk.outputs) for chunk in self.data)


class BatchMeta(_Model):
    service_id: str | None = None
    version_id: str | None = None
    compiler_version: str | None = None
    correlation_id: str | None = None
    source_system: str | None = None
    unique_record_key: str | None = None
    response_timestamp: str | None = None
    batch_status: str | None = None
    created_by: str | None = None
    created_timestamp: str | None = None
    updated_timestamp: str | None = None
    service_uri: str | None = None


class BatchCreated(_Model):
    object: str | None = None
    id: str
    data: BatchMeta = Field(default_factory=BatchMeta)


class BatchInfoData(BatchMeta):
    summary: dict[str, Any] | None = None
    configuration: dict[str, Any] | None = None


class BatchInfo(_Model):
    object: str | None = None
    id: str
    data: BatchInfoData = Field(default_factory=BatchInfoData)


class BatchDisposed(_Model):
    object: str | None = None
    id: str | None = None
    meta: BatchMeta = Field(default_factory=BatchMeta)


class BatchDescribed(_Model):
    """Tenant-wide view of in-progress and recent batches."""

    in_progress_batches: list[Any] = Field(default_factory=list)
    recent_batches: list[Any] = Field(default_factory=list)
    tenant: dict[str, Any] | None = None
    environment: dict[str, Any] | None = None
