"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, automatic API test
skipping, and an in-memory Spark batch server behind ``httpx.MockTransport``.
All fixtures in the isolation section are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any

import httpx
import pytest

from sparkbatch.config import Config
from sparkbatch.executor import RequestExecutor

BASE_URL = "https://excel.test.coherent.global/my-tenant"
API_PREFIX = "/my-tenant/api/v4/batch"
TOKEN_PATH = "/auth/realms/my-tenant/protocol/openid-connect/token"

RAW_DATA = """
{
  "chunks": [
    {
      "id": "0001",
      "size": 2,
      "data": {
        "inputs": [
          ["sale_id", "price", "quantity"],
          [1, 20, 65],
          [2, 74, 73]
        ],
        "parameters": {"tax": 0.1}
      }
    },
    {
      "size": 1,
      "data": {
        "inputs": [
          ["sale_id", "price", "quantity"],
          [3, 20, 65]
        ],
        "summary": {
          "ignore_error": false,
          "aggregation": [{"output_name": "total", "operator": "SUM"}]
        }
      }
    }
  ]
}
"""

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeSpark:
    """In-memory batch API for ``httpx.MockTransport``.

    ``script`` holds canned responses (or exceptions to raise) that are served
    before the default routes, so tests can inject 429s, 500s or network
    failures. Token requests are always answered by the token route.
    """

    batch_id: str = "batch_uuid"
    script: list[httpx.Response | Exception] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    pushed: list[dict[str, Any]] = field(default_factory=list)
    batch_status: str = "in_progress"
    #: Status checks answered with nothing available before results show up.
    ready_after: int = 0
    status_checks: int = 0
    tokens_issued: int = 0

    @property
    def records(self) -> int:
        return sum(int(chunk.get("size") or 0) for chunk in self.pushed)

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != TOKEN_PATH]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            self.tokens_issued += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"token-{self.tokens_issued}",
                    "expires_in": 300,
                    "token_type": "Bearer",
                },
            )
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.route(request)

    def route(self, request: httpx.Request) -> httpx.Response:
        path, method = request.url.path, request.method
        item = f"{API_PREFIX}/{self.batch_id}"

        if path == API_PREFIX and method == "POST":
            return httpx.Response(
                200,
                json={"object": "batch", "id": self.batch_id, "data": {"batch_status": "created"}},
            )
        if path == f"{API_PREFIX}/status" and method == "GET":
            return httpx.Response(200, json={"in_progress_batches": [], "recent_batches": []})
        if path == f"{item}/chunks" and method == "POST":
            self.pushed.extend(json.loads(request.content)["chunks"])
            return httpx.Response(200, json=self._status(available=0))
        if path == f"{item}/chunkresults" and method == "GET":
            limit = int(request.url.params.get("max_chunks", "100"))
            data = [
                {
                    "id": chunk["id"],
                    "outputs": [{"total": i} for i in range(int(chunk["size"]))],
                }
                for chunk in self.pushed[:limit]
            ]
            return httpx.Response(
                200, json={"data": data, "status": self._status(available=self.records)}
            )
        if path == f"{item}/status" and method == "GET":
            self.status_checks += 1
            ready = self.status_checks > self.ready_after
            return httpx.Response(
                200, json=self._status(available=self.records if ready else 0)
            )
        if path == item and method == "PATCH":
            self.batch_status = json.loads(request.content)["batch_status"]
            return httpx.Response(
                200,
                json={"object": "batch", "id": self.batch_id, "meta": {"batch_status": self.batch_status}},
            )
        if path == item and method == "GET":
            return httpx.Response(
                200,
                json={"object": "batch", "id": self.batch_id, "data": {"batch_status": self.batch_status}},
            )
        return httpx.Response(404, json={"error": {"status": 404, "message": "not found"}})

    def _status(self, *, available: int) -> dict[str, Any]:
        return {
            "batch_status": self.batch_status,
            "pipeline_status": "idle",
            "input_buffer_used_bytes": 1024,
            "input_buffer_remaining_bytes": 1024,
            "records_available": available,
            "records_completed": available,
            "record_submitted": self.records,
        }


@dataclass
class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that records delays and returns at once."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_spark_env(request, monkeypatch):
    """Ensure a clean CSPARK_* environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith("CSPARK_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared Fixtures (opt-in)
# =============================================================================


@pytest.fixture
def config() -> Config:
    return Config(base_url=BASE_URL, api_key="test-key")


@pytest.fixture
def spark() -> FakeSpark:
    return FakeSpark()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_executor(spark: FakeSpark, sleep: RecordingSleep):
    """Build a ``RequestExecutor`` wired to the fake server."""

    def _make(cfg: Config) -> RequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(spark))
        return RequestExecutor(cfg, client=client, sleep=sleep)

    return _make


@pytest.fixture
def executor(make_executor, config: Config) -> RequestExecutor:
    return make_executor(config)


@pytest.fixture
def raw_data() -> str:
    """Two columnar chunks: ``0001`` with 2 records, an id-less one with 1."""
    return RAW_DATA
