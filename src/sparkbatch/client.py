"""Client facade: one configuration, one HTTP connection pool."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sparkbatch.batches import Batches
from sparkbatch.config import Config
from sparkbatch.errors import ConfigurationError
from sparkbatch.executor import RequestExecutor

if TYPE_CHECKING:
    from types import TracebackType

    import httpx


class Client:
    """Entry point to the batch APIs of one tenant.

    Pass a ``Config`` or keyword overrides for one (not both). The client owns
    its ``httpx.AsyncClient`` unless one is given; close it with ``aclose()``
    or use ``async with``.

    Example:
        async with Client(base_url="https://excel.uat.us.coherent.global/my-tenant", api_key="...") as client:
            batch = await client.batches.create("my-folder/my-service")
            pipeline = client.batches.of(batch.id)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
        **overrides: Any,
    ) -> None:
        if config is not None and overrides:
            raise ConfigurationError(
                "pass either a Config or keyword settings, not both",
                hint="Use config.copy_with(...) to adjust an existing Config.",
            )
        self.config = config if config is not None else Config(**overrides)
        self._executor = RequestExecutor(self.config, client=client, logger=logger)
        self._batches = Batches(self._executor)

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def batches(self) -> Batches:
        return self._batches

    async def aclose(self) -> None:
        await self._executor.aclose()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"Client(config={self.config})"
