"""Async context manager for acquiring a store connection.

Acquires from the pool and re-raises driver failures as the infrastructure
errors of :mod:`src.infra.db_errors`, so services can tell a broken database
apart from a domain rejection.
"""

from __future__ import annotations

import inspect
from types import TracebackType
from typing import Any

import structlog

from src.infra.db_errors import is_store_failure, map_asyncpg_error
from src.infra.types.db import ConnectionProtocol, PoolProtocol

LOGGER = structlog.get_logger(__name__)


class StoreConnectionContext:
    """Wrap ``pool.acquire()`` and translate asyncpg errors on the way out.

    Supports both async-context-manager acquisition (asyncpg pools) and
    pools whose ``acquire()`` returns an awaitable, releasing manually in the
    latter case.
    """

    def __init__(self, pool: PoolProtocol, *, operation: str) -> None:
        self._pool = pool
        self._operation = operation
        self._acq: Any | None = None
        self._conn: Any | None = None

    async def __aenter__(self) -> ConnectionProtocol:
        try:
            self._acq = self._pool.acquire()
            aenter = getattr(self._acq, "__aenter__", None)
            if aenter is not None:
                self._conn = await aenter()
            else:
                conn = self._acq
                if inspect.isawaitable(conn):
                    conn = await conn
                self._conn = conn
        except Exception as exc:
            if is_store_failure(exc):
                LOGGER.error(
                    "db.connection.acquire_failed",
                    operation=self._operation,
                    error=str(exc),
                )
                raise map_asyncpg_error(exc) from exc
            raise
        return self._conn

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        aexit = getattr(self._acq, "__aexit__", None)
        if aexit is not None:
            await aexit(exc_type, exc, tb)
        elif self._conn is not None:
            release = getattr(self._pool, "release", None)
            if release is not None:
                released = release(self._conn)
                if inspect.isawaitable(released):
                    await released

        if exc is not None and is_store_failure(exc):
            mapped = map_asyncpg_error(exc)
            LOGGER.error(
                "db.connection.operation_failed",
                operation=self._operation,
                error_type=type(mapped).__name__,
                context=mapped.log_safe_context(),
            )
            raise mapped from exc
        return None


def store_connection(pool: PoolProtocol, *, operation: str = "unknown") -> StoreConnectionContext:
    """Usage::

    async with store_connection(pool, operation="proposal.vote") as conn:
        await gateway.upsert_vote(conn, ...)
    """
    return StoreConnectionContext(pool, operation=operation)


__all__ = ["StoreConnectionContext", "store_connection"]
