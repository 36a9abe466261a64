"""Structural protocols for the slice of asyncpg the governance store touches.

Gateways and services are typed against these so the in-memory fakes used in
unit tests and real ``asyncpg`` objects are interchangeable.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Mapping, Protocol

Record = Mapping[str, Any]


class TransactionProtocol(Protocol):
    async def __aenter__(self) -> Any: ...
    async def __aexit__(self, exc_type, exc, tb) -> Any: ...  # type: ignore[no-untyped-def]


class ConnectionProtocol(Protocol):
    async def fetchval(self, query: str, *args: Any) -> Any: ...

    async def fetchrow(self, query: str, *args: Any) -> Record | None: ...

    async def fetch(self, query: str, *args: Any) -> list[Record]: ...

    def transaction(self, *, isolation: str | None = None) -> TransactionProtocol: ...


class PoolProtocol(Protocol):
    def acquire(self) -> AsyncContextManager[ConnectionProtocol]: ...


__all__ = [
    "ConnectionProtocol",
    "PoolProtocol",
    "Record",
    "TransactionProtocol",
]
