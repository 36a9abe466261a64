from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import asyncpg
import pytest

from src.config.db_settings import PoolConfig
from src.db import pool as pool_module


class _DummyPool:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _reset_pool_state() -> None:
    pool_module._POOL_LOCKS.clear()
    pool_module._POOLS.clear()
    pool_module._last_pool = None


def _config(**overrides: Any) -> PoolConfig:
    values: dict[str, Any] = {
        "DATABASE_URL": "postgresql://test-db",
        "DB_POOL_MIN_SIZE": 2,
        "DB_POOL_MAX_SIZE": 4,
        "DB_POOL_TIMEOUT_SECONDS": None,
        "DB_CONNECT_ATTEMPTS": 3,
    }
    values.update(overrides)
    return PoolConfig.model_validate(values)


@pytest.mark.asyncio
async def test_init_pool_uses_config_and_reuses_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    _reset_pool_state()
    created_args: list[dict[str, Any]] = []

    async def fake_create_pool(**kwargs: Any) -> _DummyPool:
        created_args.append(kwargs)
        return _DummyPool()

    monkeypatch.setattr(pool_module.asyncpg, "create_pool", fake_create_pool)
    cfg = _config()

    pool1 = await pool_module.init_pool(cfg)
    pool2 = await pool_module.init_pool(cfg)

    # 第二次呼叫 init_pool 應重用既有 pool
    assert pool1 is pool2
    assert len(created_args) == 1

    args = created_args[0]
    assert args["dsn"] == cfg.dsn
    assert args["min_size"] == cfg.min_size
    assert args["max_size"] == cfg.max_size
    assert args["init"] is pool_module._configure_connection
    assert args["server_settings"] == {"application_name": "band-governance", "timezone": "UTC"}
    await pool_module.close_pool()


@pytest.mark.asyncio
async def test_init_pool_retries_transient_connect_errors(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _reset_pool_state()
    attempts = 0
    dummy = _DummyPool()

    async def flaky_create_pool(**_: Any) -> _DummyPool:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConnectionRefusedError("database is starting up")
        return dummy

    async def no_sleep(_: float) -> None:
        return None

    monkeypatch.setattr(pool_module.asyncpg, "create_pool", flaky_create_pool)
    monkeypatch.setattr("asyncio.sleep", no_sleep)

    pool = await pool_module.init_pool(_config())

    assert pool is dummy
    assert attempts == 3
    await pool_module.close_pool()


@pytest.mark.asyncio
async def test_init_pool_gives_up_after_configured_attempts(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _reset_pool_state()
    attempts = 0

    async def refuse(**_: Any) -> _DummyPool:
        nonlocal attempts
        attempts += 1
        raise asyncpg.CannotConnectNowError("not accepting connections")

    async def no_sleep(_: float) -> None:
        return None

    monkeypatch.setattr(pool_module.asyncpg, "create_pool", refuse)
    monkeypatch.setattr("asyncio.sleep", no_sleep)

    with pytest.raises(asyncpg.CannotConnectNowError):
        await pool_module.init_pool(_config(DB_CONNECT_ATTEMPTS=2))
    assert attempts == 2


@pytest.mark.asyncio
async def test_get_pool_and_close_pool_lifecycle(monkeypatch: pytest.MonkeyPatch) -> None:
    _reset_pool_state()
    dummy_pool = _DummyPool()

    async def fake_create_pool(**_: Any) -> _DummyPool:
        return dummy_pool

    monkeypatch.setattr(pool_module.asyncpg, "create_pool", fake_create_pool)

    pool = await pool_module.init_pool(_config(DB_POOL_MIN_SIZE=1, DB_POOL_MAX_SIZE=1))
    assert pool is dummy_pool
    assert pool_module.get_pool() is dummy_pool

    # 關閉 pool 後，_last_pool 也應被清空
    await pool_module.close_pool()
    assert dummy_pool.closed is True
    assert pool_module._last_pool is None

    with pytest.raises(RuntimeError):
        pool_module.get_pool()


@pytest.mark.asyncio
async def test_configure_connection_sets_json_codecs() -> None:
    @dataclass
    class ConnRecorder:
        codecs: list[tuple[str, str, str]] = field(default_factory=list)
        decoders: dict[str, Callable[[str], Any]] = field(default_factory=dict)

        async def set_type_codec(
            self,
            name: str,
            *,
            schema: str,
            encoder: Callable[[Any], str],
            decoder: Callable[[str], Any],
            format: str,
        ) -> None:
            self.codecs.append((name, schema, format))
            self.decoders[name] = decoder

    conn = ConnRecorder()

    await pool_module._configure_connection(conn)  # type: ignore[arg-type]

    assert ("json", "pg_catalog", "text") in conn.codecs
    assert ("jsonb", "pg_catalog", "text") in conn.codecs
    assert conn.decoders["jsonb"]('{"budgetRequested": 10}') == {"budgetRequested": 10}
