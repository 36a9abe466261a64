from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator

import asyncpg
import pytest
import pytest_asyncio
import structlog
from dotenv import load_dotenv
from faker import Faker

from src.config.db_settings import PoolConfig
from src.config.settings import GovernanceSettings, get_settings
from src.db.pool import close_pool, init_pool
from src.infra.events.notification_events import reset_subscribers
from src.infra.result import reset_error_metrics
from tests.fixtures.governance_fakes import FakeClock, FakeGateway, FakePool, RecordingSink


@pytest.fixture
def faker() -> Faker:
    """Provide a Faker instance for proposal titles and free text."""
    return Faker(["en_US"])


@pytest.fixture(autouse=True)
def _isolate_process_state() -> Iterator[None]:
    get_settings.cache_clear()
    reset_error_metrics()
    reset_subscribers()
    yield
    get_settings.cache_clear()
    reset_subscribers()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def governance_settings() -> GovernanceSettings:
    return GovernanceSettings(
        db_schema="governance",
        log_level="INFO",
        notifications_enabled=True,
        enforce_quorum=False,
    )


@pytest.fixture
def fake_gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_band("band-1")
    return gw


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_pool() -> AsyncIterator[asyncpg.Pool]:
    """Initialise the shared asyncpg pool for database-centric tests."""
    try:
        load_dotenv(override=False)
        config = PoolConfig.model_validate({})  # Load from environment variables
    except (ValueError, RuntimeError) as exc:
        pytest.skip(f"Skipping database tests: {exc}")

    pool = await init_pool(config)
    try:
        yield pool
    finally:
        await close_pool()
        await asyncio.sleep(0.1)


@pytest_asyncio.fixture
async def db_connection(db_pool: asyncpg.Pool) -> AsyncIterator[asyncpg.Connection]:
    """Yield a transaction-scoped connection for database tests."""
    async with db_pool.acquire() as connection:
        transaction = connection.transaction()
        await transaction.start()
        try:
            yield connection
        finally:
            await transaction.rollback()
