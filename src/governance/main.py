from __future__ import annotations

import asyncio

import structlog
from dotenv import load_dotenv

from src.config.db_settings import PoolConfig
from src.config.settings import GovernanceSettings, get_settings
from src.db import pool as db_pool
from src.governance.services.notification_fanout import NotificationSink
from src.governance.services.proposal_service import ProposalService
from src.infra.logging.config import configure_logging

LOGGER = structlog.get_logger(__name__)


async def start_engine(
    *,
    settings: GovernanceSettings | None = None,
    pool_config: PoolConfig | None = None,
    sink: NotificationSink | None = None,
) -> ProposalService:
    """Configure logging, open the pool and return a wired ProposalService."""
    load_dotenv(override=False)
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    pool = await db_pool.init_pool(pool_config)
    service = ProposalService(settings=settings, pool=pool, sink=sink)
    LOGGER.info(
        "governance.engine.started",
        schema=settings.db_schema,
        notifications_enabled=settings.notifications_enabled,
        enforce_quorum=settings.enforce_quorum,
    )
    return service


async def stop_engine() -> None:
    await db_pool.close_pool()
    LOGGER.info("governance.engine.stopped")


async def _check() -> None:
    await start_engine()
    try:
        LOGGER.info("governance.engine.ready")
    finally:
        await stop_engine()


def main() -> None:
    """Entry point invoked via `python -m src.governance.main`; verifies startup and exits."""
    try:
        asyncio.run(_check())
    except KeyboardInterrupt:
        LOGGER.warning("governance.engine.interrupted")


if __name__ == "__main__":
    main()
