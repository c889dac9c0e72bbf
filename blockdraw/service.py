"""Wiring of the drawing service from :class:`~blockdraw.config.Settings`."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .announce import Announcer, LoggingAnnouncer
from .chain.api import BlockSource, TronClient
from .config import Settings
from .db.engine import get_sessionmaker, make_engine
from .lifecycle import CapabilityCheck, DrawingController
from .models import Base
from .repository import DrawingRepository

logger = logging.getLogger(__name__)


@dataclass
class Service:
    engine: Engine
    repository: DrawingRepository
    source: BlockSource
    controller: DrawingController

    async def start(self) -> None:
        await self.controller.start()

    async def close(self) -> None:
        await self.controller.shutdown()
        self.source.close()
        self.engine.dispose()


def build_service(
    settings: Optional[Settings] = None,
    *,
    announcer: Optional[Announcer] = None,
    capability_check: Optional[CapabilityCheck] = None,
    create_tables: bool = False,
) -> Service:
    """Create engine, repository, block source and controller.

    ``create_tables`` runs ``Base.metadata.create_all`` for throwaway
    databases; persistent ones are migrated with Alembic instead.
    """
    settings = settings or Settings.from_env()
    engine = make_engine(settings.db_url)
    if create_tables:
        Base.metadata.create_all(engine)
    repository = DrawingRepository(get_sessionmaker(engine))
    source = BlockSource(
        TronClient(
            base_url=settings.tron_grid_api,
            api_key=settings.tron_api_key,
            timeout=settings.source_timeout,
        )
    )
    controller = DrawingController(
        repository,
        source,
        announcer or LoggingAnnouncer(settings.block_explorer_url),
        capability_check=capability_check,
        seed_offset=settings.seed_block_offset,
        poll_interval=settings.seed_poll_interval,
        max_wait=settings.seed_max_wait,
        default_duration_minutes=settings.default_duration_minutes,
    )
    return Service(engine=engine, repository=repository, source=source, controller=controller)


async def run_forever(service: Service) -> None:
    """Start ``service`` and keep it running until cancelled."""
    await service.start()
    logger.info("Drawing service running")
    try:
        await asyncio.Event().wait()
    finally:
        await service.close()
        logger.info("Drawing service stopped")


__all__ = ["Service", "build_service", "run_forever"]
