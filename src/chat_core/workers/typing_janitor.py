"""Typing janitor: deletes indicator rows nobody refreshed within TTL + margin."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.uow import UoWFactory
from chat_core.config import settings
from chat_core.infrastructure.db.session import build_engine, build_session_maker
from chat_core.infrastructure.db.uow import uow_factory
from chat_core.services import typing_service

logger = logging.getLogger(__name__)


async def sweep(make_uow: UoWFactory, *, max_age: float, clock: Clock | None = None) -> int:
    cutoff = (clock or SystemClock()).now() - timedelta(seconds=max_age)
    async with make_uow() as uow:
        removed = await typing_service.purge_stale(uow, older_than=cutoff)
    if removed:
        logger.info("Purged %d stale typing indicators", removed)
    return removed


async def run_typing_janitor() -> None:
    engine = build_engine(settings)
    make_uow = uow_factory(build_session_maker(engine))
    logger.info(
        "Typing janitor started (interval=%.1fs, max_age=%.1fs)",
        settings.TYPING_JANITOR_INTERVAL,
        settings.typing_max_age,
    )
    try:
        while True:
            try:
                await sweep(make_uow, max_age=settings.typing_max_age)
            except Exception:
                logger.exception("Typing janitor loop error")
            await asyncio.sleep(settings.TYPING_JANITOR_INTERVAL)
    finally:
        await engine.dispose()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_typing_janitor())


if __name__ == "__main__":
    main()
