"""Outbox relay: polls committed ledger events and publishes them on fabric topics."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis

from chat_core.application.ports.bus import EventPublisher
from chat_core.application.uow import UnitOfWork
from chat_core.config import settings
from chat_core.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from chat_core.infrastructure.db.session import build_engine, build_session_maker
from chat_core.infrastructure.db.uow import SqlAlchemyUoW

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 5
MAX_DELAY_SECONDS = 300


def _calc_backoff(attempts: int, now: datetime | None = None) -> datetime:
    delay = min(BASE_DELAY_SECONDS * (2 ** attempts), MAX_DELAY_SECONDS)
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=delay)


async def process_batch(
    uow: UnitOfWork,
    publisher: EventPublisher,
    *,
    batch_size: int,
    max_attempts: int,
) -> int:
    """Publish one batch; returns how many records went out.

    Delivery is at-least-once: a crash between publish and commit replays
    the batch, and subscribers dedupe by message id.
    """
    batch = await uow.outbox.fetch_pending(batch_size)
    if not batch:
        return 0

    sent_ids: list[int] = []
    for record in batch:
        if record.attempts >= max_attempts:
            logger.error(
                "Outbox record %d (%s) exceeded %d attempts, parking",
                record.id, record.event_type, max_attempts,
            )
            await uow.outbox.mark_dead(record.id)
            continue
        try:
            await publisher.publish(record.topic, record.kind, record.data)
            sent_ids.append(record.id)
        except Exception:
            logger.exception("Failed to publish outbox record %d", record.id)
            await uow.outbox.mark_failed(record.id, _calc_backoff(record.attempts))

    if sent_ids:
        await uow.outbox.mark_sent(sent_ids)

    await uow.commit()
    if sent_ids:
        logger.info("Published %d outbox records", len(sent_ids))
    return len(sent_ids)


async def run_outbox_worker() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    publisher = RedisPubSubPublisher(redis)
    engine = build_engine(settings)
    session_maker = build_session_maker(engine)

    logger.info(
        "Outbox worker started (poll=%.1fs, batch=%d, max_attempts=%d)",
        settings.OUTBOX_POLL_INTERVAL,
        settings.OUTBOX_BATCH_SIZE,
        settings.OUTBOX_MAX_ATTEMPTS,
    )

    try:
        while True:
            try:
                async with session_maker() as session:
                    await process_batch(
                        SqlAlchemyUoW(session),
                        publisher,
                        batch_size=settings.OUTBOX_BATCH_SIZE,
                        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
                    )
            except Exception:
                logger.exception("Outbox worker loop error")
            await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL)
    finally:
        await redis.aclose()
        await engine.dispose()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_outbox_worker())


if __name__ == "__main__":
    main()
