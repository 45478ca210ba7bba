"""Outbound message writes: bounded retry, then the local pending outbox."""
from __future__ import annotations

import asyncio
import logging
import uuid

from chat_core.application.dto.message import SendResult
from chat_core.application.exceptions import (
    ForbiddenError,
    NotFoundError,
    OutboxFullError,
    TransientStoreError,
    ValidationError,
)
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.ports.outbox import PendingOutbox
from chat_core.application.retry import RETRYABLE_ERRORS, RetryPolicy
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.entities.message import Message
from chat_core.domain.entities.pending_send import PendingSend
from chat_core.domain.value_objects.enums import SendState
from chat_core.services import ledger_service

logger = logging.getLogger(__name__)


class MessageSender:
    def __init__(
        self,
        uow_factory: UoWFactory,
        outbox: PendingOutbox,
        *,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._flush_lock = asyncio.Lock()

    async def send(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        *,
        attachment: Attachment | None = None,
        client_msg_id: uuid.UUID | None = None,
    ) -> SendResult:
        """Append to the ledger; park in the outbox if the store stays unreachable.

        ValidationError is raised straight away and never retried.
        """
        ledger_service.validate_content(content, attachment)
        client_msg_id = client_msg_id or uuid.uuid4()

        try:
            msg = await self._retry.run(
                "append_message",
                lambda: self._append(conversation_id, sender_id, content, attachment, client_msg_id),
            )
        except TransientStoreError:
            return await self._park(
                PendingSend(
                    client_msg_id=client_msg_id,
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    content=content,
                    attachment=attachment,
                    created_at=self._clock.now(),
                )
            )
        return SendResult(state=SendState.SENT, client_msg_id=client_msg_id, message=msg)

    async def flush_pending(self) -> list[SendResult]:
        """Replay parked writes oldest first; stops at the first transient failure."""
        results: list[SendResult] = []
        async with self._flush_lock:
            for item in await self._outbox.list_pending():
                try:
                    msg = await self._append(
                        item.conversation_id,
                        item.sender_id,
                        item.content,
                        item.attachment,
                        item.client_msg_id,
                    )
                except RETRYABLE_ERRORS:
                    await self._outbox.bump_attempts(item.client_msg_id)
                    logger.info("Store still unavailable, %s stays pending", item.client_msg_id)
                    break
                except (ValidationError, NotFoundError, ForbiddenError) as exc:
                    await self._outbox.remove(item.client_msg_id)
                    logger.error("Dropping pending message %s: %s", item.client_msg_id, exc.detail)
                    results.append(
                        SendResult(SendState.FAILED, item.client_msg_id, detail=exc.detail)
                    )
                    continue
                await self._outbox.remove(item.client_msg_id)
                results.append(SendResult(SendState.SENT, item.client_msg_id, message=msg))
        if results:
            logger.info("Flushed %d pending messages", len(results))
        return results

    async def pending_for(self, conversation_id: uuid.UUID) -> list[PendingSend]:
        return [p for p in await self._outbox.list_pending() if p.conversation_id == conversation_id]

    async def run_flusher(self, interval: float, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await self.flush_pending()
            except Exception:
                logger.exception("Pending outbox flush error")
            try:
                await asyncio.wait_for(stop.wait(), interval)
            except TimeoutError:
                pass

    async def _append(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        attachment: Attachment | None,
        client_msg_id: uuid.UUID,
    ) -> Message:
        async with self._uow_factory() as uow:
            msg, _created = await ledger_service.append_message(
                conversation_id,
                sender_id,
                content,
                uow,
                client_msg_id=client_msg_id,
                attachment=attachment,
                clock=self._clock,
            )
        return msg

    async def _park(self, item: PendingSend) -> SendResult:
        try:
            await self._outbox.enqueue(item)
        except OutboxFullError as exc:
            logger.error("Pending outbox full, message %s not queued", item.client_msg_id)
            return SendResult(SendState.FAILED, item.client_msg_id, detail=exc.detail)
        logger.warning("Message %s queued in pending outbox", item.client_msg_id)
        return SendResult(SendState.PENDING, item.client_msg_id)
