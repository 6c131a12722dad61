"""
Send-notification consumer: one job is one delivery attempt for one message.

``is_sent`` on the message row is the authoritative de-duplication signal.
The send itself happens outside any database transaction; the outcome is then
written with a version-guarded update on a fresh copy of the row. Once the
provider has accepted a message it is never sent again by this consumer,
even when recording the success loses a race.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch import metrics
from deadswitch.domain.errors import NotFound, RepositoryError, VersionConflict
from deadswitch.domain.message import MAX_DELIVERY_ATTEMPTS, Message, mask_email
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import utc_now
from deadswitch.jobs.payloads import NotificationPayload, notification_dedupe_key
from deadswitch.queue.work_queue import SEND_NOTIFICATIONS, WorkQueue
from deadswitch.repositories.messages import MessageRepository
from deadswitch.services import audit
from deadswitch.services.email.base import SendFailure, SendSuccess
from deadswitch.services.notifications import NotificationSender

logger = logging.getLogger(__name__)

# Version-guarded writes retried on a fresh read before giving up
CAS_RETRIES = 3


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    NOT_FOUND = "not_found"
    NOT_SENDABLE = "not_sendable"
    STALE_ATTEMPT = "stale_attempt"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"
    PERMANENT_FAILURE = "permanent_failure"
    RECONCILIATION_REQUIRED = "reconciliation_required"


class SendNotificationProcessor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue,
        sender: NotificationSender,
        *,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
        retry_delay_seconds: int = 60,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.sender = sender
        self.max_attempts = max_attempts
        self.retry_delay = timedelta(seconds=retry_delay_seconds)

    async def __call__(self, payload: dict) -> DeliveryOutcome:
        outcome = await self.process(NotificationPayload.model_validate(payload))
        metrics.notifications_total.labels(outcome=outcome.value).inc()
        return outcome

    async def process(self, job: NotificationPayload, now: datetime | None = None) -> DeliveryOutcome:
        async with self.session_maker() as session:
            message = await MessageRepository(session).get(job.message_id)

        if message is None:
            logger.warning("Notification: message %s not found, dropping job", job.message_id)
            return DeliveryOutcome.NOT_FOUND
        if message.is_sent:
            logger.info("Notification: message %s already sent, nothing to do", message.id)
            return DeliveryOutcome.ALREADY_SENT
        if not message.can_be_sent(self.max_attempts):
            logger.warning(
                "Notification: message %s cannot be sent (status=%s, attempts=%s, deleted=%s), dropping job",
                message.id,
                message.delivery_status.value,
                message.delivery_attempts,
                message.is_deleted,
            )
            return DeliveryOutcome.NOT_SENDABLE
        if job.attempt <= message.delivery_attempts:
            # A redelivered job for an attempt that was already recorded
            logger.info(
                "Notification: message %s attempt %s already recorded (%s so far), dropping duplicate job",
                message.id,
                job.attempt,
                message.delivery_attempts,
            )
            return DeliveryOutcome.STALE_ATTEMPT

        result = await self.sender.send(
            message.recipient_email, message.subject, message.encrypted_content, message.idempotency_key
        )
        now = now or utc_now()
        if isinstance(result, SendSuccess):
            return await self._record_sent(message, result, now)
        return await self._record_failure(message, result, now)

    async def _record_sent(self, message: Message, result: SendSuccess, now: datetime) -> DeliveryOutcome:
        def mark(fresh: Message):
            return fresh.mark_as_sent(now)

        async def on_saved(session: AsyncSession, saved: Message) -> None:
            await audit.log_action(
                session,
                None,
                audit.MESSAGE_SENT,
                "message",
                saved.id,
                details={"switch_id": saved.switch_id, "provider_message_id": result.provider_message_id},
            )

        try:
            written = await self._write(message.id, mark, on_saved)
        except Exception as e:
            # Never surface to the queue: a retry would deliver the message again
            logger.critical(
                "Notification: message %s delivered to %s but recording it failed; manual reconciliation required",
                message.id,
                mask_email(message.recipient_email),
                exc_info=True,
            )
            await self._flag_reconciliation(message, result, f"{type(e).__name__}: {e}")
            return DeliveryOutcome.RECONCILIATION_REQUIRED

        if written.is_ok:
            logger.info(
                "Notification: message %s sent to %s (provider id %s)",
                message.id,
                mask_email(message.recipient_email),
                result.provider_message_id,
            )
            return DeliveryOutcome.SENT

        try:
            async with self.session_maker() as session:
                current = await MessageRepository(session).get(message.id)
        except Exception:
            logger.exception("Notification: could not re-read message %s after a lost update", message.id)
            current = None
        if current is not None and current.is_sent:
            logger.info("Notification: message %s was marked sent concurrently, no-op", message.id)
            return DeliveryOutcome.ALREADY_SENT
        logger.critical(
            "Notification: message %s delivered to %s but could not be marked sent (%s); manual reconciliation required",
            message.id,
            mask_email(message.recipient_email),
            written.error,
        )
        await self._flag_reconciliation(message, result, str(written.error))
        return DeliveryOutcome.RECONCILIATION_REQUIRED

    async def _flag_reconciliation(self, message: Message, result: SendSuccess, reason: str) -> None:
        """Best-effort audit row for a delivered message whose sent state was not recorded."""
        try:
            async with self.session_maker() as session:
                await audit.log_action(
                    session,
                    None,
                    audit.MESSAGE_RECONCILIATION_REQUIRED,
                    "message",
                    message.id,
                    details={
                        "switch_id": message.switch_id,
                        "provider_message_id": result.provider_message_id,
                        "reason": reason,
                    },
                )
                await session.commit()
        except Exception:
            logger.critical(
                "Notification: could not write reconciliation audit row for message %s", message.id, exc_info=True
            )

    async def _record_failure(self, message: Message, result: SendFailure, now: datetime) -> DeliveryOutcome:
        if result.permanent:

            def mark(fresh: Message):
                return fresh.mark_permanently_failed(result.reason, now)

        else:

            def mark(fresh: Message):
                return fresh.record_delivery_attempt(result.reason, now, self.max_attempts)

        async def on_saved(session: AsyncSession, saved: Message) -> None:
            if saved.is_failed:
                await audit.log_action(
                    session,
                    None,
                    audit.MESSAGE_DELIVERY_FAILED,
                    "message",
                    saved.id,
                    details={
                        "switch_id": saved.switch_id,
                        "attempts": saved.delivery_attempts,
                        "permanent": result.permanent,
                        "reason": result.reason,
                    },
                )
                return
            next_attempt = saved.delivery_attempts + 1
            retry = NotificationPayload(
                message_id=saved.id,
                switch_id=saved.switch_id,
                recipient=saved.recipient_email,
                subject=saved.subject,
                content=saved.encrypted_content,
                attempt=next_attempt,
            )
            await self.queue.enqueue(
                SEND_NOTIFICATIONS,
                retry.model_dump(),
                delay=self.retry_delay,
                dedupe_key=notification_dedupe_key(saved.id, next_attempt),
                session=session,
            )

        written = await self._write(message.id, mark, on_saved)
        if written.is_err:
            if isinstance(written.error, NotFound):
                logger.warning("Notification: message %s vanished while recording failure", message.id)
                return DeliveryOutcome.NOT_FOUND
            if isinstance(written.error, VersionConflict):
                # Nothing was delivered, so the queue may safely run this attempt again
                raise RepositoryError(
                    f"Failure of message {message.id} not recorded after {CAS_RETRIES} version conflicts"
                )
            # Transition rejected: sent or failed meanwhile by another worker
            logger.info("Notification: failure for message %s not recorded: %s", message.id, written.error)
            async with self.session_maker() as session:
                current = await MessageRepository(session).get(message.id)
            if current is not None and current.is_sent:
                return DeliveryOutcome.ALREADY_SENT
            return DeliveryOutcome.NOT_SENDABLE

        saved = written.value
        if result.permanent:
            logger.error(
                "Notification: permanent failure for message %s to %s: %s",
                saved.id,
                mask_email(saved.recipient_email),
                result.reason,
            )
            return DeliveryOutcome.PERMANENT_FAILURE
        if saved.is_failed:
            logger.error(
                "Notification: message %s undeliverable after %s attempts: %s",
                saved.id,
                saved.delivery_attempts,
                result.reason,
            )
            return DeliveryOutcome.EXHAUSTED
        logger.warning(
            "Notification: attempt %s/%s for message %s failed (%s); retrying in %ss",
            saved.delivery_attempts,
            self.max_attempts,
            saved.id,
            result.reason,
            int(self.retry_delay.total_seconds()),
        )
        return DeliveryOutcome.RETRY_SCHEDULED

    async def _write(
        self,
        message_id: str,
        mutate: Callable[[Message], Result],
        on_saved: Callable[[AsyncSession, Message], object],
    ) -> Result[Message, object]:
        """
        Apply ``mutate`` to a fresh copy and write it back version-guarded,
        re-reading on conflict. ``on_saved`` runs in the same transaction.
        """
        error: object = None
        for _ in range(CAS_RETRIES):
            async with self.session_maker() as session:
                repo = MessageRepository(session)
                fresh = await repo.get(message_id)
                if fresh is None:
                    return Err(NotFound(f"Message {message_id} not found", entity="message", entity_id=message_id))
                expected_version = fresh.version
                changed = mutate(fresh)
                if changed.is_err:
                    return changed
                saved = await repo.update(fresh, expected_version)
                if saved.is_ok:
                    await on_saved(session, fresh)
                    await session.commit()
                    return Ok(fresh)
                await session.rollback()
                error = saved.error
                if not isinstance(error, VersionConflict):
                    return saved
                logger.info("Notification: version conflict on message %s, re-reading", message_id)
        return Err(error)
