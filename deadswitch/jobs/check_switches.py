"""
Check-switches scanner.

Pages through switches whose grace period has expired, triggers each one with
a version-guarded write and fans out one send-notification job per unsent
message. The trigger, its audit row and the notification jobs commit in one
transaction, so a switch is never TRIGGERED without its deliveries queued.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch import metrics
from deadswitch.domain.errors import VersionConflict
from deadswitch.domain.switch import Switch
from deadswitch.domain.timeutil import utc_now
from deadswitch.jobs.payloads import NotificationPayload, notification_dedupe_key
from deadswitch.queue.work_queue import SEND_NOTIFICATIONS, WorkQueue
from deadswitch.repositories.messages import MessageRepository
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services import audit

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    scanned: int = 0
    triggered: int = 0
    skipped: int = 0
    errors: int = 0
    enqueued: int = 0


class CheckSwitchesProcessor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue,
        *,
        batch_size: int = 100,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.batch_size = batch_size

    async def __call__(self, payload: dict) -> ScanSummary:
        return await self.run()

    async def run(self, now: datetime | None = None) -> ScanSummary:
        now = now or utc_now()
        summary = ScanSummary()
        cursor = None
        while True:
            async with self.session_maker() as session:
                candidates, cursor = await SwitchRepository(session).find_due_for_trigger(
                    now, self.batch_size, cursor
                )
            summary.scanned += len(candidates)
            for switch in candidates:
                await self._trigger_one(switch, now, summary)
            if cursor is None:
                break
        logger.info(
            "Check switches: scanned=%s triggered=%s skipped=%s errors=%s enqueued=%s",
            summary.scanned,
            summary.triggered,
            summary.skipped,
            summary.errors,
            summary.enqueued,
        )
        return summary

    async def _trigger_one(self, switch: Switch, now: datetime, summary: ScanSummary) -> None:
        expected_version = switch.version
        transition = switch.trigger(now)
        if transition.is_err:
            logger.warning("Check switches: switch %s not triggered: %s", switch.id, transition.error)
            summary.skipped += 1
            return

        try:
            async with self.session_maker() as session:
                saved = await SwitchRepository(session).update(switch, expected_version)
                if saved.is_err:
                    await session.rollback()
                    if isinstance(saved.error, VersionConflict):
                        metrics.switch_trigger_conflicts_total.inc()
                        logger.info("Check switches: switch %s changed concurrently, skipping", switch.id)
                    else:
                        logger.warning("Check switches: switch %s vanished before trigger", switch.id)
                    summary.skipped += 1
                    return

                messages = await MessageRepository(session).find_unsent_by_switch(switch.id)
                await audit.log_action(
                    session,
                    switch.owner_id,
                    audit.SWITCH_TRIGGERED,
                    "switch",
                    switch.id,
                    details={
                        "triggered_at": now.isoformat(),
                        "next_check_in_due": switch.next_check_in_due.isoformat(),
                        "messages": len(messages),
                    },
                )
                enqueued = 0
                for message in messages:
                    payload = NotificationPayload(
                        message_id=message.id,
                        switch_id=switch.id,
                        recipient=message.recipient_email,
                        subject=message.subject,
                        content=message.encrypted_content,
                        attempt=1,
                    )
                    job_id = await self.queue.enqueue(
                        SEND_NOTIFICATIONS,
                        payload.model_dump(),
                        dedupe_key=notification_dedupe_key(message.id, 1),
                        session=session,
                    )
                    if job_id is not None:
                        enqueued += 1
                await session.commit()
        except Exception:
            logger.exception("Check switches: failed to trigger switch %s", switch.id)
            summary.errors += 1
            return

        summary.triggered += 1
        summary.enqueued += enqueued
        metrics.switches_triggered_total.inc()
        logger.warning(
            "Switch %s TRIGGERED (owner %s); %s message(s) queued for delivery", switch.id, switch.owner_id, enqueued
        )
