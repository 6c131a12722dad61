"""
Reminder scanner: warn owners whose deadline is close.

Read-only with respect to switches. De-duplication lives in the cache under a
per-switch, per-day key; losing the cache only risks a repeated reminder.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch import metrics
from deadswitch.domain.monitoring import format_hours, urgency
from deadswitch.domain.switch import Switch
from deadswitch.domain.timeutil import utc_now
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services import audit
from deadswitch.services.cache import Cache
from deadswitch.services.email.base import EmailSender, SendSuccess

logger = logging.getLogger(__name__)

ContactResolver = Callable[[Switch], Awaitable[str | None]]


async def owner_id_as_contact(switch: Switch) -> str | None:
    """Default resolver: owners are identified by their email address."""
    return switch.owner_id if "@" in (switch.owner_id or "") else None


def reminder_cache_key(switch_id: str, now: datetime) -> str:
    return f"reminder:sent:{switch_id}:{now.date().isoformat()}"


def _seconds_until_day_end(now: datetime) -> int:
    day_end = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo)
    return max(1, int((day_end - now).total_seconds()))


@dataclass
class ReminderSummary:
    scanned: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0


class SendRemindersProcessor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        email_sender: EmailSender,
        cache: Cache,
        *,
        threshold: float = 0.9,
        ttl_seconds: int = 12 * 3600,
        batch_size: int = 100,
        app_url: str = "http://localhost:3000",
        resolve_contact: ContactResolver = owner_id_as_contact,
    ):
        self.session_maker = session_maker
        self.email_sender = email_sender
        self.cache = cache
        self.threshold = threshold
        self.ttl_seconds = ttl_seconds
        self.batch_size = batch_size
        self.app_url = app_url.rstrip("/")
        self.resolve_contact = resolve_contact

    async def __call__(self, payload: dict) -> ReminderSummary:
        return await self.run()

    async def run(self, now: datetime | None = None) -> ReminderSummary:
        now = now or utc_now()
        summary = ReminderSummary()
        cursor = None
        while True:
            async with self.session_maker() as session:
                switches, cursor = await SwitchRepository(session).find_reminder_candidates(
                    now, self.batch_size, cursor, threshold=self.threshold
                )
            summary.scanned += len(switches)
            for switch in switches:
                try:
                    await self._remind(switch, now, summary)
                except Exception:
                    logger.exception("Reminders: failed for switch %s", switch.id)
                    summary.errors += 1
            if cursor is None:
                break
        logger.info(
            "Reminders: scanned=%s sent=%s skipped=%s errors=%s",
            summary.scanned,
            summary.sent,
            summary.skipped,
            summary.errors,
        )
        return summary

    async def _remind(self, switch: Switch, now: datetime, summary: ReminderSummary) -> None:
        key = reminder_cache_key(switch.id, now)
        if await self.cache.get(key):
            logger.debug("Reminders: already reminded switch %s today", switch.id)
            summary.skipped += 1
            return

        contact = await self.resolve_contact(switch)
        if not contact:
            logger.warning("Reminders: no contact address for owner of switch %s", switch.id)
            summary.errors += 1
            return

        result = await self.email_sender.send_email(contact, *self._compose(switch, now))
        if not isinstance(result, SendSuccess):
            logger.error("Reminders: send failed for switch %s: %s", switch.id, result.reason)
            summary.errors += 1
            return

        # Hold the key at least until the day bucket rolls over
        await self.cache.set(key, now.isoformat(), max(self.ttl_seconds, _seconds_until_day_end(now)))
        summary.sent += 1
        metrics.reminders_sent_total.inc()
        try:
            async with self.session_maker() as session:
                await audit.log_action(
                    session,
                    switch.owner_id,
                    audit.REMINDER_SENT,
                    "switch",
                    switch.id,
                    details={"next_check_in_due": switch.next_check_in_due.isoformat()},
                )
                await session.commit()
        except Exception:
            logger.exception("Reminders: could not write audit row for switch %s", switch.id)
        logger.info("Reminders: sent reminder for switch %s (urgency %s)", switch.id, urgency(switch, now))

    def _compose(self, switch: Switch, now: datetime) -> tuple[str, str]:
        remaining = switch.time_until_due(now) or timedelta(0)
        hours = max(0.0, remaining.total_seconds() / 3600)
        subject = f"Check-In Reminder: {switch.name}"
        body = (
            f"Your switch \"{switch.name}\" is due for a check-in in {format_hours(hours)}.\n\n"
            f"If you do not check in before {switch.next_check_in_due:%Y-%m-%d %H:%M} UTC"
            f" (plus a {switch.grace_period_days}-day grace period), its messages will be released.\n\n"
            f"Check in now: {self.app_url}/switches/{switch.id}/checkin\n\n"
            "This is an automated reminder from Dead Man's Switch."
        )
        return subject, body
