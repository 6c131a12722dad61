"""
Retention cleanup: hard-delete rows that are past their retention window.

Every table is purged in its own transaction so one failure does not hold
back the others. Purely age-filtered, so re-running is harmless.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch import metrics
from deadswitch.domain.timeutil import utc_now
from deadswitch.queue.work_queue import WorkQueue
from deadswitch.repositories.check_ins import CheckInRepository
from deadswitch.repositories.messages import MessageRepository
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services.audit import purge_audit_log

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    switches: int = 0
    messages: int = 0
    check_ins: int = 0
    audit_logs: int = 0
    queue_jobs: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.switches + self.messages + self.check_ins + self.audit_logs + self.queue_jobs


class CleanupProcessor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue,
        *,
        soft_delete_retention_days: int = 30,
        check_in_retention_days: int = 90,
        audit_log_retention_days: int = 180,
        queue_job_retention_days: int = 7,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.soft_delete_retention = timedelta(days=soft_delete_retention_days)
        self.check_in_retention = timedelta(days=check_in_retention_days)
        self.audit_log_retention = timedelta(days=audit_log_retention_days)
        self.queue_job_retention = timedelta(days=queue_job_retention_days)

    async def __call__(self, payload: dict) -> CleanupResult:
        return await self.run()

    async def run(self, now: datetime | None = None) -> CleanupResult:
        now = now or utc_now()
        result = CleanupResult()
        steps: list[tuple[str, Callable[[AsyncSession], Awaitable[int]]]] = [
            # Messages before switches: purging a switch also takes its messages
            ("messages", lambda s: MessageRepository(s).purge_soft_deleted(now - self.soft_delete_retention)),
            ("switches", lambda s: SwitchRepository(s).purge_soft_deleted(now - self.soft_delete_retention)),
            ("check_ins", lambda s: CheckInRepository(s).purge_older_than(now - self.check_in_retention)),
            ("audit_logs", lambda s: purge_audit_log(s, now - self.audit_log_retention)),
            ("queue_jobs", lambda s: self.queue.purge_finished(now - self.queue_job_retention, session=s)),
        ]
        for name, purge in steps:
            async with self.session_maker() as session:
                try:
                    deleted = await purge(session)
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    logger.exception("Cleanup: failed to purge %s", name)
                    result.errors.append(f"{name}: {e}")
                    continue
            setattr(result, name, deleted)
            if deleted:
                metrics.cleanup_deleted_total.labels(table=name).inc(deleted)
        logger.info(
            "Cleanup: switches=%s messages=%s check_ins=%s audit_logs=%s queue_jobs=%s errors=%s",
            result.switches,
            result.messages,
            result.check_ins,
            result.audit_logs,
            result.queue_jobs,
            len(result.errors),
        )
        return result
