"""
Durable, database-backed work queue.

Jobs live in ``queue_jobs``. A consumer claims a job by flipping it from
pending to running in a single guarded UPDATE (plus ``FOR UPDATE SKIP
LOCKED`` on PostgreSQL), so two consumers never run the same claim. A
consumer that dies mid-job leaves a running row behind; once its lease is
older than the visibility timeout ``recover_stale`` hands it back to pending.
Delivery is therefore at-least-once and handlers must be idempotent.

Queue retries (exponential backoff, ``max_attempts``) only cover handlers
that *raise*. They are unrelated to a message's own delivery attempts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch.domain.timeutil import utc_now
from deadswitch.models.queue_job import QueueJob

logger = logging.getLogger(__name__)

CHECK_SWITCHES = "check-switches"
SEND_NOTIFICATIONS = "send-notifications"
SEND_REMINDERS = "send-reminders"
CLEANUP = "cleanup"

# Upper bound on claim races lost in a row before giving up for this poll
_CLAIM_RETRIES = 3
_MAX_ERROR_LENGTH = 2000


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


LIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)
FINISHED_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


@dataclass(frozen=True)
class ClaimedJob:
    id: int
    queue: str
    payload: dict
    attempts: int
    max_attempts: int


@dataclass(frozen=True)
class QueueStats:
    queue: str
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
        }


class WorkQueue:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        max_attempts: int = 3,
        retry_base_seconds: int = 5,
        visibility_timeout_seconds: int = 300,
    ):
        self.session_maker = session_maker
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)

    async def enqueue(
        self,
        queue: str,
        payload: dict,
        *,
        delay: timedelta | None = None,
        dedupe_key: str | None = None,
        max_attempts: int | None = None,
        session: AsyncSession | None = None,
        now: datetime | None = None,
    ) -> int | None:
        """
        Add a job; returns its id, or None when a live job with ``dedupe_key`` exists.

        With ``session`` the row joins the caller's transaction and is only
        visible once the caller commits.
        """
        now = now or utc_now()
        job = QueueJob(
            queue=queue,
            payload=payload,
            status=JobStatus.PENDING.value,
            run_at=now + delay if delay else now,
            attempts=0,
            max_attempts=max_attempts or self.max_attempts,
            dedupe_key=dedupe_key,
            created_at=now,
        )
        if session is not None:
            if dedupe_key and await self._live_duplicate(session, dedupe_key):
                return None
            session.add(job)
            await session.flush()
            return job.id

        async with self.session_maker() as own:
            if dedupe_key and await self._live_duplicate(own, dedupe_key):
                return None
            own.add(job)
            try:
                await own.commit()
            except IntegrityError:
                await own.rollback()
                logger.debug("Queue %s: duplicate job dropped (dedupe_key=%s)", queue, dedupe_key)
                return None
            return job.id

    @staticmethod
    async def _live_duplicate(session: AsyncSession, dedupe_key: str) -> bool:
        existing = await session.scalar(
            select(QueueJob.id).where(QueueJob.dedupe_key == dedupe_key, QueueJob.status.in_(LIVE_STATUSES))
        )
        return existing is not None

    async def claim(self, queue: str, now: datetime | None = None) -> ClaimedJob | None:
        """Take the oldest due pending job on ``queue``, or None."""
        now = now or utc_now()
        async with self.session_maker() as session:
            for _ in range(_CLAIM_RETRIES):
                candidate = await session.scalar(
                    select(QueueJob.id)
                    .where(
                        QueueJob.queue == queue,
                        QueueJob.status == JobStatus.PENDING.value,
                        QueueJob.run_at <= now,
                    )
                    .order_by(QueueJob.run_at, QueueJob.id)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                if candidate is None:
                    await session.rollback()
                    return None
                result = await session.execute(
                    update(QueueJob)
                    .where(QueueJob.id == candidate, QueueJob.status == JobStatus.PENDING.value)
                    .values(
                        status=JobStatus.RUNNING.value,
                        locked_at=now,
                        attempts=QueueJob.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # Another consumer won this row
                    await session.rollback()
                    continue
                row = (
                    await session.execute(
                        select(QueueJob).where(QueueJob.id == candidate).execution_options(populate_existing=True)
                    )
                ).scalar_one()
                claimed = ClaimedJob(
                    id=row.id,
                    queue=row.queue,
                    payload=dict(row.payload or {}),
                    attempts=row.attempts,
                    max_attempts=row.max_attempts,
                )
                await session.commit()
                return claimed
        return None

    async def complete(self, job_id: int, now: datetime | None = None) -> None:
        now = now or utc_now()
        async with self.session_maker() as session:
            await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.status == JobStatus.RUNNING.value)
                .values(status=JobStatus.COMPLETED.value, completed_at=now, locked_at=None, last_error=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def fail(self, job_id: int, error: str, now: datetime | None = None) -> JobStatus | None:
        """
        Record a handler failure. Back to pending with exponential backoff while
        attempts remain, otherwise failed for good. Returns the new status.
        """
        now = now or utc_now()
        async with self.session_maker() as session:
            row = await session.get(QueueJob, job_id, populate_existing=True)
            if row is None or row.status != JobStatus.RUNNING.value:
                return None
            row.last_error = (error or "")[:_MAX_ERROR_LENGTH]
            row.locked_at = None
            if row.attempts < row.max_attempts:
                row.status = JobStatus.PENDING.value
                row.run_at = now + self.backoff(row.attempts)
            else:
                row.status = JobStatus.FAILED.value
                row.completed_at = now
            status = JobStatus(row.status)
            await session.commit()
            return status

    def backoff(self, attempts: int) -> timedelta:
        """Delay before retry number ``attempts``: base, 2*base, 4*base..."""
        return timedelta(seconds=self.retry_base_seconds * 2 ** max(0, attempts - 1))

    async def recover_stale(self, now: datetime | None = None) -> int:
        """Return running jobs whose lease expired to pending (or failed when out of attempts)."""
        now = now or utc_now()
        cutoff = now - self.visibility_timeout
        stale = (
            QueueJob.status == JobStatus.RUNNING.value,
            QueueJob.locked_at.is_not(None),
            QueueJob.locked_at < cutoff,
        )
        async with self.session_maker() as session:
            exhausted = await session.execute(
                update(QueueJob)
                .where(*stale, QueueJob.attempts >= QueueJob.max_attempts)
                .values(
                    status=JobStatus.FAILED.value,
                    completed_at=now,
                    locked_at=None,
                    last_error="Lease expired after final attempt",
                )
                .execution_options(synchronize_session=False)
            )
            requeued = await session.execute(
                update(QueueJob)
                .where(*stale)
                .values(status=JobStatus.PENDING.value, locked_at=None, run_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        recovered = (exhausted.rowcount or 0) + (requeued.rowcount or 0)
        if recovered:
            logger.warning(
                "Queue: recovered %s stale job(s) (%s requeued, %s failed)",
                recovered,
                requeued.rowcount or 0,
                exhausted.rowcount or 0,
            )
        return recovered

    async def stats(self, queue: str) -> QueueStats:
        async with self.session_maker() as session:
            rows = (
                await session.execute(
                    select(QueueJob.status, func.count()).where(QueueJob.queue == queue).group_by(QueueJob.status)
                )
            ).all()
        counts = {status: count for status, count in rows}
        return QueueStats(
            queue=queue,
            pending=counts.get(JobStatus.PENDING.value, 0),
            running=counts.get(JobStatus.RUNNING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
        )

    async def get(self, job_id: int) -> QueueJob | None:
        async with self.session_maker() as session:
            return await session.get(QueueJob, job_id)

    async def purge_finished(self, cutoff: datetime, session: AsyncSession | None = None) -> int:
        """Delete completed/failed jobs that finished before ``cutoff``."""
        stmt = (
            delete(QueueJob)
            .where(
                QueueJob.status.in_(FINISHED_STATUSES),
                QueueJob.completed_at.is_not(None),
                QueueJob.completed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            result = await session.execute(stmt)
            return result.rowcount or 0
        async with self.session_maker() as own:
            result = await own.execute(stmt)
            await own.commit()
            return result.rowcount or 0
