"""
Queue dispatcher: cron schedules plus supervised consumer pools.

Constructed explicitly by the process entry point, handed to the job
registry, then started and shut down by the same entry point. Each queue gets
its own pool of consumer tasks; a handler that raises is logged and the job is
failed under the queue's retry policy. Nothing a handler does can stop a
consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from deadswitch import metrics
from deadswitch.queue.work_queue import ClaimedJob, JobStatus, WorkQueue

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[Any]]


@dataclass
class _Consumer:
    queue: str
    handler: Handler
    concurrency: int
    tasks: list[asyncio.Task] = field(default_factory=list)


class QueueDispatcher:
    def __init__(
        self,
        queue: WorkQueue,
        *,
        poll_interval_seconds: float = 2.0,
        stale_check_interval_seconds: float = 60.0,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.queue = queue
        self.poll_interval = poll_interval_seconds
        self.stale_check_interval = stale_check_interval_seconds
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._consumers: dict[str, _Consumer] = {}
        self._stopping = asyncio.Event()
        self._started = False

    @property
    def queues(self) -> list[str]:
        return list(self._consumers)

    @property
    def running(self) -> bool:
        return self._started and not self._stopping.is_set()

    def register_consumer(self, queue: str, handler: Handler, concurrency: int = 1) -> None:
        if self._started:
            raise RuntimeError("Cannot register consumers after the dispatcher has started")
        if queue in self._consumers:
            raise ValueError(f"Consumer already registered for queue {queue!r}")
        self._consumers[queue] = _Consumer(queue=queue, handler=handler, concurrency=max(1, concurrency))

    def schedule_recurring(self, queue: str, cron: str, payload: dict | None = None) -> None:
        """Enqueue ``payload`` on ``queue`` every time the crontab expression fires."""
        trigger = CronTrigger.from_crontab(cron, timezone="UTC")
        self.scheduler.add_job(
            self._enqueue_recurring,
            trigger,
            args=[queue, payload or {}],
            id=f"recurring:{queue}",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Dispatcher: scheduled %s with cron '%s'", queue, cron)

    async def _enqueue_recurring(self, queue: str, payload: dict) -> None:
        try:
            # One live run per recurring queue; a slow run absorbs overlapping ticks
            job_id = await self.queue.enqueue(queue, payload, dedupe_key=f"recurring:{queue}")
        except Exception:
            logger.exception("Dispatcher: failed to enqueue recurring job for %s", queue)
            return
        if job_id is None:
            logger.info("Dispatcher: %s still pending from previous tick, skipping", queue)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._stopping.clear()
        self.scheduler.add_job(
            self._recover_stale,
            "interval",
            seconds=self.stale_check_interval,
            id="queue:recover-stale",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        for consumer in self._consumers.values():
            for index in range(consumer.concurrency):
                task = asyncio.create_task(
                    self._consume(consumer, index), name=f"consumer:{consumer.queue}:{index}"
                )
                consumer.tasks.append(task)
        logger.info(
            "Dispatcher: started %s",
            ", ".join(f"{c.queue}x{c.concurrency}" for c in self._consumers.values()) or "no consumers",
        )

    async def shutdown(self, timeout: float | None = 30.0) -> None:
        """Stop claiming, wait for in-flight jobs, then stop the scheduler."""
        if not self._started:
            return
        self._stopping.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        tasks = [task for consumer in self._consumers.values() for task in consumer.tasks]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                logger.warning("Dispatcher: %s did not finish in time, cancelling", task.get_name())
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        for consumer in self._consumers.values():
            consumer.tasks.clear()
        self._started = False
        logger.info("Dispatcher: stopped")

    async def _consume(self, consumer: _Consumer, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.claim(consumer.queue)
            except Exception:
                logger.exception("Dispatcher: claim failed on %s (worker %s)", consumer.queue, index)
                job = None
            if job is None:
                await self._idle()
                continue
            await self.run_job(consumer.queue, consumer.handler, job)

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def run_job(self, queue: str, handler: Handler, job: ClaimedJob) -> bool:
        """Run one claimed job and settle it in the queue. Returns True on success."""
        started = time.monotonic()
        try:
            await handler(job.payload)
        except Exception as e:
            logger.exception("Dispatcher: job %s on %s failed (attempt %s/%s)", job.id, queue, job.attempts, job.max_attempts)
            metrics.queue_jobs_total.labels(queue=queue, outcome="error").inc()
            try:
                status = await self.queue.fail(job.id, f"{type(e).__name__}: {e}")
            except Exception:
                logger.exception("Dispatcher: could not record failure of job %s", job.id)
                return False
            if status is JobStatus.FAILED:
                logger.error("Dispatcher: job %s on %s exhausted its retries", job.id, queue)
            return False
        finally:
            metrics.queue_job_duration.labels(queue=queue).observe(time.monotonic() - started)
        try:
            await self.queue.complete(job.id)
        except Exception:
            # Lease expiry will hand the job back; handlers are idempotent
            logger.exception("Dispatcher: could not mark job %s completed", job.id)
            return False
        metrics.queue_jobs_total.labels(queue=queue, outcome="completed").inc()
        return True

    async def _recover_stale(self) -> None:
        try:
            recovered = await self.queue.recover_stale()
        except Exception:
            logger.exception("Dispatcher: stale job recovery failed")
            return
        if recovered:
            metrics.stale_jobs_recovered_total.inc(recovered)

    async def stats(self) -> dict[str, dict]:
        result = {}
        for queue in self._consumers:
            stats = await self.queue.stats(queue)
            for status, count in stats.as_dict().items():
                metrics.queue_depth.labels(queue=queue, status=status).set(count)
            result[queue] = stats.as_dict()
        return result
