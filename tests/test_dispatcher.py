"""Tests for the queue dispatcher."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from deadswitch.queue.dispatcher import QueueDispatcher
from deadswitch.queue.work_queue import CHECK_SWITCHES, SEND_NOTIFICATIONS, JobStatus, WorkQueue


@pytest.mark.asyncio
async def test_run_job_completes_on_success(work_queue):
    dispatcher = QueueDispatcher(work_queue)
    handler = AsyncMock(return_value=None)
    await work_queue.enqueue(SEND_NOTIFICATIONS, {"message_id": "m1"})
    job = await work_queue.claim(SEND_NOTIFICATIONS)

    assert await dispatcher.run_job(SEND_NOTIFICATIONS, handler, job) is True

    handler.assert_awaited_once_with({"message_id": "m1"})
    assert (await work_queue.get(job.id)).status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_run_job_failure_is_contained_and_retried(work_queue):
    dispatcher = QueueDispatcher(work_queue)
    handler = AsyncMock(side_effect=RuntimeError("boom"))
    await work_queue.enqueue(SEND_NOTIFICATIONS, {"message_id": "m1"})
    job = await work_queue.claim(SEND_NOTIFICATIONS)

    assert await dispatcher.run_job(SEND_NOTIFICATIONS, handler, job) is False

    row = await work_queue.get(job.id)
    assert row.status == JobStatus.PENDING.value
    assert row.last_error == "RuntimeError: boom"


@pytest.mark.asyncio
async def test_run_job_marks_failed_when_out_of_attempts(session_maker):
    queue = WorkQueue(session_maker, max_attempts=1)
    dispatcher = QueueDispatcher(queue)
    await queue.enqueue(SEND_NOTIFICATIONS, {})
    job = await queue.claim(SEND_NOTIFICATIONS)

    await dispatcher.run_job(SEND_NOTIFICATIONS, AsyncMock(side_effect=ValueError("bad payload")), job)

    assert (await queue.get(job.id)).status == JobStatus.FAILED.value


@pytest.mark.asyncio
async def test_recurring_tick_is_skipped_while_previous_run_is_live(work_queue):
    dispatcher = QueueDispatcher(work_queue)

    await dispatcher._enqueue_recurring(CHECK_SWITCHES, {"triggered_by": "cron"})
    await dispatcher._enqueue_recurring(CHECK_SWITCHES, {"triggered_by": "cron"})

    assert (await work_queue.stats(CHECK_SWITCHES)).pending == 1


def test_schedule_recurring_registers_cron_job(work_queue):
    dispatcher = QueueDispatcher(work_queue)
    dispatcher.schedule_recurring(CHECK_SWITCHES, "0 * * * *", {"triggered_by": "cron"})

    jobs = {job.id: job for job in dispatcher.scheduler.get_jobs()}
    assert "recurring:check-switches" in jobs
    assert jobs["recurring:check-switches"].args == (CHECK_SWITCHES, {"triggered_by": "cron"})


def test_schedule_recurring_rejects_bad_crontab(work_queue):
    with pytest.raises(ValueError):
        QueueDispatcher(work_queue).schedule_recurring(CHECK_SWITCHES, "every hour")


def test_duplicate_consumer_registration_is_rejected(work_queue):
    dispatcher = QueueDispatcher(work_queue)
    dispatcher.register_consumer(CHECK_SWITCHES, AsyncMock())
    with pytest.raises(ValueError):
        dispatcher.register_consumer(CHECK_SWITCHES, AsyncMock())


@pytest.mark.asyncio
async def test_started_dispatcher_consumes_jobs_and_survives_failures(work_queue):
    dispatcher = QueueDispatcher(work_queue, poll_interval_seconds=0.05)
    seen = []
    done = asyncio.Event()

    async def handler(payload):
        seen.append(payload["n"])
        if payload["n"] == 1:
            raise RuntimeError("first job fails")
        done.set()

    dispatcher.register_consumer(SEND_NOTIFICATIONS, handler, concurrency=2)
    await work_queue.enqueue(SEND_NOTIFICATIONS, {"n": 1})
    await work_queue.enqueue(SEND_NOTIFICATIONS, {"n": 2})

    await dispatcher.start()
    assert dispatcher.running
    try:
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        await dispatcher.shutdown(timeout=5)

    assert not dispatcher.running
    assert sorted(seen) == [1, 2]
    stats = await dispatcher.stats()
    assert stats[SEND_NOTIFICATIONS]["completed"] == 1
    # The failed job waits out its backoff before it is retried
    assert stats[SEND_NOTIFICATIONS]["pending"] == 1
