"""Tests for the check-switches scanner."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import T0, make_message, make_switch, store
from deadswitch.domain.switch import SwitchStatus
from deadswitch.jobs.check_switches import CheckSwitchesProcessor
from deadswitch.models.audit_log import AuditLog
from deadswitch.queue.work_queue import SEND_NOTIFICATIONS
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services import audit


@pytest.mark.asyncio
async def test_triggers_expired_switch_and_enqueues_each_unsent_message(session_maker, work_queue):
    switch = make_switch(interval=7, grace=2)
    first = make_message(switch.id, email="a@example.com")
    second = make_message(switch.id, email="b@example.com")
    already = make_message(switch.id, email="c@example.com")
    already.mark_as_sent(T0)
    await store(session_maker, switch, first, second, already)

    processor = CheckSwitchesProcessor(session_maker, work_queue, batch_size=10)
    summary = await processor.run(now=T0 + timedelta(days=9, seconds=1))

    assert summary.scanned == 1
    assert summary.triggered == 1
    assert summary.enqueued == 2
    assert summary.errors == 0

    async with session_maker() as session:
        stored = await SwitchRepository(session).get(switch.id)
        actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert stored.status is SwitchStatus.TRIGGERED
    assert audit.SWITCH_TRIGGERED in actions

    payloads = []
    while (job := await work_queue.claim(SEND_NOTIFICATIONS)) is not None:
        payloads.append(job.payload)
    assert sorted(p["message_id"] for p in payloads) == sorted([first.id, second.id])
    assert all(p["attempt"] == 1 and p["switch_id"] == switch.id for p in payloads)


@pytest.mark.asyncio
async def test_rerun_is_a_no_op(session_maker, work_queue):
    switch = make_switch(interval=1, grace=0)
    await store(session_maker, switch, make_message(switch.id))
    processor = CheckSwitchesProcessor(session_maker, work_queue)
    now = T0 + timedelta(days=2)

    assert (await processor.run(now=now)).triggered == 1
    again = await processor.run(now=now)
    assert again.scanned == 0
    assert again.triggered == 0
    assert (await work_queue.stats(SEND_NOTIFICATIONS)).pending == 1


@pytest.mark.asyncio
async def test_nothing_happens_inside_grace_period(session_maker, work_queue):
    switch = make_switch(interval=7, grace=2)
    await store(session_maker, switch, make_message(switch.id))
    summary = await CheckSwitchesProcessor(session_maker, work_queue).run(now=T0 + timedelta(days=8))
    assert summary.triggered == 0
    assert (await work_queue.stats(SEND_NOTIFICATIONS)).pending == 0


@pytest.mark.asyncio
async def test_concurrent_check_in_wins_and_switch_is_skipped(session_maker, work_queue, monkeypatch):
    switch = make_switch(interval=1, grace=0)
    await store(session_maker, switch, make_message(switch.id))
    now = T0 + timedelta(days=2)

    original = SwitchRepository.find_due_for_trigger

    async def find_then_check_in(self, *args, **kwargs):
        page = await original(self, *args, **kwargs)
        # Owner checks in between the scan read and the trigger write
        async with session_maker() as other:
            repo = SwitchRepository(other)
            current = await repo.get(switch.id)
            if current.status is SwitchStatus.ACTIVE:
                version = current.version
                current.check_in(now)
                await repo.update(current, version)
                await other.commit()
        return page

    monkeypatch.setattr(SwitchRepository, "find_due_for_trigger", find_then_check_in)
    summary = await CheckSwitchesProcessor(session_maker, work_queue).run(now=now)

    assert summary.triggered == 0
    assert summary.skipped == 1
    async with session_maker() as session:
        assert (await SwitchRepository(session).get(switch.id)).status is SwitchStatus.ACTIVE
    assert (await work_queue.stats(SEND_NOTIFICATIONS)).pending == 0


@pytest.mark.asyncio
async def test_failure_on_one_switch_does_not_abort_batch(session_maker, work_queue):
    broken = make_switch(interval=1, grace=0, name="Broken switch")
    healthy = make_switch(interval=1, grace=0, name="Healthy switch")
    await store(session_maker, broken, make_message(broken.id))
    await store(session_maker, healthy, make_message(healthy.id))

    real_enqueue = work_queue.enqueue

    async def flaky_enqueue(queue, payload, **kwargs):
        if payload["switch_id"] == broken.id:
            raise RuntimeError("queue unavailable")
        return await real_enqueue(queue, payload, **kwargs)

    work_queue.enqueue = AsyncMock(side_effect=flaky_enqueue)
    summary = await CheckSwitchesProcessor(session_maker, work_queue, batch_size=1).run(now=T0 + timedelta(days=2))

    assert summary.scanned == 2
    assert summary.triggered == 1
    assert summary.errors == 1
    async with session_maker() as session:
        repo = SwitchRepository(session)
        # The failed switch rolled back with its jobs and will be retried next tick
        assert (await repo.get(broken.id)).status is SwitchStatus.ACTIVE
        assert (await repo.get(healthy.id)).status is SwitchStatus.TRIGGERED
