"""Tests for the owner check-in service."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import T0, make_switch, store
from deadswitch.domain.errors import InvalidStateError, NotFound, ValidationError, VersionConflict
from deadswitch.domain.result import Err
from deadswitch.domain.switch import SwitchStatus
from deadswitch.models.audit_log import AuditLog
from deadswitch.repositories.check_ins import CheckInRepository
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services import audit
from deadswitch.services.check_in import perform_check_in

LATER = T0 + timedelta(days=5)


@pytest.mark.asyncio
async def test_check_in_moves_deadline_and_records_history(session_maker):
    switch = make_switch(interval=7)
    await store(session_maker, switch)

    async with session_maker() as session:
        result = await perform_check_in(
            session, switch.id, "owner@example.com", now=LATER, ip_address="203.0.113.7", notes="all good"
        )

    assert result.is_ok
    assert result.value.ip_address == "203.0.113.7"
    async with session_maker() as session:
        stored = await SwitchRepository(session).get(switch.id)
        history = await CheckInRepository(session).list_for_switch(switch.id)
        actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert stored.last_check_in == LATER
    assert stored.next_check_in_due == LATER + timedelta(days=7)
    assert stored.version == switch.version + 1
    assert [c.notes for c in history] == ["all good"]
    assert actions == [audit.SWITCH_CHECK_IN]


@pytest.mark.asyncio
async def test_check_in_reactivates_paused_switch(session_maker):
    switch = make_switch()
    switch.pause(T0)
    await store(session_maker, switch)

    async with session_maker() as session:
        assert (await perform_check_in(session, switch.id, "owner@example.com", now=LATER)).is_ok

    async with session_maker() as session:
        assert (await SwitchRepository(session).get(switch.id)).status is SwitchStatus.ACTIVE


@pytest.mark.asyncio
async def test_foreign_switch_looks_missing(session_maker):
    switch = make_switch()
    await store(session_maker, switch)

    async with session_maker() as session:
        result = await perform_check_in(session, switch.id, "intruder@example.com", now=LATER)

    assert isinstance(result.error, NotFound)


@pytest.mark.asyncio
async def test_triggered_switch_rejects_check_in(session_maker):
    switch = make_switch(interval=1, grace=0)
    switch.trigger(T0 + timedelta(days=2))
    await store(session_maker, switch)

    async with session_maker() as session:
        result = await perform_check_in(session, switch.id, "owner@example.com", now=T0 + timedelta(days=3))

    assert isinstance(result.error, InvalidStateError)
    async with session_maker() as session:
        assert await CheckInRepository(session).list_for_switch(switch.id) == []


@pytest.mark.asyncio
async def test_invalid_metadata_is_rejected(session_maker):
    switch = make_switch()
    await store(session_maker, switch)

    async with session_maker() as session:
        result = await perform_check_in(session, switch.id, "owner@example.com", now=LATER, location="x" * 201)

    assert isinstance(result.error, ValidationError)
    async with session_maker() as session:
        assert (await SwitchRepository(session).get(switch.id)).last_check_in is None


@pytest.mark.asyncio
async def test_lost_race_writes_nothing(session_maker, monkeypatch):
    switch = make_switch()
    await store(session_maker, switch)

    async def conflicting_update(self, sw, expected_version):
        return Err(VersionConflict("moved on", entity="switch", entity_id=sw.id, expected_version=expected_version))

    monkeypatch.setattr(SwitchRepository, "update", conflicting_update)
    async with session_maker() as session:
        result = await perform_check_in(session, switch.id, "owner@example.com", now=LATER)

    assert isinstance(result.error, VersionConflict)
    monkeypatch.undo()
    async with session_maker() as session:
        assert await CheckInRepository(session).list_for_switch(switch.id) == []
        assert (await SwitchRepository(session).get(switch.id)).version == switch.version
