"""
Switch persistence with compare-and-swap updates.

``update`` writes only when the stored version still equals the version the
caller read; a lost race comes back as ``Err(VersionConflict)`` so the scanner
can skip the switch instead of triggering it twice.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.domain.errors import NotFound, RepositoryError, VersionConflict
from deadswitch.domain.monitoring import is_reminder_due
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.switch import MAX_INTERVAL_DAYS, Switch, SwitchStatus
from deadswitch.domain.timeutil import coerce_utc
from deadswitch.models.check_in import CheckInRecord
from deadswitch.models.message import MessageRecord
from deadswitch.models.switch import SwitchRecord

# Keyset cursor: (next_check_in_due, id) of the last row scanned
Cursor = tuple[datetime, str]


def _to_domain(row: SwitchRecord) -> Switch:
    return Switch(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        description=row.description,
        check_in_interval_days=row.check_in_interval_days,
        grace_period_days=row.grace_period_days,
        status=SwitchStatus(row.status),
        last_check_in=coerce_utc(row.last_check_in),
        next_check_in_due=coerce_utc(row.next_check_in_due),
        triggered_at=coerce_utc(row.triggered_at),
        deleted_at=coerce_utc(row.deleted_at),
        version=row.version,
        created_at=coerce_utc(row.created_at),
        updated_at=coerce_utc(row.updated_at),
    )


def _values(switch: Switch) -> dict:
    return {
        "owner_id": switch.owner_id,
        "name": switch.name,
        "description": switch.description,
        "check_in_interval_days": switch.check_in_interval_days,
        "grace_period_days": switch.grace_period_days,
        "status": switch.status.value,
        "last_check_in": switch.last_check_in,
        "next_check_in_due": switch.next_check_in_due,
        "triggered_at": switch.triggered_at,
        "deleted_at": switch.deleted_at,
        "version": switch.version,
        "created_at": switch.created_at,
        "updated_at": switch.updated_at,
    }


def _after(cursor: Cursor | None):
    if cursor is None:
        return None
    due, switch_id = cursor
    return or_(
        SwitchRecord.next_check_in_due > due,
        and_(SwitchRecord.next_check_in_due == due, SwitchRecord.id > switch_id),
    )


class SwitchRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, switch_id: str) -> Switch | None:
        try:
            row = await self.session.get(SwitchRecord, switch_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load switch {switch_id}") from e
        return _to_domain(row) if row is not None else None

    async def add(self, switch: Switch) -> Switch:
        try:
            self.session.add(SwitchRecord(id=switch.id, **_values(switch)))
            await self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to insert switch {switch.id}") from e
        return switch

    async def update(self, switch: Switch, expected_version: int) -> Result[Switch, VersionConflict | NotFound]:
        """Write ``switch`` only if the stored row is still at ``expected_version``."""
        stmt = (
            update(SwitchRecord)
            .where(SwitchRecord.id == switch.id, SwitchRecord.version == expected_version)
            .values(**_values(switch))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                return Ok(switch)
            exists = await self.session.scalar(select(SwitchRecord.id).where(SwitchRecord.id == switch.id))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to update switch {switch.id}") from e
        if exists is None:
            return Err(NotFound(f"Switch {switch.id} not found", entity="switch", entity_id=switch.id))
        return Err(
            VersionConflict(
                f"Switch {switch.id} was modified concurrently",
                entity="switch",
                entity_id=switch.id,
                expected_version=expected_version,
            )
        )

    async def find_due_for_trigger(
        self, now: datetime, limit: int, after: Cursor | None = None
    ) -> tuple[list[Switch], Cursor | None]:
        """
        One page of switches that should trigger at ``now``.

        SQL narrows to ACTIVE, non-deleted, past-due rows; the grace period is
        applied in Python with ``should_trigger``. The returned cursor points at
        the last row *scanned* (not the last one returned), or None when the
        page was short and there is nothing left.
        """
        stmt = (
            select(SwitchRecord)
            .where(
                SwitchRecord.status == SwitchStatus.ACTIVE.value,
                SwitchRecord.deleted_at.is_(None),
                SwitchRecord.next_check_in_due.is_not(None),
                SwitchRecord.next_check_in_due < now,
            )
            .order_by(SwitchRecord.next_check_in_due, SwitchRecord.id)
            .limit(limit)
        )
        condition = _after(after)
        if condition is not None:
            stmt = stmt.where(condition)
        return await self._page(stmt, limit, lambda s: s.should_trigger(now))

    async def find_reminder_candidates(
        self, now: datetime, limit: int, after: Cursor | None = None, threshold: float = 0.9
    ) -> tuple[list[Switch], Cursor | None]:
        """ACTIVE, non-deleted switches not yet past due whose deadline is near enough for a reminder."""
        horizon = now + timedelta(days=MAX_INTERVAL_DAYS) * max(0.0, 1 - threshold)
        stmt = (
            select(SwitchRecord)
            .where(
                SwitchRecord.status == SwitchStatus.ACTIVE.value,
                SwitchRecord.deleted_at.is_(None),
                SwitchRecord.next_check_in_due.is_not(None),
                SwitchRecord.next_check_in_due >= now,
                SwitchRecord.next_check_in_due <= horizon,
            )
            .order_by(SwitchRecord.next_check_in_due, SwitchRecord.id)
            .limit(limit)
        )
        condition = _after(after)
        if condition is not None:
            stmt = stmt.where(condition)
        return await self._page(stmt, limit, lambda s: is_reminder_due(s, now, threshold))

    async def _page(self, stmt, limit: int, keep) -> tuple[list[Switch], Cursor | None]:
        try:
            rows = list((await self.session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryError("Failed to page switches") from e
        switches = [_to_domain(row) for row in rows]
        cursor: Cursor | None = None
        if len(rows) == limit and switches:
            last = switches[-1]
            cursor = (last.next_check_in_due, last.id)
        return [s for s in switches if keep(s)], cursor

    async def list_by_owner(self, owner_id: str, include_deleted: bool = False) -> list[Switch]:
        stmt = select(SwitchRecord).where(SwitchRecord.owner_id == owner_id).order_by(SwitchRecord.created_at)
        if not include_deleted:
            stmt = stmt.where(SwitchRecord.deleted_at.is_(None))
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_domain(row) for row in rows]

    async def purge_soft_deleted(self, cutoff: datetime) -> int:
        """Hard-delete switches soft-deleted before ``cutoff`` together with their messages and check-ins."""
        doomed = select(SwitchRecord.id).where(
            SwitchRecord.deleted_at.is_not(None), SwitchRecord.deleted_at < cutoff
        )
        try:
            await self.session.execute(
                delete(MessageRecord)
                .where(MessageRecord.switch_id.in_(doomed))
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                delete(CheckInRecord)
                .where(CheckInRecord.switch_id.in_(doomed))
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(
                delete(SwitchRecord)
                .where(SwitchRecord.deleted_at.is_not(None), SwitchRecord.deleted_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise RepositoryError("Failed to purge soft-deleted switches") from e
        return result.rowcount or 0
