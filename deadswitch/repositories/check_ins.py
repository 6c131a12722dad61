from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.domain.check_in import CheckIn
from deadswitch.domain.errors import RepositoryError
from deadswitch.domain.timeutil import coerce_utc
from deadswitch.models.check_in import CheckInRecord


def _to_domain(row: CheckInRecord) -> CheckIn:
    return CheckIn(
        id=row.id,
        switch_id=row.switch_id,
        timestamp=coerce_utc(row.timestamp),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        location=row.location,
        notes=row.notes,
        created_at=coerce_utc(row.created_at),
    )


class CheckInRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, check_in: CheckIn) -> CheckIn:
        try:
            self.session.add(
                CheckInRecord(
                    id=check_in.id,
                    switch_id=check_in.switch_id,
                    timestamp=check_in.timestamp,
                    ip_address=check_in.ip_address,
                    user_agent=check_in.user_agent,
                    location=check_in.location,
                    notes=check_in.notes,
                    created_at=check_in.created_at,
                )
            )
            await self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to insert check-in for switch {check_in.switch_id}") from e
        return check_in

    async def list_for_switch(self, switch_id: str, limit: int = 50) -> list[CheckIn]:
        stmt = (
            select(CheckInRecord)
            .where(CheckInRecord.switch_id == switch_id)
            .order_by(CheckInRecord.timestamp.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_domain(row) for row in rows]

    async def purge_older_than(self, cutoff: datetime) -> int:
        try:
            result = await self.session.execute(
                delete(CheckInRecord)
                .where(CheckInRecord.timestamp < cutoff)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise RepositoryError("Failed to purge old check-ins") from e
        return result.rowcount or 0
