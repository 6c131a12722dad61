"""Owner check-in: move the deadline forward and record the event in one transaction."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.domain.check_in import CheckIn
from deadswitch.domain.errors import InvalidStateError, NotFound, ValidationError, VersionConflict
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import utc_now
from deadswitch.repositories.check_ins import CheckInRepository
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services import audit

logger = logging.getLogger(__name__)


async def perform_check_in(
    session: AsyncSession,
    switch_id: str,
    owner_id: str,
    *,
    now: datetime | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    location: str | None = None,
    notes: str | None = None,
) -> Result[CheckIn, NotFound | InvalidStateError | ValidationError | VersionConflict]:
    """
    Check in on ``switch_id`` for ``owner_id``.

    Commits on success. On any ``Err`` the session is rolled back so neither
    the switch nor the history row is written.
    """
    now = now or utc_now()
    switches = SwitchRepository(session)
    switch = await switches.get(switch_id)
    # A foreign switch looks the same as a missing one
    if switch is None or switch.owner_id != owner_id or switch.is_deleted:
        return Err(NotFound(f"Switch {switch_id} not found", entity="switch", entity_id=switch_id))

    created = CheckIn.create(
        switch_id=switch_id,
        timestamp=now,
        ip_address=ip_address,
        user_agent=user_agent,
        location=location,
        notes=notes,
    )
    if created.is_err:
        return created

    expected_version = switch.version
    transition = switch.check_in(now)
    if transition.is_err:
        return transition

    try:
        saved = await switches.update(switch, expected_version)
        if saved.is_err:
            await session.rollback()
            logger.info("Check-in on switch %s lost a concurrent update: %s", switch_id, saved.error)
            return saved
        check_in = await CheckInRepository(session).add(created.value)
        await audit.log_action(
            session,
            owner_id,
            audit.SWITCH_CHECK_IN,
            "switch",
            switch_id,
            details={"next_check_in_due": switch.next_check_in_due.isoformat()},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Switch %s checked in; next due %s", switch_id, switch.next_check_in_due.isoformat())
    return Ok(check_in)
