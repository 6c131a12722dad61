from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.models.audit_log import AuditLog

SWITCH_TRIGGERED = "SWITCH_TRIGGERED"
SWITCH_CHECK_IN = "SWITCH_CHECK_IN"
MESSAGE_SENT = "MESSAGE_SENT"
MESSAGE_DELIVERY_FAILED = "MESSAGE_DELIVERY_FAILED"
MESSAGE_RECONCILIATION_REQUIRED = "MESSAGE_RECONCILIATION_REQUIRED"
REMINDER_SENT = "REMINDER_SENT"


async def log_action(
    session: AsyncSession,
    owner_id: str | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    details: dict | None = None,
) -> None:
    session.add(
        AuditLog(
            owner_id=owner_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
        )
    )
    await session.flush()


async def purge_audit_log(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(
        delete(AuditLog).where(AuditLog.created_at < cutoff).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
