from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.domain.errors import NotFound, RepositoryError, VersionConflict
from deadswitch.domain.message import Message
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import coerce_utc
from deadswitch.models.message import MessageRecord


def _to_domain(row: MessageRecord) -> Message:
    return Message(
        id=row.id,
        switch_id=row.switch_id,
        recipient_email=row.recipient_email,
        recipient_name=row.recipient_name,
        subject=row.subject,
        encrypted_content=row.encrypted_content,
        is_sent=row.is_sent,
        sent_at=coerce_utc(row.sent_at),
        delivery_attempts=row.delivery_attempts,
        last_attempt_at=coerce_utc(row.last_attempt_at),
        failure_reason=row.failure_reason,
        failed_at=coerce_utc(row.failed_at),
        idempotency_key=row.idempotency_key,
        deleted_at=coerce_utc(row.deleted_at),
        version=row.version,
        created_at=coerce_utc(row.created_at),
        updated_at=coerce_utc(row.updated_at),
    )


def _values(message: Message) -> dict:
    # idempotency_key is fixed at creation and never rewritten
    return {
        "switch_id": message.switch_id,
        "recipient_email": message.recipient_email,
        "recipient_name": message.recipient_name,
        "subject": message.subject,
        "encrypted_content": message.encrypted_content,
        "is_sent": message.is_sent,
        "sent_at": message.sent_at,
        "delivery_attempts": message.delivery_attempts,
        "last_attempt_at": message.last_attempt_at,
        "failure_reason": message.failure_reason,
        "failed_at": message.failed_at,
        "deleted_at": message.deleted_at,
        "version": message.version,
        "created_at": message.created_at,
        "updated_at": message.updated_at,
    }


class MessageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, message_id: str) -> Message | None:
        try:
            row = await self.session.get(MessageRecord, message_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load message {message_id}") from e
        return _to_domain(row) if row is not None else None

    async def add(self, message: Message) -> Message:
        try:
            self.session.add(
                MessageRecord(id=message.id, idempotency_key=message.idempotency_key, **_values(message))
            )
            await self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to insert message {message.id}") from e
        return message

    async def update(self, message: Message, expected_version: int) -> Result[Message, VersionConflict | NotFound]:
        stmt = (
            update(MessageRecord)
            .where(MessageRecord.id == message.id, MessageRecord.version == expected_version)
            .values(**_values(message))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                return Ok(message)
            exists = await self.session.scalar(select(MessageRecord.id).where(MessageRecord.id == message.id))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to update message {message.id}") from e
        if exists is None:
            return Err(NotFound(f"Message {message.id} not found", entity="message", entity_id=message.id))
        return Err(
            VersionConflict(
                f"Message {message.id} was modified concurrently",
                entity="message",
                entity_id=message.id,
                expected_version=expected_version,
            )
        )

    async def find_unsent_by_switch(self, switch_id: str) -> list[Message]:
        """Messages still waiting for delivery: not sent, not deleted, not failed."""
        stmt = (
            select(MessageRecord)
            .where(
                MessageRecord.switch_id == switch_id,
                MessageRecord.is_sent.is_(False),
                MessageRecord.deleted_at.is_(None),
                MessageRecord.failed_at.is_(None),
            )
            .order_by(MessageRecord.created_at, MessageRecord.id)
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load unsent messages for switch {switch_id}") from e
        return [_to_domain(row) for row in rows]

    async def find_undeliverable(self, limit: int = 100) -> list[Message]:
        """Messages that stopped retrying and need an operator."""
        stmt = (
            select(MessageRecord)
            .where(MessageRecord.is_sent.is_(False), MessageRecord.failed_at.is_not(None))
            .order_by(MessageRecord.failed_at.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_domain(row) for row in rows]

    async def purge_soft_deleted(self, cutoff: datetime) -> int:
        try:
            result = await self.session.execute(
                delete(MessageRecord)
                .where(MessageRecord.deleted_at.is_not(None), MessageRecord.deleted_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise RepositoryError("Failed to purge soft-deleted messages") from e
        return result.rowcount or 0
