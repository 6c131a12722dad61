"""
Message delivery state.

A message belongs to one switch and is released when the switch triggers.
``is_sent`` only ever goes false -> true. Failure is terminal once
``failed_at`` is set, either by a permanent provider error or by exhausting
the attempt budget.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from deadswitch.domain.errors import InvalidStateError, ValidationError
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import utc_now

MAX_DELIVERY_ATTEMPTS = 5
RECIPIENT_NAME_MIN_LENGTH = 2
RECIPIENT_NAME_MAX_LENGTH = 100
SUBJECT_MAX_LENGTH = 200
CONTENT_MIN_LENGTH = 10
EMAIL_MAX_LENGTH = 254

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


def _validate_email(email: str | None) -> ValidationError | None:
    value = (email or "").strip()
    if not value:
        return ValidationError("Recipient email is required")
    if len(value) > EMAIL_MAX_LENGTH or not _EMAIL_RE.match(value):
        return ValidationError("Invalid recipient email address")
    return None


def _validate_recipient_name(name: str | None) -> ValidationError | None:
    value = (name or "").strip()
    if not RECIPIENT_NAME_MIN_LENGTH <= len(value) <= RECIPIENT_NAME_MAX_LENGTH:
        return ValidationError(
            f"Recipient name must be between {RECIPIENT_NAME_MIN_LENGTH}-{RECIPIENT_NAME_MAX_LENGTH} characters"
        )
    return None


def _validate_subject(subject: str | None) -> ValidationError | None:
    if subject and len(subject) > SUBJECT_MAX_LENGTH:
        return ValidationError(f"Subject cannot exceed {SUBJECT_MAX_LENGTH} characters")
    return None


def _validate_content(content: str | None) -> ValidationError | None:
    if not content:
        return ValidationError("Encrypted content is required")
    if len(content) < CONTENT_MIN_LENGTH:
        return ValidationError("Encrypted content appears invalid (too short)")
    return None


def mask_email(email: str) -> str:
    """j***@example.com style masking for logs."""
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


@dataclass
class Message:
    id: str
    switch_id: str
    recipient_email: str
    recipient_name: str
    encrypted_content: str
    subject: str | None = None
    is_sent: bool = False
    sent_at: datetime | None = None
    delivery_attempts: int = 0
    last_attempt_at: datetime | None = None
    failure_reason: str | None = None
    failed_at: datetime | None = None
    idempotency_key: str = field(default_factory=lambda: str(uuid.uuid4()))
    deleted_at: datetime | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        *,
        switch_id: str,
        recipient_email: str,
        recipient_name: str,
        encrypted_content: str,
        subject: str | None = None,
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> Result[Message, ValidationError]:
        if not (switch_id or "").strip():
            return Err(ValidationError("Switch ID is required"))
        for error in (
            _validate_email(recipient_email),
            _validate_recipient_name(recipient_name),
            _validate_subject(subject),
            _validate_content(encrypted_content),
        ):
            if error is not None:
                return Err(error)

        now = now or utc_now()
        return Ok(
            cls(
                id=message_id or str(uuid.uuid4()),
                switch_id=switch_id,
                recipient_email=recipient_email.strip().lower(),
                recipient_name=recipient_name.strip(),
                subject=subject.strip() if subject else None,
                encrypted_content=encrypted_content,
                idempotency_key=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
            )
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_failed(self) -> bool:
        return self.failed_at is not None

    @property
    def delivery_status(self) -> DeliveryStatus:
        if self.is_sent:
            return DeliveryStatus.SENT
        if self.is_failed:
            return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING

    def has_exceeded_max_attempts(self, max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> bool:
        return self.delivery_attempts >= max_attempts

    def can_be_sent(self, max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> bool:
        return (
            not self.is_sent
            and not self.is_deleted
            and not self.is_failed
            and not self.has_exceeded_max_attempts(max_attempts)
        )

    def _touch(self, now: datetime) -> None:
        self.updated_at = now
        self.version += 1

    def _attempt_guard(self) -> InvalidStateError | None:
        if self.is_sent:
            return InvalidStateError("Cannot record delivery attempt for a sent message")
        if self.is_deleted:
            return InvalidStateError("Cannot record delivery attempt for a deleted message")
        if self.is_failed:
            return InvalidStateError("Message has already failed permanently")
        return None

    def record_delivery_attempt(
        self,
        reason: str | None = None,
        now: datetime | None = None,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
    ) -> Result[None, InvalidStateError]:
        """Count a failed attempt; the last allowed one marks the message failed."""
        error = self._attempt_guard()
        if error is not None:
            return Err(error)
        now = now or utc_now()
        self.delivery_attempts += 1
        self.last_attempt_at = now
        if reason:
            self.failure_reason = reason
        if self.delivery_attempts >= max_attempts:
            self.failed_at = now
        self._touch(now)
        return Ok()

    def mark_permanently_failed(self, reason: str, now: datetime | None = None) -> Result[None, InvalidStateError]:
        error = self._attempt_guard()
        if error is not None:
            return Err(error)
        now = now or utc_now()
        self.delivery_attempts += 1
        self.last_attempt_at = now
        self.failure_reason = reason
        self.failed_at = now
        self._touch(now)
        return Ok()

    def mark_as_sent(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_sent:
            return Err(InvalidStateError("Message has already been sent"))
        if self.is_deleted:
            return Err(InvalidStateError("Cannot mark a deleted message as sent"))
        now = now or utc_now()
        self.is_sent = True
        self.sent_at = now
        self.failure_reason = None
        self._touch(now)
        return Ok()

    def update_recipient(
        self, recipient_email: str, recipient_name: str, now: datetime | None = None
    ) -> Result[None, InvalidStateError | ValidationError]:
        if self.is_sent:
            return Err(InvalidStateError("Cannot update recipient of a sent message"))
        for error in (_validate_email(recipient_email), _validate_recipient_name(recipient_name)):
            if error is not None:
                return Err(error)
        self.recipient_email = recipient_email.strip().lower()
        self.recipient_name = recipient_name.strip()
        self._touch(now or utc_now())
        return Ok()

    def update_content(
        self, encrypted_content: str, subject: str | None = None, now: datetime | None = None
    ) -> Result[None, InvalidStateError | ValidationError]:
        if self.is_sent:
            return Err(InvalidStateError("Cannot update content of a sent message"))
        for error in (_validate_content(encrypted_content), _validate_subject(subject)):
            if error is not None:
                return Err(error)
        self.encrypted_content = encrypted_content
        if subject is not None:
            self.subject = subject.strip() or None
        self._touch(now or utc_now())
        return Ok()

    def delete(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_deleted:
            return Err(InvalidStateError("Message is already deleted"))
        now = now or utc_now()
        self.deleted_at = now
        self._touch(now)
        return Ok()
