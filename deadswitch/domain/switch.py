"""
Switch state machine.

A switch is a recurring check-in obligation. The owner must check in before
``next_check_in_due``; after the grace period the switch becomes eligible to
trigger, which releases its messages. TRIGGERED and EXPIRED are terminal.

Time predicates are exclusive at the deadline instant: at exactly
``next_check_in_due`` a switch is not yet past due, and at exactly the end of
the grace period it is not yet triggerable.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from deadswitch.domain.errors import InvalidStateError, ValidationError
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import utc_now

MIN_INTERVAL_DAYS = 1
MAX_INTERVAL_DAYS = 365
MIN_GRACE_PERIOD_DAYS = 0
MAX_GRACE_PERIOD_DAYS = 365
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


class SwitchStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    TRIGGERED = "TRIGGERED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({SwitchStatus.TRIGGERED, SwitchStatus.EXPIRED})


def validate_interval_days(days: int) -> ValidationError | None:
    if isinstance(days, bool) or not isinstance(days, int):
        return ValidationError("Check-in interval must be a whole number of days")
    if days < MIN_INTERVAL_DAYS:
        return ValidationError(f"Check-in interval must be at least {MIN_INTERVAL_DAYS} day")
    if days > MAX_INTERVAL_DAYS:
        return ValidationError(f"Check-in interval cannot exceed {MAX_INTERVAL_DAYS} days")
    return None


def validate_grace_period_days(days: int) -> ValidationError | None:
    if isinstance(days, bool) or not isinstance(days, int):
        return ValidationError("Grace period must be a whole number of days")
    if days < MIN_GRACE_PERIOD_DAYS:
        return ValidationError("Grace period cannot be negative")
    if days > MAX_GRACE_PERIOD_DAYS:
        return ValidationError(f"Grace period cannot exceed {MAX_GRACE_PERIOD_DAYS} days")
    return None


def _validate_name(name: str | None) -> ValidationError | None:
    stripped = (name or "").strip()
    if not stripped:
        return ValidationError("Switch name cannot be empty")
    if not NAME_MIN_LENGTH <= len(stripped) <= NAME_MAX_LENGTH:
        return ValidationError(f"Switch name must be between {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters")
    return None


def _validate_description(description: str | None) -> ValidationError | None:
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        return ValidationError(f"Switch description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")
    return None


@dataclass
class Switch:
    id: str
    owner_id: str
    name: str
    check_in_interval_days: int
    grace_period_days: int
    description: str | None = None
    status: SwitchStatus = SwitchStatus.ACTIVE
    last_check_in: datetime | None = None
    next_check_in_due: datetime | None = None
    triggered_at: datetime | None = None
    deleted_at: datetime | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        *,
        owner_id: str,
        name: str,
        check_in_interval_days: int,
        grace_period_days: int = 0,
        description: str | None = None,
        switch_id: str | None = None,
        now: datetime | None = None,
    ) -> Result[Switch, ValidationError]:
        if not (owner_id or "").strip():
            return Err(ValidationError("Owner ID is required"))
        for error in (
            _validate_name(name),
            _validate_description(description),
            validate_interval_days(check_in_interval_days),
            validate_grace_period_days(grace_period_days),
        ):
            if error is not None:
                return Err(error)
        if grace_period_days > check_in_interval_days:
            return Err(ValidationError("Grace period cannot be longer than check-in interval"))

        now = now or utc_now()
        return Ok(
            cls(
                id=switch_id or str(uuid.uuid4()),
                owner_id=owner_id,
                name=name.strip(),
                description=description.strip() if description else None,
                check_in_interval_days=check_in_interval_days,
                grace_period_days=grace_period_days,
                status=SwitchStatus.ACTIVE,
                last_check_in=now,
                next_check_in_due=now + timedelta(days=check_in_interval_days),
                created_at=now,
                updated_at=now,
            )
        )

    # ---- derived state -------------------------------------------------

    @property
    def check_in_interval(self) -> timedelta:
        return timedelta(days=self.check_in_interval_days)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.grace_period_days)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_active(self) -> bool:
        """Monitoring is live: derived from status, never stored separately."""
        return self.status is SwitchStatus.ACTIVE and not self.is_deleted

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def grace_period_ends_at(self) -> datetime | None:
        if self.next_check_in_due is None:
            return None
        return self.next_check_in_due + self.grace_period

    def is_past_due(self, now: datetime | None = None) -> bool:
        if self.next_check_in_due is None:
            return False
        return (now or utc_now()) > self.next_check_in_due

    def is_grace_period_expired(self, now: datetime | None = None) -> bool:
        ends_at = self.grace_period_ends_at
        if ends_at is None:
            return False
        return (now or utc_now()) > ends_at

    def should_trigger(self, now: datetime | None = None) -> bool:
        return (
            self.status is SwitchStatus.ACTIVE
            and self.is_active
            and self.is_grace_period_expired(now)
        )

    def can_check_in(self) -> bool:
        return self.status in (SwitchStatus.ACTIVE, SwitchStatus.PAUSED) and not self.is_deleted

    def time_until_due(self, now: datetime | None = None) -> timedelta | None:
        if self.next_check_in_due is None:
            return None
        return self.next_check_in_due - (now or utc_now())

    # ---- transitions ---------------------------------------------------

    def _touch(self, now: datetime) -> None:
        self.updated_at = now
        self.version += 1

    def check_in(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if not self.can_check_in():
            return Err(InvalidStateError("Cannot check in: switch is triggered, expired, or deleted"))
        now = now or utc_now()
        self.last_check_in = now
        self.next_check_in_due = now + self.check_in_interval
        if self.status is SwitchStatus.PAUSED:
            self.status = SwitchStatus.ACTIVE
        self._touch(now)
        return Ok()

    def pause(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_terminal:
            return Err(InvalidStateError(f"Cannot pause a {self.status.value.lower()} switch"))
        if self.is_deleted:
            return Err(InvalidStateError("Cannot pause a deleted switch"))
        if self.status is SwitchStatus.PAUSED:
            return Err(InvalidStateError("Switch is already paused"))
        self.status = SwitchStatus.PAUSED
        self._touch(now or utc_now())
        return Ok()

    def activate(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_terminal:
            return Err(InvalidStateError(f"Cannot activate a {self.status.value.lower()} switch"))
        if self.is_deleted:
            return Err(InvalidStateError("Cannot activate a deleted switch"))
        if self.status is SwitchStatus.ACTIVE:
            return Err(InvalidStateError("Switch is already active"))
        self.status = SwitchStatus.ACTIVE
        self._touch(now or utc_now())
        return Ok()

    def trigger(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        """One-way transition that releases the switch's messages."""
        if self.status is SwitchStatus.TRIGGERED:
            return Err(InvalidStateError("Switch is already triggered"))
        now = now or utc_now()
        if not self.should_trigger(now):
            return Err(InvalidStateError("Switch does not meet trigger conditions"))
        self.status = SwitchStatus.TRIGGERED
        self.triggered_at = now
        self._touch(now)
        return Ok()

    def expire(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_terminal:
            return Err(InvalidStateError(f"Cannot expire a {self.status.value.lower()} switch"))
        self.status = SwitchStatus.EXPIRED
        self._touch(now or utc_now())
        return Ok()

    def update_configuration(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        check_in_interval_days: int | None = None,
        grace_period_days: int | None = None,
        now: datetime | None = None,
    ) -> Result[None, InvalidStateError | ValidationError]:
        if self.status is SwitchStatus.TRIGGERED:
            return Err(InvalidStateError("Cannot update configuration of a triggered switch"))
        if self.status is SwitchStatus.EXPIRED:
            return Err(InvalidStateError("Cannot update configuration of an expired switch"))

        # Validate everything before touching any field.
        checks = []
        if name is not None:
            checks.append(_validate_name(name))
        if description is not None:
            checks.append(_validate_description(description))
        if check_in_interval_days is not None:
            checks.append(validate_interval_days(check_in_interval_days))
        if grace_period_days is not None:
            checks.append(validate_grace_period_days(grace_period_days))
        for error in checks:
            if error is not None:
                return Err(error)

        effective_interval = (
            check_in_interval_days if check_in_interval_days is not None else self.check_in_interval_days
        )
        effective_grace = grace_period_days if grace_period_days is not None else self.grace_period_days
        if effective_grace > effective_interval:
            return Err(ValidationError("Grace period cannot be longer than check-in interval"))

        if name is not None:
            self.name = name.strip()
        if description is not None:
            self.description = description.strip() or None
        if check_in_interval_days is not None and check_in_interval_days != self.check_in_interval_days:
            self.check_in_interval_days = check_in_interval_days
            if self.last_check_in is not None:
                self.next_check_in_due = self.last_check_in + self.check_in_interval
        if grace_period_days is not None:
            self.grace_period_days = grace_period_days

        self._touch(now or utc_now())
        return Ok()

    def delete(self, now: datetime | None = None) -> Result[None, InvalidStateError]:
        if self.is_deleted:
            return Err(InvalidStateError("Switch is already deleted"))
        now = now or utc_now()
        self.deleted_at = now
        self._touch(now)
        return Ok()
