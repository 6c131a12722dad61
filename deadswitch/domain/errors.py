"""
Error taxonomy for the monitoring and delivery core.

The dataclasses are *values* carried inside ``Err``; they describe expected
conditions. ``RepositoryError`` is the one exception type: it signals an
unexpected storage failure and propagates to the job boundary.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DomainError:
    reason: str

    def __str__(self) -> str:
        return self.reason


@dataclass(frozen=True)
class ValidationError(DomainError):
    """Input violates an entity rule (name length, interval bounds...)."""


@dataclass(frozen=True)
class InvalidStateError(DomainError):
    """Transition not allowed from the entity's current state."""


@dataclass(frozen=True)
class VersionConflict(DomainError):
    """Optimistic-lock mismatch: the stored row moved on since it was read."""

    entity: str = ""
    entity_id: str = ""
    expected_version: int | None = None


@dataclass(frozen=True)
class NotFound(DomainError):
    """Referenced row vanished (or never existed)."""

    entity: str = ""
    entity_id: str = ""


@dataclass(frozen=True)
class TransientDeliveryError(DomainError):
    """Network or provider hiccup; worth another attempt later."""


@dataclass(frozen=True)
class PermanentDeliveryError(DomainError):
    """Delivery can never succeed as configured (e.g. rejected recipient)."""


class RepositoryError(Exception):
    """Unexpected persistence failure (not a version conflict)."""
