from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from deadswitch.domain.errors import ValidationError
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.timeutil import utc_now

USER_AGENT_MAX_LENGTH = 500
LOCATION_MAX_LENGTH = 200
NOTES_MAX_LENGTH = 1000


@dataclass(frozen=True)
class CheckIn:
    """One proof-of-life event. Immutable history; purged by retention cleanup."""

    id: str
    switch_id: str
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    notes: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        *,
        switch_id: str,
        timestamp: datetime | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> Result[CheckIn, ValidationError]:
        if not (switch_id or "").strip():
            return Err(ValidationError("Switch ID is required"))
        if user_agent and len(user_agent) > USER_AGENT_MAX_LENGTH:
            return Err(ValidationError(f"User agent cannot exceed {USER_AGENT_MAX_LENGTH} characters"))
        if location and len(location) > LOCATION_MAX_LENGTH:
            return Err(ValidationError(f"Location cannot exceed {LOCATION_MAX_LENGTH} characters"))
        if notes and len(notes) > NOTES_MAX_LENGTH:
            return Err(ValidationError(f"Notes cannot exceed {NOTES_MAX_LENGTH} characters"))

        timestamp = timestamp or utc_now()
        return Ok(
            cls(
                id=str(uuid.uuid4()),
                switch_id=switch_id,
                timestamp=timestamp,
                ip_address=ip_address,
                user_agent=user_agent,
                location=location.strip() if location else None,
                notes=notes.strip() if notes else None,
                created_at=timestamp,
            )
        )
