"""Queue payload schemas. Payloads are stored as JSON in queue_jobs.payload."""
from pydantic import BaseModel, Field


class ScanPayload(BaseModel):
    """Payload of the recurring batch jobs (check-switches, send-reminders, cleanup)."""

    triggered_by: str = "cron"


class NotificationPayload(BaseModel):
    message_id: str
    switch_id: str
    recipient: str
    subject: str | None = None
    content: str
    attempt: int = Field(default=1, ge=1)


def notification_dedupe_key(message_id: str, attempt: int) -> str:
    return f"notify:{message_id}:{attempt}"
