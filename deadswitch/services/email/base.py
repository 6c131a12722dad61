"""Email sender interface and send outcomes."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SendSuccess:
    provider_message_id: str | None = None


@dataclass(frozen=True)
class SendFailure:
    reason: str
    permanent: bool = False


SendResult = SendSuccess | SendFailure


class EmailSender(ABC):
    """Transport for plaintext emails. Implementations never raise for provider errors."""

    @abstractmethod
    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str | None = None,
    ) -> SendResult:
        """
        Send one email.

        Args:
            to: Recipient email address
            subject: Email subject
            body: Plain text body
            idempotency_key: Forwarded to providers that de-duplicate on it

        Returns:
            SendSuccess, or SendFailure flagged permanent when retrying cannot help
        """

    async def aclose(self) -> None:
        return None
