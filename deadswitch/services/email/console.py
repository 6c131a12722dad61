"""Console email sender for development"""
import logging

from deadswitch.domain.message import mask_email
from deadswitch.services.email.base import EmailSender, SendResult, SendSuccess

logger = logging.getLogger(__name__)


class ConsoleEmailSender(EmailSender):
    """Development sender that logs instead of delivering."""

    async def send_email(self, to: str, subject: str, body: str, idempotency_key: str | None = None) -> SendResult:
        logger.info("[Email][Console] To: %s", mask_email(to))
        logger.info("[Email][Console] Subject: %s", subject)
        logger.info("[Email][Console] Body preview: %s...", body[:200])
        return SendSuccess(provider_message_id=f"console-{idempotency_key}" if idempotency_key else None)
