"""Send collaborator for released messages: decrypt, then hand off to the email transport."""
from __future__ import annotations

import logging

from deadswitch.services.crypto import decrypt_value
from deadswitch.services.email.base import EmailSender, SendFailure, SendResult

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "A message has been released to you"


class NotificationSender:
    def __init__(self, email_sender: EmailSender, encryption_key: str | None = None):
        self.email_sender = email_sender
        self.encryption_key = encryption_key

    async def send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        idempotency_key: str | None = None,
    ) -> SendResult:
        body = decrypt_value(content, self.encryption_key)
        if not body:
            # Retrying will not change the key or the ciphertext
            return SendFailure("Message content could not be decrypted", permanent=True)
        return await self.email_sender.send_email(recipient, subject or DEFAULT_SUBJECT, body, idempotency_key)
