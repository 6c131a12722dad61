"""HTTP email sender (SendGrid v3 compatible payload) for production."""
from __future__ import annotations

import logging

import httpx

from deadswitch.domain.message import mask_email
from deadswitch.services.email.base import EmailSender, SendFailure, SendResult, SendSuccess
from deadswitch.services.http_client import get_http_client

logger = logging.getLogger(__name__)

# Client errors that may succeed later
RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 425, 429})


def is_permanent_status(status_code: int) -> bool:
    return 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES


class HttpEmailSender(EmailSender):
    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_email: str,
        from_name: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    def _payload(self, to: str, subject: str, body: str, idempotency_key: str | None) -> dict:
        sender = {"email": self.from_email}
        if self.from_name:
            sender["name"] = self.from_name
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": sender,
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        if idempotency_key:
            payload["custom_args"] = {"idempotency_key": idempotency_key}
        return payload

    async def send_email(self, to: str, subject: str, body: str, idempotency_key: str | None = None) -> SendResult:
        if not self.api_key:
            return SendFailure("Email API key not configured", permanent=True)
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            response = await self.client.post(
                self.api_url,
                json=self._payload(to, subject, body, idempotency_key),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("[Email][HTTP] Timeout sending to %s: %s", mask_email(to), e)
            return SendFailure(f"Timeout: {e}", permanent=False)
        except httpx.HTTPError as e:
            logger.warning("[Email][HTTP] Transport error sending to %s: %s", mask_email(to), e)
            return SendFailure(f"Transport error: {e}", permanent=False)

        if response.is_success:
            provider_id = response.headers.get("X-Message-Id")
            logger.info("[Email][HTTP] Sent to %s (provider id %s)", mask_email(to), provider_id)
            return SendSuccess(provider_message_id=provider_id)

        reason = f"HTTP {response.status_code}: {response.text[:500]}"
        permanent = is_permanent_status(response.status_code)
        logger.warning(
            "[Email][HTTP] %s failure for %s: %s",
            "Permanent" if permanent else "Transient",
            mask_email(to),
            reason,
        )
        return SendFailure(reason, permanent=permanent)
