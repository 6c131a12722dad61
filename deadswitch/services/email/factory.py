"""Email sender factory - returns the sender selected by EMAIL_PROVIDER."""
import logging

from deadswitch.config import Settings, settings as default_settings
from deadswitch.services.email.base import EmailSender
from deadswitch.services.email.console import ConsoleEmailSender
from deadswitch.services.email.http import HttpEmailSender

logger = logging.getLogger(__name__)


def build_email_sender(settings: Settings | None = None) -> EmailSender:
    settings = settings or default_settings
    provider = settings.email_provider.lower()
    if provider == "http" and settings.email_api_key:
        return HttpEmailSender(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            timeout=settings.http_timeout_seconds,
        )
    if provider == "http":
        logger.warning("EMAIL_PROVIDER=http without EMAIL_API_KEY; falling back to console sender")
    return ConsoleEmailSender()
