"""Tests for email transports and the notification send collaborator."""

import json

import httpx
import pytest
from cryptography.fernet import Fernet

from conftest import RecordingEmailSender
from deadswitch.config import Settings
from deadswitch.services.crypto import decrypt_value, encrypt_value
from deadswitch.services.email.base import SendFailure, SendSuccess
from deadswitch.services.email.console import ConsoleEmailSender
from deadswitch.services.email.factory import build_email_sender
from deadswitch.services.email.http import HttpEmailSender, is_permanent_status
from deadswitch.services.notifications import DEFAULT_SUBJECT, NotificationSender


def http_sender(handler) -> HttpEmailSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpEmailSender(
        api_url="https://mail.example.com/v3/mail/send",
        api_key="sk-test",
        from_email="noreply@example.com",
        from_name="Dead Man's Switch",
        client=client,
    )


@pytest.mark.asyncio
async def test_http_sender_posts_payload_with_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, headers={"X-Message-Id": "provider-123"})

    result = await http_sender(handler).send_email("bob@example.com", "Hello", "Body text", "idem-1")

    assert result == SendSuccess(provider_message_id="provider-123")
    assert seen["headers"]["Authorization"] == "Bearer sk-test"
    assert seen["headers"]["Idempotency-Key"] == "idem-1"
    assert seen["body"]["personalizations"] == [{"to": [{"email": "bob@example.com"}]}]
    assert seen["body"]["from"] == {"email": "noreply@example.com", "name": "Dead Man's Switch"}
    assert seen["body"]["content"] == [{"type": "text/plain", "value": "Body text"}]


@pytest.mark.asyncio
async def test_http_sender_classifies_client_errors_as_permanent():
    result = await http_sender(lambda request: httpx.Response(400, text="invalid email")).send_email(
        "nobody", "Hi", "Body"
    )
    assert isinstance(result, SendFailure)
    assert result.permanent
    assert "400" in result.reason


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
async def test_http_sender_classifies_throttling_and_server_errors_as_transient(status):
    result = await http_sender(lambda request: httpx.Response(status)).send_email("bob@example.com", "Hi", "Body")
    assert isinstance(result, SendFailure)
    assert not result.permanent


@pytest.mark.asyncio
async def test_http_sender_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await http_sender(handler).send_email("bob@example.com", "Hi", "Body")
    assert isinstance(result, SendFailure)
    assert not result.permanent


@pytest.mark.asyncio
async def test_http_sender_without_api_key_fails_permanently():
    sender = HttpEmailSender(api_url="https://mail.example.com", api_key="", from_email="noreply@example.com")
    result = await sender.send_email("bob@example.com", "Hi", "Body")
    assert result.permanent


def test_permanent_status_table():
    assert is_permanent_status(400)
    assert is_permanent_status(404)
    assert not is_permanent_status(408)
    assert not is_permanent_status(429)
    assert not is_permanent_status(502)


@pytest.mark.asyncio
async def test_console_sender_always_succeeds():
    result = await ConsoleEmailSender().send_email("bob@example.com", "Hi", "Body", "idem-2")
    assert result == SendSuccess(provider_message_id="console-idem-2")


def test_factory_selects_transport():
    assert isinstance(build_email_sender(Settings(email_provider="console")), ConsoleEmailSender)
    assert isinstance(build_email_sender(Settings(email_provider="http", email_api_key="")), ConsoleEmailSender)
    assert isinstance(build_email_sender(Settings(email_provider="http", email_api_key="sk-live")), HttpEmailSender)


def test_encrypt_decrypt_with_key():
    key = Fernet.generate_key().decode()
    token = encrypt_value("secret", key)
    assert token != "secret"
    assert decrypt_value(token, key) == "secret"
    assert decrypt_value(token, Fernet.generate_key().decode()) == ""


@pytest.mark.asyncio
async def test_notification_sender_decrypts_and_defaults_subject():
    key = Fernet.generate_key().decode()
    transport = RecordingEmailSender()

    result = await NotificationSender(transport, key).send(
        "bob@example.com", None, encrypt_value("hello bob", key), "idem-3"
    )

    assert isinstance(result, SendSuccess)
    assert transport.sent == [
        {"to": "bob@example.com", "subject": DEFAULT_SUBJECT, "body": "hello bob", "idempotency_key": "idem-3"}
    ]


@pytest.mark.asyncio
async def test_notification_sender_refuses_unreadable_content():
    transport = RecordingEmailSender()

    result = await NotificationSender(transport, Fernet.generate_key().decode()).send(
        "bob@example.com", "Subject", "not-a-token"
    )

    assert isinstance(result, SendFailure)
    assert result.permanent
    assert transport.sent == []
