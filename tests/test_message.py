"""Tests for message delivery state."""

from datetime import timedelta

from conftest import T0, make_message
from deadswitch.domain.message import MAX_DELIVERY_ATTEMPTS, DeliveryStatus, Message, mask_email


def test_create_assigns_stable_idempotency_key():
    message = make_message("switch-1")
    other = make_message("switch-1")
    assert message.idempotency_key
    assert message.idempotency_key != other.idempotency_key
    assert message.delivery_status is DeliveryStatus.PENDING
    assert message.can_be_sent()


def test_create_validates_fields():
    base = dict(switch_id="s", recipient_email="a@example.com", recipient_name="Al", encrypted_content="x" * 10)
    assert Message.create(**base).is_ok
    assert Message.create(**{**base, "recipient_email": "not-an-email"}).is_err
    assert Message.create(**{**base, "recipient_name": "A"}).is_err
    assert Message.create(**{**base, "encrypted_content": "short"}).is_err
    assert Message.create(**{**base, "subject": "s" * 201}).is_err


def test_mark_as_sent_twice_fails_without_changes():
    message = make_message("s")
    sent_at = T0 + timedelta(hours=1)
    assert message.mark_as_sent(sent_at).is_ok
    snapshot = (message.is_sent, message.sent_at, message.delivery_attempts, message.version)

    second = message.mark_as_sent(sent_at + timedelta(hours=1))
    assert second.is_err
    assert (message.is_sent, message.sent_at, message.delivery_attempts, message.version) == snapshot


def test_mark_as_sent_clears_previous_failure_reason():
    message = make_message("s")
    message.record_delivery_attempt("timeout", T0)
    message.mark_as_sent(T0)
    assert message.failure_reason is None
    assert message.delivery_status is DeliveryStatus.SENT


def test_fifth_failure_exhausts_message():
    message = make_message("s")
    message.delivery_attempts = MAX_DELIVERY_ATTEMPTS - 1
    assert message.can_be_sent()

    assert message.record_delivery_attempt("smtp 451", T0).is_ok
    assert message.delivery_attempts == MAX_DELIVERY_ATTEMPTS
    assert message.has_exceeded_max_attempts()
    assert not message.can_be_sent()
    assert message.delivery_status is DeliveryStatus.FAILED


def test_permanent_failure_stops_immediately():
    message = make_message("s")
    assert message.mark_permanently_failed("550 mailbox unavailable", T0).is_ok
    assert message.delivery_attempts == 1
    assert message.failed_at == T0
    assert not message.can_be_sent()
    assert message.record_delivery_attempt("again", T0).is_err


def test_attempts_rejected_on_sent_or_deleted():
    sent = make_message("s")
    sent.mark_as_sent(T0)
    assert sent.record_delivery_attempt("late", T0).is_err

    deleted = make_message("s")
    deleted.delete(T0)
    assert deleted.record_delivery_attempt("late", T0).is_err
    assert not deleted.can_be_sent()


def test_updates_blocked_after_send():
    message = make_message("s")
    assert message.update_recipient("bob@example.com", "Bob").is_ok
    assert message.recipient_email == "bob@example.com"
    message.mark_as_sent(T0)
    assert message.update_recipient("carol@example.com", "Carol").is_err
    assert message.update_content("y" * 20).is_err


def test_mask_email():
    assert mask_email("alice@example.com") == "a***@example.com"
    assert mask_email("garbage") == "***"
