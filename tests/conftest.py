"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; point them at throwaway values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", "")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import deadswitch.models  # noqa: F401 - register tables
from deadswitch.db.base import Base
from deadswitch.domain.message import Message
from deadswitch.domain.switch import Switch
from deadswitch.queue.work_queue import WorkQueue
from deadswitch.repositories.messages import MessageRepository
from deadswitch.repositories.switches import SwitchRepository
from deadswitch.services.email.base import EmailSender, SendSuccess

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Fresh SQLite database per test, schema from the ORM models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'deadswitch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def work_queue(session_maker):
    return WorkQueue(session_maker, max_attempts=3, retry_base_seconds=5, visibility_timeout_seconds=300)


def make_switch(now=T0, interval=7, grace=2, owner_id="owner@example.com", name="Weekly proof", **kwargs) -> Switch:
    return Switch.create(
        owner_id=owner_id,
        name=name,
        check_in_interval_days=interval,
        grace_period_days=grace,
        now=now,
        **kwargs,
    ).unwrap()


def make_message(switch_id: str, email="alice@example.com", name="Alice", now=T0) -> Message:
    return Message.create(
        switch_id=switch_id,
        recipient_email=email,
        recipient_name=name,
        subject="For Alice",
        encrypted_content="gAAAAAB-opaque-ciphertext",
        now=now,
    ).unwrap()


async def store(session_maker, switch: Switch, *messages: Message) -> None:
    async with session_maker() as session:
        await SwitchRepository(session).add(switch)
        for message in messages:
            await MessageRepository(session).add(message)
        await session.commit()


class FakeCache:
    """In-memory stand-in for RedisCache."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str):
        return self.store.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True


class RecordingEmailSender(EmailSender):
    """Collects sends; returns queued results in order, then SendSuccess."""

    def __init__(self, *results):
        self.results = list(results)
        self.sent: list[dict] = []

    async def send_email(self, to, subject, body, idempotency_key=None):
        self.sent.append({"to": to, "subject": subject, "body": body, "idempotency_key": idempotency_key})
        if self.results:
            return self.results.pop(0)
        return SendSuccess(provider_message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def days():
    return lambda n: timedelta(days=n)
