"""Tests for the health, queue and metrics endpoints."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from deadswitch.db.session import get_db
from deadswitch.main import app
from deadswitch.queue.dispatcher import QueueDispatcher
from deadswitch.queue.work_queue import CLEANUP, SEND_NOTIFICATIONS


class BrokenSession:
    async def execute(self, *args, **kwargs):
        raise ConnectionError("database is down")


@pytest_asyncio.fixture
async def client(session_maker, work_queue):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.work_queue = work_queue
    app.state.dispatcher = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_ok_without_dispatcher(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok", "dispatcher": "disabled"}


@pytest.mark.asyncio
async def test_health_degraded_when_database_fails(client):
    async def broken_db():
        yield BrokenSession()

    app.dependency_overrides[get_db] = broken_db
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_queue_stats_fall_back_to_work_queue(client, work_queue):
    await work_queue.enqueue(CLEANUP, {})

    response = await client.get("/health/queues")

    queues = response.json()["queues"]
    assert set(queues) == {"check-switches", "send-notifications", "send-reminders", "cleanup"}
    assert queues["cleanup"] == {"pending": 1, "running": 0, "completed": 0, "failed": 0}


@pytest.mark.asyncio
async def test_queue_stats_from_dispatcher(client, work_queue):
    dispatcher = QueueDispatcher(work_queue)
    dispatcher.register_consumer(SEND_NOTIFICATIONS, lambda payload: None)
    app.state.dispatcher = dispatcher
    await work_queue.enqueue(SEND_NOTIFICATIONS, {})

    response = await client.get("/health/queues")

    assert response.json() == {
        "queues": {"send-notifications": {"pending": 1, "running": 0, "completed": 0, "failed": 0}}
    }


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_prometheus_text(client):
    response = await client.get("/metrics/")
    assert response.status_code == 200
    assert "deadswitch_queue_jobs_total" in response.text
