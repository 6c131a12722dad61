"""Operational HTTP surface: health, queue statistics and Prometheus metrics."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from deadswitch.config import settings
from deadswitch.db.session import get_db, init_db
from deadswitch.queue.work_queue import CHECK_SWITCHES, CLEANUP, SEND_NOTIFICATIONS, SEND_REMINDERS
from deadswitch.worker import build_work_queue, configure_logging, start_dispatcher, stop_dispatcher

configure_logging()
logger = logging.getLogger(__name__)

QUEUES = (CHECK_SWITCHES, SEND_NOTIFICATIONS, SEND_REMINDERS, CLEANUP)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.work_queue = build_work_queue(settings)
    app.state.dispatcher = None
    if settings.dispatcher_enabled:
        app.state.dispatcher = await start_dispatcher(settings)
    else:
        settings.validate_production_config()
        await init_db()
        logger.info("Dispatcher disabled in this process (DISPATCHER_ENABLED=false)")
    yield
    await stop_dispatcher(app.state.dispatcher)


app = FastAPI(
    title="Dead Man's Switch worker",
    description="Switch monitoring, triggering and message delivery",
    version="0.1.0",
    lifespan=lifespan,
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health: database check failed: %s", e)
        return {"status": "degraded", "database": "unavailable"}
    dispatcher = app.state.dispatcher
    return {
        "status": "ok",
        "database": "ok",
        "dispatcher": "running" if dispatcher is not None and dispatcher.running else "disabled",
    }


@app.get("/health/queues")
async def queue_health():
    dispatcher = app.state.dispatcher
    if dispatcher is not None:
        return {"queues": await dispatcher.stats()}
    queue = app.state.work_queue
    return {"queues": {name: (await queue.stats(name)).as_dict() for name in QUEUES}}
