"""
Standalone worker process: cron schedules plus queue consumers, no HTTP.

Usage:
    python -m deadswitch.worker
"""
import asyncio
import logging
import signal
import sys

from deadswitch.config import Settings, settings
from deadswitch.db.session import async_session_maker, init_db
from deadswitch.jobs.registry import register_jobs
from deadswitch.queue.dispatcher import QueueDispatcher
from deadswitch.queue.work_queue import WorkQueue
from deadswitch.services.cache import RedisCache, close_redis, get_redis
from deadswitch.services.email.factory import build_email_sender
from deadswitch.services.http_client import close_http_client, init_http_client

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("deadswitch").setLevel(logging.DEBUG if settings.debug else logging.INFO)
    # APScheduler logs every tick at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def build_work_queue(settings: Settings) -> WorkQueue:
    return WorkQueue(
        async_session_maker,
        max_attempts=settings.queue_max_attempts,
        retry_base_seconds=settings.queue_retry_base_seconds,
        visibility_timeout_seconds=settings.queue_visibility_timeout_seconds,
    )


async def start_dispatcher(settings: Settings) -> QueueDispatcher:
    """Validate config, open shared clients, register all jobs and start consuming."""
    settings.validate_production_config()
    await init_db()
    init_http_client(timeout=settings.http_timeout_seconds)
    dispatcher = QueueDispatcher(build_work_queue(settings), poll_interval_seconds=settings.queue_poll_interval_seconds)
    register_jobs(
        settings,
        async_session_maker,
        dispatcher,
        build_email_sender(settings),
        RedisCache(get_redis()),
    )
    await dispatcher.start()
    return dispatcher


async def stop_dispatcher(dispatcher: QueueDispatcher | None) -> None:
    if dispatcher is not None:
        await dispatcher.shutdown()
    await close_http_client()
    await close_redis()


async def run_worker() -> None:
    dispatcher = await start_dispatcher(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows
    logger.info("Worker running; waiting for jobs")
    try:
        await stop.wait()
    finally:
        logger.info("Worker shutting down")
        await stop_dispatcher(dispatcher)


def main() -> None:
    configure_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
