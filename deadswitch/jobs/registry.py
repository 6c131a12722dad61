"""Wire job processors to queues and register the recurring schedules."""
from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadswitch.config import Settings
from deadswitch.jobs.check_switches import CheckSwitchesProcessor
from deadswitch.jobs.cleanup import CleanupProcessor
from deadswitch.jobs.payloads import ScanPayload
from deadswitch.jobs.send_notification import SendNotificationProcessor
from deadswitch.jobs.send_reminders import SendRemindersProcessor
from deadswitch.queue.dispatcher import QueueDispatcher
from deadswitch.queue.work_queue import CHECK_SWITCHES, CLEANUP, SEND_NOTIFICATIONS, SEND_REMINDERS
from deadswitch.services.cache import Cache
from deadswitch.services.email.base import EmailSender
from deadswitch.services.notifications import NotificationSender

JobHandler = Callable[[dict], Awaitable[object]]


@dataclass(frozen=True)
class QueueBinding:
    handler: JobHandler
    concurrency: int
    cron: str | None = None


def build_job_handlers(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: QueueDispatcher,
    email_sender: EmailSender,
    cache: Cache,
) -> Mapping[str, QueueBinding]:
    queue = dispatcher.queue
    return {
        CHECK_SWITCHES: QueueBinding(
            handler=CheckSwitchesProcessor(session_maker, queue, batch_size=settings.scanner_batch_size),
            concurrency=settings.check_switches_concurrency,
            cron=settings.check_switches_cron,
        ),
        SEND_NOTIFICATIONS: QueueBinding(
            handler=SendNotificationProcessor(
                session_maker,
                queue,
                NotificationSender(email_sender, settings.encryption_key),
                max_attempts=settings.max_delivery_attempts,
                retry_delay_seconds=settings.retry_delay_seconds,
            ),
            concurrency=settings.send_notifications_concurrency,
        ),
        SEND_REMINDERS: QueueBinding(
            handler=SendRemindersProcessor(
                session_maker,
                email_sender,
                cache,
                threshold=settings.reminder_threshold,
                ttl_seconds=settings.reminder_dedupe_ttl_seconds,
                batch_size=settings.scanner_batch_size,
                app_url=settings.app_url,
            ),
            concurrency=settings.send_reminders_concurrency,
            cron=settings.send_reminders_cron,
        ),
        CLEANUP: QueueBinding(
            handler=CleanupProcessor(
                session_maker,
                queue,
                soft_delete_retention_days=settings.soft_delete_retention_days,
                check_in_retention_days=settings.check_in_retention_days,
                audit_log_retention_days=settings.audit_log_retention_days,
                queue_job_retention_days=settings.queue_job_retention_days,
            ),
            concurrency=settings.cleanup_concurrency,
            cron=settings.cleanup_cron,
        ),
    }


def register_jobs(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: QueueDispatcher,
    email_sender: EmailSender,
    cache: Cache,
) -> Mapping[str, QueueBinding]:
    """Register every consumer and cron schedule on ``dispatcher``. Call before ``dispatcher.start()``."""
    bindings = build_job_handlers(settings, session_maker, dispatcher, email_sender, cache)
    for name, binding in bindings.items():
        dispatcher.register_consumer(name, binding.handler, binding.concurrency)
        if binding.cron:
            dispatcher.schedule_recurring(name, binding.cron, ScanPayload().model_dump())
    return bindings
