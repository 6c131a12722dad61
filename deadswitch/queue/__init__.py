from deadswitch.queue.dispatcher import QueueDispatcher
from deadswitch.queue.work_queue import (
    CHECK_SWITCHES,
    CLEANUP,
    SEND_NOTIFICATIONS,
    SEND_REMINDERS,
    ClaimedJob,
    JobStatus,
    QueueStats,
    WorkQueue,
)

__all__ = [
    "CHECK_SWITCHES",
    "CLEANUP",
    "SEND_NOTIFICATIONS",
    "SEND_REMINDERS",
    "ClaimedJob",
    "JobStatus",
    "QueueDispatcher",
    "QueueStats",
    "WorkQueue",
]
