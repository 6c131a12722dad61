"""Prometheus metrics, exposed by the /metrics mount in deadswitch.main."""
from prometheus_client import Counter, Gauge, Histogram

queue_jobs_total = Counter(
    "deadswitch_queue_jobs_total", "Queue jobs handled by consumers", ["queue", "outcome"]
)
queue_job_duration = Histogram(
    "deadswitch_queue_job_duration_seconds", "Queue job handler duration", ["queue"]
)
queue_depth = Gauge("deadswitch_queue_depth", "Queue jobs by status", ["queue", "status"])
stale_jobs_recovered_total = Counter(
    "deadswitch_queue_stale_jobs_recovered_total", "Running jobs returned to the queue after lease expiry"
)

switches_triggered_total = Counter("deadswitch_switches_triggered_total", "Switches transitioned to TRIGGERED")
switch_trigger_conflicts_total = Counter(
    "deadswitch_switch_trigger_conflicts_total", "Trigger writes lost to a concurrent update"
)
notifications_total = Counter("deadswitch_notifications_total", "Notification delivery outcomes", ["outcome"])
reminders_sent_total = Counter("deadswitch_reminders_sent_total", "Check-in reminders sent")
cleanup_deleted_total = Counter("deadswitch_cleanup_deleted_total", "Rows removed by retention cleanup", ["table"])
