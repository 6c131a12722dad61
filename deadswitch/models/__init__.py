from deadswitch.models.switch import SwitchRecord
from deadswitch.models.message import MessageRecord
from deadswitch.models.check_in import CheckInRecord
from deadswitch.models.audit_log import AuditLog
from deadswitch.models.queue_job import QueueJob

__all__ = [
    "SwitchRecord",
    "MessageRecord",
    "CheckInRecord",
    "AuditLog",
    "QueueJob",
]
