from deadswitch.repositories.check_ins import CheckInRepository
from deadswitch.repositories.messages import MessageRepository
from deadswitch.repositories.switches import Cursor, SwitchRepository

__all__ = ["CheckInRepository", "Cursor", "MessageRepository", "SwitchRepository"]
