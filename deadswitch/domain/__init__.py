from deadswitch.domain.check_in import CheckIn
from deadswitch.domain.errors import (
    DomainError,
    InvalidStateError,
    NotFound,
    PermanentDeliveryError,
    RepositoryError,
    TransientDeliveryError,
    ValidationError,
    VersionConflict,
)
from deadswitch.domain.message import MAX_DELIVERY_ATTEMPTS, DeliveryStatus, Message
from deadswitch.domain.result import Err, Ok, Result
from deadswitch.domain.switch import Switch, SwitchStatus

__all__ = [
    "CheckIn",
    "DeliveryStatus",
    "DomainError",
    "Err",
    "InvalidStateError",
    "MAX_DELIVERY_ATTEMPTS",
    "Message",
    "NotFound",
    "Ok",
    "PermanentDeliveryError",
    "RepositoryError",
    "Result",
    "Switch",
    "SwitchStatus",
    "TransientDeliveryError",
    "ValidationError",
    "VersionConflict",
]
