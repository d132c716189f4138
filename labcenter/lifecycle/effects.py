"""Side effects requested by appointment transitions.

Transitions never talk to the notification or history stores directly; they
return these records and the service layer emits them after the appointment
write has been committed.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Broadcast(str, Enum):
    """Group notification targets."""

    ALL_STAFF = "all_staff"
    ALL_ADMINS = "all_admins"


@dataclass(frozen=True)
class Recipient:
    """A single notification recipient."""

    role: str
    id: UUID


NotificationTarget = Broadcast | Recipient


@dataclass(frozen=True)
class Notify:
    """Fan a notification out to ``target``."""

    title: str
    message: str
    target: NotificationTarget
    link: str = "#"


@dataclass(frozen=True)
class RecordHistory:
    """Append an entry to the history log."""

    user: str
    action: str


Effect = Notify | RecordHistory
