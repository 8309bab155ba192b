"""
Actor -- who drives an order status transition.

Every AuditEntry records an actor: the customer acting on their own order,
or the system (a batch job, a fulfillment worker, the kernel itself).
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorType(str, Enum):
    USER = "user"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Immutable actor identity recorded on audit entries."""

    actor_type: ActorType
    actor_id: str | None = None

    @classmethod
    def user(cls, user_id: UUID | str) -> "Actor":
        return cls(ActorType.USER, str(user_id))

    @classmethod
    def system(cls, name: str | None = None) -> "Actor":
        return cls(ActorType.SYSTEM, name)

    def __str__(self) -> str:
        if self.actor_id is None:
            return self.actor_type.value
        return f"{self.actor_type.value}:{self.actor_id}"


SYSTEM_ACTOR = Actor.system()
