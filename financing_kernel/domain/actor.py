"""
Actor -- caller identity passed into every engine operation.

The engine does not authenticate anyone.  The API layer resolves the caller
and hands the engine an ``Actor``; permission checks compare the actor's id
and role with the parties recorded on the invoice.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    FINANCIER = "financier"
    ADMIN = "admin"
    SYSTEM = "system"  # sweeps and other scheduled jobs


@dataclass(frozen=True)
class Actor:
    """Who is calling, and in which capacity."""

    actor_id: UUID
    role: ActorRole

    @property
    def is_privileged(self) -> bool:
        """Admin and system actors bypass party checks."""
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)

    @classmethod
    def buyer(cls, actor_id: UUID) -> Actor:
        return cls(actor_id, ActorRole.BUYER)

    @classmethod
    def seller(cls, actor_id: UUID) -> Actor:
        return cls(actor_id, ActorRole.SELLER)

    @classmethod
    def financier(cls, actor_id: UUID) -> Actor:
        return cls(actor_id, ActorRole.FINANCIER)

    @classmethod
    def admin(cls, actor_id: UUID) -> Actor:
        return cls(actor_id, ActorRole.ADMIN)

    @classmethod
    def system(cls, actor_id: UUID) -> Actor:
        return cls(actor_id, ActorRole.SYSTEM)
