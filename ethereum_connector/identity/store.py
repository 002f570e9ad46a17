"""
Identity storage.

Identities are owned by the external account system; the connector only
records the verified address binding. ``IdentityStore`` is the seam where a
real persistence layer plugs in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from loguru import logger


@dataclass
class Identity:
    """External account that can be bound to one Ethereum address."""

    id: str
    bound_address: str | None = None
    verified_at: datetime | None = None

    @property
    def is_verified(self) -> bool:
        return self.bound_address is not None


class IdentityStore(ABC):
    """Persistence for identities."""

    @abstractmethod
    def get(self, identity_id: str) -> Identity | None:
        """Load an identity, or None if unknown."""

    @abstractmethod
    def save(self, identity: Identity) -> None:
        """Persist an identity."""

    def add(self, identity_id: str) -> Identity:
        """Register a new, unverified identity (idempotent)."""
        identity = self.get(identity_id)
        if identity is None:
            identity = Identity(id=identity_id)
            self.save(identity)
            logger.debug(f"Registered identity {identity_id}")
        return identity


class InMemoryIdentityStore(IdentityStore):
    """Dictionary-backed identity store."""

    def __init__(self, identities: list[str] | None = None):
        self._identities: dict[str, Identity] = {}
        for identity_id in identities or []:
            self.add(identity_id)

    def get(self, identity_id: str) -> Identity | None:
        return self._identities.get(identity_id)

    def save(self, identity: Identity) -> None:
        self._identities[identity.id] = identity

    def __len__(self) -> int:
        return len(self._identities)


__all__ = ["Identity", "IdentityStore", "InMemoryIdentityStore"]
