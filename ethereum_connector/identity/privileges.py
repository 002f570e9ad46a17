"""
Privilege Grant Signal

Emitted once per successful verification and consumed by the external
authorization system, which elevates the identity's access. Only the
Challenge Authority emits it.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from loguru import logger


@dataclass(frozen=True)
class PrivilegeGrant:
    """A verified identity/address pair."""

    identity_id: str
    address: str
    granted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __str__(self) -> str:
        return f"grant {self.identity_id} -> {self.address} ({self.granted_at})"


GrantHandler = Callable[[PrivilegeGrant], Awaitable[None]]


class PrivilegeSignal:
    """
    Dispatches privilege grants to registered async handlers.

    Keeps a bounded history for auditing and debugging.
    """

    def __init__(self, max_history_size: int = 1000):
        self.handlers: list[GrantHandler] = []
        self.history: list[PrivilegeGrant] = []
        self.max_history_size = max_history_size

    def register_handler(self, handler: GrantHandler) -> None:
        self.handlers.append(handler)
        logger.debug("Registered privilege handler", total_handlers=len(self.handlers))

    async def emit(self, grant: PrivilegeGrant) -> None:
        """
        Dispatch a grant to all handlers.

        A failing handler is logged and does not stop the others.
        """
        self.history.append(grant)
        if len(self.history) > self.max_history_size:
            self.history.pop(0)

        logger.info(
            "Privilege grant",
            identity_id=grant.identity_id,
            address=grant.address,
        )

        for handler in self.handlers:
            try:
                await handler(grant)
            except Exception as e:
                logger.error(
                    "Privilege handler error",
                    identity_id=grant.identity_id,
                    error=str(e),
                )


__all__ = ["PrivilegeGrant", "GrantHandler", "PrivilegeSignal"]
