"""
Transaction Lifecycle Events

A submitted transaction produces an ordered, one-shot stream of lifecycle
events:

- SUBMITTED: the node accepted the transaction (carries the tx hash)
- RECEIPT: the transaction was mined (carries the raw receipt)
- ERROR: the transaction failed, was rejected or was abandoned

SUBMITTED always precedes RECEIPT/ERROR, and exactly one terminal event is
published per handle.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Iterable

from loguru import logger


# =============================================================================
# Event Types
# =============================================================================


class EventKind(Enum):
    """Lifecycle notifications of a submitted transaction."""

    SUBMITTED = "submitted"
    RECEIPT = "receipt"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.RECEIPT, EventKind.ERROR})


class ErrorCause(Enum):
    """Why a transaction ended with an ERROR event."""

    USER_REJECTED = "user_rejected"
    NETWORK = "network"
    REVERTED = "reverted"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    UNEXPECTED_RECEIPT = "unexpected_receipt"


@dataclass
class LifecycleEvent:
    """A single lifecycle notification."""

    kind: EventKind
    tx_hash: str | None = None
    block_number: int | None = None
    receipt: dict[str, Any] | None = None
    cause: ErrorCause | None = None
    detail: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def __str__(self) -> str:
        if self.kind is EventKind.ERROR:
            return f"error({self.cause.value if self.cause else '?'}): {self.detail}"
        if self.kind is EventKind.RECEIPT:
            return f"receipt {self.tx_hash} in block {self.block_number}"
        return f"submitted {self.tx_hash}"


# =============================================================================
# Transaction Handle
# =============================================================================


class TransactionHandle:
    """
    Handle for one submitted transaction.

    Producers publish lifecycle events with ``publish()``; a single consumer
    reads them with ``events()``. The handle enforces the ordering and the
    single-terminal-event guarantees, so producers cannot violate them.
    """

    def __init__(self, description: str = ""):
        self.description = description
        self.tx_hash: str | None = None
        self.terminal_event: LifecycleEvent | None = None
        self._queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
        self._submitted = False
        self._consumed = False
        self._task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return self.terminal_event is not None

    def attach(self, task: asyncio.Task) -> None:
        """Attach the producer task so that ``cancel()`` can stop it."""
        self._task = task

    def publish(self, event: LifecycleEvent) -> bool:
        """
        Publish a lifecycle event.

        Returns:
            False if the event was dropped (duplicate submit or post-terminal)
        """
        if self.done:
            logger.debug(
                "Dropping event after terminal",
                kind=event.kind.value,
                tx_hash=self.tx_hash,
            )
            return False

        if event.kind is EventKind.SUBMITTED:
            if self._submitted:
                return False
            self._submitted = True
            self.tx_hash = event.tx_hash
        elif event.kind is EventKind.RECEIPT and not self._submitted:
            # a receipt implies the broadcast happened
            self.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash=event.tx_hash))

        if event.tx_hash is None:
            event.tx_hash = self.tx_hash

        if event.is_terminal:
            self.terminal_event = event

        self._queue.put_nowait(event)
        return True

    def fail(self, cause: ErrorCause, detail: str = "") -> bool:
        """Publish the terminal ERROR event."""
        return self.publish(
            LifecycleEvent(EventKind.ERROR, cause=cause, detail=detail)
        )

    def cancel(self, detail: str = "cancelled by caller") -> None:
        """Abandon the transaction; consumers receive ERROR(CANCELLED)."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.fail(ErrorCause.CANCELLED, detail)

    async def events(
        self,
        kinds: Iterable[EventKind] | None = None,
    ) -> AsyncIterator[LifecycleEvent]:
        """
        Iterate lifecycle events until the terminal event.

        Args:
            kinds: Only yield these kinds (the stream still ends on terminal)

        Raises:
            RuntimeError: If the stream was already consumed
        """
        if self._consumed:
            raise RuntimeError("Lifecycle stream already consumed")
        self._consumed = True

        wanted = set(kinds) if kinds is not None else None

        while True:
            event = await self._queue.get()
            if wanted is None or event.kind in wanted:
                yield event
            if event.is_terminal:
                return


__all__ = [
    "EventKind",
    "ErrorCause",
    "LifecycleEvent",
    "TransactionHandle",
    "TERMINAL_KINDS",
]
