"""
Transaction Lifecycle Tests

Tests for event ordering, the single terminal event and cancellation of
transaction handles.

Author: Ethereum Connector Team
License: MIT
"""

import asyncio

import pytest

from ethereum_connector.blockchain.events import (
    ErrorCause,
    EventKind,
    LifecycleEvent,
    TransactionHandle,
)


async def drain(handle, kinds=None):
    return [event async for event in handle.events(kinds)]


class TestTransactionHandle:
    """Test lifecycle ordering guarantees."""

    @pytest.mark.asyncio
    async def test_submitted_then_receipt(self):
        """Events arrive in publication order and end on the receipt."""
        handle = TransactionHandle("newUser")
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0xaa"))
        handle.publish(LifecycleEvent(EventKind.RECEIPT, block_number=3))

        events = await drain(handle)

        assert [e.kind for e in events] == [EventKind.SUBMITTED, EventKind.RECEIPT]
        assert events[1].tx_hash == "0xaa"
        assert handle.done
        assert handle.terminal_event is events[1]

    @pytest.mark.asyncio
    async def test_receipt_implies_submitted(self):
        """A receipt published first is preceded by a synthetic SUBMITTED."""
        handle = TransactionHandle()
        handle.publish(LifecycleEvent(EventKind.RECEIPT, tx_hash="0xbb", block_number=1))

        events = await drain(handle)

        assert [e.kind for e in events] == [EventKind.SUBMITTED, EventKind.RECEIPT]
        assert handle.tx_hash == "0xbb"

    @pytest.mark.asyncio
    async def test_single_terminal_event(self):
        """Anything after the terminal event is dropped."""
        handle = TransactionHandle()
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0xcc"))
        assert handle.fail(ErrorCause.NETWORK, "connection reset")

        assert not handle.publish(LifecycleEvent(EventKind.RECEIPT, block_number=9))
        assert not handle.fail(ErrorCause.TIMEOUT)

        events = await drain(handle)

        assert [e.kind for e in events] == [EventKind.SUBMITTED, EventKind.ERROR]
        assert events[-1].cause is ErrorCause.NETWORK

    def test_duplicate_submitted_dropped(self):
        """Only the first SUBMITTED is kept."""
        handle = TransactionHandle()

        assert handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0x01"))
        assert not handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0x02"))
        assert handle.tx_hash == "0x01"

    @pytest.mark.asyncio
    async def test_stream_is_one_shot(self):
        """A second subscription is refused."""
        handle = TransactionHandle()
        handle.fail(ErrorCause.USER_REJECTED)
        await drain(handle)

        with pytest.raises(RuntimeError):
            await handle.events().__anext__()

    @pytest.mark.asyncio
    async def test_kind_filter(self):
        """Filtered streams still stop at the terminal event."""
        handle = TransactionHandle()
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0xdd"))
        handle.fail(ErrorCause.REVERTED, "reverted")

        events = await drain(handle, kinds=[EventKind.SUBMITTED])

        assert [e.kind for e in events] == [EventKind.SUBMITTED]

    @pytest.mark.asyncio
    async def test_cancel_stops_producer(self):
        """Cancelling stops the producer and publishes ERROR(CANCELLED)."""
        handle = TransactionHandle()
        producer = asyncio.create_task(asyncio.sleep(60))
        handle.attach(producer)
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0xee"))

        handle.cancel("user navigated away")

        with pytest.raises(asyncio.CancelledError):
            await producer

        events = await drain(handle)
        assert events[-1].kind is EventKind.ERROR
        assert events[-1].cause is ErrorCause.CANCELLED
        assert events[-1].detail == "user navigated away"

    def test_event_str(self):
        """Events render readably for logs."""
        assert str(LifecycleEvent(EventKind.SUBMITTED, tx_hash="0x1")) == "submitted 0x1"
        assert "network" in str(
            LifecycleEvent(EventKind.ERROR, cause=ErrorCause.NETWORK, detail="down")
        )
