"""
In-memory ledger for development and tests.

MockLedgerClient hosts Python emulations of contracts and mines their
transactions either immediately (``auto_mine=True``) or when ``mine()`` is
called, which lets callers observe the pending state.

NEVER use in production!
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any

from loguru import logger

from ..exceptions import NetworkError
from .events import ErrorCause, EventKind, LifecycleEvent, TransactionHandle
from .ledger_client import (
    ZERO_ADDRESS,
    ContractRef,
    LedgerClient,
    NodeStatus,
    Transaction,
    normalize_address,
)


class MockRevert(Exception):
    """Raised by a mock contract to revert a transaction."""


class MockRegistryContract:
    """
    Emulation of the on-chain user registry.

    ``newUser(bytes32)`` records hash -> address bindings and emits
    ``AccountCreated(from, hash, error)`` with the registry's outcome codes.
    """

    def __init__(self, exists: bool = True, disabled: bool = False):
        self.exists = exists
        self.disabled = disabled
        self.bindings: dict[str, str] = {}

    def call(self, function: str, args: tuple[Any, ...]) -> Any:
        if function == "contractExists":
            return self.exists
        if function == "validateUserByHash":
            return self.bindings.get(_hash_bytes(args[0]).hex(), ZERO_ADDRESS)
        raise MockRevert(f"Unknown view function {function}")

    def transact(
        self,
        sender: str,
        function: str,
        args: tuple[Any, ...],
    ) -> list[dict[str, Any]]:
        if function != "newUser":
            raise MockRevert(f"Unknown function {function}")

        (user_hash,) = args
        raw = _hash_bytes(user_hash)
        return [{
            "event": "AccountCreated",
            "args": {"from": sender, "hash": raw, "error": self._register(sender, raw)},
        }]

    def _register(self, sender: str, raw: bytes) -> int:
        if self.disabled:
            return 1
        if len(raw) > 32:
            return 2

        key = raw.hex()
        bound = self.bindings.get(key)
        if bound is None:
            self.bindings[key] = sender
            return 0
        return 4 if bound == sender else 3


def _hash_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    text = str(value)
    return bytes.fromhex(text[2:] if text.startswith("0x") else text)


class MockLedgerClient(LedgerClient):
    """
    Ledger client with an in-memory chain.

    Failure injection:
        reject_next_send: next ``send`` ends with ERROR(USER_REJECTED)
        fail_next_send: next ``send`` ends with ERROR(NETWORK)
    """

    def __init__(
        self,
        chain_id: int = 1337,
        accounts: list[str] | None = None,
        auto_mine: bool = True,
    ):
        self._chain_id = chain_id
        self._accounts = [normalize_address(a) for a in (accounts or [])]
        self.auto_mine = auto_mine

        self.contracts: dict[str, Any] = {}
        self.block_number = 0
        self.logs: list[dict[str, Any]] = []
        self.pending: list[tuple[TransactionHandle, Transaction]] = []
        self.sent: list[Transaction] = []

        self.reject_next_send = False
        self.fail_next_send = False
        self.connected = False

        logger.info("Initialized MockLedgerClient", chain_id=chain_id, auto_mine=auto_mine)

    def deploy(self, address: str, contract: Any) -> None:
        self.contracts[address.lower()] = contract

    def add_account(self, address: str) -> None:
        self._accounts.append(normalize_address(address))

    async def connect(self) -> None:
        self.connected = True
        logger.info("Mock mode: skipping node connection")

    async def disconnect(self) -> None:
        self.connected = False

    def _contract_at(self, address: str) -> Any:
        contract = self.contracts.get(address.lower())
        if contract is None:
            raise NetworkError(f"No contract code at {address}")
        return contract

    async def call(self, contract_call) -> Any:
        contract = self._contract_at(contract_call.contract.address)
        try:
            return contract.call(contract_call.function, tuple(contract_call.args))
        except MockRevert as e:
            raise NetworkError(str(e)) from e

    async def send(self, transaction: Transaction) -> TransactionHandle:
        handle = TransactionHandle(description=transaction.call.function)
        self.sent.append(transaction)

        if self.reject_next_send:
            self.reject_next_send = False
            handle.fail(
                ErrorCause.USER_REJECTED,
                "MetaMask Tx Signature: User denied transaction signature.",
            )
            return handle

        if self.fail_next_send:
            self.fail_next_send = False
            handle.fail(ErrorCause.NETWORK, "connection reset by peer")
            return handle

        digest = hashlib.sha256(f"{len(self.sent)}:{transaction}".encode()).hexdigest()
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash=f"0x{digest}"))
        self.pending.append((handle, transaction))

        if self.auto_mine:
            await self.mine()
        return handle

    async def mine(self) -> int:
        """
        Include all pending transactions in a new block.

        Returns:
            Number of transactions mined
        """
        batch, self.pending = self.pending, []
        live = [(handle, tx) for handle, tx in batch if not handle.done]
        if not live:
            return 0

        self.block_number += 1
        for handle, tx in live:
            self._execute(handle, tx)

        await asyncio.sleep(0)
        return len(live)

    def _execute(self, handle: TransactionHandle, tx: Transaction) -> None:
        contract_address = tx.call.contract.address.lower()
        try:
            emitted = self._contract_at(contract_address).transact(
                tx.sender.lower(), tx.call.function, tuple(tx.call.args)
            )
        except (MockRevert, NetworkError) as e:
            handle.fail(ErrorCause.REVERTED, str(e))
            return

        logs = [
            {
                **log,
                "address": contract_address,
                "blockNumber": self.block_number,
                "transactionHash": handle.tx_hash,
            }
            for log in emitted
        ]
        self.logs.extend(logs)

        handle.publish(
            LifecycleEvent(
                EventKind.RECEIPT,
                block_number=self.block_number,
                receipt={
                    "transactionHash": handle.tx_hash,
                    "blockNumber": self.block_number,
                    "status": 1,
                    "logs": logs,
                },
            )
        )

    def decode_events(
        self,
        contract: ContractRef,
        event_name: str,
        receipt: dict[str, Any],
    ) -> list[dict[str, Any]]:
        return [
            self._flatten(log)
            for log in receipt.get("logs", [])
            if log.get("event") == event_name
            and log.get("address") == contract.address.lower()
        ]

    async def get_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int = 0,
    ) -> list[dict[str, Any]]:
        return [
            self._flatten(log)
            for log in self.logs
            if log["event"] == event_name
            and log["address"] == contract.address.lower()
            and log["blockNumber"] >= from_block
        ]

    @staticmethod
    def _flatten(log: dict[str, Any]) -> dict[str, Any]:
        data = dict(log["args"])
        data["blockNumber"] = log["blockNumber"]
        data["transactionHash"] = log["transactionHash"]
        return data

    async def accounts(self) -> list[str]:
        return list(self._accounts)

    async def chain_id(self) -> int:
        return self._chain_id

    async def node_status(self) -> NodeStatus:
        return NodeStatus(
            client_version="MockLedger/v1.0",
            listening=True,
            peer_count=0,
            network_version=str(self._chain_id),
            chain_id=self._chain_id,
            syncing=False,
            gas_price_wei=1_000_000_000,
            latest_block=self.block_number,
            coinbase=self._accounts[0] if self._accounts else None,
            accounts=list(self._accounts),
        )


__all__ = ["MockLedgerClient", "MockRegistryContract", "MockRevert"]
