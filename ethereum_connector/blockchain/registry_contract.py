"""
Registry Contract Gateway

Protocol logic for the on-chain user registry: checks the contract is live,
submits the binding transaction carrying a challenge hash, and interprets the
contract's outcome code from the ``AccountCreated`` event.

The gateway never retries. Failed or rejected submissions are reported to the
caller, which owns the retry policy.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator

from loguru import logger

from ..config import ContractConfig
from ..exceptions import NetworkError
from .events import ErrorCause, EventKind, LifecycleEvent, TransactionHandle
from .ledger_client import (
    ZERO_ADDRESS,
    ContractCall,
    ContractRef,
    LedgerClient,
    Transaction,
    normalize_address,
)


# =============================================================================
# Contract ABI
# =============================================================================


REGISTRY_ABI: tuple[dict[str, Any], ...] = (
    {
        "type": "function",
        "name": "contractExists",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "newUser",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "drupalUserHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "validateUserByHash",
        "stateMutability": "view",
        "inputs": [{"name": "drupalUserHash", "type": "bytes32"}],
        "outputs": [{"name": "result", "type": "address"}],
    },
    {
        "type": "event",
        "name": "AccountCreated",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": False},
            {"name": "hash", "type": "bytes32", "indexed": False},
            {"name": "error", "type": "int256", "indexed": False},
        ],
    },
)

ACCOUNT_CREATED = "AccountCreated"


def to_bytes32(challenge_hash: str) -> bytes:
    """
    Convert a hex challenge hash (with or without ``0x``) to 32 raw bytes.

    Raises:
        ValueError: If the value is not exactly 32 bytes of hex
    """
    text = challenge_hash.lower()
    if text.startswith("0x"):
        text = text[2:]
    if len(text) != 64:
        raise ValueError(f"Challenge hash must be 32 bytes, got {len(text) // 2}")
    return bytes.fromhex(text)


def hash_hex(value: Any) -> str:
    """Normalise a bytes32 value from an event to 64 lowercase hex chars."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    text = str(value).lower()
    return text[2:] if text.startswith("0x") else text


# =============================================================================
# Binding Events
# =============================================================================


@dataclass
class BindingEvent:
    """Lifecycle notification for a binding transaction."""

    kind: EventKind
    tx_hash: str | None = None
    outcome_code: int | None = None
    block_number: int | None = None
    address: str | None = None
    challenge_hash: str | None = None
    cause: ErrorCause | None = None
    detail: str = ""


@dataclass(frozen=True)
class BindingOutcome:
    """An ``AccountCreated`` record found on chain."""

    address: str
    challenge_hash: str
    outcome_code: int
    block_number: int
    tx_hash: str


class BindingHandle:
    """
    Handle for a submitted ``newUser`` transaction.

    Yields SUBMITTED, then exactly one RECEIPT (carrying the outcome code) or
    ERROR. Cancelling yields ERROR(CANCELLED).
    """

    def __init__(
        self,
        gateway: RegistryContractGateway,
        handle: TransactionHandle,
        challenge_hash: str,
        from_address: str,
    ):
        self.gateway = gateway
        self.transaction = handle
        self.challenge_hash = challenge_hash
        self.from_address = from_address

    @property
    def tx_hash(self) -> str | None:
        return self.transaction.tx_hash

    def cancel(self, detail: str = "cancelled by caller") -> None:
        self.transaction.cancel(detail)

    async def events(self) -> AsyncIterator[BindingEvent]:
        stream = self.gateway.ledger.subscribe(self.transaction)
        async for event in stream:
            yield self._translate(event)

    def _translate(self, event: LifecycleEvent) -> BindingEvent:
        if event.kind is EventKind.SUBMITTED:
            return BindingEvent(EventKind.SUBMITTED, tx_hash=event.tx_hash)

        if event.kind is EventKind.ERROR:
            return BindingEvent(
                EventKind.ERROR,
                tx_hash=event.tx_hash,
                cause=event.cause,
                detail=event.detail,
            )

        records = self.gateway.ledger.decode_events(
            self.gateway.contract, ACCOUNT_CREATED, event.receipt or {}
        )
        for record in records:
            if hash_hex(record["hash"]) == self.challenge_hash:
                return BindingEvent(
                    EventKind.RECEIPT,
                    tx_hash=event.tx_hash,
                    outcome_code=int(record["error"]),
                    block_number=event.block_number,
                    address=record["from"].lower(),
                    challenge_hash=self.challenge_hash,
                )

        logger.error(
            "Receipt carries no AccountCreated event for the challenge",
            tx_hash=event.tx_hash,
        )
        return BindingEvent(
            EventKind.ERROR,
            tx_hash=event.tx_hash,
            cause=ErrorCause.UNEXPECTED_RECEIPT,
            detail="receipt carries no AccountCreated event for this hash",
        )


# =============================================================================
# Gateway
# =============================================================================


class RegistryContractGateway:
    """
    Gateway to the deployed registry contract.

    Usage:
        gateway = RegistryContractGateway(ledger, config.contract)
        if not await gateway.validate_deployment():
            raise ConfigurationError(...)
        handle = await gateway.submit_binding(challenge.hash, address)
    """

    def __init__(self, ledger: LedgerClient, contract: ContractConfig):
        """
        Initialize gateway.

        Args:
            ledger: Ledger transport
            contract: Registry contract location
        """
        self.ledger = ledger
        self.config = contract
        self.contract = ContractRef(address=contract.address, abi=REGISTRY_ABI)

    async def validate_deployment(self) -> bool:
        """
        Probe ``contractExists()`` on the configured address.

        Returns:
            False (never raises) when the contract does not answer as expected
        """
        try:
            exists = await self.ledger.call(
                ContractCall(self.contract, "contractExists")
            )
        except NetworkError as e:
            logger.error(
                f"Can not verify contract at given address: {self.contract.address} ({e})"
            )
            return False

        if exists is not True:
            logger.error(f"Can not verify contract at given address: {self.contract.address}")
            return False

        logger.info(f"Validated registry contract at {self.contract.address}")
        return True

    async def submit_binding(self, challenge_hash: str, from_address: str) -> BindingHandle:
        """
        Send ``newUser(challenge_hash)`` from ``from_address``.

        Args:
            challenge_hash: 32-byte hex challenge
            from_address: Wallet-controlled sender address

        Returns:
            BindingHandle with the transaction's lifecycle
        """
        raw = to_bytes32(challenge_hash)
        sender = normalize_address(from_address)

        handle = await self.ledger.send(
            Transaction(
                call=ContractCall(self.contract, "newUser", (raw,)),
                sender=sender,
            )
        )
        logger.info("Submitted binding transaction", sender=sender)
        return BindingHandle(self, handle, raw.hex(), sender)

    async def lookup_address(self, challenge_hash: str) -> str | None:
        """Address the contract has bound to ``challenge_hash``, if any."""
        address = await self.ledger.call(
            ContractCall(self.contract, "validateUserByHash", (to_bytes32(challenge_hash),))
        )
        if not address or address.lower() == ZERO_ADDRESS:
            return None
        return address.lower()

    async def find_binding(self, challenge_hash: str) -> BindingOutcome | None:
        """
        Find the ``AccountCreated`` record that decides ``challenge_hash``.

        The first successful record wins because it created the binding;
        without one, the most recent failure is returned.
        """
        wanted = to_bytes32(challenge_hash).hex()
        records = await self.ledger.get_events(
            self.contract, ACCOUNT_CREATED, from_block=self.config.deployment_block
        )
        matching = [r for r in records if hash_hex(r["hash"]) == wanted]
        if not matching:
            return None

        matching.sort(key=lambda r: r["blockNumber"])
        chosen = next(
            (r for r in matching if int(r["error"]) in (0, 4)),
            matching[-1],
        )
        return BindingOutcome(
            address=chosen["from"].lower(),
            challenge_hash=wanted,
            outcome_code=int(chosen["error"]),
            block_number=chosen["blockNumber"],
            tx_hash=chosen["transactionHash"],
        )


__all__ = [
    "REGISTRY_ABI",
    "ACCOUNT_CREATED",
    "BindingEvent",
    "BindingOutcome",
    "BindingHandle",
    "RegistryContractGateway",
    "to_bytes32",
    "hash_hex",
]
