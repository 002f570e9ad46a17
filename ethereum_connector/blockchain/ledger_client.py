"""
Ledger Client for Ethereum Integration.

Provides a protocol-agnostic transport to an Ethereum node. It knows how to
read contract state, send transactions and report their lifecycle, but it
carries no business semantics of its own.

Key Features:
- Read-only contract calls
- Transaction submission with an ordered lifecycle stream
- Event decoding from receipts and log scans
- Node status report and network validation

References:
- web3.py: https://web3py.readthedocs.io/
- Ethereum JSON-RPC API: https://ethereum.org/en/developers/docs/apis/json-rpc/

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable

from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted
from web3.logs import DISCARD
from web3.types import RPCEndpoint

from ..exceptions import ConfigurationError, NetworkError
from .events import ErrorCause, EventKind, LifecycleEvent, TransactionHandle

if TYPE_CHECKING:
    from ..config import ConnectorConfig, ServerConfig


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
WEI_PER_ETHER = Decimal(10) ** 18

# Substrings wallets put in their rejection errors (MetaMask, Frame, geth clef)
_REJECTION_MARKERS = (
    "denied transaction",
    "user denied",
    "user rejected",
    "rejected by user",
    "request rejected",
)
_EIP1193_USER_REJECTED = 4001


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ContractRef:
    """A deployed contract: address plus the ABI fragments we use."""

    address: str
    abi: tuple[dict[str, Any], ...]

    def event_signature(self, event_name: str) -> str:
        """Canonical signature, e.g. ``AccountCreated(address,bytes32,int256)``."""
        for entry in self.abi:
            if entry.get("type") == "event" and entry.get("name") == event_name:
                types = ",".join(i["type"] for i in entry.get("inputs", []))
                return f"{event_name}({types})"
        raise ConfigurationError(f"Event {event_name} not in contract ABI")


@dataclass(frozen=True)
class ContractCall:
    """A contract function invocation."""

    contract: ContractRef
    function: str
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Transaction:
    """A state-mutating contract call sent from ``sender``."""

    call: ContractCall
    sender: str


@dataclass
class NodeStatus:
    """Live status of the connected node."""

    client_version: str
    listening: bool
    peer_count: int
    network_version: str
    chain_id: int
    syncing: bool
    gas_price_wei: int
    latest_block: int
    coinbase: str | None = None
    accounts: list[str] = field(default_factory=list)

    @property
    def gas_price_ether(self) -> str:
        return f"{Decimal(self.gas_price_wei) / WEI_PER_ETHER:f}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "client_version": self.client_version,
            "listening": self.listening,
            "peer_count": self.peer_count,
            "network_version": self.network_version,
            "chain_id": self.chain_id,
            "syncing": self.syncing,
            "gas_price_wei": self.gas_price_wei,
            "gas_price_ether": self.gas_price_ether,
            "latest_block": self.latest_block,
            "coinbase": self.coinbase,
            "accounts": self.accounts,
        }


@dataclass(frozen=True)
class ConnectionCheck:
    """Result of validating a node connection."""

    error: bool
    message: str


# =============================================================================
# Helpers
# =============================================================================


def method_signature(signature: str) -> str:
    """4-byte function selector, e.g. for ``validateUserByHash(bytes32)``."""
    return Web3.to_hex(Web3.keccak(text=signature))[:10]


def classify_send_error(error: BaseException) -> ErrorCause:
    """Map a wallet/node error raised while sending to an ErrorCause."""
    message = str(error).lower()
    if any(marker in message for marker in _REJECTION_MARKERS):
        return ErrorCause.USER_REJECTED

    code = getattr(error, "code", None)
    if code is None and error.args and isinstance(error.args[0], dict):
        code = error.args[0].get("code")
    if code is None:
        rpc_response = getattr(error, "rpc_response", None)
        if isinstance(rpc_response, dict):
            code = (rpc_response.get("error") or {}).get("code")

    if code == _EIP1193_USER_REJECTED:
        return ErrorCause.USER_REJECTED
    return ErrorCause.NETWORK


def normalize_address(address: str) -> str:
    """Lowercase 20-byte hex address; raises ValueError if invalid."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid Ethereum address: {address!r}")
    return address.lower()


# =============================================================================
# Ledger Client
# =============================================================================


class LedgerClient(ABC):
    """
    Transport to a ledger node.

    Implementations must honour the lifecycle contract of
    ``TransactionHandle``: SUBMITTED precedes the single terminal event.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to the node."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection to the node."""

    @abstractmethod
    async def call(self, contract_call: ContractCall) -> Any:
        """Execute a read-only contract call."""

    @abstractmethod
    async def send(self, transaction: Transaction) -> TransactionHandle:
        """Send a transaction; returns immediately with a lifecycle handle."""

    @abstractmethod
    def decode_events(
        self,
        contract: ContractRef,
        event_name: str,
        receipt: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Decode ``event_name`` logs emitted by ``contract`` in a receipt."""

    @abstractmethod
    async def get_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int = 0,
    ) -> list[dict[str, Any]]:
        """Scan the chain for ``event_name`` logs emitted by ``contract``."""

    @abstractmethod
    async def accounts(self) -> list[str]:
        """Accounts the node (or attached wallet) can send from."""

    @abstractmethod
    async def chain_id(self) -> int:
        """Chain id reported by the node."""

    @abstractmethod
    async def node_status(self) -> NodeStatus:
        """Collect a live status report from the node."""

    def subscribe(
        self,
        handle: TransactionHandle,
        kinds: Iterable[EventKind] | None = None,
    ) -> AsyncIterator[LifecycleEvent]:
        """One-shot stream of lifecycle events for ``handle``."""
        return handle.events(kinds)

    async def validate_connection(self, network_id: int) -> ConnectionCheck:
        """Check the node is reachable and on the expected network."""
        try:
            chain_id = await self.chain_id()
        except NetworkError as e:
            return ConnectionCheck(error=True, message=f"Node unreachable: {e.message}")

        if chain_id != network_id:
            return ConnectionCheck(
                error=True,
                message=(
                    f"Node is on network {chain_id}, "
                    f"but the server is configured for network {network_id}"
                ),
            )
        return ConnectionCheck(
            error=False,
            message=f"Successfully connected to network {chain_id}",
        )

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


class Web3LedgerClient(LedgerClient):
    """
    Ledger client backed by web3.py's ``AsyncWeb3``.

    Transactions are sent with ``eth_sendTransaction`` so that the node or the
    attached wallet signs them; the connector never handles private keys.

    Usage:
        client = Web3LedgerClient(config.default_server())
        await client.connect()
        status = await client.node_status()
    """

    def __init__(
        self,
        server: ServerConfig,
        receipt_timeout: float = 900.0,
        poll_interval: float = 2.0,
    ):
        """
        Initialize web3 ledger client.

        Args:
            server: Node server configuration
            receipt_timeout: Seconds to wait for a receipt
            poll_interval: Receipt polling interval in seconds
        """
        if not server.url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"Web3 ledger client needs an HTTP(S) endpoint, got {server.url}"
            )

        self.server = server
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.w3: AsyncWeb3 | None = None

        logger.info("Web3LedgerClient initialized", server=server.id, url=server.url)

    async def connect(self) -> None:
        if self.w3 is not None:
            return

        w3 = AsyncWeb3(AsyncHTTPProvider(self.server.url))
        if not await w3.is_connected():
            raise NetworkError(f"Cannot reach Ethereum node at {self.server.url}")

        self.w3 = w3
        logger.success(f"Connected to Ethereum node {self.server.url}")

    async def disconnect(self) -> None:
        if self.w3 is None:
            return
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self.w3 = None
        logger.info("Disconnected from Ethereum node")

    async def _web3(self) -> AsyncWeb3:
        if self.w3 is None:
            await self.connect()
        return self.w3

    def _contract(self, w3: AsyncWeb3, ref: ContractRef):
        return w3.eth.contract(
            address=Web3.to_checksum_address(ref.address),
            abi=list(ref.abi),
        )

    async def call(self, contract_call: ContractCall) -> Any:
        w3 = await self._web3()
        contract = self._contract(w3, contract_call.contract)
        function = getattr(contract.functions, contract_call.function)

        try:
            result = await function(*contract_call.args).call()
        except Exception as e:
            logger.error(f"Contract call {contract_call.function} failed: {e}")
            raise NetworkError(str(e)) from e

        logger.debug(f"Called {contract_call.function}: {str(result)[:100]}")
        return result

    async def send(self, transaction: Transaction) -> TransactionHandle:
        w3 = await self._web3()
        handle = TransactionHandle(description=transaction.call.function)
        handle.attach(asyncio.create_task(self._drive(w3, handle, transaction)))

        logger.info(
            f"Submitting transaction: {transaction.call.function} "
            f"from {transaction.sender}"
        )
        return handle

    async def _drive(
        self,
        w3: AsyncWeb3,
        handle: TransactionHandle,
        transaction: Transaction,
    ) -> None:
        contract = self._contract(w3, transaction.call.contract)
        function = getattr(contract.functions, transaction.call.function)

        try:
            tx_hash = await function(*transaction.call.args).transact(
                {"from": Web3.to_checksum_address(transaction.sender)}
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            cause = classify_send_error(e)
            logger.warning(f"Transaction not sent ({cause.value}): {e}")
            handle.fail(cause, str(e))
            return

        tx_hex = Web3.to_hex(tx_hash)
        handle.publish(LifecycleEvent(EventKind.SUBMITTED, tx_hash=tx_hex))

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval,
            )
        except asyncio.CancelledError:
            raise
        except TimeExhausted as e:
            handle.fail(ErrorCause.TIMEOUT, str(e))
            return
        except Exception as e:
            logger.error(f"Receipt polling failed for {tx_hex}: {e}")
            handle.fail(ErrorCause.NETWORK, str(e))
            return

        if receipt.get("status", 1) == 0:
            handle.fail(ErrorCause.REVERTED, f"Transaction {tx_hex} reverted")
            return

        handle.publish(
            LifecycleEvent(
                EventKind.RECEIPT,
                tx_hash=tx_hex,
                block_number=receipt["blockNumber"],
                receipt=dict(receipt),
            )
        )
        logger.success(f"Transaction {tx_hex} included in block #{receipt['blockNumber']}")

    def decode_events(
        self,
        contract: ContractRef,
        event_name: str,
        receipt: dict[str, Any],
    ) -> list[dict[str, Any]]:
        if self.w3 is None:
            raise NetworkError("Not connected to an Ethereum node")

        event = getattr(self._contract(self.w3, contract).events, event_name)()
        return [
            self._flatten(log)
            for log in event.process_receipt(receipt, errors=DISCARD)
        ]

    async def get_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int = 0,
    ) -> list[dict[str, Any]]:
        w3 = await self._web3()
        event = getattr(self._contract(w3, contract).events, event_name)()
        topic = Web3.to_hex(Web3.keccak(text=contract.event_signature(event_name)))

        try:
            logs = await w3.eth.get_logs({
                "address": Web3.to_checksum_address(contract.address),
                "fromBlock": from_block,
                "toBlock": "latest",
                "topics": [topic],
            })
        except Exception as e:
            logger.error(f"Log scan for {event_name} failed: {e}")
            raise NetworkError(str(e)) from e

        return [self._flatten(event.process_log(log)) for log in logs]

    @staticmethod
    def _flatten(log: Any) -> dict[str, Any]:
        data = dict(log["args"])
        data["blockNumber"] = log["blockNumber"]
        data["transactionHash"] = Web3.to_hex(log["transactionHash"])
        return data

    async def accounts(self) -> list[str]:
        w3 = await self._web3()
        try:
            return [account.lower() for account in await w3.eth.accounts]
        except Exception as e:
            raise NetworkError(str(e)) from e

    async def chain_id(self) -> int:
        w3 = await self._web3()
        try:
            return await w3.eth.chain_id
        except Exception as e:
            raise NetworkError(str(e)) from e

    async def node_status(self) -> NodeStatus:
        w3 = await self._web3()

        try:
            client_version = await w3.manager.coro_request(
                RPCEndpoint("web3_clientVersion"), []
            )
            status = NodeStatus(
                client_version=str(client_version),
                listening=await w3.net.listening,
                peer_count=await w3.net.peer_count,
                network_version=str(await w3.net.version),
                chain_id=await w3.eth.chain_id,
                syncing=bool(await w3.eth.syncing),
                gas_price_wei=await w3.eth.gas_price,
                latest_block=await w3.eth.block_number,
                accounts=await self.accounts(),
            )
        except NetworkError:
            raise
        except Exception as e:
            logger.error(f"Node status query failed: {e}")
            raise NetworkError(str(e)) from e

        # post-merge nodes no longer serve eth_coinbase
        try:
            coinbase = (await w3.eth.coinbase).lower()
        except Exception:
            coinbase = None
        status.coinbase = None if coinbase == ZERO_ADDRESS else coinbase

        return status


# =============================================================================
# Factory
# =============================================================================


def create_ledger_client(config: ConnectorConfig) -> LedgerClient:
    """
    Create the ledger client selected by ``config.ledger_mode``.

    Args:
        config: Connector configuration

    Returns:
        Web3LedgerClient, or a MockLedgerClient hosting an in-memory registry
    """
    server = config.default_server()

    if config.ledger_mode == "mock":
        from .mock_ledger import MockLedgerClient, MockRegistryContract

        logger.warning("⚠️ Using MockLedgerClient - NOT FOR PRODUCTION")
        client = MockLedgerClient(chain_id=server.network_id)
        client.deploy(config.contract.address, MockRegistryContract())
        return client

    return Web3LedgerClient(
        server,
        receipt_timeout=config.orchestrator.inclusion_timeout,
        poll_interval=config.orchestrator.receipt_poll_interval,
    )


__all__ = [
    "ContractRef",
    "ContractCall",
    "Transaction",
    "NodeStatus",
    "ConnectionCheck",
    "LedgerClient",
    "Web3LedgerClient",
    "method_signature",
    "classify_send_error",
    "normalize_address",
    "create_ledger_client",
    "ZERO_ADDRESS",
]
