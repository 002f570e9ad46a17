"""
Blockchain Integration for the Ethereum connector.

Components:
- LedgerClient: Async JSON-RPC node access (web3 or in-memory mock)
- TransactionHandle: Ordered lifecycle stream of one transaction
- RegistryContractGateway: Typed access to the address registry contract

Author: Ethereum Connector Team
License: MIT
"""

from .events import (
    EventKind,
    ErrorCause,
    LifecycleEvent,
    TransactionHandle,
)
from .ledger_client import (
    LedgerClient,
    Web3LedgerClient,
    ContractRef,
    ContractCall,
    Transaction,
    NodeStatus,
    ConnectionCheck,
    create_ledger_client,
    method_signature,
    ZERO_ADDRESS,
)
from .mock_ledger import MockLedgerClient, MockRegistryContract
from .registry_contract import (
    RegistryContractGateway,
    BindingEvent,
    BindingHandle,
    BindingOutcome,
    REGISTRY_ABI,
)

__all__ = [
    "EventKind",
    "ErrorCause",
    "LifecycleEvent",
    "TransactionHandle",
    "LedgerClient",
    "Web3LedgerClient",
    "ContractRef",
    "ContractCall",
    "Transaction",
    "NodeStatus",
    "ConnectionCheck",
    "create_ledger_client",
    "method_signature",
    "ZERO_ADDRESS",
    "MockLedgerClient",
    "MockRegistryContract",
    "RegistryContractGateway",
    "BindingEvent",
    "BindingHandle",
    "BindingOutcome",
    "REGISTRY_ABI",
]
