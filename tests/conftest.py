"""
Pytest configuration and shared fixtures for Ethereum connector tests.

This module provides reusable test fixtures for:
- Well-known test addresses
- An in-memory ledger with the registry contract deployed
- Identity store, privilege signal and challenge authority
- Verification orchestrator with short timeouts

Author: Ethereum Connector Team
License: MIT
"""

from datetime import datetime, timedelta, timezone

import pytest

from ethereum_connector.blockchain.mock_ledger import MockLedgerClient, MockRegistryContract
from ethereum_connector.blockchain.registry_contract import RegistryContractGateway
from ethereum_connector.config import ContractConfig, OrchestratorConfig
from ethereum_connector.identity.challenge_authority import ChallengeAuthority
from ethereum_connector.identity.privileges import PrivilegeSignal
from ethereum_connector.identity.store import InMemoryIdentityStore
from ethereum_connector.orchestrator import VerificationOrchestrator


CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
USER_ADDRESS = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
OTHER_ADDRESS = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"


class FakeClock:
    """Controllable timezone-aware clock."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ============================================================================
# Ledger Fixtures
# ============================================================================

@pytest.fixture
def contract_config():
    """Registry contract location."""
    return ContractConfig(address=CONTRACT_ADDRESS)


@pytest.fixture
def registry():
    """In-memory registry contract."""
    return MockRegistryContract()


@pytest.fixture
def ledger(registry):
    """Mock ledger with the registry deployed and one wallet account."""
    client = MockLedgerClient(chain_id=1337, accounts=[USER_ADDRESS])
    client.deploy(CONTRACT_ADDRESS, registry)
    return client


@pytest.fixture
def gateway(ledger, contract_config):
    """Registry contract gateway over the mock ledger."""
    return RegistryContractGateway(ledger, contract_config)


# ============================================================================
# Identity Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Identity store with two unverified identities."""
    return InMemoryIdentityStore(["user-1", "user-2"])


@pytest.fixture
def privileges():
    """Privilege grant signal."""
    return PrivilegeSignal()


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def authority(store, privileges, clock):
    """Challenge authority without challenge expiry."""
    return ChallengeAuthority(store, privileges=privileges, clock=clock)


# ============================================================================
# Orchestrator Fixtures
# ============================================================================

@pytest.fixture
def orchestrator_config():
    """Short timeouts so that stalled flows fail fast."""
    return OrchestratorConfig(
        wallet_timeout=1.0,
        propagation_timeout=1.0,
        inclusion_timeout=1.0,
        receipt_poll_interval=0.1,
    )


@pytest.fixture
def orchestrator(authority, gateway, orchestrator_config):
    """Verification orchestrator wired to the mock ledger."""
    return VerificationOrchestrator(authority, gateway, orchestrator_config)
