"""
Ethereum User Connector - Bind user identities to Ethereum addresses

A challenge/response protocol: the service issues a random challenge, the user
registers it on-chain from their own wallet, and the service trusts the
contract's record to bind the address to the identity.
"""

# Errors
from .exceptions import (
    ErrorKind,
    ConnectorError,
    ConfigurationError,
    UserRejected,
    NetworkError,
    ChallengeMismatch,
    ChallengeExpired,
    ContractOutcomeFailure,
    IdentityNotFound,
    IdentityAlreadyVerified,
    WalletNotReady,
    InvalidTransition,
)

# Configuration
from .config import (
    ConnectorConfig,
    ContractConfig,
    ServerConfig,
    NetworkConfig,
    load_config,
)

# Contract outcome codes
from .outcomes import OutcomeCode, describe, is_success

# Ledger & registry contract
from .blockchain import (
    LedgerClient,
    Web3LedgerClient,
    MockLedgerClient,
    RegistryContractGateway,
    create_ledger_client,
)

# Identities & challenges
from .identity import (
    ChallengeAuthority,
    Challenge,
    VerificationResult,
    InMemoryIdentityStore,
    PrivilegeSignal,
)

# Orchestrator
from .orchestrator import (
    VerificationOrchestrator,
    VerificationFlow,
    VerificationState,
)

# Client agent
from .client import ClientAgent, LedgerWallet

__all__ = [
    # Errors
    "ErrorKind",
    "ConnectorError",
    "ConfigurationError",
    "UserRejected",
    "NetworkError",
    "ChallengeMismatch",
    "ChallengeExpired",
    "ContractOutcomeFailure",
    "IdentityNotFound",
    "IdentityAlreadyVerified",
    "WalletNotReady",
    "InvalidTransition",
    # Configuration
    "ConnectorConfig",
    "ContractConfig",
    "ServerConfig",
    "NetworkConfig",
    "load_config",
    # Outcomes
    "OutcomeCode",
    "describe",
    "is_success",
    # Ledger
    "LedgerClient",
    "Web3LedgerClient",
    "MockLedgerClient",
    "RegistryContractGateway",
    "create_ledger_client",
    # Identity
    "ChallengeAuthority",
    "Challenge",
    "VerificationResult",
    "InMemoryIdentityStore",
    "PrivilegeSignal",
    # Orchestrator
    "VerificationOrchestrator",
    "VerificationFlow",
    "VerificationState",
    # Client
    "ClientAgent",
    "LedgerWallet",
]

__version__ = "1.0.0"
