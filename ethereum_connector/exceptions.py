"""
Error taxonomy for the Ethereum user connector.

Every error carries an ErrorKind so that identity-facing failures can be
reported as structured results (kind + message) instead of raw exceptions.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Classification of connector failures."""

    CONFIGURATION = "configuration_error"
    USER_REJECTED = "user_rejected"
    NETWORK = "network_error"
    CHALLENGE_MISMATCH = "challenge_mismatch"
    CHALLENGE_EXPIRED = "challenge_expired"
    CONTRACT_OUTCOME = "contract_outcome_failure"
    IDENTITY_NOT_FOUND = "identity_not_found"
    IDENTITY_ALREADY_VERIFIED = "identity_already_verified"
    WALLET_NOT_READY = "wallet_not_ready"
    INVALID_TRANSITION = "invalid_transition"


class ConnectorError(Exception):
    """Base class for all connector errors."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class ConfigurationError(ConnectorError):
    """Bad contract address, node or server selection. Fatal for operators."""

    kind = ErrorKind.CONFIGURATION


class UserRejected(ConnectorError):
    """The wallet declined to sign or send the transaction."""

    kind = ErrorKind.USER_REJECTED


class NetworkError(ConnectorError):
    """RPC or connectivity failure. Retriable."""

    kind = ErrorKind.NETWORK


class ChallengeMismatch(ConnectorError):
    """Observed hash does not match the identity's active challenge."""

    kind = ErrorKind.CHALLENGE_MISMATCH


class ChallengeExpired(ConnectorError):
    """The active challenge is older than the configured TTL."""

    kind = ErrorKind.CHALLENGE_EXPIRED


class ContractOutcomeFailure(ConnectorError):
    """The registry contract recorded a terminal failure code (1-3)."""

    kind = ErrorKind.CONTRACT_OUTCOME

    def __init__(self, message: str = "", outcome_code: int | None = None):
        super().__init__(message)
        self.outcome_code = outcome_code


class IdentityNotFound(ConnectorError):
    """No identity is registered under the given identifier."""

    kind = ErrorKind.IDENTITY_NOT_FOUND


class IdentityAlreadyVerified(ConnectorError):
    """The identity already has a verified address bound to it."""

    kind = ErrorKind.IDENTITY_ALREADY_VERIFIED


class WalletNotReady(ConnectorError):
    """No wallet account became available on the expected network in time."""

    kind = ErrorKind.WALLET_NOT_READY


class InvalidTransition(ConnectorError):
    """A verification flow was asked to move along a forbidden edge."""

    kind = ErrorKind.INVALID_TRANSITION


__all__ = [
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
]
