"""
Challenge Authority

Issues a unique random challenge per identity and later checks a completed
on-chain registration against it.

Guarantees:
- At most one unconsumed challenge per identity (per-identity asyncio lock)
- Re-issuing supersedes the previous hash, which then no longer confirms
- Only ``confirm_registration`` consumes a challenge
- The address bind and the privilege grant happen only on its success path

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import asyncio
import hmac
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from loguru import logger

from ..blockchain.ledger_client import normalize_address
from ..exceptions import (
    ChallengeExpired,
    ChallengeMismatch,
    ConnectorError,
    ContractOutcomeFailure,
    ErrorKind,
    IdentityAlreadyVerified,
    IdentityNotFound,
)
from ..outcomes import describe, is_success
from .privileges import PrivilegeGrant, PrivilegeSignal
from .store import Identity, IdentityStore

_HASH_PATTERN = re.compile(r"[0-9a-f]{64}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Challenge:
    """A server-issued challenge; only ``consumed`` ever changes."""

    identity_id: str
    hash: str
    issued_at: datetime
    consumed: bool = False


@dataclass(frozen=True)
class VerificationResult:
    """Structured outcome of a verification."""

    success: bool
    message: str
    identity_id: str
    kind: ErrorKind | None = None
    address: str | None = None
    outcome_code: int | None = None

    @classmethod
    def from_error(cls, identity_id: str, error: ConnectorError) -> VerificationResult:
        return cls(
            success=False,
            message=error.message,
            identity_id=identity_id,
            kind=error.kind,
            outcome_code=getattr(error, "outcome_code", None),
        )

    def as_response(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


# =============================================================================
# Challenge Authority
# =============================================================================


class ChallengeAuthority:
    """
    Issues and checks per-identity challenges.

    Usage:
        authority = ChallengeAuthority(store, ttl_seconds=600)
        challenge = await authority.issue_challenge("user-1")
        ...
        result = await authority.confirm_registration(
            "user-1", challenge.hash, "0xabc...", outcome_code=0
        )
    """

    def __init__(
        self,
        store: IdentityStore,
        ttl_seconds: int = 0,
        privileges: PrivilegeSignal | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize challenge authority.

        Args:
            store: Identity storage
            ttl_seconds: Challenge lifetime (0 disables expiry)
            privileges: Signal receiving grants on successful verification
            clock: Source of timezone-aware "now"
        """
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None
        self.privileges = privileges or PrivilegeSignal()
        self.clock = clock

        self._current: dict[str, Challenge] = {}
        self._by_hash: dict[str, Challenge] = {}
        self._results: dict[str, VerificationResult] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._grant_tasks: set[asyncio.Task] = set()

        logger.info(
            "Initialized ChallengeAuthority",
            ttl_seconds=ttl_seconds,
        )

    def _lock(self, identity_id: str) -> asyncio.Lock:
        return self._locks.setdefault(identity_id, asyncio.Lock())

    def _require_identity(self, identity_id: str) -> Identity:
        identity = self.store.get(identity_id)
        if identity is None:
            raise IdentityNotFound(f"Identity {identity_id} does not exist")
        return identity

    def _expired(self, challenge: Challenge) -> bool:
        return self.ttl is not None and self.clock() - challenge.issued_at > self.ttl

    async def issue_challenge(self, identity_id: str, force: bool = False) -> Challenge:
        """
        Return the identity's unconsumed challenge, issuing one if needed.

        Args:
            identity_id: Identity to bind
            force: Supersede an existing unconsumed challenge

        Raises:
            IdentityNotFound: Unknown identity
            IdentityAlreadyVerified: Identity already has a bound address
        """
        async with self._lock(identity_id):
            identity = self._require_identity(identity_id)
            if identity.is_verified:
                raise IdentityAlreadyVerified(
                    f"Identity {identity_id} is already verified "
                    f"with address {identity.bound_address}"
                )

            current = self._current.get(identity_id)
            if current is not None and not current.consumed and not force:
                if not self._expired(current):
                    return current
                logger.info("Challenge expired, issuing a new one", identity_id=identity_id)

            if current is not None:
                self._by_hash.pop(current.hash, None)

            challenge = Challenge(
                identity_id=identity_id,
                hash=secrets.token_bytes(32).hex(),
                issued_at=self.clock(),
            )
            self._current[identity_id] = challenge
            self._by_hash[challenge.hash] = challenge

            logger.info(
                "Issued challenge",
                identity_id=identity_id,
                superseded=current is not None,
            )
            return challenge

    async def confirm_registration(
        self,
        identity_id: str,
        observed_hash: str,
        observed_address: str,
        outcome_code: int,
    ) -> VerificationResult:
        """
        Check an on-chain registration against the identity's challenge.

        Repeating a confirmation with the same hash, address and outcome code
        returns the stored result without touching the identity again. So does
        a code 4 receipt from the sender that already verified with code 0.

        Args:
            identity_id: Identity being verified
            observed_hash: Hash carried by the AccountCreated event
            observed_address: Sender recorded by the AccountCreated event
            outcome_code: Contract outcome code

        Raises:
            IdentityNotFound: Unknown identity
            ChallengeMismatch: Hash is not the identity's current challenge
            ChallengeExpired: Challenge older than the configured TTL
            ValueError: ``observed_address`` is not an Ethereum address
        """
        observed = _normalize_hash(observed_hash)
        grant: PrivilegeGrant | None = None

        async with self._lock(identity_id):
            identity = self._require_identity(identity_id)
            current = self._current.get(identity_id)

            if (
                observed is None
                or current is None
                or not hmac.compare_digest(current.hash, observed)
            ):
                logger.warning(
                    "Challenge mismatch, possible replay attempt",
                    identity_id=identity_id,
                )
                raise ChallengeMismatch(
                    f"Hash does not match the active challenge of identity {identity_id}"
                )

            address = normalize_address(observed_address)

            if current.consumed:
                stored = self._results[current.hash]
                if stored.outcome_code == outcome_code and (
                    stored.address is None or stored.address == address
                ):
                    return stored
                # code 4 after code 0: the same sender registered the hash twice
                if stored.success and is_success(outcome_code) and stored.address == address:
                    return stored
                logger.warning(
                    "Consumed challenge replayed with a different outcome",
                    identity_id=identity_id,
                    outcome_code=outcome_code,
                )
                raise ChallengeMismatch(
                    f"Challenge of identity {identity_id} was already confirmed "
                    f"with a different outcome"
                )

            if self._expired(current):
                logger.warning("Expired challenge presented", identity_id=identity_id)
                raise ChallengeExpired(
                    f"Challenge of identity {identity_id} issued at "
                    f"{current.issued_at.isoformat()} has expired"
                )

            current.consumed = True

            if is_success(outcome_code):
                identity.bound_address = address
                identity.verified_at = self.clock()
                self.store.save(identity)
                result = VerificationResult(
                    success=True,
                    message=f"Successfully verified Ethereum address {address}.",
                    identity_id=identity_id,
                    address=address,
                    outcome_code=outcome_code,
                )
                grant = PrivilegeGrant(identity_id=identity_id, address=address)
            else:
                result = VerificationResult.from_error(
                    identity_id,
                    ContractOutcomeFailure(
                        f"Verification failed: {describe(outcome_code)}.",
                        outcome_code=outcome_code,
                    ),
                )

            self._results[current.hash] = result
            logger.info(
                "Confirmed registration",
                identity_id=identity_id,
                success=result.success,
                outcome_code=outcome_code,
            )

        if grant is not None:
            # the bind is already stored; a cancelled caller must not drop the grant
            task = asyncio.ensure_future(self.privileges.emit(grant))
            self._grant_tasks.add(task)
            task.add_done_callback(self._grant_tasks.discard)
            await asyncio.shield(task)
        return result

    def active_challenge(self, identity_id: str) -> Challenge | None:
        """The identity's current challenge if it is still unconsumed."""
        current = self._current.get(identity_id)
        if current is None or current.consumed:
            return None
        return current

    def identity_for_hash(self, challenge_hash: str) -> str | None:
        """Identity owning a live (not superseded) challenge hash."""
        normalized = _normalize_hash(challenge_hash)
        challenge = self._by_hash.get(normalized) if normalized else None
        return challenge.identity_id if challenge else None

    def result_for_hash(self, challenge_hash: str) -> VerificationResult | None:
        """Stored final result for a consumed challenge hash."""
        normalized = _normalize_hash(challenge_hash)
        return self._results.get(normalized) if normalized else None


def _normalize_hash(value: str) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.lower()
    if text.startswith("0x"):
        text = text[2:]
    return text if _HASH_PATTERN.fullmatch(text) else None


__all__ = ["Challenge", "VerificationResult", "ChallengeAuthority"]
