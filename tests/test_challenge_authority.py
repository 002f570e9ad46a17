"""
Challenge Authority Tests

Tests for challenge issuance, confirmation, replay protection and the
privilege grant.

Author: Ethereum Connector Team
License: MIT
"""

import asyncio

import pytest

from ethereum_connector.exceptions import (
    ChallengeExpired,
    ChallengeMismatch,
    ErrorKind,
    IdentityAlreadyVerified,
    IdentityNotFound,
)
from ethereum_connector.identity.challenge_authority import ChallengeAuthority

from .conftest import OTHER_ADDRESS, USER_ADDRESS


# =============================================================================
# Issuance
# =============================================================================

class TestIssueChallenge:
    """Test challenge issuance."""

    @pytest.mark.asyncio
    async def test_challenge_is_32_random_bytes(self, authority):
        """Hash is 64 lowercase hex characters without prefix."""
        challenge = await authority.issue_challenge("user-1")

        assert len(challenge.hash) == 64
        assert challenge.hash == challenge.hash.lower()
        int(challenge.hash, 16)
        assert not challenge.consumed

    @pytest.mark.asyncio
    async def test_reissue_returns_unconsumed_challenge(self, authority):
        """A second request returns the same unconsumed challenge."""
        first = await authority.issue_challenge("user-1")
        second = await authority.issue_challenge("user-1")

        assert first.hash == second.hash

    @pytest.mark.asyncio
    async def test_identities_get_distinct_challenges(self, authority):
        """Each identity has its own challenge."""
        one = await authority.issue_challenge("user-1")
        two = await authority.issue_challenge("user-2")

        assert one.hash != two.hash
        assert authority.identity_for_hash(one.hash) == "user-1"
        assert authority.identity_for_hash(two.hash) == "user-2"

    @pytest.mark.asyncio
    async def test_concurrent_issuance_yields_one_challenge(self, authority):
        """Concurrent requests for one identity never create two challenges."""
        challenges = await asyncio.gather(
            *(authority.issue_challenge("user-1") for _ in range(10))
        )

        assert len({c.hash for c in challenges}) == 1

    @pytest.mark.asyncio
    async def test_unknown_identity(self, authority):
        """Unknown identities are refused."""
        with pytest.raises(IdentityNotFound):
            await authority.issue_challenge("nobody")

    @pytest.mark.asyncio
    async def test_verified_identity_is_refused(self, authority):
        """A verified identity cannot get a new challenge."""
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        with pytest.raises(IdentityAlreadyVerified):
            await authority.issue_challenge("user-1")

    @pytest.mark.asyncio
    async def test_force_supersedes_old_hash(self, authority):
        """Forcing a new challenge invalidates the previous hash."""
        old = await authority.issue_challenge("user-1")
        new = await authority.issue_challenge("user-1", force=True)

        assert new.hash != old.hash
        assert authority.identity_for_hash(old.hash) is None

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", old.hash, USER_ADDRESS, 0)

        result = await authority.confirm_registration("user-1", new.hash, USER_ADDRESS, 0)
        assert result.success

    @pytest.mark.asyncio
    async def test_expired_challenge_is_replaced(self, store, privileges, clock):
        """Past its TTL, a new challenge is issued on request."""
        authority = ChallengeAuthority(store, ttl_seconds=60, privileges=privileges, clock=clock)
        old = await authority.issue_challenge("user-1")

        clock.advance(61)
        new = await authority.issue_challenge("user-1")

        assert new.hash != old.hash


# =============================================================================
# Confirmation
# =============================================================================

class TestConfirmRegistration:
    """Test confirmation of on-chain registrations."""

    @pytest.mark.asyncio
    async def test_success_binds_address(self, authority, store, clock):
        """Outcome 0 binds the address and consumes the challenge."""
        challenge = await authority.issue_challenge("user-1")

        result = await authority.confirm_registration(
            "user-1", challenge.hash, USER_ADDRESS, 0
        )

        assert result.success
        assert result.address == USER_ADDRESS
        assert result.message == f"Successfully verified Ethereum address {USER_ADDRESS}."

        identity = store.get("user-1")
        assert identity.bound_address == USER_ADDRESS
        assert identity.verified_at == clock.now
        assert challenge.consumed
        assert authority.active_challenge("user-1") is None

    @pytest.mark.asyncio
    async def test_already_bound_to_same_address_is_success(self, authority, store):
        """Outcome 4 is a success."""
        challenge = await authority.issue_challenge("user-1")

        result = await authority.confirm_registration(
            "user-1", challenge.hash, USER_ADDRESS, 4
        )

        assert result.success
        assert store.get("user-1").is_verified

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,reason", [
        (1, "registry disabled"),
        (2, "hash too long"),
        (3, "already bound to different address"),
        (17, "unknown outcome code 17"),
    ])
    async def test_failure_codes(self, authority, store, code, reason):
        """Failure codes consume the challenge without binding."""
        challenge = await authority.issue_challenge("user-1")

        result = await authority.confirm_registration(
            "user-1", challenge.hash, USER_ADDRESS, code
        )

        assert not result.success
        assert result.kind is ErrorKind.CONTRACT_OUTCOME
        assert result.outcome_code == code
        assert reason in result.message
        assert not store.get("user-1").is_verified
        assert challenge.consumed

    @pytest.mark.asyncio
    async def test_failure_allows_fresh_challenge(self, authority):
        """After a failure outcome the next request gets a new hash."""
        old = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", old.hash, USER_ADDRESS, 3)

        new = await authority.issue_challenge("user-1")

        assert new.hash != old.hash

    @pytest.mark.asyncio
    async def test_prefixed_uppercase_hash_accepted(self, authority):
        """The event hash may carry 0x and uppercase hex."""
        challenge = await authority.issue_challenge("user-1")

        result = await authority.confirm_registration(
            "user-1", "0x" + challenge.hash.upper(), USER_ADDRESS, 0
        )

        assert result.success

    @pytest.mark.asyncio
    async def test_wrong_hash_is_mismatch(self, authority, store):
        """A hash that is not the identity's challenge changes nothing."""
        challenge = await authority.issue_challenge("user-1")

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", "ab" * 32, USER_ADDRESS, 0)

        assert not challenge.consumed
        assert not store.get("user-1").is_verified

    @pytest.mark.asyncio
    async def test_other_identity_hash_is_mismatch(self, authority, store):
        """One identity's hash cannot verify another identity."""
        await authority.issue_challenge("user-1")
        other = await authority.issue_challenge("user-2")

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", other.hash, OTHER_ADDRESS, 0)

        assert not store.get("user-1").is_verified

    @pytest.mark.asyncio
    async def test_malformed_hash_is_mismatch(self, authority):
        """Non-hex input never matches."""
        await authority.issue_challenge("user-1")

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", "not-a-hash", USER_ADDRESS, 0)

    @pytest.mark.asyncio
    async def test_without_challenge_is_mismatch(self, authority):
        """Confirming before any challenge was issued fails."""
        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", "ab" * 32, USER_ADDRESS, 0)

    @pytest.mark.asyncio
    async def test_unknown_identity(self, authority):
        """Unknown identities are refused."""
        with pytest.raises(IdentityNotFound):
            await authority.confirm_registration("nobody", "ab" * 32, USER_ADDRESS, 0)

    @pytest.mark.asyncio
    async def test_invalid_address_leaves_challenge(self, authority):
        """A malformed address is rejected before consuming anything."""
        challenge = await authority.issue_challenge("user-1")

        with pytest.raises(ValueError):
            await authority.confirm_registration("user-1", challenge.hash, "0x1234", 0)

        assert not challenge.consumed

    @pytest.mark.asyncio
    async def test_expired_challenge(self, store, privileges, clock):
        """Confirming after the TTL raises and binds nothing."""
        authority = ChallengeAuthority(store, ttl_seconds=60, privileges=privileges, clock=clock)
        challenge = await authority.issue_challenge("user-1")

        clock.advance(120)

        with pytest.raises(ChallengeExpired):
            await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        assert not store.get("user-1").is_verified
        assert not challenge.consumed


# =============================================================================
# Idempotence & Privileges
# =============================================================================

class TestIdempotence:
    """Test repeated confirmation and the privilege grant."""

    @pytest.mark.asyncio
    async def test_repeat_returns_stored_result(self, authority, privileges):
        """Replaying the same confirmation returns the first result."""
        challenge = await authority.issue_challenge("user-1")

        first = await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)
        second = await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        assert second is first
        assert len(privileges.history) == 1
        assert authority.result_for_hash(challenge.hash) is first

    @pytest.mark.asyncio
    async def test_repeat_with_other_outcome_is_mismatch(self, authority):
        """A consumed challenge cannot be confirmed with a different outcome."""
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 3)

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

    @pytest.mark.asyncio
    async def test_repeat_with_other_address_is_mismatch(self, authority, store):
        """A consumed challenge cannot rebind to another address."""
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", challenge.hash, OTHER_ADDRESS, 0)

        assert store.get("user-1").bound_address == USER_ADDRESS

    @pytest.mark.asyncio
    async def test_grant_emitted_once_on_success(self, authority, privileges):
        """Handlers receive exactly one grant per verification."""
        received = []

        async def handler(grant):
            received.append(grant)

        privileges.register_handler(handler)
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        assert len(received) == 1
        assert received[0].identity_id == "user-1"
        assert received[0].address == USER_ADDRESS

    @pytest.mark.asyncio
    async def test_no_grant_on_failure(self, authority, privileges):
        """Failure outcomes never grant privileges."""
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 1)

        assert privileges.history == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_verification(self, authority, privileges, store):
        """A broken grant handler is logged, the binding stands."""
        async def broken(grant):
            raise RuntimeError("authorization backend down")

        privileges.register_handler(broken)
        challenge = await authority.issue_challenge("user-1")

        result = await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        assert result.success
        assert store.get("user-1").is_verified

    @pytest.mark.asyncio
    async def test_code_4_after_code_0_returns_stored_result(self, authority, privileges):
        """A second registration by the same sender confirms as the first."""
        challenge = await authority.issue_challenge("user-1")
        first = await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        second = await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 4)

        assert second is first
        assert len(privileges.history) == 1

    @pytest.mark.asyncio
    async def test_code_4_from_other_sender_is_mismatch(self, authority):
        """Outcome 4 only replays for the address that verified."""
        challenge = await authority.issue_challenge("user-1")
        await authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)

        with pytest.raises(ChallengeMismatch):
            await authority.confirm_registration("user-1", challenge.hash, OTHER_ADDRESS, 4)

    @pytest.mark.asyncio
    async def test_grant_delivered_when_caller_cancelled(self, authority, privileges, store):
        """Cancelling the confirming task does not drop the grant."""
        started = asyncio.Event()
        release = asyncio.Event()
        delivered = []

        async def slow(grant):
            started.set()
            await release.wait()
            delivered.append(grant)

        privileges.register_handler(slow)
        challenge = await authority.issue_challenge("user-1")
        task = asyncio.create_task(
            authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)
        )
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        for _ in range(5):
            await asyncio.sleep(0)

        assert len(delivered) == 1
        assert store.get("user-1").bound_address == USER_ADDRESS


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrentConfirmation:
    """Test racing confirmations of one challenge."""

    @pytest.mark.asyncio
    async def test_same_hash_confirmed_once(self, authority, privileges, store):
        """Concurrent confirmations share one result and one grant."""
        challenge = await authority.issue_challenge("user-1")

        results = await asyncio.gather(*(
            authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 0)
            for _ in range(5)
        ))

        assert all(result == results[0] for result in results)
        assert results[0].success
        assert len(privileges.history) == 1
        assert store.get("user-1").bound_address == USER_ADDRESS

    @pytest.mark.asyncio
    async def test_failure_outcome_recorded_once(self, authority, privileges):
        """Racing failure receipts consume the challenge once."""
        challenge = await authority.issue_challenge("user-1")

        results = await asyncio.gather(*(
            authority.confirm_registration("user-1", challenge.hash, USER_ADDRESS, 2)
            for _ in range(3)
        ))

        assert all(result is results[0] for result in results)
        assert results[0].kind is ErrorKind.CONTRACT_OUTCOME
        assert privileges.history == []
        assert authority.active_challenge("user-1") is None
