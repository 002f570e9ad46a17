"""
Identity side of the verification protocol: identity records, challenges
and privilege grants.
"""

from .store import Identity, IdentityStore, InMemoryIdentityStore
from .privileges import PrivilegeGrant, PrivilegeSignal
from .challenge_authority import Challenge, ChallengeAuthority, VerificationResult

__all__ = [
    "Identity",
    "IdentityStore",
    "InMemoryIdentityStore",
    "PrivilegeGrant",
    "PrivilegeSignal",
    "Challenge",
    "ChallengeAuthority",
    "VerificationResult",
]
