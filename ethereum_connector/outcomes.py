"""
Registry contract outcome codes.

The registry contract reports the result of ``newUser(bytes32)`` through the
``AccountCreated(address from, bytes32 hash, int256 error)`` event. The codes
are fixed by the deployed contract and are mapped verbatim here.
"""

from __future__ import annotations

from enum import IntEnum


class OutcomeCode(IntEnum):
    """Outcome codes emitted by the registry contract."""

    SUCCESS = 0
    REGISTRY_DISABLED = 1
    HASH_MALFORMED = 2
    BOUND_TO_OTHER_ADDRESS = 3
    ALREADY_BOUND = 4


OUTCOME_REASONS: dict[OutcomeCode, str] = {
    OutcomeCode.SUCCESS: "hash newly bound to address",
    OutcomeCode.REGISTRY_DISABLED: "registry disabled (newer version available)",
    OutcomeCode.HASH_MALFORMED: "hash too long or malformed",
    OutcomeCode.BOUND_TO_OTHER_ADDRESS: "already bound to different address",
    OutcomeCode.ALREADY_BOUND: "hash already bound to this address",
}

SUCCESS_CODES = frozenset({OutcomeCode.SUCCESS, OutcomeCode.ALREADY_BOUND})


def is_success(code: int) -> bool:
    """Codes 0 and 4 both mean the hash is bound to the submitting address."""
    return code in SUCCESS_CODES


def describe(code: int) -> str:
    """Human-readable reason for an outcome code."""
    try:
        return OUTCOME_REASONS[OutcomeCode(code)]
    except ValueError:
        return f"unknown outcome code {code}"


__all__ = [
    "OutcomeCode",
    "OUTCOME_REASONS",
    "SUCCESS_CODES",
    "is_success",
    "describe",
]
