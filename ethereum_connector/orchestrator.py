"""
Verification Orchestrator

Drives the end-to-end address verification flow for one identity:

    IDLE -> CHALLENGE_ISSUED -> TX_SUBMITTED -> TX_PENDING -> TX_CONFIRMED -> VERIFIED

with REJECTED and FAILED as failure terminals. Each wait (wallet action,
broadcast acknowledgement, block inclusion) is bounded by a timeout and can be
cancelled; neither ever consumes the challenge.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator

from loguru import logger

from .blockchain.events import ErrorCause, EventKind
from .blockchain.registry_contract import BindingEvent, BindingHandle, RegistryContractGateway
from .config import OrchestratorConfig
from .exceptions import (
    ConfigurationError,
    ConnectorError,
    ErrorKind,
    InvalidTransition,
    NetworkError,
    UserRejected,
)
from .identity.challenge_authority import ChallengeAuthority, VerificationResult
from .monitoring.logging_config import verification_scope


# =============================================================================
# States
# =============================================================================


class VerificationState(Enum):
    """States of a verification flow."""

    IDLE = "idle"
    CHALLENGE_ISSUED = "challenge_issued"
    TX_SUBMITTED = "tx_submitted"
    TX_PENDING = "tx_pending"
    TX_CONFIRMED = "tx_confirmed"
    VERIFIED = "verified"
    REJECTED = "rejected"
    FAILED = "failed"


S = VerificationState

TRANSITIONS: dict[VerificationState, frozenset[VerificationState]] = {
    S.IDLE: frozenset({S.CHALLENGE_ISSUED, S.FAILED}),
    S.CHALLENGE_ISSUED: frozenset({S.TX_SUBMITTED, S.REJECTED, S.FAILED}),
    S.TX_SUBMITTED: frozenset({S.TX_PENDING, S.REJECTED, S.FAILED}),
    S.TX_PENDING: frozenset({S.TX_CONFIRMED, S.REJECTED, S.FAILED}),
    S.TX_CONFIRMED: frozenset({S.VERIFIED, S.FAILED}),
    S.VERIFIED: frozenset(),
    S.REJECTED: frozenset(),
    # explicit caller-driven retry only
    S.FAILED: frozenset({S.TX_SUBMITTED}),
}

TERMINAL_STATES = frozenset({S.VERIFIED, S.REJECTED, S.FAILED})


class AttemptStatus(Enum):
    """Status of a registration attempt."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class RegistrationAttempt:
    """One binding transaction. Lives only for the duration of a flow."""

    address: str
    challenge_hash: str
    tx_hash: str | None = None
    status: AttemptStatus = AttemptStatus.SUBMITTED


@dataclass
class VerificationFlow:
    """State of one identity's verification."""

    identity_id: str
    address: str
    state: VerificationState = VerificationState.IDLE
    attempt: RegistrationAttempt | None = None
    result: VerificationResult | None = None
    retriable: bool = False
    history: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: VerificationState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Cannot move from {self.state.value} to {new_state.value}"
            )
        logger.debug(
            "Verification transition",
            identity_id=self.identity_id,
            old=self.state.value,
            new=new_state.value,
        )
        self.history.append(
            (new_state.value, datetime.now(timezone.utc).isoformat())
        )
        self.state = new_state


# =============================================================================
# Orchestrator
# =============================================================================


class VerificationOrchestrator:
    """
    Orchestrate address verification flows.

    The orchestrator owns the retry policy: ``retry`` resubmits a FAILED flow
    with the same challenge when it is still unconsumed, or a fresh one when
    the contract already recorded an outcome for the old hash.
    """

    def __init__(
        self,
        authority: ChallengeAuthority,
        gateway: RegistryContractGateway,
        config: OrchestratorConfig | None = None,
    ):
        """
        Initialize verification orchestrator.

        Args:
            authority: Challenge authority
            gateway: Registry contract gateway
            config: Suspension point timeouts
        """
        self.authority = authority
        self.gateway = gateway
        self.config = config or OrchestratorConfig()

        logger.info(
            "Initialized VerificationOrchestrator",
            wallet_timeout=self.config.wallet_timeout,
            inclusion_timeout=self.config.inclusion_timeout,
        )

    async def verify(self, identity_id: str, address: str) -> VerificationFlow:
        """
        Run a verification flow to a terminal state.

        Args:
            identity_id: Identity to bind
            address: Wallet address that will send the transaction

        Returns:
            Terminal VerificationFlow
        """
        flow = VerificationFlow(identity_id=identity_id, address=address.lower())
        logger.info("Starting verification", identity_id=identity_id, address=flow.address)
        with verification_scope(flow.identity_id):
            await self._run(flow)

            retries = 0
            while flow.retriable and retries < self.config.max_retries:
                delay = self.config.retry_backoff * (2 ** retries)
                retries += 1
                logger.info(
                    "Resubmitting after retriable failure",
                    identity_id=identity_id,
                    attempt=retries,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                await self._resubmit(flow)
        return flow

    async def retry(self, flow: VerificationFlow) -> VerificationFlow:
        """
        Resubmit a FAILED flow.

        Raises:
            InvalidTransition: If the flow is not in the FAILED state
        """
        if flow.state is not VerificationState.FAILED:
            raise InvalidTransition(f"Only failed flows can be retried, not {flow.state.value}")

        logger.info("Retrying verification", identity_id=flow.identity_id)
        with verification_scope(flow.identity_id):
            await self._resubmit(flow)
        return flow

    async def _resubmit(self, flow: VerificationFlow) -> None:
        flow.result = None
        flow.retriable = False
        await self._run(flow)

    async def _run(self, flow: VerificationFlow) -> None:
        try:
            challenge = await self.authority.issue_challenge(flow.identity_id)
        except ConnectorError as e:
            self._fail(flow, VerificationResult.from_error(flow.identity_id, e))
            return

        if flow.state is VerificationState.IDLE:
            flow.transition(VerificationState.CHALLENGE_ISSUED)

        try:
            handle = await asyncio.wait_for(
                self.gateway.submit_binding(challenge.hash, flow.address),
                self.config.wallet_timeout,
            )
        except asyncio.TimeoutError:
            self._fail(
                flow,
                VerificationResult(
                    success=False,
                    message="Timed out waiting for the wallet",
                    identity_id=flow.identity_id,
                    kind=ErrorKind.NETWORK,
                ),
                retriable=True,
            )
            return
        except NetworkError as e:
            self._fail(flow, VerificationResult.from_error(flow.identity_id, e), retriable=True)
            return
        except ValueError as e:
            # malformed sender address
            self._fail(
                flow,
                VerificationResult.from_error(flow.identity_id, ConfigurationError(str(e))),
            )
            return

        flow.attempt = RegistrationAttempt(address=flow.address, challenge_hash=challenge.hash)
        flow.transition(VerificationState.TX_SUBMITTED)

        try:
            await self._follow(flow, handle)
        except asyncio.CancelledError:
            handle.cancel()
            logger.info("Verification cancelled", identity_id=flow.identity_id)
            raise

    async def _follow(self, flow: VerificationFlow, handle: BindingHandle) -> None:
        events = handle.events()
        # the tx hash arrives once the wallet has signed and the node accepted it
        timeout = self.config.wallet_timeout + self.config.propagation_timeout

        while True:
            try:
                event = await self._next_event(events, timeout)
            except asyncio.TimeoutError:
                handle.cancel("timed out")
                self._fail(
                    flow,
                    VerificationResult(
                        success=False,
                        message=f"Timed out in state {flow.state.value}",
                        identity_id=flow.identity_id,
                        kind=ErrorKind.NETWORK,
                    ),
                    retriable=True,
                )
                return

            if event is None:
                return

            if event.kind is EventKind.SUBMITTED:
                flow.attempt.tx_hash = event.tx_hash
                flow.attempt.status = AttemptStatus.PENDING
                flow.transition(VerificationState.TX_PENDING)
                logger.info(
                    "Transaction pending",
                    identity_id=flow.identity_id,
                    tx_hash=event.tx_hash,
                )
                timeout = self.config.inclusion_timeout

            elif event.kind is EventKind.ERROR:
                self._handle_error(flow, event)
                return

            else:
                flow.attempt.status = AttemptStatus.CONFIRMED
                flow.transition(VerificationState.TX_CONFIRMED)
                with verification_scope(flow.identity_id, tx_hash=flow.attempt.tx_hash):
                    await self._confirm(flow, event)
                return

    async def _next_event(
        self,
        events: AsyncIterator[BindingEvent],
        timeout: float,
    ) -> BindingEvent | None:
        try:
            return await asyncio.wait_for(events.__anext__(), timeout)
        except StopAsyncIteration:
            return None

    def _handle_error(self, flow: VerificationFlow, event: BindingEvent) -> None:
        flow.attempt.status = AttemptStatus.FAILED

        if event.cause is ErrorCause.USER_REJECTED:
            self._reject(flow, UserRejected("You rejected the transaction."))
            return

        retriable = event.cause in (
            ErrorCause.NETWORK,
            ErrorCause.TIMEOUT,
            ErrorCause.CANCELLED,
            ErrorCause.REVERTED,
        )
        cause = event.cause.value if event.cause else "unknown"
        self._fail(
            flow,
            VerificationResult(
                success=False,
                message=f"Transaction failed ({cause}): {event.detail}",
                identity_id=flow.identity_id,
                kind=ErrorKind.NETWORK,
            ),
            retriable=retriable,
        )

    async def _confirm(self, flow: VerificationFlow, event: BindingEvent) -> None:
        try:
            result = await self.authority.confirm_registration(
                flow.identity_id,
                event.challenge_hash,
                event.address,
                event.outcome_code,
            )
        except ConnectorError as e:
            self._fail(flow, VerificationResult.from_error(flow.identity_id, e))
            return

        flow.result = result
        if result.success:
            flow.transition(VerificationState.VERIFIED)
            logger.success(
                "Identity verified",
                identity_id=flow.identity_id,
                address=result.address,
            )
        else:
            flow.attempt.status = AttemptStatus.FAILED
            self._fail(flow, result)

    def _reject(self, flow: VerificationFlow, error: UserRejected) -> None:
        flow.result = VerificationResult.from_error(flow.identity_id, error)
        flow.transition(VerificationState.REJECTED)
        logger.info("Transaction rejected by user", identity_id=flow.identity_id)

    def _fail(
        self,
        flow: VerificationFlow,
        result: VerificationResult,
        retriable: bool = False,
    ) -> None:
        flow.result = result
        flow.retriable = retriable
        if flow.state is not VerificationState.FAILED:
            flow.transition(VerificationState.FAILED)
        logger.warning(
            "Verification failed",
            identity_id=flow.identity_id,
            kind=result.kind.value if result.kind else None,
            reason=result.message,
        )


__all__ = [
    "VerificationState",
    "AttemptStatus",
    "RegistrationAttempt",
    "VerificationFlow",
    "VerificationOrchestrator",
    "TRANSITIONS",
    "TERMINAL_STATES",
]
