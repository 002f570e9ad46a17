"""
Ethereum Connector API Server

FastAPI server exposing the challenge and verification endpoints consumed by
the client agent.

Endpoints:
- GET  /health - Liveness check
- GET  /api/v1/status - Node, server and contract status
- POST /api/v1/identities/{identity_id}/sessions - Open a session (account system only)
- GET  /api/v1/challenge/{identity_id} - Get the identity's challenge hash
- GET  /api/v1/verify/{challenge_hash} - Verify the on-chain registration

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import hmac
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, status
from pydantic import BaseModel, Field

from .blockchain.ledger_client import LedgerClient, create_ledger_client
from .blockchain.registry_contract import RegistryContractGateway
from .config import ConnectorConfig, load_config
from .exceptions import (
    ChallengeExpired,
    ChallengeMismatch,
    ConfigurationError,
    IdentityAlreadyVerified,
    IdentityNotFound,
    NetworkError,
)
from .identity.challenge_authority import ChallengeAuthority
from .identity.privileges import PrivilegeSignal
from .identity.store import IdentityStore, InMemoryIdentityStore
from .monitoring.logging_config import configure_from_config, get_logger

logger = get_logger("api")

SERVICE_VERSION = "1.0.0"


# =============================================================================
# API Models
# =============================================================================


class ChallengeResponse(BaseModel):
    """Challenge hash for the client agent."""

    hash: str = Field(..., description="32-byte challenge, hex encoded")


class VerificationResponse(BaseModel):
    """Final verification result."""

    success: bool
    message: str


class SessionResponse(BaseModel):
    """Session token scoped to one identity."""

    identity_id: str
    token: str


# =============================================================================
# Sessions
# =============================================================================


class SessionRegistry:
    """Bearer tokens, each scoped to exactly one identity."""

    def __init__(self):
        self._sessions: Dict[str, str] = {}

    def open(self, identity_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions[token] = identity_id
        return token

    def close(self, token: str) -> None:
        self._sessions.pop(token, None)

    def identity_for(self, token: str) -> Optional[str]:
        return self._sessions.get(token)


# =============================================================================
# Application State
# =============================================================================


class AppState:
    """Application state."""

    def __init__(self):
        self.config: Optional[ConnectorConfig] = None
        self.ledger: Optional[LedgerClient] = None
        self.gateway: Optional[RegistryContractGateway] = None
        self.store: Optional[IdentityStore] = None
        self.privileges: Optional[PrivilegeSignal] = None
        self.authority: Optional[ChallengeAuthority] = None
        self.sessions = SessionRegistry()
        self.contract_valid = False
        self.ledger_connected = False

    @property
    def is_built(self) -> bool:
        return self.config is not None

    def build(
        self,
        config: ConnectorConfig,
        ledger: Optional[LedgerClient] = None,
        store: Optional[IdentityStore] = None,
        privileges: Optional[PrivilegeSignal] = None,
    ) -> "AppState":
        """Wire the protocol components from configuration."""
        self.config = config
        self.ledger = ledger or create_ledger_client(config)
        self.gateway = RegistryContractGateway(self.ledger, config.contract)
        self.store = store or InMemoryIdentityStore()
        self.privileges = privileges or PrivilegeSignal()
        self.authority = ChallengeAuthority(
            self.store,
            ttl_seconds=config.challenge.ttl_seconds,
            privileges=self.privileges,
        )
        return self

    async def initialize(self) -> None:
        """Connect to the node and validate the registry contract."""
        try:
            await self.ledger.connect()
            self.ledger_connected = True
        except NetworkError as e:
            logger.error("Failed to connect to Ethereum node: {}", e.message)
            logger.warning("Running in degraded mode (ledger unavailable)")
            return

        self.contract_valid = await self.gateway.validate_deployment()
        if not self.contract_valid:
            logger.error(
                "Registry contract not found at {}; verification will fail",
                self.config.contract.address,
            )
        logger.info("Ethereum connector API initialized")

    async def shutdown(self) -> None:
        if self.ledger and self.ledger_connected:
            await self.ledger.disconnect()
            self.ledger_connected = False
        logger.info("Ethereum connector API shutdown complete")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(state: Optional[AppState] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        state: Pre-built application state (loaded from config when omitted)
    """
    app_state = state or AppState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not app_state.is_built:
            config = load_config()
            configure_from_config(config.logging)
            app_state.build(config)
        await app_state.initialize()

        yield

        await app_state.shutdown()

    app = FastAPI(
        title="Ethereum User Connector API",
        description="Bind user identities to self-controlled Ethereum addresses",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.connector = app_state

    def session_identity(
        authorization: Optional[str] = Header(default=None),
    ) -> Optional[str]:
        token = _bearer_token(authorization)
        return app_state.sessions.identity_for(token) if token else None

    # -------------------------------------------------------------------------
    # Health & Status
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "ethereum-user-connector",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "ledger_connected": app_state.ledger_connected,
        }

    @app.get("/api/v1/status")
    async def get_status():
        """Node, server and contract status."""
        config = app_state.config
        try:
            server = config.default_server()
        except ConfigurationError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=e.message,
            )

        report: Dict[str, Any] = {
            "service": "Ethereum User Connector",
            "version": SERVICE_VERSION,
            "server": {
                "id": server.id,
                "label": server.label,
                "url": server.url,
                "network": config.network_options().get(server.network_id),
            },
            "contract": {
                "address": config.contract.address,
                "deployed": app_state.contract_valid,
            },
            "node": None,
        }

        try:
            report["node"] = (await app_state.ledger.node_status()).as_dict()
            check = await app_state.ledger.validate_connection(server.network_id)
            report["connection"] = {"error": check.error, "message": check.message}
        except NetworkError as e:
            report["connection"] = {"error": True, "message": e.message}

        return report

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @app.post(
        "/api/v1/identities/{identity_id}/sessions",
        response_model=SessionResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def open_session(
        identity_id: str,
        x_api_key: Optional[str] = Header(default=None),
    ):
        """
        Open a session for an identity.

        Called by the account system after it authenticated the user. The
        identity is registered if the connector has not seen it yet.
        """
        expected = app_state.config.api.api_key
        if not expected or not x_api_key or not hmac.compare_digest(expected, x_api_key):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid API key",
            )

        app_state.store.add(identity_id)
        token = app_state.sessions.open(identity_id)
        logger.info("Opened session", identity_id=identity_id)
        return SessionResponse(identity_id=identity_id, token=token)

    # -------------------------------------------------------------------------
    # Verification Protocol
    # -------------------------------------------------------------------------

    @app.get("/api/v1/challenge/{identity_id}", response_model=ChallengeResponse)
    async def get_challenge(
        identity_id: str,
        session: Optional[str] = Depends(session_identity),
    ):
        """Return the identity's unconsumed challenge, issuing one if needed."""
        if session is None or session != identity_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Session is not authorized for this identity",
            )

        try:
            challenge = await app_state.authority.issue_challenge(identity_id)
        except IdentityNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
        except IdentityAlreadyVerified as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

        return ChallengeResponse(hash=challenge.hash)

    @app.get("/api/v1/verify/{challenge_hash}", response_model=VerificationResponse)
    async def verify_registration(
        challenge_hash: str,
        session: Optional[str] = Depends(session_identity),
    ):
        """
        Verify the registration transaction carrying ``challenge_hash``.

        Idempotent: once the challenge was consumed the stored result is
        returned without looking at the chain again.
        """
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Authentication required",
            )

        authority = app_state.authority
        stored = authority.result_for_hash(challenge_hash)
        owner = stored.identity_id if stored else authority.identity_for_hash(challenge_hash)

        if owner is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Unknown challenge hash",
            )
        if owner != session:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Session is not authorized for this challenge",
            )
        if stored is not None:
            return VerificationResponse(**stored.as_response())

        try:
            binding = await app_state.gateway.find_binding(challenge_hash)
        except NetworkError as e:
            logger.error("Registration lookup failed: {}", e.message)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Ethereum node unavailable",
            )

        if binding is None:
            return VerificationResponse(
                success=False,
                message="No registration transaction found for this challenge yet.",
            )

        try:
            result = await authority.confirm_registration(
                owner,
                binding.challenge_hash,
                binding.address,
                binding.outcome_code,
            )
        except (ChallengeMismatch, ChallengeExpired) as e:
            return VerificationResponse(success=False, message=e.message)

        return VerificationResponse(**result.as_response())

    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main(config: Optional[ConnectorConfig] = None):
    """Run API server."""
    config = config or load_config()
    configure_from_config(config.logging)

    logger.info("Starting Ethereum connector API on {}:{}", config.api.host, config.api.port)
    logger.info("   Ledger mode: {}", config.ledger_mode)
    logger.info("   Contract: {}", config.contract.address)

    uvicorn.run(
        create_app(AppState().build(config)),
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
