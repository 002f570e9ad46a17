"""
Client Agent

Environment glue on the wallet side: waits until the wallet exposes an
account on the expected network, checks the registry contract is deployed,
then hands the account to the verification orchestrator.

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger

from ..blockchain.ledger_client import LedgerClient
from ..blockchain.registry_contract import RegistryContractGateway
from ..exceptions import ConfigurationError, NetworkError, WalletNotReady
from ..orchestrator import VerificationFlow, VerificationOrchestrator


class Wallet(Protocol):
    """What the agent needs from a wallet."""

    async def accounts(self) -> list[str]: ...

    async def chain_id(self) -> int: ...


class LedgerWallet:
    """Wallet backed by the accounts a ledger node manages."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def accounts(self) -> list[str]:
        return await self.ledger.accounts()

    async def chain_id(self) -> int:
        return await self.ledger.chain_id()


class ClientAgent:
    """
    Run verification once the wallet is ready.

    Usage:
        agent = ClientAgent(LedgerWallet(ledger), orchestrator, gateway, network_id=1)
        flow = await agent.run("user-1")
    """

    def __init__(
        self,
        wallet: Wallet,
        orchestrator: VerificationOrchestrator,
        gateway: RegistryContractGateway,
        network_id: int,
        poll_interval: float = 1.0,
        ready_timeout: float = 60.0,
    ):
        self.wallet = wallet
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.network_id = network_id
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

    async def wait_until_ready(self) -> str:
        """
        Poll the wallet until it has an account on the expected network.

        Returns:
            The first wallet account, lowercased

        Raises:
            WalletNotReady: If nothing usable showed up within ``ready_timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout
        last_problem = "wallet not checked yet"

        while True:
            try:
                chain_id = await self.wallet.chain_id()
                accounts = await self.wallet.accounts()
            except NetworkError as e:
                last_problem = f"wallet unreachable: {e.message}"
            else:
                if chain_id != self.network_id:
                    last_problem = (
                        f"wallet is on network {chain_id}, expected {self.network_id}"
                    )
                elif not accounts:
                    last_problem = "wallet exposes no account"
                else:
                    logger.info("Wallet ready", account=accounts[0].lower())
                    return accounts[0].lower()

            if loop.time() >= deadline:
                raise WalletNotReady(f"Wallet not ready: {last_problem}")

            logger.debug(f"Waiting for wallet: {last_problem}")
            await asyncio.sleep(self.poll_interval)

    async def run(self, identity_id: str) -> VerificationFlow:
        """
        Verify ``identity_id`` with the wallet's account.

        Raises:
            ConfigurationError: If the registry contract is not deployed
            WalletNotReady: If the wallet never became usable
        """
        if not await self.gateway.validate_deployment():
            raise ConfigurationError(
                f"Can not verify contract at given address: {self.gateway.contract.address}"
            )

        account = await self.wait_until_ready()
        return await self.orchestrator.verify(identity_id, account)


__all__ = ["Wallet", "LedgerWallet", "ClientAgent"]
