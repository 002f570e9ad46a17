"""Wallet-side client agent."""

from .agent import ClientAgent, LedgerWallet, Wallet

__all__ = ["ClientAgent", "LedgerWallet", "Wallet"]
