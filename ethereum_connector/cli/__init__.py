"""
Command Line Interface for the Ethereum connector.

Commands:
- eth-connector serve: Run the HTTP API
- eth-connector status: Node and network status
- eth-connector check-contract: Verify the registry contract is deployed
- eth-connector signature: Method selector of a function signature
- eth-connector verify: Run a verification with a node-managed account
- eth-connector config: Configuration management

Author: Ethereum Connector Team
License: MIT
"""

from .commands import cli

__all__ = ["cli"]
