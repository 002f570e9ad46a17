"""
Monitoring for the Ethereum connector.

Structured logging with loguru.

Author: Ethereum Connector Team
License: MIT
"""

from .logging_config import (
    verification_scope,
    configure_from_config,
    configure_logging,
    get_logger,
)

__all__ = [
    "verification_scope",
    "configure_from_config",
    "configure_logging",
    "get_logger",
]
