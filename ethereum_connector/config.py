"""
Ethereum Connector Configuration System

Pydantic v2-based configuration with YAML/JSON support and environment overrides.

Features:
- Type-safe configuration models
- YAML/JSON file loading
- Environment variable overrides (with .env support)
- Node server registry with default server resolution
- Known Ethereum networks

Author: Ethereum Connector Team
License: MIT
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ConfigurationError


# =============================================================================
# Network & Server Configuration
# =============================================================================


class NetworkConfig(BaseModel):
    """An Ethereum network the connector knows about."""

    id: int = Field(..., ge=1, description="Ethereum network (chain) id")
    label: str = Field(..., description="Short network name")
    description: str = Field(default="", description="Network description")
    link_to_address: str = Field(
        default="",
        description="Block explorer URL prefix for addresses",
    )


def default_networks() -> list[NetworkConfig]:
    return [
        NetworkConfig(
            id=1,
            label="Mainnet",
            description="Ethereum main network",
            link_to_address="https://etherscan.io/address/",
        ),
        NetworkConfig(
            id=11155111,
            label="Sepolia",
            description="Proof-of-stake test network",
            link_to_address="https://sepolia.etherscan.io/address/",
        ),
        NetworkConfig(
            id=17000,
            label="Holesky",
            description="Staking and infrastructure test network",
            link_to_address="https://holesky.etherscan.io/address/",
        ),
        NetworkConfig(
            id=1337,
            label="Local",
            description="Local development chain",
        ),
    ]


class ServerConfig(BaseModel):
    """An Ethereum JSON-RPC node endpoint."""

    id: str = Field(..., min_length=1, description="Machine name of the server")
    label: str = Field(default="", description="Human readable server name")
    url: str = Field(..., description="JSON-RPC endpoint URL")
    network_id: int = Field(default=1337, ge=1, description="Expected network id")
    enabled: bool = Field(default=True, description="Whether the server may be used")
    description: str = Field(default="", description="Server description")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Only HTTP(S) and WebSocket endpoints are supported."""
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError(f"Unsupported RPC url scheme: {v}")
        return v

    @model_validator(mode="after")
    def default_label(self) -> ServerConfig:
        if not self.label:
            self.label = self.id
        return self


# =============================================================================
# Contract Configuration
# =============================================================================


class ContractConfig(BaseModel):
    """Location of the deployed registry contract."""

    address: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="Registry contract address",
    )

    deployment_block: int = Field(
        default=0,
        ge=0,
        description="Block the contract was deployed in (log scans start here)",
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Normalise to lowercase 20-byte hex."""
        value = v.lower()
        if not value.startswith("0x") or len(value) != 42:
            raise ValueError(f"Contract address must be 20-byte hex: {v}")
        try:
            int(value[2:], 16)
        except ValueError as e:
            raise ValueError(f"Contract address must be 20-byte hex: {v}") from e
        return value


# =============================================================================
# Protocol Configuration
# =============================================================================


class ChallengeConfig(BaseModel):
    """Configuration for challenge issuance."""

    ttl_seconds: int = Field(
        default=0,
        ge=0,
        description="Challenge lifetime in seconds (0 disables expiry)",
    )


class OrchestratorConfig(BaseModel):
    """Timeouts for each suspension point of a verification flow."""

    wallet_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds to wait for the wallet to sign and broadcast",
    )

    propagation_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds to wait for the broadcast acknowledgement",
    )

    inclusion_timeout: float = Field(
        default=900.0,
        gt=0,
        description="Seconds to wait for block inclusion",
    )

    receipt_poll_interval: float = Field(
        default=2.0,
        gt=0,
        description="Receipt polling interval in seconds",
    )

    max_retries: int = Field(
        default=0,
        ge=0,
        description="Automatic resubmissions after a retriable failure (0 leaves retry to the caller)",
    )

    retry_backoff: float = Field(
        default=1.0,
        ge=0,
        description="Initial delay before an automatic resubmission, doubled each time",
    )


class ApiConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")

    api_key: str | None = Field(
        default=None,
        description="Key the account system uses to open identity sessions",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )

    file: Path | None = Field(default=None, description="Optional log file")

    serialize: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# Main Configuration
# =============================================================================


class ConnectorConfig(BaseModel):
    """Main connector configuration."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Environment",
    )

    ledger_mode: Literal["web3", "mock"] = Field(
        default="web3",
        description="Ledger client implementation",
    )

    current_server: str = Field(
        default="local",
        description="Id of the default server",
    )

    servers: list[ServerConfig] = Field(
        default_factory=lambda: [
            ServerConfig(
                id="local",
                label="Local node",
                url="http://127.0.0.1:8545",
                network_id=1337,
            )
        ],
        description="Known node servers",
    )

    networks: list[NetworkConfig] = Field(
        default_factory=default_networks,
        description="Known Ethereum networks",
    )

    contract: ContractConfig = Field(
        default_factory=ContractConfig,
        description="Registry contract configuration",
    )

    challenge: ChallengeConfig = Field(
        default_factory=ChallengeConfig,
        description="Challenge configuration",
    )

    orchestrator: OrchestratorConfig = Field(
        default_factory=OrchestratorConfig,
        description="Orchestrator timeouts",
    )

    api: ApiConfig = Field(
        default_factory=ApiConfig,
        description="HTTP server configuration",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @field_validator("servers")
    @classmethod
    def unique_server_ids(cls, v: list[ServerConfig]) -> list[ServerConfig]:
        ids = [server.id for server in v]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate server ids: {ids}")
        return v

    # -------------------------------------------------------------------------
    # Server & network registry
    # -------------------------------------------------------------------------

    def servers_by_status(self, enabled_only: bool = False) -> list[ServerConfig]:
        """Return configured servers, optionally only the enabled ones."""
        if enabled_only:
            return [server for server in self.servers if server.enabled]
        return list(self.servers)

    def server_options(self, enabled_only: bool = False) -> dict[str, str]:
        """Servers as ``{id: label}``."""
        return {
            server.id: server.label
            for server in self.servers_by_status(enabled_only)
        }

    def default_server(self) -> ServerConfig:
        """
        Resolve the current default server.

        Raises:
            ConfigurationError: If the server does not exist or is disabled
        """
        for server in self.servers:
            if server.id == self.current_server:
                if not server.enabled:
                    raise ConfigurationError(
                        f"Current default server ({self.current_server}) is not enabled."
                    )
                return server

        raise ConfigurationError(
            f"Current default server ({self.current_server}) does not exist."
        )

    def network(self, network_id: int) -> NetworkConfig:
        """Look up a known network by id."""
        for network in self.networks:
            if network.id == network_id:
                return network
        raise ConfigurationError(f"Unknown network id: {network_id}")

    def network_options(self) -> dict[int, str]:
        """Networks as ``{id: "Label (id) - description"}``."""
        return {
            network.id: f"{network.label} ({network.id}) - {network.description}"
            for network in self.networks
        }

    # -------------------------------------------------------------------------
    # Loading & saving
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: str | Path) -> ConnectorConfig:
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML file

        Returns:
            ConnectorConfig instance
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {path}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: str | Path) -> ConnectorConfig:
        """
        Load configuration from JSON file.

        Args:
            path: Path to JSON file

        Returns:
            ConnectorConfig instance
        """
        import json

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = json.load(f)

        logger.info(f"Loaded configuration from {path}")
        return cls(**data)

    @classmethod
    def from_env(cls, prefix: str = "ETH_CONNECTOR_") -> ConnectorConfig:
        """
        Load configuration from environment variables.

        Environment variables should be in the format:
        ETH_CONNECTOR_CONTRACT__ADDRESS=0x...
        ETH_CONNECTOR_CHALLENGE__TTL_SECONDS=600

        A ``.env`` file in the working directory is read first.

        Args:
            prefix: Environment variable prefix

        Returns:
            ConnectorConfig instance
        """
        load_dotenv()
        config_dict: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue

            key = key[len(prefix):].lower()
            parts = key.split("__")

            current = config_dict
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            # pydantic coerces the raw string by the field type
            current[parts[-1]] = value

        logger.info(f"Loaded configuration from environment variables (prefix={prefix})")
        return cls(**config_dict)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

        logger.info(f"Saved configuration to {path}")


# =============================================================================
# Configuration Factory
# =============================================================================


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "ETH_CONNECTOR_",
) -> ConnectorConfig:
    """
    Load configuration with automatic format detection.

    Priority:
    1. Explicit config file (YAML or JSON)
    2. Environment variables
    3. Defaults

    Args:
        config_path: Path to config file (YAML or JSON)
        env_prefix: Environment variable prefix

    Returns:
        ConnectorConfig instance
    """
    if config_path:
        path = Path(config_path)
        if path.suffix in (".yaml", ".yml"):
            return ConnectorConfig.from_yaml(path)
        elif path.suffix == ".json":
            return ConnectorConfig.from_json(path)
        else:
            raise ValueError(f"Unknown config format: {path.suffix}")

    load_dotenv()
    if any(key.startswith(env_prefix) for key in os.environ):
        logger.info("Using configuration from environment variables")
        return ConnectorConfig.from_env(env_prefix)

    logger.info("Using default configuration")
    return ConnectorConfig()


__all__ = [
    "NetworkConfig",
    "ServerConfig",
    "ContractConfig",
    "ChallengeConfig",
    "OrchestratorConfig",
    "ApiConfig",
    "LoggingConfig",
    "ConnectorConfig",
    "default_networks",
    "load_config",
]
