"""
CLI Tests

Runs the click commands against the in-memory ledger.

Author: Ethereum Connector Team
License: MIT
"""

import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from ethereum_connector.cli.commands import cli
from ethereum_connector.config import ConnectorConfig, ContractConfig

from .conftest import CONTRACT_ADDRESS, USER_ADDRESS


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures loguru against the runner's stderr."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_config_file(tmp_path):
    """Config file selecting the in-memory ledger."""
    path = tmp_path / "connector.yaml"
    ConnectorConfig(
        ledger_mode="mock",
        contract=ContractConfig(address=CONTRACT_ADDRESS),
    ).to_yaml(path)
    return str(path)


class TestCommands:
    """Test CLI commands."""

    def test_signature(self, runner):
        """The selector is printed."""
        result = runner.invoke(cli, ["signature", "transfer(address,uint256)"])

        assert result.exit_code == 0
        assert "0xa9059cbb" in result.output

    def test_config_init(self, runner, tmp_path):
        """A default config file is written."""
        path = tmp_path / "out" / "connector.yaml"

        result = runner.invoke(cli, ["config", "--init", str(path)])

        assert result.exit_code == 0
        assert ConnectorConfig.from_yaml(path) == ConnectorConfig()

    def test_status(self, runner, mock_config_file):
        """Status reports the mock node."""
        result = runner.invoke(cli, ["-c", mock_config_file, "status"])

        assert result.exit_code == 0
        assert "MockLedger/v1.0" in result.output

    def test_check_contract(self, runner, mock_config_file):
        """The mock registry validates."""
        result = runner.invoke(cli, ["-c", mock_config_file, "check-contract"])

        assert result.exit_code == 0

    def test_check_contract_wrong_address(self, runner, mock_config_file):
        """An address without the registry fails."""
        result = runner.invoke(
            cli,
            ["-c", mock_config_file, "check-contract", "--address", "0x" + "11" * 20],
        )

        assert result.exit_code == 1

    def test_verify(self, runner, mock_config_file):
        """A full verification runs against the mock ledger."""
        result = runner.invoke(
            cli,
            ["-c", mock_config_file, "verify", "user-1", "--account", USER_ADDRESS],
        )

        assert result.exit_code == 0
        assert "State: verified" in result.output
        assert f"Successfully verified Ethereum address {USER_ADDRESS}." in result.output

    def test_verify_without_wallet_account(self, runner, mock_config_file):
        """Without an account the wallet never becomes ready."""
        result = runner.invoke(
            cli,
            ["-c", mock_config_file, "verify", "user-1", "--ready-timeout", "0"],
        )

        assert result.exit_code == 1
