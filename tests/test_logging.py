"""
Logging Tests

Checks that log lines carry the verification scope they were emitted in.

Author: Ethereum Connector Team
License: MIT
"""

import json
import sys

import pytest
from loguru import logger

from ethereum_connector.monitoring.logging_config import (
    TEXT_FORMAT,
    configure_logging,
    get_logger,
    verification_scope,
)

from .conftest import USER_ADDRESS


@pytest.fixture
def lines():
    """Plain-text log lines captured after configure_logging."""
    configure_logging(log_level="DEBUG")
    captured = []
    logger.remove()
    logger.add(captured.append, format=TEXT_FORMAT, colorize=False, level="DEBUG")
    yield captured
    logger.remove()
    logger.add(sys.stderr)


class TestScopeRendering:
    """Test rendering of scope and structured fields."""

    def test_scope_precedes_message(self, lines):
        """Identity and tx hash are shown before the message, fields after."""
        with verification_scope("user-1", tx_hash="0xabc"):
            logger.info("Confirmed registration", outcome_code=0)

        assert "[identity_id=user-1 tx_hash=0xabc] Confirmed registration outcome_code=0" in lines[0]

    def test_component_logger(self, lines):
        """Component loggers carry their name."""
        get_logger("api").info("Started")

        assert "[component=api] Started" in lines[0]

    def test_unscoped_record(self, lines):
        """Records outside any scope render the bare message."""
        logger.info("Plain")

        assert lines[0].rstrip().endswith("- Plain")

    @pytest.mark.asyncio
    async def test_orchestrator_scopes_records(self, lines, orchestrator):
        """A verification logs under its identity and, once sent, its tx hash."""
        await orchestrator.verify("user-1", USER_ADDRESS)

        confirmed = [line for line in lines if "Confirmed registration" in line]
        assert len(confirmed) == 1
        assert "identity_id=user-1" in confirmed[0]
        assert "tx_hash=0x" in confirmed[0]


class TestSerializedOutput:
    """Test JSON log files."""

    def test_json_file_keeps_scope(self, tmp_path):
        """Serialized records keep the scope as structured extra."""
        path = tmp_path / "logs" / "connector.log"
        configure_logging(log_file=path, serialize=True)

        with verification_scope("user-1"):
            logger.warning("Challenge mismatch, possible replay attempt")

        record = json.loads(path.read_text().splitlines()[0])["record"]
        logger.remove()
        logger.add(sys.stderr)

        assert record["extra"]["identity_id"] == "user-1"
        assert record["level"]["name"] == "WARNING"
