"""
Logging for the Ethereum connector.

Every record is rendered with the verification scope it belongs to (the
identity and, once known, the transaction hash) ahead of the message, and any
remaining structured fields after it:

    2024-05-01 12:00:00 | INFO     | orchestrator:verify - [identity_id=user-1] Starting verification address=0x...

Author: Ethereum Connector Team
License: MIT
"""

from contextlib import AbstractContextManager
from pathlib import Path
import sys
from typing import Optional

from loguru import logger

from ..config import LoggingConfig

SCOPE_KEYS = ("component", "identity_id", "tx_hash")

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{function}</cyan> - "
    "{extra[scope]}<level>{message}</level>{extra[fields]}"
)


def _render_context(record) -> None:
    extra = record["extra"]
    scope = " ".join(
        f"{key}={extra[key]}" for key in SCOPE_KEYS if extra.get(key) is not None
    )
    fields = " ".join(
        f"{key}={value}"
        for key, value in extra.items()
        if key not in SCOPE_KEYS and key not in ("scope", "fields")
    )
    extra["scope"] = f"[{scope}] " if scope else ""
    extra["fields"] = f" {fields}" if fields else ""


def configure_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    serialize: bool = False,
    rotation: str = "100 MB",
    retention: str = "30 days",
) -> None:
    """
    Route connector logs to stderr and, optionally, a rotating file.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Optional log file path
        serialize: Emit JSON lines (for log shippers) instead of text
        rotation: File rotation size/time
        retention: File retention period
    """
    logger.remove()
    logger.configure(patcher=_render_context)

    level = log_level.upper()
    text_format = "{message}" if serialize else TEXT_FORMAT

    logger.add(
        sys.stderr,
        format=text_format,
        level=level,
        colorize=not serialize,
        serialize=serialize,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            format=text_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
        )


def configure_from_config(config: LoggingConfig) -> None:
    """Apply a ``LoggingConfig`` section."""
    configure_logging(
        log_level=config.level,
        log_file=config.file,
        serialize=config.serialize,
    )


def get_logger(component: str):
    """Logger whose records carry ``component`` in their scope."""
    return logger.bind(component=component)


def verification_scope(identity_id: str, **extra) -> AbstractContextManager:
    """
    Attach an identity (and optionally a ``tx_hash``) to every record logged
    inside the block, including records from tasks spawned within it.
    """
    return logger.contextualize(identity_id=identity_id, **extra)


__all__ = [
    "SCOPE_KEYS",
    "configure_logging",
    "configure_from_config",
    "get_logger",
    "verification_scope",
]
