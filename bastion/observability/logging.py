"""Loguru sinks for bastion.

The package disables its loggers on import. Applications opt in with
setup_logging and get the bastion records only; other libraries' loguru
output is filtered out of these sinks.

Every module logs through ``logger.bind(component=...)``, and that
component is the column the formats below are built around:

    12:01:07.412 INFO    nacl-rules     Created ingress entry #3 203.0.113.7/32:22-22 in nacl-0abc

Example:
    handler_ids = setup_logging(LogConfig(level="DEBUG", console=True))
    try:
        bastion.provision(subnet_id, cidr)
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <7}</level> "
    "<cyan>{extra[component]: <14}</cyan> "
    "<level>{message}</level>"
)

# The file keeps the source location for post-mortems
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {extra[component]: <14} "
    "{message} ({name}:{line})"
)


def _default_component(record: Any) -> None:
    """Fall back to the module name for records logged without a component."""
    record["extra"].setdefault("component", record["name"].rpartition(".")[2])


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where bastion logs go.

    Attributes:
        level: Minimum level for the console sink. The file always gets DEBUG.
        file: Log file path, or None to skip it.
        console: Also log to stderr.
        rotation: When the file rolls over (e.g. "50 MB", "1 day").
        retention: How many rolled-over files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = ".bastion/bastion.log"
    console: bool = False
    rotation: str = "50 MB"
    retention: int = 10


def _sinks(config: LogConfig) -> list[dict[str, Any]]:
    sinks: list[dict[str, Any]] = []
    if config.console:
        sinks.append({"sink": sys.stderr, "level": config.level, "format": CONSOLE_FORMAT, "colorize": True})
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        sinks.append({
            "sink": config.file,
            "level": "DEBUG",
            "format": FILE_FORMAT,
            "rotation": config.rotation,
            "retention": config.retention,
            "diagnose": False,
        })
    return sinks


def setup_logging(config: LogConfig) -> list[int]:
    """Enable bastion logging.

    Returns:
        The handler IDs added, for teardown_logging.
    """
    logger.remove()
    logger.configure(patcher=_default_component)
    logger.enable("bastion")
    return [logger.add(**sink, filter="bastion") for sink in _sinks(config)]


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("bastion")
