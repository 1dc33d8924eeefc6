"""Console logging for the orchestrator."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "bead_oven"
AGENT_LOGGER = "bead_oven.agent"


def configure_logging(*, verbose: bool = True, console: Console | None = None) -> logging.Logger:
    """Attach a rich console handler to the package logger.

    Quiet mode keeps warnings and errors only. Agent transcript lines go
    through ``bead_oven.agent`` and are rendered without the level column.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)

    for existing in logger.handlers[:]:
        logger.removeHandler(existing)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    handler.addFilter(_skip_agent_records)
    logger.addHandler(handler)

    agent_logger = logging.getLogger(AGENT_LOGGER)
    for existing in agent_logger.handlers[:]:
        agent_logger.removeHandler(existing)
    transcript = RichHandler(
        console=handler.console,
        show_time=False,
        show_level=False,
        show_path=False,
        markup=False,
    )
    transcript.setFormatter(logging.Formatter("%(message)s"))
    agent_logger.addHandler(transcript)
    return logger


def _skip_agent_records(record: logging.LogRecord) -> bool:
    return not record.name.startswith(AGENT_LOGGER)
