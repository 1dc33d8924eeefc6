from __future__ import annotations

import io
import logging
from collections.abc import Iterator

import allure
import pytest
from rich.console import Console

from bead_oven.log import AGENT_LOGGER, PACKAGE_LOGGER, configure_logging

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Console Logging"),
]


@pytest.fixture(autouse=True)
def _reset_loggers() -> Iterator[None]:
    yield
    for name in (PACKAGE_LOGGER, AGENT_LOGGER):
        logger = logging.getLogger(name)
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=200, force_terminal=False), buffer


def test_repeated_configuration_replaces_handlers() -> None:
    console, _ = _console()

    configure_logging(console=console)
    logger = configure_logging(console=console)

    assert len(logger.handlers) == 1
    assert len(logging.getLogger(AGENT_LOGGER).handlers) == 1


def test_quiet_mode_keeps_warnings_only() -> None:
    console, buffer = _console()
    logger = configure_logging(verbose=False, console=console)

    logging.getLogger("bead_oven.orchestrator.worker").info("Running agent...")
    logging.getLogger("bead_oven.orchestrator.worker").warning("Quality gates failed")

    assert logger.level == logging.WARNING
    assert "Running agent..." not in buffer.getvalue()
    assert "Quality gates failed" in buffer.getvalue()


def test_agent_transcript_is_rendered_once_without_level() -> None:
    console, buffer = _console()
    configure_logging(console=console)

    logging.getLogger(AGENT_LOGGER).info("Editing src/fetcher.py")

    output = buffer.getvalue()
    assert output.count("Editing src/fetcher.py") == 1
    assert "INFO" not in output
