"""Keep the host awake while an issue is being worked on."""

from __future__ import annotations

import logging
import subprocess
import sys

from bead_oven.orchestrator.process_manager import ProcessManager

logger = logging.getLogger(__name__)

_LINUX_INHIBIT_ARGS = (
    "systemd-inhibit",
    "--what=sleep:idle",
    "--who=bead-oven",
    "--why=Working on issues",
    "sleep",
    "infinity",
)

_windows_warning_shown = False


def inhibitor_command(platform: str) -> tuple[str, ...] | None:
    """Return the helper command that blocks idle sleep on ``platform``."""

    if platform == "darwin":
        return ("caffeinate", "-i")
    if platform.startswith("linux"):
        return _LINUX_INHIBIT_ARGS
    return None


class SleepInhibitor:
    """Toggle a platform helper process that prevents idle sleep."""

    def __init__(self, process_manager: ProcessManager, *, platform: str | None = None) -> None:
        self.process_manager = process_manager
        self.platform = platform or sys.platform
        self._process: subprocess.Popen[str] | None = None

    @property
    def active(self) -> bool:
        return self._process is not None

    def enable(self) -> None:
        if self._process is not None:
            return

        command = inhibitor_command(self.platform)
        if command is None:
            _warn_unsupported(self.platform)
            return

        try:
            self._process = self.process_manager.spawn(command, name=command[0])
        except OSError as error:
            logger.debug("Sleep inhibitor %s unavailable: %s", command[0], error)

    def disable(self) -> None:
        if self._process is None:
            return
        process, self._process = self._process, None
        self.process_manager.stop(process)


def _warn_unsupported(platform: str) -> None:
    global _windows_warning_shown  # noqa: PLW0603
    if platform != "win32" or _windows_warning_shown:
        return
    logger.warning("Sleep prevention not supported on Windows")
    _windows_warning_shown = True
