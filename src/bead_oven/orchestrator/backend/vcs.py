"""Version control backends for committing finished issues."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from bead_oven.config import VcsSettings
from bead_oven.orchestrator.backend.base import VcsBackend, VcsError
from bead_oven.orchestrator.models import CommandResult, VcsResult
from bead_oven.orchestrator.process_manager import ProcessManager

logger = logging.getLogger(__name__)

NO_CHANGES_MESSAGE = "No changes to commit"
CLEAN_MESSAGE = "Working copy is clean"
PRE_EXISTING_WORK_MESSAGE = "bead-oven: pre-existing work"


class _CliVcs:
    executable = ""

    def __init__(self, process_manager: ProcessManager, *, working_directory: Path) -> None:
        self.process_manager = process_manager
        self.working_directory = working_directory

    def _run(self, args: Sequence[str]) -> CommandResult:
        try:
            return self.process_manager.run(
                [self.executable, *args],
                name=self.executable,
                cwd=self.working_directory,
            )
        except FileNotFoundError as error:
            raise VcsError(f"{self.executable} not found") from error
        except OSError as error:
            raise VcsError(f"{self.executable} failed to start: {error}") from error

    def _checked(self, args: Sequence[str]) -> str:
        result = self._run(args)
        if result.exit_code != 0:
            raise VcsError(
                f"{self.executable} {args[0]} failed: {result.stderr.strip() or result.stdout}",
            )
        return result.stdout


class JjVcs(_CliVcs):
    """Jujutsu backend: one change per finished issue."""

    executable = "jj"

    def has_pending_changes(self) -> bool:
        return bool(self._checked(["diff", "--summary"]).strip())

    def commit(self, message: str) -> VcsResult:
        try:
            if not self.has_pending_changes():
                return VcsResult(success=True, message=NO_CHANGES_MESSAGE)
            result = self._run(["commit", "-m", message])
        except VcsError as error:
            return VcsResult(success=False, message="Commit failed", error=str(error))

        if result.exit_code == 0:
            message = result.stdout.strip() or "Committed successfully"
            return VcsResult(success=True, message=message)
        if "Nothing changed" in result.stderr or "Nothing changed" in result.stdout:
            return VcsResult(success=True, message="Nothing to commit")
        return VcsResult(
            success=False,
            message="Commit failed",
            error=result.stderr.strip() or result.stdout.strip(),
        )

    def ensure_clean_working_copy(self) -> VcsResult:
        try:
            if not self.has_pending_changes():
                return VcsResult(success=True, message=CLEAN_MESSAGE)
            logger.info("Isolating pre-existing changes in a new jj change")
            self._checked(["new"])
        except VcsError as error:
            return VcsResult(
                success=False,
                message="Failed to isolate pre-existing work",
                error=str(error),
            )
        return VcsResult(success=True, message="Created new change to isolate pre-existing work")

    def diff(self) -> str:
        return self._checked(["diff", "--git"])


class GitVcs(_CliVcs):
    """Git backend: stage everything and commit on the current branch."""

    executable = "git"

    def has_pending_changes(self) -> bool:
        return bool(self._checked(["status", "--porcelain"]).strip())

    def commit(self, message: str) -> VcsResult:
        try:
            if not self.has_pending_changes():
                return VcsResult(success=True, message=NO_CHANGES_MESSAGE)
            self._checked(["add", "--all"])
            result = self._run(["commit", "-m", message])
        except VcsError as error:
            return VcsResult(success=False, message="Commit failed", error=str(error))

        if result.exit_code == 0:
            message = result.stdout.strip() or "Committed successfully"
            return VcsResult(success=True, message=message)
        return VcsResult(
            success=False,
            message="Commit failed",
            error=result.stderr.strip() or result.stdout.strip(),
        )

    def ensure_clean_working_copy(self) -> VcsResult:
        try:
            if not self.has_pending_changes():
                return VcsResult(success=True, message=CLEAN_MESSAGE)
            # The files stay in the working tree, as after jj new.
            logger.info("Committing pre-existing changes to isolate them")
            self._checked(["add", "--all"])
            self._checked(["commit", "--no-verify", "-m", PRE_EXISTING_WORK_MESSAGE])
        except VcsError as error:
            return VcsResult(
                success=False,
                message="Failed to isolate pre-existing work",
                error=str(error),
            )
        return VcsResult(success=True, message="Committed pre-existing work to isolate it")

    def diff(self) -> str:
        # Intent-to-add makes new files show up in the diff without staging content.
        self._checked(["add", "--intent-to-add", "--all"])
        return self._checked(["diff", "HEAD"])


def build_vcs(
    settings: VcsSettings,
    process_manager: ProcessManager,
    *,
    working_directory: Path,
) -> VcsBackend:
    """Select the backend named by ``settings.command``."""

    if settings.command == "git":
        return GitVcs(process_manager, working_directory=working_directory)
    if settings.command == "jj":
        return JjVcs(process_manager, working_directory=working_directory)
    raise ValueError(f"Unsupported VCS command: {settings.command!r}")
