"""Collaborator interfaces consumed by the orchestrator loop."""

from __future__ import annotations

from typing import Protocol

from bead_oven.orchestrator.models import (
    AgentOptions,
    AgentResult,
    VcsResult,
    WorkItem,
    WorkItemStatus,
)


class TrackerError(RuntimeError):
    """Tracker call failed; the message carries the raw error text."""


class VcsError(RuntimeError):
    """Version-control query failed."""


class TrackerBackend(Protocol):
    """Issue tracker operations used by the loop."""

    def list_ready(self) -> list[WorkItem]:
        """Return unblocked open issues, highest priority first."""

    def get_by_status(self, status: WorkItemStatus) -> list[WorkItem]:
        """Return issues with the given status."""

    def show(self, item_id: str) -> WorkItem:
        """Return the current record of one issue."""

    def set_status(self, item_id: str, status: WorkItemStatus) -> WorkItem:
        """Move an issue to ``status``."""

    def close(self, item_id: str, reason: str) -> None:
        """Close an issue with a reason."""

    def append_notes(self, item_id: str, text: str) -> WorkItem:
        """Append ``text`` to the issue notes."""


class AgentBackend(Protocol):
    """Coding agent: prompt in, transcript out."""

    def invoke(self, prompt: str, options: AgentOptions) -> AgentResult:
        """Run the agent once and report its outcome."""


class VcsBackend(Protocol):
    """Working-copy operations."""

    def has_pending_changes(self) -> bool:
        """Return True when the working copy has uncommitted changes."""

    def commit(self, message: str) -> VcsResult:
        """Commit all pending changes."""

    def ensure_clean_working_copy(self) -> VcsResult:
        """Isolate pre-existing uncommitted work before the agent starts."""

    def diff(self) -> str:
        """Return the working-copy diff in git format."""
