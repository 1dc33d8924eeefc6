"""Beads issue tracker backend over the ``bd`` CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bead_oven.orchestrator.backend.base import TrackerError
from bead_oven.orchestrator.models import WorkItem, WorkItemStatus
from bead_oven.orchestrator.process_manager import ProcessManager

logger = logging.getLogger(__name__)


class BeadsTracker:
    """Run ``bd --sandbox <args> --json`` and parse the JSON reply.

    The JSONL export is imported once before the first command, and every
    write is flushed back so the issue files in the repository stay current.
    """

    def __init__(
        self,
        process_manager: ProcessManager,
        *,
        working_directory: Path,
        command: Sequence[str] = ("bd",),
    ) -> None:
        self.process_manager = process_manager
        self.working_directory = working_directory
        self.command = tuple(command)
        self._synced = False

    def list_ready(self) -> list[WorkItem]:
        return _parse_items(self._run_json(["ready"]))

    def get_by_status(self, status: WorkItemStatus) -> list[WorkItem]:
        return _parse_items(self._run_json(["list", "--status", status.value]))

    def show(self, item_id: str) -> WorkItem:
        return _parse_single(self._run_json(["show", item_id]))

    def set_status(self, item_id: str, status: WorkItemStatus) -> WorkItem:
        payload = self._run_json(["update", item_id, "--status", status.value])
        self._flush()
        return _parse_single(payload)

    def close(self, item_id: str, reason: str) -> None:
        self._run_json(["close", item_id, "--reason", reason])
        self._flush()

    def append_notes(self, item_id: str, text: str) -> WorkItem:
        existing = self.show(item_id).notes
        notes = f"{existing.rstrip()}\n\n{text}" if existing else text
        payload = self._run_json(["update", item_id, "--notes", notes])
        self._flush()
        return _parse_single(payload)

    def _run_json(self, args: list[str]) -> Any:
        self._ensure_synced()
        stdout = self._run([*args, "--json"])
        if not stdout.strip():
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as error:
            raise TrackerError(
                f"bd {args[0]} returned invalid JSON: {error}: {stdout[:200]}",
            ) from error

    def _ensure_synced(self) -> None:
        if self._synced:
            return
        self._run(["sync", "--import-only"], action="sync")
        self._synced = True

    def _flush(self) -> None:
        self._run(["sync", "--flush-only"], action="flush")

    def _run(self, args: list[str], *, action: str = "command") -> str:
        argv = [*self.command, "--sandbox", *args]
        try:
            result = self.process_manager.run(argv, name="bd", cwd=self.working_directory)
        except FileNotFoundError as error:
            raise TrackerError(f"Tracker command not found: {self.command[0]}") from error
        except OSError as error:
            raise TrackerError(f"Tracker command failed to start: {error}") from error
        if result.exit_code != 0:
            raise TrackerError(f"bd {action} failed: {result.stderr.strip() or result.stdout}")
        return result.stdout


def _parse_items(payload: Any) -> list[WorkItem]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = payload.get("result", [payload])
    if not isinstance(payload, list):
        raise TrackerError(f"Expected a list of issues, got: {payload!r}")
    try:
        return [WorkItem.from_payload(entry) for entry in payload]
    except (TypeError, ValueError) as error:
        raise TrackerError(f"Invalid issue record: {error}") from error


def _parse_single(payload: Any) -> WorkItem:
    # bd show / update reply with an array, older versions with {"result": ...}.
    if isinstance(payload, list):
        if not payload:
            raise TrackerError("Tracker returned an empty result.")
        payload = payload[0]
    elif isinstance(payload, dict) and isinstance(payload.get("result"), dict):
        payload = payload["result"]
    if not isinstance(payload, dict):
        raise TrackerError(f"Expected an issue record, got: {payload!r}")
    try:
        return WorkItem.from_payload(payload)
    except (TypeError, ValueError) as error:
        raise TrackerError(f"Invalid issue record: {error}") from error
