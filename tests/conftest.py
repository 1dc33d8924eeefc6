"""Shared test fixtures."""

from __future__ import annotations

import json
import textwrap
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from bead_oven.orchestrator.models import WorkItem
from bead_oven.orchestrator.process_manager import ProcessManager


@pytest.fixture()
def process_manager() -> Iterator[ProcessManager]:
    manager = ProcessManager(grace_seconds=1.0)
    yield manager
    manager.kill_all(grace_seconds=1.0)


@pytest.fixture()
def work_item() -> WorkItem:
    return WorkItem(
        id="bd-1",
        title="Add retry to fetcher",
        description="Retry transient HTTP errors.",
        priority=1,
    )


_FAKE_BD_SCRIPT = textwrap.dedent(
    """
    import json
    import pathlib
    import sys

    root = pathlib.Path(__file__).parent
    args = sys.argv[1:]
    with (root / "calls.jsonl").open("a") as handle:
        handle.write(json.dumps(args) + "\\n")

    state_path = root / "state.json"
    state = json.loads(state_path.read_text())
    if args[0] != "--sandbox":
        sys.exit(2)
    command = args[1:]
    if command[0] == "sync":
        sys.exit(0)
    if command[-1] != "--json":
        sys.exit(2)
    command = command[:-1]
    if state.get("garbage"):
        print("this is not json")
        sys.exit(0)
    issues = state["issues"]

    def find(issue_id):
        for issue in issues:
            if issue["id"] == issue_id:
                return issue
        sys.stderr.write(f"Error: issue {issue_id} not found")
        sys.exit(1)

    verb = command[0]
    if verb == "ready":
        reply = [issue for issue in issues if issue["status"] == "open"]
    elif verb == "list":
        reply = [issue for issue in issues if issue["status"] == command[2]]
    elif verb == "show":
        reply = [find(command[1])]
    elif verb == "update":
        issue = find(command[1])
        options = dict(zip(command[2::2], command[3::2]))
        if "--status" in options:
            issue["status"] = options["--status"]
        if "--notes" in options:
            issue["notes"] = options["--notes"]
        reply = [issue]
    elif verb == "close":
        issue = find(command[1])
        issue["status"] = "closed"
        issue["close_reason"] = command[3]
        reply = [issue]
    else:
        sys.exit(2)
    state_path.write_text(json.dumps(state))
    print(json.dumps(reply))
    """,
)



@dataclass(slots=True)
class FakeBd:
    """A scripted ``bd`` executable backed by a JSON state file."""

    root: Path

    @property
    def script(self) -> Path:
        return self.root / "bd.py"

    @staticmethod
    def issue(issue_id: str, status: str = "open", **extra: object) -> dict[str, object]:
        return {
            "id": issue_id,
            "title": f"Issue {issue_id}",
            "description": "",
            "status": status,
            "priority": 2,
            "issue_type": "task",
            **extra,
        }

    def install(self, *issues: dict[str, object]) -> Path:
        self.script.write_text(_FAKE_BD_SCRIPT, encoding="utf-8")
        (self.root / "state.json").write_text(json.dumps({"issues": list(issues)}))
        return self.script

    def state(self) -> dict[str, dict[str, object]]:
        state = json.loads((self.root / "state.json").read_text())
        return {issue["id"]: issue for issue in state["issues"]}

    def calls(self) -> list[list[str]]:
        path = self.root / "calls.jsonl"
        return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.fixture()
def fake_bd(tmp_path: Path) -> FakeBd:
    return FakeBd(tmp_path)
