"""Domain models for the issue orchestrator."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WorkItemStatus(str, Enum):
    """Tracker-side issue lifecycle states."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"


@dataclass(slots=True)
class WorkItem:
    """Issue record as reported by the tracker."""

    id: str
    title: str
    description: str = ""
    design: str | None = None
    acceptance_criteria: str | None = None
    notes: str | None = None
    status: WorkItemStatus = WorkItemStatus.OPEN
    priority: int = 2
    issue_type: str = "task"
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    assignee: str | None = None
    labels: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WorkItem:
        """Build an item from one tracker JSON record."""

        if "id" not in payload:
            raise ValueError(f"Tracker record has no id: {payload!r}")
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            design=payload.get("design") or None,
            acceptance_criteria=payload.get("acceptance_criteria") or None,
            notes=payload.get("notes") or None,
            status=WorkItemStatus(payload.get("status", WorkItemStatus.OPEN.value)),
            priority=int(payload.get("priority", 2)),
            issue_type=str(payload.get("issue_type") or "task"),
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
            closed_at=payload.get("closed_at"),
            assignee=payload.get("assignee"),
            labels=list(payload.get("labels") or []),
        )


@dataclass(slots=True)
class AgentOptions:
    """Per-invocation switches passed to the coding agent."""

    model: str | None = None
    max_turns: int | None = None
    skip_permissions: bool = False


@dataclass(slots=True)
class AgentResult:
    """Outcome of one agent invocation."""

    success: bool
    output: str
    error: str
    exit_code: int


@dataclass(slots=True)
class CommandResult:
    """Exit code and captured streams of a finished child process."""

    exit_code: int
    stdout: str
    stderr: str


@dataclass(slots=True)
class GateResult:
    """Result of one quality gate command."""

    name: str
    passed: bool
    stdout: str
    stderr: str
    exit_code: int = 0


@dataclass(slots=True)
class GatesOutcome:
    """Aggregate result of the gate pipeline."""

    passed: bool
    results: list[GateResult]

    @property
    def failures(self) -> list[GateResult]:
        return [result for result in self.results if not result.passed]


@dataclass(slots=True)
class ReviewOutcome:
    """Aggregate result of the review pipeline."""

    success: bool
    reviews_run: int
    error: str | None = None


@dataclass(slots=True)
class VcsResult:
    """Outcome of a version-control operation."""

    success: bool
    message: str
    error: str | None = None


@dataclass(slots=True)
class RunState:
    """In-memory loop state, lives for one orchestrator run."""

    resume_queue: deque[WorkItem] = field(default_factory=deque)
    iteration: int = 0
    idle_notice_emitted: bool = False
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    gate_failures: int = 0


@dataclass(slots=True)
class OrchestratorResult:
    """Summary reported when the loop exits."""

    completed: list[str]
    failed: list[str]
    abandoned: list[str]
    deferred: list[str]
    iterations: int
    gate_failures: int

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    @classmethod
    def from_state(cls, state: RunState) -> OrchestratorResult:
        return cls(
            completed=list(state.completed),
            failed=list(state.failed),
            abandoned=list(state.abandoned),
            deferred=list(state.deferred),
            iterations=state.iteration,
            gate_failures=state.gate_failures,
        )
