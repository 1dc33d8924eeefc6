"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bead_oven.config import (
    CONFIG_RELATIVE_PATH,
    PROJECT_TYPE_GATES,
    Settings,
    render_config_toml,
)
from bead_oven.orchestrator.backend import BeadsTracker, ClaudeAgent, TrackerError, build_vcs
from bead_oven.orchestrator.backend.base import AgentBackend, TrackerBackend
from bead_oven.orchestrator.gates import GatePipeline, format_gate_results
from bead_oven.orchestrator.models import (
    AgentOptions,
    OrchestratorResult,
    WorkItem,
    WorkItemStatus,
)
from bead_oven.orchestrator.process_manager import ProcessManager
from bead_oven.orchestrator.prompts import build_fix_prompt
from bead_oven.orchestrator.reviews import ReviewPipeline
from bead_oven.orchestrator.sleep_inhibitor import SleepInhibitor
from bead_oven.orchestrator.worker import Orchestrator

logger = logging.getLogger(__name__)

PREFLIGHT_ITEM_ID = "initial-gates"


@dataclass(slots=True)
class RunCommand:
    """CLI input for the orchestrator loop."""

    working_directory: Path | None
    max_iterations: int | None = None
    model: str | None = None
    max_turns: int | None = None
    skip_permissions: bool = True


@dataclass(slots=True)
class InitCommand:
    """Answers collected by the interactive ``init`` prompts."""

    working_directory: Path | None
    gates: tuple[str, ...]
    use_vcs: bool
    reviews: tuple[str, ...] = ()


@dataclass(slots=True)
class RunReport:
    """Lines to render and the process exit code."""

    lines: list[str]
    exit_code: int


class OrchestratorCliController:
    """Coordinates the run and init CLI operations."""

    def __init__(self, *, process_manager: ProcessManager | None = None) -> None:
        self.process_manager = process_manager

    def run(self, command: RunCommand) -> RunReport:
        settings = Settings.load(command.working_directory)
        if command.max_iterations is not None:
            settings.loop.max_iterations = command.max_iterations
        if command.model:
            settings.agent.model = command.model
        if command.max_turns is not None:
            settings.agent.max_turns = command.max_turns
        settings.validate()

        process_manager = self.process_manager or ProcessManager(
            grace_seconds=settings.loop.shutdown_grace_seconds,
        )
        options = AgentOptions(
            model=settings.agent.model,
            max_turns=settings.agent.max_turns,
            skip_permissions=command.skip_permissions,
        )
        with process_manager.handle_signals():
            return self._run(settings, process_manager, options)

    def _run(
        self,
        settings: Settings,
        process_manager: ProcessManager,
        options: AgentOptions,
    ) -> RunReport:
        root = settings.working_directory
        logger.info("Starting orchestrator in %s", root)
        if settings.config_path is not None:
            logger.info("Loaded config from %s", settings.config_path)

        tracker = BeadsTracker(
            process_manager,
            working_directory=root,
            command=settings.tracker.command,
        )
        agent = ClaudeAgent(
            process_manager,
            working_directory=root,
            command=settings.agent.command,
            stream_output=settings.agent.stream_output,
        )
        gates = GatePipeline(
            settings.gates,
            working_directory=root,
            process_manager=process_manager,
        )
        vcs = build_vcs(settings.vcs, process_manager, working_directory=root)
        reviews = ReviewPipeline(settings.reviews, diff_source=vcs.diff)
        if reviews.configured:
            logger.info("Loaded %d review(s)", len(reviews.prompts))

        preflight_error = run_preflight_gates(
            gates,
            agent,
            options,
            max_chars=settings.loop.fix_output_max_chars,
        )
        if preflight_error is not None:
            return RunReport(lines=[preflight_error], exit_code=1)

        resume_items = find_stale_items(tracker)
        orchestrator = Orchestrator(
            tracker=tracker,
            agent=agent,
            gates=gates,
            reviews=reviews,
            sleep_inhibitor=SleepInhibitor(process_manager),
            vcs=vcs if settings.vcs.enabled else None,
            agent_options=options,
            loop=settings.loop,
            commit_format=settings.vcs.commit_format,
        )
        result = orchestrator.run(resume_items)
        return RunReport(lines=render_summary(result), exit_code=result.exit_code)

    def config_path(self, working_directory: Path | None) -> Path:
        return (working_directory or Path.cwd()).resolve() / CONFIG_RELATIVE_PATH

    def init(self, command: InitCommand) -> list[str]:
        path = self.config_path(command.working_directory)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            render_config_toml(
                gates=command.gates,
                use_vcs=command.use_vcs,
                reviews=command.reviews,
            ),
            encoding="utf-8",
        )
        return [f"Configuration written to {path}"]


def suggested_gates(project_type: str) -> tuple[str, ...]:
    return PROJECT_TYPE_GATES.get(project_type, ())


def run_preflight_gates(
    gates: GatePipeline,
    agent: AgentBackend,
    options: AgentOptions,
    *,
    max_chars: int,
) -> str | None:
    """Run the gates once before the loop; give the agent one chance to fix them.

    Returns an error message when the gates are still red, else None.
    """

    if not gates.configured:
        return None

    logger.info("Running gates...")
    outcome = gates.run()
    if outcome.passed:
        return None

    logger.warning("Pre-flight gates failed:\n%s", format_gate_results(outcome.results))
    logger.info("Running agent to fix gate failures...")
    fix = agent.invoke(
        build_fix_prompt(PREFLIGHT_ITEM_ID, outcome.failures, max_chars=max_chars),
        options,
    )
    if not fix.success:
        return f"Agent failed to fix pre-flight gates: {fix.error.strip()[:500]}"

    logger.info("Re-running gates...")
    retry = gates.run()
    if not retry.passed:
        return "Gates still failing after fix attempt: " + ", ".join(
            result.name for result in retry.failures
        )
    logger.info("Gates now passing")
    return None


def find_stale_items(tracker: TrackerBackend) -> list[WorkItem]:
    """Return in-progress issues left behind by an earlier run."""

    try:
        stale = tracker.get_by_status(WorkItemStatus.IN_PROGRESS)
    except TrackerError as error:
        # An uninitialized tracker has nothing to resume.
        logger.debug("Stale issue check skipped: %s", error)
        return []

    if stale:
        logger.warning("Found in_progress issues from a previous run:")
        for item in stale:
            logger.warning("  %s: %s", item.id, item.title)
        logger.warning("Resuming these issues automatically.")
    return stale


def render_summary(result: OrchestratorResult) -> list[str]:
    lines = [
        "Orchestrator summary: "
        f"iterations={result.iterations} completed={len(result.completed)} "
        f"failed={len(result.failed)} abandoned={len(result.abandoned)} "
        f"left_in_progress={len(result.deferred)} gate_failures={result.gate_failures}",
    ]
    if result.completed:
        lines.append(f"Completed: {', '.join(result.completed)}")
    if result.abandoned:
        lines.append(f"Abandoned: {', '.join(result.abandoned)}")
    if result.deferred:
        lines.append(f"Left in progress: {', '.join(result.deferred)}")
    if result.failed:
        lines.append(f"Some issues failed: {', '.join(result.failed)}")
    else:
        lines.append("All done!")
    return lines
