"""Orchestrator loop that drives tracker issues through the coding agent."""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from bead_oven.config import DEFAULT_COMMIT_FORMAT, LoopSettings
from bead_oven.orchestrator.backend.base import (
    AgentBackend,
    TrackerBackend,
    TrackerError,
    VcsBackend,
)
from bead_oven.orchestrator.backend.vcs import CLEAN_MESSAGE
from bead_oven.orchestrator.failure_classifier import backoff_delay, classify_agent_error
from bead_oven.orchestrator.gates import GatePipeline
from bead_oven.orchestrator.models import (
    AgentOptions,
    AgentResult,
    GatesOutcome,
    OrchestratorResult,
    RunState,
    WorkItem,
    WorkItemStatus,
)
from bead_oven.orchestrator.prompts import (
    build_fix_prompt,
    build_issue_prompt,
    build_resume_prompt,
    format_commit_message,
)
from bead_oven.orchestrator.reviews import ReviewPipeline
from bead_oven.orchestrator.sleep_inhibitor import SleepInhibitor

logger = logging.getLogger(__name__)

CLOSE_REASON = "Completed by orchestrator. All quality gates passed."
NOTE_EXCERPT_CHARS = 500


class LoopState(str, Enum):
    """States of one orchestrator iteration."""

    POLLING = "polling"
    CLAIMING = "claiming"
    RUNNING_AGENT = "running_agent"
    REVIEWING = "reviewing"
    GATING = "gating"
    FIXING = "fixing"
    COMMITTING = "committing"
    CLOSING = "closing"
    ABANDONED = "abandoned"
    DEFERRED = "deferred"


@dataclass(slots=True)
class IterationContext:
    """Mutable state of the item handled by the current iteration."""

    item: WorkItem
    resumed: bool = False
    gates: GatesOutcome | None = None
    fix_attempted: bool = False
    reason: str | None = None


class Orchestrator:
    """Process one issue at a time: claim, agent, reviews, gates, commit, close."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tracker: TrackerBackend,
        agent: AgentBackend,
        gates: GatePipeline,
        reviews: ReviewPipeline,
        sleep_inhibitor: SleepInhibitor,
        vcs: VcsBackend | None = None,
        agent_options: AgentOptions | None = None,
        loop: LoopSettings | None = None,
        commit_format: str = DEFAULT_COMMIT_FORMAT,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.tracker = tracker
        self.agent = agent
        self.gates = gates
        self.reviews = reviews
        self.sleep_inhibitor = sleep_inhibitor
        self.vcs = vcs
        self.agent_options = agent_options or AgentOptions()
        self.loop = loop or LoopSettings()
        self.commit_format = commit_format
        self._sleep = sleep
        self._random = rng or random.Random()  # noqa: S311
        self._state = RunState()
        self.current_state = LoopState.POLLING
        self._handlers: dict[LoopState, Callable[[IterationContext], LoopState | None]] = {
            LoopState.CLAIMING: self._claim,
            LoopState.RUNNING_AGENT: self._run_agent,
            LoopState.REVIEWING: self._review,
            LoopState.GATING: self._gate,
            LoopState.FIXING: self._fix,
            LoopState.COMMITTING: self._commit,
            LoopState.CLOSING: self._close,
            LoopState.ABANDONED: self._abandon,
            LoopState.DEFERRED: self._defer,
        }

    @property
    def state(self) -> RunState:
        return self._state

    def run(self, resume_items: Iterable[WorkItem] = ()) -> OrchestratorResult:
        """Run iterations until the bound is reached or the tracker stops answering.

        Resumed items are handled before any new work is requested.
        """

        self._state = RunState(resume_queue=deque(resume_items))
        if not self.gates.configured:
            logger.warning("No quality gates configured. Add gates to .config/bead-oven.toml.")
        if self.loop.max_iterations is not None:
            logger.info("Max iterations: %d", self.loop.max_iterations)

        try:
            while self._has_iterations_left():
                self.current_state = LoopState.POLLING
                try:
                    context = self._poll()
                except TrackerError as error:
                    logger.error("Error getting ready work: %s", error)
                    break
                if context is None:
                    continue
                self.run_iteration(context)
        finally:
            self.sleep_inhibitor.disable()

        result = OrchestratorResult.from_state(self._state)
        _log_summary(result)
        return result

    def run_iteration(self, context: IterationContext) -> list[LoopState]:
        """Drive one item through the state machine and return the visited states."""

        visited: list[LoopState] = []
        state: LoopState | None = LoopState.CLAIMING
        while state is not None:
            self.current_state = state
            visited.append(state)
            logger.debug("%s: %s", context.item.id, state.value)
            state = self._handlers[state](context)
        return visited

    def _has_iterations_left(self) -> bool:
        limit = self.loop.max_iterations
        return limit is None or self._state.iteration < limit

    def _poll(self) -> IterationContext | None:
        state = self._state
        if state.resume_queue:
            state.iteration += 1
            state.idle_notice_emitted = False
            return IterationContext(item=state.resume_queue.popleft(), resumed=True)

        ready = self.tracker.list_ready()
        if not ready:
            self.sleep_inhibitor.disable()
            if not state.idle_notice_emitted:
                logger.info(
                    "No ready issues, polling every %gs...",
                    self.loop.poll_interval_seconds,
                )
                state.idle_notice_emitted = True
            self._sleep(self.loop.poll_interval_seconds)
            return None

        state.idle_notice_emitted = False
        state.iteration += 1
        return IterationContext(item=ready[0])

    def _claim(self, context: IterationContext) -> LoopState | None:
        item = context.item
        if context.resumed:
            logger.info("Resuming: %s - %s", item.id, item.title)
        else:
            logger.info("Working on: %s - %s", item.id, item.title)
            try:
                self.tracker.set_status(item.id, WorkItemStatus.IN_PROGRESS)
            except TrackerError as error:
                logger.error("Error claiming issue %s: %s", item.id, error)
                self._state.failed.append(item.id)
                return None
            logger.info("Claimed issue %s", item.id)

        self.sleep_inhibitor.enable()

        # A resumed item's uncommitted changes are its own earlier work.
        if self.vcs is not None and not context.resumed:
            clean = self.vcs.ensure_clean_working_copy()
            if not clean.success:
                context.reason = (
                    f"Failed to ensure clean working copy: {clean.error or clean.message}"
                )
                return LoopState.ABANDONED
            if clean.message != CLEAN_MESSAGE:
                logger.info("%s", clean.message)

        return LoopState.RUNNING_AGENT

    def _run_agent(self, context: IterationContext) -> LoopState:
        item = context.item
        prompt = build_resume_prompt(item) if context.resumed else build_issue_prompt(item)
        logger.info("Running agent...")
        result = self._invoke_with_retry(prompt)
        if not result.success:
            context.reason = (
                f"Agent failed (exit {result.exit_code}): {_excerpt(result.error)}"
            )
            return LoopState.ABANDONED
        logger.info("Agent completed successfully")
        return LoopState.REVIEWING

    def _review(self, context: IterationContext) -> LoopState:
        if not self.reviews.configured:
            return LoopState.GATING

        logger.info("Running reviews...")
        outcome = self.reviews.run(self._invoke_with_retry)
        if not outcome.success:
            context.reason = (
                f"Reviews failed after {outcome.reviews_run} review(s): "
                f"{_excerpt(outcome.error or '')}"
            )
            return LoopState.DEFERRED
        if outcome.reviews_run:
            logger.info("Completed %d review(s) successfully", outcome.reviews_run)
        return LoopState.GATING

    def _gate(self, context: IterationContext) -> LoopState:
        logger.info("Running quality gates...")
        outcome = self.gates.run()
        context.gates = outcome
        if outcome.passed:
            if context.fix_attempted:
                logger.info("Fix successful")
            return LoopState.COMMITTING

        failing = ", ".join(result.name for result in outcome.failures)
        if context.fix_attempted:
            # One fix round per iteration; the item waits for a later pass.
            context.reason = f"Gates still failing after fix attempt: {failing}"
            return LoopState.DEFERRED

        self._state.gate_failures += 1
        logger.warning("Quality gates failed for %s (%s), running fix...", context.item.id, failing)
        return LoopState.FIXING

    def _fix(self, context: IterationContext) -> LoopState:
        context.fix_attempted = True
        failures = context.gates.failures if context.gates is not None else []
        prompt = build_fix_prompt(
            context.item.id,
            failures,
            max_chars=self.loop.fix_output_max_chars,
        )
        result = self._invoke_with_retry(prompt)
        if not result.success:
            context.reason = (
                f"Fix attempt failed (exit {result.exit_code}): {_excerpt(result.error)}"
            )
            return LoopState.DEFERRED
        logger.info("Fix completed, re-running quality gates...")
        return LoopState.GATING

    def _commit(self, context: IterationContext) -> LoopState:
        if self.vcs is None:
            return LoopState.CLOSING

        item = context.item
        try:
            current = self.tracker.show(item.id)
        except TrackerError as error:
            logger.warning("Could not re-read %s for the commit message: %s", item.id, error)
            current = item

        logger.info("Committing work for %s...", item.id)
        result = self.vcs.commit(format_commit_message(current, self.commit_format))
        if result.success:
            logger.info("Commit: %s", result.message)
        else:
            # Closing the issue matters more than the commit.
            logger.error("Commit failed: %s", result.error or result.message)
        return LoopState.CLOSING

    def _close(self, context: IterationContext) -> None:
        item_id = context.item.id
        try:
            self.tracker.close(item_id, CLOSE_REASON)
        except TrackerError as error:
            logger.error("Error closing issue %s: %s", item_id, error)
            self._state.failed.append(item_id)
            return
        logger.info("Closed issue %s", item_id)
        self._state.completed.append(item_id)

    def _abandon(self, context: IterationContext) -> None:
        reason = context.reason or "Abandoned by orchestrator"
        logger.error("Abandoning %s: %s", context.item.id, reason)
        self._record_note(context.item.id, reason)
        self._state.abandoned.append(context.item.id)

    def _defer(self, context: IterationContext) -> None:
        reason = context.reason or "Left in progress by orchestrator"
        logger.warning("Leaving %s in progress: %s", context.item.id, reason)
        self._record_note(context.item.id, reason)
        self._state.deferred.append(context.item.id)

    def _record_note(self, item_id: str, text: str) -> None:
        try:
            self.tracker.append_notes(item_id, text)
        except TrackerError as error:
            logger.error("Failed to record note on %s: %s (note: %s)", item_id, error, text)

    def _invoke_with_retry(self, prompt: str) -> AgentResult:
        """Invoke the agent, retrying transient failures with backoff.

        Permanent failures return immediately. The attempt counter starts at
        zero for every call, so each prompt gets the full retry budget.
        """

        max_attempts = self.loop.max_retries
        attempt = 0
        while True:
            result = self.agent.invoke(prompt, self.agent_options)
            if result.success:
                return result

            classification = classify_agent_error(result.error)
            if not classification.transient:
                logger.warning(
                    "Agent failed with a permanent error (rule %s)",
                    classification.matched_rule,
                )
                return result

            attempt += 1
            if attempt >= max_attempts:
                logger.warning("Agent still failing after %d attempt(s)", attempt)
                return result

            delay = backoff_delay(
                attempt - 1,
                base_seconds=self.loop.retry_base_seconds,
                cap_seconds=self.loop.retry_max_seconds,
                rng=self._random,
            )
            logger.warning(
                "Transient agent failure (%s), retrying in %.1fs (attempt %d/%d)",
                classification.failure_class.value,
                delay,
                attempt + 1,
                max_attempts,
            )
            self._sleep(delay)


def _excerpt(text: str) -> str:
    return text.strip()[:NOTE_EXCERPT_CHARS]


def _log_summary(result: OrchestratorResult) -> None:
    logger.info("=== Orchestrator Summary ===")
    logger.info("Iterations: %d", result.iterations)
    logger.info("Completed: %d", len(result.completed))
    logger.info("Failed: %d", len(result.failed))
    logger.info("Abandoned: %d", len(result.abandoned))
    logger.info("Left in progress: %d", len(result.deferred))
    logger.info("Gate failures: %d", result.gate_failures)
