"""Review pipeline: configurable agent reviews over the working-copy diff."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from bead_oven.orchestrator.backend.base import VcsError
from bead_oven.orchestrator.models import AgentResult, ReviewOutcome
from bead_oven.orchestrator.prompts import build_review_prompt

logger = logging.getLogger(__name__)

DiffSource = Callable[[], str]
AgentInvoker = Callable[[str], AgentResult]


class ReviewPipeline:
    """Run review prompts one after another against a live diff.

    Each review sees the diff as left by the previous one, so later reviews
    can check and correct what earlier reviews changed.
    """

    def __init__(self, prompts: Iterable[str], *, diff_source: DiffSource) -> None:
        self.prompts = [prompt for prompt in prompts if prompt]
        self.diff_source = diff_source

    @property
    def configured(self) -> bool:
        return bool(self.prompts)

    def run(self, invoke: AgentInvoker) -> ReviewOutcome:
        if not self.prompts:
            return ReviewOutcome(success=True, reviews_run=0)

        try:
            diff = self.diff_source()
        except VcsError as error:
            return ReviewOutcome(
                success=False,
                reviews_run=0,
                error=f"Failed to get diff: {error}",
            )

        if not diff.strip():
            logger.info("No changes to review")
            return ReviewOutcome(success=True, reviews_run=0)

        reviews_run = 0
        for prompt in self.prompts:
            logger.info("Review: %s", _shorten(prompt))
            result = invoke(build_review_prompt(prompt, diff))
            reviews_run += 1

            if not result.success:
                return ReviewOutcome(
                    success=False,
                    reviews_run=reviews_run,
                    error=result.error or f"Agent exited with code {result.exit_code}",
                )

            # The review may have edited files.
            try:
                diff = self.diff_source()
            except VcsError as error:
                return ReviewOutcome(
                    success=False,
                    reviews_run=reviews_run,
                    error=f"Failed to get diff after review: {error}",
                )

            if not diff.strip():
                logger.info("Diff is empty, skipping remaining reviews")
                break

        return ReviewOutcome(success=True, reviews_run=reviews_run)


def _shorten(prompt: str, limit: int = 50) -> str:
    if len(prompt) <= limit:
        return prompt
    return prompt[: limit - 3] + "..."
