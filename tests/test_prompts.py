from __future__ import annotations

import allure

from bead_oven.orchestrator.models import GateResult, WorkItem
from bead_oven.orchestrator.prompts import (
    build_fix_prompt,
    build_issue_prompt,
    build_resume_prompt,
    build_review_prompt,
    format_commit_message,
    truncate_tail,
)

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Prompts"),
]


def test_issue_prompt_includes_optional_sections(work_item: WorkItem) -> None:
    work_item.design = "Use exponential backoff."
    work_item.acceptance_criteria = "Retries at most three times."

    prompt = build_issue_prompt(work_item)

    assert prompt.startswith("Work on issue bd-1: Add retry to fetcher")
    assert "Retry transient HTTP errors." in prompt
    assert "Design notes:\nUse exponential backoff." in prompt
    assert "Acceptance criteria:\nRetries at most three times." in prompt
    assert "- Implement what's described above" in prompt


def test_issue_prompt_without_description() -> None:
    prompt = build_issue_prompt(WorkItem(id="bd-2", title="Tidy"))

    assert "(no description)" in prompt
    assert "Design notes:" not in prompt
    assert "Acceptance criteria:" not in prompt


def test_resume_prompt_carries_previous_notes(work_item: WorkItem) -> None:
    work_item.notes = "Gates still failing after fix attempt: pytest -q"

    prompt = build_resume_prompt(work_item)

    assert prompt.startswith("Resume work on issue bd-1")
    assert "Notes from previous session:\nGates still failing" in prompt
    assert "working copy" in prompt


def test_resume_prompt_omits_empty_notes(work_item: WorkItem) -> None:
    assert "Notes from previous session" not in build_resume_prompt(work_item)


def test_fix_prompt_lists_every_failure_with_truncated_output() -> None:
    failures = [
        GateResult(name="ruff check .", passed=False, stdout="x" * 50, stderr="", exit_code=1),
        GateResult(name="pytest -q", passed=False, stdout="", stderr="boom", exit_code=2),
    ]

    prompt = build_fix_prompt("bd-1", failures, max_chars=10)

    assert "Quality gates failed for issue bd-1" in prompt
    assert "## ruff check . (exit 1)" in prompt
    assert "## pytest -q (exit 2)" in prompt
    assert "[... 40 characters truncated ...]\nxxxxxxxxxx" in prompt
    assert "boom" in prompt


def test_review_prompt_embeds_instruction_and_diff() -> None:
    prompt = build_review_prompt("Check error handling", "+raise ValueError()")

    assert "Check error handling" in prompt
    assert "```diff\n+raise ValueError()\n```" in prompt
    assert "If the changes look good, do nothing." in prompt


def test_commit_message_template(work_item: WorkItem) -> None:
    work_item.issue_type = "feature"

    assert format_commit_message(work_item, "{type}({id}): {title}") == (
        "feature(bd-1): Add retry to fetcher"
    )


def test_truncate_tail_keeps_short_text() -> None:
    assert truncate_tail("short", 10) == "short"
    assert truncate_tail("0123456789abc", 3) == "[... 10 characters truncated ...]\nabc"
