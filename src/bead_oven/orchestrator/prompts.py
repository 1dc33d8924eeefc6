"""Prompt builders for issue, resume, fix and review agent runs."""

from __future__ import annotations

from collections.abc import Iterable

from bead_oven.orchestrator.models import GateResult, WorkItem

DEFAULT_FIX_OUTPUT_MAX_CHARS = 2_000

_INSTRUCTIONS = (
    "Instructions:",
    "- Implement what's described above",
    "- Follow existing code patterns",
    "- Ensure code compiles and tests pass",
    "- Keep changes focused on this issue",
)


def build_issue_prompt(item: WorkItem) -> str:
    """Build the fresh-start prompt for a newly claimed issue."""

    parts = [
        f"Work on issue {item.id}: {item.title}",
        "",
        *_issue_body(item),
        "",
        *_INSTRUCTIONS,
    ]
    return "\n".join(parts)


def build_resume_prompt(item: WorkItem) -> str:
    """Build the prompt for an issue left in progress by an earlier run."""

    parts = [
        f"Resume work on issue {item.id}: {item.title}",
        "",
        "A previous session started this issue but did not finish it.",
        "Inspect the working copy to see what has already been done before continuing.",
        "",
        *_issue_body(item),
    ]
    if item.notes:
        parts.extend(["", "Notes from previous session:", item.notes])
    parts.extend(["", *_INSTRUCTIONS])
    return "\n".join(parts)


def build_fix_prompt(
    item_id: str,
    failures: Iterable[GateResult],
    *,
    max_chars: int = DEFAULT_FIX_OUTPUT_MAX_CHARS,
) -> str:
    """Build a prompt asking the agent to fix failing quality gates."""

    parts = [f"Quality gates failed for issue {item_id}. Fix the failures below.", ""]
    for failure in failures:
        parts.append(f"## {failure.name} (exit {failure.exit_code})")
        stdout = failure.stdout.strip()
        stderr = failure.stderr.strip()
        if stdout:
            parts.extend(["stdout:", "```", truncate_tail(stdout, max_chars), "```"])
        if stderr:
            parts.extend(["stderr:", "```", truncate_tail(stderr, max_chars), "```"])
        if not stdout and not stderr:
            parts.append("(no output)")
        parts.append("")
    parts.extend(
        [
            "Instructions:",
            "- Fix the root cause of each failure",
            "- Do not disable or skip the failing checks",
            "- Keep changes minimal",
        ],
    )
    return "\n".join(parts)


def build_review_prompt(instruction: str, diff: str) -> str:
    """Build a review prompt embedding the current diff."""

    parts = [
        "Review the following changes:",
        "",
        instruction,
        "",
        "Diff:",
        "```diff",
        diff,
        "```",
        "",
        "If you find issues, fix them. If the changes look good, do nothing.",
    ]
    return "\n".join(parts)


def format_commit_message(item: WorkItem, template: str) -> str:
    """Render a commit message; supports {id}, {title} and {type}."""

    return (
        template.replace("{id}", item.id)
        .replace("{title}", item.title)
        .replace("{type}", item.issue_type)
    )


def truncate_tail(text: str, max_chars: int) -> str:
    """Keep the last ``max_chars`` characters, where errors usually are."""

    if len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"[... {omitted} characters truncated ...]\n{text[-max_chars:]}"


def _issue_body(item: WorkItem) -> list[str]:
    parts = ["Description:", item.description or "(no description)"]
    if item.design:
        parts.extend(["", "Design notes:", item.design])
    if item.acceptance_criteria:
        parts.extend(["", "Acceptance criteria:", item.acceptance_criteria])
    return parts
