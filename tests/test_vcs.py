from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
import textwrap
from pathlib import Path

import allure
import pytest

from bead_oven.config import VcsSettings
from bead_oven.orchestrator.backend.base import VcsError
from bead_oven.orchestrator.backend.vcs import (
    CLEAN_MESSAGE,
    NO_CHANGES_MESSAGE,
    PRE_EXISTING_WORK_MESSAGE,
    GitVcs,
    JjVcs,
    build_vcs,
)
from bead_oven.orchestrator.process_manager import ProcessManager

pytestmark = [
    allure.epic("Collaborators"),
    allure.feature("Version Control"),
]

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
posix_only = pytest.mark.skipif(os.name != "posix", reason="needs an executable script")


def _git(root: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    ).stdout


@pytest.fixture()
def git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for key, value in {
        "GIT_AUTHOR_NAME": "Bead Oven",
        "GIT_AUTHOR_EMAIL": "oven@example.com",
        "GIT_COMMITTER_NAME": "Bead Oven",
        "GIT_COMMITTER_EMAIL": "oven@example.com",
    }.items():
        monkeypatch.setenv(key, value)
    _git(tmp_path, "init", "--quiet")
    (tmp_path / "README.md").write_text("hello\n")
    _git(tmp_path, "add", "README.md")
    _git(tmp_path, "commit", "--quiet", "-m", "initial")
    return tmp_path


@requires_git
def test_git_commit_stages_everything(git_repo: Path, process_manager: ProcessManager) -> None:
    vcs = GitVcs(process_manager, working_directory=git_repo)
    assert not vcs.has_pending_changes()

    (git_repo / "fetcher.py").write_text("RETRIES = 3\n")
    assert vcs.has_pending_changes()
    assert "fetcher.py" in vcs.diff()

    result = vcs.commit("bd-1: Add retry to fetcher")

    assert result.success
    assert not vcs.has_pending_changes()
    assert _git(git_repo, "log", "-1", "--format=%s").strip() == "bd-1: Add retry to fetcher"


@requires_git
def test_git_commit_without_changes(git_repo: Path, process_manager: ProcessManager) -> None:
    result = GitVcs(process_manager, working_directory=git_repo).commit("bd-1: nothing")

    assert result.success
    assert result.message == NO_CHANGES_MESSAGE


@requires_git
def test_git_isolates_pre_existing_work_in_a_commit(
    git_repo: Path,
    process_manager: ProcessManager,
) -> None:
    vcs = GitVcs(process_manager, working_directory=git_repo)
    assert vcs.ensure_clean_working_copy().message == CLEAN_MESSAGE

    (git_repo / "README.md").write_text("edited by hand\n")
    (git_repo / "scratch.txt").write_text("notes\n")
    result = vcs.ensure_clean_working_copy()

    assert result.success
    assert result.message == "Committed pre-existing work to isolate it"
    assert not vcs.has_pending_changes()
    assert (git_repo / "scratch.txt").read_text() == "notes\n"
    assert _git(git_repo, "log", "-1", "--format=%s").strip() == PRE_EXISTING_WORK_MESSAGE
    assert _git(git_repo, "stash", "list") == ""


@requires_git
def test_git_outside_repository_reports_errors(
    tmp_path: Path,
    process_manager: ProcessManager,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    vcs = GitVcs(process_manager, working_directory=tmp_path)

    with pytest.raises(VcsError, match="git status failed"):
        vcs.has_pending_changes()
    result = vcs.commit("bd-1: anything")
    assert not result.success
    assert result.error


_FAKE_JJ = textwrap.dedent(
    """
    import json
    import pathlib
    import sys

    root = pathlib.Path(__file__).parent
    state = json.loads((root / "jj-state.json").read_text())
    args = sys.argv[1:]
    with (root / "jj-calls.jsonl").open("a") as handle:
        handle.write(json.dumps(args) + "\\n")
    if args[:2] == ["diff", "--summary"]:
        print(state["summary"], end="")
    elif args[:2] == ["diff", "--git"]:
        print("diff --git a/x b/x")
    elif args[0] == "commit":
        if state.get("nothing_changed"):
            sys.stderr.write("Nothing changed.")
            sys.exit(1)
        print("Working copy now at: abc123")
    elif args[0] == "new":
        print("Working copy now at: def456")
    else:
        sys.exit(2)
    """,
)


@pytest.fixture()
def fake_jj(tmp_path: Path) -> Path:
    script = tmp_path / "jj"
    script.write_text(f"#!{sys.executable}\n{_FAKE_JJ}", encoding="utf-8")
    script.chmod(0o755)
    return tmp_path


def _jj(root: Path, process_manager: ProcessManager, **state: object) -> JjVcs:
    (root / "jj-state.json").write_text(json.dumps({"summary": "", **state}))
    vcs = JjVcs(process_manager, working_directory=root)
    vcs.executable = str(root / "jj")
    return vcs


def _jj_calls(root: Path) -> list[list[str]]:
    path = root / "jj-calls.jsonl"
    return [json.loads(line) for line in path.read_text().splitlines()] if path.exists() else []


@posix_only
def test_jj_commit_uses_message(fake_jj: Path, process_manager: ProcessManager) -> None:
    vcs = _jj(fake_jj, process_manager, summary="M src/fetcher.py\n")

    result = vcs.commit("bd-1: Add retry")

    assert result.success
    assert result.message == "Working copy now at: abc123"
    assert ["commit", "-m", "bd-1: Add retry"] in _jj_calls(fake_jj)


@posix_only
def test_jj_nothing_changed_is_success(fake_jj: Path, process_manager: ProcessManager) -> None:
    vcs = _jj(fake_jj, process_manager, summary="M a\n", nothing_changed=True)

    result = vcs.commit("bd-1: Add retry")

    assert result.success
    assert result.message == "Nothing to commit"


@posix_only
def test_jj_skips_commit_without_changes(fake_jj: Path, process_manager: ProcessManager) -> None:
    result = _jj(fake_jj, process_manager).commit("bd-1: Add retry")

    assert result.message == NO_CHANGES_MESSAGE
    assert all(call[0] != "commit" for call in _jj_calls(fake_jj))


@posix_only
def test_jj_isolates_pre_existing_work(fake_jj: Path, process_manager: ProcessManager) -> None:
    clean = _jj(fake_jj, process_manager).ensure_clean_working_copy()
    assert clean.message == CLEAN_MESSAGE

    dirty = _jj(fake_jj, process_manager, summary="A notes.txt\n").ensure_clean_working_copy()

    assert dirty.success
    assert dirty.message == "Created new change to isolate pre-existing work"
    assert ["new"] in _jj_calls(fake_jj)


@posix_only
def test_jj_diff_is_git_format(fake_jj: Path, process_manager: ProcessManager) -> None:
    assert _jj(fake_jj, process_manager).diff().startswith("diff --git")


def test_missing_jj_binary_is_reported(tmp_path: Path, process_manager: ProcessManager) -> None:
    vcs = JjVcs(process_manager, working_directory=tmp_path)
    vcs.executable = "definitely-not-jj-xyz"

    result = vcs.ensure_clean_working_copy()

    assert not result.success
    assert "not found" in (result.error or "")


def test_build_vcs_selects_backend(tmp_path: Path, process_manager: ProcessManager) -> None:
    jj = build_vcs(VcsSettings(command="jj"), process_manager, working_directory=tmp_path)
    git = build_vcs(VcsSettings(command="git"), process_manager, working_directory=tmp_path)

    assert isinstance(jj, JjVcs)
    assert isinstance(git, GitVcs)
    with pytest.raises(ValueError, match="Unsupported VCS command"):
        build_vcs(VcsSettings(command="hg"), process_manager, working_directory=tmp_path)
