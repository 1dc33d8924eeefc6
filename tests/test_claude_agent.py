from __future__ import annotations

import json
import logging
import sys
import textwrap
from pathlib import Path

import allure
import pytest

from bead_oven.orchestrator.backend.claude_agent import (
    COMMAND_NOT_FOUND_EXIT_CODE,
    ClaudeAgent,
    build_agent_args,
)
from bead_oven.orchestrator.models import AgentOptions
from bead_oven.orchestrator.process_manager import ProcessManager

pytestmark = [
    allure.epic("Collaborators"),
    allure.feature("Coding Agent"),
]

_FAKE_AGENT = textwrap.dedent(
    """
    import json
    import sys

    print("Reading the issue")
    print("Editing src/fetcher.py")
    sys.stderr.write(json.dumps(sys.argv[1:]))
    sys.exit(int(sys.argv[-1] == "fail"))
    """,
)


def test_build_agent_args_orders_flags_before_prompt() -> None:
    args = build_agent_args(
        ("claude",),
        "Implement bd-1",
        AgentOptions(model="opus", max_turns=30, skip_permissions=True),
    )

    assert args == [
        "claude",
        "--print",
        "--model",
        "opus",
        "--max-turns",
        "30",
        "--dangerously-skip-permissions",
        "Implement bd-1",
    ]


def test_build_agent_args_omits_unset_options() -> None:
    args = build_agent_args(("npx", "claude"), "--looks-like-a-flag", AgentOptions())

    assert args == ["npx", "claude", "--print", "--looks-like-a-flag"]


@pytest.fixture()
def agent_script(tmp_path: Path) -> Path:
    script = tmp_path / "agent.py"
    script.write_text(_FAKE_AGENT, encoding="utf-8")
    return script


def test_invoke_streams_transcript_and_captures_output(
    agent_script: Path,
    tmp_path: Path,
    process_manager: ProcessManager,
    caplog: pytest.LogCaptureFixture,
) -> None:
    agent = ClaudeAgent(
        process_manager,
        working_directory=tmp_path,
        command=(sys.executable, str(agent_script)),
    )

    with caplog.at_level(logging.INFO, logger="bead_oven.agent"):
        result = agent.invoke("Implement bd-1", AgentOptions(model="sonnet"))

    assert result.success
    assert result.exit_code == 0
    assert result.output == "Reading the issue\nEditing src/fetcher.py\n"
    assert json.loads(result.error) == ["--print", "--model", "sonnet", "Implement bd-1"]
    transcript = [
        record.getMessage() for record in caplog.records if record.name == "bead_oven.agent"
    ]
    assert transcript == ["Reading the issue", "Editing src/fetcher.py"]


def test_invoke_reports_non_zero_exit(
    agent_script: Path,
    tmp_path: Path,
    process_manager: ProcessManager,
    caplog: pytest.LogCaptureFixture,
) -> None:
    agent = ClaudeAgent(
        process_manager,
        working_directory=tmp_path,
        command=(sys.executable, str(agent_script)),
        stream_output=False,
    )

    with caplog.at_level(logging.INFO, logger="bead_oven.agent"):
        result = agent.invoke("fail", AgentOptions())

    assert not result.success
    assert result.exit_code == 1
    assert "Reading the issue" in result.output
    assert not [record for record in caplog.records if record.name == "bead_oven.agent"]


def test_missing_agent_binary(tmp_path: Path, process_manager: ProcessManager) -> None:
    agent = ClaudeAgent(
        process_manager,
        working_directory=tmp_path,
        command=("definitely-not-claude-xyz",),
    )

    result = agent.invoke("Implement bd-1", AgentOptions())

    assert not result.success
    assert result.exit_code == COMMAND_NOT_FOUND_EXIT_CODE
    assert result.error == "Agent command not found: definitely-not-claude-xyz"
    assert process_manager.tracked == []
