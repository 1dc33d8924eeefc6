"""Coding agent backend over the ``claude`` CLI in print mode."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from bead_oven.orchestrator.models import AgentOptions, AgentResult
from bead_oven.orchestrator.process_manager import ProcessManager

logger = logging.getLogger(__name__)
transcript_logger = logging.getLogger("bead_oven.agent")

COMMAND_NOT_FOUND_EXIT_CODE = 127


class ClaudeAgent:
    """Run one non-interactive agent session per prompt."""

    def __init__(
        self,
        process_manager: ProcessManager,
        *,
        working_directory: Path,
        command: Sequence[str] = ("claude",),
        stream_output: bool = True,
    ) -> None:
        self.process_manager = process_manager
        self.working_directory = working_directory
        self.command = tuple(command)
        self.stream_output = stream_output

    def invoke(self, prompt: str, options: AgentOptions) -> AgentResult:
        argv = build_agent_args(self.command, prompt, options)
        logger.debug("Starting %s with a %d-character prompt", self.command[0], len(prompt))
        try:
            result = self.process_manager.run(
                argv,
                name=self.command[0],
                cwd=self.working_directory,
                on_stdout_line=_stream_line if self.stream_output else None,
            )
        except FileNotFoundError:
            return AgentResult(
                success=False,
                output="",
                error=f"Agent command not found: {self.command[0]}",
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            )
        except OSError as error:
            return AgentResult(
                success=False,
                output="",
                error=f"Agent failed to start: {error}",
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            )

        return AgentResult(
            success=result.exit_code == 0,
            output=result.stdout,
            error=result.stderr,
            exit_code=result.exit_code,
        )


def build_agent_args(command: Sequence[str], prompt: str, options: AgentOptions) -> list[str]:
    """Render the agent argv; the prompt is always the last argument."""

    args = [*command, "--print"]
    if options.model:
        args.extend(["--model", options.model])
    if options.max_turns:
        args.extend(["--max-turns", str(options.max_turns)])
    if options.skip_permissions:
        args.append("--dangerously-skip-permissions")
    args.append(prompt)
    return args


def _stream_line(line: str) -> None:
    transcript_logger.info("%s", line)
