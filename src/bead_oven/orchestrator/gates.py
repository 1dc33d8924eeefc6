"""Quality gate pipeline: tests, type checks, formatters, linters."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from bead_oven.config import parse_command
from bead_oven.orchestrator.models import GateResult, GatesOutcome
from bead_oven.orchestrator.process_manager import ProcessManager

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True, slots=True)
class GateCommand:
    """One configured gate: display name plus literal argv."""

    name: str
    argv: tuple[str, ...]

    @classmethod
    def parse(cls, command: str) -> GateCommand:
        argv = parse_command(command)
        if not argv:
            raise ValueError(f"Gate command is empty: {command!r}")
        return cls(name=command, argv=tuple(argv))


class GatePipeline:
    """Run every configured gate in order and collect the results."""

    def __init__(
        self,
        gates: Iterable[GateCommand | str],
        *,
        working_directory: Path,
        process_manager: ProcessManager,
    ) -> None:
        self.gates = [
            gate if isinstance(gate, GateCommand) else GateCommand.parse(gate) for gate in gates
        ]
        self.working_directory = working_directory
        self.process_manager = process_manager

    @property
    def configured(self) -> bool:
        return bool(self.gates)

    def run(self) -> GatesOutcome:
        """Run all gates; a failing gate never stops the ones after it."""

        results = [self.run_gate(gate) for gate in self.gates]
        return GatesOutcome(passed=all(result.passed for result in results), results=results)

    def run_gate(self, gate: GateCommand) -> GateResult:
        logger.debug("Running gate: %s", gate.name)
        try:
            completed = self.process_manager.run(
                gate.argv,
                name=f"gate:{gate.argv[0]}",
                cwd=self.working_directory,
            )
        except FileNotFoundError:
            return GateResult(
                name=gate.name,
                passed=False,
                stdout="",
                stderr=f"Command not found: {gate.argv[0]}",
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            )
        except OSError as error:
            return GateResult(
                name=gate.name,
                passed=False,
                stdout="",
                stderr=f"Failed to start {gate.argv[0]}: {error}",
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            )

        result = GateResult(
            name=gate.name,
            passed=completed.exit_code == 0,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.exit_code,
        )
        logger.info("%s %s", "PASS" if result.passed else "FAIL", gate.name)
        return result


def format_gate_results(results: Iterable[GateResult]) -> str:
    """Format gate results for display."""

    lines = ["Quality Gates:"]
    for result in results:
        lines.append(f"  {'PASS' if result.passed else 'FAIL'} {result.name}")
        if not result.passed and result.stderr:
            lines.append(f"    {result.stderr.splitlines()[0]}")
    return "\n".join(lines)
