"""CLI entrypoint for bead-oven."""

import sys
from pathlib import Path

import rich_click as click

from bead_oven import __version__
from bead_oven.config import PROJECT_TYPE_GATES
from bead_oven.log import configure_logging
from bead_oven.orchestrator.controllers import (
    InitCommand,
    OrchestratorCliController,
    RunCommand,
    suggested_gates,
)

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()

PERMISSIONS_REQUIRED_MESSAGE = (
    "bead-oven requires --dangerously-skip-permissions to run autonomously.\n"
    "It runs the coding agent in a loop and cannot prompt for permissions.\n\n"
    "Usage: bead-oven run --dangerously-skip-permissions [OPTIONS]"
)


@click.group()
@click.version_option(version=__version__, prog_name="bead-oven")
def bead_oven() -> None:
    """Work through **beads** issues with a coding agent, one at a time."""


@bead_oven.command("run")
@click.option(
    "--dangerously-skip-permissions",
    "skip_permissions",
    is_flag=True,
    default=False,
    help="Let the agent act without permission prompts. Required.",
)
@click.option(
    "-n",
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many issues. Runs until interrupted when omitted.",
)
@click.option("-m", "--model", default=None, help="Model passed to the agent.")
@click.option(
    "--max-turns",
    type=click.IntRange(min=1),
    default=None,
    help="Max agent turns per invocation.",
)
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only log warnings and errors.")
@click.option(
    "--working-directory",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Repository to work in. Defaults to the current directory.",
)
def run(  # noqa: PLR0913
    skip_permissions: bool,
    max_iterations: int | None,
    model: str | None,
    max_turns: int | None,
    quiet: bool,
    working_directory: Path | None,
) -> None:
    """Run the orchestrator loop over ready issues."""

    if not skip_permissions:
        raise click.ClickException(PERMISSIONS_REQUIRED_MESSAGE)

    configure_logging(verbose=not quiet)
    try:
        report = ORCHESTRATOR_CONTROLLER.run(
            RunCommand(
                working_directory=working_directory,
                max_iterations=max_iterations,
                model=model,
                max_turns=max_turns,
                skip_permissions=skip_permissions,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(report.lines, err=report.exit_code != 0)
    if report.exit_code != 0:
        sys.exit(report.exit_code)


@bead_oven.command("init")
@click.option(
    "--working-directory",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Repository to configure. Defaults to the current directory.",
)
def init(working_directory: Path | None) -> None:
    """Write `.config/bead-oven.toml` from a few questions."""

    path = ORCHESTRATOR_CONTROLLER.config_path(working_directory)
    if path.exists() and not click.confirm(
        "Config file already exists. Overwrite?",
        default=False,
    ):
        click.echo("Aborted.")
        return

    project_type = click.prompt(
        "What type of project is this?",
        type=click.Choice(list(PROJECT_TYPE_GATES)),
        default="other",
    )
    gates = list(suggested_gates(project_type))
    if gates:
        click.echo(f"\nSuggested gates for {project_type}:")
        for gate in gates:
            click.echo(f"  - {gate}")
        if not click.confirm("Use these gates?", default=True):
            gates = []

    if not gates or click.confirm("Add additional gates?", default=False):
        gates.extend(_collect_entries("Enter gate command (empty to finish)"))

    use_vcs = click.confirm("Enable automatic commits with jj?", default=False)

    reviews: list[str] = []
    if click.confirm("Add review prompts?", default=False):
        reviews = _collect_entries("Enter review prompt (empty to finish)")

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.init(
            InitCommand(
                working_directory=working_directory,
                gates=tuple(gates),
                use_vcs=use_vcs,
                reviews=tuple(reviews),
            ),
        ),
    )


def _collect_entries(message: str) -> list[str]:
    entries: list[str] = []
    while True:
        entry = click.prompt(message, default="", show_default=False).strip()
        if not entry:
            return entries
        entries.append(entry)


def _emit_lines(lines: list[str], *, err: bool = False) -> None:
    for line in lines:
        click.echo(line, err=err)


if __name__ == "__main__":  # pragma: no cover
    bead_oven()
