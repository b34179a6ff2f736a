"""Execution commands: exec, execution."""

from __future__ import annotations

import sys

import click

from binrunner.cli.context import CLIState, open_runner
from binrunner.cli.errors import EXIT_USER_ERROR, translate_errors
from binrunner.cli.output import print_execution, print_json, warning


@click.command("exec")
@click.argument("artifact_id")
@click.option(
    "-a",
    "--arg",
    "args",
    multiple=True,
    help="Argument passed to the executable (repeatable)",
)
@click.option(
    "-e",
    "--env",
    "env",
    multiple=True,
    help="Environment variable as KEY=VALUE (repeatable)",
)
@click.option(
    "--stdin",
    "stdin",
    default=None,
    help="Text written to the process's standard input; '-' reads it from this terminal",
)
@click.option(
    "-t",
    "--timeout",
    type=click.IntRange(min=0),
    default=0,
    help="Timeout in seconds [default: configured executor timeout]",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output the execution record as JSON",
)
@click.pass_obj
def exec_cmd(
    state: CLIState | None,
    artifact_id: str,
    args: tuple[str, ...],
    env: tuple[str, ...],
    stdin: str | None,
    timeout: int,
    as_json: bool,
) -> None:
    """Run a built artifact and show its output.

    Exits with status 1 if the run did not complete successfully.

    Examples:

        binrunner exec ID --arg hello

        binrunner exec ID -e LOG_LEVEL=debug --timeout 30

        echo data | binrunner exec ID --stdin -
    """
    from binrunner.models import ExecutionRequest, ExecutionStatus

    if stdin == "-":
        stdin = sys.stdin.read()

    with translate_errors():
        request = ExecutionRequest(
            artifact_id=artifact_id,
            args=list(args),
            env=list(env),
            stdin=stdin,
            timeout=timeout,
        )

    with open_runner(state) as runner, translate_errors():
        record = runner.execute(request)

    if as_json:
        print_json(record.model_dump(mode="json"))
    else:
        print_execution(record)

    if record.status != ExecutionStatus.COMPLETED:
        if not as_json:
            warning(f"Execution {record.status.value} (exit code {record.exit_code})")
        raise SystemExit(EXIT_USER_ERROR)


@click.command()
@click.argument("execution_id")
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output as JSON",
)
@click.option(
    "--no-output",
    "no_output",
    is_flag=True,
    default=False,
    help="Hide captured stdout and stderr",
)
@click.pass_obj
def execution(
    state: CLIState | None, execution_id: str, as_json: bool, no_output: bool
) -> None:
    """Show a finished execution.

    Examples:

        binrunner execution 7d0c2f4e-8a1b-4c3d-9e5f-6a7b8c9d0e1f
    """
    with open_runner(state) as runner, translate_errors():
        record = runner.get_execution(execution_id)

    if as_json:
        print_json(record.model_dump(mode="json"))
    else:
        print_execution(record, show_output=not no_output)
