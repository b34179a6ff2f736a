"""binrunner build command - Fetch and compile an artifact."""

from __future__ import annotations

import click

from binrunner.cli.context import CLIState, open_runner
from binrunner.cli.errors import translate_errors
from binrunner.cli.output import info, print_json, success


@click.command()
@click.argument("artifact_id")
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output the built artifact as JSON",
)
@click.pass_obj
def build(state: CLIState | None, artifact_id: str, as_json: bool) -> None:
    """Build an artifact from its repository.

    Clones or updates the source, records the revision and compiles the
    executable. Waits for the build to finish.

    Examples:

        binrunner build 0b6f1c3e-5a7d-4c52-9d1e-2f8a3b4c5d6e
    """
    with open_runner(state) as runner, translate_errors():
        future = runner.request_build(artifact_id)
        if not as_json:
            info(f"Building artifact {artifact_id}...")
        artifact = future.result()

    if as_json:
        print_json(artifact.model_dump(mode="json"))
    else:
        success(f"Built {artifact.name} at version {artifact.version}")
        info(f"Binary: {artifact.binary_location}")
