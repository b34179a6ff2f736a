"""Artifact commands: register, list, show, update, delete."""

from __future__ import annotations

import click

from binrunner.cli.context import CLIState, open_runner
from binrunner.cli.errors import translate_errors
from binrunner.cli.output import (
    info,
    print_artifact,
    print_artifact_table,
    print_json,
    success,
)

json_option = click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output as JSON",
)


@click.command()
@click.option("-n", "--name", required=True, help="Display name")
@click.option("-r", "--repo-url", "repo_url", required=True, help="Source repository URL")
@click.option("-b", "--branch", default="main", show_default=True, help="Branch to build")
@click.option("-p", "--build-path", "build_path", default="", help="Subdirectory to compile")
@click.option("-d", "--description", default="", help="Free-form description")
@json_option
@click.pass_obj
def register(
    state: CLIState | None,
    name: str,
    repo_url: str,
    branch: str,
    build_path: str,
    description: str,
    as_json: bool,
) -> None:
    """Register a new artifact.

    The artifact starts in the `pending` state; run `binrunner build` to
    compile it.

    Examples:

        binrunner register --name hello --repo-url https://github.com/example/hello.git

        binrunner register -n tool -r git@github.com:example/tools.git -p cmd/tool
    """
    from binrunner.models import ArtifactSpec

    with translate_errors():
        spec = ArtifactSpec(
            name=name,
            repo_url=repo_url,
            branch=branch,
            build_path=build_path,
            description=description,
        )

    with open_runner(state) as runner, translate_errors():
        artifact = runner.register_artifact(spec)

    if as_json:
        print_json(artifact.model_dump(mode="json"))
    else:
        success(f"Registered artifact {artifact.id}")


@click.command("list")
@json_option
@click.pass_obj
def list_artifacts(state: CLIState | None, as_json: bool) -> None:
    """List registered artifacts, oldest first.

    Examples:

        binrunner list

        binrunner list --json
    """
    with open_runner(state) as runner, translate_errors():
        artifacts = runner.list_artifacts()

    if as_json:
        print_json([a.model_dump(mode="json") for a in artifacts])
    elif not artifacts:
        info("No artifacts registered")
    else:
        print_artifact_table(artifacts)


@click.command()
@click.argument("artifact_id")
@json_option
@click.pass_obj
def show(state: CLIState | None, artifact_id: str, as_json: bool) -> None:
    """Show one artifact.

    Examples:

        binrunner show 0b6f1c3e-5a7d-4c52-9d1e-2f8a3b4c5d6e
    """
    with open_runner(state) as runner, translate_errors():
        artifact = runner.get_artifact(artifact_id)

    if as_json:
        print_json(artifact.model_dump(mode="json"))
    else:
        print_artifact(artifact)


@click.command()
@click.argument("artifact_id")
@click.option("-n", "--name", default=None, help="Display name")
@click.option("-r", "--repo-url", "repo_url", default=None, help="Source repository URL")
@click.option("-b", "--branch", default=None, help="Branch to build")
@click.option("-p", "--build-path", "build_path", default=None, help="Subdirectory to compile")
@click.option("-d", "--description", default=None, help="Free-form description")
@json_option
@click.pass_obj
def update(
    state: CLIState | None,
    artifact_id: str,
    name: str | None,
    repo_url: str | None,
    branch: str | None,
    build_path: str | None,
    description: str | None,
    as_json: bool,
) -> None:
    """Update an artifact's descriptive fields.

    Options that are not given keep their current value. The build state
    (status, version, binary) is not changed; rebuild to pick up a new
    repository or branch.

    Examples:

        binrunner update ID --branch release

        binrunner update ID --description "nightly tool"
    """
    from binrunner.models import ArtifactSpec

    changes = {
        key: value
        for key, value in {
            "name": name,
            "repo_url": repo_url,
            "branch": branch,
            "build_path": build_path,
            "description": description,
        }.items()
        if value is not None
    }

    with open_runner(state) as runner, translate_errors():
        current = runner.get_artifact(artifact_id)
        fields = {key: getattr(current, key) for key in ArtifactSpec.model_fields}
        spec = ArtifactSpec(**{**fields, **changes})
        artifact = runner.update_artifact(artifact_id, spec)

    if as_json:
        print_json(artifact.model_dump(mode="json"))
    else:
        success(f"Updated artifact {artifact.id}")


@click.command()
@click.argument("artifact_id")
@click.pass_obj
def delete(state: CLIState | None, artifact_id: str) -> None:
    """Delete an artifact and its built executable.

    Examples:

        binrunner delete 0b6f1c3e-5a7d-4c52-9d1e-2f8a3b4c5d6e
    """
    with open_runner(state) as runner, translate_errors():
        runner.delete_artifact(artifact_id)

    success(f"Deleted artifact {artifact_id}")
