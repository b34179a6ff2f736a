"""CLI entry point for binrunner.

This module defines the main CLI group using LazyGroup pattern
so that ``binrunner --help`` does not import the runner stack.
"""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any

import click
import rich_click as rclick

from binrunner import __version__
from binrunner.cli.context import CLIState
from binrunner.cli.output import set_no_color

# Configure rich-click for better help formatting
rclick.rich_click.TEXT_MARKUP = "markdown"
rclick.rich_click.SHOW_ARGUMENTS = True
rclick.rich_click.GROUP_ARGUMENTS_OPTIONS = True


class LazyGroup(rclick.RichGroup):
    """Rich-click group whose subcommands are imported on first use.

    ``lazy_subcommands`` maps a command name to ``"module.attribute"``.
    Loaded commands are cached on the group.
    """

    def __init__(
        self,
        *args: Any,
        lazy_subcommands: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.lazy_subcommands: dict[str, str] = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        return sorted({*super().list_commands(ctx), *self.lazy_subcommands})

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        if cmd_name in self.commands:
            return self.commands[cmd_name]
        target = self.lazy_subcommands.get(cmd_name)
        if target is None:
            return None
        command = self._load(cmd_name, target)
        self.add_command(command, cmd_name)
        return command

    @staticmethod
    def _load(cmd_name: str, target: str) -> click.Command:
        module_name, attr_name = target.rsplit(".", 1)
        command = getattr(importlib.import_module(module_name), attr_name)
        if not isinstance(command, click.Command):
            msg = f"Lazy command {cmd_name!r} resolved to {type(command).__name__}"
            raise TypeError(msg)
        return command


LAZY_COMMANDS = {
    "register": "binrunner.cli.commands.artifact.register",
    "list": "binrunner.cli.commands.artifact.list_artifacts",
    "show": "binrunner.cli.commands.artifact.show",
    "update": "binrunner.cli.commands.artifact.update",
    "delete": "binrunner.cli.commands.artifact.delete",
    "build": "binrunner.cli.commands.build.build",
    "exec": "binrunner.cli.commands.execute.exec_cmd",
    "execution": "binrunner.cli.commands.execute.execution",
}


@click.command(cls=LazyGroup, lazy_subcommands=LAZY_COMMANDS)
@click.version_option(version=__version__, prog_name="binrunner")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to binrunner.yaml [default: $BINRUNNER_CONFIG or ./binrunner.yaml]",
)
@click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable colored output.",
    is_eager=True,
    expose_value=False,
    callback=lambda ctx, param, value: set_no_color(value) if value else None,
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """binrunner - build executables from source and run them on demand.

    **Getting Started:**

    - `binrunner register --name hello --repo-url URL` - Register an artifact
    - `binrunner build ID` - Fetch and compile it
    - `binrunner exec ID --arg hello` - Run the built executable
    - `binrunner execution EXEC_ID` - Show a past execution
    """
    ctx.obj = CLIState(config_path=config_path)


if __name__ == "__main__":
    cli()
