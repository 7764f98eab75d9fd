"""Swarm command-line interface."""

import click

from swarm import __version__
from swarm.commands import cleanup, init, run, status


@click.group()
@click.version_option(version=__version__, prog_name="swarm")
def cli() -> None:
    """Swarm - run sprints of coding agents in isolated git worktrees."""


cli.add_command(init)
cli.add_command(run)
cli.add_command(status)
cli.add_command(cleanup)


if __name__ == "__main__":
    cli()
