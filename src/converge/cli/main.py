"""Main CLI entry point for converge."""

import click
from .commands.plan import plan
from .commands.apply import apply
from .commands.graph import graph
from .commands.state import state
from .commands.version import version
from .. import __version__
from ..utils.logging import get_logger

logger = get_logger("cli.main")


@click.group()
@click.version_option(version=__version__, prog_name="converge", message="%(prog)s version %(version)s")
def cli():
    """converge - Plan and apply declarative infrastructure."""
    pass


cli.add_command(plan)
cli.add_command(apply)
cli.add_command(graph)
cli.add_command(state)
cli.add_command(version)
