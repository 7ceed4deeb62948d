"""Main CLI entry point for Converge."""

import logging
import click
from .commands.apply import apply
from .commands.destroy import destroy
from .commands.plan import plan
from .commands.state import state
from .commands.validate import validate
from .. import __version__
from ..utils.logging import get_logger, setup_logging

logger = get_logger("cli.main")


@click.group()
@click.version_option(version=__version__, prog_name="converge", message="%(prog)s version %(version)s")
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging on stderr')
def cli(verbose):
    """Converge - declarative resource provisioning."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


cli.add_command(validate)
cli.add_command(plan)
cli.add_command(apply)
cli.add_command(destroy)
cli.add_command(state)

# Import and add version command at the end
from .commands.version import version as version_command
cli.add_command(version_command)
