"""Version command - show Converge version."""

import click
from ... import __version__
from ...state.models import STATE_FORMAT_VERSION


@click.command()
def version():
    """Show Converge version and the state format it writes."""
    click.echo(f"converge version {__version__} (state format {STATE_FORMAT_VERSION})")
