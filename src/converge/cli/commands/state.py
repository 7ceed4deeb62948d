"""State commands - inspect state and release stale locks."""

import sys
import click
from ...presentation.human_formatter import format_state_entry, format_state_list
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, build_engine, format_error

logger = get_logger("cli.state")


@click.group()
def state():
    """Inspect and manage the state document."""
    pass


@state.command(name="list")
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def list_resources(settings_path, state_path):
    """List resource addresses recorded in state."""
    try:
        document = build_engine(settings_path, state_path).store.load()
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    click.echo(format_state_list(document))


@state.command()
@click.argument('address')
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def show(address, settings_path, state_path):
    """Show the recorded attributes and outputs of ADDRESS."""
    try:
        document = build_engine(settings_path, state_path).store.load()
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    rendered = format_state_entry(document, address)
    if rendered is None:
        click.echo(format_error(f"No resource '{address}' in state", "Run 'converge state list' to see addresses"), err=True)
        sys.exit(EXIT_ERROR)
    click.echo(rendered)


@state.command()
@click.option('--lock-id', help='Only release the lock if it has this ID')
@click.option('--force', is_flag=True, help='Release even if the lock is not stale yet')
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def unlock(lock_id, force, settings_path, state_path):
    """Release a state lock left behind by a crashed run."""
    try:
        removed = build_engine(settings_path, state_path).store.force_unlock(lock_id, force=force)
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    click.echo("State lock released." if removed else "State is not locked.")
