"""Destroy command - delete everything tracked in state."""

import sys
import threading
import click
from ...presentation.human_formatter import format_plan, format_report
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_ERROR, build_engine, dump_json, echo_safe, exit_code_for, format_error,
    interrupt_cancels, report_to_dict, split_targets,
)

logger = get_logger("cli.destroy")


@click.command()
@click.argument('config', type=click.Path(exists=False), required=False)
@click.option('--target', '-t', 'targets', multiple=True, help='Destroy only this address and whatever depends on it')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
@click.option('--json', 'json_output', is_flag=True, help='Output plan and results as JSON')
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def destroy(config, targets, parallelism, json_output, settings_path, state_path):
    """
    Delete the resources recorded in state, dependents first.

    CONFIG is optional: destruction works from state alone. Exit status
    follows apply.
    """
    try:
        engine = build_engine(settings_path, state_path, parallelism)
        if config:
            # surfaces configuration errors before anything is deleted
            engine.load(config)
        with interrupt_cancels(threading.Event()) as cancel_event:
            executed, report = engine.apply(None, split_targets(targets), destroy=True, cancel_event=cancel_event)
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    if json_output:
        click.echo(dump_json(report_to_dict(executed, report)))
    else:
        echo_safe(format_plan(executed))
        click.echo("")
        echo_safe(format_report(report))
    sys.exit(exit_code_for(executed, report))
