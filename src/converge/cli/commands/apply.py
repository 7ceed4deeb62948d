"""Apply command - execute a plan against the provider."""

import sys
import threading
import click
from ...presentation.human_formatter import format_plan, format_report
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_ERROR, build_engine, dump_json, echo_safe, exit_code_for, format_error,
    interrupt_cancels, parse_vars, report_to_dict, split_targets,
)

logger = get_logger("cli.apply")


@click.command()
@click.argument('config', type=click.Path(exists=False))
@click.option('--target', '-t', 'targets', multiple=True, help='Limit to an address (and its dependencies), repeatable')
@click.option('--var', 'var_pairs', multiple=True, help='Set a root variable (name=value), repeatable')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
@click.option('--json', 'json_output', is_flag=True, help='Output plan and results as JSON')
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def apply(config, targets, var_pairs, parallelism, json_output, settings_path, state_path):
    """
    Create, update and delete resources so state matches CONFIG.

    Exit status: 0 all actions succeeded, 1 nothing ran (configuration,
    evaluation or state error), 2 some actions failed after others applied,
    3 actions failed and none applied.
    """
    try:
        engine = build_engine(settings_path, state_path, parallelism)
        graph = engine.load(config, parse_vars(var_pairs))
        with interrupt_cancels(threading.Event()) as cancel_event:
            executed, report = engine.apply(graph, split_targets(targets), cancel_event=cancel_event)
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
