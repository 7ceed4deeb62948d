"""Plan command - preview the changes apply would make."""

import sys
import click
from ...presentation.human_formatter import format_plan
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_ERROR, build_engine, dump_json, echo_safe, format_error, parse_vars, plan_to_dict, split_targets,
)

logger = get_logger("cli.plan")


@click.command()
@click.argument('config', type=click.Path(exists=False))
@click.option('--target', '-t', 'targets', multiple=True, help='Limit to an address (and its dependencies), repeatable')
@click.option('--var', 'var_pairs', multiple=True, help='Set a root variable (name=value), repeatable')
@click.option('--json', 'json_output', is_flag=True, help='Output the plan as JSON')
@click.option('--settings', 'settings_path', type=click.Path(exists=True), help='Engine settings file')
@click.option('--state', 'state_path', help='State file path (overrides settings)')
def plan(config, targets, var_pairs, json_output, settings_path, state_path):
    """
    Show what apply would do to converge state on CONFIG.

    Nothing is created, changed or written.
    """
    try:
        engine = build_engine(settings_path, state_path)
        graph = engine.load(config, parse_vars(var_pairs))
        result = engine.plan(graph, split_targets(targets))
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    if json_output:
        click.echo(dump_json(plan_to_dict(result)))
    else:
        echo_safe(format_plan(result))
