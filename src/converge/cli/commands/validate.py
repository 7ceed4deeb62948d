"""Validate command - parse declarations and build the resource graph."""

import sys
import click
from ...ingest.config_loader import load_configuration
from ...graph.builder import build_graph
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, format_error, parse_vars

logger = get_logger("cli.validate")


@click.command()
@click.argument('config', type=click.Path(exists=False))
@click.option('--var', 'var_pairs', multiple=True, help='Set a root variable (name=value), repeatable')
def validate(config, var_pairs):
    """
    Check that CONFIG parses and forms an acyclic resource graph.

    Touches neither state nor the provider.
    """
    try:
        graph = build_graph(load_configuration(config), parse_vars(var_pairs))
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    managed = sum(1 for node in graph.nodes if not node.is_data)
    click.echo(f"Configuration is valid: {managed} resources, {len(graph) - managed} data lookups.")
