"""CLI utilities package."""

import json
import signal
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple
import click
import yaml
from ...config import load_settings
from ...engine import Engine
from ...execution.models import ApplyReport
from ...planning.models import Plan
from ...utils.errors import ParseError
from ...utils.logging import get_logger

logger = get_logger("cli.utils")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2
EXIT_FAILED = 3


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"❌ Error: {message}"
    if suggestion:
        error += f"\n💡 Tip: {suggestion}"
    return error


def echo_safe(text: str, err: bool = False) -> None:
    """Echo text, degrading to ASCII on terminals that cannot encode it."""
    try:
        click.echo(text, err=err)
    except UnicodeEncodeError:
        click.echo(text.encode('ascii', errors='replace').decode('ascii'), err=err)


def parse_vars(pairs: Iterable[str]) -> Dict[str, Any]:
    """
    Parse ``--var name=value`` pairs; values are read as YAML scalars/collections.

    Raises:
        ParseError: If a pair has no ``=``
    """
    variables = {}
    for pair in pairs:
        if "=" not in pair:
            raise ParseError(f"--var expects name=value, got '{pair}'")
        name, raw = pair.split("=", 1)
        try:
            variables[name.strip()] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            variables[name.strip()] = raw
    return variables


def build_engine(settings_path: Optional[str], state_path: Optional[str] = None,
                 parallelism: Optional[int] = None) -> Engine:
    """Settings from files/env with CLI flags layered on top."""
    settings = load_settings(settings_path, overrides={
        "state.path": state_path,
        "parallelism": parallelism,
    })
    return Engine.from_settings(settings)


def exit_code_for(plan: Plan, report: ApplyReport) -> int:
    """0 when everything converged, 2 when some actions applied, 3 when none did."""
    if not plan.has_changes() or report.succeeded:
        return EXIT_OK
    return EXIT_PARTIAL if report.applied_any else EXIT_FAILED


def plan_to_dict(plan: Plan) -> Dict[str, Any]:
    data = plan.model_dump(mode="json")
    data["summary"] = plan.counts()
    return data


def report_to_dict(plan: Plan, report: ApplyReport) -> Dict[str, Any]:
    return {
        "plan": plan_to_dict(plan),
        "results": [r.model_dump(mode="json") for r in report.results],
        "summary": report.summary(),
        "outputs": report.outputs,
        "cancelled": report.cancelled,
    }


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


@contextmanager
def interrupt_cancels(event: threading.Event) -> Iterator[threading.Event]:
    """
    First Ctrl-C sets ``event`` so the run stops claiming new actions;
    a second one interrupts for real.
    """
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        if event.is_set():
            signal.signal(signal.SIGINT, previous)
            raise KeyboardInterrupt
        event.set()
        click.echo("Interrupt received: finishing in-flight actions, starting no new ones.", err=True)

    signal.signal(signal.SIGINT, handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)


def split_targets(targets: Tuple[str, ...]) -> Optional[list]:
    return list(targets) or None
