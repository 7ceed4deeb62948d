"""Converge - declarative resource graph provisioning engine."""

from typing import Any, Dict, Iterable, Optional
from .config import load_settings
from .engine import Engine
from .planning.models import Plan
from .utils.logging import setup_logging, get_logger
from .utils.errors import ConvergeError

__version__ = "0.1.0"

__all__ = ["Engine", "plan", "load_settings", "ConvergeError", "__version__"]

setup_logging()
logger = get_logger("api")


def plan(config_path: str, variables: Optional[Dict[str, Any]] = None,
         targets: Optional[Iterable[str]] = None, settings_path: Optional[str] = None) -> Plan:
    """Build the graph for ``config_path`` and preview the changes against current state."""
    try:
        settings = load_settings(settings_path)
        engine = Engine.from_settings(settings)
        graph = engine.load(config_path, variables)
        return engine.plan(graph, targets)
    except ConvergeError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during planning: {e}", exc_info=True)
        raise ConvergeError(f"Planning failed: {e}") from e
