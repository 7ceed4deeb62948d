"""Load and validate declaration files (root configuration and modules)."""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from .models import Configuration
from ..utils.errors import ParseError
from ..utils.logging import get_logger

logger = get_logger("ingest.config_loader")

TOP_LEVEL_KEYS = {"variables", "kinds", "data", "resources", "modules", "outputs"}


def load_configuration(config_path: str) -> Configuration:
    """
    Load a root configuration file and every module it references.

    Args:
        config_path: Path to the root YAML file

    Returns:
        Validated Configuration tree

    Raises:
        ParseError: If any file is missing, is not valid YAML, or does not
            match the declaration schema
    """
    path = Path(config_path).resolve()
    configuration = _load_file(path, stack=[])
    logger.info(
        f"Loaded configuration from {config_path} "
        f"({len(configuration.resources)} resources, {len(configuration.modules)} modules)"
    )
    return configuration


def parse_configuration(data: Dict[str, Any], base_dir: str = ".") -> Configuration:
    """Validate an already-parsed document (modules must be inline or resolve from base_dir)."""
    return _build(data, Path(base_dir).resolve(), origin="<inline>", stack=[])


def _load_file(path: Path, stack: List[Path]) -> Configuration:
    if path in stack:
        chain = " -> ".join(str(p) for p in stack + [path])
        raise ParseError(f"Module source includes itself: {chain}")

    if not path.exists():
        raise ParseError(f"Configuration file not found: {path}")
    if not path.is_file():
        raise ParseError(f"Path is not a file: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ParseError(f"Error reading {path}: {e}")

    if data is None:
        data = {}
    return _build(data, path.parent, origin=str(path), stack=stack + [path])


def _build(data: Any, base_dir: Path, origin: str, stack: List[Path]) -> Configuration:
    if not isinstance(data, dict):
        raise ParseError(f"{origin} must contain a mapping at the top level")

    unknown = set(data) - TOP_LEVEL_KEYS
    if unknown:
        raise ParseError(f"Unknown top-level keys in {origin}: {', '.join(sorted(unknown))}")

    document = dict(data)
    document["base_dir"] = str(base_dir)
    document["modules"] = [
        _build_module(entry, base_dir, origin, stack, idx)
        for idx, entry in enumerate(data.get("modules") or [])
    ]
    for key in ("data", "resources"):
        if document.get(key) is None:
            document[key] = []
    for key in ("variables", "kinds", "outputs"):
        if document.get(key) is None:
            document[key] = {}

    try:
        return Configuration(**document)
    except ValidationError as e:
        raise ParseError(f"Invalid declarations in {origin}: {e}")


def _build_module(entry: Any, base_dir: Path, origin: str, stack: List[Path], idx: int) -> Dict[str, Any]:
    """Resolve a module entry into a dict carrying its own Configuration."""
    if not isinstance(entry, dict) or "name" not in entry:
        raise ParseError(f"Module at index {idx} in {origin} must be a mapping with a 'name'")

    source: Optional[str] = entry.get("source")
    inline = {k: v for k, v in entry.items() if k in TOP_LEVEL_KEYS}

    if source and inline:
        raise ParseError(
            f"Module '{entry['name']}' in {origin} sets 'source' and inline declarations; use one"
        )

    if source:
        configuration = _load_file((base_dir / source).resolve(), stack)
    else:
        configuration = _build(inline, base_dir, origin=f"{origin} (module {entry['name']})", stack=stack)

    extra = set(entry) - TOP_LEVEL_KEYS - {"name", "source", "inputs"}
    if extra:
        raise ParseError(f"Unknown keys on module '{entry['name']}' in {origin}: {', '.join(sorted(extra))}")

    return {
        "name": entry["name"],
        "source": source,
        "inputs": entry.get("inputs") or {},
        "configuration": configuration,
    }
