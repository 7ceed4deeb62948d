"""Built-in functions callable from expressions."""

import base64
import json
from pathlib import Path
from typing import Any, Callable, Dict, List
from .template import render, to_text
from ..utils.errors import EvaluationError


def _read(base_dir: str, path: str) -> str:
    full = Path(base_dir) / path
    try:
        return full.read_text(encoding="utf-8")
    except OSError as e:
        raise EvaluationError(f"Cannot read file '{full}': {e}")


def fn_file(base_dir: str, path: str) -> str:
    return _read(base_dir, path)


def fn_templatefile(base_dir: str, path: str, variables: Dict[str, Any] = None) -> str:
    if variables is not None and not isinstance(variables, dict):
        raise EvaluationError("templatefile() expects an object of variables as second argument")
    return render(_read(base_dir, path), variables or {}).decode("utf-8")


def fn_base64encode(base_dir: str, value: Any) -> str:
    raw = value if isinstance(value, bytes) else to_text(value).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def fn_jsonencode(base_dir: str, value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def fn_join(base_dir: str, separator: str, items: List[Any]) -> str:
    if not isinstance(items, list):
        raise EvaluationError("join() expects a list as second argument")
    return separator.join(to_text(item) for item in items)


def fn_lookup(base_dir: str, mapping: Dict[str, Any], key: str, *default: Any) -> Any:
    if not isinstance(mapping, dict):
        raise EvaluationError("lookup() expects an object as first argument")
    if key in mapping:
        return mapping[key]
    if default:
        return default[0]
    raise EvaluationError(f"lookup() found no key '{key}' and no default was given")


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "file": fn_file,
    "templatefile": fn_templatefile,
    "base64encode": fn_base64encode,
    "jsonencode": fn_jsonencode,
    "join": fn_join,
    "lookup": fn_lookup,
}
