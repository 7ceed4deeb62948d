"""Graph node types."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple
from ..evaluation.expressions import Expression

MANAGED = "managed"
DATA = "data"


@dataclass(frozen=True)
class ResourceNode:
    """One declared resource or data lookup, immutable once built."""
    index: int
    address: str
    mode: str
    kind: str
    name: str
    module: Tuple[str, ...]
    attributes: Dict[str, Expression]
    dependencies: FrozenSet[str] = frozenset()
    create_before_destroy: Optional[bool] = None
    most_recent: bool = False
    sort_key: str = "created_at"

    @property
    def is_data(self) -> bool:
        return self.mode == DATA

    @property
    def scope(self) -> str:
        return module_prefix(self.module)


@dataclass(frozen=True)
class ModuleScope:
    """Names visible inside one module instance."""
    path: Tuple[str, ...]
    base_dir: str
    variables: Dict[str, Expression] = field(default_factory=dict)
    outputs: Dict[str, Expression] = field(default_factory=dict)
    variable_values: Dict[str, Any] = field(default_factory=dict)

    @property
    def prefix(self) -> str:
        return module_prefix(self.path)

    @property
    def parent(self) -> Tuple[str, ...]:
        return self.path[:-1]


def module_prefix(path: Tuple[str, ...]) -> str:
    """`("net", "inner")` -> `module.net.module.inner.`"""
    return "".join(f"module.{name}." for name in path)


def resource_address(module: Tuple[str, ...], kind: str, name: str, mode: str = MANAGED) -> str:
    base = f"data.{kind}.{name}" if mode == DATA else f"{kind}.{name}"
    return module_prefix(module) + base
