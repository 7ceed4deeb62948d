"""Two-phase attribute values: resolved now, or known only after apply."""

from dataclasses import dataclass
from typing import Any, Dict, Union

KNOWN_AFTER_APPLY = "(known after apply)"


@dataclass(frozen=True)
class Resolved:
    value: Any

    @property
    def known(self) -> bool:
        return True


@dataclass(frozen=True)
class Unresolved:
    """Placeholder for a value that depends on something not yet applied."""
    reason: str

    @property
    def known(self) -> bool:
        return False


Value = Union[Resolved, Unresolved]


def all_known(values: Dict[str, Value]) -> bool:
    return all(v.known for v in values.values())


def known_values(values: Dict[str, Value]) -> Dict[str, Any]:
    """Plain dict of the attributes that are already resolved."""
    return {name: v.value for name, v in values.items() if isinstance(v, Resolved)}
