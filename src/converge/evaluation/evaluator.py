"""Resolve attribute expressions to concrete values."""

import json
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from .expressions import Call, Expression, Index, ListExpr, Literal, ObjectExpr, Reference, Template
from .functions import FUNCTIONS
from .template import to_text
from .values import Resolved, Unresolved, Value
from ..graph.dependency_graph import ResourceGraph
from ..graph.models import DATA, ResourceNode, resource_address
from ..providers.base import Provider
from ..state.models import ResourceState
from ..utils.errors import DataLookupError, EvaluationError, ValueNotAvailableError
from ..utils.logging import get_logger

logger = get_logger("evaluation.evaluator")


class LookupCache:
    """Per-run cache of data lookups; queries are assumed idempotent."""

    def __init__(self, provider: Optional[Provider]):
        self.provider = provider
        self._results: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def query(self, kind: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        if self.provider is None:
            raise DataLookupError(f"No provider configured to answer data lookup '{kind}'")
        key = (kind, json.dumps(filters, sort_keys=True, default=str))
        with self._lock:
            if key in self._results:
                return self._results[key]
        results = self.provider.query(kind, filters)
        with self._lock:
            self._results.setdefault(key, results)
        logger.debug(f"Data lookup {kind} {key[1]} returned {len(results)} results")
        return results


@dataclass
class ObjectView:
    """What references to a managed resource can see; ``complete`` is False while outputs are pending."""
    values: Dict[str, Any]
    complete: bool = True


class Evaluator:
    """
    Evaluates expressions against known objects.

    References to resources with no ObjectView raise ValueNotAvailableError
    internally; the public ``evaluate*`` methods turn that into Unresolved.
    """

    def __init__(self, graph: ResourceGraph, lookups: Optional[LookupCache] = None,
                 objects: Optional[Dict[str, ObjectView]] = None):
        self.graph = graph
        self.lookups = lookups or LookupCache(None)
        self._objects: Dict[str, ObjectView] = dict(objects or {})
        self._data: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_state(cls, graph: ResourceGraph, resources: Dict[str, ResourceState],
                   lookups: Optional[LookupCache] = None) -> "Evaluator":
        objects = {address: ObjectView(entry.values()) for address, entry in resources.items()}
        return cls(graph, lookups, objects)

    def set_object(self, address: str, values: Dict[str, Any], complete: bool = True) -> None:
        with self._lock:
            self._objects[address] = ObjectView(dict(values), complete)

    def forget(self, address: str) -> None:
        with self._lock:
            self._objects.pop(address, None)

    def evaluate(self, expr: Expression, module: Tuple[str, ...] = ()) -> Value:
        try:
            return Resolved(self._eval(expr, module))
        except ValueNotAvailableError as e:
            return Unresolved(e.reference)

    def evaluate_attributes(self, node: ResourceNode) -> Dict[str, Value]:
        """Every attribute of ``node``; unknown ones come back Unresolved."""
        return {name: self.evaluate(expr, node.module) for name, expr in node.attributes.items()}

    def resolve_data(self, node: ResourceNode) -> Value:
        try:
            return Resolved(self._data_object(node))
        except ValueNotAvailableError as e:
            return Unresolved(e.reference)

    def evaluate_outputs(self, module: Tuple[str, ...] = ()) -> Dict[str, Value]:
        scope = self.graph.scopes[module]
        return {name: self.evaluate(expr, module) for name, expr in scope.outputs.items()}

    def _eval(self, expr: Expression, module: Tuple[str, ...]) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Reference):
            return self._reference(expr.parts, module)
        if isinstance(expr, Template):
            return "".join(part if isinstance(part, str) else to_text(self._eval(part, module)) for part in expr.parts)
        if isinstance(expr, ListExpr):
            return [self._eval(item, module) for item in expr.items]
        if isinstance(expr, ObjectExpr):
            return {key: self._eval(item, module) for key, item in expr.items}
        if isinstance(expr, Index):
            target = self._eval(expr.target, module)
            key = self._eval(expr.key, module)
            return _step(target, key, "index expression", complete=True)
        if isinstance(expr, Call):
            return self._call(expr, module)
        raise EvaluationError(f"Unsupported expression: {expr!r}")

    def _call(self, call: Call, module: Tuple[str, ...]) -> Any:
        fn = FUNCTIONS.get(call.name)
        if fn is None:
            raise EvaluationError(f"Unknown function '{call.name}' (available: {', '.join(sorted(FUNCTIONS))})")
        args = [self._eval(arg, module) for arg in call.args]
        try:
            return fn(self.graph.scopes[module].base_dir, *args)
        except TypeError as e:
            raise EvaluationError(f"Invalid arguments to {call.name}(): {e}")

    def _reference(self, parts: Tuple[str, ...], module: Tuple[str, ...]) -> Any:
        head = parts[0]
        scope = self.graph.scopes[module]

        if head == "var":
            if not module:
                value = scope.variable_values[parts[1]]
            else:
                value = self._eval(scope.variables[parts[1]], scope.parent)
            return _walk(value, parts[2:], ".".join(parts), complete=True)

        if head == "module":
            child = module + (parts[1],)
            rest = parts[2:]
            if not rest:
                raise EvaluationError(f"Module '{scope.prefix}module.{parts[1]}' cannot be used as a value")
            outputs = self.graph.scopes[child].outputs
            if rest[0] in outputs:
                value = self._eval(outputs[rest[0]], child)
                return _walk(value, rest[1:], ".".join(parts), complete=True)
            return self._reference(rest, child)

        if head == "data":
            address = resource_address(module, parts[1], parts[2], DATA)
            value = self._data_object(self.graph.node(address))
            return _walk(value, parts[3:], address, complete=True)

        address = resource_address(module, parts[0], parts[1])
        with self._lock:
            view = self._objects.get(address)
        if view is None:
            raise ValueNotAvailableError(address)
        return _walk(view.values, parts[2:], address, complete=view.complete)

    def _data_object(self, node: ResourceNode) -> Dict[str, Any]:
        with self._lock:
            if node.address in self._data:
                return self._data[node.address]
        filters = {name: self._eval(expr, node.module) for name, expr in node.attributes.items()}
        results = self.lookups.query(node.kind, filters)
        if not results:
            raise DataLookupError(f"Data lookup '{node.address}' matched nothing (filters: {filters})")
        if node.most_recent:
            chosen = max(results, key=lambda r: str(r.get(node.sort_key, "")))
        elif len(results) > 1:
            raise DataLookupError(
                f"Data lookup '{node.address}' matched {len(results)} results; "
                "narrow the filters or set most_recent"
            )
        else:
            chosen = results[0]
        with self._lock:
            self._data[node.address] = chosen
        return chosen


def _walk(value: Any, path: Tuple[str, ...], reference: str, complete: bool) -> Any:
    for part in path:
        value = _step(value, part, reference, complete)
        reference = f"{reference}.{part}"
    return value


def _step(value: Any, key: Any, reference: str, complete: bool) -> Any:
    if isinstance(value, dict):
        if key in value:
            return value[key]
        if not complete:
            raise ValueNotAvailableError(f"{reference}.{key}")
        raise EvaluationError(f"'{reference}' has no attribute '{key}'")
    if isinstance(value, list):
        try:
            return value[int(key)]
        except (ValueError, IndexError):
            raise EvaluationError(f"Invalid index '{key}' into '{reference}' (length {len(value)})")
    raise EvaluationError(f"Cannot read '{key}' from non-collection value of '{reference}'")
