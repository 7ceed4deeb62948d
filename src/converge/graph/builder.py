"""Build a ResourceGraph from a validated Configuration tree."""

from typing import Any, Dict, List, Optional, Set, Tuple
from .dependency_graph import ResourceGraph
from .models import DATA, MANAGED, ModuleScope, ResourceNode, module_prefix, resource_address
from ..evaluation.expressions import Expression, Literal, Reference, iter_references, parse_expression, parse_value
from ..ingest.models import Configuration
from ..resources.registry import KindRegistry, ResourceKind
from ..utils.errors import (
    CyclicDependencyError,
    DuplicateResourceError,
    ParseError,
    UnresolvedReferenceError,
)
from ..utils.logging import get_logger

logger = get_logger("graph.builder")


def build_graph(configuration: Configuration, variables: Optional[Dict[str, Any]] = None) -> ResourceGraph:
    """
    Build and validate the dependency graph.

    Args:
        configuration: Root configuration (modules already loaded)
        variables: Values for root variables, overriding declared defaults

    Returns:
        Acyclic ResourceGraph

    Raises:
        ParseError: Malformed declarations or missing variables
        DuplicateResourceError: Same (kind, name) twice in one namespace
        UnresolvedReferenceError: Reference to something never declared
        CyclicDependencyError: Dependency cycle, naming every member
    """
    return GraphBuilder(configuration, variables).build()


class _PendingNode:
    """Node fields collected before dependencies are known."""

    def __init__(self, address: str, mode: str, kind: str, name: str, module: Tuple[str, ...],
                 attributes: Dict[str, Expression], depends_on: List[str], **extra: Any):
        self.address = address
        self.mode = mode
        self.kind = kind
        self.name = name
        self.module = module
        self.attributes = attributes
        self.depends_on = depends_on
        self.extra = extra


class GraphBuilder:
    """Two passes: collect nodes and scopes, then resolve references into edges."""

    def __init__(self, configuration: Configuration, variables: Optional[Dict[str, Any]] = None):
        self.configuration = configuration
        self.variables = variables or {}
        self.kinds = KindRegistry()
        self.scopes: Dict[Tuple[str, ...], ModuleScope] = {}
        self._pending: List[_PendingNode] = []
        self._addresses: Dict[str, _PendingNode] = {}
        self._resolving: List[str] = []
        self._memo: Dict[str, Set[str]] = {}

    def build(self) -> ResourceGraph:
        self._register_kinds(self.configuration)
        self._collect(self.configuration, (), inputs=None)

        index = {pending.address: idx for idx, pending in enumerate(self._pending)}
        nodes: List[ResourceNode] = []
        edges: List[Tuple[int, int]] = []
        for idx, pending in enumerate(self._pending):
            deps = self._node_dependencies(pending)
            edges.extend((index[dep], idx) for dep in deps)
            nodes.append(ResourceNode(
                index=idx,
                address=pending.address,
                mode=pending.mode,
                kind=pending.kind,
                name=pending.name,
                module=pending.module,
                attributes=pending.attributes,
                dependencies=frozenset(deps),
                **pending.extra,
            ))

        graph = ResourceGraph(nodes, edges, self.scopes, self.kinds)
        graph.check_acyclic()
        logger.info(f"Built resource graph with {len(nodes)} nodes and {len(graph.edges)} edges")
        return graph

    def _collect(self, config: Configuration, path: Tuple[str, ...], inputs: Optional[Dict[str, Any]]) -> None:
        prefix = module_prefix(path)
        where = prefix.rstrip(".") or "root module"

        if inputs is None:
            scope_vars: Dict[str, Expression] = {}
            values = self._root_variable_values(config)
        else:
            scope_vars = self._module_inputs(config, inputs, where)
            values = {}

        self.scopes[path] = ModuleScope(
            path=path,
            base_dir=config.base_dir,
            variables=scope_vars,
            outputs={name: parse_value(expr, f"output '{prefix}{name}'") for name, expr in config.outputs.items()},
            variable_values=values,
        )

        for decl in config.data:
            address = resource_address(path, decl.kind, decl.name, DATA)
            filters = {key: parse_value(value, address) for key, value in decl.filters.items()}
            self._add(_PendingNode(address, DATA, decl.kind, decl.name, path, filters, decl.depends_on,
                                   most_recent=decl.most_recent, sort_key=decl.sort_key), prefix)

        for decl in config.resources:
            address = resource_address(path, decl.kind, decl.name)
            self.kinds.get(decl.kind).validate(address, decl.attributes)
            attributes = {key: parse_value(value, f"{address}.{key}") for key, value in decl.attributes.items()}
            self._add(_PendingNode(address, MANAGED, decl.kind, decl.name, path, attributes, decl.depends_on,
                                   create_before_destroy=decl.lifecycle.create_before_destroy), prefix)

        seen_modules: Set[str] = set()
        for module in config.modules:
            if module.name in seen_modules:
                raise DuplicateResourceError(f"{prefix}module.{module.name}", prefix.rstrip("."))
            seen_modules.add(module.name)
            self._collect(module.configuration, path + (module.name,), inputs=module.inputs)

    def _register_kinds(self, config: Configuration) -> None:
        """Kinds are global: register every module's declarations before validating resources."""
        for name, decl in config.kinds.items():
            self.kinds.register(ResourceKind.from_declaration(name, decl))
        for module in config.modules:
            self._register_kinds(module.configuration)

    def _add(self, pending: _PendingNode, prefix: str) -> None:
        if pending.address in self._addresses:
            raise DuplicateResourceError(pending.address, prefix.rstrip("."))
        self._addresses[pending.address] = pending
        self._pending.append(pending)

    def _root_variable_values(self, config: Configuration) -> Dict[str, Any]:
        unknown = set(self.variables) - set(config.variables)
        if unknown:
            raise ParseError(f"Values given for undeclared variables: {', '.join(sorted(unknown))}")
        values = {}
        for name, decl in config.variables.items():
            if name in self.variables:
                values[name] = self.variables[name]
            elif decl.required:
                raise ParseError(f"Variable '{name}' is required but no value was given")
            else:
                values[name] = decl.default
        return values

    def _module_inputs(self, config: Configuration, inputs: Dict[str, Any], where: str) -> Dict[str, Expression]:
        unknown = set(inputs) - set(config.variables)
        if unknown:
            raise ParseError(f"Inputs passed to {where} that it does not declare: {', '.join(sorted(unknown))}")
        result: Dict[str, Expression] = {}
        for name, decl in config.variables.items():
            if name in inputs:
                result[name] = parse_value(inputs[name], f"{where} input '{name}'")
            elif decl.required:
                raise ParseError(f"{where} requires input '{name}'")
            else:
                result[name] = Literal(decl.default)
        return result

    def _node_dependencies(self, pending: _PendingNode) -> Set[str]:
        deps: Set[str] = set()
        for expr in pending.attributes.values():
            for ref in iter_references(expr):
                deps |= self._resolve(ref.parts, pending.module, pending.address)
        for raw in pending.depends_on:
            ref = parse_expression(raw, f"{pending.address}.depends_on")
            if not isinstance(ref, Reference):
                raise ParseError(f"depends_on entries of '{pending.address}' must be addresses, got '{raw}'")
            deps |= self._resolve(ref.parts, pending.module, pending.address)
        return deps

    def _resolve(self, parts: Tuple[str, ...], path: Tuple[str, ...], source: str) -> Set[str]:
        """Map a reference seen in scope ``path`` to the node addresses it depends on."""
        prefix = module_prefix(path)
        text = prefix + ".".join(parts)
        head = parts[0]

        if head == "var":
            if len(parts) < 2:
                raise UnresolvedReferenceError(source, text)
            scope = self.scopes[path]
            if not path:
                if parts[1] not in scope.variable_values:
                    raise UnresolvedReferenceError(source, text)
                return set()
            if parts[1] not in scope.variables:
                raise UnresolvedReferenceError(source, text)
            return self._resolve_expression(f"{prefix}var.{parts[1]}", scope.variables[parts[1]], scope.parent, source)

        if head == "module":
            if len(parts) < 2:
                raise UnresolvedReferenceError(source, text)
            child = path + (parts[1],)
            if child not in self.scopes:
                raise UnresolvedReferenceError(source, text)
            rest = parts[2:]
            if not rest:
                child_prefix = module_prefix(child)
                return {a for a in self._addresses if a.startswith(child_prefix)}
            outputs = self.scopes[child].outputs
            if rest[0] in outputs:
                return self._resolve_expression(f"{module_prefix(child)}output.{rest[0]}", outputs[rest[0]], child, source)
            return self._resolve(rest, child, source)

        if head == "data":
            if len(parts) < 3:
                raise UnresolvedReferenceError(source, text)
            address = resource_address(path, parts[1], parts[2], DATA)
        else:
            if len(parts) < 2:
                raise UnresolvedReferenceError(source, text)
            address = resource_address(path, parts[0], parts[1])

        if address not in self._addresses:
            raise UnresolvedReferenceError(source, address)
        return {address}

    def _resolve_expression(self, label: str, expr: Expression, path: Tuple[str, ...], source: str) -> Set[str]:
        """Dependencies of a module input or output, memoized, with cycle detection."""
        if label in self._memo:
            return self._memo[label]
        if label in self._resolving:
            raise CyclicDependencyError([self._resolving[self._resolving.index(label):]])
        self._resolving.append(label)
        try:
            deps: Set[str] = set()
            for ref in iter_references(expr):
                deps |= self._resolve(ref.parts, path, source)
        finally:
            self._resolving.pop()
        self._memo[label] = deps
        return deps
