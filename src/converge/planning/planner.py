"""Diff desired graph against actual state into an ordered plan."""

import networkx as nx
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from .models import Action, AttributeChange, Operation, Plan
from ..evaluation.evaluator import Evaluator, LookupCache
from ..evaluation.values import Resolved, Value, all_known, known_values
from ..graph.dependency_graph import ResourceGraph
from ..graph.models import ResourceNode
from ..state.models import ResourceState, StateDocument, hash_attributes
from ..utils.errors import CyclicDependencyError, GraphConstructionError
from ..utils.logging import get_logger

logger = get_logger("planning.planner")


def create_plan(
    graph: ResourceGraph,
    state: StateDocument,
    lookups: Optional[LookupCache] = None,
    targets: Optional[Iterable[str]] = None,
) -> Plan:
    """
    Compute the actions that converge ``state`` on ``graph``.

    Pure: neither the graph nor the state is modified, so this also serves
    as a side-effect-free preview.

    Args:
        graph: Desired resource graph
        state: Last-known actual state
        lookups: Data lookup cache (provider queries)
        targets: Restrict planning to these addresses and their dependencies

    Returns:
        Plan ordered so every action follows the actions it depends on

    Raises:
        EvaluationError: If an attribute cannot be evaluated at all
        GraphConstructionError: If a target matches nothing
    """
    targets = list(targets or [])
    if targets:
        unknown = [t for t in targets if not graph.matching(t) and not _select(state.resources, [t])]
        if unknown:
            raise GraphConstructionError(f"Target '{unknown[0]}' does not match any resource in configuration or state")
        graph = graph.target([t for t in targets if graph.matching(t)])
    builder = _PlanBuilder(graph, state, lookups, targets)
    plan = builder.build()
    logger.info(f"Planned {len(plan.actions)} actions: {_summary(plan)}")
    return plan


def create_destroy_plan(state: StateDocument, targets: Optional[Iterable[str]] = None) -> Plan:
    """
    Plan deletion of everything in state (or the targets plus everything
    that depends on them), dependents first.
    """
    targets = list(targets or [])
    resources = state.resources
    doomed = _select(resources, targets) if targets else set(resources)
    if targets:
        doomed |= _state_dependents(resources, doomed)

    builder = _PlanBuilder(None, state, None, targets)
    for address in resources:
        if address in doomed:
            builder.add_delete(address, resources[address], reason="destroy")
    builder.add_deposed_deletes(lambda address: address in doomed or builder._orphan_in_scope(address))
    builder.wire_deletes()
    plan = builder.finish(destroy=True)
    logger.info(f"Planned destroy of {len(plan.actions)} resources")
    return plan


class _PlanBuilder:
    """Accumulates actions and their dependencies, then orders them."""

    def __init__(self, graph: Optional[ResourceGraph], state: StateDocument,
                 lookups: Optional[LookupCache], targets: List[str]):
        self.graph = graph
        self.state = state
        self.lookups = lookups
        self.targets = targets
        self.actions: List[Action] = []
        self.sort_keys: List[Tuple[int, int]] = []
        self.deps: Dict[int, Set[int]] = {}
        self.ready: Dict[str, int] = {}
        self.deletes: Dict[str, List[int]] = {}
        self.replace_order: Dict[str, str] = {}
        self.deposed_deletes: Set[int] = set()
        self._state_order = {address: i for i, address in enumerate(state.resources)}

    def build(self) -> Plan:
        evaluator = Evaluator(self.graph, self.lookups)
        for node in self.graph.topological_order():
            if not node.is_data:
                self._plan_node(node, evaluator)

        for address, prior in self.state.resources.items():
            if address in self.graph or not self._orphan_in_scope(address):
                continue
            self.add_delete(address, prior, reason="removed from configuration")
        self.add_deposed_deletes(self._orphan_in_scope)

        self._wire_graph_actions()
        self.wire_deletes()
        return self.finish(destroy=False)

    def _plan_node(self, node: ResourceNode, evaluator: Evaluator) -> None:
        values = evaluator.evaluate_attributes(node)
        prior = self.state.resources.get(node.address)
        kind = self.graph.kinds.get(node.kind)

        if prior is None:
            diff = [_change(name, None, value) for name, value in values.items()]
            self.ready[node.address] = self._add(node.address, node.kind, Operation.CREATE, diff, node.index)
            evaluator.set_object(node.address, known_values(values), complete=False)
            return

        if all_known(values) and hash_attributes(known_values(values)) == prior.input_hash:
            self.ready[node.address] = self._add(node.address, node.kind, Operation.NO_OP, [], node.index,
                                                 prior_id=prior.provider_id)
            evaluator.set_object(node.address, prior.values())
            return

        diff = []
        for name, value in values.items():
            before = prior.attributes.get(name)
            if isinstance(value, Resolved) and name in prior.attributes and value.value == before:
                continue
            diff.append(_change(name, before, value, kind.forces_replacement(name)))
        for name in prior.attributes:
            if name not in values:
                diff.append(AttributeChange(name=name, before=prior.attributes[name], after=None,
                                            requires_replacement=kind.forces_replacement(name)))

        if not diff:
            self.ready[node.address] = self._add(node.address, node.kind, Operation.NO_OP, [], node.index,
                                                 prior_id=prior.provider_id)
            evaluator.set_object(node.address, prior.values())
            return

        forcing = [change.name for change in diff if change.requires_replacement]
        if not forcing:
            self.ready[node.address] = self._add(node.address, node.kind, Operation.UPDATE, diff, node.index,
                                                 prior_id=prior.provider_id)
            evaluator.set_object(
                node.address,
                {**prior.outputs, "id": prior.provider_id, **known_values(values)},
                complete=False,
            )
            return

        cbd = node.create_before_destroy
        if cbd is None:
            cbd = kind.create_before_destroy
        reason = f"replace ({', '.join(forcing)} cannot change in place)"
        create_diff = [_change(name, prior.attributes.get(name), value, kind.forces_replacement(name))
                       for name, value in values.items()]
        if cbd:
            create_idx = self._add(node.address, node.kind, Operation.CREATE, create_diff, node.index,
                                   replace=True, reason=f"{reason}, create before destroy")
            self.add_delete(node.address, prior, reason=f"{reason}, create before destroy",
                            anchor=node.index, replace=True)
        else:
            self.add_delete(node.address, prior, reason=f"{reason}, destroy before create",
                            anchor=node.index, replace=True)
            create_idx = self._add(node.address, node.kind, Operation.CREATE, create_diff, node.index,
                                   replace=True, reason=f"{reason}, destroy before create")
        self.replace_order[node.address] = "cbd" if cbd else "dbc"
        self.ready[node.address] = create_idx
        evaluator.set_object(node.address, known_values(values), complete=False)

    def add_deposed_deletes(self, in_scope: Callable[[str], bool]) -> None:
        """Deletes for objects left behind by earlier create-before-destroy replacements."""
        anchor = (len(self.graph) if self.graph else 0) + len(self.state.resources)
        for address, objects in self.state.deposed.items():
            if not in_scope(address):
                continue
            for prior in objects:
                idx = self.add_delete(address, prior, reason=f"deposed object {prior.provider_id} left by a replacement",
                                      anchor=anchor)
                self.deposed_deletes.add(idx)
                anchor += 1

    def add_delete(self, address: str, prior: ResourceState, reason: str,
                   anchor: Optional[int] = None, replace: bool = False) -> int:
        if anchor is None:
            anchor = (len(self.graph) if self.graph else 0) + self._state_order[address]
        diff = [AttributeChange(name=name, before=value, after=None) for name, value in prior.attributes.items()]
        idx = self._add(address, prior.kind, Operation.DELETE, diff, anchor,
                        replace=replace, reason=reason, prior_id=prior.provider_id)
        self.deletes.setdefault(address, []).append(idx)
        return idx

    def _add(self, address: str, kind: str, operation: Operation, diff: List[AttributeChange], anchor: int,
             replace: bool = False, reason: Optional[str] = None, prior_id: Optional[str] = None) -> int:
        idx = len(self.actions)
        self.actions.append(Action(
            index=idx, address=address, kind=kind, operation=operation, diff=diff,
            replace=replace, reason=reason, prior_id=prior_id,
        ))
        self.sort_keys.append((anchor, idx))
        self.deps[idx] = set()
        return idx

    def _wire_graph_actions(self) -> None:
        """Dependencies of create/update/no-op actions and replacement halves."""
        dependents: Dict[str, Set[str]] = {}
        for node in self.graph.nodes:
            if node.is_data:
                continue
            for dep in self.graph.managed_dependencies(node.address):
                dependents.setdefault(dep, set()).add(node.address)

        for node in self.graph.nodes:
            if node.is_data:
                continue
            ready = self.ready[node.address]
            upstream = {self.ready[dep] for dep in self.graph.managed_dependencies(node.address)}
            self.deps[ready] |= upstream

            order = self.replace_order.get(node.address)
            if order is None:
                continue
            delete_idx = self.deletes[node.address][0]
            if order == "dbc":
                self.deps[ready].add(delete_idx)
            else:
                self.deps[delete_idx].add(ready)
                self.deps[delete_idx] |= {self.ready[d] for d in dependents.get(node.address, ())}

    def wire_deletes(self) -> None:
        """
        Deletions wait for deletions of whatever depended on the object, and
        orphans also wait for surviving dependents to stop using them.
        """
        resources = self.state.resources
        state_dependents: Dict[str, Set[str]] = {}
        for address, entry in resources.items():
            for dep in entry.dependencies:
                state_dependents.setdefault(dep, set()).add(address)

        for address, indices in self.deletes.items():
            for idx in indices:
                for dependent in state_dependents.get(address, ()):
                    if self.replace_order.get(address) == "dbc" and self.replace_order.get(dependent) == "cbd":
                        # the old dependent is only removed after the new object exists
                        continue
                    self.deps[idx] |= set(self.deletes.get(dependent, []))
                    orphan = self.replace_order.get(address) is None or idx in self.deposed_deletes
                    if orphan and dependent in self.ready:
                        self.deps[idx].add(self.ready[dependent])
                self.deps[idx].discard(idx)

    def finish(self, destroy: bool) -> Plan:
        order_graph = nx.DiGraph()
        order_graph.add_nodes_from(range(len(self.actions)))
        for idx, deps in self.deps.items():
            order_graph.add_edges_from((dep, idx) for dep in deps)

        try:
            order = list(nx.lexicographical_topological_sort(order_graph, key=lambda i: self.sort_keys[i]))
        except nx.NetworkXUnfeasible:
            cycles = [
                sorted({self.actions[i].address for i in component})
                for component in nx.strongly_connected_components(order_graph)
                if len(component) > 1
            ]
            raise CyclicDependencyError(cycles)

        position = {old: new for new, old in enumerate(order)}
        actions = []
        for old in order:
            action = self.actions[old]
            actions.append(action.model_copy(update={
                "index": position[old],
                "depends_on": sorted(position[d] for d in self.deps[old]),
            }))
        return Plan(actions=actions, destroy=destroy, targets=self.targets, state_serial=self.state.serial)

    def _orphan_in_scope(self, address: str) -> bool:
        if not self.targets:
            return True
        return bool(_select({address: None}, self.targets))


def _change(name: str, before: Any, value: Value, requires_replacement: bool = False) -> AttributeChange:
    if isinstance(value, Resolved):
        return AttributeChange(name=name, before=before, after=value.value,
                               requires_replacement=requires_replacement)
    return AttributeChange(name=name, before=before, after=None, known=False,
                           requires_replacement=requires_replacement)


def _select(resources: Dict[str, Any], targets: List[str]) -> Set[str]:
    """State addresses equal to a target or inside a targeted module."""
    selected = set()
    for address in resources:
        for target in targets:
            if address == target or address.startswith(target.rstrip(".") + "."):
                selected.add(address)
    return selected


def _state_dependents(resources: Dict[str, ResourceState], addresses: Set[str]) -> Set[str]:
    """Everything in state that transitively depended on ``addresses``."""
    found: Set[str] = set()
    pending = list(addresses)
    while pending:
        current = pending.pop()
        for address, entry in resources.items():
            if current in entry.dependencies and address not in found and address not in addresses:
                found.add(address)
                pending.append(address)
    return found


def _summary(plan: Plan) -> str:
    counts = plan.counts()
    return ", ".join(f"{count} {op}" for op, count in counts.items() if count)
