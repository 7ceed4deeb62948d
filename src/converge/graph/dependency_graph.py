"""Directed acyclic resource graph with arena-style storage."""

import networkx as nx
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Tuple
from .models import ModuleScope, ResourceNode
from ..resources.registry import KindRegistry
from ..utils.errors import CyclicDependencyError, GraphConstructionError
from ..utils.logging import get_logger

logger = get_logger("graph.dependency_graph")


class ResourceGraph:
    """
    Nodes live in an indexed list (declaration order); edges are
    ``(dependency, dependent)`` index pairs, so they point in apply order.
    A networkx DiGraph over the indices backs ordering and reachability.
    """

    def __init__(
        self,
        nodes: List[ResourceNode],
        edges: Iterable[Tuple[int, int]],
        scopes: Dict[Tuple[str, ...], ModuleScope],
        kinds: Optional[KindRegistry] = None,
    ):
        self.nodes = nodes
        self.edges = sorted(set(edges))
        self.scopes = scopes
        self.kinds = kinds or KindRegistry()
        self._index: Dict[str, int] = {node.address: node.index for node in nodes}
        self.graph = nx.DiGraph()
        self.graph.add_nodes_from(node.index for node in nodes)
        self.graph.add_edges_from(self.edges)

    def __contains__(self, address: str) -> bool:
        return address in self._index

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, address: str) -> Optional[ResourceNode]:
        idx = self._index.get(address)
        return self.nodes[idx] if idx is not None else None

    def node(self, address: str) -> ResourceNode:
        node = self.get(address)
        if node is None:
            raise KeyError(address)
        return node

    def addresses(self) -> List[str]:
        return [node.address for node in self.nodes]

    def check_acyclic(self) -> None:
        """
        Raise CyclicDependencyError naming every node that sits on a cycle.

        Cycles are found as strongly connected components, so members of
        overlapping cycles are reported together.
        """
        cycles = []
        for component in nx.strongly_connected_components(self.graph):
            if len(component) > 1 or any(self.graph.has_edge(i, i) for i in component):
                cycles.append([self.nodes[i].address for i in sorted(component)])
        if cycles:
            cycles.sort(key=lambda members: self._index[members[0]])
            raise CyclicDependencyError(cycles)

    def topological_order(self) -> List[ResourceNode]:
        """Dependencies first; unrelated nodes keep declaration order."""
        try:
            order = nx.lexicographical_topological_sort(self.graph, key=lambda i: i)
            return [self.nodes[i] for i in order]
        except nx.NetworkXUnfeasible:
            self.check_acyclic()
            raise

    def dependencies(self, address: str) -> List[ResourceNode]:
        """Direct dependencies of a node."""
        idx = self._index[address]
        return [self.nodes[i] for i in sorted(self.graph.predecessors(idx))]

    def dependents(self, address: str) -> List[ResourceNode]:
        """Direct dependents of a node."""
        idx = self._index[address]
        return [self.nodes[i] for i in sorted(self.graph.successors(idx))]

    def get_upstream_resources(self, address: str) -> Set[str]:
        """All nodes the given node depends on, transitively."""
        if address not in self._index:
            return set()
        return {self.nodes[i].address for i in nx.ancestors(self.graph, self._index[address])}

    def get_downstream_resources(self, address: str) -> Set[str]:
        """All nodes that depend on the given node, transitively."""
        if address not in self._index:
            return set()
        return {self.nodes[i].address for i in nx.descendants(self.graph, self._index[address])}

    def managed_dependencies(self, address: str) -> Set[str]:
        """
        Managed resources a node waits on, looking through data lookups.

        Data lookups produce no actions, so a dependency on one becomes a
        dependency on whatever the lookup itself depends on.
        """
        result: Set[str] = set()
        pending = [n for n in self.dependencies(address)]
        seen: Set[str] = set()
        while pending:
            dep = pending.pop()
            if dep.address in seen:
                continue
            seen.add(dep.address)
            if dep.is_data:
                pending.extend(self.dependencies(dep.address))
            else:
                result.add(dep.address)
        return result

    def matching(self, target: str) -> List[str]:
        """Addresses equal to ``target`` or inside the module it names."""
        if target in self._index:
            return [target]
        prefix = target.rstrip(".") + "."
        return [node.address for node in self.nodes if node.address.startswith(prefix)]

    def target(self, targets: Iterable[str]) -> "ResourceGraph":
        """
        Restrict the graph to the targeted nodes and their dependencies.

        Raises:
            GraphConstructionError: If a target matches nothing
        """
        keep: Set[str] = set()
        for target in targets:
            matched = self.matching(target)
            if not matched:
                raise GraphConstructionError(f"Target '{target}' does not match any declared resource")
            for address in matched:
                keep.add(address)
                keep.update(self.get_upstream_resources(address))
        return self.subgraph(keep)

    def subgraph(self, addresses: Iterable[str]) -> "ResourceGraph":
        """New graph over a subset of nodes, re-indexed in declaration order."""
        wanted = set(addresses)
        kept = [node for node in self.nodes if node.address in wanted]
        remap = {node.index: new_idx for new_idx, node in enumerate(kept)}
        nodes = [replace(node, index=remap[node.index]) for node in kept]
        edges = [(remap[a], remap[b]) for a, b in self.edges if a in remap and b in remap]
        logger.debug(f"Restricted graph to {len(nodes)} of {len(self.nodes)} nodes")
        return ResourceGraph(nodes, edges, self.scopes, self.kinds)
