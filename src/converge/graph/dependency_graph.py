"""Build directed dependency graph from resource nodes and their references."""

import networkx as nx
from typing import Hashable, List, Dict, Set, Optional
from ..ingest.models import ResourceNode
from ..utils.errors import CycleError, GraphConstructionError
from ..utils.logging import get_logger
from .reference_resolver import Reference

logger = get_logger("graph.dependency_graph")

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


def find_cycle(graph: nx.DiGraph) -> Optional[List[Hashable]]:
    """
    Depth-first search with three-color marking; returns the first cycle found.

    The traversal keeps its own stack so graph depth is not bounded by the
    interpreter's recursion limit. A cycle is returned as a closed path
    (first node repeated at the end) following edge direction.
    """
    color: Dict[Hashable, int] = {node: _UNVISITED for node in graph.nodes}

    for start in sorted(graph.nodes, key=str):
        if color[start] != _UNVISITED:
            continue

        color[start] = _IN_PROGRESS
        path = [start]
        stack = [iter(sorted(graph.successors(start), key=str))]

        while stack:
            descended = False
            for child in stack[-1]:
                if color[child] == _IN_PROGRESS:
                    return path[path.index(child):] + [child]
                if color[child] == _UNVISITED:
                    color[child] = _IN_PROGRESS
                    path.append(child)
                    stack.append(iter(sorted(graph.successors(child), key=str)))
                    descended = True
                    break
            if not descended:
                color[path.pop()] = _DONE
                stack.pop()

    return None


class DependencyGraph:
    """Directed dependency graph: nodes=resources, forward edges run dependency -> dependent."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._node_map: Dict[str, ResourceNode] = {}
        self._references: List[Reference] = []

    def add_node(self, node: ResourceNode) -> None:
        """Add a resource node to the graph."""
        if node.address in self._node_map:
            raise GraphConstructionError(f"Node already present in graph: {node.address}")
        self.graph.add_node(node.address, resource=node)
        self._node_map[node.address] = node

    def add_reference(self, reference: Reference) -> None:
        """Add a dependency edge: reference.target is applied before reference.source."""
        if reference.source not in self._node_map or reference.target not in self._node_map:
            raise GraphConstructionError(
                f"Reference between unknown nodes: {reference.source} -> {reference.target}"
            )
        self._references.append(reference)
        if self.graph.has_edge(reference.target, reference.source):
            self.graph[reference.target][reference.source]["references"].append(reference)
            return
        self.graph.add_edge(reference.target, reference.source, references=[reference])
        logger.debug(f"Added dependency edge: {reference.target} -> {reference.source}")

    def build(self, nodes: List[ResourceNode], references: List[Reference]) -> None:
        """
        Build the complete graph and verify it is acyclic.

        Raises:
            CycleError: If the references form a cycle; the graph is left empty
        """
        for node in nodes:
            self.add_node(node)
        for reference in references:
            self.add_reference(reference)

        cycle = find_cycle(self.reverse)
        if cycle:
            self.graph.clear()
            self._node_map.clear()
            self._references.clear()
            raise CycleError([str(address) for address in cycle])

        logger.info(f"Built dependency graph with {self.graph.number_of_nodes()} nodes and {self.graph.number_of_edges()} edges")

    @property
    def reverse(self) -> nx.DiGraph:
        """Deletion-order graph: edges point from a dependent to its dependencies."""
        return self.graph.reverse(copy=False)

    def dependencies(self, address: str) -> Set[str]:
        """Direct dependencies of a node (must be applied first)."""
        if address not in self.graph:
            return set()
        return set(self.graph.predecessors(address))

    def dependents(self, address: str) -> Set[str]:
        """Direct dependents of a node (reference it)."""
        if address not in self.graph:
            return set()
        return set(self.graph.successors(address))

    def get_downstream_resources(self, address: str) -> Set[str]:
        """Get every node reachable from the given node (transitive dependents)."""
        if address not in self.graph:
            return set()
        return nx.descendants(self.graph, address)

    def get_upstream_resources(self, address: str) -> Set[str]:
        """Get every node the given node transitively depends on."""
        if address not in self.graph:
            return set()
        return nx.ancestors(self.graph, address)

    def apply_order(self) -> List[str]:
        """Deterministic topological order for creates and updates."""
        return list(nx.lexicographical_topological_sort(self.graph))

    def delete_order(self) -> List[str]:
        """Deterministic topological order for deletions (dependents first)."""
        return list(nx.lexicographical_topological_sort(self.reverse))

    def references_between(self, target: str, source: str) -> List[Reference]:
        """References from ``source`` to ``target``."""
        if not self.graph.has_edge(target, source):
            return []
        return list(self.graph[target][source]["references"])

    def get_node(self, address: str) -> Optional[ResourceNode]:
        """Get resource node by address."""
        return self._node_map.get(address)

    def get_all_nodes(self) -> List[ResourceNode]:
        """Get all resource nodes in the graph."""
        return list(self._node_map.values())

    def __contains__(self, address: str) -> bool:
        return address in self._node_map

    def __len__(self) -> int:
        return len(self._node_map)


def build_dependency_graph(nodes: List[ResourceNode], references: List[Reference]) -> DependencyGraph:
    """Convenience wrapper: build and validate a DependencyGraph."""
    graph = DependencyGraph()
    graph.build(nodes, references)
    return graph
