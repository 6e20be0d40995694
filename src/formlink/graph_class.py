"""Field dependency graph.

An edge ``dependency -> dependent`` means the dependent field's derived state
is computed from the dependency's value. Node insertion order is kept as the
declaration order and breaks every ordering tie.
"""
from __future__ import annotations

import heapq
import logging
from typing import Callable, Iterable, Mapping, NamedTuple

import networkx as nx

from .errors import CircularDependencyError
from .linkage_class import LinkageConfig
from .path_util import SEPARATOR, resolve_dependency_path

logger = logging.getLogger(__name__)

CycleCallback = Callable[[list[str]], None]


class GraphValidation(NamedTuple):
    is_valid: bool
    cycle: list[str] | None = None
    error: str | None = None


def _paths_related(a: str, b: str) -> bool:
    """True when one path equals or contains the other."""
    return a == b or a.startswith(b + SEPARATOR) or b.startswith(a + SEPARATOR)


class DependencyGraph:
    """Directed dependency graph over field paths, backed by networkx."""

    def __init__(self) -> None:
        self._graph = nx.DiGraph()
        self._order: dict[str, int] = {}

    def __contains__(self, field_path: str) -> bool:
        return field_path in self._order

    def __len__(self) -> int:
        return len(self._order)

    @classmethod
    def from_linkages(cls, linkages: Mapping[str, LinkageConfig]) -> "DependencyGraph":
        """Build a graph with one node per config key and one edge per dependency."""
        graph = cls()
        for field_path, config in linkages.items():
            graph.add_field(field_path)
            for dep in config.dependencies:
                graph.add_dependency(field_path, resolve_dependency_path(dep, field_path))
        logger.debug("Built dependency graph: %s fields, %s edges", len(graph), graph.edge_count)
        return graph

    @property
    def fields(self) -> list[str]:
        """All nodes in declaration order."""
        return list(self._order)

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def add_field(self, field_path: str) -> None:
        if field_path not in self._order:
            self._order[field_path] = len(self._order)
            self._graph.add_node(field_path)

    def add_dependency(self, field_path: str, depends_on: str) -> None:
        """Record that ``field_path`` is computed from ``depends_on``."""
        self.add_field(field_path)
        self.add_field(depends_on)
        self._graph.add_edge(depends_on, field_path)

    def get_dependencies(self, field_path: str) -> list[str]:
        if field_path not in self._order:
            return []
        return self._sorted(self._graph.predecessors(field_path))

    def get_direct_dependents(self, field_path: str) -> list[str]:
        if field_path not in self._order:
            return []
        return self._sorted(self._graph.successors(field_path))

    def clear(self) -> None:
        self._graph.clear()
        self._order.clear()

    def _sorted(self, nodes: Iterable[str]) -> list[str]:
        return sorted(nodes, key=self._key)

    def _key(self, node: str) -> int:
        return self._order.get(node, len(self._order))

    def _find_cycle(self, nodes: Iterable[str] | None = None) -> list[str] | None:
        """DFS with a visiting marker; unwind the stack to the cycle on a back edge."""
        allowed = set(self._order) if nodes is None else set(nodes)
        visited: set[str] = set()
        on_stack: set[str] = set()
        stack: list[str] = []

        def visit(node: str) -> list[str] | None:
            visited.add(node)
            on_stack.add(node)
            stack.append(node)
            for succ in self._sorted(self._graph.successors(node)):
                if succ not in allowed:
                    continue
                if succ in on_stack:
                    return stack[stack.index(succ):]
                if succ not in visited:
                    found = visit(succ)
                    if found:
                        return found
            on_stack.discard(node)
            stack.pop()
            return None

        for node in self._sorted(allowed):
            if node not in visited:
                found = visit(node)
                if found:
                    return list(found)
        return None

    def detect_cycle(self, throw_on_cycle: bool = False) -> list[str] | None:
        """Return one cycle as an ordered node list (start node not repeated), or None.

        Raises:
            CircularDependencyError: When a cycle exists and ``throw_on_cycle`` is set.
        """
        cycle = self._find_cycle()
        if cycle and throw_on_cycle:
            raise CircularDependencyError(cycle)
        return cycle

    def validate(self) -> GraphValidation:
        cycle = self.detect_cycle()
        if cycle:
            return GraphValidation(False, cycle, str(CircularDependencyError(cycle)))
        return GraphValidation(True)

    def _order_subset(self, subset: Iterable[str]) -> tuple[list[str], list[str]]:
        """Kahn's algorithm over ``subset``; returns (ordered, cyclic remainder)."""
        nodes = list(dict.fromkeys(subset))
        members = set(nodes)
        sub = self._graph.subgraph(members)
        extra = [node for node in nodes if node not in sub]
        if nx.is_directed_acyclic_graph(sub):
            ordered = list(nx.lexicographical_topological_sort(sub, key=self._key))
            return ordered + extra, []
        in_degree = {node: deg for node, deg in sub.in_degree()}
        ready = [(self._key(node), node) for node, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            ordered.append(node)
            for succ in sub.successors(node):
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(ready, (self._key(succ), succ))
        done = set(ordered)
        remainder = self._sorted(node for node in sub if node not in done)
        return ordered + extra, remainder

    def topological_sort(
        self,
        subset: Iterable[str] | None = None,
        *,
        on_cycle: CycleCallback | None = None,
        throw_on_cycle: bool = False,
    ) -> list[str]:
        """Order ``subset`` (default: every field) so dependencies come first.

        Dependencies outside the subset count as already resolved. A cycle in
        the subset is reported through ``on_cycle`` (or logged when no callback
        is given); its nodes are appended after the acyclic part in declaration
        order.

        Example:
            >>> g = DependencyGraph()
            >>> g.add_dependency("total", "price")
            >>> g.add_dependency("discount", "total")
            >>> g.topological_sort(["discount", "total", "price"])
            ['price', 'total', 'discount']
        """
        nodes = self.fields if subset is None else subset
        ordered, remainder = self._order_subset(nodes)
        if not remainder:
            return ordered
        cycle = self._find_cycle(remainder) or remainder
        if on_cycle is not None:
            on_cycle(cycle)
        else:
            logger.error("Circular dependency detected: %s", " -> ".join(cycle))
        if throw_on_cycle:
            raise CircularDependencyError(cycle)
        return ordered + remainder

    def get_affected_fields(self, changed: str) -> list[str]:
        """All transitive dependents of ``changed``, in evaluation order.

        Nodes that equal, contain or are contained in ``changed`` seed the
        search, so replacing a whole array reaches dependents of its elements.
        A seed is only included when a cycle leads back to it.
        """
        seeds = [node for node in self._order if _paths_related(node, changed)]
        affected: set[str] = set()
        for seed in seeds:
            reached = nx.descendants(self._graph, seed)
            affected.update(reached)
            if self._graph.has_edge(seed, seed) or any(
                pred in reached for pred in self._graph.predecessors(seed)
            ):
                affected.add(seed)
        if not affected:
            return []
        ordered, remainder = self._order_subset(self._sorted(affected))
        return ordered + remainder

    def topological_layers(self, subset: Iterable[str] | None = None) -> list[list[str]]:
        """Group ``subset`` into layers with no dependencies inside a layer.

        A cyclic remainder forms the final layer.
        """
        nodes = list(dict.fromkeys(self.fields if subset is None else subset))
        sub = self._graph.subgraph(nodes)
        extra = [node for node in nodes if node not in sub]
        if nx.is_directed_acyclic_graph(sub):
            layers = [self._sorted(gen) for gen in nx.topological_generations(sub)]
            if extra:
                if layers:
                    layers[0].extend(extra)
                else:
                    layers.append(extra)
            return layers
        remaining = set(sub)
        in_degree = {node: deg for node, deg in sub.in_degree()}
        layers: list[list[str]] = []
        while remaining:
            layer = self._sorted(node for node in remaining if in_degree[node] == 0)
            if not layer:
                logger.warning("Cyclic fields left in final layer: %s", ", ".join(self._sorted(remaining)))
                layers.append(self._sorted(remaining))
                break
            layers.append(layer)
            for node in layer:
                remaining.discard(node)
                for succ in sub.successors(node):
                    in_degree[succ] -= 1
        if extra:
            layers[0].extend(extra)
        return layers
