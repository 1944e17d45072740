"""Dependency graph over resource ids."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from graphform.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Dependencies on ids outside ``nodes`` are ignored.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            self._deps[node] = {d for d in dependencies.get(node, ()) if d in self._nodes}

    @property
    def nodes(self) -> set[str]:
        return set(self._nodes)

    def dependencies(self, node: str) -> set[str]:
        return set(self._deps.get(node, ()))

    def dependents(self) -> dict[str, set[str]]:
        """Invert the graph: node -> ids that depend on it."""
        inverted: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                inverted[dep].add(node)
        return inverted

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree = {n: len(deps) for n, deps in self._deps.items()}
        dependents = self.dependents()

        ready: list[tuple[int, str]] = [
            (self._priorities.get(n, 0), n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._priorities.get(child, 0), child))

        if len(order) != len(self._nodes):
            remaining = sorted(self._nodes - set(order))
            raise DependencyCycleError(remaining)

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order
