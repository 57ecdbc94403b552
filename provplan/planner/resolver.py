"""
Dependency resolver: turns a declaration set into a creation order.

Ordering is Kahn's algorithm with a min-heap on declaration position, so
among resources whose dependencies are all satisfied the one declared first
is emitted first. The result depends only on the input sequence, which keeps
successive plans diff-stable.
"""
import heapq
from typing import Dict, Iterator, List, Sequence

from provplan.models.errors import CycleDetected, DanglingReference, DuplicateResource
from provplan.models.resource import Resource, ResourceKey


class Plan:
    """An ordered, validated declaration set."""

    def __init__(self, steps: List[Resource], edges: Dict[ResourceKey, List[ResourceKey]]):
        self.steps = steps
        self.edges = edges
        self._positions = {r.key: i for i, r in enumerate(steps)}

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.steps)

    def keys(self) -> List[ResourceKey]:
        return [r.key for r in self.steps]

    def position(self, key: ResourceKey) -> int:
        return self._positions[key]

    def dependencies(self, key: ResourceKey) -> List[ResourceKey]:
        return list(self.edges.get(key, []))

    def dependents(self, key: ResourceKey) -> List[ResourceKey]:
        return [k for k in self.keys() if key in self.edges.get(k, [])]


def _check_identities(resources: Sequence[Resource]) -> Dict[ResourceKey, int]:
    positions: Dict[ResourceKey, int] = {}
    for i, r in enumerate(resources):
        if r.key in positions:
            first = resources[positions[r.key]]
            raise DuplicateResource(r.key, first.source_file, r.source_file)
        positions[r.key] = i
    return positions


def _find_cycle(
    start: ResourceKey,
    edges: Dict[ResourceKey, List[ResourceKey]],
    remaining: Dict[ResourceKey, int],
) -> List[ResourceKey]:
    """
    Walk unsatisfied dependencies from start until a node repeats.

    Every node left over by Kahn's algorithm has at least one dependency that
    is also left over, so the walk cannot dead-end.
    """
    path: List[ResourceKey] = []
    seen: Dict[ResourceKey, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(dep for dep in edges[node] if dep in remaining)
    cycle = path[seen[node]:]

    # Rotate so the earliest-declared member leads
    first = min(range(len(cycle)), key=lambda i: remaining[cycle[i]])
    return cycle[first:] + cycle[:first]


def resolve(resources: Sequence[Resource]) -> Plan:
    """
    Order resources so each one comes after everything it references.

    Raises DuplicateResource, DanglingReference or CycleDetected; has no
    side effects.
    """
    positions = _check_identities(resources)

    edges: Dict[ResourceKey, List[ResourceKey]] = {}
    for r in resources:
        deps = r.dependencies()
        for dep in deps:
            if dep not in positions:
                raise DanglingReference(r.key, dep)
        edges[r.key] = deps

    pending = {key: len(deps) for key, deps in edges.items()}
    dependents: Dict[ResourceKey, List[ResourceKey]] = {key: [] for key in edges}
    for key, deps in edges.items():
        for dep in deps:
            dependents[dep].append(key)

    ready = [positions[key] for key, count in pending.items() if count == 0]
    heapq.heapify(ready)

    steps: List[Resource] = []
    while ready:
        r = resources[heapq.heappop(ready)]
        steps.append(r)
        for dependent in dependents[r.key]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, positions[dependent])

    if len(steps) < len(resources):
        remaining = {key: positions[key] for key, count in pending.items() if count > 0}
        start = min(remaining, key=remaining.get)
        raise CycleDetected(_find_cycle(start, edges, remaining))

    return Plan(steps, edges)
