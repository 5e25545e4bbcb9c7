"""
Undirected relation graph built from explicit memory cross-references.

Every id in a memory's ``related_memories`` becomes an edge in both
directions, no matter which side declared it. Distances are hop counts
found by breadth-first search from a seed set; anything farther than the
hop bound is simply absent from the result.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence

from ..models.memory import Memory

Graph = dict[str, set[str]]


def build_graph(memories: Iterable[Memory]) -> Graph:
    """Build a symmetric adjacency map from ``related_memories`` links.

    Ids referenced but not present in ``memories`` still get a node, so
    traversal can pass through them.
    """
    graph: Graph = {}
    for memory in memories:
        graph.setdefault(memory.id, set())
        for related_id in memory.related_memories:
            if related_id == memory.id:
                continue
            graph[memory.id].add(related_id)
            graph.setdefault(related_id, set()).add(memory.id)
    return graph


def traverse_graph(seed_ids: Iterable[str], graph: Graph, max_distance: int = 2) -> dict[str, int]:
    """Shortest hop distance from any seed, for every node within ``max_distance``.

    Seeds are at distance 0. Unknown seeds are still reported at 0.
    A negative bound is treated as 0 (seeds only).
    """
    max_distance = max(0, max_distance)
    distances: dict[str, int] = {}
    queue: deque[str] = deque()

    for seed in seed_ids:
        if seed not in distances:
            distances[seed] = 0
            queue.append(seed)

    while queue:
        node = queue.popleft()
        distance = distances[node]
        if distance >= max_distance:
            continue
        for neighbor in sorted(graph.get(node, ())):
            # BFS: first visit is the shortest path
            if neighbor not in distances:
                distances[neighbor] = distance + 1
                queue.append(neighbor)

    return distances


def neighbors_within(
    seed_ids: Sequence[str],
    memories: Sequence[Memory],
    max_distance: int = 1,
) -> list[tuple[Memory, int]]:
    """Known memories reachable from the seeds (excluding the seeds), closest first."""
    distances = traverse_graph(seed_ids, build_graph(memories), max_distance)
    by_id = {m.id: m for m in memories}
    seeds = set(seed_ids)
    found = [
        (by_id[node_id], distance)
        for node_id, distance in distances.items()
        if node_id not in seeds and node_id in by_id
    ]
    found.sort(key=lambda item: item[1])
    return found
