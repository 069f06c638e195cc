"""Topological sorting.

This module sorts the nodes of a graph such that every node appears
after all its parents. We use Kahn's algorithm: we seed the frontier
with the leaves, repeatedly pop a node from the frontier, and, for each
edge leaving it, decrement the remaining in-degree of the destination,
pushing the destination to the frontier once all its parents have
been emitted.

The frontier is a FIFO queue seeded with the leaves sorted by index, so
the resulting order only depends on the graph structure and on the order
in which nodes were created.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping, Sequence

from .node import Node


def nodes(leaves: Iterable[Node], parents: Mapping[Node, Sequence[Node]]) -> list[Node]:
    """Return the topologically sorted list of nodes.

    Args:
        leaves: nodes without parents from which the sweep starts.
        parents: maps each node to the ordered list of its parents;
            leaves map to an empty sequence.

    Raises
    ------
        ValueError: if the graph contains a cycle, in which case some
            edges are never consumed by the sweep.
    """
    # 1. count the in-degree of each node and index the outgoing edges
    indegree: dict[Node, int] = {}
    children: dict[Node, list[Node]] = {}
    for node, node_parents in parents.items():
        indegree[node] = len(node_parents)
        for parent in node_parents:
            children.setdefault(parent, []).append(node)

    # 2. seed the frontier with the leaves in creation order
    frontier = deque(sorted(set(leaves)))
    for leaf in frontier:
        if indegree.get(leaf, 0) != 0:
            raise ValueError(f"linearize: leaf {leaf!r} has parents")

    # 3. sweep the graph consuming the edges
    remaining = sum(indegree.values())
    sorted_nodes: list[Node] = []
    while frontier:
        node = frontier.popleft()
        sorted_nodes.append(node)
        for child in children.get(node, ()):
            remaining -= 1
            indegree[child] -= 1
            if indegree[child] == 0:
                frontier.append(child)

    # 4. edges that were not consumed belong to a cycle
    if remaining != 0:
        raise ValueError("linearize: cycle detected")

    return sorted_nodes
