import heapq
from typing import Dict, Iterable, List, Literal, Sequence, Set

import numpy as onp
import scipy.sparse
import scipy.sparse.csgraph

from ..core import FactorBase, NodeBase

OrderingMethod = Literal["minimum_degree", "rcm", "natural"]


def _adjacency(
    nodes: Sequence[NodeBase], factors: Iterable[FactorBase]
) -> List[Set[int]]:
    """Node adjacency graph: two nodes are neighbors if a factor connects them."""
    index_from_node: Dict[NodeBase, int] = {node: i for i, node in enumerate(nodes)}
    adjacency: List[Set[int]] = [set() for _ in nodes]
    for factor in factors:
        indices = [index_from_node[node] for node in factor.nodes]
        for i in indices:
            adjacency[i].update(j for j in indices if j != i)
    return adjacency


def _minimum_degree(adjacency: List[Set[int]], constrained: Set[int]) -> List[int]:
    """Greedy exact minimum degree elimination. Ties are broken by position."""
    heap = [
        (len(neighbors), i)
        for i, neighbors in enumerate(adjacency)
        if i not in constrained
    ]
    heapq.heapify(heap)

    eliminated = [False] * len(adjacency)
    order: List[int] = []
    while len(heap) > 0:
        degree, i = heapq.heappop(heap)
        if eliminated[i] or degree != len(adjacency[i]):
            # Stale entry; a fresh one was pushed when the degree changed.
            continue
        eliminated[i] = True
        order.append(i)

        # Eliminating a node connects all of its neighbors.
        neighbors = adjacency[i]
        for j in neighbors:
            adjacency[j].discard(i)
            adjacency[j].update(k for k in neighbors if k != j)
            if j not in constrained:
                heapq.heappush(heap, (len(adjacency[j]), j))

    order.extend(sorted(constrained))
    return order


def _reverse_cuthill_mckee(adjacency: List[Set[int]]) -> List[int]:
    rows = [i for i, neighbors in enumerate(adjacency) for _ in neighbors]
    cols = [j for neighbors in adjacency for j in neighbors]
    graph = scipy.sparse.csr_matrix(
        (onp.ones(len(rows)), (rows, cols)), shape=(len(adjacency),) * 2
    )
    permutation = scipy.sparse.csgraph.reverse_cuthill_mckee(
        graph, symmetric_mode=True
    )
    return [int(i) for i in permutation]


def compute_ordering(
    nodes: Sequence[NodeBase],
    factors: Iterable[FactorBase],
    method: OrderingMethod = "minimum_degree",
    constrained_last: Iterable[NodeBase] = (),
) -> List[NodeBase]:
    """Compute a fill-reducing elimination order for a set of nodes.

    Args:
        nodes: Nodes to order. Every node connected to `factors` must be included.
        factors: Factors defining the adjacency structure.
        method: One of `"minimum_degree"`, `"rcm"`, or `"natural"`.
        constrained_last: Nodes to place at the end of the ordering, in the given
            order.

    Returns:
        Nodes, in elimination order.
    """
    nodes = list(nodes)
    last = list(constrained_last)
    last_ids = {id(node) for node in last}
    constrained = {i for i, node in enumerate(nodes) if id(node) in last_ids}
    assert len(constrained) == len(last), "Constrained nodes must be in `nodes`"

    if method == "natural":
        order = [i for i in range(len(nodes)) if i not in constrained]
    elif method == "minimum_degree":
        order = _minimum_degree(_adjacency(nodes, factors), constrained)[
            : len(nodes) - len(constrained)
        ]
    elif method == "rcm":
        order = [
            i
            for i in _reverse_cuthill_mckee(_adjacency(nodes, factors))
            if i not in constrained
        ]
    else:
        raise ValueError(f"Unknown ordering method: {method}")

    return [nodes[i] for i in order] + last
