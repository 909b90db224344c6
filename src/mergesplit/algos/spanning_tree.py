from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import splu

from mergesplit.algos.graph_store import GraphStore, bfs_component
from mergesplit.errors import DisconnectedRegionError

# above this many nodes the reduced Laplacian is factored sparsely
DENSE_LOGDET_MAX = 400


@dataclass
class SpanningTree:
    root: int
    nodes: np.ndarray   # (n,) unit ids in the region
    parent: np.ndarray  # (V,) parent unit, -1 for the root and outside the region
    order: np.ndarray   # (n,) nodes in BFS order from the root

    @property
    def n_edges(self) -> int:
        return len(self.nodes) - 1

    def children(self) -> dict[int, list[int]]:
        out: dict[int, list[int]] = {int(u): [] for u in self.nodes}
        for u in self.order[1:]:
            out[int(self.parent[u])].append(int(u))
        return out

    def side(self, v: int) -> np.ndarray:
        """Units in the subtree hanging below v (cutting v's parent edge)."""
        kids = self.children()
        out = [v]
        stack = [v]
        while stack:
            u = stack.pop()
            for w in kids[u]:
                out.append(w)
                stack.append(w)
        return np.array(sorted(out), dtype=np.int64)


def _region_mask(n_units: int, nodes: np.ndarray) -> np.ndarray:
    mask = np.zeros(n_units, dtype=bool)
    mask[nodes] = True
    return mask


def uniform_spanning_tree(
    graph: GraphStore,
    nodes: np.ndarray,
    rng: np.random.Generator,
    root: Optional[int] = None,
) -> SpanningTree:
    """
    Uniform random spanning tree of the subgraph induced by `nodes`
    (Wilson's algorithm: loop-erased random walks into the growing tree).
    """
    nodes = np.asarray(nodes, dtype=np.int64)
    if len(nodes) == 0:
        raise DisconnectedRegionError("cannot build a spanning tree over an empty region")

    V = graph.n_units
    in_region = _region_mask(V, nodes)
    if len(bfs_component(graph.adj, int(nodes[0]), in_region)) != len(nodes):
        raise DisconnectedRegionError(f"region of {len(nodes)} units is not connected")

    sub_adj = {int(u): [v for v in graph.adj[u] if in_region[v]] for u in nodes}

    if root is None:
        root = int(nodes[rng.integers(len(nodes))])
    in_tree = np.zeros(V, dtype=bool)
    in_tree[root] = True
    nxt = np.full(V, -1, dtype=np.int64)

    for start in rng.permutation(nodes):
        u = int(start)
        # random walk until the tree is hit; overwriting nxt erases loops
        while not in_tree[u]:
            nbrs = sub_adj[u]
            nxt[u] = nbrs[rng.integers(len(nbrs))]
            u = int(nxt[u])
        u = int(start)
        while not in_tree[u]:
            in_tree[u] = True
            u = int(nxt[u])

    parent = np.full(V, -1, dtype=np.int64)
    for u in nodes:
        if u != root:
            parent[u] = nxt[u]

    return SpanningTree(root=root, nodes=nodes, parent=parent, order=_bfs_order(root, nodes, parent))


def _bfs_order(root: int, nodes: np.ndarray, parent: np.ndarray) -> np.ndarray:
    kids: dict[int, list[int]] = {int(u): [] for u in nodes}
    for u in nodes:
        if u != root:
            kids[int(parent[u])].append(int(u))
    order = [root]
    i = 0
    while i < len(order):
        order.extend(kids[order[i]])
        i += 1
    return np.array(order, dtype=np.int64)


def pop_below(tree: SpanningTree, pop: np.ndarray) -> np.ndarray:
    """(V,) population of the subtree rooted at each region unit; 0 outside."""
    below = np.zeros(len(tree.parent), dtype=np.float64)
    below[tree.nodes] = pop[tree.nodes]
    for u in tree.order[:0:-1]:
        below[tree.parent[u]] += below[u]
    return below


# ----------------------------
# Spanning tree counts (Matrix-Tree theorem)
# ----------------------------

def reduced_laplacian(graph: GraphStore, nodes: np.ndarray) -> sp.csc_matrix:
    """Laplacian of the induced subgraph with the first node's row/column removed."""
    nodes = np.asarray(nodes, dtype=np.int64)
    pos = {int(u): i for i, u in enumerate(nodes)}
    rows, cols = [], []
    deg = np.zeros(len(nodes))
    for u in nodes:
        i = pos[int(u)]
        for v in graph.adj[u]:
            j = pos.get(v)
            if j is None:
                continue
            deg[i] += 1
            rows.append(i)
            cols.append(j)
    n = len(nodes)
    lap = sp.coo_matrix((-np.ones(len(rows)), (rows, cols)), shape=(n, n)).tocsc()
    lap = lap + sp.diags(deg, format="csc")
    return lap[1:, 1:]


def log_spanning_tree_count(graph: GraphStore, nodes: np.ndarray) -> float:
    """
    log of the number of spanning trees of the subgraph induced by `nodes`.

    Exact in both regimes: dense slogdet for small regions, sparse LU
    (product of U's diagonal; L has unit diagonal) for large ones.
    """
    n = len(nodes)
    if n == 0:
        raise DisconnectedRegionError("empty region has no spanning tree")
    if n == 1:
        return 0.0

    lap = reduced_laplacian(graph, nodes)
    if n <= DENSE_LOGDET_MAX:
        sign, logdet = np.linalg.slogdet(lap.toarray())
        if sign <= 0:
            raise DisconnectedRegionError(f"region of {n} units is not connected")
        return float(logdet)

    try:
        lu = splu(lap)
    except RuntimeError as exc:
        # singular factor: the region is disconnected
        raise DisconnectedRegionError(f"region of {n} units is not connected") from exc
    diag = lu.U.diagonal()
    if np.any(diag == 0):
        raise DisconnectedRegionError(f"region of {n} units is not connected")
    return float(np.sum(np.log(np.abs(diag))))


def log_district_tree_counts(graph: GraphStore, plan: np.ndarray, ndists: int) -> np.ndarray:
    """(ndists,) log spanning tree count of every district; entry d-1 is district d."""
    return np.array(
        [log_spanning_tree_count(graph, np.where(plan == d)[0]) for d in range(1, ndists + 1)]
    )
