from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from mergesplit.errors import StructuralError


# ----------------------------
# Adjacency utilities
# ----------------------------

def build_adj_idx(unit_ids: list[str], adj_json: dict[str, list[str]]) -> list[list[int]]:
    id_to_idx = {uid: i for i, uid in enumerate(unit_ids)}
    adj_idx: list[list[int]] = [[] for _ in unit_ids]
    for u, nbrs in adj_json.items():
        i = id_to_idx.get(u)
        if i is None:
            continue
        for v in nbrs:
            j = id_to_idx.get(v)
            if j is not None:
                adj_idx[i].append(j)
    return adj_idx


def _symmetrize(adj: Sequence[Sequence[int]]) -> list[list[int]]:
    """Undirected, deduplicated, self-loop free neighbor lists (sorted)."""
    n = len(adj)
    nbrs: list[set[int]] = [set() for _ in range(n)]
    for i, row in enumerate(adj):
        for j in row:
            j = int(j)
            if j < 0 or j >= n:
                raise StructuralError(f"unit {i} lists neighbor {j} outside 0..{n - 1}")
            if j == i:
                continue
            nbrs[i].add(j)
            nbrs[j].add(i)
    return [sorted(s) for s in nbrs]


def bfs_component(adj: Sequence[Sequence[int]], start: int, in_region: np.ndarray) -> list[int]:
    seen = {start}
    comp = [start]
    q = deque([start])
    while q:
        u = q.popleft()
        for v in adj[u]:
            if in_region[v] and v not in seen:
                seen.add(v)
                comp.append(v)
                q.append(v)
    return comp


def region_connected(adj: Sequence[Sequence[int]], nodes: np.ndarray, n_units: int) -> bool:
    """Check if the induced subgraph on `nodes` is connected."""
    if len(nodes) <= 1:
        return True
    in_region = np.zeros(n_units, dtype=bool)
    in_region[nodes] = True
    return len(bfs_component(adj, int(nodes[0]), in_region)) == len(nodes)


# ----------------------------
# Graph store
# ----------------------------

@dataclass(frozen=True)
class GraphStore:
    adj: tuple[tuple[int, ...], ...]
    pop: np.ndarray          # (V,) int
    counties: np.ndarray     # (V,) int in 1..n_counties
    edges: np.ndarray = field(repr=False)  # (E, 2) with u < v

    @staticmethod
    def from_adjacency(
        adj: Sequence[Sequence[int]],
        pop: Sequence[float],
        counties: Optional[Sequence[int]] = None,
        *,
        require_connected: bool = True,
    ) -> "GraphStore":
        nbrs = _symmetrize(adj)
        n = len(nbrs)
        if n == 0:
            raise StructuralError("graph has no units")

        pop_arr = np.asarray(pop)
        if pop_arr.shape != (n,):
            raise StructuralError(f"population has {pop_arr.size} entries for {n} units")
        if np.any(pop_arr < 0):
            raise StructuralError("population must be non-negative")
        pop_arr = pop_arr.astype(np.int64)

        if counties is None:
            county_arr = np.ones(n, dtype=np.int64)
        else:
            county_arr = np.asarray(counties).astype(np.int64)
            if county_arr.shape != (n,):
                raise StructuralError(f"counties has {county_arr.size} entries for {n} units")

        edge_list = [(i, j) for i in range(n) for j in nbrs[i] if i < j]
        edges = np.array(edge_list, dtype=np.int64).reshape(-1, 2)

        graph = GraphStore(
            adj=tuple(tuple(r) for r in nbrs),
            pop=pop_arr,
            counties=county_arr,
            edges=edges,
        )
        if require_connected and not graph.is_connected():
            raise StructuralError("adjacency graph is disconnected; contiguous plans are impossible")
        return graph

    @property
    def n_units(self) -> int:
        return len(self.adj)

    @property
    def total_pop(self) -> int:
        return int(self.pop.sum())

    def is_connected(self) -> bool:
        return region_connected(self.adj, np.arange(self.n_units), self.n_units)

    def with_counties(self, counties: Sequence[int]) -> "GraphStore":
        county_arr = np.asarray(counties).astype(np.int64)
        if county_arr.shape != (self.n_units,):
            raise StructuralError(f"counties has {county_arr.size} entries for {self.n_units} units")
        return GraphStore(adj=self.adj, pop=self.pop, counties=county_arr, edges=self.edges)


# ----------------------------
# Plan checks (contiguity collaborator)
# ----------------------------

def district_components(labels: np.ndarray, adj: Sequence[Sequence[int]], d: int) -> list[list[int]]:
    """Connected components in the induced subgraph where labels == d. Largest-first."""
    nodes = np.where(labels == d)[0]
    if len(nodes) == 0:
        return []

    in_d = np.zeros(labels.shape[0], dtype=bool)
    in_d[nodes] = True

    seen = np.zeros(labels.shape[0], dtype=bool)
    comps: list[list[int]] = []

    for start in nodes:
        if seen[start]:
            continue
        q = deque([start])
        seen[start] = True
        comp: list[int] = []
        while q:
            x = q.popleft()
            comp.append(int(x))
            for y in adj[x]:
                if in_d[y] and not seen[y]:
                    seen[y] = True
                    q.append(y)
        comps.append(comp)

    comps.sort(key=len, reverse=True)
    return comps


def contiguity(graph: GraphStore, plan: np.ndarray, ndists: Optional[int] = None) -> np.ndarray:
    """Per-district connectivity flags; entry d-1 is district d. Empty districts are False."""
    ndists = int(plan.max()) if ndists is None else ndists
    return np.array(
        [len(district_components(plan, graph.adj, d)) == 1 for d in range(1, ndists + 1)],
        dtype=bool,
    )


def district_pops(plan: np.ndarray, pop: np.ndarray, ndists: int) -> np.ndarray:
    return np.bincount(plan, weights=pop, minlength=ndists + 1)[1:]


def validate_plan(
    graph: GraphStore,
    plan: np.ndarray,
    ndists: int,
    pop_min: float,
    pop_max: float,
) -> np.ndarray:
    """Return `plan` as an int array, or raise StructuralError naming the first violation."""
    plan = np.asarray(plan)
    if plan.shape != (graph.n_units,):
        raise StructuralError(
            f"init_plan must have one entry for each unit ({plan.size} entries for {graph.n_units} units)."
        )
    plan = plan.astype(np.int64)
    if plan.min() < 1 or plan.max() != ndists or len(np.unique(plan)) != ndists:
        raise StructuralError("An incorrect number of districts was provided within init_plan.")

    ok = contiguity(graph, plan, ndists)
    if not ok.all():
        bad = (np.where(~ok)[0] + 1).tolist()
        raise StructuralError(f"init_plan districts {bad} are not contiguous")

    pops = district_pops(plan, graph.pop, ndists)
    out = np.where((pops < pop_min) | (pops > pop_max))[0]
    if len(out):
        d = int(out[0])
        raise StructuralError(
            f"init_plan district {d + 1} has population {pops[d]:.0f} outside [{pop_min:.1f}, {pop_max:.1f}]"
        )
    return plan
