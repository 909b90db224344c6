from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from mergesplit.algos.graph_store import GraphStore
from mergesplit.algos.spanning_tree import (
    SpanningTree,
    log_spanning_tree_count,
    pop_below,
    uniform_spanning_tree,
)
from mergesplit.errors import DisconnectedRegionError


@dataclass
class Proposal:
    plan: np.ndarray               # (V,) candidate plan
    districts: tuple[int, int]     # the merged pair, d1 < d2
    log_ratio: float               # log q(y -> x) - log q(x -> y)
    log_st: dict[int, float]       # new log spanning tree counts of the pair
    n_cut_edges: int               # total cut edges of the candidate plan
    cut_edge: tuple[int, int]      # (child, parent) tree edge that was removed
    county_splits: int = 0         # counties whole in the region before, split after


# ----------------------------
# Cut edges / pair selection
# ----------------------------

def cut_edge_mask(graph: GraphStore, plan: np.ndarray) -> np.ndarray:
    e = graph.edges
    return plan[e[:, 0]] != plan[e[:, 1]]


def n_cut_edges(graph: GraphStore, plan: np.ndarray) -> int:
    return int(cut_edge_mask(graph, plan).sum())


def select_pair(graph: GraphStore, plan: np.ndarray, rng: np.random.Generator) -> tuple[int, int]:
    """Two adjacent districts, chosen through a uniformly random cut edge."""
    idx = np.where(cut_edge_mask(graph, plan))[0]
    if len(idx) == 0:
        raise DisconnectedRegionError("plan has no cut edges; districts are not adjacent")
    u, v = graph.edges[idx[rng.integers(len(idx))]]
    d1, d2 = int(plan[u]), int(plan[v])
    return (d1, d2) if d1 < d2 else (d2, d1)


# ----------------------------
# Boundary selection + cut
# ----------------------------

def edge_deviations(
    tree: SpanningTree,
    below: np.ndarray,
    total_pop: float,
    target: float,
) -> tuple[np.ndarray, np.ndarray]:
    """
    For every tree edge (child -> parent) the worse relative deviation of the
    two districts its removal would create. Returns (children, devs), sorted
    by deviation then child id.
    """
    children = tree.order[1:]
    b = below[children]
    dev = np.maximum(np.abs(b - target), np.abs(total_pop - b - target)) / target
    order = np.lexsort((children, dev))
    return children[order], dev[order]


def counties_split_by_cut(
    counties: np.ndarray,
    region: np.ndarray,
    old_plan: np.ndarray,
    new_plan: np.ndarray,
) -> int:
    """Counties whose units in `region` sat in one district before and two after."""
    c = counties[region]
    created = 0
    for county in np.unique(c):
        m = c == county
        if len(np.unique(old_plan[region][m])) == 1 and len(np.unique(new_plan[region][m])) > 1:
            created += 1
    return created


def propose_merge_split(
    graph: GraphStore,
    plan: np.ndarray,
    log_st: np.ndarray,
    k: int,
    pop_min: float,
    pop_max: float,
    target: float,
    rng: np.random.Generator,
    *,
    cut_edges_old: Optional[int] = None,
    max_attempts: int = 1,
) -> Optional[Proposal]:
    """
    One merge-split proposal, or None when no population-valid cut was found
    within `max_attempts` (the iteration is then a non-move).

    `log_st` holds the current plan's log spanning tree counts, entry d-1
    for district d.
    """
    d1, d2 = select_pair(graph, plan, rng)
    region = np.where((plan == d1) | (plan == d2))[0]
    total_pop = float(graph.pop[region].sum())
    if cut_edges_old is None:
        cut_edges_old = n_cut_edges(graph, plan)

    for _ in range(max_attempts):
        try:
            tree = uniform_spanning_tree(graph, region, rng)
        except DisconnectedRegionError:
            return None
        if tree.n_edges == 0:
            return None

        below = pop_below(tree, graph.pop)
        children, _ = edge_deviations(tree, below, total_pop, target)
        k_eff = min(k, len(children))
        v = int(children[rng.integers(k_eff)])

        side_pop = below[v]
        if not (pop_min <= side_pop <= pop_max and pop_min <= total_pop - side_pop <= pop_max):
            continue

        side = tree.side(v)
        new_plan = plan.copy()
        if rng.random() < 0.5:
            a, b = d1, d2
        else:
            a, b = d2, d1
        new_plan[region] = b
        new_plan[side] = a

        try:
            new_log_st = {
                d1: log_spanning_tree_count(graph, np.where(new_plan == d1)[0]),
                d2: log_spanning_tree_count(graph, np.where(new_plan == d2)[0]),
            }
        except DisconnectedRegionError:
            return None

        cut_edges_new = n_cut_edges(graph, new_plan)
        log_ratio = (
            math.log(cut_edges_old) - math.log(cut_edges_new)
            + float(log_st[d1 - 1] + log_st[d2 - 1])
            - (new_log_st[d1] + new_log_st[d2])
        )
        return Proposal(
            plan=new_plan,
            districts=(d1, d2),
            log_ratio=log_ratio,
            log_st=new_log_st,
            n_cut_edges=cut_edges_new,
            cut_edge=(v, int(tree.parent[v])),
            county_splits=counties_split_by_cut(graph.counties, region, plan, new_plan),
        )

    return None
