from __future__ import annotations

import numpy as np

from mergesplit.algos.graph_store import GraphStore
from mergesplit.algos.spanning_tree import pop_below, uniform_spanning_tree
from mergesplit.errors import StructuralError


def _split_off_district(
    graph: GraphStore,
    remaining: np.ndarray,
    n_left: int,
    pop_min: float,
    pop_max: float,
    rng: np.random.Generator,
) -> np.ndarray | None:
    """
    Draw a spanning tree over `remaining` and cut one edge so that one side is
    a valid district and the other side can still hold n_left - 1 districts.
    Returns the units of the new district, or None if the tree has no such edge.
    """
    tree = uniform_spanning_tree(graph, remaining, rng)
    below = pop_below(tree, graph.pop)
    total = float(graph.pop[remaining].sum())
    rest_lo, rest_hi = (n_left - 1) * pop_min, (n_left - 1) * pop_max

    children = tree.order[1:]
    b = below[children]
    ok_below = (b >= pop_min) & (b <= pop_max) & (total - b >= rest_lo) & (total - b <= rest_hi)
    ok_above = (total - b >= pop_min) & (total - b <= pop_max) & (b >= rest_lo) & (b <= rest_hi)

    candidates = [(int(v), True) for v in children[ok_below]] + [(int(v), False) for v in children[ok_above]]
    if not candidates:
        return None
    v, take_below = candidates[rng.integers(len(candidates))]
    side = tree.side(v)
    if take_below:
        return side
    return np.setdiff1d(remaining, side)


def sample_initial_plan(
    graph: GraphStore,
    ndists: int,
    pop_min: float,
    pop_max: float,
    rng: np.random.Generator,
    *,
    max_tries: int = 200,
    max_restarts: int = 50,
) -> np.ndarray:
    """
    Contiguous, population-valid plan built by splitting one district at a
    time off random spanning trees of the unassigned region.
    """
    V = graph.n_units
    total = graph.total_pop
    if total < ndists * pop_min or total > ndists * pop_max:
        raise StructuralError(
            f"total population {total} cannot be split into {ndists} districts within "
            f"[{pop_min:.1f}, {pop_max:.1f}]"
        )

    for _ in range(max_restarts):
        plan = np.zeros(V, dtype=np.int64)
        remaining = np.arange(V)
        failed = False
        for d in range(1, ndists):
            n_left = ndists - d + 1
            district = None
            for _ in range(max_tries):
                district = _split_off_district(graph, remaining, n_left, pop_min, pop_max, rng)
                if district is not None:
                    break
            if district is None:
                failed = True
                break
            plan[district] = d
            remaining = np.setdiff1d(remaining, district)
        if failed:
            continue
        plan[remaining] = ndists
        return plan

    raise StructuralError(
        f"could not draw an initial plan with {ndists} districts in [{pop_min:.1f}, {pop_max:.1f}]; "
        "supply init_plan or loosen pop_tol"
    )
