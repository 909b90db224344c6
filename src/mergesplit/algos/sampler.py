from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from mergesplit.algos.chain import MergeSplitResult, run_merge_split
from mergesplit.algos.constraints import ConstraintSet
from mergesplit.algos.counties import prepare_counties
from mergesplit.algos.graph_store import GraphStore
from mergesplit.algos.init_plan import sample_initial_plan
from mergesplit.config import MergeSplitConfig, pop_bounds, verbosity_level
from mergesplit.errors import ConfigError, StructuralError


def normalize_init_plan(init_plan: Sequence[int], n_units: int, ndists: int) -> np.ndarray:
    """Check length and district count; a 0 label is moved to max + 1."""
    plan = np.asarray(init_plan)
    if plan.shape != (n_units,):
        raise StructuralError("init_plan must have one entry for each unit.")
    plan = plan.astype(np.int64).copy()
    if plan.min() == 0:
        plan[plan == 0] = plan.max() + 1
    if plan.max() != ndists:
        raise StructuralError("An incorrect number of districts was provided within init_plan.")
    return plan


def sample_plans(
    adj: Sequence[Sequence[int]],
    total_pop: Sequence[float],
    nsims: int,
    ndists: int,
    pop_tol: float = 0.01,
    init_plan: Optional[Sequence[int]] = None,
    counties: Optional[Sequence] = None,
    compactness: float = 1.0,
    constraints: Optional[ConstraintSet] = None,
    adapt_k_thresh: float = 0.975,
    k: Optional[int] = None,
    verbose: bool = True,
    silent: bool = False,
    seed: Optional[int] = None,
    **options,
) -> MergeSplitResult:
    """
    Sample `nsims` plans with the Merge-Split chain.

    Parameters:
    - adj: neighbor lists, one per unit (0-based unit indices)
    - total_pop: population of each unit
    - nsims: number of plans to return (the seed plan is dropped)
    - ndists: number of districts
    - pop_tol: allowed relative deviation from the target district population
    - init_plan: starting plan; drawn from random spanning trees when missing
    - counties: county label per unit; non-contiguous counties are relabeled
    - compactness: exponent on the spanning tree count of each district
    - constraints: weighted constraint terms, none by default
    - adapt_k_thresh: threshold for the pilot and online k adaptation
    - k: fixed boundary parameter; None or 0 adapts it
    - verbose / silent: print detail / print nothing
    - seed: seed for the chain's random generator
    - options: extra MergeSplitConfig fields (max_split_attempts, adapt_interval, ...)

    Returns a MergeSplitResult whose plans have one column per draw.
    """
    if adj is None:
        raise ConfigError("Please provide an argument to adj.")
    if total_pop is None:
        raise ConfigError("Please provide an argument to total_pop.")
    if nsims is None or ndists is None:
        raise ConfigError("Please provide arguments to nsims and ndists.")
    if compactness < 0:
        raise ConfigError("Compactness parameter must be non-negative")
    if adapt_k_thresh < 0 or adapt_k_thresh > 1:
        raise ConfigError("`adapt_k_thresh` parameter must lie in [0, 1].")
    if nsims < 1:
        raise ConfigError("`nsims` must be positive.")

    graph = GraphStore.from_adjacency(adj, total_pop)
    graph = graph.with_counties(prepare_counties(graph.adj, counties))

    lower, target, upper = pop_bounds(graph.total_pop, ndists, pop_tol)
    cfg = MergeSplitConfig(
        ndists=ndists,
        n_iterations=nsims + 1,
        pop_target=target,
        pop_min=lower,
        pop_max=upper,
        compactness=compactness,
        adapt_k_thresh=adapt_k_thresh,
        k=0 if k is None else int(k),
        verbosity=verbosity_level(verbose, silent),
        **options,
    )
    rng = np.random.default_rng(seed)

    if init_plan is None:
        plan = sample_initial_plan(graph, ndists, lower, upper, rng)
    else:
        plan = normalize_init_plan(init_plan, graph.n_units, ndists)

    return run_merge_split(graph, plan, cfg, constraints, rng).drop_seed()
