from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Sequence

import numpy as np
from tqdm import tqdm

from mergesplit.algos.acceptance import metropolis_accept
from mergesplit.algos.adapt import KController, estimate_initial_k, k_upper_limit
from mergesplit.algos.constraints import ConstraintSet, EnergyEvaluator
from mergesplit.algos.graph_store import GraphStore, validate_plan
from mergesplit.algos.proposal import n_cut_edges, propose_merge_split
from mergesplit.algos.spanning_tree import log_district_tree_counts
from mergesplit.config import MergeSplitConfig


@dataclass
class ChainState:
    plan: np.ndarray
    energy: float
    log_st: np.ndarray  # (ndists,)
    n_cut_edges: int


@dataclass
class MergeSplitResult:
    plans: np.ndarray            # (V, n) one plan per column, column 0 is the seed
    accept_decisions: np.ndarray  # (n,) bool, False for the seed column
    energies: np.ndarray         # (n,)
    k_history: np.ndarray        # (n,) k used to produce each column
    county_splits_created: np.ndarray  # (n,) from the accepted proposal, else 0
    n_non_moves: int
    acceptance_rate: float       # among proposals that reached the acceptance step
    k_changes: list[tuple[int, int]] = field(default_factory=list)
    completed: bool = True

    # run inputs, kept so split counts and energies can be recomputed
    counties: Optional[np.ndarray] = None  # (V,) after repair
    total_pop: Optional[np.ndarray] = None  # (V,)
    constraints: Optional[ConstraintSet] = None
    compactness: float = 1.0
    adapt_k_thresh: float = 0.975
    nsims: Optional[int] = None
    algorithm: str = "mergesplit"

    @property
    def n_iterations(self) -> int:
        return self.plans.shape[1]

    def drop_seed(self) -> "MergeSplitResult":
        return replace(
            self,
            plans=self.plans[:, 1:],
            accept_decisions=self.accept_decisions[1:],
            energies=self.energies[1:],
            k_history=self.k_history[1:],
            county_splits_created=self.county_splits_created[1:],
            k_changes=list(self.k_changes),
        )


def _initial_k(graph: GraphStore, plan: np.ndarray, cfg: MergeSplitConfig, rng: np.random.Generator) -> int:
    if not cfg.adaptive:
        return cfg.k
    return estimate_initial_k(
        graph, plan, cfg.pop_min, cfg.pop_max, cfg.pop_target, cfg.adapt_k_thresh, rng,
        n_pilot=cfg.n_pilot,
    )


def run_merge_split(
    graph: GraphStore,
    initial_plan: np.ndarray,
    cfg: MergeSplitConfig,
    constraints: Optional[ConstraintSet] = None,
    rng: Optional[np.random.Generator] = None,
    *,
    should_stop: Optional[Callable[[], bool]] = None,
) -> MergeSplitResult:
    """
    Run one Merge-Split chain for cfg.n_iterations columns (the seed included).

    Rejected proposals and non-moves repeat the previous plan, so every
    column is a valid plan. `should_stop` is polled after each completed
    iteration; a stopped run returns the columns it finished.
    """
    rng = np.random.default_rng() if rng is None else rng
    constraints = ConstraintSet() if constraints is None else constraints

    plan = validate_plan(graph, initial_plan, cfg.ndists, cfg.pop_min, cfg.pop_max)
    evaluator = EnergyEvaluator(graph, cfg.ndists, constraints, cfg.compactness)

    log_st = log_district_tree_counts(graph, plan, cfg.ndists)
    state = ChainState(
        plan=plan,
        energy=evaluator.energy(plan, log_st),
        log_st=log_st,
        n_cut_edges=n_cut_edges(graph, plan),
    )

    k0 = _initial_k(graph, plan, cfg, rng)
    ctl = KController(
        k=k0,
        fixed=not cfg.adaptive,
        thresh=cfg.adapt_k_thresh,
        accept_floor=cfg.accept_floor,
        interval=cfg.adapt_interval,
        k_max=k_upper_limit(graph.n_units, cfg.pop_tol),
    )

    N = cfg.n_iterations
    V = graph.n_units
    plans = np.zeros((V, N), dtype=np.int64)
    decisions = np.zeros(N, dtype=bool)
    energies = np.zeros(N, dtype=float)
    k_hist = np.zeros(N, dtype=np.int64)
    splits = np.zeros(N, dtype=np.int64)
    plans[:, 0] = state.plan
    energies[0] = state.energy
    k_hist[0] = ctl.k
    n_non_moves = 0

    if cfg.verbosity >= 1:
        mode = "adaptive" if cfg.adaptive else "fixed"
        print(f"[mergesplit] Sampling {N - 1} steps over {V} units, {cfg.ndists} districts", flush=True)
        print(f"[mergesplit] Using k = {ctl.k} ({mode})", flush=True)
        print(f"[mergesplit] Initial energy: {state.energy:.6f}", flush=True)

    done = 1
    steps = tqdm(range(1, N), disable=cfg.verbosity < 3, desc="mergesplit", unit="step")
    for i in steps:
        k_hist[i] = ctl.k
        prop = propose_merge_split(
            graph,
            state.plan,
            state.log_st,
            ctl.k,
            cfg.pop_min,
            cfg.pop_max,
            cfg.pop_target,
            rng,
            cut_edges_old=state.n_cut_edges,
            max_attempts=cfg.max_split_attempts,
        )

        if prop is None:
            n_non_moves += 1
        else:
            new_log_st = state.log_st.copy()
            for d, v in prop.log_st.items():
                new_log_st[d - 1] = v
            e_new = evaluator.energy(prop.plan, new_log_st)
            accepted, _ = metropolis_accept(state.energy, e_new, prop.log_ratio, rng)
            if accepted:
                state = ChainState(
                    plan=prop.plan,
                    energy=e_new,
                    log_st=new_log_st,
                    n_cut_edges=prop.n_cut_edges,
                )
                splits[i] = prop.county_splits
            decisions[i] = accepted
            ctl.observe(accepted)

        plans[:, i] = state.plan
        energies[i] = state.energy
        done = i + 1

        if cfg.verbosity >= 3 and i % 1000 == 0:
            steps.set_postfix(acc=f"{ctl.acceptance_rate:.3f}", k=ctl.k)
        if should_stop is not None and should_stop():
            break

    steps.close()
    completed = done == N

    if cfg.verbosity >= 1:
        print(
            f"[mergesplit] Acceptance rate: {ctl.acceptance_rate:.1%} "
            f"({n_non_moves} non-moves, final k = {ctl.k})",
            flush=True,
        )
        if not completed:
            print(f"[mergesplit] stopped after {done} of {N} iterations", flush=True)

    return MergeSplitResult(
        plans=plans[:, :done],
        accept_decisions=decisions[:done],
        energies=energies[:done],
        k_history=k_hist[:done],
        county_splits_created=splits[:done],
        n_non_moves=n_non_moves,
        acceptance_rate=ctl.acceptance_rate,
        k_changes=list(ctl.changes),
        completed=completed,
        counties=graph.counties.copy(),
        total_pop=graph.pop.copy(),
        constraints=constraints,
        compactness=cfg.compactness,
        adapt_k_thresh=cfg.adapt_k_thresh,
        nsims=N - 1,
    )


# ----------------------------
# Independent chains
# ----------------------------

def _run_one(args) -> MergeSplitResult:
    graph, plan, cfg, constraints, seed_seq = args
    return run_merge_split(graph, plan, cfg, constraints, np.random.default_rng(seed_seq))


def run_chains(
    graph: GraphStore,
    initial_plans: Sequence[np.ndarray],
    cfg: MergeSplitConfig,
    constraints: Optional[ConstraintSet] = None,
    *,
    seed: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> list[MergeSplitResult]:
    """
    One chain per initial plan, each in its own process with its own child
    random stream. Results come back in the order of `initial_plans`.
    """
    children = np.random.SeedSequence(seed).spawn(len(initial_plans))
    jobs = [(graph, np.asarray(p), cfg, constraints, s) for p, s in zip(initial_plans, children)]
    if max_workers == 1 or len(jobs) <= 1:
        return [_run_one(j) for j in jobs]
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(_run_one, jobs))
