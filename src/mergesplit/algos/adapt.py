from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from mergesplit.algos.graph_store import GraphStore
from mergesplit.algos.proposal import edge_deviations, select_pair
from mergesplit.algos.spanning_tree import pop_below, uniform_spanning_tree
from mergesplit.errors import DisconnectedRegionError


def wilson_upper(n_accept: int, n_trials: int, z: float = 1.96) -> float:
    """Upper end of the Wilson score interval for an acceptance rate."""
    if n_trials == 0:
        return 1.0
    p = n_accept / n_trials
    z2 = z * z
    centre = p + z2 / (2 * n_trials)
    spread = z * math.sqrt(p * (1 - p) / n_trials + z2 / (4 * n_trials * n_trials))
    return min(1.0, (centre + spread) / (1 + z2 / n_trials))


def k_upper_limit(n_units: int, pop_tol: float) -> int:
    return max(1, min(10 + int(2.0 * n_units * pop_tol), n_units - 1))


# ----------------------------
# Online controller
# ----------------------------
@dataclass
class KController:
    """
    Online control of k. Every `interval` decisions the Wilson bound is
    taken over the window since k last changed (n_trials / n_accept); the
    run-wide rate is kept separately in total_trials / total_accept.
    """
    k: int
    fixed: bool = False
    thresh: float = 0.975
    accept_floor: float = 0.01
    interval: int = 50
    k_max: int = 10

    # since the last change of k
    n_trials: int = 0
    n_accept: int = 0

    total_trials: int = 0
    total_accept: int = 0
    changes: list[tuple[int, int]] = field(default_factory=list)  # (trial number, new k)

    def __post_init__(self):
        if self.k < 1:
            raise ValueError(f"k must be at least 1, got {self.k}")
        self.k_max = max(self.k_max, self.k)

    @property
    def acceptance_rate(self) -> float:
        return self.total_accept / self.total_trials if self.total_trials else 0.0

    def observe(self, accepted: bool) -> int:
        """Record one decision from the acceptance step; returns k for the next iteration."""
        self.total_trials += 1
        self.total_accept += int(accepted)
        if self.fixed:
            return self.k

        self.n_trials += 1
        self.n_accept += int(accepted)
        if self.n_trials % self.interval != 0:
            return self.k

        rate = self.n_accept / self.n_trials
        if wilson_upper(self.n_accept, self.n_trials) > self.thresh and self.k < self.k_max:
            self._set_k(self.k + 1)
        elif rate < self.accept_floor and self.k > 1:
            self._set_k(self.k - 1)
        return self.k

    def _set_k(self, k: int) -> None:
        self.k = k
        self.n_trials = 0
        self.n_accept = 0
        self.changes.append((self.total_trials, k))


# ----------------------------
# Pilot estimate of the starting k
# ----------------------------

def estimate_initial_k(
    graph: GraphStore,
    plan: np.ndarray,
    pop_min: float,
    pop_max: float,
    target: float,
    thresh: float,
    rng: np.random.Generator,
    *,
    n_pilot: Optional[int] = None,
) -> int:
    """
    Smallest k such that an edge drawn from the top k of one pilot tree and
    found population-valid also ranks within the top k of the other pilot
    trees with frequency >= thresh.
    """
    V = graph.n_units
    tol = min(pop_max - target, target - pop_min) / target
    k_max = k_upper_limit(V, tol)
    if n_pilot is None:
        n_pilot = max(1, int(math.floor(4000.0 / math.sqrt(V))))

    rows: list[np.ndarray] = []
    max_ok = 0
    for _ in range(n_pilot):
        d1, d2 = select_pair(graph, plan, rng)
        region = np.where((plan == d1) | (plan == d2))[0]
        try:
            tree = uniform_spanning_tree(graph, region, rng)
        except DisconnectedRegionError:
            continue
        total_pop = float(graph.pop[region].sum())
        _, dev = edge_deviations(tree, pop_below(tree, graph.pop), total_pop, target)

        n_ok = int(np.sum(dev <= tol))
        if max_ok < n_ok < k_max:
            max_ok = n_ok

        row = np.full(k_max, np.inf)
        m = min(k_max, len(dev))
        row[:m] = dev[:m]
        rows.append(row)

    if not rows:
        return 1

    devs = np.vstack(rows)
    n = devs.shape[0]
    k = k_max
    for kk in range(1, k_max + 1):
        picks = devs[np.arange(n), rng.integers(kk, size=n)]
        ok = picks <= tol
        if not ok.any():
            continue
        within = (picks[ok][:, None] <= devs[None, :, kk - 1]).mean(axis=1)
        if within.mean() >= thresh:
            k = kk
            break

    if k == k_max:
        warnings.warn("Maximum k hit; falling back to naive k estimator.", stacklevel=2)
        k = max_ok + 1
    return max(1, min(k, V - 1))
