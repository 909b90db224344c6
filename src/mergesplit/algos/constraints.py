"""
Constraint terms and the energy evaluator.

The target distribution is

    pi(plan) ∝ exp(-E(plan)),   E(plan) = Σ_term strength * score(plan)

so lower energy is preferred. Every term is a small frozen dataclass with a
`score(plan, ctx)` method; the evaluator only ever hands a float to the
acceptance step, so adding a term does not touch it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np

from mergesplit.algos.graph_store import GraphStore, district_pops
from mergesplit.errors import ConfigError


@dataclass
class PlanContext:
    graph: GraphStore
    ndists: int
    log_st: Optional[np.ndarray] = None  # (ndists,) log spanning tree counts

    def district_pops(self, plan: np.ndarray) -> np.ndarray:
        return district_pops(plan, self.graph.pop, self.ndists)


def _check_strength(name: str, strength: float) -> None:
    if strength < 0:
        raise ConfigError(f"{name} strength must be non-negative, got {strength}")


def _minority_shares(plan: np.ndarray, minority_pop: np.ndarray, ctx: PlanContext) -> tuple[np.ndarray, np.ndarray]:
    total = ctx.district_pops(plan)
    grp = np.bincount(plan, weights=minority_pop, minlength=ctx.ndists + 1)[1:]
    share = np.divide(grp, total, out=np.zeros_like(grp), where=total > 0)
    return share, total


# ----------------------------
# Terms
# ----------------------------

@dataclass(frozen=True, eq=False)
class CompactnessTerm:
    """-Σ log τ(d): with strength ρ the target carries Π τ(d)^ρ."""
    strength: float = 1.0
    name: str = field(default="compactness", init=False)

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        if ctx.log_st is None:
            raise ValueError("compactness term needs log spanning tree counts")
        return -float(np.sum(ctx.log_st))


@dataclass(frozen=True, eq=False)
class StatusQuoTerm:
    strength: float
    current: np.ndarray  # (V,) reference plan, labels 1..n_current
    name: str = field(default="status_quo", init=False)

    @property
    def n_current(self) -> int:
        return int(self.current.max())

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        """
        Units outside the reference district each district overlaps most,
        as a share of all units, scaled by ndists / n_current. Invariant to
        relabeling the districts of `plan`.
        """
        overlap = np.zeros((ctx.ndists + 1, self.n_current + 1), dtype=np.int64)
        np.add.at(overlap, (plan, self.current), 1)
        sizes = overlap.sum(axis=1)[1:]
        kept = overlap[1:].max(axis=1)
        moved = float((sizes - kept).sum())
        return moved / len(plan) * ctx.ndists / self.n_current


@dataclass(frozen=True, eq=False)
class VraOldTerm:
    strength: float
    tgt_min: float
    tgt_other: float
    minority_pop: np.ndarray  # (V,)
    power: float = 1.5
    min_district_pop: float = 0.0
    name: str = field(default="vra_old", init=False)

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        share, total = _minority_shares(plan, self.minority_pop, ctx)
        scored = total > self.min_district_pop
        pen = np.abs(share - self.tgt_min) ** self.power * np.abs(share - self.tgt_other) ** self.power
        return float(pen[scored].sum())


@dataclass(frozen=True, eq=False)
class VraTerm:
    strength: float
    tgts_min: tuple[float, ...]
    minority_pop: np.ndarray  # (V,)
    power: float = 0.5
    min_district_pop: float = 0.0
    name: str = field(default="vra", init=False)

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        """Hinge below the nearest target share, per district."""
        share, total = _minority_shares(plan, self.minority_pop, ctx)
        tgts = np.asarray(self.tgts_min, dtype=float)
        nearest = tgts[np.argmin(np.abs(share[:, None] - tgts[None, :]), axis=1)]
        pen = np.maximum(0.0, nearest - share) ** self.power
        return float(pen[total > self.min_district_pop].sum())


@dataclass(frozen=True, eq=False)
class IncumbencyTerm:
    strength: float
    incumbents: tuple[int, ...]  # unit indices of incumbents' homes
    name: str = field(default="incumbency", init=False)

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        if not self.incumbents:
            return 0.0
        counts = np.bincount(plan[list(self.incumbents)], minlength=ctx.ndists + 1)[1:]
        return float(np.maximum(counts - 1, 0).sum())


@dataclass(frozen=True, eq=False)
class CountySplitsTerm:
    strength: float
    name: str = field(default="splits", init=False)

    def score(self, plan: np.ndarray, ctx: PlanContext) -> float:
        """Σ over counties of (districts touched - 1)."""
        counties = ctx.graph.counties
        pairs = np.unique(np.stack([counties, plan], axis=1), axis=0)
        n_counties = len(np.unique(counties))
        return float(len(pairs) - n_counties)


Term = Union[CompactnessTerm, StatusQuoTerm, VraOldTerm, VraTerm, IncumbencyTerm, CountySplitsTerm]


# ----------------------------
# Constraint set
# ----------------------------

@dataclass(frozen=True)
class ConstraintSet:
    terms: tuple = ()

    def __post_init__(self):
        for t in self.terms:
            _check_strength(t.name, t.strength)

    def enabled(self) -> tuple:
        return tuple(t for t in self.terms if t.strength > 0)

    def describe(self) -> dict[str, float]:
        return {t.name: float(t.strength) for t in self.terms}


def _unit_vector(values, n: int, what: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (n,):
        raise ConfigError(f"{what} has {arr.size} entries for {n} units")
    return arr


def constraints_from_cfg(
    cfg: dict,
    n_units: int,
    *,
    minority_pop: Optional[Sequence[float]] = None,
    incumbents: Optional[Sequence[int]] = None,
    current: Optional[Sequence[int]] = None,
) -> ConstraintSet:
    """
    Build a ConstraintSet from the `constraints` section of a config, e.g.

        constraints:
          status_quo: {strength: 1.0}
          vra_old: {strength: 10, tgt_vra_min: 0.55, tgt_vra_other: 0.25, pow_vra: 1.5}
          vra: {strength: 5, tgts_min: [0.55]}
          incumbency: {strength: 2}
          splits: {strength: 0.5}

    Per-unit data (minority population, incumbent units, reference plan)
    come from the map pack and are passed in separately.
    """
    c_cfg = cfg.get("constraints", {}) or {}
    known = {"status_quo", "vra_old", "vra", "incumbency", "splits"}
    unknown = set(c_cfg) - known
    if unknown:
        raise ConfigError(f"Unknown constraints: {sorted(unknown)}. Known: {sorted(known)}")

    terms: list = []

    sq = c_cfg.get("status_quo")
    if sq:
        if current is None:
            raise ConfigError("status_quo constraint needs a reference plan (data.current_plan_col).")
        ref = np.asarray(current, dtype=np.int64)
        if ref.shape != (n_units,) or ref.min() < 1:
            raise ConfigError("status_quo reference plan must assign every unit to 1..n_current")
        terms.append(StatusQuoTerm(strength=float(sq.get("strength", 0.0)), current=ref))

    for key in ("vra_old", "vra"):
        v = c_cfg.get(key)
        if not v:
            continue
        if minority_pop is None:
            raise ConfigError(f"{key} constraint needs minority population (data.minority_col).")
        grp = _unit_vector(minority_pop, n_units, "minority population")
        if key == "vra_old":
            terms.append(
                VraOldTerm(
                    strength=float(v.get("strength", 0.0)),
                    tgt_min=float(v.get("tgt_vra_min", 0.55)),
                    tgt_other=float(v.get("tgt_vra_other", 0.25)),
                    minority_pop=grp,
                    power=float(v.get("pow_vra", 1.5)),
                    min_district_pop=float(v.get("min_district_pop", 0.0)),
                )
            )
        else:
            tgts = v.get("tgts_min", [0.55])
            if isinstance(tgts, (int, float)):
                tgts = [tgts]
            if not tgts:
                raise ConfigError("vra.tgts_min must list at least one target share")
            terms.append(
                VraTerm(
                    strength=float(v.get("strength", 0.0)),
                    tgts_min=tuple(float(t) for t in tgts),
                    minority_pop=grp,
                    power=float(v.get("pow", 0.5)),
                    min_district_pop=float(v.get("min_district_pop", 0.0)),
                )
            )

    inc = c_cfg.get("incumbency")
    if inc:
        units = inc.get("incumbents", incumbents)
        if units is None:
            raise ConfigError("incumbency constraint needs incumbent units (data.incumbent_col).")
        units = tuple(int(u) for u in units)
        if any(u < 0 or u >= n_units for u in units):
            raise ConfigError("incumbent unit index out of range")
        terms.append(IncumbencyTerm(strength=float(inc.get("strength", 0.0)), incumbents=units))

    spl = c_cfg.get("splits")
    if spl:
        terms.append(CountySplitsTerm(strength=float(spl.get("strength", 0.0))))

    return ConstraintSet(terms=tuple(terms))


# ----------------------------
# Evaluator
# ----------------------------

class EnergyEvaluator:
    def __init__(self, graph: GraphStore, ndists: int, constraints: ConstraintSet, compactness: float = 1.0):
        _check_strength("compactness", compactness)
        self.graph = graph
        self.ndists = ndists
        self.terms = (CompactnessTerm(strength=compactness),) + tuple(constraints.terms)
        self._enabled = tuple(t for t in self.terms if t.strength > 0)

    @property
    def needs_tree_counts(self) -> bool:
        return any(isinstance(t, CompactnessTerm) for t in self._enabled)

    def breakdown(self, plan: np.ndarray, log_st: Optional[np.ndarray] = None) -> dict[str, float]:
        ctx = PlanContext(self.graph, self.ndists, log_st)
        return {t.name: t.strength * t.score(plan, ctx) for t in self._enabled}

    def energy(self, plan: np.ndarray, log_st: Optional[np.ndarray] = None) -> float:
        return float(sum(self.breakdown(plan, log_st).values()))
