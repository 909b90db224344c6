import itertools
from collections import Counter

import numpy as np
import pytest

from mergesplit.algos.chain import run_chains, run_merge_split
from mergesplit.algos.constraints import ConstraintSet, StatusQuoTerm
from mergesplit.algos.graph_store import region_connected, validate_plan
from mergesplit.config import MergeSplitConfig
from mergesplit.errors import StructuralError


def _cfg(n_iterations=40, **kw):
    base = dict(ndists=3, n_iterations=n_iterations, pop_target=3.0, pop_min=3.0, pop_max=3.0, k=2, verbosity=0)
    base.update(kw)
    return MergeSplitConfig(**base)


def _partition(plan):
    """Label-free form of a plan."""
    return frozenset(frozenset(np.where(plan == d)[0].tolist()) for d in np.unique(plan))


def test_shapes_and_seed_column(grid3, rows_plan3, rng):
    res = run_merge_split(grid3, rows_plan3, _cfg(), rng=rng)
    assert res.plans.shape == (9, 40)
    assert res.n_iterations == 40
    assert res.completed
    assert np.array_equal(res.plans[:, 0], rows_plan3)
    assert not res.accept_decisions[0]
    assert len(res.energies) == len(res.k_history) == len(res.county_splits_created) == 40
    assert (res.k_history == 2).all()
    assert res.k_changes == []


def test_every_column_is_a_valid_plan(grid3, rows_plan3, rng):
    res = run_merge_split(grid3, rows_plan3, _cfg(n_iterations=150), rng=rng)
    for j in range(res.n_iterations):
        validate_plan(grid3, res.plans[:, j], 3, 3, 3)
    # rejected and non-move columns repeat the previous plan
    for j in np.where(~res.accept_decisions[1:])[0] + 1:
        assert np.array_equal(res.plans[:, j], res.plans[:, j - 1])


def test_same_seed_same_chain(grid3, rows_plan3):
    a = run_merge_split(grid3, rows_plan3, _cfg(), rng=np.random.default_rng(99))
    b = run_merge_split(grid3, rows_plan3, _cfg(), rng=np.random.default_rng(99))
    assert np.array_equal(a.plans, b.plans)
    assert np.array_equal(a.accept_decisions, b.accept_decisions)


def test_invalid_initial_plan_rejected(grid3, rng):
    with pytest.raises(StructuralError):
        run_merge_split(grid3, np.array([1, 1, 2, 2, 2, 2, 3, 3, 3]), _cfg(), rng=rng)


def test_should_stop_returns_partial_result(grid3, rows_plan3, rng):
    calls = []

    def stop():
        calls.append(1)
        return len(calls) >= 5

    res = run_merge_split(grid3, rows_plan3, _cfg(), rng=rng, should_stop=stop)
    assert not res.completed
    assert res.n_iterations == 6
    assert res.drop_seed().n_iterations == 5


def test_drop_seed(grid3, rows_plan3, rng):
    res = run_merge_split(grid3, rows_plan3, _cfg(n_iterations=10), rng=rng)
    out = res.drop_seed()
    assert out.plans.shape == (9, 9)
    assert np.array_equal(out.plans, res.plans[:, 1:])
    assert np.array_equal(out.accept_decisions, res.accept_decisions[1:])


def test_summary_printed(grid3, rows_plan3, rng, capsys):
    run_merge_split(grid3, rows_plan3, _cfg(n_iterations=5, verbosity=1), rng=rng)
    out = capsys.readouterr().out
    assert "[mergesplit] Using k = 2 (fixed)" in out
    assert "[mergesplit] Acceptance rate" in out


def test_silent_prints_nothing(grid3, rows_plan3, rng, capsys):
    run_merge_split(grid3, rows_plan3, _cfg(n_iterations=5), rng=rng)
    assert capsys.readouterr().out == ""


def test_adaptive_k_run(make_grid):
    g = make_grid(4, 4)
    plan = np.repeat([1, 2, 3, 4], 4)
    cfg = MergeSplitConfig(
        ndists=4, n_iterations=60, pop_target=4.0, pop_min=3.0, pop_max=5.0,
        k=0, n_pilot=20, adapt_interval=10, verbosity=0,
    )
    res = run_merge_split(g, plan, cfg, rng=np.random.default_rng(4))
    assert (res.k_history >= 1).all()
    for j in range(res.n_iterations):
        validate_plan(g, res.plans[:, j], 4, 3.0, 5.0)


def test_strong_status_quo_holds_the_partition(grid3, rows_plan3, rng):
    cs = ConstraintSet((StatusQuoTerm(100.0, rows_plan3),))
    res = run_merge_split(grid3, rows_plan3, _cfg(n_iterations=200), cs, rng)
    start = _partition(rows_plan3)
    assert all(_partition(res.plans[:, j]) == start for j in range(res.n_iterations))


def _balanced_partitions(graph):
    n = graph.n_units
    out = set()
    for side in itertools.combinations(range(1, n), n // 2 - 1):
        a = np.array((0,) + side)
        b = np.setdiff1d(np.arange(n), a)
        if region_connected(graph.adj, a, n) and region_connected(graph.adj, b, n):
            out.add(frozenset(a.tolist()))
    return out


def test_neutral_chain_is_uniform(make_grid):
    # with no energy and exact balance every balanced 2-split of a 2x4 grid
    # is equally likely
    g = make_grid(2, 4)
    parts = _balanced_partitions(g)
    assert len(parts) > 2
    cfg = MergeSplitConfig(
        ndists=2, n_iterations=40001, pop_target=4.0, pop_min=4.0, pop_max=4.0,
        compactness=0.0, k=1, verbosity=0,
    )
    res = run_merge_split(g, np.repeat([1, 2], 4), cfg, rng=np.random.default_rng(17)).drop_seed()

    counts = Counter()
    for j in range(res.n_iterations):
        col = res.plans[:, j]
        counts[frozenset(np.where(col == col[0])[0].tolist())] += 1
    assert set(counts) <= parts
    expected = 1.0 / len(parts)
    for p in parts:
        assert abs(counts[p] / res.n_iterations - expected) < 0.05


def test_run_chains_in_process(grid3, rows_plan3):
    cols = np.array([1, 2, 3, 1, 2, 3, 1, 2, 3])
    out = run_chains(grid3, [rows_plan3, cols], _cfg(n_iterations=15), seed=3, max_workers=1)
    assert len(out) == 2
    assert np.array_equal(out[0].plans[:, 0], rows_plan3)
    assert np.array_equal(out[1].plans[:, 0], cols)
    again = run_chains(grid3, [rows_plan3, cols], _cfg(n_iterations=15), seed=3, max_workers=1)
    assert all(np.array_equal(a.plans, b.plans) for a, b in zip(out, again))


def test_run_chains_in_worker_processes(grid3, rows_plan3):
    cols = np.array([1, 2, 3, 1, 2, 3, 1, 2, 3])
    cs = ConstraintSet((StatusQuoTerm(0.5, rows_plan3),))
    serial = run_chains(grid3, [rows_plan3, cols, rows_plan3], _cfg(n_iterations=15), cs, seed=8, max_workers=1)
    pooled = run_chains(grid3, [rows_plan3, cols, rows_plan3], _cfg(n_iterations=15), cs, seed=8, max_workers=2)
    assert len(pooled) == 3
    for a, b in zip(serial, pooled):
        assert np.array_equal(a.plans, b.plans)
        assert np.array_equal(a.accept_decisions, b.accept_decisions)
        assert b.constraints.describe() == {"status_quo": 0.5}
    assert np.array_equal(pooled[1].plans[:, 0], cols)


def test_result_keeps_run_inputs(make_grid, rows_plan3, rng):
    counties = np.array([1, 1, 1, 2, 2, 2, 3, 3, 3])
    g = make_grid(3, 3, counties=counties)
    cs = ConstraintSet((StatusQuoTerm(0.5, rows_plan3),))
    res = run_merge_split(g, rows_plan3, _cfg(n_iterations=8, compactness=0.25), cs, rng).drop_seed()
    assert res.counties.tolist() == counties.tolist()
    assert res.total_pop.tolist() == [1] * 9
    assert res.constraints is cs
    assert res.compactness == 0.25
    assert res.adapt_k_thresh == 0.975
    assert res.nsims == 7
    assert res.algorithm == "mergesplit"
