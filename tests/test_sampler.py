import warnings

import numpy as np
import pytest

from conftest import grid_adj
from mergesplit.algos.graph_store import GraphStore, validate_plan
from mergesplit.algos.sampler import normalize_init_plan, sample_plans
from mergesplit.errors import ConfigError, CountySplitWarning, StructuralError

ROWS = [1, 1, 1, 2, 2, 2, 3, 3, 3]


def _graph():
    return GraphStore.from_adjacency(grid_adj(3, 3), np.ones(9))


def test_sample_plans_drops_seed():
    res = sample_plans(grid_adj(3, 3), np.ones(9), 20, 3, pop_tol=0.0, init_plan=ROWS, k=2, silent=True, seed=1)
    assert res.plans.shape == (9, 20)
    assert len(res.accept_decisions) == 20
    g = _graph()
    for j in range(20):
        validate_plan(g, res.plans[:, j], 3, 3, 3)


def test_sample_plans_draws_its_own_start():
    res = sample_plans(grid_adj(3, 3), np.ones(9), 5, 3, pop_tol=0.0, k=1, silent=True, seed=2)
    validate_plan(_graph(), res.plans[:, 0], 3, 3, 3)


def test_options_reach_the_config():
    res = sample_plans(
        grid_adj(3, 3), np.ones(9), 5, 3, pop_tol=0.0, init_plan=ROWS, k=1,
        silent=True, seed=3, max_split_attempts=4,
    )
    assert res.n_iterations == 5


def test_zero_label_moves_to_the_end():
    plan = normalize_init_plan([0, 0, 0, 1, 1, 1, 2, 2, 2], 9, 3)
    assert plan.tolist() == [3, 3, 3, 1, 1, 1, 2, 2, 2]


def test_init_plan_checks():
    with pytest.raises(StructuralError, match="one entry for each unit"):
        normalize_init_plan([1, 2], 9, 3)
    with pytest.raises(StructuralError, match="incorrect number of districts"):
        normalize_init_plan(ROWS, 9, 4)


def test_noncontiguous_counties_still_sample():
    # top-left and bottom-right corners share a county
    counties = ["a", "b", "b", "b", "b", "b", "b", "b", "a"]
    with pytest.warns(CountySplitWarning):
        res = sample_plans(
            grid_adj(3, 3), np.ones(9), 10, 3, pop_tol=0.0, init_plan=ROWS,
            counties=counties, k=2, silent=True, seed=4,
        )
    g = _graph()
    for j in range(res.n_iterations):
        validate_plan(g, res.plans[:, j], 3, 3, 3)


@pytest.mark.parametrize(
    "kw",
    [
        {"adj": None},
        {"total_pop": None},
        {"nsims": 0},
        {"compactness": -1.0},
        {"adapt_k_thresh": 1.2},
    ],
)
def test_argument_errors(kw):
    args = dict(adj=grid_adj(3, 3), total_pop=np.ones(9), nsims=5, ndists=3, pop_tol=0.0, init_plan=ROWS, silent=True)
    args.update(kw)
    with pytest.raises(ConfigError):
        sample_plans(**args)


def test_one_sided_adjacency_keeps_a_connected_county():
    # path 0-2-1 listed from one side only
    with warnings.catch_warnings():
        warnings.simplefilter("error", CountySplitWarning)
        res = sample_plans(
            [[2], [2], []], [1, 1, 1], 4, 3, pop_tol=0.0, init_plan=[1, 2, 3],
            counties=["a", "a", "a"], k=1, silent=True, seed=5,
        )
    assert res.counties.tolist() == [1, 1, 1]


def test_out_of_range_neighbor_is_structural():
    with pytest.raises(StructuralError):
        sample_plans([[1], [0, 7]], [1, 1], 2, 2, pop_tol=0.0, init_plan=[1, 2], silent=True)


def test_result_carries_run_inputs():
    counties = ["a", "b", "b", "b", "b", "b", "b", "b", "a"]
    with pytest.warns(CountySplitWarning):
        res = sample_plans(
            grid_adj(3, 3), np.ones(9), 6, 3, pop_tol=0.0, init_plan=ROWS,
            counties=counties, compactness=0.5, adapt_k_thresh=0.9, k=2, silent=True, seed=6,
        )
    # the two corners of county "a" come back as separate counties
    assert res.counties[0] != res.counties[8]
    assert len(np.unique(res.counties)) == 3
    assert res.total_pop.tolist() == [1] * 9
    assert res.nsims == 6
    assert res.compactness == 0.5
    assert res.adapt_k_thresh == 0.9
    assert res.algorithm == "mergesplit"
