import numpy as np
import pytest

from mergesplit.algos.graph_store import GraphStore, validate_plan
from mergesplit.algos.init_plan import sample_initial_plan
from mergesplit.errors import StructuralError


@pytest.mark.parametrize("rows,cols,ndists", [(3, 3, 3), (4, 4, 4), (2, 6, 3)])
def test_initial_plan_is_valid(make_grid, rng, rows, cols, ndists):
    g = make_grid(rows, cols)
    target = rows * cols / ndists
    plan = sample_initial_plan(g, ndists, target, target, rng)
    validate_plan(g, plan, ndists, target, target)


def test_initial_plan_with_tolerance(make_grid, rng):
    pop = np.arange(1, 17)
    g = make_grid(4, 4, pop=pop)
    target = pop.sum() / 2
    plan = sample_initial_plan(g, 2, target * 0.9, target * 1.1, rng)
    validate_plan(g, plan, 2, target * 0.9, target * 1.1)


def test_impossible_totals(grid3, rng):
    with pytest.raises(StructuralError):
        sample_initial_plan(grid3, 2, 5, 5, rng)


def test_gives_up_when_no_balanced_split(rng):
    # a star: no way to cut it into two connected halves of 2
    adj = [[1, 2, 3], [0], [0], [0]]
    g = GraphStore.from_adjacency(adj, [1, 1, 1, 1])
    with pytest.raises(StructuralError, match="initial plan"):
        sample_initial_plan(g, 2, 2, 2, rng, max_tries=3, max_restarts=2)
