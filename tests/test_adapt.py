import warnings

import numpy as np
import pytest

from mergesplit.algos.adapt import KController, estimate_initial_k, k_upper_limit, wilson_upper


def test_wilson_upper_bounds():
    assert wilson_upper(0, 0) == 1.0
    assert wilson_upper(50, 50) > 0.9
    assert wilson_upper(0, 50) < 0.1
    assert wilson_upper(10, 40) > 10 / 40


def test_k_upper_limit():
    assert k_upper_limit(100, 0.01) == 12
    assert k_upper_limit(5, 0.5) == 4
    assert k_upper_limit(2, 0.0) == 1


def test_fixed_k_never_moves():
    ctl = KController(k=3, fixed=True, interval=5)
    for i in range(100):
        assert ctl.observe(i % 2 == 0) == 3
    assert ctl.changes == []
    assert ctl.total_trials == 100
    assert ctl.acceptance_rate == 0.5


def test_high_acceptance_raises_k():
    ctl = KController(k=1, thresh=0.5, interval=10, k_max=5)
    for _ in range(9):
        assert ctl.observe(True) == 1
    assert ctl.observe(True) == 2
    assert ctl.changes == [(10, 2)]
    assert ctl.n_trials == 0


def test_k_capped_at_k_max():
    ctl = KController(k=2, thresh=0.0, interval=1, k_max=3)
    for _ in range(10):
        ctl.observe(True)
    assert ctl.k == 3


def test_low_acceptance_lowers_k():
    ctl = KController(k=3, accept_floor=0.5, interval=10)
    for _ in range(10):
        ctl.observe(False)
    assert ctl.k == 2
    for _ in range(30):
        ctl.observe(False)
    assert ctl.k == 1


def test_k_must_be_positive():
    with pytest.raises(ValueError):
        KController(k=0)


def test_pilot_estimate_in_range(make_grid):
    g = make_grid(4, 4)
    plan = np.repeat([1, 2, 3, 4], 4)
    rng = np.random.default_rng(8)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        k = estimate_initial_k(g, plan, 3, 5, 4.0, 0.975, rng, n_pilot=30)
    assert 1 <= k <= 15


def test_window_restarts_after_change_but_totals_accumulate():
    ctl = KController(k=1, thresh=0.5, interval=10, k_max=5)
    for _ in range(10):
        ctl.observe(True)
    for _ in range(4):
        ctl.observe(False)
    assert ctl.k == 2
    assert (ctl.n_trials, ctl.n_accept) == (4, 0)
    assert (ctl.total_trials, ctl.total_accept) == (14, 10)
    assert ctl.acceptance_rate == 10 / 14
