import numpy as np
import pytest

from conftest import grid_adj
from mergesplit.algos.counties import (
    county_components,
    county_ids,
    max_county_pieces,
    prepare_counties,
)
from mergesplit.errors import ConfigError, CountySplitWarning


def test_county_ids_first_appearance():
    assert county_ids(["b", "a", "b", "c"]).tolist() == [1, 2, 1, 3]


def test_no_counties_means_one_county():
    assert prepare_counties(grid_adj(2, 2)).tolist() == [1, 1, 1, 1]


def test_contiguous_counties_pass_through():
    # left column / right column of a 2x2 grid
    out = prepare_counties(grid_adj(2, 2), ["w", "e", "w", "e"])
    assert out.tolist() == [1, 2, 1, 2]


def test_noncontiguous_county_is_relabeled_with_warning():
    # the two ends of a 1x3 path share a county
    adj = grid_adj(1, 3)
    assert max_county_pieces(adj, np.array([1, 2, 1])) == 2
    with pytest.warns(CountySplitWarning, match="not continuous"):
        out = prepare_counties(adj, [7, 8, 7])
    assert len(set(out.tolist())) == 3


def test_county_components_numbering():
    adj = grid_adj(1, 4)
    assert county_components(adj, np.array([1, 1, 2, 1])).tolist() == [1, 1, 2, 3]


def test_missing_county_rejected():
    with pytest.raises(ConfigError, match="missing"):
        prepare_counties(grid_adj(1, 3), [1, None, 2])


def test_county_length_mismatch():
    with pytest.raises(ConfigError):
        prepare_counties(grid_adj(1, 3), [1, 2])
