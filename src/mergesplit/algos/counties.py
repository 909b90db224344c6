from __future__ import annotations

import warnings
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from mergesplit.algos.graph_store import bfs_component
from mergesplit.errors import ConfigError, CountySplitWarning


def county_ids(counties: Sequence) -> np.ndarray:
    """Map arbitrary county labels to 1..n in order of first appearance."""
    codes, _ = pd.factorize(pd.Series(list(counties)), sort=False)
    return codes.astype(np.int64) + 1


def county_components(adj: Sequence[Sequence[int]], counties: np.ndarray) -> np.ndarray:
    """
    Label each unit with a connected-component id of its own county.

    Returns (V,) ints; units of the same county in different pieces get
    different labels. Labels are 1..n_pieces, numbered as pieces are found.
    """
    n = len(adj)
    piece = np.zeros(n, dtype=np.int64)
    next_id = 1
    for start in range(n):
        if piece[start]:
            continue
        in_county = counties == counties[start]
        for u in bfs_component(adj, start, in_county):
            piece[u] = next_id
        next_id += 1
    return piece


def max_county_pieces(adj: Sequence[Sequence[int]], counties: np.ndarray) -> int:
    piece = county_components(adj, counties)
    per_county = pd.Series(piece).groupby(pd.Series(counties)).nunique()
    return int(per_county.max()) if len(per_county) else 0


def relabel_counties(adj: Sequence[Sequence[int]], counties: np.ndarray) -> np.ndarray:
    """Split every non-contiguous county into one county per connected piece."""
    return county_ids(county_components(adj, county_ids(counties)))


def prepare_counties(
    adj: Sequence[Sequence[int]],
    counties: Optional[Sequence] = None,
) -> np.ndarray:
    """
    Validate a county vector and repair it if a county is not contiguous.

    Missing counties mean one county covering every unit. Non-contiguous
    counties emit a CountySplitWarning and are relabeled so that each piece
    becomes its own county (more splits are then expected).
    """
    n = len(adj)
    if counties is None:
        return np.ones(n, dtype=np.int64)

    s = pd.Series(list(counties))
    if len(s) != n:
        raise ConfigError(f"County vector has {len(s)} entries for {n} units.")
    if s.isna().any():
        raise ConfigError("County vector must not contain missing values.")

    ids = county_ids(s)
    if max_county_pieces(adj, ids) > 1:
        warnings.warn(
            "Counties were not continuous. Additional county splits are expected.",
            CountySplitWarning,
            stacklevel=2,
        )
        ids = relabel_counties(adj, ids)
    return ids
