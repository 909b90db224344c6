import json

import numpy as np
import pandas as pd
import pytest

from mergesplit.algos.graph_store import GraphStore


def grid_adj(rows: int, cols: int) -> list[list[int]]:
    """Rook adjacency of a rows x cols grid, units numbered row by row."""
    adj: list[list[int]] = [[] for _ in range(rows * cols)]
    for r in range(rows):
        for c in range(cols):
            i = r * cols + c
            if c + 1 < cols:
                adj[i].append(i + 1)
                adj[i + 1].append(i)
            if r + 1 < rows:
                adj[i].append(i + cols)
                adj[i + cols].append(i)
    return adj


@pytest.fixture
def make_grid():
    def _make(rows: int, cols: int, pop=None, counties=None) -> GraphStore:
        n = rows * cols
        pop = np.ones(n, dtype=int) if pop is None else pop
        return GraphStore.from_adjacency(grid_adj(rows, cols), pop, counties)
    return _make


@pytest.fixture
def grid3(make_grid):
    return make_grid(3, 3)


@pytest.fixture
def rows_plan3():
    # 3x3 grid, one district per row
    return np.array([1, 1, 1, 2, 2, 2, 3, 3, 3])


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def pack_dir(tmp_path):
    # 2x2 grid: u0 u1 / u2 u3, attributes written out of order
    ids = ["u0", "u1", "u2", "u3"]
    attrs = pd.DataFrame(
        {
            "unit_id": ["u3", "u1", "u0", "u2"],
            "pop": [40, 20, 10, 30],
            "county": ["x", "y", "x", "y"],
            "bvap": [4.0, None, 1.0, 3.0],
            "inc": [0, 1, 1, 0],
            "cd": ["2.0", "12", "12", "2"],
        }
    )
    attrs.to_csv(tmp_path / "attributes.csv", index=False)
    (tmp_path / "id_to_idx.json").write_text(json.dumps({u: i for i, u in enumerate(ids)}))
    adjacency = {"u0": ["u1", "u2"], "u1": ["u0", "u3"], "u2": ["u0", "u3"], "u3": ["u1", "u2"]}
    (tmp_path / "adjacency.json").write_text(json.dumps(adjacency))
    return tmp_path
