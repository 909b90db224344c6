from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import json
import numpy as np
import pandas as pd
import geopandas as gpd

from mergesplit.algos.counties import prepare_counties
from mergesplit.algos.graph_store import GraphStore, build_adj_idx


@dataclass
class MapPack:
    pack_dir: Path
    ids: list[str]
    id_to_idx: dict[str, int]
    pop: np.ndarray
    counties: Optional[np.ndarray]      # raw county labels, if the pack has them
    minority_pop: Optional[np.ndarray]
    incumbents: list[int]               # unit indices flagged as incumbent homes
    adj_ids: dict[str, list[str]]
    adj: list[list[int]]  # neighbors as indices
    attrs: pd.DataFrame   # attributes.csv in idx order
    shapes: Optional[gpd.GeoDataFrame] = None  # unit_id + geometry

    def to_graph_store(self) -> GraphStore:
        graph = GraphStore.from_adjacency(self.adj, self.pop)
        return graph.with_counties(prepare_counties(graph.adj, self.counties))


def load_map_pack(
    pack_dir: str | Path,
    *,
    pop_col: str = "pop",
    county_col: Optional[str] = "county",
    minority_col: Optional[str] = None,
    incumbent_col: Optional[str] = None,
    load_shapes: bool = True,
) -> MapPack:
    pack_dir = Path(pack_dir)

    attrs_path = pack_dir / "attributes.csv"
    if not attrs_path.exists():
        raise FileNotFoundError(f"Missing {attrs_path}")
    attrs = pd.read_csv(attrs_path)
    attrs["unit_id"] = attrs["unit_id"].astype(str)

    id_to_idx = json.loads((pack_dir / "id_to_idx.json").read_text())
    id_to_idx = {str(k): int(v) for k, v in id_to_idx.items()}

    adj_ids = json.loads((pack_dir / "adjacency.json").read_text())

    # Ensure attrs order matches id_to_idx order
    ids = [None] * len(id_to_idx)
    for uid, i in id_to_idx.items():
        ids[i] = uid

    attrs = attrs.set_index("unit_id").loc[ids].reset_index()

    if pop_col not in attrs.columns:
        raise KeyError(f"attributes.csv missing '{pop_col}'. Available: {list(attrs.columns)[:50]} ...")
    if attrs[pop_col].isna().any():
        raise ValueError(f"{int(attrs[pop_col].isna().sum())} rows have missing {pop_col}.")
    pop = attrs[pop_col].to_numpy(dtype=float).round().astype(np.int64)

    counties = None
    if county_col and county_col in attrs.columns:
        counties = attrs[county_col].to_numpy()

    minority_pop = None
    if minority_col:
        if minority_col not in attrs.columns:
            raise KeyError(f"attributes.csv missing '{minority_col}'.")
        minority_pop = attrs[minority_col].fillna(0).to_numpy(dtype=float)

    incumbents: list[int] = []
    if incumbent_col:
        if incumbent_col not in attrs.columns:
            raise KeyError(f"attributes.csv missing '{incumbent_col}'.")
        incumbents = np.where(attrs[incumbent_col].fillna(0).astype(bool).to_numpy())[0].tolist()

    # Build adjacency list in idx space
    adj = build_adj_idx(ids, adj_ids)

    shapes = None
    shapes_path = pack_dir / "shapes.geojson"
    if load_shapes and shapes_path.exists():
        shapes = gpd.read_file(shapes_path)
        shapes["unit_id"] = shapes["unit_id"].astype(str)
        shapes = shapes.set_index("unit_id").loc[ids].reset_index()

    return MapPack(
        pack_dir=pack_dir,
        ids=ids,
        id_to_idx=id_to_idx,
        pop=pop,
        counties=counties,
        minority_pop=minority_pop,
        incumbents=incumbents,
        adj_ids=adj_ids,
        adj=adj,
        attrs=attrs,
        shapes=shapes,
    )
