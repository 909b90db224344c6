from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path

import geopandas as gpd
import yaml


def unit_attributes(
    gdf: gpd.GeoDataFrame,
    unit_id_col: str,
    pop_col: str = "TOTPOP",
    county_col: str | None = None,
    extra_cols: list[str] | None = None,
) -> gpd.GeoDataFrame:
    """
    Columns carried into attributes.csv:
      unit_id, pop, county (if configured) and any extra columns
      (minority population, incumbent flags, enacted plan, ...).
    """
    cols = list(gdf.columns)
    if pop_col not in cols:
        candidates = [c for c in cols if "POP" in c.upper() or c.upper().startswith("P00")]
        raise KeyError(
            f"pop_col='{pop_col}' not found in unit file.\n"
            f"Available columns with likely population signals: {candidates[:50]}\n"
            f"First columns: {cols[:80]}"
        )

    out = gpd.GeoDataFrame({"unit_id": gdf[unit_id_col].astype(str)}, geometry=gdf.geometry)
    out["pop"] = gdf[pop_col].fillna(0).round().astype(int)

    if county_col:
        if county_col not in cols:
            raise KeyError(f"county_col='{county_col}' not found. First columns: {cols[:80]}")
        out["county"] = gdf[county_col].astype(str)

    missing = [c for c in (extra_cols or []) if c not in cols]
    if missing:
        print(f"⚠️ extra columns not in unit file, skipped: {missing}")
    for c in extra_cols or []:
        if c in cols:
            out[c] = gdf[c]

    print(f"✅ Units: {len(out)} | total pop: {int(out['pop'].sum())}")
    return out


def build_adjacency_by_id(
    gdf: gpd.GeoDataFrame,
    unit_id_col: str,
    eps: float = 1.0,
    use_boundary: bool = True,
) -> dict[str, list[str]]:
    """
    Build adjacency using a tolerant geometric test: two units are neighbors
    when their (buffered) boundaries intersect.
    """
    gdf = gdf[[unit_id_col, "geometry"]].copy()
    gdf[unit_id_col] = gdf[unit_id_col].astype(str)
    gdf = gdf.reset_index(drop=True)

    sindex = gdf.sindex
    ids = gdf[unit_id_col].tolist()
    geoms = gdf.geometry.values

    neighbors: dict[str, set[str]] = {uid: set() for uid in ids}

    for i, geom_i in enumerate(geoms):
        if i % 500 == 0:
            print(f"Adjacency: {i}/{len(geoms)}")

        if geom_i is None or geom_i.is_empty:
            continue

        edge_i = geom_i.boundary.buffer(eps) if use_boundary else geom_i.buffer(eps)
        for j in sindex.intersection(edge_i.bounds):
            j = int(j)
            if i >= j:
                continue
            geom_j = geoms[j]
            if geom_j is None or geom_j.is_empty:
                continue

            edge_j = geom_j.boundary.buffer(eps) if use_boundary else geom_j.buffer(eps)
            if edge_i.intersects(edge_j):
                neighbors[ids[i]].add(ids[j])
                neighbors[ids[j]].add(ids[i])

    isolated = [uid for uid, nb in neighbors.items() if not nb]
    if isolated:
        print(f"⚠️ {len(isolated)} units have no neighbors (islands?): {isolated[:10]}")

    return {k: sorted(v) for k, v in neighbors.items()}


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="config.yaml")
    args = ap.parse_args()

    cfg = yaml.safe_load(open(args.config, "r"))
    data = cfg.get("data", {}) or {}

    shp = Path(data["unit_shapefile_path"]).expanduser()
    unit_id_col = data["unit_id_col"]
    epsg = int(data.get("crs_epsg", 3857))

    assets_dir_raw = data.get("map_pack_dir") or (cfg.get("paths", {}) or {}).get("assets_dir")
    if not assets_dir_raw:
        raise KeyError(
            "Config missing the pack directory. Provide one of:\n"
            "  data.map_pack_dir: 'assets/il2020_vtds'\n"
            "  paths.assets_dir: 'assets/il2020_vtds'"
        )
    out_dir = Path(assets_dir_raw).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)

    layer = data.get("unit_layer")
    if layer:
        print(f"Reading GPKG layer: {layer}")
        gdf = gpd.read_file(shp, layer=layer)
    else:
        gdf = gpd.read_file(shp)

    gdf = gdf.to_crs(epsg=epsg)
    gdf["geometry"] = gdf["geometry"].buffer(0)

    if unit_id_col not in gdf.columns:
        raise ValueError(
            f"unit_id_col='{unit_id_col}' not found. Available columns: {list(gdf.columns)[:50]} ..."
        )

    units = unit_attributes(
        gdf,
        unit_id_col=unit_id_col,
        pop_col=data.get("source_pop_col", "TOTPOP"),
        county_col=data.get("source_county_col"),
        extra_cols=data.get("extra_attr_cols", []) or [],
    )

    adjacency = build_adjacency_by_id(units, unit_id_col="unit_id", eps=float(data.get("adjacency_eps", 1.0)))

    ids = units["unit_id"].tolist()
    id_to_idx = {uid: i for i, uid in enumerate(ids)}
    idx_to_id = {i: uid for uid, i in id_to_idx.items()}

    units[["unit_id", "geometry"]].to_file(out_dir / "shapes.geojson", driver="GeoJSON")
    units.drop(columns="geometry").to_csv(out_dir / "attributes.csv", index=False)

    (out_dir / "adjacency.json").write_text(json.dumps(adjacency))
    (out_dir / "id_to_idx.json").write_text(json.dumps(id_to_idx))
    (out_dir / "idx_to_id.json").write_text(json.dumps(idx_to_id))

    meta = {
        "built_at": datetime.now().isoformat(),
        "source_shapefile": str(shp),
        "unit_id_col": unit_id_col,
        "epsg": epsg,
        "n_units": len(units),
        "n_edges": sum(len(v) for v in adjacency.values()) // 2,
    }
    (out_dir / "meta.json").write_text(json.dumps(meta, indent=2))

    print(f"✅ Built map pack at: {out_dir}")
    print(f"Units: {len(units)} | adjacency keys: {len(adjacency)} | shapes: shapes.geojson")


if __name__ == "__main__":
    main()
