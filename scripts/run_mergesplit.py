import argparse
import json
import yaml
from pathlib import Path
from datetime import datetime

import numpy as np

from mergesplit.data.map_pack import load_map_pack
from mergesplit.config import params_from_cfg
from mergesplit.algos.chain import run_merge_split
from mergesplit.algos.constraints import constraints_from_cfg
from mergesplit.algos.init_plan import sample_initial_plan
from mergesplit.algos.plan_from_column import plan_from_attributes_column
from mergesplit.algos.sampler import normalize_init_plan
from export_run import export_run

"""
Merge-split sampler over a map pack.

example usage from repo root:
python3 scripts/run_mergesplit.py --config config.yaml --state il --nsims 1000
"""


def _resolve_pack_dir(cfg: dict, state: str | None) -> Path:
    """
    Priority:
      1) --state with cfg.states.<state>.assets_dir
      2) data.map_pack_dir / paths.assets_dir
    """
    if state:
        scfg = (cfg.get("states", {}) or {}).get(state)
        if not scfg:
            raise KeyError(f"State '{state}' not found under cfg['states'].")
        assets_dir = scfg.get("assets_dir")
        if not assets_dir:
            raise KeyError(f"cfg.states.{state}.assets_dir missing.")
        return Path(assets_dir).expanduser().resolve()

    paths = cfg.get("paths", {}) or {}
    data = cfg.get("data", {}) or {}

    pack_dir_raw = data.get("map_pack_dir") or paths.get("assets_dir")
    if not pack_dir_raw:
        raise KeyError(
            "No map pack directory found. Provide one of:\n"
            "  --state <key> with states.<key>.assets_dir\n"
            "  data.map_pack_dir\n  paths.assets_dir"
        )
    return Path(pack_dir_raw).expanduser().resolve()


def _resolve_outputs_root(cfg: dict) -> Path:
    paths = cfg.get("paths", {}) or {}
    out_dir_raw = paths.get("out_dir")
    if out_dir_raw:
        return Path(out_dir_raw).expanduser().resolve()
    return Path("outputs").resolve()


def _update_latest_manifest(state_outputs_root: Path, key: str, folder_name: str):
    manifest_path = state_outputs_root / "latest.json"
    if manifest_path.exists():
        latest = json.loads(manifest_path.read_text())
    else:
        latest = {}
    latest[key] = folder_name
    manifest_path.write_text(json.dumps(latest, indent=2))
    print(f"Updated {manifest_path}")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--state", default=None, help="Use cfg.states.<state> for the pack and per-state run overrides")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--nsims", type=int, default=None, help="Override run.nsims")
    args = ap.parse_args()

    cfg = yaml.safe_load(open(args.config, "r"))

    pack_dir = _resolve_pack_dir(cfg, args.state)
    outputs_root = _resolve_outputs_root(cfg)

    state_key = args.state or (cfg.get("project", {}) or {}).get("default_state") or "default"
    state_outputs_root = outputs_root / state_key
    state_outputs_root.mkdir(parents=True, exist_ok=True)

    # per-state overrides of the run section
    cfg.setdefault("run", {})
    if args.state:
        scfg = (cfg.get("states", {}) or {}).get(args.state, {}) or {}
        cfg["run"].update(scfg.get("run", {}) or {})
    if args.nsims is not None:
        cfg["run"]["nsims"] = args.nsims

    data_cfg = cfg.get("data", {}) or {}
    pack = load_map_pack(
        pack_dir,
        pop_col=data_cfg.get("pop_col", "pop"),
        county_col=data_cfg.get("county_col", "county"),
        minority_col=data_cfg.get("minority_col"),
        incumbent_col=data_cfg.get("incumbent_col"),
    )
    graph = pack.to_graph_store()

    params, seed = params_from_cfg(cfg, graph.total_pop)
    if args.seed is not None:
        seed = args.seed
    rng = np.random.default_rng(seed)

    current = None
    current_col = data_cfg.get("current_plan_col")
    if current_col:
        current, _ = plan_from_attributes_column(pack.attrs, current_col)

    constraints = constraints_from_cfg(
        cfg,
        graph.n_units,
        minority_pop=pack.minority_pop,
        incumbents=pack.incumbents,
        current=current,
    )

    init_col = data_cfg.get("init_plan_col")
    if init_col:
        init_plan, _ = plan_from_attributes_column(pack.attrs, init_col)
        init_plan = normalize_init_plan(init_plan, graph.n_units, params.ndists)
    else:
        print("[mergesplit] No init_plan_col; drawing an initial plan from random spanning trees", flush=True)
        init_plan = sample_initial_plan(graph, params.ndists, params.pop_min, params.pop_max, rng)

    result = run_merge_split(graph, init_plan, params, constraints, rng).drop_seed()

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    folder_name = f"mergesplit_{run_id}"
    run_dir = state_outputs_root / folder_name

    export_run(
        pack=pack,
        graph=graph,
        result=result,
        run_dir=run_dir,
        title=f"Merge-split ({params.ndists} districts) [{state_key}]",
        ndists=params.ndists,
        meta={
            "seed": seed,
            "compactness": params.compactness,
            "pop_bounds": [params.pop_min, params.pop_target, params.pop_max],
            "constraints": constraints.describe(),
        },
    )

    _update_latest_manifest(state_outputs_root, "mergesplit", folder_name)
    print("Saved:", run_dir)


if __name__ == "__main__":
    main()
