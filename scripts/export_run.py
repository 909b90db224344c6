from pathlib import Path
import json
import numpy as np
import pandas as pd

from mergesplit.algos.chain import MergeSplitResult
from mergesplit.algos.graph_store import GraphStore, contiguity, district_pops
from mergesplit.viz.trace import plot_chain_trace, plot_plan


def export_run(
    pack,
    graph: GraphStore,
    result: MergeSplitResult,
    run_dir: Path,
    title: str,
    ndists: int,
    meta: dict | None = None,
):
    run_dir.mkdir(parents=True, exist_ok=True)

    # ---- Plans: one row per unit, one column per draw ----
    np.save(run_dir / "plans.npy", result.plans)
    plans_df = pd.DataFrame(
        result.plans,
        index=pd.Index(pack.ids, name="unit_id"),
        columns=[f"draw_{i}" for i in range(result.plans.shape[1])],
    )
    plans_df.to_csv(run_dir / "plans.csv")

    # ---- Per-draw diagnostics ----
    pd.DataFrame(
        {
            "accepted": result.accept_decisions.astype(int),
            "energy": result.energies,
            "k": result.k_history,
            "county_splits_created": result.county_splits_created,
        }
    ).rename_axis("draw").to_csv(run_dir / "mh_decisions.csv")

    # ---- Final plan district stats ----
    final = result.plans[:, -1]
    pops = district_pops(final, graph.pop, ndists)
    district_stats = pd.DataFrame(
        {
            "district": np.arange(1, ndists + 1),
            "pop": pops,
            "n_units": np.bincount(final, minlength=ndists + 1)[1:],
            "contiguous": contiguity(graph, final, ndists),
        }
    )
    district_stats.to_csv(run_dir / "district_stats.csv", index=False)

    summary = {
        "title": title,
        "n_draws": int(result.plans.shape[1]),
        "n_units": int(result.plans.shape[0]),
        "acceptance_rate": float(result.acceptance_rate),
        "n_non_moves": int(result.n_non_moves),
        "k_final": int(result.k_history[-1]) if len(result.k_history) else None,
        "k_changes": [list(c) for c in result.k_changes],
        "energy_mean": float(np.mean(result.energies)) if len(result.energies) else None,
        "completed": bool(result.completed),
        **(meta or {}),
    }
    (run_dir / "summary.json").write_text(json.dumps(summary, indent=2))

    # ---- PNG previews ----
    plot_chain_trace(result, run_dir / "trace.png", title=title)
    if pack.shapes is not None:
        plot_plan(pack.shapes, final, run_dir / "map.png", title=title)

    print(f"✅ Exported run to: {run_dir}")
    print(f"   - plans.npy / plans.csv ({result.plans.shape[1]} draws)")
    print(f"   - mh_decisions.csv, district_stats.csv, summary.json")
    print(f"   - trace.png{' + map.png' if pack.shapes is not None else ''}")
