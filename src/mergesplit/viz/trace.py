from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from mergesplit.algos.chain import MergeSplitResult


def rolling_acceptance(decisions: np.ndarray, window: int = 100) -> np.ndarray:
    s = pd.Series(decisions.astype(float))
    return s.rolling(window, min_periods=1).mean().to_numpy()


def plot_chain_trace(
    result: MergeSplitResult,
    out_path: Path,
    *,
    title: str = "Merge-split chain",
    window: int = 100,
    dpi: int = 140,
) -> Path:
    """Energy, rolling acceptance rate and k against iteration, stacked."""
    steps = np.arange(result.n_iterations)

    fig, axes = plt.subplots(3, 1, figsize=(9, 8), sharex=True)
    axes[0].plot(steps, result.energies, linewidth=0.8)
    axes[0].set_ylabel("energy")

    axes[1].plot(steps, rolling_acceptance(result.accept_decisions, window), linewidth=0.8, color="tab:green")
    axes[1].set_ylabel(f"acceptance ({window}-step)")
    axes[1].set_ylim(0, 1)

    axes[2].step(steps, result.k_history, where="post", color="tab:red")
    axes[2].set_ylabel("k")
    axes[2].set_xlabel("iteration")

    fig.suptitle(title)
    fig.tight_layout()
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def plot_plan(
    shapes: gpd.GeoDataFrame,
    plan: np.ndarray,
    out_path: Path,
    *,
    title: Optional[str] = None,
    dpi: int = 200,
) -> Path:
    if len(plan) != len(shapes):
        raise ValueError(f"plan length ({len(plan)}) != shapes length ({len(shapes)})")
    gdf = shapes.copy()
    gdf["district"] = np.asarray(plan).astype(int)

    fig, ax = plt.subplots(figsize=(10, 10))
    gdf.plot(column="district", cmap="tab20", linewidth=0.1, edgecolor="white", ax=ax)
    if title:
        ax.set_title(title)
    ax.axis("off")
    plt.tight_layout()
    out_path = Path(out_path)
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path
