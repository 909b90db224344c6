from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from mergesplit.errors import ConfigError


# ----------------------------
# Config
# ----------------------------
@dataclass
class MergeSplitConfig:
    ndists: int
    n_iterations: int
    pop_target: float
    pop_min: float
    pop_max: float

    compactness: float = 1.0

    # k = 0 -> estimate k from pilot trees, then adapt online
    adapt_k_thresh: float = 0.975
    k: int = 0
    adapt_interval: int = 50
    accept_floor: float = 0.01
    n_pilot: Optional[int] = None

    # fresh tree + cut per attempt; 1 keeps the proposal kernel exact
    max_split_attempts: int = 1

    verbosity: int = 1  # 0 silent, 1 summary, 3 verbose

    def __post_init__(self):
        if self.ndists is None or int(self.ndists) < 2:
            raise ConfigError(f"ndists must be at least 2, got {self.ndists!r}")
        if self.n_iterations is None or int(self.n_iterations) < 1:
            raise ConfigError(f"n_iterations must be positive, got {self.n_iterations!r}")
        if self.compactness < 0:
            raise ConfigError("Compactness parameter must be non-negative")
        if not 0.0 <= self.adapt_k_thresh <= 1.0:
            raise ConfigError("`adapt_k_thresh` parameter must lie in [0, 1].")
        if self.k < 0:
            raise ConfigError(f"k must be non-negative, got {self.k}")
        if self.adapt_interval < 1:
            raise ConfigError("adapt_interval must be positive")
        if not 0.0 <= self.accept_floor < 1.0:
            raise ConfigError("accept_floor must lie in [0, 1)")
        if self.max_split_attempts < 1:
            raise ConfigError("max_split_attempts must be at least 1")
        if self.n_pilot is not None and self.n_pilot < 1:
            raise ConfigError("n_pilot must be positive when given")
        if self.pop_target <= 0:
            raise ConfigError("target district population must be positive")
        if not (0 <= self.pop_min <= self.pop_target <= self.pop_max):
            raise ConfigError(
                f"population bounds must satisfy 0 <= pop_min <= target <= pop_max, "
                f"got ({self.pop_min}, {self.pop_target}, {self.pop_max})"
            )
        self.ndists = int(self.ndists)
        self.n_iterations = int(self.n_iterations)
        self.k = int(self.k)

    @property
    def adaptive(self) -> bool:
        return self.k == 0

    @property
    def pop_tol(self) -> float:
        return (self.pop_max - self.pop_target) / self.pop_target


def verbosity_level(verbose: bool = True, silent: bool = False) -> int:
    if silent:
        return 0
    return 3 if verbose else 1


def pop_bounds(total_pop: float, ndists: int, pop_tol: float) -> tuple[float, float, float]:
    """(lower, target, upper) district population bounds."""
    if pop_tol < 0:
        raise ConfigError(f"pop_tol must be non-negative, got {pop_tol}")
    target = float(total_pop) / ndists
    return target * (1 - pop_tol), target, target * (1 + pop_tol)


def params_from_cfg(cfg: dict, total_pop: float) -> tuple[MergeSplitConfig, Optional[int]]:
    """
    Build a MergeSplitConfig from a parsed YAML config.

    Reads the `run` section (ndists, nsims, pop_tol, seed, verbose/silent) and
    the optional `mergesplit` section. Returns (config, seed). The chain runs
    nsims + 1 iterations so the seed column can be dropped afterwards.
    """
    run_cfg = cfg.get("run", {}) or {}
    ms_cfg = cfg.get("mergesplit", {}) or {}

    for key in ("ndists", "nsims"):
        if key not in run_cfg:
            raise ConfigError(f"Please provide run.{key} in the config.")

    ndists = int(run_cfg["ndists"])
    nsims = int(run_cfg["nsims"])
    if nsims < 1:
        raise ConfigError("`nsims` must be positive.")
    pop_tol = float(run_cfg.get("pop_tol", 0.01))
    lower, target, upper = pop_bounds(total_pop, ndists, pop_tol)

    k = ms_cfg.get("k")
    n_pilot = ms_cfg.get("n_pilot")

    p = MergeSplitConfig(
        ndists=ndists,
        n_iterations=nsims + 1,
        pop_target=target,
        pop_min=lower,
        pop_max=upper,
        compactness=float(ms_cfg.get("compactness", 1.0)),
        adapt_k_thresh=float(ms_cfg.get("adapt_k_thresh", 0.975)),
        k=int(k) if k is not None else 0,
        adapt_interval=int(ms_cfg.get("adapt_interval", 50)),
        accept_floor=float(ms_cfg.get("accept_floor", 0.01)),
        n_pilot=int(n_pilot) if n_pilot is not None else None,
        max_split_attempts=int(ms_cfg.get("max_split_attempts", 1)),
        verbosity=verbosity_level(
            bool(run_cfg.get("verbose", True)), bool(run_cfg.get("silent", False))
        ),
    )
    seed = run_cfg.get("seed")
    return p, (int(seed) if seed is not None else None)
