from __future__ import annotations

import math

import numpy as np


def log_acceptance(e_old: float, e_new: float, log_ratio: float) -> float:
    """log(R * exp(E_old - E_new)), capped at 0."""
    la = log_ratio + (e_old - e_new)
    if math.isnan(la):
        return -math.inf
    return min(0.0, la)


def acceptance_probability(e_old: float, e_new: float, log_ratio: float) -> float:
    """min(1, R * exp(E_old - E_new)) with R = exp(log_ratio); always in [0, 1]."""
    la = log_acceptance(e_old, e_new, log_ratio)
    if la == -math.inf:
        return 0.0
    return math.exp(la)


def metropolis_accept(
    e_old: float,
    e_new: float,
    log_ratio: float,
    rng: np.random.Generator,
) -> tuple[bool, float]:
    """
    Metropolis-Hastings decision. One uniform is drawn on every call so the
    random stream does not depend on the outcome.
    """
    p = acceptance_probability(e_old, e_new, log_ratio)
    u = rng.random()
    return bool(u < p), p
