from __future__ import annotations
import numpy as np
import pandas as pd


def plan_from_attributes_column(
    attrs: pd.DataFrame,
    column: str,
    *,
    coerce_int: bool = True,
) -> tuple[np.ndarray, dict]:
    """
    Use `column` of a pack's attributes (already in idx order) as a district
    assignment and remap unique values -> [1..K].

    Returns:
      plan: np.ndarray (N,) ints in [1..K]
      value_to_label: dict mapping column district value -> label int
    """
    if column not in attrs.columns:
        raise KeyError(f"attributes.csv missing '{column}'. Available: {list(attrs.columns)[:50]} ...")

    values = attrs[column].copy()

    values = values.replace("", np.nan)
    if values.isna().any():
        missing = int(values.isna().sum())
        raise ValueError(f"{missing} rows have missing {column}. Fix data or pack build.")

    if coerce_int:
        # common cases: "17", 17, "17.0"
        values = values.astype(str).str.strip()
        values = values.str.replace(r"\.0$", "", regex=True)
        values = values.astype(int)

    uniq = sorted(pd.unique(values))
    value_to_label = {v: i + 1 for i, v in enumerate(uniq)}

    plan = np.array([value_to_label[v] for v in values], dtype=np.int64)
    return plan, value_to_label
