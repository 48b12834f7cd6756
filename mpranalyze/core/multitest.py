"""
Multiple testing correction.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import false_discovery_control

from ..config import settings

logger = logging.getLogger(__name__)


def adjust_fdr(pvalues, method: str = "bh") -> np.ndarray:
    """
    FDR-adjusted q-values; NaN p-values stay NaN and are not counted.

    Args:
        pvalues: Array-like of p-values (may contain NaN)
        method: "bh" (Benjamini-Hochberg) or "by" (Benjamini-Yekutieli)

    Returns:
        Array of q-values, same shape as the input
    """
    if method not in ("bh", "by"):
        raise ValueError(f"Unknown FDR method: {method}. Expected 'bh' or 'by'")

    pvals = np.asarray(pvalues, dtype=float)
    qvals = np.full(pvals.shape, np.nan)

    tested = np.isfinite(pvals)
    if tested.any():
        qvals[tested] = false_discovery_control(np.clip(pvals[tested], 0.0, 1.0), method=method)

    return qvals


def adjust_fdr_series(pvalues: pd.Series, method: str = "bh") -> pd.Series:
    """``adjust_fdr`` keeping the Series index."""
    return pd.Series(adjust_fdr(pvalues.to_numpy(), method), index=pvalues.index)


def significant(result: pd.DataFrame, column: str = "fdr", threshold: Optional[float] = None) -> pd.Series:
    """
    Boolean mask of rows whose q-value is below the FDR threshold.

    Args:
        result: Test result table (e.g. from test_lrt or test_empirical)
        column: q-value column to threshold
        threshold: FDR level; defaults to settings.fdr_threshold

    Returns:
        Boolean Series indexed like ``result``; NaN q-values are False
    """
    if column not in result.columns:
        raise ValueError(f"Column '{column}' not found; available: {list(result.columns)}")
    threshold = settings.fdr_threshold if threshold is None else threshold
    if not 0 < threshold <= 1:
        raise ValueError(f"FDR threshold must be in (0, 1], got {threshold}")
    return (result[column] < threshold).rename("significant")
