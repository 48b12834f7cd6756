"""
Depth Factor Estimation

Per-column normalization factors for the DNA and RNA count matrices.
Columns are grouped into libraries by the distinct combinations of the
chosen annotation factors (e.g. batch x condition); every column of a
library receives the same factor.

Methods:
- upper_quartile: 75th percentile of the library's non-zero counts
- total_sum: mean column total of the library
- size_factor: DESeq-style median of ratios to a pseudo-reference
"""

import logging
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import settings, DepthMethods
from .container import MpraObject
from .exceptions import ConfigurationError, DegenerateLibraryError, MissingFactorError

logger = logging.getLogger(__name__)

_TARGETS = {"dna": ("dna",), "rna": ("rna",), "both": ("dna", "rna")}


def library_groups(
    annotation: pd.DataFrame,
    lib_factors: Optional[Sequence[str]] = None,
    table_name: str = "annotation",
) -> pd.Series:
    """
    Assign every column to a library.

    Args:
        annotation: Column annotation (one row per column)
        lib_factors: Factors whose value combinations define libraries;
            None or empty makes each column its own library
        table_name: Name used in error messages

    Returns:
        Series (indexed like the annotation) of library labels
    """
    if not lib_factors:
        return pd.Series([str(c) for c in annotation.index], index=annotation.index, name="library")

    for factor in lib_factors:
        if factor not in annotation.columns:
            raise MissingFactorError(factor, table_name, available=list(annotation.columns))

    values = annotation[list(lib_factors)].astype(str)
    codes = values.groupby(list(lib_factors), sort=False, dropna=False).ngroup()
    labels = values.agg(":".join, axis=1)
    if labels.nunique() != codes.nunique():
        # Levels containing ":" make joined labels ambiguous
        labels = values.apply(lambda row: repr(tuple(row)), axis=1)
    return labels.rename("library")


def _library_totals(counts: pd.DataFrame, groups: pd.Series) -> Dict[str, np.ndarray]:
    """Per-library count blocks, keyed by library label in first-seen order."""
    blocks = {}
    for library in pd.unique(groups.to_numpy()):
        cols = groups.index[groups.to_numpy() == library]
        blocks[library] = counts[cols].to_numpy(dtype=float)
    return blocks


def _total_sum_factors(blocks: Dict[str, np.ndarray]) -> Dict[str, float]:
    return {lib: block.sum() / block.shape[1] for lib, block in blocks.items()}


def _upper_quartile_factors(blocks: Dict[str, np.ndarray]) -> Dict[str, float]:
    factors = {}
    for lib, block in blocks.items():
        nonzero = block[block > 0]
        factors[lib] = float(np.percentile(nonzero, 75))
    return factors


def _size_factor_factors(blocks: Dict[str, np.ndarray], which: str) -> Dict[str, float]:
    """DESeq median of ratios on library-level (per-column averaged) profiles."""
    profiles = np.column_stack([block.mean(axis=1) for block in blocks.values()])

    usable = np.all(profiles > 0, axis=1)
    if not usable.any():
        raise DegenerateLibraryError(
            "all", which, reason="no enhancers with positive counts in every library"
        )

    log_profiles = np.log(profiles[usable])
    log_geo_means = log_profiles.mean(axis=1)

    factors = {}
    for k, lib in enumerate(blocks):
        factors[lib] = float(np.exp(np.median(log_profiles[:, k] - log_geo_means)))
    return factors


def compute_depth_factors(
    counts: pd.DataFrame,
    groups: pd.Series,
    method: str = "upper_quartile",
    which: str = "counts",
) -> pd.Series:
    """
    Compute per-column depth factors for one count matrix.

    Args:
        counts: Count matrix (enhancers x columns)
        groups: Library label per column (see ``library_groups``)
        method: upper_quartile, total_sum or size_factor (aliases accepted)
        which: Matrix name used in error messages

    Returns:
        Series of depth factors indexed by column
    """
    name = DepthMethods.resolve(method)
    if name is None:
        raise ConfigurationError(
            f"Unsupported depth method: {method}. Supported: {list(DepthMethods.SUPPORTED_METHODS)}"
        )

    blocks = _library_totals(counts, groups)

    for lib, block in blocks.items():
        if block.sum() <= 0:
            raise DegenerateLibraryError(lib, which)

    if name == "total_sum":
        lib_factors = _total_sum_factors(blocks)
    elif name == "upper_quartile":
        lib_factors = _upper_quartile_factors(blocks)
    else:
        lib_factors = _size_factor_factors(blocks, which)

    values = np.array(list(lib_factors.values()))
    if name != "size_factor":
        values = values / values.mean()
    lib_factors = dict(zip(lib_factors.keys(), values))

    for lib, value in lib_factors.items():
        if not np.isfinite(value) or value <= 0:
            raise DegenerateLibraryError(lib, which, reason=f"non-positive depth factor ({value})")

    depth = groups.map(lib_factors).astype(float)
    depth.name = f"{which}_depth"

    logger.debug(f"{which} depth factors ({name}): {len(lib_factors)} libraries")
    return depth


def estimate_depth_factors(
    obj: MpraObject,
    lib_factors: Optional[Union[str, Sequence[str]]] = None,
    which_lib: str = "both",
    method: Optional[str] = None,
) -> MpraObject:
    """
    Estimate depth factors and attach them to the container.

    Args:
        obj: MPRA data container
        lib_factors: Annotation factor(s) defining libraries
        which_lib: "dna", "rna" or "both"; with "both" each matrix is
            normalized separately using the same library grouping
        method: Estimation method (defaults to settings.default_depth_method)

    Returns:
        The same container, with depth factors set
    """
    if which_lib not in _TARGETS:
        raise ConfigurationError(f"Invalid which_lib: {which_lib!r}. Expected one of {list(_TARGETS)}")

    method = method or settings.default_depth_method
    if isinstance(lib_factors, str):
        lib_factors = [lib_factors]

    logger.info(
        f"Estimating {which_lib} depth factors with {method} "
        f"(libraries: {', '.join(lib_factors) if lib_factors else 'per column'})"
    )

    estimated = {}
    for which in _TARGETS[which_lib]:
        groups = library_groups(
            obj.annotation(which), lib_factors, table_name=f"{which.upper()} annotation"
        )
        estimated[which] = compute_depth_factors(
            obj.counts(which), groups, method=method, which=which.upper()
        )

    obj.set_depth_factors(dna=estimated.get("dna"), rna=estimated.get("rna"))
    return obj


def library_summary(obj: MpraObject, lib_factors: Optional[List[str]] = None, which: str = "dna") -> pd.DataFrame:
    """Per-library column count, total counts and depth factor."""
    groups = library_groups(obj.annotation(which), lib_factors, table_name=f"{which.upper()} annotation")
    counts = obj.counts(which)
    depth = obj.dna_depth if which == "dna" else obj.rna_depth

    rows = []
    for library in pd.unique(groups.to_numpy()):
        cols = groups.index[groups.to_numpy() == library]
        rows.append({
            "library": library,
            "n_columns": len(cols),
            "total_counts": int(counts[cols].to_numpy().sum()),
            "depth_factor": float(depth[cols].iloc[0]) if depth is not None else np.nan,
        })
    return pd.DataFrame(rows).set_index("library")
