"""
Design formulas for the DNA and RNA models.

Supports the minimal formula grammar used throughout MPRAnalyze:

- ``"~ barcode + batch + condition"``: an ordered set of annotation factors
- ``"~ 1"``: intercept only (no covariates)

Formulas are parsed once into a ``DesignFormula`` and resolved against an
annotation table when the model is built. Every factor is treated as a
categorical variable with treatment coding: the first level (categorical
order, otherwise sorted order) is the baseline absorbed by the intercept.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, MissingFactorError

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"

_FACTOR_NAME = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")


@dataclass(frozen=True)
class DesignFormula:
    """Parsed design formula: an ordered tuple of annotation factor names."""

    factors: Tuple[str, ...] = ()

    @property
    def is_intercept_only(self) -> bool:
        return len(self.factors) == 0

    def __str__(self) -> str:
        if self.is_intercept_only:
            return "~ 1"
        return "~ " + " + ".join(self.factors)

    def contains(self, other: "DesignFormula") -> bool:
        """True if every factor of ``other`` also appears in this formula."""
        return set(other.factors).issubset(self.factors)


def parse_design(design: Union[str, Sequence[str], DesignFormula, None]) -> DesignFormula:
    """
    Parse a design specification into a ``DesignFormula``.

    Args:
        design: Formula string (``"~ a + b"``, ``"~ 1"``), a sequence of
            factor names, an existing ``DesignFormula`` or None (intercept only)

    Returns:
        DesignFormula
    """
    if isinstance(design, DesignFormula):
        return design

    if design is None:
        return DesignFormula()

    if isinstance(design, str):
        text = design.strip()
        if not text.startswith("~"):
            raise ConfigurationError(f"Design formula must start with '~': {design!r}")
        terms = [t.strip() for t in text[1:].split("+")]
        if any(t == "" for t in terms):
            raise ConfigurationError(f"Empty term in design formula: {design!r}")
    else:
        terms = [str(t).strip() for t in design]

    factors: List[str] = []
    for term in terms:
        if term == "1":
            continue
        if term in ("0", "-1"):
            raise ConfigurationError("Designs without an intercept are not supported")
        if not _FACTOR_NAME.match(term):
            raise ConfigurationError(f"Invalid factor name in design: {term!r}")
        if term not in factors:
            factors.append(term)

    return DesignFormula(tuple(factors))


def factor_levels(annotation: pd.DataFrame, factor: str) -> List:
    """Ordered levels of an annotation factor (baseline first)."""
    column = annotation[factor]
    if isinstance(column.dtype, pd.CategoricalDtype):
        present = set(column.dropna())
        return [lvl for lvl in column.cat.categories if lvl in present]
    return sorted(column.dropna().unique().tolist(), key=lambda v: (str(type(v)), v))


def coefficient_name(factor: str, level) -> str:
    """Column name of the treatment-coded indicator for ``factor == level``."""
    return f"{factor}[T.{level}]"


def build_design_matrix(
    formula: DesignFormula,
    annotation: pd.DataFrame,
    table_name: str = "annotation",
) -> pd.DataFrame:
    """
    Build a treatment-coded design matrix from an annotation table.

    Args:
        formula: Parsed design formula
        annotation: Column annotation (one row per observation)
        table_name: Name used in error messages

    Returns:
        DataFrame (observations x coefficients), intercept first
    """
    for factor in formula.factors:
        if factor not in annotation.columns:
            raise MissingFactorError(factor, table_name, available=list(annotation.columns))
        if annotation[factor].isna().any():
            raise ConfigurationError(f"Factor '{factor}' in {table_name} has missing values")

    columns: Dict[str, np.ndarray] = {INTERCEPT: np.ones(len(annotation))}

    for factor in formula.factors:
        values = annotation[factor].to_numpy()
        levels = factor_levels(annotation, factor)
        if len(levels) < 2:
            logger.warning(f"Factor '{factor}' in {table_name} has a single level; it adds no coefficients")
        for level in levels[1:]:
            columns[coefficient_name(factor, level)] = (values == level).astype(float)

    matrix = pd.DataFrame(columns, index=annotation.index)

    rank = np.linalg.matrix_rank(matrix.to_numpy())
    if rank < matrix.shape[1]:
        raise ConfigurationError(
            f"Design {formula} is rank deficient for {table_name}: "
            f"{matrix.shape[1]} coefficients but rank {rank}"
        )

    return matrix
