"""
MPRA data container.

Holds the paired DNA and RNA count matrices of an MPRA experiment with
their column annotations, the negative-control enhancers, the estimated
depth factors and, once fitted, the per-enhancer models.
"""

import logging
import warnings
from typing import Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd

from .exceptions import (
    AllZeroRowDropped,
    ConfigurationError,
    validate_annotation,
    validate_count_matrix,
)

logger = logging.getLogger(__name__)


def _as_count_frame(counts, name: str) -> pd.DataFrame:
    """Coerce a DataFrame or 2-D array into a validated count DataFrame."""
    if isinstance(counts, pd.DataFrame):
        frame = counts.copy()
    else:
        values = np.asarray(counts)
        if values.ndim != 2:
            raise ConfigurationError(f"{name} must be a 2-D matrix, got {values.ndim} dimensions")
        frame = pd.DataFrame(values, index=[f"enh_{i}" for i in range(values.shape[0])])

    validate_count_matrix(frame.to_numpy(), name)

    if frame.columns.has_duplicates:
        raise ConfigurationError(f"{name} has duplicated column names")

    frame.index = frame.index.astype(str)
    if frame.index.has_duplicates:
        dupes = frame.index[frame.index.duplicated()].unique().tolist()
        raise ConfigurationError(f"{name} has duplicated enhancer ids: {dupes[:5]}")

    return frame.astype(np.int64)


def _as_annotation(annot, counts: pd.DataFrame, name: str) -> pd.DataFrame:
    if annot is None:
        return pd.DataFrame(index=counts.columns)
    validate_annotation(annot, counts.shape[1], name)
    annot = annot.copy()
    annot.index = counts.columns
    return annot


class MpraObject:
    """
    Container for an MPRA experiment.

    Rows are enhancers, columns are observations (barcode x batch x
    condition...). DNA and RNA columns are matched by position.
    """

    def __init__(
        self,
        dna_counts: Union[pd.DataFrame, np.ndarray],
        rna_counts: Union[pd.DataFrame, np.ndarray],
        dna_annot: Optional[pd.DataFrame] = None,
        rna_annot: Optional[pd.DataFrame] = None,
        controls: Optional[Iterable] = None,
    ):
        """
        Args:
            dna_counts: DNA count matrix (enhancers x observations)
            rna_counts: RNA count matrix (enhancers x observations)
            dna_annot: DNA column annotation, one row per column
            rna_annot: RNA column annotation, one row per column
            controls: Negative-control enhancer ids or a boolean mask over rows
        """
        dna = _as_count_frame(dna_counts, "DNA counts")
        rna = _as_count_frame(rna_counts, "RNA counts")

        if dna.shape[1] != rna.shape[1]:
            raise ConfigurationError(
                f"DNA and RNA matrices must have the same number of columns "
                f"({dna.shape[1]} != {rna.shape[1]})"
            )

        if set(dna.index) != set(rna.index):
            missing = sorted(set(dna.index) ^ set(rna.index))
            raise ConfigurationError(
                f"DNA and RNA matrices contain different enhancers, e.g. {missing[:5]}"
            )
        rna = rna.loc[dna.index]

        dna_annot = _as_annotation(dna_annot, dna, "DNA annotation")
        rna_annot = _as_annotation(rna_annot, rna, "RNA annotation")

        control_mask = self._resolve_controls(controls, dna.index)

        # Drop enhancers without any DNA or RNA counts
        empty = (dna.sum(axis=1) == 0) & (rna.sum(axis=1) == 0)
        self.dropped_enhancers = dna.index[empty.to_numpy()]
        if len(self.dropped_enhancers) > 0:
            message = (
                f"Dropped {len(self.dropped_enhancers)} enhancer(s) with all-zero DNA and RNA counts: "
                f"{list(self.dropped_enhancers[:5])}"
            )
            logger.warning(message)
            warnings.warn(message, AllZeroRowDropped, stacklevel=2)

        keep = ~empty.to_numpy()
        self._dna = dna.loc[keep]
        self._rna = rna.loc[keep]
        self._dna_annot = dna_annot
        self._rna_annot = rna_annot
        self._control_mask = control_mask.loc[keep]

        self._dna_depth: Optional[pd.Series] = None
        self._rna_depth: Optional[pd.Series] = None

        # Set by the model fitter
        self.model = None
        self.reduced_model = None

        logger.info(
            f"Created MpraObject with {self.n_enhancers} enhancers, "
            f"{self.n_observations} observations, {int(self._control_mask.sum())} controls"
        )

    @staticmethod
    def _resolve_controls(controls, index: pd.Index) -> pd.Series:
        """Turn a control specification into a boolean Series over ``index``."""
        if controls is None:
            return pd.Series(False, index=index)

        if isinstance(controls, pd.Series) and controls.dtype == bool:
            mask = controls.copy()
            mask.index = mask.index.astype(str)
            unknown = mask.index.difference(index)
            if len(unknown) > 0:
                raise ConfigurationError(f"Unknown control enhancers: {list(unknown[:5])}")
            return mask.reindex(index, fill_value=False)

        values = np.asarray(list(controls))
        if values.dtype == bool:
            if len(values) != len(index):
                raise ConfigurationError(
                    f"Control mask has length {len(values)} but there are {len(index)} enhancers"
                )
            return pd.Series(values, index=index)

        ids = pd.Index([str(v) for v in values])
        unknown = ids.difference(index)
        if len(unknown) > 0:
            raise ConfigurationError(f"Unknown control enhancers: {list(unknown[:5])}")
        return pd.Series(index.isin(ids), index=index)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def dna_counts(self) -> pd.DataFrame:
        return self._dna

    @property
    def rna_counts(self) -> pd.DataFrame:
        return self._rna

    @property
    def dna_annot(self) -> pd.DataFrame:
        return self._dna_annot

    @property
    def rna_annot(self) -> pd.DataFrame:
        return self._rna_annot

    @property
    def enhancers(self) -> pd.Index:
        return self._dna.index

    @property
    def n_enhancers(self) -> int:
        return self._dna.shape[0]

    @property
    def n_observations(self) -> int:
        return self._dna.shape[1]

    @property
    def control_mask(self) -> pd.Series:
        return self._control_mask

    @property
    def controls(self) -> pd.Index:
        return self.enhancers[self._control_mask.to_numpy()]

    @property
    def dna_depth(self) -> Optional[pd.Series]:
        return self._dna_depth

    @property
    def rna_depth(self) -> Optional[pd.Series]:
        return self._rna_depth

    @property
    def has_depth_factors(self) -> bool:
        return self._dna_depth is not None and self._rna_depth is not None

    def counts(self, which: str) -> pd.DataFrame:
        """Count matrix for ``which`` in {"dna", "rna"}."""
        if which == "dna":
            return self._dna
        if which == "rna":
            return self._rna
        raise ConfigurationError(f"Unknown matrix '{which}', expected 'dna' or 'rna'")

    def annotation(self, which: str) -> pd.DataFrame:
        """Column annotation for ``which`` in {"dna", "rna"}."""
        if which == "dna":
            return self._dna_annot
        if which == "rna":
            return self._rna_annot
        raise ConfigurationError(f"Unknown matrix '{which}', expected 'dna' or 'rna'")

    # ------------------------------------------------------------------
    # Depth factors
    # ------------------------------------------------------------------

    def set_depth_factors(self, dna=None, rna=None) -> "MpraObject":
        """
        Attach depth factors to one or both matrices.

        Args:
            dna: Per-column DNA depth factors (array-like or Series)
            rna: Per-column RNA depth factors (array-like or Series)

        Returns:
            self
        """
        if dna is not None:
            self._dna_depth = self._validate_depth(dna, self._dna, "DNA")
        if rna is not None:
            self._rna_depth = self._validate_depth(rna, self._rna, "RNA")
        return self

    @staticmethod
    def _validate_depth(factors, counts: pd.DataFrame, name: str) -> pd.Series:
        values = np.asarray(factors, dtype=float)
        if values.ndim != 1 or len(values) != counts.shape[1]:
            raise ConfigurationError(
                f"{name} depth factors must have one value per column "
                f"({counts.shape[1]}), got shape {values.shape}"
            )
        if not np.all(np.isfinite(values)) or np.any(values <= 0):
            raise ConfigurationError(f"{name} depth factors must be finite and positive")
        return pd.Series(values, index=counts.columns, name=f"{name.lower()}_depth")

    def normalized_counts(self, which: str) -> pd.DataFrame:
        """Counts divided by the per-column depth factors."""
        depth = self._dna_depth if which == "dna" else self._rna_depth
        counts = self.counts(which)
        if depth is None:
            raise ConfigurationError(f"No {which.upper()} depth factors; run estimate_depth_factors first")
        return counts.div(depth, axis=1)

    def summary(self) -> Dict:
        """Dimensions, controls and fit state."""
        return {
            "n_enhancers": self.n_enhancers,
            "n_observations": self.n_observations,
            "n_controls": int(self._control_mask.sum()),
            "n_dropped": len(self.dropped_enhancers),
            "dna_factors": list(self._dna_annot.columns),
            "rna_factors": list(self._rna_annot.columns),
            "has_depth_factors": self.has_depth_factors,
            "fitted": self.model is not None,
            "comparative": self.reduced_model is not None,
        }

    def __repr__(self) -> str:
        return (
            f"MpraObject(n_enhancers={self.n_enhancers}, n_observations={self.n_observations}, "
            f"n_controls={int(self._control_mask.sum())})"
        )
