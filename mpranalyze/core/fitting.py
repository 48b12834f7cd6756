"""
Nested DNA/RNA Model Fitting

For every enhancer two count GLMs are fit, in two stages:

1. DNA model: ``log E[dna_j] = log d_j + X_dna_j . b_dna``. The fitted
   ``exp(X_dna_j . b_dna)`` is the estimated plasmid copy number of
   observation j.
2. RNA model: ``log E[rna_j] = log r_j + log copy_j + X_rna_j . b_rna``,
   i.e. the RNA coefficients describe transcription per plasmid copy.

Comparative analysis additionally fits a reduced RNA model per enhancer
that serves as the null hypothesis of a likelihood-ratio test.

Fits are independent per enhancer and run on a worker pool. A fit that
does not converge is recorded on that enhancer's status and never aborts
the batch.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from .container import MpraObject
from .depth import estimate_depth_factors
from .design import DesignFormula, build_design_matrix, parse_design
from .distributions import CountDistribution, DistributionFit, get_distribution
from .exceptions import ConfigurationError, ConvergenceFailure
from ..workers.executor import run_parallel

logger = logging.getLogger(__name__)

DesignSpec = Union[str, Sequence[str], DesignFormula, None]


class FitStatus(str, Enum):
    """Per-enhancer fit status."""

    CONVERGED = "converged"
    FAILED = "failed"


@dataclass(frozen=True)
class ModelFit:
    """A single fitted GLM (DNA or RNA stage) for one enhancer."""

    stage: str
    coefficients: pd.Series
    std_errors: pd.Series
    dispersion: float
    log_likelihood: float
    n_obs: int
    converged: bool
    message: str = ""

    @property
    def n_params(self) -> int:
        return len(self.coefficients)

    def linear_predictor(self, design: pd.DataFrame) -> np.ndarray:
        """``design @ coefficients`` (no offset)."""
        return design[self.coefficients.index].to_numpy() @ self.coefficients.to_numpy()

    def copy_number(self, design: pd.DataFrame) -> np.ndarray:
        """Count-scale estimate per observation, without depth."""
        return np.exp(self.linear_predictor(design))

    @classmethod
    def from_distribution_fit(
        cls, stage: str, fit: DistributionFit, columns: pd.Index, n_obs: int
    ) -> "ModelFit":
        return cls(
            stage=stage,
            coefficients=pd.Series(fit.coefficients, index=columns, name=stage),
            std_errors=pd.Series(fit.std_errors, index=columns, name=stage),
            dispersion=fit.dispersion,
            log_likelihood=fit.log_likelihood,
            n_obs=n_obs,
            converged=fit.converged,
            message=fit.message,
        )


@dataclass(frozen=True)
class EnhancerFit:
    """DNA and RNA fits of one enhancer, with its status."""

    enhancer_id: str
    dna: Optional[ModelFit]
    rna: Optional[ModelFit]
    status: FitStatus
    error: str = ""

    @property
    def converged(self) -> bool:
        return self.status == FitStatus.CONVERGED


@dataclass(frozen=True)
class FittedModel:
    """
    Fitted nested models for all enhancers of a container.

    Keyed by enhancer id; rows follow the container order.
    """

    dna_formula: DesignFormula
    rna_formula: DesignFormula
    dna_design: pd.DataFrame
    rna_design: pd.DataFrame
    fits: Dict[str, EnhancerFit]
    distribution: str
    rna_annot: pd.DataFrame = field(default_factory=pd.DataFrame)

    def __len__(self) -> int:
        return len(self.fits)

    def __getitem__(self, enhancer_id: str) -> EnhancerFit:
        return self.fits[enhancer_id]

    @property
    def enhancers(self) -> pd.Index:
        return pd.Index(list(self.fits.keys()), name="enhancer")

    @property
    def n_rna_params(self) -> int:
        return self.rna_design.shape[1]

    @property
    def n_failed(self) -> int:
        return int((~self.converged).sum())

    @property
    def converged(self) -> pd.Series:
        return pd.Series([f.converged for f in self.fits.values()], index=self.enhancers, name="converged")

    def status(self) -> pd.Series:
        return pd.Series([f.status.value for f in self.fits.values()], index=self.enhancers, name="status")

    def errors(self) -> pd.Series:
        return pd.Series([f.error for f in self.fits.values()], index=self.enhancers, name="error")

    def _stage_frame(self, stage: str, attr: str, include_failed: bool) -> pd.DataFrame:
        design = self.dna_design if stage == "dna" else self.rna_design
        rows = []
        for fit in self.fits.values():
            model = getattr(fit, stage)
            if model is None or (not fit.converged and not include_failed):
                rows.append(pd.Series(np.nan, index=design.columns))
            else:
                rows.append(getattr(model, attr))
        frame = pd.DataFrame([r.to_numpy() for r in rows], index=self.enhancers, columns=design.columns)
        return frame

    def coefficients(self, stage: str = "rna", include_failed: bool = False) -> pd.DataFrame:
        """Coefficient table (enhancers x design columns) on the log scale."""
        return self._stage_frame(stage, "coefficients", include_failed)

    def std_errors(self, stage: str = "rna", include_failed: bool = False) -> pd.DataFrame:
        """Standard errors of the coefficients."""
        return self._stage_frame(stage, "std_errors", include_failed)

    def log_likelihood(self, stage: str = "rna") -> pd.Series:
        """Per-enhancer log-likelihood (NaN for failed fits)."""
        values = []
        for fit in self.fits.values():
            model = getattr(fit, stage)
            values.append(model.log_likelihood if fit.converged and model is not None else np.nan)
        return pd.Series(values, index=self.enhancers, name=f"{stage}_loglik")

    def dispersion(self, stage: str = "rna") -> pd.Series:
        """Per-enhancer dispersion estimate (NaN for failed fits)."""
        values = []
        for fit in self.fits.values():
            model = getattr(fit, stage)
            values.append(model.dispersion if fit.converged and model is not None else np.nan)
        return pd.Series(values, index=self.enhancers, name=f"{stage}_dispersion")

    def to_frame(self) -> pd.DataFrame:
        """Summary table: status, log-likelihoods and dispersions."""
        return pd.concat(
            [
                self.status(),
                self.log_likelihood("dna"),
                self.log_likelihood("rna"),
                self.dispersion("dna"),
                self.dispersion("rna"),
                self.errors(),
            ],
            axis=1,
        )


# ---------------------------------------------------------------------------
# Stage fitting
# ---------------------------------------------------------------------------

def _fit_stage(
    enhancer_id: str,
    stage: str,
    distribution: CountDistribution,
    design: pd.DataFrame,
    observed: np.ndarray,
    offset: np.ndarray,
    partial: Dict[str, ModelFit],
    start: Optional[np.ndarray] = None,
) -> ModelFit:
    """Fit one GLM; raise ConvergenceFailure (with partial fits) on failure."""
    try:
        raw = distribution.fit(design.to_numpy(), observed, offset, start=start)
    except (np.linalg.LinAlgError, FloatingPointError, ValueError, PerfectSeparationError) as e:
        raise ConvergenceFailure(enhancer_id, stage, str(e), partial=partial)

    model = ModelFit.from_distribution_fit(stage, raw, design.columns, len(observed))
    partial[stage] = model

    if not model.converged:
        raise ConvergenceFailure(enhancer_id, stage, model.message or "did not converge", partial=partial)

    return model


@dataclass
class _FitContext:
    """Read-only inputs shared by all per-enhancer tasks."""

    enhancers: pd.Index
    dna_values: np.ndarray
    rna_values: np.ndarray
    dna_design: pd.DataFrame
    rna_design: pd.DataFrame
    log_dna_depth: np.ndarray
    log_rna_depth: np.ndarray
    distribution: CountDistribution
    reduced_design: Optional[pd.DataFrame] = None

    def fit_dna(self, i: int, partial: Dict[str, ModelFit]) -> ModelFit:
        return _fit_stage(
            self.enhancers[i], "dna", self.distribution, self.dna_design,
            self.dna_values[i], self.log_dna_depth, partial,
        )

    def rna_offset(self, dna_fit: ModelFit) -> np.ndarray:
        return self.log_rna_depth + dna_fit.linear_predictor(self.dna_design)

    def fit_rna(
        self,
        i: int,
        dna_fit: ModelFit,
        partial: Dict[str, ModelFit],
        design: Optional[pd.DataFrame] = None,
        stage: str = "rna",
        start: Optional[np.ndarray] = None,
    ) -> ModelFit:
        design = self.rna_design if design is None else design
        return _fit_stage(
            self.enhancers[i], stage, self.distribution, design,
            self.rna_values[i], self.rna_offset(dna_fit), partial, start=start,
        )


def _prepare_context(
    obj: MpraObject,
    dna_formula: DesignFormula,
    rna_formula: DesignFormula,
    distribution: CountDistribution,
    reduced_formula: Optional[DesignFormula] = None,
) -> _FitContext:
    if not obj.has_depth_factors:
        logger.warning("Depth factors not set; estimating per-column upper-quartile factors")
        estimate_depth_factors(obj, which_lib="both", method="upper_quartile")

    dna_design = build_design_matrix(dna_formula, obj.dna_annot, "DNA annotation")
    rna_design = build_design_matrix(rna_formula, obj.rna_annot, "RNA annotation")
    reduced_design = None
    if reduced_formula is not None:
        reduced_design = build_design_matrix(reduced_formula, obj.rna_annot, "RNA annotation")

    return _FitContext(
        enhancers=obj.enhancers,
        dna_values=obj.dna_counts.to_numpy(dtype=float),
        rna_values=obj.rna_counts.to_numpy(dtype=float),
        dna_design=dna_design,
        rna_design=rna_design,
        log_dna_depth=np.log(obj.dna_depth.to_numpy()),
        log_rna_depth=np.log(obj.rna_depth.to_numpy()),
        distribution=distribution,
        reduced_design=reduced_design,
    )


def _failed_fit(enhancer_id: str, error: ConvergenceFailure, stage: str = "rna") -> EnhancerFit:
    return EnhancerFit(
        enhancer_id=enhancer_id,
        dna=error.partial.get("dna"),
        rna=error.partial.get(stage),
        status=FitStatus.FAILED,
        error=str(error),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def analyze_quantification(
    obj: MpraObject,
    dna_design: DesignSpec,
    rna_design: DesignSpec,
    n_jobs: Optional[int] = None,
    distribution: Union[str, CountDistribution, None] = None,
) -> MpraObject:
    """
    Fit the nested DNA/RNA models for quantification.

    Args:
        obj: MPRA data container
        dna_design: DNA design, e.g. ``"~ barcode + batch + condition"``
        rna_design: RNA design, e.g. ``"~ condition"``
        n_jobs: Worker count (defaults to settings.n_jobs)
        distribution: Count distribution name or instance (default NB)

    Returns:
        The container with ``model`` set
    """
    dna_formula = parse_design(dna_design)
    rna_formula = parse_design(rna_design)
    dist = get_distribution(distribution)
    ctx = _prepare_context(obj, dna_formula, rna_formula, dist)

    logger.info(
        f"Fitting quantification models for {obj.n_enhancers} enhancers: "
        f"DNA {dna_formula}, RNA {rna_formula} ({dist.name})"
    )

    def task(i: int) -> EnhancerFit:
        partial: Dict[str, ModelFit] = {}
        dna_fit = ctx.fit_dna(i, partial)
        rna_fit = ctx.fit_rna(i, dna_fit, partial)
        return EnhancerFit(ctx.enhancers[i], dna_fit, rna_fit, FitStatus.CONVERGED)

    fits = run_parallel(
        task,
        list(range(obj.n_enhancers)),
        n_jobs=n_jobs,
        isolate=(ConvergenceFailure,),
        on_error=lambda i, e: _failed_fit(ctx.enhancers[i], e),
        label="enhancer fits",
    )

    obj.model = FittedModel(
        dna_formula=dna_formula,
        rna_formula=rna_formula,
        dna_design=ctx.dna_design,
        rna_design=ctx.rna_design,
        fits={f.enhancer_id: f for f in fits},
        distribution=dist.name,
        rna_annot=obj.rna_annot,
    )
    obj.reduced_model = None

    logger.info(f"Quantification fits done: {len(fits) - obj.model.n_failed} converged, {obj.model.n_failed} failed")
    return obj


def analyze_comparative(
    obj: MpraObject,
    dna_design: DesignSpec,
    rna_design: DesignSpec,
    reduced_design: DesignSpec = "~ 1",
    n_jobs: Optional[int] = None,
    distribution: Union[str, CountDistribution, None] = None,
) -> MpraObject:
    """
    Fit full and reduced nested models for comparative analysis.

    The DNA model is fit once per enhancer and shared by both RNA models.
    The reduced RNA design must use a subset of the full RNA factors; the
    full model is started from the reduced optimum.

    Args:
        obj: MPRA data container
        dna_design: DNA design
        rna_design: Full RNA design, e.g. ``"~ condition"``
        reduced_design: Reduced RNA design (null hypothesis), e.g. ``"~ 1"``
        n_jobs: Worker count (defaults to settings.n_jobs)
        distribution: Count distribution name or instance (default NB)

    Returns:
        The container with ``model`` (full) and ``reduced_model`` set
    """
    dna_formula = parse_design(dna_design)
    rna_formula = parse_design(rna_design)
    reduced_formula = parse_design(reduced_design)

    if not rna_formula.contains(reduced_formula):
        raise ConfigurationError(
            f"Reduced design {reduced_formula} must be nested in the RNA design {rna_formula}"
        )
    if set(reduced_formula.factors) == set(rna_formula.factors):
        raise ConfigurationError(
            f"Reduced design {reduced_formula} is identical to the RNA design; nothing to test"
        )

    dist = get_distribution(distribution)
    ctx = _prepare_context(obj, dna_formula, rna_formula, dist, reduced_formula)
    positions = [ctx.rna_design.columns.get_loc(c) for c in ctx.reduced_design.columns]

    logger.info(
        f"Fitting comparative models for {obj.n_enhancers} enhancers: "
        f"DNA {dna_formula}, RNA {rna_formula} vs {reduced_formula} ({dist.name})"
    )

    def task(i: int):
        eid = ctx.enhancers[i]
        partial: Dict[str, ModelFit] = {}
        dna_fit = ctx.fit_dna(i, partial)
        reduced_fit = ctx.fit_rna(i, dna_fit, partial, design=ctx.reduced_design, stage="reduced")
        start = dist.extend_start(
            reduced_fit.coefficients.to_numpy(), reduced_fit.dispersion, ctx.rna_design.shape[1], positions
        )
        full_fit = ctx.fit_rna(i, dna_fit, partial, start=start)
        return (
            EnhancerFit(eid, dna_fit, full_fit, FitStatus.CONVERGED),
            EnhancerFit(eid, dna_fit, reduced_fit, FitStatus.CONVERGED),
        )

    def on_error(i: int, e: ConvergenceFailure):
        eid = ctx.enhancers[i]
        return _failed_fit(eid, e, "rna"), _failed_fit(eid, e, "reduced")

    pairs = run_parallel(
        task,
        list(range(obj.n_enhancers)),
        n_jobs=n_jobs,
        isolate=(ConvergenceFailure,),
        on_error=on_error,
        label="enhancer fits",
    )

    obj.model = FittedModel(
        dna_formula=dna_formula,
        rna_formula=rna_formula,
        dna_design=ctx.dna_design,
        rna_design=ctx.rna_design,
        fits={full.enhancer_id: full for full, _ in pairs},
        distribution=dist.name,
        rna_annot=obj.rna_annot,
    )
    obj.reduced_model = FittedModel(
        dna_formula=dna_formula,
        rna_formula=reduced_formula,
        dna_design=ctx.dna_design,
        rna_design=ctx.reduced_design,
        fits={reduced.enhancer_id: reduced for _, reduced in pairs},
        distribution=dist.name,
        rna_annot=obj.rna_annot,
    )

    logger.info(
        f"Comparative fits done: {len(pairs) - obj.model.n_failed} converged, {obj.model.n_failed} failed"
    )
    return obj
