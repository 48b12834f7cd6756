"""
Quantification Analysis

Transcription-rate ("alpha") estimates from the fitted RNA models, and
tests of each enhancer's statistic against the null distribution formed
by the negative-control enhancers:

- empirical: rank of the statistic within the control values
- z-score: standardized by the control mean and standard deviation
- MAD-score: standardized by the control median and (normal-scaled)
  median absolute deviation, robust to outlying controls

All three p-value families are FDR-corrected across every tested
enhancer, controls included.
"""

import logging
from typing import Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from .container import MpraObject
from .design import INTERCEPT, coefficient_name, factor_levels
from .exceptions import ConfigurationError
from .fitting import FittedModel
from .multitest import adjust_fdr_series

logger = logging.getLogger(__name__)


def _resolve_model(model: Union[MpraObject, FittedModel]) -> FittedModel:
    if isinstance(model, FittedModel):
        return model
    if isinstance(model, MpraObject):
        if model.model is None:
            raise ConfigurationError("No fitted model; run analyze_quantification first")
        return model.model
    raise ConfigurationError(f"Expected MpraObject or FittedModel, got {type(model).__name__}")


def get_alpha(
    model: Union[MpraObject, FittedModel],
    by_factor: Optional[str] = None,
    include_failed: bool = False,
) -> pd.DataFrame:
    """
    Transcription-rate estimates on the count scale.

    Args:
        model: Fitted container or FittedModel
        by_factor: RNA design factor to report one alpha per level of;
            None reports the baseline rate only
        include_failed: Report the last estimates of fits that did not
            converge instead of NaN

    Returns:
        DataFrame (enhancers x levels), or a single ``alpha`` column
    """
    fitted = _resolve_model(model)
    coefs = fitted.coefficients("rna", include_failed=include_failed)
    intercept = coefs[INTERCEPT]

    if by_factor is None:
        return pd.DataFrame({"alpha": np.exp(intercept)}, index=fitted.enhancers)

    if by_factor not in fitted.rna_formula.factors:
        raise ConfigurationError(
            f"Factor '{by_factor}' is not part of the RNA design {fitted.rna_formula}"
        )

    alpha = {}
    for k, level in enumerate(factor_levels(fitted.rna_annot, by_factor)):
        log_alpha = intercept
        if k > 0:
            log_alpha = intercept + coefs[coefficient_name(by_factor, level)]
        alpha[level] = np.exp(log_alpha)

    return pd.DataFrame(alpha, index=fitted.enhancers)


def _empirical_pvalues(values: np.ndarray, null: np.ndarray, two_sided: bool) -> np.ndarray:
    null = np.sort(null)
    n = len(null)
    upper = (n - np.searchsorted(null, values, side="left")) / n
    if not two_sided:
        return upper
    lower = np.searchsorted(null, values, side="right") / n
    return np.minimum(1.0, 2 * np.minimum(upper, lower))


def _normal_pvalues(scores: np.ndarray, two_sided: bool) -> np.ndarray:
    if two_sided:
        return 2 * stats.norm.sf(np.abs(scores))
    return stats.norm.sf(scores)


def test_empirical(
    obj: MpraObject,
    statistic: Union[pd.Series, np.ndarray],
    two_sided: bool = False,
) -> pd.DataFrame:
    """
    Test enhancer statistics against the negative-control null.

    Args:
        obj: Container holding the control set
        statistic: Per-enhancer statistic (e.g. an alpha column), as a
            Series indexed by enhancer or an array in container order
        two_sided: Test both tails instead of the upper tail only

    Returns:
        DataFrame indexed by enhancer with the statistic, z/MAD scores,
        the three p-value families and their FDR q-values
    """
    if isinstance(statistic, pd.DataFrame):
        if statistic.shape[1] != 1:
            raise ConfigurationError("statistic must be a single column")
        statistic = statistic.iloc[:, 0]

    if isinstance(statistic, pd.Series):
        values = statistic.reindex(obj.enhancers).astype(float)
    else:
        array = np.asarray(statistic, dtype=float)
        if array.shape != (obj.n_enhancers,):
            raise ConfigurationError(
                f"statistic has shape {array.shape}, expected ({obj.n_enhancers},)"
            )
        values = pd.Series(array, index=obj.enhancers)
    values.name = "statistic"

    finite = np.isfinite(values.to_numpy())
    null = values[obj.control_mask.to_numpy() & finite].to_numpy()
    if len(null) < 2:
        raise ConfigurationError(
            f"Need at least 2 control enhancers with a finite statistic, got {len(null)}"
        )

    center, spread = null.mean(), null.std(ddof=1)
    med = np.median(null)
    mad = stats.median_abs_deviation(null, scale="normal")

    logger.info(
        f"Empirical test: {int(finite.sum())} enhancers against {len(null)} controls "
        f"({'two' if two_sided else 'one'}-sided)"
    )

    x = values.to_numpy()
    if spread > 0:
        zscore = (x - center) / spread
    else:
        logger.warning("Control statistics are all equal; z-scores are undefined")
        zscore = np.full(x.shape, np.nan)
    if mad > 0:
        mad_score = (x - med) / mad
    else:
        logger.warning("Control statistics have zero MAD; MAD-scores are undefined")
        mad_score = np.full(x.shape, np.nan)

    result = pd.DataFrame(
        {
            "statistic": x,
            "zscore": zscore,
            "mad_score": mad_score,
            "pval_empirical": np.where(finite, _empirical_pvalues(x, null, two_sided), np.nan),
            "pval_zscore": _normal_pvalues(zscore, two_sided),
            "pval_mad": _normal_pvalues(mad_score, two_sided),
        },
        index=obj.enhancers,
    )

    for family in ("empirical", "zscore", "mad"):
        result[f"fdr_{family}"] = adjust_fdr_series(result[f"pval_{family}"])

    return result


test_empirical.__test__ = False
