"""
Comparative Analysis

Likelihood-ratio tests between the full and reduced RNA models fit by
``analyze_comparative``, and Wald tests of single RNA coefficients.

The DNA model is shared by both RNA models, so the DNA likelihood
cancels and the LRT statistic is ``2 * (LL_rna_full - LL_rna_reduced)``,
compared to a chi-squared distribution with as many degrees of freedom
as extra coefficients in the full model.
"""

import logging
from typing import Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from ..config import settings
from .container import MpraObject
from .design import INTERCEPT, coefficient_name, factor_levels
from .exceptions import ConfigurationError
from .fitting import FittedModel
from .multitest import adjust_fdr, significant

logger = logging.getLogger(__name__)


def _resolve_pair(full, reduced):
    if isinstance(full, MpraObject):
        if full.model is None or full.reduced_model is None:
            raise ConfigurationError("No comparative fit; run analyze_comparative first")
        return full.model, full.reduced_model
    if isinstance(full, FittedModel) and isinstance(reduced, FittedModel):
        return full, reduced
    raise ConfigurationError(
        "test_lrt expects an MpraObject or a pair of FittedModel (full, reduced)"
    )


def test_lrt(
    full: Union[MpraObject, FittedModel],
    reduced: Optional[FittedModel] = None,
) -> pd.DataFrame:
    """
    Per-enhancer likelihood-ratio test of the full vs. reduced RNA model.

    Args:
        full: Container fit by analyze_comparative, or the full FittedModel
        reduced: The reduced FittedModel (when ``full`` is a FittedModel)

    Returns:
        DataFrame indexed by enhancer with ``statistic``, ``df``, ``pval``,
        ``fdr``, ``status`` and, for a single extra coefficient, ``logFC``
    """
    full_model, reduced_model = _resolve_pair(full, reduced)

    if not full_model.enhancers.equals(reduced_model.enhancers):
        raise ConfigurationError("Full and reduced models cover different enhancers")

    extra = [c for c in full_model.rna_design.columns if c not in reduced_model.rna_design.columns]
    if len(extra) != full_model.n_rna_params - reduced_model.n_rna_params:
        raise ConfigurationError(
            f"Reduced model {reduced_model.rna_formula} is not nested in {full_model.rna_formula}"
        )
    df = len(extra)
    if df < 1:
        raise ConfigurationError("Full model has no extra coefficients over the reduced model")

    ll_full = full_model.log_likelihood("rna")
    ll_reduced = reduced_model.log_likelihood("rna")
    ok = (full_model.converged & reduced_model.converged).to_numpy()

    statistic = np.where(ok, np.maximum(2 * (ll_full - ll_reduced).to_numpy(), 0.0), np.nan)
    pval = stats.chi2.sf(statistic, df)

    result = pd.DataFrame(
        {
            "statistic": statistic,
            "df": df,
            "pval": pval,
            "fdr": adjust_fdr(pval),
        },
        index=full_model.enhancers,
    )

    if df == 1:
        coefs = full_model.coefficients("rna")
        result["logFC"] = np.where(ok, coefs[extra[0]].to_numpy(), np.nan)

    result["status"] = np.where(ok, "converged", "failed")

    logger.info(
        f"LRT {full_model.rna_formula} vs {reduced_model.rna_formula}: "
        f"{int(ok.sum())} tested, df={df}, "
        f"{int(significant(result).sum())} at FDR < {settings.fdr_threshold}"
    )
    return result


test_lrt.__test__ = False


def test_coefficient(
    model: Union[MpraObject, FittedModel],
    factor: str,
    level=None,
) -> pd.DataFrame:
    """
    Wald test of one RNA coefficient (``level`` vs. the baseline level).

    Args:
        model: Fitted container or FittedModel
        factor: RNA design factor
        level: Non-baseline level of ``factor``; defaults to the only
            non-baseline level when the factor has two levels

    Returns:
        DataFrame indexed by enhancer with ``logFC``, ``se``, ``statistic``,
        ``pval`` and ``fdr``
    """
    if isinstance(model, MpraObject):
        if model.model is None:
            raise ConfigurationError("No fitted model; run analyze_quantification or analyze_comparative first")
        model = model.model

    if factor not in model.rna_formula.factors:
        raise ConfigurationError(f"Factor '{factor}' is not part of the RNA design {model.rna_formula}")

    levels = factor_levels(model.rna_annot, factor)
    if level is None:
        if len(levels) != 2:
            raise ConfigurationError(
                f"Factor '{factor}' has {len(levels)} levels; specify which level to test"
            )
        level = levels[1]
    if level not in levels[1:]:
        raise ConfigurationError(
            f"Level {level!r} is not a non-baseline level of '{factor}' (levels: {levels})"
        )

    name = coefficient_name(factor, level)
    if name == INTERCEPT or name not in model.rna_design.columns:
        raise ConfigurationError(f"Coefficient {name} not found in the RNA design")

    log_fc = model.coefficients("rna")[name].to_numpy()
    se = model.std_errors("rna")[name].to_numpy()

    with np.errstate(divide="ignore", invalid="ignore"):
        wald = log_fc / se
    pval = 2 * stats.norm.sf(np.abs(wald))

    result = pd.DataFrame(
        {
            "logFC": log_fc,
            "se": se,
            "statistic": wald,
            "pval": pval,
            "fdr": adjust_fdr(pval),
        },
        index=model.enhancers,
    )

    logger.info(
        f"Wald test of {name}: {int(np.isfinite(pval).sum())} enhancers tested, "
        f"{int(significant(result).sum())} at FDR < {settings.fdr_threshold}"
    )
    return result


test_coefficient.__test__ = False
