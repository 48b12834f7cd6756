"""
Unit tests for multiple testing correction.
"""

import numpy as np
import pandas as pd
import pytest

from mpranalyze.config import settings
from mpranalyze.core.multitest import adjust_fdr, adjust_fdr_series, significant


class TestAdjustFdr:
    """Tests for Benjamini-Hochberg / Yekutieli adjustment."""

    def test_known_values(self):
        pvals = np.array([0.01, 0.04, 0.03, 0.2])
        # BH: p * n / rank, made monotone
        expected = np.array([0.04, 0.0533333, 0.0533333, 0.2])
        assert np.allclose(adjust_fdr(pvals), expected, atol=1e-6)

    def test_qvalues_not_below_pvalues(self):
        pvals = np.random.default_rng(0).uniform(size=50)
        qvals = adjust_fdr(pvals)
        assert np.all(qvals >= pvals - 1e-12)
        assert np.all(qvals <= 1.0)

    def test_nan_preserved_and_excluded(self):
        pvals = np.array([0.01, np.nan, 0.04])
        qvals = adjust_fdr(pvals)
        assert np.isnan(qvals[1])
        assert np.allclose(qvals[[0, 2]], adjust_fdr([0.01, 0.04]))

    def test_all_nan(self):
        assert np.isnan(adjust_fdr([np.nan, np.nan])).all()

    def test_by_is_more_conservative(self):
        pvals = np.array([0.001, 0.01, 0.02, 0.5])
        assert np.all(adjust_fdr(pvals, "by") >= adjust_fdr(pvals, "bh"))

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown FDR method"):
            adjust_fdr([0.1], "holm")

    def test_series_keeps_index(self):
        series = pd.Series([0.01, 0.5], index=["x", "y"])
        result = adjust_fdr_series(series)
        assert list(result.index) == ["x", "y"]


class TestSignificant:
    """Tests for thresholding q-values."""

    def test_default_threshold(self, monkeypatch):
        monkeypatch.setattr(settings, "fdr_threshold", 0.05)
        result = pd.DataFrame({"fdr": [0.01, 0.05, 0.2, np.nan]}, index=list("abcd"))
        mask = significant(result)
        assert mask.tolist() == [True, False, False, False]
        assert mask.name == "significant"

    def test_settings_threshold_used(self, monkeypatch):
        monkeypatch.setattr(settings, "fdr_threshold", 0.25)
        result = pd.DataFrame({"fdr": [0.01, 0.2, 0.3]})
        assert significant(result).sum() == 2

    def test_explicit_threshold_and_column(self):
        result = pd.DataFrame({"fdr_mad": [0.001, 0.02, 0.5]})
        assert significant(result, "fdr_mad", threshold=0.01).tolist() == [True, False, False]

    def test_missing_column(self):
        with pytest.raises(ValueError, match="not found"):
            significant(pd.DataFrame({"pval": [0.1]}))

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="FDR threshold"):
            significant(pd.DataFrame({"fdr": [0.1]}), threshold=0.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
