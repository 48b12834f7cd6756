"""
Unit tests for depth factor estimation.
"""

import numpy as np
import pandas as pd
import pytest

import mpranalyze.core.depth as depth
from mpranalyze.core.container import MpraObject
from mpranalyze.core.exceptions import (
    ConfigurationError,
    DegenerateLibraryError,
    MissingFactorError,
)


class TestLibraryGroups:
    """Tests for grouping columns into libraries."""

    def test_per_column(self, equal_depth_counts):
        _, annot = equal_depth_counts
        groups = depth.library_groups(annot)
        assert groups.tolist() == ["w", "x", "y", "z"]

    def test_by_factor(self, equal_depth_counts):
        _, annot = equal_depth_counts
        groups = depth.library_groups(annot, ["batch"])
        assert groups.tolist() == ["b1", "b1", "b2", "b2"]

    def test_combined_factors(self, small_counts):
        _, _, annot = small_counts
        groups = depth.library_groups(annot, ["condition", "barcode"])
        assert groups.iloc[0] == "a:bc1"
        assert groups.nunique() == 6

    def test_separator_in_levels_keeps_libraries_apart(self):
        annot = pd.DataFrame(
            {"f1": ["a:b", "a:b", "a", "a"], "f2": ["c", "c", "b:c", "b:c"]},
            index=["w", "x", "y", "z"],
        )
        groups = depth.library_groups(annot, ["f1", "f2"])
        assert groups.nunique() == 2
        assert groups["w"] == groups["x"]
        assert groups["w"] != groups["y"]

        counts = pd.DataFrame({"w": [10, 20], "x": [10, 20], "y": [30, 60], "z": [30, 60]})
        factors = depth.compute_depth_factors(counts, groups, "total_sum")
        assert factors["y"] / factors["w"] == pytest.approx(3.0)

    def test_missing_factor(self, equal_depth_counts):
        _, annot = equal_depth_counts
        with pytest.raises(MissingFactorError, match="condition"):
            depth.library_groups(annot, ["condition"])


class TestComputeDepthFactors:
    """Tests for the individual estimators."""

    @pytest.mark.parametrize("method", ["upper_quartile", "total_sum", "size_factor", "uq", "totsum", "rle"])
    def test_equal_libraries_give_one(self, equal_depth_counts, method):
        counts, annot = equal_depth_counts
        factors = depth.compute_depth_factors(counts, depth.library_groups(annot, ["batch"]), method)
        assert np.allclose(factors.to_numpy(), 1.0)

    def test_scaled_library(self, equal_depth_counts):
        counts, annot = equal_depth_counts
        counts = counts.copy()
        counts[["y", "z"]] *= 3
        groups = depth.library_groups(annot, ["batch"])

        total = depth.compute_depth_factors(counts, groups, "total_sum")
        assert total["y"] / total["w"] == pytest.approx(3.0)
        assert total.mean() == pytest.approx(1.0)

        size = depth.compute_depth_factors(counts, groups, "size_factor")
        assert size["y"] / size["w"] == pytest.approx(3.0)

    def test_same_factor_within_library(self, simulated):
        annot = simulated["dna_annot"]
        groups = depth.library_groups(annot, ["batch", "condition"])
        factors = depth.compute_depth_factors(simulated["dna"], groups, "uq")
        per_library = factors.groupby(groups).nunique()
        assert (per_library == 1).all()
        assert (factors > 0).all()

    def test_zero_library(self, equal_depth_counts):
        counts, annot = equal_depth_counts
        counts = counts.copy()
        counts[["y", "z"]] = 0
        with pytest.raises(DegenerateLibraryError, match="b2"):
            depth.compute_depth_factors(counts, depth.library_groups(annot, ["batch"]), "uq", which="RNA")

    def test_unknown_method(self, equal_depth_counts):
        counts, annot = equal_depth_counts
        with pytest.raises(ConfigurationError, match="Unsupported"):
            depth.compute_depth_factors(counts, depth.library_groups(annot), "tmm")


class TestEstimateDepthFactors:
    """Tests for estimating and attaching factors on a container."""

    def test_both(self, simulated_object):
        obj = depth.estimate_depth_factors(simulated_object, lib_factors=["batch", "condition"])
        assert obj is simulated_object
        assert obj.has_depth_factors
        assert len(obj.dna_depth) == obj.n_observations
        assert len(obj.rna_depth) == obj.n_observations

    def test_dna_only(self, simulated_object):
        depth.estimate_depth_factors(simulated_object, "batch", which_lib="dna", method="total_sum")
        assert simulated_object.dna_depth is not None
        assert simulated_object.rna_depth is None

    def test_invalid_which(self, simulated_object):
        with pytest.raises(ConfigurationError, match="which_lib"):
            depth.estimate_depth_factors(simulated_object, which_lib="protein")

    def test_missing_lib_factor(self, small_object):
        with pytest.raises(MissingFactorError):
            depth.estimate_depth_factors(small_object, lib_factors=["batch"])

    def test_degenerate_rna_library(self, small_counts):
        dna, rna, annot = small_counts
        rna = rna.copy()
        rna[["c3", "c4", "c5"]] = 0
        obj = MpraObject(dna, rna, annot, annot)
        with pytest.raises(DegenerateLibraryError):
            depth.estimate_depth_factors(obj, lib_factors=["condition"])

    def test_library_summary(self, simulated_object):
        depth.estimate_depth_factors(simulated_object, lib_factors=["batch", "condition"])
        summary = depth.library_summary(simulated_object, ["batch", "condition"], which="rna")
        assert len(summary) == 4
        assert summary["n_columns"].tolist() == [10, 10, 10, 10]
        assert summary["depth_factor"].mean() == pytest.approx(1.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
