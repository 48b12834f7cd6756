"""
Unit tests for custom exception classes and validation helpers.
"""

import numpy as np
import pandas as pd
import pytest

from mpranalyze.core.exceptions import (
    MPRAnalyzeError,
    ValidationError,
    ConfigurationError,
    MissingFactorError,
    AnalysisError,
    DegenerateLibraryError,
    ConvergenceFailure,
    AllZeroRowDropped,
    validate_count_matrix,
    validate_annotation,
    validate_numeric_param,
)


# ============================================================================
# Exception hierarchy
# ============================================================================


class TestExceptionHierarchy:
    """Verify the exception inheritance chain."""

    def test_base_exception(self):
        with pytest.raises(MPRAnalyzeError):
            raise MPRAnalyzeError("base error")

    def test_configuration_is_validation(self):
        with pytest.raises(ValidationError):
            raise ConfigurationError("bad input")

    def test_missing_factor_is_configuration(self):
        with pytest.raises(ConfigurationError):
            raise MissingFactorError("batch")

    def test_degenerate_library_is_analysis(self):
        with pytest.raises(AnalysisError):
            raise DegenerateLibraryError("b1:a")

    def test_convergence_failure_is_analysis(self):
        with pytest.raises(AnalysisError):
            raise ConvergenceFailure("enh_1", "dna", "no counts")

    def test_all_zero_row_is_warning(self):
        assert issubclass(AllZeroRowDropped, UserWarning)


# ============================================================================
# Exception messages and attributes
# ============================================================================


class TestExceptionMessages:
    """Verify exception messages carry the context."""

    def test_missing_factor_message(self):
        err = MissingFactorError("batch", "DNA annotation", available=["condition"])
        assert "batch" in str(err)
        assert "DNA annotation" in str(err)
        assert "condition" in str(err)
        assert err.factor == "batch"

    def test_degenerate_library_message(self):
        err = DegenerateLibraryError("b1:a", "RNA")
        assert "b1:a" in str(err)
        assert "RNA" in str(err)
        assert err.library == "b1:a"

    def test_convergence_failure_keeps_partial(self):
        err = ConvergenceFailure("enh_3", "rna", "did not converge", partial={"dna": "fit"})
        assert err.enhancer_id == "enh_3"
        assert err.stage == "rna"
        assert err.partial == {"dna": "fit"}
        assert "enh_3" in str(err)

    def test_convergence_failure_default_partial(self):
        err = ConvergenceFailure("enh_3", "dna", "no counts")
        assert err.partial == {}


# ============================================================================
# validate_count_matrix
# ============================================================================


class TestValidateCountMatrix:
    """Tests for count matrix validation."""

    def test_valid_matrix(self):
        validate_count_matrix(np.array([[1, 2], [3, 4]]))

    def test_not_2d(self):
        with pytest.raises(ConfigurationError, match="2-D"):
            validate_count_matrix(np.array([1, 2, 3]))

    def test_empty(self):
        with pytest.raises(ConfigurationError, match="Empty"):
            validate_count_matrix(np.empty((0, 3)))

    def test_negative(self):
        with pytest.raises(ConfigurationError, match="negative"):
            validate_count_matrix(np.array([[1, -2], [3, 4]]))

    def test_non_integer(self):
        with pytest.raises(ConfigurationError, match="non-integer"):
            validate_count_matrix(np.array([[1.5, 2.0], [3.0, 4.0]]))

    def test_missing_values(self):
        with pytest.raises(ConfigurationError, match="missing"):
            validate_count_matrix(np.array([[1.0, np.nan], [3.0, 4.0]]))

    def test_non_numeric(self):
        with pytest.raises(ConfigurationError, match="numeric"):
            validate_count_matrix(np.array([["a", "b"], ["c", "d"]]))


# ============================================================================
# validate_annotation / validate_numeric_param
# ============================================================================


class TestValidateAnnotation:
    """Tests for annotation validation."""

    def test_valid(self):
        validate_annotation(pd.DataFrame({"batch": ["b1", "b2"]}), 2)

    def test_wrong_rows(self):
        with pytest.raises(ConfigurationError, match="3 columns"):
            validate_annotation(pd.DataFrame({"batch": ["b1", "b2"]}), 3)

    def test_not_dataframe(self):
        with pytest.raises(ConfigurationError, match="DataFrame"):
            validate_annotation(["b1", "b2"], 2)


class TestValidateNumericParam:
    """Tests for numeric parameter validation."""

    def test_valid_in_range(self):
        validate_numeric_param(0.05, "fdr", min_val=0, max_val=1)

    def test_below_min(self):
        with pytest.raises(ConfigurationError, match="fdr"):
            validate_numeric_param(-0.1, "fdr", min_val=0)

    def test_above_max(self):
        with pytest.raises(ConfigurationError, match="fdr"):
            validate_numeric_param(1.5, "fdr", max_val=1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
