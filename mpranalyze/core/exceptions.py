"""
Custom exception classes for MPRAnalyze.

Provides clear, module-specific error types for better error handling
and debugging throughout the analysis pipeline.
"""


class MPRAnalyzeError(Exception):
    """Base exception for all MPRAnalyze errors."""
    pass


# ============================================================================
# Data validation errors
# ============================================================================

class ValidationError(MPRAnalyzeError):
    """Raised when input data fails validation checks."""
    pass


class ConfigurationError(ValidationError):
    """Raised when inputs, designs or parameters are inconsistent."""
    pass


class MissingFactorError(ConfigurationError):
    """Raised when a design or library factor is missing from an annotation table."""

    def __init__(self, factor: str, table_name: str = "annotation", available: list = None):
        available_str = f" Available factors: {available}" if available is not None else ""
        super().__init__(
            f"Factor '{factor}' not found in {table_name}.{available_str}"
        )
        self.factor = factor
        self.table_name = table_name
        self.available = available


# ============================================================================
# Analysis errors
# ============================================================================

class AnalysisError(MPRAnalyzeError):
    """Base class for analysis-specific errors."""
    pass


class DegenerateLibraryError(AnalysisError):
    """Raised when a normalization library has no usable counts."""

    def __init__(self, library, which: str = "counts", reason: str = "zero total counts"):
        super().__init__(f"Library {library!r} in {which} matrix has {reason}")
        self.library = library
        self.which = which


class ConvergenceFailure(AnalysisError):
    """Raised when a single enhancer's model cannot be fit.

    Never aborts a batch: the fitter records it on the enhancer's status.
    """

    def __init__(self, enhancer_id: str, stage: str, reason: str, partial: dict = None):
        super().__init__(f"Fit of {stage} model for enhancer '{enhancer_id}' failed: {reason}")
        self.enhancer_id = enhancer_id
        self.stage = stage
        self.reason = reason
        # Stage name -> fit computed before (and including) the failing stage
        self.partial = partial or {}


# ============================================================================
# Warnings
# ============================================================================

class AllZeroRowDropped(UserWarning):
    """Emitted when enhancers with no DNA and no RNA counts are removed."""
    pass


# ============================================================================
# Validation helpers
# ============================================================================

def validate_count_matrix(values, name: str = "counts") -> None:
    """Validate a count matrix is 2-D, finite, non-negative and integer valued.

    Parameters
    ----------
    values : np.ndarray
        Raw matrix values.
    name : str
        Human-readable name for error messages.

    Raises
    ------
    ConfigurationError
        If any check fails.
    """
    import numpy as np

    if values.ndim != 2:
        raise ConfigurationError(f"{name} must be a 2-D matrix, got {values.ndim} dimensions")

    if values.size == 0:
        raise ConfigurationError(f"Empty {name} matrix provided")

    if not np.issubdtype(values.dtype, np.number):
        raise ConfigurationError(f"{name} must be numeric, got dtype {values.dtype}")

    if not np.all(np.isfinite(values)):
        raise ConfigurationError(f"{name} contains missing or infinite values")

    if np.any(values < 0):
        raise ConfigurationError(f"{name} contains negative counts")

    if np.any(values != np.round(values)):
        raise ConfigurationError(f"{name} contains non-integer counts")


def validate_annotation(annot, n_columns: int, name: str = "annotation") -> None:
    """Validate an annotation table has exactly one row per matrix column.

    Raises
    ------
    ConfigurationError
        If the row count does not match.
    """
    import pandas as pd

    if not isinstance(annot, pd.DataFrame):
        raise ConfigurationError(f"Expected DataFrame for {name}, got {type(annot).__name__}")

    if len(annot) != n_columns:
        raise ConfigurationError(
            f"{name} has {len(annot)} rows but the count matrix has {n_columns} columns"
        )


def validate_numeric_param(value, name: str, min_val=None, max_val=None) -> None:
    """Validate a numeric parameter is within acceptable bounds.

    Raises
    ------
    ConfigurationError
        If the value is out of range.
    """
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Invalid value for '{name}': {value}. Expected: >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Invalid value for '{name}': {value}. Expected: <= {max_val}")
