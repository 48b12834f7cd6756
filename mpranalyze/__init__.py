"""
MPRAnalyze - Statistical analysis of massively parallel reporter assays

Estimates enhancer transcription rates from paired DNA/RNA barcode counts
with nested count GLMs, and tests enhancer activity against negative
controls (quantification) or between conditions (comparative).
"""

import logging

from .config import settings
from .core import (
    MpraObject,
    estimate_depth_factors,
    analyze_quantification,
    analyze_comparative,
    get_alpha,
    test_empirical,
    test_lrt,
    test_coefficient,
    significant,
    simulate_mpra_dataset,
)
from .core.exceptions import (
    MPRAnalyzeError,
    ConfigurationError,
    MissingFactorError,
    DegenerateLibraryError,
    ConvergenceFailure,
    AllZeroRowDropped,
)

__version__ = "0.1.0"
__author__ = "MPRAnalyze Team"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level=None) -> None:
    """Configure root logging for scripts (defaults to settings.log_level)."""
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)


__all__ = [
    "settings",
    "configure_logging",
    "MpraObject",
    "estimate_depth_factors",
    "analyze_quantification",
    "analyze_comparative",
    "get_alpha",
    "test_empirical",
    "test_lrt",
    "test_coefficient",
    "significant",
    "simulate_mpra_dataset",
    "MPRAnalyzeError",
    "ConfigurationError",
    "MissingFactorError",
    "DegenerateLibraryError",
    "ConvergenceFailure",
    "AllZeroRowDropped",
]
