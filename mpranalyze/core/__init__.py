"""
Core analysis modules for MPRAnalyze.

Includes:
- MPRA data container
- Depth factor estimation
- Nested DNA/RNA model fitting
- Quantification (alpha + empirical tests against controls)
- Comparative analysis (likelihood-ratio and Wald tests)
"""

# Data container
from .container import MpraObject

# Depth factors
from .depth import estimate_depth_factors, compute_depth_factors, library_groups, library_summary

# Designs and distributions
from .design import DesignFormula, parse_design, build_design_matrix
from .distributions import CountDistribution, NegativeBinomial, Poisson, get_distribution

# Model fitting
from .fitting import (
    FitStatus,
    ModelFit,
    EnhancerFit,
    FittedModel,
    analyze_quantification,
    analyze_comparative,
)

# Testing
from .quantification import get_alpha, test_empirical
from .comparative import test_lrt, test_coefficient
from .multitest import adjust_fdr, significant

# Simulation
from .simulate import simulate_mpra_dataset

__all__ = [
    # Container
    "MpraObject",

    # Depth factors
    "estimate_depth_factors",
    "compute_depth_factors",
    "library_groups",
    "library_summary",

    # Models
    "DesignFormula",
    "parse_design",
    "build_design_matrix",
    "CountDistribution",
    "NegativeBinomial",
    "Poisson",
    "get_distribution",
    "FitStatus",
    "ModelFit",
    "EnhancerFit",
    "FittedModel",
    "analyze_quantification",
    "analyze_comparative",

    # Testing
    "get_alpha",
    "test_empirical",
    "test_lrt",
    "test_coefficient",
    "adjust_fdr",
    "significant",

    # Simulation
    "simulate_mpra_dataset",
]
