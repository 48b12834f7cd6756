"""
Shared test fixtures for MPRAnalyze test suite.
"""

import numpy as np
import pandas as pd
import pytest

from mpranalyze.core.container import MpraObject
from mpranalyze.core.depth import estimate_depth_factors
from mpranalyze.core.fitting import analyze_comparative, analyze_quantification
from mpranalyze.core.simulate import simulate_mpra_dataset

# ============================================================================
# Small count matrices
# ============================================================================


@pytest.fixture
def small_counts():
    """Four enhancers x six columns, two conditions x three barcodes."""
    dna = pd.DataFrame(
        [
            [10, 12, 9, 11, 10, 13],
            [50, 45, 55, 48, 52, 47],
            [5, 7, 6, 4, 5, 6],
            [20, 22, 18, 21, 19, 24],
        ],
        index=["e1", "e2", "e3", "e4"],
        columns=[f"c{i}" for i in range(6)],
    )
    rna = pd.DataFrame(
        [
            [20, 25, 18, 40, 45, 38],
            [60, 55, 66, 58, 61, 57],
            [3, 4, 2, 2, 3, 4],
            [30, 28, 33, 31, 29, 35],
        ],
        index=["e1", "e2", "e3", "e4"],
        columns=[f"c{i}" for i in range(6)],
    )
    annot = pd.DataFrame(
        {
            "condition": ["a", "a", "a", "b", "b", "b"],
            "barcode": ["bc1", "bc2", "bc3", "bc1", "bc2", "bc3"],
        },
        index=dna.columns,
    )
    return dna, rna, annot


@pytest.fixture
def small_object(small_counts):
    """MpraObject over ``small_counts`` with e3 as the only control."""
    dna, rna, annot = small_counts
    return MpraObject(dna, rna, annot, annot, controls=["e3"])


@pytest.fixture
def equal_depth_counts():
    """Matrix whose columns all have the same total and upper quartile."""
    values = np.array([[10, 10, 10, 10], [20, 20, 20, 20], [30, 30, 30, 30], [40, 40, 40, 40]])
    frame = pd.DataFrame(values, index=[f"e{i}" for i in range(4)], columns=list("wxyz"))
    annot = pd.DataFrame({"batch": ["b1", "b1", "b2", "b2"]}, index=frame.columns)
    return frame, annot


# ============================================================================
# Simulated experiments
# ============================================================================


@pytest.fixture(scope="module")
def simulated():
    """110 enhancers x 40 columns (2 conditions x 2 batches x 10 barcodes)."""
    return simulate_mpra_dataset(seed=7)


def make_object(data):
    return MpraObject(
        data["dna"], data["rna"], data["dna_annot"], data["rna_annot"], controls=data["controls"]
    )


@pytest.fixture
def simulated_object(simulated):
    """Fresh container over the simulated experiment."""
    return make_object(simulated)


@pytest.fixture(scope="module")
def quantified(simulated):
    """Simulated experiment with quantification models fit per condition."""
    obj = make_object(simulated)
    estimate_depth_factors(obj, lib_factors=["batch", "condition"], which_lib="both", method="uq")
    return analyze_quantification(obj, "~ barcode + batch + condition", "~ condition", n_jobs=2)


@pytest.fixture(scope="module")
def compared(simulated):
    """Simulated experiment with full (~ condition) and reduced (~ 1) RNA models."""
    obj = make_object(simulated)
    estimate_depth_factors(obj, lib_factors=["batch", "condition"], which_lib="both", method="uq")
    return analyze_comparative(obj, "~ barcode + batch + condition", "~ condition", "~ 1")
