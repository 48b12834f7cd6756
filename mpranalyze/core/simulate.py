"""
Simulated MPRA Dataset Generator

Generates a realistic but small MPRA experiment that exercises every
analysis step without external data. The generated dataset includes:

- DNA and RNA count matrices (enhancers x barcode/batch/condition)
- Matching DNA and RNA column annotations
- A set of negative-control enhancers with a shared, low rate
- The true per-condition transcription rates used for simulation

Counts follow a gamma-Poisson model: every barcode carries a
gamma-distributed plasmid copy number, DNA is Poisson around the copy
number and RNA is Poisson around copy number x transcription rate, with
extra gamma noise on the transcription step.

Usage::

    from mpranalyze.core.simulate import simulate_mpra_dataset

    data = simulate_mpra_dataset(seed=1)
    obj = MpraObject(data["dna"], data["rna"], data["dna_annot"],
                     data["rna_annot"], controls=data["controls"])
"""

import logging
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, validate_numeric_param

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def simulate_mpra_dataset(
    n_enhancers: int = 110,
    n_barcodes: int = 10,
    n_batches: int = 2,
    conditions: Sequence[str] = ("a", "b"),
    n_controls: int = 10,
    n_empty: int = 0,
    frac_differential: float = 0.3,
    seed: int = 42,
) -> Dict:
    """Generate a simulated MPRA experiment.

    Args:
        n_enhancers: Number of enhancers (rows), controls included.
        n_barcodes: Barcodes per enhancer.
        n_batches: Replicate batches per condition.
        conditions: Condition labels.
        n_controls: Number of negative-control enhancers (the first rows).
        n_empty: Number of enhancers (the last rows) with no counts at all.
        frac_differential: Fraction of non-control enhancers whose rate
            changes between conditions.
        seed: Random seed for reproducibility.

    Returns:
        Dict with ``dna``, ``rna`` (DataFrames), ``dna_annot``,
        ``rna_annot`` (DataFrames), ``controls`` (list of ids) and
        ``true_alpha`` (DataFrame, enhancers x conditions).
    """
    validate_numeric_param(n_barcodes, "n_barcodes", min_val=1)
    validate_numeric_param(n_batches, "n_batches", min_val=1)
    validate_numeric_param(frac_differential, "frac_differential", min_val=0, max_val=1)
    if n_controls + n_empty > n_enhancers:
        raise ConfigurationError("n_controls + n_empty cannot exceed n_enhancers")

    rng = np.random.default_rng(seed)
    conditions = list(conditions)

    annot = _column_annotation(n_barcodes, n_batches, conditions)
    enhancers = [f"enh_{i:03d}" for i in range(n_enhancers)]
    controls = enhancers[:n_controls]

    true_alpha = _true_rates(rng, n_enhancers, n_controls, conditions, frac_differential)
    true_alpha.index = enhancers

    dna, rna = _counts(rng, annot, true_alpha.to_numpy(), conditions)

    if n_empty:
        dna[-n_empty:] = 0
        rna[-n_empty:] = 0

    dna = pd.DataFrame(dna, index=enhancers, columns=annot.index)
    rna = pd.DataFrame(rna, index=enhancers, columns=annot.index)

    logger.info(
        "Simulated %d enhancers x %d observations (%d controls)",
        n_enhancers, annot.shape[0], n_controls,
    )

    return {
        "dna": dna,
        "rna": rna,
        "dna_annot": annot.copy(),
        "rna_annot": annot[["condition", "batch"]].copy(),
        "controls": controls,
        "true_alpha": true_alpha,
    }


# ---------------------------------------------------------------------------
# Internal generators
# ---------------------------------------------------------------------------

def _column_annotation(n_barcodes: int, n_batches: int, conditions: list) -> pd.DataFrame:
    """One column per condition x batch x barcode."""
    rows = []
    for condition in conditions:
        for b in range(1, n_batches + 1):
            for bc in range(1, n_barcodes + 1):
                rows.append({
                    "name": f"{condition}:b{b}:bc{bc:02d}",
                    "condition": condition,
                    "batch": f"b{b}",
                    "barcode": f"bc{bc:02d}",
                })
    return pd.DataFrame(rows).set_index("name")


def _true_rates(
    rng: np.random.Generator,
    n_enhancers: int,
    n_controls: int,
    conditions: list,
    frac_differential: float,
) -> pd.DataFrame:
    """Per-enhancer, per-condition transcription rates."""
    log_alpha = np.empty((n_enhancers, len(conditions)))

    # Controls: low, condition-independent activity
    log_alpha[:n_controls] = rng.normal(-0.5, 0.15, size=(n_controls, 1))

    base = rng.normal(0.5, 0.8, size=(n_enhancers - n_controls, 1))
    shifts = rng.normal(0.0, 1.0, size=(n_enhancers - n_controls, len(conditions)))
    shifts[:, 0] = 0.0
    changing = rng.random(n_enhancers - n_controls) < frac_differential
    shifts[~changing] = 0.0
    log_alpha[n_controls:] = base + shifts

    return pd.DataFrame(np.exp(log_alpha), columns=conditions)


def _counts(
    rng: np.random.Generator,
    annot: pd.DataFrame,
    alpha: np.ndarray,
    conditions: list,
):
    """DNA and RNA counts from the gamma-Poisson model."""
    n_enhancers = alpha.shape[0]
    n_barcodes = annot["barcode"].nunique()
    barcode_idx = annot["barcode"].astype("category").cat.codes.to_numpy()
    condition_idx = np.array([conditions.index(c) for c in annot["condition"]])

    # Library depths: one per batch x condition
    library = (annot["condition"] + ":" + annot["batch"]).to_numpy()
    libraries = pd.unique(library)
    dna_lib_depth = dict(zip(libraries, rng.uniform(0.7, 1.3, len(libraries))))
    rna_lib_depth = dict(zip(libraries, rng.uniform(0.7, 1.3, len(libraries))))
    dna_depth = np.array([dna_lib_depth[lib] for lib in library])
    rna_depth = np.array([rna_lib_depth[lib] for lib in library])

    # Plasmid abundance per enhancer, copy number per barcode
    abundance = rng.gamma(shape=5.0, scale=20.0, size=(n_enhancers, 1))
    copies = abundance * rng.gamma(shape=20.0, scale=1 / 20.0, size=(n_enhancers, n_barcodes))
    copies = copies[:, barcode_idx]

    dna = rng.poisson(copies * dna_depth)

    transcription = alpha[:, condition_idx] * rng.gamma(shape=10.0, scale=0.1, size=copies.shape)
    rna = rng.poisson(copies * transcription * rna_depth)

    return dna.astype(np.int64), rna.astype(np.int64)
