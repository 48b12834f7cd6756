"""Background execution helpers for MPRAnalyze."""
