"""
Configuration settings for MPRAnalyze.

Defaults for model fitting, depth-factor estimation and parallel
execution. Every value can be overridden with an ``MPRA_``-prefixed
environment variable or a ``.env`` file.
"""

from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class DepthMethods:
    """Supported depth-factor estimation methods and their aliases."""

    SUPPORTED_METHODS = {
        "upper_quartile": {
            "description": "75th percentile of non-zero counts per library",
            "aliases": ["uq", "upper-quartile", "upperquartile"],
        },
        "total_sum": {
            "description": "Mean column total per library",
            "aliases": ["totsum", "total-sum", "libsize"],
        },
        "size_factor": {
            "description": "DESeq-style median of ratios to a pseudo-reference",
            "aliases": ["rle", "size-factor", "median_ratio"],
        },
    }

    @classmethod
    def resolve(cls, method: str) -> Optional[str]:
        """Return the canonical method name for ``method`` or None if unknown."""
        key = str(method).lower()
        for name, spec in cls.SUPPORTED_METHODS.items():
            if key == name or key in spec["aliases"]:
                return name
        return None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"

    # Parallel execution
    n_jobs: int = Field(default=1, ge=1)

    # Optimizer
    max_iter: int = Field(default=500, ge=1)
    tolerance: float = Field(default=1e-8, gt=0)
    gradient_tolerance: float = Field(default=1e-4, gt=0)

    # Negative binomial dispersion (natural log scale)
    min_log_dispersion: float = -15.0
    max_log_dispersion: float = 10.0
    initial_dispersion: float = Field(default=0.1, gt=0)

    # Default analysis parameters
    default_depth_method: str = "upper_quartile"
    fdr_threshold: float = Field(default=0.05, gt=0, le=1)

    class Config:
        env_prefix = "MPRA_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def dispersion_bounds(self) -> tuple:
        """Bounds on the log-dispersion parameter used by the optimizer."""
        return (self.min_log_dispersion, self.max_log_dispersion)

    def get_depth_method(self, method: Optional[str] = None) -> Dict:
        """Get configuration for a depth-factor method (defaults to ``default_depth_method``)."""
        name = DepthMethods.resolve(method or self.default_depth_method)
        if name is None:
            raise ValueError(
                f"Unsupported depth method: {method}. "
                f"Supported: {list(DepthMethods.SUPPORTED_METHODS.keys())}"
            )
        return {"name": name, **DepthMethods.SUPPORTED_METHODS[name]}


# Global settings instance
settings = Settings()
