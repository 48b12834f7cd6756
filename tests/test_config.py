"""
Unit tests for settings, logging setup and the dataset simulator.
"""

import logging

import numpy as np
import pytest

import mpranalyze as mpra
from mpranalyze.config import DepthMethods, Settings
from mpranalyze.core.exceptions import ConfigurationError
from mpranalyze.core.simulate import simulate_mpra_dataset


class TestSettings:
    """Tests for the pydantic settings object."""

    def test_defaults(self):
        settings = Settings()
        assert settings.n_jobs >= 1
        assert settings.dispersion_bounds() == (settings.min_log_dispersion, settings.max_log_dispersion)
        assert settings.get_depth_method()["name"] == DepthMethods.resolve(settings.default_depth_method)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MPRA_N_JOBS", "3")
        monkeypatch.setenv("MPRA_MAX_ITER", "50")
        settings = Settings()
        assert settings.n_jobs == 3
        assert settings.max_iter == 50

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("MPRA_N_JOBS", "0")
        with pytest.raises(ValueError):
            Settings()

    @pytest.mark.parametrize("alias,name", [
        ("uq", "upper_quartile"),
        ("TOTSUM", "total_sum"),
        ("rle", "size_factor"),
        ("size_factor", "size_factor"),
    ])
    def test_depth_aliases(self, alias, name):
        assert DepthMethods.resolve(alias) == name

    def test_unknown_depth_method(self):
        assert DepthMethods.resolve("tmm") is None
        with pytest.raises(ValueError, match="Unsupported"):
            Settings().get_depth_method("tmm")


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_level(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.update(kw))
        mpra.configure_logging("DEBUG")
        assert calls["level"] == "DEBUG"
        assert "%(name)s" in calls["format"]


class TestSimulate:
    """Tests for simulate_mpra_dataset."""

    def test_shapes(self):
        data = simulate_mpra_dataset()
        assert data["dna"].shape == (110, 40)
        assert data["rna"].shape == (110, 40)
        assert data["dna_annot"].shape[0] == 40
        assert set(data["rna_annot"].columns) == {"condition", "batch"}
        assert len(data["controls"]) == 10
        assert list(data["true_alpha"].columns) == ["a", "b"]

    def test_reproducible(self):
        first = simulate_mpra_dataset(seed=5)
        second = simulate_mpra_dataset(seed=5)
        assert first["rna"].equals(second["rna"])

    def test_controls_condition_independent(self):
        data = simulate_mpra_dataset()
        alpha = data["true_alpha"].loc[data["controls"]]
        assert np.allclose(alpha["a"], alpha["b"])

    def test_empty_rows(self):
        data = simulate_mpra_dataset(n_empty=2)
        assert (data["dna"].iloc[-2:].to_numpy() == 0).all()
        assert (data["rna"].iloc[-2:].to_numpy() == 0).all()

    def test_invalid_sizes(self):
        with pytest.raises(ConfigurationError, match="cannot exceed"):
            simulate_mpra_dataset(n_enhancers=5, n_controls=5, n_empty=1)
        with pytest.raises(ConfigurationError, match="frac_differential"):
            simulate_mpra_dataset(frac_differential=1.5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
