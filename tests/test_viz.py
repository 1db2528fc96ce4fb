"""Smoke tests for catmix.viz — figures build and save."""

import matplotlib.pyplot as plt
import numpy as np
import pytest

from catmix.config import default_config
from catmix.model import run_mixing_simulation
from catmix.viz import plot_bucket_counts, plot_location_population, plot_mixing_comparison


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close('all')


class TestMixingComparison:
    def test_returns_figure(self, tmp_path):
        expected = np.array([[0.9, 0.1], [0.2, 0.8]])
        observed = np.array([[0.85, 0.15], [0.25, 0.75]])
        path = tmp_path / "mixing.png"
        fig = plot_mixing_comparison(expected, observed, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert len(fig.axes) >= 3
        assert path.exists()

    def test_identical_matrices(self):
        m = np.eye(3)
        assert isinstance(plot_mixing_comparison(m, m), plt.Figure)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="shapes differ"):
            plot_mixing_comparison(np.eye(2), np.eye(3))


class TestPopulationPlots:
    def test_location_population(self, tmp_path):
        config = default_config()
        config.simulation.n_steps = 3
        config.population.n_agents = 500
        result = run_mixing_simulation(config)
        path = tmp_path / "eligible.png"
        fig = plot_location_population(result, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_bucket_counts(self):
        counts = np.arange(2 * 3 * 4).reshape(2, 3, 4)
        fig = plot_bucket_counts(counts)
        assert isinstance(fig, plt.Figure)
