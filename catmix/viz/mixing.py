"""Mixing and population-composition figures.

Every function:
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)
  - Uses the shared dark theme from ``catmix.viz.style``

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Optional, TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np

from catmix.viz.style import (
    ACCENT_COLORS,
    DARK_PANEL,
    GRID_COLOR,
    MATRIX_CMAP,
    SB_COLORS,
    TEXT_COLOR,
    colorbar,
    dark_figure,
    save_figure,
)

if TYPE_CHECKING:
    from catmix.model import MixingSimResult


def _matrix_panel(fig, ax, matrix, title, label, annotate=True):
    L = matrix.shape[0]
    im = ax.imshow(matrix, cmap=MATRIX_CMAP, vmin=0.0, vmax=1.0)
    ax.set_title(title, fontsize=13, fontweight='bold')
    ax.set_xlabel('Partner location')
    ax.set_ylabel('Own location')
    ax.set_xticks(range(L))
    ax.set_yticks(range(L))
    if annotate and L <= 12:
        for i in range(L):
            for j in range(L):
                ax.text(j, i, f"{matrix[i, j]:.2f}", ha='center', va='center',
                        color='white' if matrix[i, j] < 0.6 else 'black',
                        fontsize=8)
    colorbar(fig, im, ax, label)


def plot_mixing_comparison(
    expected: np.ndarray,
    observed: np.ndarray,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Expected vs observed mixing matrices side by side, plus their difference.

    Args:
        expected: (L, L) row probabilities (policy or mixing table).
        observed: (L, L) row-normalised observed frequencies.
        save_path: Optional path to save the figure.

    Returns:
        matplotlib Figure.
    """
    expected = np.asarray(expected, dtype=np.float64)
    observed = np.asarray(observed, dtype=np.float64)
    if expected.shape != observed.shape:
        raise ValueError(
            f"Matrix shapes differ: expected {expected.shape}, observed {observed.shape}"
        )
    fig, axes = dark_figure(1, 3, figsize=(18, 5.5), grid=False)
    _matrix_panel(fig, axes[0], expected, 'Expected mixing', 'P(partner loc | own loc)')
    _matrix_panel(fig, axes[1], observed, 'Observed mixing', 'Frequency')

    diff = observed - expected
    lim = max(float(np.abs(diff).max()), 1e-9)
    im = axes[2].imshow(diff, cmap='coolwarm', vmin=-lim, vmax=lim)
    axes[2].set_title('Observed − expected', fontsize=13, fontweight='bold')
    axes[2].set_xlabel('Partner location')
    axes[2].set_ylabel('Own location')
    colorbar(fig, im, axes[2], 'Difference')

    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_location_population(
    result: 'MixingSimResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Eligible partners per location over the simulation."""
    fig, ax = dark_figure()
    years = result.years
    for loc in range(result.n_locations):
        ax.plot(years, result.step_eligible[:, loc],
                color=ACCENT_COLORS[loc % len(ACCENT_COLORS)],
                linewidth=2, label=f'Location {loc}')
    ax.set_xlabel('Year', fontsize=12)
    ax.set_ylabel('Eligible partners', fontsize=12)
    ax.set_title('Eligible Partner Population by Location',
                 fontsize=14, fontweight='bold')
    ax.set_ylim(bottom=0)
    ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
              labelcolor=TEXT_COLOR, fontsize=9)
    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_bucket_counts(
    counts: np.ndarray,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Stacked bars of bucket sizes: locations × age bands, stacked by sb.

    Args:
        counts: (S, L, A) array from CategoricalIndex.counts().
    """
    counts = np.asarray(counts)
    S, L, A = counts.shape
    fig, ax = dark_figure(figsize=(max(8, L * A * 0.6), 6))
    x = np.arange(L * A)
    bottom = np.zeros(L * A)
    for sb in range(S):
        heights = counts[sb].reshape(L * A)
        ax.bar(x, heights, bottom=bottom,
               color=SB_COLORS.get(sb, ACCENT_COLORS[sb % len(ACCENT_COLORS)]),
               edgecolor=GRID_COLOR, label=f'sb {sb}')
        bottom += heights
    ax.set_xticks(x)
    ax.set_xticklabels([f'L{loc}/A{age}' for loc in range(L) for age in range(A)],
                       rotation=45, ha='right', fontsize=8)
    ax.set_ylabel('Eligible partners', fontsize=12)
    ax.set_title('Categorical Index Composition', fontsize=14, fontweight='bold')
    ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
              labelcolor=TEXT_COLOR, fontsize=9)
    if save_path:
        save_figure(fig, save_path)
    return fig
