"""Dark theme styling for CatMix figures.

Colours and helpers shared by every plot so matrices and bar charts
have the same look.
"""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np

# ═══════════════════════════════════════════════════════════════════════
# COLOR PALETTE
# ═══════════════════════════════════════════════════════════════════════

DARK_BG = '#1a1a2e'
DARK_PANEL = '#16213e'
TEXT_COLOR = '#e0e0e0'
GRID_COLOR = '#2a2a4a'

ACCENT_COLORS = [
    '#e94560',  # crimson
    '#48c9b0',  # teal
    '#f39c12',  # amber
    '#3498db',  # sky blue
    '#533483',  # purple
    '#2ecc71',  # green
]

SB_COLORS = {
    0: '#48c9b0',   # low risk
    1: '#e94560',   # high risk
}

MATRIX_CMAP = 'magma'


# ═══════════════════════════════════════════════════════════════════════
# THEME HELPERS
# ═══════════════════════════════════════════════════════════════════════

def apply_dark_theme(fig=None, ax=None, grid=True):
    """Apply dark theme to a matplotlib Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        if grid:
            ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, grid=True, **kwargs):
    """Create a Figure + Axes with the dark theme already applied."""
    if figsize is None:
        figsize = (8, 6) if (nrows == 1 and ncols == 1) else (6 * ncols, 5 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    for a in np.atleast_1d(axes).flat:
        apply_dark_theme(ax=a, grid=grid)
    return fig, axes


def colorbar(fig, mappable, ax, label=''):
    """Colour bar with themed tick labels."""
    cb = fig.colorbar(mappable, ax=ax)
    cb.set_label(label, color=TEXT_COLOR)
    cb.ax.yaxis.set_tick_params(color=TEXT_COLOR)
    for tick in cb.ax.get_yticklabels():
        tick.set_color(TEXT_COLOR)
    return cb


def save_figure(fig, save_path, dpi=150):
    """Save a figure with tight layout and dark background."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)
