"""CatMix visualization library.

Modules:
  - style: Dark theme colours and helpers
  - mixing: Expected vs observed mixing, eligible population, index composition
"""

from catmix.viz.style import (  # noqa: F401
    ACCENT_COLORS,
    DARK_BG,
    DARK_PANEL,
    GRID_COLOR,
    SB_COLORS,
    TEXT_COLOR,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from catmix.viz.mixing import (  # noqa: F401
    plot_bucket_counts,
    plot_location_population,
    plot_mixing_comparison,
)
