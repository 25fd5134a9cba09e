# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

# Third Party Imports
import colorcet as cc
import pandas as pd
import plotly.graph_objects as go
import plotly.io as pio

# Local Imports
from amplicon_workflow import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ================================= GLOBAL VARIABLES ================================= #

largecolorset = list(
  cc.glasbey + cc.glasbey_light + cc.glasbey_warm + cc.glasbey_cool + cc.glasbey_dark
)

TEMPLATE_NAME = "amplicon"

# Define the plot template
pio.templates[TEMPLATE_NAME] = go.layout.Template(
  layout={
    'title': {
      'font': {
        'family': 'HelveticaNeue-CondensedBold, Helvetica, Sans-serif',
        'size': 28,
        'color': '#000' # Black
      }
    },
    'font': {
      'family': 'Helvetica Neue, Helvetica, Sans-serif',
      'size': 18,
      'color' : '#000'
    },
    'paper_bgcolor': 'rgba(0, 0, 0, 0)', # Transparent
    'plot_bgcolor': '#fff', # White
    'colorway': largecolorset,
    'xaxis': {
      'showgrid': False,
      'zeroline': True,
      'showline': True,
      'linewidth': 2,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    },
    'yaxis': {
      'showgrid': False,
      'zeroline': True,
      'showline': True,
      'linewidth': 2,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    }
  }
)
pio.templates.default = TEMPLATE_NAME

STATIC_EXTS = {"png", "jpg", "jpeg", "pdf", "svg", "eps"}

# ==================================== FUNCTIONS ===================================== #

def plotly_show_and_save(
    fig: go.Figure,
    output_path: Union[str, Path, None] = None,
    save_as: Iterable[str] = constants.DEFAULT_SAVE_AS,
    show: bool = False,
    scale: int = 3,
    **write_kwargs
) -> List[Path]:
    """
    Save a Plotly figure to static and/or HTML formats and optionally display it.

    Args:
        fig:            Plotly Figure object to be saved/displayed.
        output_path:    Base output path. Format-specific extensions are appended
                        (.png, .html); the directory is created if needed.
        save_as:        Formats to save, e.g. ('html', 'png', 'svg').
        show:           Whether to display the figure.
        scale:          DPI-like scale factor for raster outputs.
        **write_kwargs: Extra args forwarded to `fig.write_image` / `fig.write_html`.

    Returns:
        Paths of the files that were written. Export failures are logged.

    Notes:
        - Static images require kaleido.
    """
    written: List[Path] = []
    if show:
        fig.show()
    if not output_path:
        return written

    output_path = Path(output_path).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    stem = str(output_path)
    for ext in list(STATIC_EXTS) + ['html']:
        stem = stem.removesuffix(f'.{ext}')

    for ext in sorted(STATIC_EXTS.intersection(save_as)):
        target = Path(f"{stem}.{ext}")
        try:
            fig.write_image(str(target), format=ext, scale=scale, **write_kwargs)
            written.append(target)
            logger.debug(f"Saved figure to '{target}'.")
        except (ValueError, RuntimeError, OSError) as e:
            logger.error(
                f"Failed to save figure '{target}': {e}. "
                "Make sure the export engine is installed "
                "(e.g. `pip install -U kaleido`)."
            )

    if 'html' in save_as:
        target = Path(f"{stem}.html")
        try:
            fig.write_html(str(target), **write_kwargs)
            written.append(target)
            logger.debug(f"Saved figure to '{target}'.")
        except OSError as e:
            logger.error(f"Failed to save figure '{target}': {e}")
    return written


def _create_colordict(
    data: pd.Series,
    color_set: List[str] = largecolorset
) -> Dict[str, str]:
    """
    Create consistent color mapping for categories.

    Args:
        data:      Series containing categorical values.
        color_set: List of colors to use for mapping.

    Returns:
        Dictionary mapping categories (as strings) to colors.
    """
    categories = sorted(data.dropna().astype(str).unique())
    return {c: color_set[i % len(color_set)] for i, c in enumerate(categories)}


def _add_n_annotation(fig: go.Figure, n: int) -> go.Figure:
    fig.add_annotation(
        text=f"n = {n}",
        xref="paper", yref="paper",        # relative to full plot
        x=0.99, y=0.01,                    # bottom-right corner
        xanchor="right", yanchor="bottom",
        showarrow=False,
        font=dict(size=14, color="black"),
        bgcolor="rgba(255,255,255,0.4)",
    )
    return fig


def _apply_common_layout(
    fig: go.Figure,
    x_title: Optional[str],
    y_title: Optional[str],
    title: Optional[str] = None,
    height: int = constants.DEFAULT_HEIGHT,
    width: int = constants.DEFAULT_WIDTH
) -> go.Figure:
    """
    Apply consistent layout to figures.

    Args:
        fig:     Plotly figure to configure.
        x_title: Label for x-axis.
        y_title: Label for y-axis.
        title:   Overall plot title.
        height:  Figure height in pixels.
        width:   Figure width in pixels.

    Returns:
        Configured Plotly figure.
    """
    layout_updates = {
        'template': TEMPLATE_NAME,
        'height': height,
        'width': width,
        'plot_bgcolor': '#fff',
    }
    if title:
        layout_updates.update({
            'title_text': title,
            'title_x': 0.5
        })
    fig.update_layout(
        xaxis_title=x_title,
        yaxis_title=y_title,
        **layout_updates
    )
    return fig
