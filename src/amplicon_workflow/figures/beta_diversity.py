# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import List, Optional

# Third Party Imports
import pandas as pd
import plotly.graph_objects as go

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.figures.plot_spec import PlotSpec
from amplicon_workflow.stats.beta_diversity import Ordination

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def plot_ordination(
    ordination: Ordination,
    metadata: pd.DataFrame,
    color: Optional[str] = None,
    symbol: Optional[str] = None,
    ellipse: bool = False,
    axes: tuple = ('PCo1', 'PCo2'),
    hover: Optional[List[str]] = None,
    level: float = constants.DEFAULT_ELLIPSE_LEVEL
) -> go.Figure:
    """
    Scatter plot of two ordination axes, points coloured by metadata.

    Args:
        ordination: Result of `pcoa` / `ordinate`.
        metadata:   Sample metadata indexed by sample ID.
        color:      Metadata column for point colour.
        symbol:     Metadata column for point symbol.
        ellipse:    Overlay a confidence ellipse per colour group.
        axes:       Pair of axis names to plot.
        hover:      Extra metadata columns shown on hover.
        level:      Confidence level of the ellipses.

    Returns:
        Plotly figure; axis titles carry the percentage of variance explained.
    """
    x_axis, y_axis = axes
    for axis in axes:
        if axis not in ordination.samples.columns:
            raise ValueError(
                f"Axis '{axis}' not in ordination. "
                f"Available: {list(ordination.samples.columns)}"
            )
    coords = ordination.join_metadata(metadata).reset_index()

    mapping = {'x': x_axis, 'y': y_axis, 'hover': ['sample'] + list(hover or [])}
    if color:
        mapping['color'] = color
    if symbol:
        mapping['symbol'] = symbol

    spec = PlotSpec(
        coords, mapping,
        title=f"PCoA ({ordination.metric})" if ordination.metric else "PCoA",
        labels={
            x_axis: ordination.axis_label(x_axis),
            y_axis: ordination.axis_label(y_axis)
        }
    ).add_layer('scatter')
    if ellipse:
        if not color:
            raise ValueError("Ellipses need a `color` column to group samples")
        spec = spec.add_layer('ellipse', level=level)
    return spec.build()
