# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Optional

# Third Party Imports
import pandas as pd
import plotly.graph_objects as go

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.figures.plot_spec import PlotSpec

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def plot_alpha_diversity(
    alpha_df: pd.DataFrame,
    metadata: pd.DataFrame,
    x: str,
    color: Optional[str] = None,
    points: bool = True
) -> go.Figure:
    """Box plots of every alpha diversity metric by `x`, one facet per metric."""
    if x not in metadata.columns:
        raise ValueError(f"Metadata column '{x}' not found")
    columns = [c for c in dict.fromkeys([x, color]) if c]
    long_df = (
        alpha_df.rename_axis('sample').reset_index()
        .melt(id_vars='sample', var_name='metric', value_name='value')
        .merge(metadata[columns], left_on='sample', right_index=True, how='left')
    )
    long_df = long_df[long_df[x].notna()]

    mapping = {'x': x, 'y': 'value', 'facet_col': 'metric', 'hover': ['sample']}
    if color:
        mapping['color'] = color
    spec = PlotSpec(
        long_df, mapping, title="Alpha diversity", labels={'value': ''},
        shared_yaxes=False
    )
    return spec.add_layer('box', boxpoints='all' if points else 'outliers').build()
