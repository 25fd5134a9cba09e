# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Optional, Union

# Third Party Imports
import numpy as np
import pandas as pd
import plotly.graph_objects as go

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.aggregation import (
    NAPolicy, aggregate_taxa, resolve_rank
)
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.amplicon_data.normalization import transform_to_relative
from amplicon_workflow.amplicon_data.transform import melt
from amplicon_workflow.figures.plot_spec import PlotSpec
from amplicon_workflow.stats.differential_abundance import DifferentialAbundanceResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

OTHER_LABEL = 'Other'

# ==================================== FUNCTIONS ===================================== #

def plot_abundance_bar(
    data: AmpliconData,
    rank: str = 'Phylum',
    x: str = 'sample',
    top_n: int = constants.DEFAULT_TOP_N,
    relative: bool = True,
    facet_col: Optional[str] = None,
    na_policy: Union[NAPolicy, str] = NAPolicy.DROP
) -> go.Figure:
    """
    Stacked bar chart of taxon abundance per sample (or per metadata group).

    Features are aggregated at `rank`; taxa outside the `top_n` most abundant are
    pooled as 'Other'. With `x` set to a metadata column, abundances are averaged
    within each group.

    Args:
        data:      Dataset with taxonomy.
        rank:      Rank to aggregate and colour by.
        x:         'sample' or a metadata column.
        top_n:     Number of taxa shown individually.
        relative:  Plot relative instead of raw abundance.
        facet_col: Metadata column to facet by.
        na_policy: Passed to `aggregate_taxa`. Under NAPolicy.KEEP each feature
                   unassigned at `rank` is shown as its own bar segment.
    """
    aggregated = aggregate_taxa(data, rank, na_policy)
    rank = resolve_rank(rank, list(aggregated.taxonomy.columns))
    unassigned = aggregated.taxonomy[rank].isna()
    if unassigned.any():
        aggregated.taxonomy.loc[unassigned, rank] = [
            f"Unassigned ({fid})" for fid in aggregated.taxonomy.index[unassigned]
        ]
    if relative:
        aggregated = transform_to_relative(aggregated)
    long_df = melt(aggregated)

    top = (
        long_df.groupby(rank)['abundance'].sum()
        .sort_values(ascending=False).index[:top_n]
    )
    long_df[rank] = long_df[rank].where(long_df[rank].isin(top), OTHER_LABEL)

    keys = [k for k in dict.fromkeys([x, facet_col, 'sample']) if k]
    if x not in long_df.columns:
        raise ValueError(f"Column '{x}' not found in sample metadata")
    per_sample = long_df.groupby(keys + [rank], dropna=False)['abundance'].sum().reset_index()
    if x != 'sample':
        group_keys = [k for k in keys if k != 'sample']
        per_sample = (
            per_sample.groupby(group_keys + [rank], dropna=False)['abundance']
            .mean().reset_index()
        )

    mapping = {'x': x, 'y': 'abundance', 'color': rank, 'hover': [rank, 'abundance']}
    if facet_col:
        mapping['facet_col'] = facet_col
    return (
        PlotSpec(
            per_sample, mapping,
            title=f"{rank} composition",
            labels={'abundance': 'Relative abundance' if relative else 'Abundance'}
        )
        .add_layer('bar', barmode='stack')
        .build()
    )


def plot_differential_abundance(
    result: DifferentialAbundanceResult,
    rank: Optional[str] = 'Genus',
    alpha: Optional[float] = None,
    comparison: Optional[str] = None
) -> go.Figure:
    """
    Log2 fold change of significant features, grouped and coloured by taxon.

    Args:
        result:     Differential abundance result.
        rank:       Taxonomy column used for labels and colours; None uses
                    feature IDs.
        alpha:      Adjusted p-value cut-off (default: the result's alpha).
        comparison: Comparison to plot (default: the first).
    """
    comparison = comparison or result.comparisons[0]
    significant = result.significant(alpha)
    significant = significant[significant['comparison'] == comparison].copy()
    if significant.empty:
        logger.warning(f"No significant features for '{comparison}'")

    label = 'feature'
    if rank is not None:
        if rank not in significant.columns:
            raise ValueError(f"Rank '{rank}' not found in the result table")
        significant[rank] = significant[rank].fillna('Unassigned')
        label = rank
        order = (
            significant.groupby(rank)['log2FoldChange'].max()
            .sort_values(ascending=False).index
        )
        significant[rank] = pd.Categorical(significant[rank], categories=order, ordered=True)
        significant = significant.sort_values(rank)
        significant[rank] = significant[rank].astype(str)

    significant['-log10(padj)'] = -np.log10(significant['padj'].clip(lower=1e-300))
    return (
        PlotSpec(
            significant,
            {
                'x': label, 'y': 'log2FoldChange', 'color': label,
                'hover': ['feature', 'padj', '-log10(padj)']
            },
            title=comparison,
            labels={'log2FoldChange': 'log2 fold change'}
        )
        .add_layer('scatter', size=12)
        .build()
    )
