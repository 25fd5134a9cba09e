# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import List, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.aggregation import aggregate_taxa
from amplicon_workflow.amplicon_data.dataset import AmpliconData

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def melt(data: AmpliconData) -> pd.DataFrame:
    """Long-format table with one row per (sample, feature).

    Columns are `feature`, `sample`, `abundance`, then the taxonomy ranks and the
    sample metadata. A metadata column whose name is already taken gets a
    `_sample` suffix. Rows are sorted by abundance, largest first.
    """
    df = data.to_dataframe()
    df.index.name = 'sample'
    df.columns.name = None
    long_df = (
        df.reset_index()
        .melt(id_vars='sample', var_name='feature', value_name='abundance')
        [['feature', 'sample', 'abundance']]
    )

    if data.taxonomy is not None:
        taxonomy = data.taxonomy.copy()
        taxonomy.index.name = 'feature'
        long_df = long_df.merge(taxonomy, left_on='feature', right_index=True, how='left')

    metadata = data.metadata.copy()
    metadata.index.name = 'sample'
    metadata.columns = [
        f"{col}_sample" if col in long_df.columns else col for col in metadata.columns
    ]
    long_df = long_df.merge(metadata, left_on='sample', right_index=True, how='left')

    return (
        long_df.sort_values('abundance', ascending=False, kind='stable')
        .reset_index(drop=True)
    )


def top_features(
    data: AmpliconData,
    n: int = constants.DEFAULT_TOP_N,
    rank: Optional[str] = None
) -> List[str]:
    """IDs of the `n` most abundant features, optionally after aggregation at `rank`."""
    if n <= 0:
        raise ValueError(f"`n` must be positive, got {n}")
    if rank is not None:
        data = aggregate_taxa(data, rank)
    totals = data.feature_totals().sort_values(ascending=False, kind='stable')
    return totals.index[:n].tolist()
