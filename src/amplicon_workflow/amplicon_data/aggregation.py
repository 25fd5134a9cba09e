# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from enum import Enum
from typing import Dict, List, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# Stands in for a missing coarser rank inside a group key
_MISSING = '<NA>'

# ===================================== CLASSES ====================================== #

class NAPolicy(str, Enum):
    """What to do with features whose taxonomy is missing at the target rank."""
    DROP = 'drop'
    KEEP = 'keep'

# ==================================== FUNCTIONS ===================================== #

def resolve_rank(rank: str, ranks: List[str]) -> str:
    """Return the column of `ranks` matching `rank` case-insensitively."""
    lookup = {str(r).lower(): r for r in ranks}
    if str(rank).lower() not in lookup:
        raise ValueError(f"Invalid rank: '{rank}'. Expected one of {list(ranks)}")
    return lookup[str(rank).lower()]


def _group_keys(
    taxonomy: pd.DataFrame,
    ranks: List[str],
    na_policy: NAPolicy
) -> Dict[str, Tuple[str, ...]]:
    keys = {}
    target = ranks[-1]
    for feature_id, row in taxonomy[ranks].iterrows():
        if pd.isna(row[target]):
            if na_policy is NAPolicy.DROP:
                continue
            # Singleton group named after the feature itself
            keys[feature_id] = ('', feature_id)
            continue
        keys[feature_id] = tuple(
            _MISSING if pd.isna(value) else str(value) for value in row
        )
    return keys


def aggregate_taxa(
    data: AmpliconData,
    rank: str,
    na_policy: Union[NAPolicy, str] = NAPolicy.DROP
) -> AmpliconData:
    """Merge features that share their taxonomy from the top rank down to `rank`.

    Counts of each group are summed. The merged feature keeps the ID of its most
    abundant member and a taxonomy truncated below `rank` (lower ranks are NaN).
    The phylogenetic tree cannot describe merged features and is dropped.

    Args:
        data:      Dataset with taxonomy.
        rank:      Target rank, e.g. 'Family' (case-insensitive).
        na_policy: NAPolicy.DROP (default) removes features unassigned at `rank`;
                   NAPolicy.KEEP keeps each one as its own group.

    Returns:
        Aggregated dataset without a tree.

    Raises:
        ValueError:        For an unknown rank or NA policy.
        PreconditionError: If the dataset has no taxonomy, or no feature remains.
    """
    if data.taxonomy is None:
        raise PreconditionError("Taxonomic aggregation requires a taxonomy table")
    na_policy = NAPolicy(na_policy)
    all_ranks = list(data.taxonomy.columns)
    rank = resolve_rank(rank, all_ranks)
    ranks = all_ranks[:all_ranks.index(rank) + 1]

    keys = _group_keys(data.taxonomy, ranks, na_policy)
    if not keys:
        raise PreconditionError(f"No feature is assigned at rank '{rank}'")
    n_dropped = data.n_features - len(keys)
    if n_dropped:
        logger.info(
            f"Dropped {n_dropped} feature(s) with no '{rank}' assignment"
        )
        data = data.filter_features(list(keys))

    # The most abundant member names each group; ties go to table order
    totals = data.feature_totals()
    archetypes: Dict[Tuple[str, ...], str] = {}
    for feature_id in data.feature_ids:
        key = keys[feature_id]
        current = archetypes.get(key)
        if current is None or totals[feature_id] > totals[current]:
            archetypes[key] = feature_id
    id_map = {feature_id: archetypes[key] for feature_id, key in keys.items()}

    collapsed = data.table.collapse(
        lambda id_, _: id_map[id_],
        norm=False,
        axis='observation',
        include_collapsed_metadata=False
    )
    named = set(archetypes.values())
    order = [fid for fid in data.feature_ids if fid in named]
    collapsed = collapsed.sort_order(order, axis='observation')

    taxonomy = data.taxonomy.loc[order].copy()
    below = all_ranks[len(ranks):]
    if below:
        taxonomy[below] = np.nan

    logger.info(
        f"Aggregated {data.n_features} features into {len(order)} "
        f"groups at rank '{rank}'"
    )
    return AmpliconData(collapsed, data.metadata, taxonomy, tree=None)
