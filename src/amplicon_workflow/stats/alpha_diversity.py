# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import List

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import kruskal, mannwhitneyu
from skbio.diversity import alpha_diversity as skbio_alpha_diversity
from statsmodels.stats.multitest import multipletests

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError
from amplicon_workflow.utils.tree import require_binary

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def alpha_diversity(
    data: AmpliconData,
    metrics: List[str] = constants.DEFAULT_ALPHA_METRICS
) -> pd.DataFrame:
    """
    Calculate alpha diversity metrics for each sample.

    Supported metrics: 'observed', 'shannon' (natural log), 'simpson'
    (1 - dominance), 'chao1' (integer counts) and 'faith_pd' (binary tree).

    Args:
        data:    Dataset, ideally rarefied.
        metrics: Metrics to compute.

    Returns:
        DataFrame with alpha diversity values (samples x metrics).

    Raises:
        ValueError:        For an unknown metric.
        PreconditionError: For zero-count samples, non-integer counts with
                           'chao1', or a missing or non-binary tree with
                           'faith_pd'.
    """
    unknown = [m for m in metrics if m not in constants.ALPHA_METRICS]
    if unknown:
        raise ValueError(
            f"Invalid alpha diversity metric(s): {unknown}. "
            f"Expected any of {sorted(constants.ALPHA_METRICS)}"
        )
    depths = data.sample_depths()
    if (depths == 0).any():
        raise PreconditionError(
            f"Samples with zero total count: {depths.index[depths == 0].tolist()}"
        )

    df = data.to_dataframe()
    integer = data.is_integer()
    counts = df.to_numpy().astype(np.int64) if integer else df.to_numpy()
    results = pd.DataFrame(index=pd.Index(data.sample_ids, name='sample'))

    for metric in metrics:
        if metric == 'observed':
            values = (df > 0).sum(axis=1).to_numpy()
        elif metric == 'shannon':
            values = skbio_alpha_diversity(
                'shannon', counts, ids=data.sample_ids, base=np.e
            )
        elif metric == 'simpson':
            values = skbio_alpha_diversity('simpson', counts, ids=data.sample_ids)
        elif metric == 'chao1':
            if not integer:
                raise PreconditionError("'chao1' requires integer counts")
            values = skbio_alpha_diversity('chao1', counts, ids=data.sample_ids)
        else:
            if data.tree is None:
                raise PreconditionError("'faith_pd' requires a phylogenetic tree")
            require_binary(data.tree, 'faith_pd')
            values = skbio_alpha_diversity(
                'faith_pd', counts, ids=data.sample_ids,
                taxa=data.feature_ids, tree=data.tree
            )
        results[metric] = np.asarray(values, dtype=float)

    logger.debug(f"Computed alpha diversity ({', '.join(metrics)}) for {len(results)} samples")
    return results


def compare_alpha_diversity(
    alpha_df: pd.DataFrame,
    metadata: pd.DataFrame,
    group_column: str
) -> pd.DataFrame:
    """
    Test each alpha diversity metric for differences between groups.

    Two groups are compared with a two-sided Mann-Whitney U test, more with
    Kruskal-Wallis. P-values are Benjamini-Hochberg adjusted across metrics.

    Args:
        alpha_df:     DataFrame from alpha_diversity() (samples x metrics).
        metadata:     Metadata DataFrame (must include group_column).
        group_column: Metadata column containing group labels.

    Returns:
        DataFrame with columns metric, test, statistic, p_value, p_adj,
        effect_size and groups.
    """
    if group_column not in metadata.columns:
        raise ValueError(
            f"Metadata column '{group_column}' not found. "
            f"Available columns: {list(metadata.columns)}"
        )
    merged = alpha_df.join(metadata[[group_column]], how='inner')
    merged = merged[merged[group_column].notna()]
    groups = list(pd.unique(merged[group_column]))
    if len(groups) < 2:
        raise ValueError(
            f"Grouping column '{group_column}' must contain at least 2 groups"
        )

    results = []
    for metric in alpha_df.columns:
        group_data = [
            merged.loc[merged[group_column] == group, metric].dropna().to_numpy()
            for group in groups
        ]
        group_data = [values for values in group_data if len(values)]
        if len(group_data) < 2:
            logger.warning(f"Insufficient groups for {metric} - skipping")
            continue

        if len(group_data) == 2:
            test_name = "Mann-Whitney U"
            try:
                statistic, p_value = mannwhitneyu(*group_data, alternative='two-sided')
            except ValueError as e:
                logger.warning(f"{test_name} failed for {metric}: {e}")
                statistic, p_value = np.nan, np.nan
            # Rank-biserial correlation
            n1, n2 = len(group_data[0]), len(group_data[1])
            effect_size = 1 - (2 * statistic) / (n1 * n2)
        else:
            test_name = "Kruskal-Wallis"
            try:
                statistic, p_value = kruskal(*group_data)
            except ValueError as e:
                logger.warning(f"{test_name} failed for {metric}: {e}")
                statistic, p_value = np.nan, np.nan
            # Epsilon squared
            n_total = sum(len(g) for g in group_data)
            effect_size = statistic / ((n_total ** 2 - 1) / (n_total + 1))

        results.append({
            'metric': metric,
            'test': test_name,
            'statistic': statistic,
            'p_value': p_value,
            'effect_size': effect_size,
            'groups': len(group_data)
        })

    stats_df = pd.DataFrame(
        results,
        columns=['metric', 'test', 'statistic', 'p_value', 'effect_size', 'groups']
    )
    stats_df['p_adj'] = np.nan
    tested = stats_df['p_value'].notna()
    if tested.any():
        stats_df.loc[tested, 'p_adj'] = multipletests(
            stats_df.loc[tested, 'p_value'], method='fdr_bh'
        )[1]
    return stats_df
