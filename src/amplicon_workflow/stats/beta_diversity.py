# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Optional

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.diversity import beta_diversity
from skbio.stats.distance import DistanceMatrix
from skbio.stats.distance import permanova as skbio_permanova
from skbio.stats.ordination import pcoa as PCoA

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError
from amplicon_workflow.utils.tree import require_binary

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# =================================== DATA CLASS ===================================== #

@dataclass
class Ordination:
    """Principal coordinates of a distance matrix.

    Attributes:
        samples:              Sample coordinates, columns 'PCo1'...'PCok'.
        proportion_explained: Share of total variance per axis.
        eigvals:              Eigenvalue per axis.
        metric:               Name of the distance metric.
    """
    samples: pd.DataFrame
    proportion_explained: pd.Series
    eigvals: pd.Series
    metric: str

    def axis_label(self, axis: str) -> str:
        return f"{axis} ({self.proportion_explained[axis] * 100:.1f}%)"

    def join_metadata(self, metadata: pd.DataFrame) -> pd.DataFrame:
        """Coordinates with the metadata of each sample appended."""
        metadata = metadata.copy()
        metadata.index = metadata.index.astype(str)
        clashing = [col for col in metadata.columns if col in self.samples.columns]
        metadata = metadata.rename(columns={col: f"{col}_sample" for col in clashing})
        joined = self.samples.join(metadata, how='left')
        joined.index.name = 'sample'
        return joined

# ==================================== FUNCTIONS ===================================== #

def distance_matrix(
    data: AmpliconData,
    metric: str = constants.DEFAULT_METRIC
) -> DistanceMatrix:
    """Pairwise sample distances.

    Phylogenetic metrics need a strictly binary tree; weighted UniFrac is
    normalized. Jaccard is computed on presence/absence.

    Args:
        data:   Dataset, ideally rarefied.
        metric: One of `constants.BETA_METRICS`.

    Returns:
        skbio DistanceMatrix over the sample IDs.

    Raises:
        ValueError:        For an unknown metric.
        PreconditionError: For fewer than two samples, a missing tree, a
                           non-binary tree, or an all-zero sample.
    """
    if metric not in constants.BETA_METRICS:
        raise ValueError(
            f"Invalid metric: '{metric}'. Expected one of {sorted(constants.BETA_METRICS)}"
        )
    if data.n_samples < 2:
        raise PreconditionError("At least two samples are needed for a distance matrix")

    depths = data.sample_depths()
    if (depths == 0).any():
        raise PreconditionError(
            f"Samples with zero total count: {depths.index[depths == 0].tolist()}"
        )
    if depths.nunique() > 1:
        logger.warning(
            f"Sample depths range from {depths.min():.0f} to {depths.max():.0f}; "
            f"'{metric}' distances on unrarefied data reflect sequencing depth"
        )

    df = data.to_dataframe()
    values = df.to_numpy()
    if metric == 'jaccard':
        values = (values > 0).astype(np.int64)
    elif data.is_integer():
        values = values.astype(np.int64)

    if metric in constants.PHYLOGENETIC_METRICS:
        if data.tree is None:
            raise PreconditionError(f"'{metric}' requires a phylogenetic tree")
        require_binary(data.tree, metric)
        kwargs = {'taxa': data.feature_ids, 'tree': data.tree}
        if metric == 'weighted_unifrac':
            kwargs['normalized'] = True
        dm = beta_diversity(metric, values, ids=data.sample_ids, **kwargs)
    else:
        dm = beta_diversity(metric, values, ids=data.sample_ids)

    logger.debug(f"Computed '{metric}' distances between {data.n_samples} samples")
    return dm


def pcoa(
    dm: DistanceMatrix,
    n_dimensions: Optional[int] = constants.DEFAULT_N_PCOA,
    metric: str = ''
) -> Ordination:
    """Principal coordinate analysis of a distance matrix.

    Args:
        dm:           Distance matrix.
        n_dimensions: Number of axes to keep; capped at n_samples - 1. None keeps
                      every axis.
        metric:       Name recorded on the result.
    """
    n_samples = dm.shape[0]
    if n_samples < 2:
        raise PreconditionError("At least two samples are needed for PCoA")
    max_dims = n_samples - 1
    n_dimensions = min(n_dimensions, max_dims) if n_dimensions else max_dims

    result = PCoA(dm)
    axes = [f"PCo{i + 1}" for i in range(n_dimensions)]
    samples = result.samples.iloc[:, :n_dimensions].copy()
    samples.columns = axes
    samples.index = samples.index.astype(str)
    samples.index.name = 'sample'

    proportion = pd.Series(
        np.asarray(result.proportion_explained)[:n_dimensions], index=axes,
        name='proportion_explained'
    )
    eigvals = pd.Series(
        np.asarray(result.eigvals)[:n_dimensions], index=axes, name='eigvals'
    )
    logger.info(
        f"PCoA ({metric or 'distance matrix'}): "
        + ", ".join(f"{ax} {p * 100:.1f}%" for ax, p in proportion.items())
    )
    return Ordination(
        samples=samples, proportion_explained=proportion, eigvals=eigvals,
        metric=metric
    )


def ordinate(
    data: AmpliconData,
    metric: str = constants.DEFAULT_METRIC,
    n_dimensions: Optional[int] = constants.DEFAULT_N_PCOA
) -> Ordination:
    """Distance matrix followed by PCoA."""
    return pcoa(distance_matrix(data, metric), n_dimensions, metric=metric)


def permanova(
    dm: DistanceMatrix,
    metadata: pd.DataFrame,
    column: str,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: Optional[int] = constants.DEFAULT_SEED
) -> pd.Series:
    """PERMANOVA test of `column` on the distances in `dm`.

    Samples without a value in `column` are left out.

    Returns:
        skbio result Series ('test statistic', 'p-value', ...).

    Raises:
        ValueError: For an unknown column or fewer than two groups.
    """
    if column not in metadata.columns:
        raise ValueError(
            f"Metadata column '{column}' not found. "
            f"Available columns: {list(metadata.columns)}"
        )
    grouping = metadata[column].copy()
    grouping.index = grouping.index.astype(str)
    grouping = grouping.loc[[sid for sid in dm.ids if sid in grouping.index]].dropna()
    if grouping.nunique() < 2:
        raise ValueError(f"PERMANOVA on '{column}' needs at least two groups")
    if len(grouping) < dm.shape[0]:
        logger.warning(
            f"PERMANOVA on '{column}': leaving out {dm.shape[0] - len(grouping)} "
            "sample(s) without a value"
        )
        dm = dm.filter(grouping.index.tolist())

    result = skbio_permanova(
        dm, grouping.astype(str), permutations=permutations, seed=seed
    )
    logger.info(
        f"PERMANOVA on '{column}': pseudo-F = {result['test statistic']:.3f}, "
        f"p = {result['p-value']:.4f} ({permutations} permutations)"
    )
    return result
