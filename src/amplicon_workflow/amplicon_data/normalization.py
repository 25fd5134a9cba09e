# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ============================== RELATIVE ABUNDANCE ================================== #

def relative_abundance(values) -> np.ndarray:
    """Return `values / sum(values)`.

    Raises:
        PreconditionError: If the values sum to zero.
    """
    values = np.asarray(values, dtype=float)
    total = values.sum()
    if total == 0:
        raise PreconditionError(
            "Relative abundance is undefined for a sample with zero total count"
        )
    return values / total


def transform_to_relative(data: AmpliconData) -> AmpliconData:
    """Convert every sample of `data` to relative abundance.

    Raises:
        PreconditionError: If any sample has a zero total count; remove those
                           samples first (e.g. with `filter_samples_by_depth`).
    """
    depths = data.sample_depths()
    empty = depths.index[depths == 0].tolist()
    if empty:
        raise PreconditionError(
            f"{len(empty)} sample(s) have zero total count: {empty[:10]}"
        )
    return data.with_table(data.table.norm(axis='sample', inplace=False))

# ================================ SIZE FACTORS ====================================== #

def size_factors(
    counts: pd.DataFrame,
    method: str = constants.DEFAULT_SIZE_FACTOR_METHOD
) -> pd.Series:
    """Median-of-ratios size factors, one per sample.

    Each sample's factor is the median, over usable features, of the ratio of
    its count to the feature's geometric mean across samples.

    Methods:
        ratio:     Features with a zero count in any sample have no finite
                   geometric mean and are excluded.
        poscounts: The geometric mean skips zeros (but divides by the number of
                   samples), and the factors are rescaled to a geometric mean of 1.

    Args:
        counts: Samples × features counts.
        method: 'ratio' or 'poscounts'.

    Returns:
        Size factors indexed by sample.

    Raises:
        ValueError:        For an unknown method.
        PreconditionError: If no feature is usable, or a sample shares no
                           usable feature.
    """
    if method not in constants.SIZE_FACTOR_METHODS:
        raise ValueError(
            f"Invalid size factor method: '{method}'. "
            f"Expected one of {list(constants.SIZE_FACTOR_METHODS)}"
        )
    values = counts.to_numpy(dtype=float)
    n_samples = values.shape[0]

    with np.errstate(divide='ignore'):
        log_counts = np.log(values)
    if method == 'ratio':
        log_geo_means = log_counts.mean(axis=0)
    else:
        positive_logs = np.where(values > 0, log_counts, 0.0)
        log_geo_means = positive_logs.sum(axis=0) / n_samples
        log_geo_means[(values > 0).sum(axis=0) == 0] = -np.inf

    usable = np.isfinite(log_geo_means)
    if not usable.any():
        raise PreconditionError(
            "Every feature has a zero count in at least one sample; size factors "
            "cannot be estimated with the 'ratio' method (try 'poscounts')"
            if method == 'ratio' else "Every feature has zero counts"
        )

    factors = np.empty(n_samples)
    for i in range(n_samples):
        ok = usable & (values[i] > 0)
        if not ok.any():
            raise PreconditionError(
                f"Sample '{counts.index[i]}' has no reads in any usable feature"
            )
        factors[i] = np.exp(np.median(log_counts[i, ok] - log_geo_means[ok]))

    if method == 'poscounts':
        factors = factors / np.exp(np.mean(np.log(factors)))

    logger.debug(
        f"Estimated '{method}' size factors from {int(usable.sum())} of "
        f"{values.shape[1]} features"
    )
    return pd.Series(factors, index=counts.index, name='size_factor')
