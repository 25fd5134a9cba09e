# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

# Third-Party Imports
import numpy as np
from biom.table import Table

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError
from amplicon_workflow.utils.progress import _format_task_desc, get_progress_bar

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

RandomState = Union[np.random.Generator, int, None]

# =================================== DATA CLASS ===================================== #

@dataclass
class RarefactionResult:
    """Rarefied dataset plus a record of what rarefaction removed."""
    data: AmpliconData
    depth: int
    dropped_samples: List[str] = field(default_factory=list)
    removed_features: List[str] = field(default_factory=list)

# ==================================== FUNCTIONS ===================================== #

def get_rng(rng: RandomState = None) -> np.random.Generator:
    """Return `rng` itself, or a new Generator seeded with it.

    A new Generator is created for ints and None (seeded with
    `constants.DEFAULT_SEED`), so the global NumPy state is never used.
    """
    if isinstance(rng, np.random.Generator):
        return rng
    if rng is None:
        rng = constants.DEFAULT_SEED
    return np.random.default_rng(rng)


def rarefy_counts(
    counts: np.ndarray,
    depth: int,
    rng: RandomState = None
) -> np.ndarray:
    """Subsample a count vector to exactly `depth` reads without replacement.

    Args:
        counts: Non-negative integer counts of one sample.
        depth:  Number of reads to keep.
        rng:    Generator or seed.

    Returns:
        Integer vector of the same length summing to `depth`.

    Raises:
        PreconditionError: If the counts are not integers or sum to less than
                           `depth`.
    """
    counts = np.asarray(counts)
    if np.any(np.mod(counts, 1) != 0) or np.any(counts < 0):
        raise PreconditionError("Rarefaction requires non-negative integer counts")
    counts = counts.astype(np.int64)
    if depth < 0:
        raise ValueError(f"Rarefaction depth must be non-negative, got {depth}")
    total = int(counts.sum())
    if depth > total:
        raise PreconditionError(
            f"Cannot rarefy a sample with {total} reads to depth {depth}"
        )
    return get_rng(rng).multivariate_hypergeometric(counts, int(depth))


def rarefy(
    data: AmpliconData,
    depth: Optional[int] = None,
    rng: RandomState = None,
    trim_features: bool = True
) -> RarefactionResult:
    """Rarefy every sample of `data` to the same depth.

    Samples shallower than `depth` are dropped and reported. Features that no
    longer have any reads are removed when `trim_features` is set.

    Args:
        data:          Dataset with integer counts.
        depth:         Target depth; defaults to the smallest sample depth.
        rng:           Generator or seed. The same seed on the same input always
                       yields the same table.
        trim_features: Remove features left with zero reads.

    Returns:
        RarefactionResult.

    Raises:
        PreconditionError: For non-integer counts, or if every sample is below
                           `depth`.
    """
    if not data.is_integer():
        raise PreconditionError("Rarefaction requires integer counts")
    rng = get_rng(rng)
    depths = data.sample_depths()
    if depth is None:
        depth = int(depths.min())
    depth = int(depth)
    if depth <= 0:
        raise PreconditionError(f"Rarefaction depth must be positive, got {depth}")

    dropped = depths.index[depths < depth].tolist()
    kept = depths.index[depths >= depth].tolist()
    if not kept:
        raise PreconditionError(
            f"Every sample has fewer than {depth} reads "
            f"(maximum depth is {depths.max():.0f})"
        )
    if dropped:
        logger.warning(
            f"Dropped {len(dropped)} sample(s) with fewer than {depth} reads: "
            f"{dropped}"
        )
        data = data.filter_samples(kept)

    dense = data.table.matrix_data.toarray()
    rarefied = np.zeros_like(dense, dtype=np.int64)
    with get_progress_bar() as progress:
        task = progress.add_task(
            _format_task_desc(f"Rarefying to {depth} reads"), total=data.n_samples
        )
        for j in range(data.n_samples):
            rarefied[:, j] = rarefy_counts(dense[:, j], depth, rng)
            progress.update(task, advance=1)

    removed: List[str] = []
    feature_ids = data.feature_ids
    if trim_features:
        empty = rarefied.sum(axis=1) == 0
        removed = [fid for fid, is_empty in zip(feature_ids, empty) if is_empty]
        if len(removed) == len(feature_ids):
            raise PreconditionError("Rarefaction removed every feature")
        if removed:
            logger.info(f"Removed {len(removed)} feature(s) with no reads after rarefaction")
            rarefied = rarefied[~empty]
            feature_ids = [fid for fid, is_empty in zip(feature_ids, empty) if not is_empty]

    table = Table(
        rarefied, observation_ids=feature_ids, sample_ids=data.sample_ids,
        type="OTU table"
    )
    logger.info(f"Rarefied {data.n_samples} samples to {depth} reads")
    return RarefactionResult(
        data=data.with_table(table),
        depth=depth,
        dropped_samples=dropped,
        removed_features=removed
    )
