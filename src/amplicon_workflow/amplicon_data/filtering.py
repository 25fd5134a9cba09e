# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import operator
from typing import Any, Callable, Dict

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.errors import PreconditionError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

COMPARISON_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    '==': operator.eq,
    '!=': operator.ne,
    '<':  operator.lt,
    '<=': operator.le,
    '>':  operator.gt,
    '>=': operator.ge,
}
MEMBERSHIP_OPERATORS = ('in', 'not in')

# ================================ SAMPLE FILTERING ================================== #

def _get_operator(op: str) -> Callable[[Any, Any], Any]:
    if op not in COMPARISON_OPERATORS:
        raise ValueError(
            f"Invalid operator: '{op}'. Expected one of {list(COMPARISON_OPERATORS)}"
        )
    return COMPARISON_OPERATORS[op]


def filter_samples_by_depth(
    data: AmpliconData,
    threshold: float = constants.DEFAULT_MIN_DEPTH,
    op: str = '>='
) -> AmpliconData:
    """Keep samples whose sequencing depth satisfies `depth <op> threshold`.

    Args:
        data:      Dataset to filter.
        threshold: Depth threshold.
        op:        Comparison operator, e.g. '>=' (default) or '>'.

    Returns:
        New dataset with the other samples removed from every member.

    Raises:
        ValueError:        For an unknown operator.
        PreconditionError: If no sample passes.
    """
    compare = _get_operator(op)
    depths = data.sample_depths()
    mask = compare(depths, threshold)
    kept = depths.index[mask].tolist()
    if not kept:
        raise PreconditionError(
            f"No sample has depth {op} {threshold} "
            f"(maximum depth is {depths.max():.0f})"
        )
    n_removed = data.n_samples - len(kept)
    if n_removed:
        logger.info(
            f"Removed {n_removed} of {data.n_samples} samples with depth "
            f"not {op} {threshold}"
        )
    return data.filter_samples(kept)


def filter_samples_by_metadata(
    data: AmpliconData,
    column: str,
    value: Any,
    op: str = '=='
) -> AmpliconData:
    """Keep samples whose metadata value in `column` satisfies `<op> value`.

    Missing metadata values never satisfy the predicate. For 'in' and
    'not in', `value` is a collection.

    Raises:
        ValueError:        For an unknown column or operator.
        PreconditionError: If no sample passes.
    """
    if column not in data.metadata.columns:
        raise ValueError(
            f"Metadata column '{column}' not found. "
            f"Available columns: {list(data.metadata.columns)}"
        )
    values = data.metadata[column]

    if op in MEMBERSHIP_OPERATORS:
        if isinstance(value, (str, bytes)) or not np.iterable(value):
            raise ValueError(f"Operator '{op}' requires a collection of values")
        mask = values.isin(list(value))
        if op == 'not in':
            mask = ~mask
    else:
        compare = _get_operator(op)
        try:
            mask = compare(values, value)
        except TypeError as e:
            raise ValueError(
                f"Cannot compare column '{column}' with {value!r} using '{op}': {e}"
            ) from e
    mask = pd.Series(mask, index=values.index).fillna(False).astype(bool) & values.notna()

    kept = values.index[mask].tolist()
    if not kept:
        raise PreconditionError(f"No sample satisfies {column} {op} {value!r}")
    n_removed = data.n_samples - len(kept)
    if n_removed:
        logger.info(
            f"Removed {n_removed} of {data.n_samples} samples not matching "
            f"{column} {op} {value!r}"
        )
    return data.filter_samples(kept)

# ================================ FEATURE FILTERING ================================= #

def filter_features_by_abundance(
    data: AmpliconData,
    min_rel_abundance: float = constants.DEFAULT_MIN_REL_ABUNDANCE
) -> AmpliconData:
    """Keep features whose share of the grand total exceeds `min_rel_abundance`.

    Args:
        data:              Dataset to filter.
        min_rel_abundance: Fraction of all counts, e.g. 0.0005 for 0.05%.

    Raises:
        ValueError:        If the threshold is outside [0, 1).
        PreconditionError: If no feature passes.
    """
    if not 0 <= min_rel_abundance < 1:
        raise ValueError(
            f"`min_rel_abundance` must be in [0, 1), got {min_rel_abundance}"
        )
    totals = data.feature_totals()
    grand_total = totals.sum()
    if grand_total <= 0:
        raise PreconditionError("Feature table has no counts")
    rel_abundance = totals / grand_total
    kept = rel_abundance.index[rel_abundance > min_rel_abundance].tolist()
    if not kept:
        raise PreconditionError(
            f"No feature has relative abundance > {min_rel_abundance}"
        )
    n_removed = data.n_features - len(kept)
    if n_removed:
        logger.info(
            f"Removed {n_removed} of {data.n_features} features with relative "
            f"abundance <= {min_rel_abundance}"
        )
    return data.filter_features(kept)


def filter_features_by_prevalence(
    data: AmpliconData,
    min_samples: int = constants.DEFAULT_MIN_PREVALENCE
) -> AmpliconData:
    """Keep features observed (count > 0) in at least `min_samples` samples."""
    if min_samples < 0:
        raise ValueError(f"`min_samples` must be non-negative, got {min_samples}")
    prevalence = (data.to_dataframe() > 0).sum(axis=0)
    kept = prevalence.index[prevalence >= min_samples].tolist()
    if not kept:
        raise PreconditionError(f"No feature is present in {min_samples} samples")
    n_removed = data.n_features - len(kept)
    if n_removed:
        logger.info(
            f"Removed {n_removed} of {data.n_features} features present in "
            f"fewer than {min_samples} samples"
        )
    return data.filter_features(kept)
