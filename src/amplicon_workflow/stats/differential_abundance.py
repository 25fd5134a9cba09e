# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats
from statsmodels.nonparametric.smoothers_lowess import lowess

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.dataset import AmpliconData
from amplicon_workflow.amplicon_data.normalization import size_factors
from amplicon_workflow.errors import PreconditionError, StatisticalFitError
from amplicon_workflow.utils.io import write_table_tsv
from amplicon_workflow.utils.progress import _format_task_desc, get_progress_bar

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

RESULT_COLUMNS = [
    'feature', 'comparison', 'level', 'reference',
    'baseMean', 'log2FoldChange', 'lfcSE', 'stat', 'pvalue', 'padj'
]

# Errors raised by pydeseq2 / numpy when a fit cannot be completed
_FIT_ERRORS = (
    ValueError, RuntimeError, FloatingPointError, KeyError, IndexError,
    np.linalg.LinAlgError
)

# Size factor method -> pydeseq2 `fit_size_factors` mode
_PYDESEQ2_SIZE_FACTORS = {'ratio': 'ratio', 'poscounts': 'poscount'}

# =================================== DATA CLASS ===================================== #

@dataclass
class DifferentialAbundanceResult:
    """Per-feature Wald test results of every level against the reference.

    Attributes:
        table:        One row per (feature, comparison), joined with taxonomy.
        size_factors: Size factor per sample that the model was fitted with.
        group_column: Metadata column that defined the groups.
        reference:    Reference level.
        levels:       Non-reference levels, in comparison order.
        alpha:        Significance level used for independent filtering.
    """
    table: pd.DataFrame
    size_factors: pd.Series
    group_column: str
    reference: Any
    levels: List[Any] = field(default_factory=list)
    alpha: float = constants.DEFAULT_ALPHA

    @property
    def comparisons(self) -> List[str]:
        return self.table['comparison'].drop_duplicates().tolist()

    def significant(self, alpha: Optional[float] = None) -> pd.DataFrame:
        """Rows with adjusted p-value below `alpha` (default: the fit's alpha)."""
        alpha = self.alpha if alpha is None else alpha
        return self.table[self.table['padj'] < alpha].sort_values('padj')

    def to_tsv(self, output_path: Union[str, Path]) -> Path:
        return write_table_tsv(self.table, output_path, index=False)

# ==================================== FUNCTIONS ===================================== #

def fit_local_dispersion_trend(
    mean_counts: np.ndarray,
    dispersions: np.ndarray,
    frac: float = constants.DEFAULT_LOWESS_FRAC,
    min_disp: float = constants.MIN_DISPERSION
) -> np.ndarray:
    """LOWESS fit of log dispersion on log mean normalized count.

    Only features with a dispersion of at least `10 * min_disp` inform the fit;
    if fewer than three do, a constant `10 * min_disp` trend is returned.

    Args:
        mean_counts: Mean normalized count of each feature (> 0).
        dispersions: Gene-wise dispersion estimate of each feature.
        frac:        Fraction of features used for each local fit.
        min_disp:    Lower bound of the returned trend.

    Returns:
        Fitted dispersion per feature.
    """
    mean_counts = np.asarray(mean_counts, dtype=float)
    dispersions = np.asarray(dispersions, dtype=float)
    informative = (dispersions >= 10 * min_disp) & np.isfinite(dispersions)
    if informative.sum() < 3:
        logger.warning(
            "Too few informative features for a local dispersion trend; "
            "using a constant trend"
        )
        return np.full(mean_counts.shape, 10 * min_disp)

    log_means = np.log(mean_counts)
    fitted = lowess(
        np.log(dispersions[informative]),
        log_means[informative],
        frac=frac,
        return_sorted=True
    )
    # Columns are (x, fitted y), sorted by x
    trend = np.interp(log_means, fitted[:, 0], fitted[:, 1])
    return np.maximum(np.exp(trend), min_disp)


def _fit_deseq(
    counts: pd.DataFrame,
    design: pd.DataFrame,
    dispersion_trend: str,
    size_factor_method: str
) -> DeseqDataSet:
    """Run the DESeq2 model fit step by step so the trend can be replaced."""
    local = dispersion_trend == 'local'
    dds = DeseqDataSet(
        counts=counts,
        metadata=design,
        design=f"~{constants.DEFAULT_DESIGN_FACTOR}",
        fit_type='mean' if local else dispersion_trend,
        refit_cooks=not local,
        inference=DefaultInference(n_cpus=1),
        quiet=True
    )
    dds.fit_size_factors(fit_type=_PYDESEQ2_SIZE_FACTORS[size_factor_method])
    dds.fit_genewise_dispersions()
    dds.fit_dispersion_trend()

    if local:
        mean_normed = np.asarray(dds.layers['normed_counts']).mean(axis=0)
        non_zero = mean_normed > 0
        dds.var.loc[non_zero, 'fitted_dispersions'] = fit_local_dispersion_trend(
            mean_normed[non_zero],
            dds.var['genewise_dispersions'].to_numpy()[non_zero],
            min_disp=dds.min_disp
        )

    dds.fit_dispersion_prior()
    dds.fit_MAP_dispersions()
    dds.fit_LFC()
    dds.calculate_cooks()
    if dds.refit_cooks:
        dds.refit()
    return dds


def differential_abundance(
    data: AmpliconData,
    group_column: str,
    reference: Any,
    alpha: float = constants.DEFAULT_ALPHA,
    dispersion_trend: str = constants.DEFAULT_DISPERSION_TREND,
    size_factor_method: str = constants.DEFAULT_SIZE_FACTOR_METHOD,
    cooks_filter: bool = True,
    independent_filter: bool = True
) -> DifferentialAbundanceResult:
    """Negative-binomial differential abundance test (DESeq2 via pydeseq2).

    Every non-reference level of `group_column` is compared with `reference`
    with a Wald test; p-values are Benjamini-Hochberg adjusted per comparison.
    Samples without a group value are left out.

    Args:
        data:               Dataset with raw (unrarefied) integer counts.
        group_column:       Categorical metadata column.
        reference:          Reference level of `group_column`.
        alpha:              Significance level for independent filtering.
        dispersion_trend:   'local' (LOWESS), 'parametric' or 'mean'.
        size_factor_method: 'ratio' (features with any zero excluded) or
                            'poscounts'.
        cooks_filter:       Set p-values of count outliers to NaN.
        independent_filter: Filter low-count features before adjustment.

    Returns:
        DifferentialAbundanceResult with one row per feature per comparison.

    Raises:
        ValueError:          For an unknown column, trend or reference level, or
                             fewer than two levels.
        PreconditionError:   For non-integer counts or counts with no feature
                             usable for size factors.
        StatisticalFitError: If the model fails to fit or yields no p-values.
    """
    if dispersion_trend not in constants.DISPERSION_TRENDS:
        raise ValueError(
            f"Invalid dispersion trend: '{dispersion_trend}'. "
            f"Expected one of {list(constants.DISPERSION_TRENDS)}"
        )
    if group_column not in data.metadata.columns:
        raise ValueError(
            f"Metadata column '{group_column}' not found. "
            f"Available columns: {list(data.metadata.columns)}"
        )
    if not data.is_integer():
        raise PreconditionError("Differential abundance requires integer counts")

    groups = data.metadata[group_column]
    missing = groups.index[groups.isna()].tolist()
    if missing:
        logger.warning(
            f"Leaving out {len(missing)} sample(s) without a '{group_column}' value"
        )
        data = data.filter_samples(groups.index[groups.notna()])
        groups = data.metadata[group_column]

    observed = list(pd.unique(groups))
    if reference not in observed:
        raise ValueError(
            f"Reference level {reference!r} not found in '{group_column}'. "
            f"Levels: {observed}"
        )
    levels = sorted((lvl for lvl in observed if lvl != reference), key=str)
    if not levels:
        raise ValueError(
            f"'{group_column}' needs at least two levels, found only {reference!r}"
        )

    # Labels are replaced by tokens so that any label is valid in a design formula
    tokens = {reference: 'g0'}
    tokens.update({lvl: f"g{i}" for i, lvl in enumerate(levels, start=1)})

    counts = data.to_dataframe().astype(np.int64)
    # Raises for an unknown method or when no feature is usable for size factors
    size_factors(counts, size_factor_method)
    design = pd.DataFrame(
        {constants.DEFAULT_DESIGN_FACTOR: groups.map(tokens).astype(str)},
        index=counts.index
    )

    logger.info(
        f"Fitting negative binomial model: {data.n_features} features × "
        f"{data.n_samples} samples, {len(levels) + 1} levels of '{group_column}'"
    )
    try:
        dds = _fit_deseq(counts, design, dispersion_trend, size_factor_method)
    except _FIT_ERRORS as e:
        raise StatisticalFitError(f"DESeq2 model fit failed: {e}") from e
    factors = pd.Series(
        np.asarray(dds.obs['size_factors'], dtype=float),
        index=counts.index, name='size_factors'
    )

    frames = []
    with get_progress_bar() as progress:
        task = progress.add_task(
            _format_task_desc(f"Testing levels of '{group_column}'"), total=len(levels)
        )
        for level in levels:
            progress.update(task, description=_format_task_desc(f"{level} vs {reference}"))
            try:
                stats = DeseqStats(
                    dds,
                    contrast=[constants.DEFAULT_DESIGN_FACTOR, tokens[level], 'g0'],
                    alpha=alpha,
                    cooks_filter=cooks_filter,
                    independent_filter=independent_filter,
                    quiet=True
                )
                stats.summary()
            except _FIT_ERRORS as e:
                raise StatisticalFitError(
                    f"Wald test of {level!r} vs {reference!r} failed: {e}"
                ) from e
            frame = stats.results_df.copy()
            frame.index = frame.index.astype(str)
            frame = frame.rename_axis('feature').reset_index()
            frame['comparison'] = f"{level} vs {reference}"
            frame['level'] = level
            frame['reference'] = reference
            frames.append(frame[RESULT_COLUMNS])
            progress.update(task, advance=1)

    table = pd.concat(frames, ignore_index=True)
    if not np.isfinite(table['pvalue'].to_numpy(dtype=float)).any():
        raise StatisticalFitError("DESeq2 produced no finite p-values")
    if data.taxonomy is not None:
        table = table.merge(data.taxonomy, left_on='feature', right_index=True, how='left')

    n_sig = int((table['padj'] < alpha).sum())
    logger.info(
        f"Differential abundance: {n_sig} significant rows (padj < {alpha}) "
        f"across {len(levels)} comparison(s)"
    )
    return DifferentialAbundanceResult(
        table=table,
        size_factors=factors,
        group_column=group_column,
        reference=reference,
        levels=levels,
        alpha=alpha
    )
