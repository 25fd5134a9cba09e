"""
Amplicon Analysis Workflow
----------------------------------------------------------------------------------------
Runs a QIIME2 amplicon analysis end to end from a configuration: import, filtering,
rarefaction, beta and alpha diversity, differential abundance and taxonomic
composition plots. Tables and figures are written to the configured output directory.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import numpy as np

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.aggregation import aggregate_taxa
from amplicon_workflow.amplicon_data.dataset import AmpliconData, load_dataset
from amplicon_workflow.amplicon_data.filtering import (
    filter_features_by_abundance, filter_features_by_prevalence,
    filter_samples_by_depth, filter_samples_by_metadata
)
from amplicon_workflow.amplicon_data.rarefaction import rarefy
from amplicon_workflow.config import get_config, get_section
from amplicon_workflow.figures.alpha_diversity import plot_alpha_diversity
from amplicon_workflow.figures.beta_diversity import plot_ordination
from amplicon_workflow.figures.feature_abundance import (
    plot_abundance_bar, plot_differential_abundance
)
from amplicon_workflow.figures.figures import plotly_show_and_save
from amplicon_workflow.logger import setup_logging
from amplicon_workflow.stats.alpha_diversity import (
    alpha_diversity, compare_alpha_diversity
)
from amplicon_workflow.stats.beta_diversity import distance_matrix, pcoa, permanova
from amplicon_workflow.stats.differential_abundance import differential_abundance
from amplicon_workflow.utils.biom import write_biom
from amplicon_workflow.utils.io import write_table_tsv

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# =================================== MAIN WORKFLOW ================================== #

def is_enabled(config: Dict) -> bool:
    return config.get("enabled", False)


class AmpliconWorkflow:
    """Configured end-to-end amplicon analysis.

    Every step that draws random numbers gets its own generator seeded from
    `seed`, so enabling or disabling one step never changes another's output.
    """

    def __init__(self, config: Union[Dict, str, Path] = constants.DEFAULT_CONFIG):
        if not isinstance(config, dict):
            config = get_config(config)
        self.config = config
        self.output_dir = Path(config.get("output_dir", "amplicon_workflow_output"))
        self.seed = int(config.get("seed", constants.DEFAULT_SEED))
        figures_config = get_section(config, "figures")
        self.save_as = list(figures_config.get("save_as", constants.DEFAULT_SAVE_AS))
        self.results: Dict[str, Any] = {}

        log_config = get_section(config, "logging")
        if log_config.get("enabled", True):
            setup_logging(
                self.output_dir / "logs",
                console_level=logging.getLevelName(
                    str(log_config.get("console_level", "INFO")).upper()
                )
            )

    def _rng(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)

    def _save_figure(self, fig, name: str) -> None:
        plotly_show_and_save(fig, self.output_dir / "figures" / name, save_as=self.save_as)

    # ------------------------------------------------------------------- steps

    def load(self) -> AmpliconData:
        inputs = get_section(self.config, "inputs")
        if "table" not in inputs or "metadata" not in inputs:
            raise ValueError("Config section 'inputs' needs 'table' and 'metadata'")
        data = load_dataset(
            inputs["table"],
            inputs["metadata"],
            tree=inputs.get("tree"),
            taxonomy=inputs.get("taxonomy"),
            strict=inputs.get("strict", True),
            resolve_tree=inputs.get("resolve_tree", True)
        )
        self.results["raw"] = data
        return data

    def filter(self, data: AmpliconData) -> AmpliconData:
        config = get_section(self.config, "filtering")
        for predicate in config.get("metadata", []) or []:
            data = filter_samples_by_metadata(
                data, predicate["column"], predicate["value"], predicate.get("op", "==")
            )
        data = filter_samples_by_depth(
            data, config.get("min_depth", constants.DEFAULT_MIN_DEPTH)
        )
        data = filter_features_by_abundance(
            data, config.get("min_rel_abundance", constants.DEFAULT_MIN_REL_ABUNDANCE)
        )
        min_prevalence = config.get("min_prevalence", constants.DEFAULT_MIN_PREVALENCE)
        if min_prevalence > 1:
            data = filter_features_by_prevalence(data, min_prevalence)

        logger.info(f"{'Filtered dataset:':<30}{data.n_samples:>6} samples × {data.n_features:>5} features")
        write_biom(data.table, self.output_dir / "tables" / "filtered.biom")
        self.results["filtered"] = data
        return data

    def rarefy(self, data: AmpliconData) -> AmpliconData:
        config = get_section(self.config, "rarefaction")
        result = rarefy(data, depth=config.get("depth"), rng=self._rng())
        write_biom(result.data.table, self.output_dir / "tables" / "rarefied.biom")
        self.results["rarefaction"] = result
        return result.data

    def beta_diversity(self, data: AmpliconData) -> None:
        config = get_section(self.config, "ordination")
        metric = config.get("metric", constants.DEFAULT_METRIC)
        dm = distance_matrix(data, metric)
        ordination = pcoa(
            dm, config.get("n_dimensions", constants.DEFAULT_N_PCOA), metric=metric
        )
        self.results["ordination"] = ordination
        write_table_tsv(
            ordination.join_metadata(data.metadata),
            self.output_dir / "tables" / f"pcoa_{metric}.tsv"
        )

        color = config.get("color")
        if color:
            self.results["permanova"] = permanova(
                dm, data.metadata, color,
                permutations=config.get("permutations", constants.DEFAULT_PERMUTATIONS),
                seed=self.seed
            )
        fig = plot_ordination(
            ordination, data.metadata, color=color, symbol=config.get("shape"),
            ellipse=bool(color) and config.get("ellipse", False)
        )
        self._save_figure(fig, f"pcoa_{metric}")

    def alpha_diversity(self, data: AmpliconData) -> None:
        config = get_section(self.config, "alpha_diversity")
        alpha_df = alpha_diversity(
            data, config.get("metrics", constants.DEFAULT_ALPHA_METRICS)
        )
        self.results["alpha_diversity"] = alpha_df
        write_table_tsv(alpha_df, self.output_dir / "tables" / "alpha_diversity.tsv")

        group_column = config.get("group_column")
        if group_column:
            stats_df = compare_alpha_diversity(alpha_df, data.metadata, group_column)
            self.results["alpha_diversity_stats"] = stats_df
            write_table_tsv(
                stats_df, self.output_dir / "tables" / "alpha_diversity_stats.tsv",
                index=False
            )
            fig = plot_alpha_diversity(alpha_df, data.metadata, x=group_column)
            self._save_figure(fig, "alpha_diversity")

    def differential_abundance(self, data: AmpliconData) -> None:
        config = get_section(self.config, "differential_abundance")
        if "group_column" not in config or "reference" not in config:
            raise ValueError(
                "Config section 'differential_abundance' needs 'group_column' and 'reference'"
            )
        rank = config.get("rank")
        if rank:
            data = aggregate_taxa(data, rank, config.get("na_policy", "drop"))
        result = differential_abundance(
            data,
            config["group_column"],
            config["reference"],
            alpha=config.get("alpha", constants.DEFAULT_ALPHA),
            dispersion_trend=config.get(
                "dispersion_trend", constants.DEFAULT_DISPERSION_TREND
            ),
            size_factor_method=config.get(
                "size_factors", constants.DEFAULT_SIZE_FACTOR_METHOD
            )
        )
        self.results["differential_abundance"] = result
        result.to_tsv(self.output_dir / "tables" / "differential_abundance.tsv")

        label_rank = config.get("label_rank", rank)
        for i, comparison in enumerate(result.comparisons):
            fig = plot_differential_abundance(result, rank=label_rank, comparison=comparison)
            self._save_figure(fig, f"differential_abundance_{i + 1}")

    def composition(self, data: AmpliconData) -> None:
        config = get_section(self.config, "aggregation")
        rank = config.get("rank", "Phylum")
        na_policy = config.get("na_policy", "drop")
        self.results["aggregated"] = aggregate_taxa(data, rank, na_policy)
        fig = plot_abundance_bar(
            data, rank=rank, x=config.get("x", "sample"),
            top_n=config.get("top_n", constants.DEFAULT_TOP_N),
            facet_col=config.get("facet_col"), na_policy=na_policy
        )
        self._save_figure(fig, f"composition_{rank.lower()}")

    # --------------------------------------------------------------------- run

    def run(self) -> Dict[str, Any]:
        """Run every enabled step and return the intermediate results."""
        data = self.load()
        filtered = self.filter(data)

        rarefied: Optional[AmpliconData] = None
        if is_enabled(get_section(self.config, "rarefaction")):
            rarefied = self.rarefy(filtered)
        diversity_input = rarefied if rarefied is not None else filtered

        if is_enabled(get_section(self.config, "ordination")):
            self.beta_diversity(diversity_input)
        if is_enabled(get_section(self.config, "alpha_diversity")):
            self.alpha_diversity(diversity_input)
        # Count models use the unrarefied table
        if is_enabled(get_section(self.config, "differential_abundance")):
            self.differential_abundance(filtered)
        if is_enabled(get_section(self.config, "aggregation")):
            self.composition(diversity_input)

        logger.info(f"Results written to '{self.output_dir}'")
        return self.results


def run_workflow(
    config: Union[Dict, str, Path] = constants.DEFAULT_CONFIG
) -> Dict[str, Any]:
    """Run the workflow from a config dict or a YAML file path."""
    return AmpliconWorkflow(config).run()
