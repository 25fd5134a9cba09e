# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

# Third‑Party Imports
import numpy as np
import pandas as pd
from biom.table import Table
from skbio import TreeNode

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import FormatError, PreconditionError
from amplicon_workflow.utils.biom import import_biom, table_to_df
from amplicon_workflow.utils.metadata import import_metadata_tsv
from amplicon_workflow.utils.taxonomy_utils import import_taxonomy_tsv, taxonomy_from_biom
from amplicon_workflow.utils.tree import (
    import_tree, is_binary, resolve_polytomies, shear_to, tip_names
)

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

PathLike = Union[str, Path]

# =================================== DATA CLASS ===================================== #

class AmpliconData:
    """A feature table with its sample metadata, taxonomy and phylogeny.

    The four members always describe the same samples and features: the metadata
    index equals the table's sample IDs, the taxonomy index equals its feature IDs
    and the tree's tips are exactly the features. Every transformation in
    `amplicon_workflow.amplicon_data` returns a new instance instead of modifying
    one in place.

    Attributes:
        table:    BIOM Table, features × samples, non-negative counts.
        metadata: Sample metadata indexed by sample ID (table order).
        taxonomy: One column per rank indexed by feature ID, or None.
        tree:     Phylogeny over the features, or None.
    """

    def __init__(
        self,
        table: Table,
        metadata: pd.DataFrame,
        taxonomy: Optional[pd.DataFrame] = None,
        tree: Optional[TreeNode] = None
    ) -> None:
        self.table = table
        self.metadata = metadata
        self.taxonomy = taxonomy
        self.tree = tree
        self._validate()

    # Type hints
    table: Table
    metadata: pd.DataFrame
    taxonomy: Optional[pd.DataFrame]
    tree: Optional[TreeNode]

    def _validate(self) -> None:
        if self.table.is_empty():
            raise FormatError("Feature table has no samples or no features")

        values = self.table.matrix_data.data
        if not np.all(np.isfinite(values)):
            raise FormatError("Feature table contains non-finite values")
        if np.any(values < 0):
            raise FormatError("Feature table contains negative counts")

        sample_ids = self.sample_ids
        meta_ids = self.metadata.index.astype(str)
        if meta_ids.duplicated().any():
            raise FormatError("Metadata contains duplicate sample IDs")
        _require_same_ids(sample_ids, meta_ids, "samples", "metadata")
        metadata = self.metadata.copy()
        metadata.index = pd.Index(meta_ids, name='sample')
        self.metadata = metadata.loc[sample_ids]

        feature_ids = self.feature_ids
        if self.taxonomy is not None:
            tax_ids = self.taxonomy.index.astype(str)
            if tax_ids.duplicated().any():
                raise FormatError("Taxonomy contains duplicate feature IDs")
            _require_same_ids(feature_ids, tax_ids, "features", "taxonomy")
            taxonomy = self.taxonomy.copy()
            taxonomy.index = pd.Index(tax_ids, name='feature')
            self.taxonomy = taxonomy.loc[feature_ids]

        if self.tree is not None:
            _require_same_ids(feature_ids, tip_names(self.tree), "features", "tree tips")

    # ------------------------------------------------------------------ accessors

    @property
    def sample_ids(self) -> List[str]:
        return [str(i) for i in self.table.ids(axis='sample')]

    @property
    def feature_ids(self) -> List[str]:
        return [str(i) for i in self.table.ids(axis='observation')]

    @property
    def n_samples(self) -> int:
        return len(self.table.ids(axis='sample'))

    @property
    def n_features(self) -> int:
        return len(self.table.ids(axis='observation'))

    def sample_depths(self) -> pd.Series:
        """Total count per sample (sequencing depth)."""
        return pd.Series(
            self.table.sum(axis='sample'), index=self.sample_ids, name='depth'
        )

    def feature_totals(self) -> pd.Series:
        """Total count per feature across all samples."""
        return pd.Series(
            self.table.sum(axis='observation'), index=self.feature_ids, name='total'
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Dense samples × features DataFrame."""
        return table_to_df(self.table)

    def is_integer(self) -> bool:
        """True if every count is a whole number."""
        values = self.table.matrix_data.data
        return bool(np.all(np.mod(values, 1) == 0))

    def equals(self, other: "AmpliconData") -> bool:
        """Member-wise equality of two datasets."""
        if not isinstance(other, AmpliconData):
            return False
        if self.sample_ids != other.sample_ids or self.feature_ids != other.feature_ids:
            return False
        if not np.array_equal(self.to_dataframe().values, other.to_dataframe().values):
            return False
        if not self.metadata.equals(other.metadata):
            return False
        if (self.taxonomy is None) != (other.taxonomy is None):
            return False
        if self.taxonomy is not None and not self.taxonomy.equals(other.taxonomy):
            return False
        if (self.tree is None) != (other.tree is None):
            return False
        return self.tree is None or str(self.tree) == str(other.tree)

    def __repr__(self) -> str:
        return (
            f"AmpliconData({self.n_features} features × {self.n_samples} samples, "
            f"{self.metadata.shape[1]} metadata columns, "
            f"taxonomy={'yes' if self.taxonomy is not None else 'no'}, "
            f"tree={'yes' if self.tree is not None else 'no'})"
        )

    # ------------------------------------------------------------ derived copies

    def filter_samples(self, ids: Iterable[str]) -> "AmpliconData":
        """New dataset restricted to the samples in `ids` (table order is kept).

        Raises:
            PreconditionError: If no sample would remain.
        """
        keep = set(map(str, ids))
        kept = [sid for sid in self.sample_ids if sid in keep]
        if not kept:
            raise PreconditionError("Filtering would remove every sample")
        table = self.table.filter(kept, axis='sample', inplace=False)
        return AmpliconData(table, self.metadata.loc[kept], self.taxonomy, self.tree)

    def filter_features(self, ids: Iterable[str]) -> "AmpliconData":
        """New dataset restricted to the features in `ids`; the tree is sheared.

        Raises:
            PreconditionError: If no feature would remain.
        """
        keep = set(map(str, ids))
        kept = [fid for fid in self.feature_ids if fid in keep]
        if not kept:
            raise PreconditionError("Filtering would remove every feature")
        table = self.table.filter(kept, axis='observation', inplace=False)
        taxonomy = self.taxonomy.loc[kept] if self.taxonomy is not None else None
        tree = shear_to(self.tree, kept) if self.tree is not None else None
        return AmpliconData(table, self.metadata, taxonomy, tree)

    def with_table(self, table: Table) -> "AmpliconData":
        """New dataset around `table`, with the other members subset to match it.

        `table` may only contain samples and features already present here.
        """
        sample_ids = [str(i) for i in table.ids(axis='sample')]
        feature_ids = [str(i) for i in table.ids(axis='observation')]
        taxonomy = self.taxonomy.loc[feature_ids] if self.taxonomy is not None else None
        tree = self.tree
        if tree is not None and set(feature_ids) != tip_names(tree):
            tree = shear_to(tree, feature_ids)
        return AmpliconData(table, self.metadata.loc[sample_ids], taxonomy, tree)

    def with_resolved_tree(self) -> "AmpliconData":
        """New dataset whose tree has been made strictly binary."""
        if self.tree is None:
            raise PreconditionError("Dataset has no phylogenetic tree")
        return AmpliconData(
            self.table, self.metadata, self.taxonomy, resolve_polytomies(self.tree)
        )


def _require_same_ids(
    expected: Iterable[str],
    observed: Iterable[str],
    what: str,
    source: str
) -> None:
    expected, observed = set(expected), set(observed)
    if expected == observed:
        return
    missing = sorted(expected - observed)
    extra = sorted(observed - expected)
    raise FormatError(
        f"Identifiers of {what} do not match {source}: "
        f"{len(missing)} missing from {source} {missing[:5]}, "
        f"{len(extra)} only in {source} {extra[:5]}"
    )

# ==================================== LOADING ======================================= #

def load_dataset(
    table: Union[PathLike, Table],
    metadata: Union[PathLike, pd.DataFrame],
    tree: Union[PathLike, TreeNode, None] = None,
    taxonomy: Union[PathLike, pd.DataFrame, None] = None,
    strict: bool = True,
    resolve_tree: bool = False
) -> AmpliconData:
    """Build an AmpliconData object from QIIME2 outputs.

    Args:
        table:        BIOM/QZA feature table path, or a loaded Table.
        metadata:     Sample metadata TSV path, or a DataFrame indexed by sample.
        tree:         Newick/QZA tree path, or a TreeNode. Optional.
        taxonomy:     Taxonomy TSV/QZA path, or a parsed DataFrame. If None, the
                      taxonomy embedded in the BIOM observation metadata is used.
        strict:       If True, differing sample sets between table and metadata
                      raise; otherwise only the shared samples are kept.
        resolve_tree: Make the tree strictly binary while loading.

    Returns:
        AmpliconData with all members aligned.

    Raises:
        FormatError: If identifiers are inconsistent across inputs.
        ParseError:  If an input file is malformed.
    """
    if not isinstance(table, Table):
        table = import_biom(table)
    if not isinstance(metadata, pd.DataFrame):
        metadata = import_metadata_tsv(metadata)
    if tree is not None and not isinstance(tree, TreeNode):
        tree = import_tree(tree)
    if taxonomy is not None and not isinstance(taxonomy, pd.DataFrame):
        taxonomy = import_taxonomy_tsv(taxonomy)
    elif taxonomy is None:
        taxonomy = taxonomy_from_biom(table)

    metadata = metadata.copy()
    metadata.index = metadata.index.astype(str)

    # Samples
    table_samples = [str(i) for i in table.ids(axis='sample')]
    meta_samples = set(metadata.index)
    if set(table_samples) != meta_samples:
        if strict:
            _require_same_ids(table_samples, meta_samples, "table samples", "metadata")
        shared = [sid for sid in table_samples if sid in meta_samples]
        if not shared:
            raise FormatError("Feature table and metadata share no sample IDs")
        logger.warning(
            f"Keeping {len(shared)} samples shared by table and metadata "
            f"({len(table_samples) - len(shared)} table-only, "
            f"{len(meta_samples) - len(shared)} metadata-only dropped)"
        )
        table = table.filter(shared, axis='sample', inplace=False)
        metadata = metadata.loc[shared]

    # Features
    feature_ids = [str(i) for i in table.ids(axis='observation')]
    if taxonomy is not None:
        missing = set(feature_ids) - set(taxonomy.index.astype(str))
        if missing:
            raise FormatError(
                f"{len(missing)} feature(s) have no taxonomy, e.g. {sorted(missing)[:5]}"
            )
        taxonomy = taxonomy.copy()
        taxonomy.index = taxonomy.index.astype(str)
        if len(taxonomy) > len(feature_ids):
            logger.debug(
                f"Dropping {len(taxonomy) - len(feature_ids)} taxonomy rows "
                "for features absent from the table"
            )
        taxonomy = taxonomy.loc[feature_ids]

    if tree is not None:
        n_tips = len(tip_names(tree))
        tree = shear_to(tree, feature_ids)
        if n_tips > len(feature_ids):
            logger.info(f"Sheared tree from {n_tips} to {len(feature_ids)} tips")
        if resolve_tree:
            tree = resolve_polytomies(tree)
        elif not is_binary(tree):
            logger.warning(
                "Tree is not strictly binary; call resolve_polytomies() before "
                "computing UniFrac or Faith's PD"
            )

    data = AmpliconData(table, metadata, taxonomy, tree)
    logger.info(
        f"{'Loaded metadata:':<30}{data.n_samples:>6} samples "
        f"× {data.metadata.shape[1]:>5} cols"
    )
    logger.info(
        f"{'Loaded features:':<30}{data.n_samples:>6} samples "
        f"× {data.n_features:>5} features"
    )
    return data
