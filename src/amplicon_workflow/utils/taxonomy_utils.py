# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom.table import Table

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import FormatError, ParseError
from amplicon_workflow.utils.qza import is_qza, qza_payload

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# Greengenes ('k__'), GTDB/SILVA 138 ('d__') and SILVA 132 ('D_0__') rank prefixes
RANK_PREFIX = re.compile(r'^\s*(?:[A-Za-z]_\d+__|[a-z]__)')

# ==================================== FUNCTIONS ===================================== #

def split_taxonomy(
    taxonomy: Union[str, Iterable[str], None],
    n_ranks: int = len(constants.TAXONOMIC_RANKS)
) -> List[Optional[str]]:
    """
    Split one taxonomy annotation into exactly `n_ranks` cleaned names.

    Args:
        taxonomy: A ';'-delimited string ("k__Bacteria; p__Firmicutes") or a list
                  of rank strings as stored in BIOM observation metadata.
        n_ranks:  Number of ranks to return.

    Returns:
        Rank names with prefixes removed; missing or unassigned ranks are None.
    """
    if taxonomy is None or (isinstance(taxonomy, float) and np.isnan(taxonomy)):
        parts: List[str] = []
    elif isinstance(taxonomy, str):
        parts = taxonomy.split(';')
    else:
        parts = [str(p) for p in taxonomy]

    names: List[Optional[str]] = []
    for part in parts[:n_ranks]:
        name = RANK_PREFIX.sub('', part).strip()
        names.append(None if name.lower() in constants.UNASSIGNED_LABELS else name)
    if len(parts) > n_ranks:
        logger.debug(f"Taxonomy '{taxonomy}' has more than {n_ranks} ranks; truncated")
    return names + [None] * (n_ranks - len(names))


def parse_taxonomy(
    taxonomy: pd.Series,
    ranks: List[str] = constants.TAXONOMIC_RANKS
) -> pd.DataFrame:
    """
    Parse taxonomy annotations into one column per rank.

    Args:
        taxonomy: Annotations indexed by feature ID.
        ranks:    Rank column names, broadest first.

    Returns:
        DataFrame indexed by feature ID with one column per rank; missing ranks
        are NaN.
    """
    rows = [split_taxonomy(value, len(ranks)) for value in taxonomy]
    df = pd.DataFrame(rows, index=taxonomy.index.astype(str), columns=ranks)
    df.index.name = 'feature'
    return df.astype(object).where(df.notna(), np.nan)


def import_taxonomy_tsv(tsv_path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a QIIME2 taxonomy TSV (`Feature ID`, `Taxon`, optional `Confidence`).

    Args:
        tsv_path: Path to taxonomy TSV file or `FeatureData[Taxonomy]` artifact.

    Returns:
        DataFrame indexed by feature ID with one column per taxonomic rank.

    Raises:
        FileNotFoundError: If the file does not exist.
        ParseError:        If the expected columns are missing.
        FormatError:       If a feature ID appears more than once.
    """
    tsv_path = Path(tsv_path)
    if not tsv_path.exists():
        raise FileNotFoundError(f"Taxonomy file not found: {tsv_path}")
    if is_qza(tsv_path):
        with qza_payload(tsv_path, 'taxonomy.tsv') as payload:
            return import_taxonomy_tsv(payload)

    try:
        df = pd.read_csv(tsv_path, sep='\t', dtype=str)
    except pd.errors.EmptyDataError as e:
        raise ParseError(f"Taxonomy file is empty: {tsv_path}") from e

    columns = {col.strip().lower(): col for col in df.columns}
    id_col = columns.get('feature id', columns.get('featureid', columns.get('#otuid')))
    taxon_col = columns.get('taxon', columns.get('taxonomy'))
    if id_col is None or taxon_col is None:
        raise ParseError(
            f"Taxonomy file '{tsv_path}' must have 'Feature ID' and 'Taxon' "
            f"columns; found {list(df.columns)}"
        )

    df = df[~df[id_col].astype(str).str.startswith('#')]
    ids = df[id_col].astype(str).str.strip()
    duplicated = ids[ids.duplicated()].unique().tolist()
    if duplicated:
        raise FormatError(f"Duplicate feature IDs in '{tsv_path}': {duplicated}")

    return parse_taxonomy(pd.Series(df[taxon_col].values, index=ids.values))


def taxonomy_from_biom(
    table: Table,
    key: str = constants.TAXONOMY_OBSERVATION_KEY
) -> Optional[pd.DataFrame]:
    """
    Extract embedded taxonomy from BIOM observation metadata.

    Args:
        table: BIOM table, possibly carrying per-observation metadata.
        key:   Observation metadata key holding the taxonomy (case-insensitive).

    Returns:
        Parsed taxonomy DataFrame, or None if the table carries no taxonomy.
    """
    metadata = table.metadata(axis='observation')
    if metadata is None:
        return None

    values = []
    found = False
    for md in metadata:
        md = {str(k).lower(): v for k, v in (md or {}).items()}
        value = md.get(key.lower())
        found = found or value is not None
        values.append(value)
    if not found:
        return None

    ids = [str(i) for i in table.ids(axis='observation')]
    return parse_taxonomy(pd.Series(values, index=ids, dtype=object))
