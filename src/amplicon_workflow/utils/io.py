# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Any, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import ParseError
from amplicon_workflow.utils.biom import import_biom
from amplicon_workflow.utils.metadata import import_metadata_tsv
from amplicon_workflow.utils.qza import payload_name
from amplicon_workflow.utils.taxonomy_utils import import_taxonomy_tsv
from amplicon_workflow.utils.tree import import_tree

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# Payload file name -> reader
QZA_READERS = {
    'feature-table.biom': import_biom,
    'tree.nwk': import_tree,
    'taxonomy.tsv': import_taxonomy_tsv,
    'metadata.tsv': import_metadata_tsv,
}

# ==================================== FUNCTIONS ===================================== #

def read_qza(qza_path: Union[str, Path]) -> Any:
    """Read a QIIME2 artifact into its natural in-memory type.

    Supported payloads:
        feature-table.biom -> biom.Table
        tree.nwk           -> skbio.TreeNode
        taxonomy.tsv       -> taxonomy DataFrame (one column per rank)
        metadata.tsv       -> metadata DataFrame

    Raises:
        ParseError: If the artifact holds an unsupported payload.
    """
    name = payload_name(qza_path)
    reader = QZA_READERS.get(name)
    if reader is None:
        raise ParseError(
            f"Unsupported artifact payload '{name}' in '{qza_path}'. "
            f"Expected one of {sorted(QZA_READERS)}"
        )
    logger.debug(f"Reading '{name}' from artifact '{qza_path}'")
    return reader(qza_path)


def write_table_tsv(
    df: pd.DataFrame,
    output_path: Union[str, Path],
    index: bool = True
) -> Path:
    """Write a results table as tab-separated text, creating parent directories."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, sep='\t', index=index)
    logger.debug(f"Wrote {df.shape[0]} rows to '{output_path}'")
    return output_path
