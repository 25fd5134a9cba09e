# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Union

# Third-Party Imports
import h5py
import pandas as pd
from biom import load_table
from biom.table import Table

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import ParseError
from amplicon_workflow.utils.qza import is_qza, qza_payload

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def import_biom(biom_path: Union[str, Path]) -> Table:
    """Load a BIOM table from file.

    HDF5 (BIOM 2.x) is tried first, then the JSON/TSV readers of `biom.load_table`.
    QIIME2 `FeatureTable` artifacts (.qza) are unpacked transparently.

    Args:
        biom_path :
            Path to .biom or .qza file.

    Returns:
        BIOM Table object (features x samples).

    Raises:
        FileNotFoundError: If the file does not exist.
        ParseError:        If the file cannot be parsed as a BIOM table.
    """
    biom_path = Path(biom_path)
    if not biom_path.exists():
        raise FileNotFoundError(f"Feature table not found: {biom_path}")

    if is_qza(biom_path):
        with qza_payload(biom_path, "feature-table.biom") as payload:
            return import_biom(payload)

    if h5py.is_hdf5(biom_path):
        try:
            with h5py.File(biom_path, "r") as f:
                return Table.from_hdf5(f)
        except (KeyError, ValueError, OSError) as e:
            raise ParseError(f"Could not parse BIOM table '{biom_path}': {e}") from e

    logger.debug(f"'{biom_path}' is not HDF5; trying JSON/TSV BIOM readers")
    try:
        table = load_table(str(biom_path))
    except (TypeError, ValueError, KeyError, IndexError, OSError) as e:
        raise ParseError(f"Could not parse BIOM table '{biom_path}': {e}") from e
    # The TSV reader accepts arbitrary text and yields an empty table
    if table.is_empty():
        raise ParseError(f"No BIOM table could be read from '{biom_path}'")
    return table


def write_biom(
    table: Table,
    output_path: Union[str, Path],
    generated_by: str = "amplicon_workflow"
) -> Path:
    """Write a BIOM table to HDF5.

    Args:
        table:        Table to write.
        output_path:  Destination .biom path; parent directories are created.
        generated_by: Provenance string stored in the file.

    Returns:
        The output path.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with h5py.File(output_path, "w") as f:
        table.to_hdf5(f, generated_by=generated_by)
    logger.debug(f"Wrote BIOM table to '{output_path}'")
    return output_path


def table_to_df(table: Table) -> pd.DataFrame:
    """Convert a BIOM table to a dense samples × features DataFrame."""
    return table.to_dataframe(dense=True).T
