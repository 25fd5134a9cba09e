# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, List, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import FormatError, ParseError
from amplicon_workflow.utils.qza import is_qza, qza_payload

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def import_metadata_tsv(
    tsv_path: Union[str, Path],
    id_columns: List[str] = constants.DEFAULT_META_ID_COLUMNS
) -> pd.DataFrame:
    """Load a QIIME2 sample metadata TSV file.

    The identifier column is the first of `id_columns` present (case-insensitive),
    otherwise the first column. The `#q2:types` directive row is removed and its
    `numeric`/`categorical` declarations are honoured; undeclared columns become
    numeric when every non-missing value parses as a number.

    Args:
        tsv_path:   Path to metadata TSV file.
        id_columns: Candidate identifier column names, in priority order.

    Returns:
        Metadata DataFrame indexed by sample ID (index name 'sample').

    Raises:
        FileNotFoundError: If specified path doesn't exist.
        ParseError:        If the file is empty or a declared numeric column
                           holds non-numeric values.
        FormatError:       If sample identifiers are missing or duplicated.
    """
    tsv_path = Path(tsv_path)
    if not tsv_path.exists():
        raise FileNotFoundError(f"Metadata file not found: {tsv_path}")
    if is_qza(tsv_path):
        with qza_payload(tsv_path, 'metadata.tsv') as payload:
            return import_metadata_tsv(payload, id_columns)

    try:
        df = pd.read_csv(tsv_path, sep='\t', dtype=str)
    except pd.errors.EmptyDataError as e:
        raise ParseError(f"Metadata file is empty: {tsv_path}") from e
    except pd.errors.ParserError as e:
        raise ParseError(f"Malformed metadata file '{tsv_path}': {e}") from e

    if df.shape[1] == 0:
        raise ParseError(f"Metadata file has no columns: {tsv_path}")

    lower_columns = {col.strip().lower(): col for col in df.columns}
    id_col = next(
        (lower_columns[c] for c in id_columns if c in lower_columns), df.columns[0]
    )
    ids = df[id_col].astype(str).str.strip()

    # Directive and comment rows start with '#'
    types_mask = ids.str.lower() == constants.QIIME2_TYPES_DIRECTIVE
    directives: Dict[str, str] = {}
    if types_mask.any():
        types_row = df.loc[types_mask].iloc[0]
        directives = {
            col: str(types_row[col]).strip().lower()
            for col in df.columns if col != id_col and pd.notna(types_row[col])
        }
    keep = ~ids.str.startswith('#') & df[id_col].notna()
    df, ids = df.loc[keep], ids.loc[keep]

    if df.empty:
        raise ParseError(f"Metadata file contains no samples: {tsv_path}")
    if (ids == '').any():
        raise FormatError(f"Metadata file '{tsv_path}' has rows without a sample ID")
    duplicated = ids[ids.duplicated()].unique().tolist()
    if duplicated:
        raise FormatError(f"Duplicate sample IDs in '{tsv_path}': {duplicated}")

    df = df.drop(columns=[id_col])
    df.index = pd.Index(ids.tolist(), name='sample')
    df.columns = [str(col).strip() for col in df.columns]
    directives = {str(col).strip(): kind for col, kind in directives.items()}

    for col in df.columns:
        df[col] = _coerce_column(df[col], directives.get(col), tsv_path)

    logger.debug(
        f"{'Loaded metadata:':<30}{df.shape[0]:>6} samples × {df.shape[1]:>5} cols"
    )
    return df


def _coerce_column(
    values: pd.Series,
    directive: Union[str, None],
    tsv_path: Path
) -> pd.Series:
    """Apply a QIIME2 column type, or infer numeric columns."""
    values = values.str.strip()
    if directive == 'categorical':
        return values
    converted = pd.to_numeric(values, errors='coerce')
    parsed_all = converted.notna().sum() == values.notna().sum()
    if directive == 'numeric':
        if not parsed_all:
            raise ParseError(
                f"Column '{values.name}' in '{tsv_path}' is declared numeric "
                "but holds non-numeric values"
            )
        return converted
    if parsed_all and values.notna().any():
        return converted
    return values
