# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import ParseError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def is_qza(path: Union[str, Path]) -> bool:
    """True if `path` names a QIIME2 artifact."""
    return Path(path).suffix.lower() == ".qza"


def list_payload(archive: zipfile.ZipFile) -> List[str]:
    """Members stored under `<uuid>/data/`, i.e. the artifact's exported data."""
    members = []
    for name in archive.namelist():
        parts = name.split("/")
        if len(parts) >= 3 and parts[1] == "data" and not name.endswith("/"):
            members.append(name)
    return members


@contextmanager
def qza_payload(
    qza_path: Union[str, Path],
    filename: Optional[str] = None
) -> Iterator[Path]:
    """Extract the data file of a QIIME2 artifact into a temporary directory.

    A .qza file is a zip archive; the payload lives in `<uuid>/data/`. The
    extracted file is removed when the context exits, so callers must read it
    fully inside the `with` block.

    Args:
        qza_path: Path to the .qza artifact.
        filename: Payload file name to look for (e.g. 'feature-table.biom').
                  If None, the artifact must hold exactly one data file.

    Yields:
        Path to the extracted payload file.

    Raises:
        ParseError: If the archive is not a zip file or the payload is missing
                    or ambiguous.
    """
    qza_path = Path(qza_path)
    if not qza_path.exists():
        raise FileNotFoundError(f"Artifact not found: {qza_path}")
    try:
        archive = zipfile.ZipFile(qza_path)
    except zipfile.BadZipFile as e:
        raise ParseError(f"'{qza_path}' is not a valid QIIME2 artifact: {e}") from e

    with archive:
        members = list_payload(archive)
        if filename is not None:
            members = [m for m in members if Path(m).name == filename]
        if not members:
            expected = f"'{filename}'" if filename else "a data file"
            raise ParseError(f"Artifact '{qza_path}' does not contain {expected}")
        if len(members) > 1:
            raise ParseError(
                f"Artifact '{qza_path}' holds {len(members)} data files; "
                f"expected one: {members}"
            )
        with tempfile.TemporaryDirectory() as tmp_dir:
            extracted = Path(archive.extract(members[0], tmp_dir))
            logger.debug(f"Extracted '{members[0]}' from '{qza_path}'")
            yield extracted


def payload_name(qza_path: Union[str, Path]) -> str:
    """File name of the single data file held by an artifact."""
    with qza_payload(qza_path) as payload:
        return payload.name
