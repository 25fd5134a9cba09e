"""
Shared fixtures: a small synthetic amplicon study written to disk in QIIME2 formats.

Eight samples (four 'gut', four 'tongue') and ten features. F1 is four times more
abundant in tongue samples, F9 has no taxonomy and F10 is rare. The tree has a
four-way root, a multifurcation and an extra tip (F11) that is not in the table.
"""
import zipfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from biom.table import Table

from amplicon_workflow.amplicon_data.dataset import load_dataset
from amplicon_workflow.utils.biom import write_biom

SAMPLE_IDS = [f"S{i}" for i in range(1, 9)]
FEATURE_IDS = [f"F{i}" for i in range(1, 11)]
GUT = SAMPLE_IDS[:4]
TONGUE = SAMPLE_IDS[4:]

TAXONOMY = {
    "F1": "k__Bacteria; p__Firmicutes; c__Bacilli; o__Lactobacillales; f__Streptococcaceae; g__Streptococcus; s__",
    "F2": "k__Bacteria; p__Firmicutes; c__Bacilli; o__Lactobacillales; f__Streptococcaceae; g__Lactococcus; s__",
    "F3": "d__Bacteria; p__Bacteroidota; c__Bacteroidia; o__Bacteroidales; f__Bacteroidaceae; g__Bacteroides; s__fragilis",
    "F4": "d__Bacteria; p__Bacteroidota; c__Bacteroidia; o__Bacteroidales; f__Bacteroidaceae; g__Bacteroides; s__",
    "F5": "k__Bacteria; p__Proteobacteria; c__Gammaproteobacteria; o__Enterobacterales; f__; g__",
    "F6": "k__Bacteria; p__Firmicutes; c__Clostridia; o__Lachnospirales; f__Lachnospiraceae; g__Blautia",
    "F7": "k__Bacteria; p__Firmicutes; c__Clostridia; o__Lachnospirales; f__Lachnospiraceae; g__Roseburia",
    "F8": "k__Bacteria; p__Actinobacteriota; c__Actinobacteria; o__Bifidobacteriales; f__Bifidobacteriaceae; g__Bifidobacterium",
    "F9": "Unassigned",
    "F10": "k__Bacteria; p__Firmicutes",
    # Not in the table
    "F99": "k__Archaea",
}

NEWICK = (
    "((F1:0.1,F2:0.2,F6:0.3):0.05,((F3:0.1,F4:0.1):0.2,F5:0.4):0.1,"
    "(F7:0.2,F8:0.3,F9:0.1,F10:0.5):0.3,(F11:0.2):0.1);"
)

METADATA_TSV = "\n".join([
    "sample-id\tbody-site\tsubject\tdays\treported-antibiotic-usage",
    "#q2:types\tcategorical\tcategorical\tnumeric\tcategorical",
    "S1\tgut\tsubject-1\t0\tYes",
    "S2\tgut\tsubject-2\t10\tNo",
    "S3\tgut\tsubject-1\t20\tNo",
    "S4\tgut\tsubject-2\t30\tYes",
    "S5\ttongue\tsubject-1\t0\tYes",
    "S6\ttongue\tsubject-2\t10\tNo",
    "S7\ttongue\tsubject-1\t20\tNo",
    "S8\ttongue\tsubject-2\t30\tYes",
]) + "\n"


def make_counts() -> np.ndarray:
    """Features × samples integer counts."""
    rng = np.random.default_rng(42)
    means = np.array([500, 300, 200, 150, 100, 80, 50, 30, 40, 5])
    counts = rng.poisson(means[:, None] * np.ones((1, len(SAMPLE_IDS))))
    counts[0, 4:] *= 4
    counts[9, :] = [0, 0, 1, 0, 0, 2, 0, 0]
    return counts.astype(np.int64)


def write_qza(path: Path, payload_name: str, content: bytes) -> Path:
    """Write a minimal QIIME2 artifact holding a single data file."""
    uuid = "0f2a6c3e-1111-4222-8333-944455556666"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(f"{uuid}/metadata.yaml", "uuid: " + uuid + "\n")
        archive.writestr(f"{uuid}/VERSION", "QIIME 2\n")
        archive.writestr(f"{uuid}/data/{payload_name}", content)
    return path


@pytest.fixture
def counts() -> np.ndarray:
    return make_counts()


@pytest.fixture
def table(counts) -> Table:
    return Table(counts, FEATURE_IDS, SAMPLE_IDS, type="OTU table")


@pytest.fixture
def biom_path(tmp_path, table) -> Path:
    return write_biom(table, tmp_path / "feature-table.biom")


@pytest.fixture
def metadata_path(tmp_path) -> Path:
    path = tmp_path / "sample-metadata.tsv"
    path.write_text(METADATA_TSV)
    return path


@pytest.fixture
def taxonomy_path(tmp_path) -> Path:
    path = tmp_path / "taxonomy.tsv"
    rows = ["Feature ID\tTaxon\tConfidence"]
    rows += [f"{fid}\t{taxon}\t0.99" for fid, taxon in TAXONOMY.items()]
    path.write_text("\n".join(rows) + "\n")
    return path


@pytest.fixture
def tree_path(tmp_path) -> Path:
    path = tmp_path / "tree.nwk"
    path.write_text(NEWICK + "\n")
    return path


@pytest.fixture
def dataset(biom_path, metadata_path, tree_path, taxonomy_path):
    """Dataset with the tree left multifurcating."""
    return load_dataset(biom_path, metadata_path, tree=tree_path, taxonomy=taxonomy_path)


@pytest.fixture
def resolved_dataset(dataset):
    """Dataset with a strictly binary tree."""
    return dataset.with_resolved_tree()


@pytest.fixture
def metadata_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "body-site": ["gut"] * 4 + ["tongue"] * 4,
            "days": [0, 10, 20, 30] * 2,
        },
        index=pd.Index(SAMPLE_IDS, name="sample"),
    )
