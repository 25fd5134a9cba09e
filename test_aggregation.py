"""
Tests for taxonomic aggregation and long-format reshaping.
"""
import numpy as np
import pandas as pd
import pytest

from amplicon_workflow.amplicon_data.aggregation import NAPolicy, aggregate_taxa
from amplicon_workflow.amplicon_data.dataset import load_dataset
from amplicon_workflow.amplicon_data.transform import melt, top_features
from amplicon_workflow.errors import PreconditionError
from conftest import FEATURE_IDS, SAMPLE_IDS


def test_family_drop(dataset):
    aggregated = aggregate_taxa(dataset, 'Family')
    assert aggregated.n_features == 4
    assert set(aggregated.taxonomy['Family']) == {
        'Streptococcaceae', 'Bacteroidaceae', 'Lachnospiraceae', 'Bifidobacteriaceae'
    }
    assert aggregated.taxonomy[['Genus', 'Species']].isna().all().all()
    assert aggregated.tree is None


def test_family_keep(dataset):
    aggregated = aggregate_taxa(dataset, 'family', na_policy=NAPolicy.KEEP)
    assert aggregated.n_features == 7
    # Unassigned features are their own groups
    assert {'F5', 'F9', 'F10'} <= set(aggregated.feature_ids)


def test_keep_preserves_every_count(dataset):
    aggregated = aggregate_taxa(dataset, 'Family', na_policy='keep')
    np.testing.assert_array_equal(
        aggregated.sample_depths().values, dataset.sample_depths().values
    )


def test_drop_removes_only_unassigned_counts(dataset):
    aggregated = aggregate_taxa(dataset, 'Family')
    df = dataset.to_dataframe()
    expected = df.drop(columns=['F5', 'F9', 'F10']).sum(axis=1)
    np.testing.assert_array_equal(aggregated.sample_depths().values, expected.values)


def test_group_is_named_after_most_abundant_member(dataset):
    aggregated = aggregate_taxa(dataset, 'Family')
    totals = dataset.feature_totals()
    lachno = 'F6' if totals['F6'] >= totals['F7'] else 'F7'
    assert lachno in aggregated.feature_ids
    df = dataset.to_dataframe()
    np.testing.assert_array_equal(
        aggregated.to_dataframe()[lachno].values, (df['F6'] + df['F7']).values
    )


def test_sums_per_group(dataset):
    aggregated = aggregate_taxa(dataset, 'Phylum')
    assert aggregated.n_features == 4
    df = dataset.to_dataframe()
    firmicutes = aggregated.taxonomy.index[aggregated.taxonomy['Phylum'] == 'Firmicutes']
    assert len(firmicutes) == 1
    np.testing.assert_array_equal(
        aggregated.to_dataframe()[firmicutes[0]].values,
        df[['F1', 'F2', 'F6', 'F7', 'F10']].sum(axis=1).values
    )


def test_kingdom_prefixes_are_unified(dataset):
    # k__Bacteria and d__Bacteria are the same kingdom
    assert aggregate_taxa(dataset, 'Kingdom').n_features == 1


def test_same_name_under_different_parents_is_not_merged(table, metadata_path, tmp_path):
    path = tmp_path / "tax.tsv"
    rows = ["Feature ID\tTaxon"] + [
        f"{fid}\tk__Bacteria; p__P{i % 2}; c__C; o__O; f__Shared"
        for i, fid in enumerate(FEATURE_IDS)
    ]
    path.write_text("\n".join(rows) + "\n")
    data = load_dataset(table, metadata_path, taxonomy=path)
    assert aggregate_taxa(data, 'Family').n_features == 2


def test_aggregate_errors(dataset, table, metadata_path):
    with pytest.raises(ValueError):
        aggregate_taxa(dataset, 'Subspecies')
    with pytest.raises(ValueError):
        aggregate_taxa(dataset, 'Family', na_policy='impute')
    with pytest.raises(PreconditionError):
        aggregate_taxa(load_dataset(table, metadata_path), 'Family')


def test_aggregate_does_not_modify_input(dataset):
    before = dataset.taxonomy.copy()
    aggregate_taxa(dataset, 'Family')
    pd.testing.assert_frame_equal(dataset.taxonomy, before)
    assert dataset.tree is not None

# -------------------------------------------------------------------- melt

def test_melt_has_one_row_per_sample_feature(dataset):
    long_df = melt(dataset)
    assert len(long_df) == len(SAMPLE_IDS) * len(FEATURE_IDS)
    assert list(long_df.columns[:3]) == ['feature', 'sample', 'abundance']
    assert {'Phylum', 'body-site', 'days'} <= set(long_df.columns)
    assert long_df['abundance'].is_monotonic_decreasing
    assert long_df['abundance'].sum() == dataset.sample_depths().sum()


def test_melt_values_match_table(dataset):
    long_df = melt(dataset).set_index(['sample', 'feature'])
    df = dataset.to_dataframe()
    assert long_df.loc[('S5', 'F1'), 'abundance'] == df.loc['S5', 'F1']
    assert long_df.loc[('S5', 'F1'), 'body-site'] == 'tongue'
    assert long_df.loc[('S5', 'F1'), 'Genus'] == 'Streptococcus'


def test_melt_renames_clashing_metadata(dataset):
    metadata = dataset.metadata.assign(Phylum='metadata value')
    data = type(dataset)(dataset.table, metadata, dataset.taxonomy)
    long_df = melt(data)
    assert 'Phylum_sample' in long_df.columns
    assert (long_df['Phylum_sample'] == 'metadata value').all()


def test_top_features(dataset):
    totals = dataset.feature_totals().sort_values(ascending=False, kind='stable')
    assert top_features(dataset, 3) == totals.index[:3].tolist()
    assert len(top_features(dataset, 2, rank='Phylum')) == 2
    with pytest.raises(ValueError):
        top_features(dataset, 0)
