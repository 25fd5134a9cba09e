"""
End-to-end tests of the configured workflow, plus configuration and logging setup.
"""
import logging

import pytest
import yaml

from amplicon_workflow import constants
from amplicon_workflow.amplicon_data.rarefaction import RarefactionResult
from amplicon_workflow.config import get_config, get_section
from amplicon_workflow.logger import setup_logging
from amplicon_workflow.stats.beta_diversity import Ordination
from amplicon_workflow.stats.differential_abundance import DifferentialAbundanceResult
from amplicon_workflow.workflow import AmpliconWorkflow, run_workflow


@pytest.fixture
def config(tmp_path, biom_path, metadata_path, tree_path, taxonomy_path):
    return {
        'output_dir': str(tmp_path / "out"),
        'seed': 5,
        'inputs': {
            'table': biom_path,
            'metadata': metadata_path,
            'tree': tree_path,
            'taxonomy': taxonomy_path,
            'resolve_tree': True,
        },
        'filtering': {
            'min_depth': 100,
            'min_rel_abundance': 0.0005,
            'metadata': [{'column': 'days', 'op': '<=', 'value': 30}],
        },
        'rarefaction': {'enabled': True},
        'ordination': {
            'enabled': True, 'metric': 'weighted_unifrac', 'color': 'body-site',
            'ellipse': True, 'permutations': 99,
        },
        'alpha_diversity': {
            'enabled': True, 'metrics': ['observed', 'shannon', 'faith_pd'],
            'group_column': 'body-site',
        },
        'differential_abundance': {
            'enabled': True, 'group_column': 'body-site', 'reference': 'gut',
        },
        'aggregation': {'enabled': True, 'rank': 'Phylum', 'facet_col': 'body-site'},
        'figures': {'save_as': ['html']},
        'logging': {'enabled': False},
    }


def test_full_run_writes_tables_and_figures(config, tmp_path):
    results = run_workflow(config)
    out = tmp_path / "out"

    assert isinstance(results['rarefaction'], RarefactionResult)
    assert isinstance(results['ordination'], Ordination)
    assert isinstance(results['differential_abundance'], DifferentialAbundanceResult)
    # The rare feature is filtered before any analysis
    assert 'F10' not in results['filtered'].feature_ids
    assert set(results['rarefaction'].data.sample_depths()) == {
        results['rarefaction'].depth
    }
    assert results['permanova']['p-value'] <= 1
    assert results['aggregated'].n_features == 4

    for name in [
        "filtered.biom", "rarefied.biom", "pcoa_weighted_unifrac.tsv",
        "alpha_diversity.tsv", "alpha_diversity_stats.tsv",
        "differential_abundance.tsv",
    ]:
        assert (out / "tables" / name).exists(), name
    for name in [
        "pcoa_weighted_unifrac.html", "alpha_diversity.html",
        "differential_abundance_1.html", "composition_phylum.html",
    ]:
        assert (out / "figures" / name).exists(), name


def test_differential_abundance_uses_unrarefied_counts(config):
    results = run_workflow(config)
    factors = results['differential_abundance'].size_factors
    assert list(factors.index) == results['filtered'].sample_ids
    assert factors.nunique() > 1


def test_disabled_steps_are_skipped(config, tmp_path):
    for section in ('rarefaction', 'ordination', 'alpha_diversity',
                    'differential_abundance', 'aggregation'):
        config[section]['enabled'] = False
    results = AmpliconWorkflow(config).run()
    assert set(results) == {'raw', 'filtered'}
    assert not (tmp_path / "out" / "figures").exists()


def test_same_seed_same_rarefaction(config):
    first = run_workflow(config)['rarefaction'].data
    second = run_workflow(config)['rarefaction'].data
    assert first.equals(second)


def test_differential_abundance_at_rank(config):
    config['differential_abundance']['rank'] = 'Family'
    config['differential_abundance']['label_rank'] = 'Family'
    results = run_workflow(config)
    table = results['differential_abundance'].table
    assert table['feature'].nunique() == 4


def test_composition_figure_follows_na_policy(config, tmp_path):
    config['aggregation']['na_policy'] = 'keep'
    results = run_workflow(config)
    assert 'F9' in results['aggregated'].feature_ids
    html = (tmp_path / "out" / "figures" / "composition_phylum.html").read_text()
    assert "Unassigned (F9)" in html


def test_missing_inputs_raise(config):
    del config['inputs']['metadata']
    with pytest.raises(ValueError):
        AmpliconWorkflow(config).run()


def test_differential_abundance_config_needs_reference(config):
    del config['differential_abundance']['reference']
    with pytest.raises(ValueError):
        AmpliconWorkflow(config).run()

# -------------------------------------------------------------------- config

def test_get_config_resolves_relative_paths(tmp_path):
    path = tmp_path / "conf" / "config.yaml"
    path.parent.mkdir()
    path.write_text(yaml.safe_dump({
        'output_dir': './out',
        'inputs': {'table': '../data/table.biom', 'strict': True},
        'seed': 3,
    }))
    config = get_config(path)
    assert config['output_dir'] == (path.parent / "out").resolve()
    assert config['inputs']['table'] == (tmp_path / "data" / "table.biom").resolve()
    assert config['inputs']['strict'] is True
    assert get_section(config, 'missing') == {}


def test_get_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_config(tmp_path / "nope.yaml")


def test_default_config_is_valid():
    config = get_config(constants.DEFAULT_CONFIG)
    for section in ('inputs', 'filtering', 'rarefaction', 'ordination',
                    'alpha_diversity', 'differential_abundance', 'aggregation'):
        assert section in config
    assert config['differential_abundance']['dispersion_trend'] in constants.DISPERSION_TRENDS


def test_workflow_accepts_config_path(tmp_path, config):
    inputs = {
        k: str(v) if k in ('table', 'metadata', 'tree', 'taxonomy') else v
        for k, v in config['inputs'].items()
    }
    config = dict(config, inputs=inputs)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    workflow = AmpliconWorkflow(path)
    assert workflow.seed == 5
    assert workflow.save_as == ['html']

# ------------------------------------------------------------------- logging

def test_setup_logging_writes_file(tmp_path):
    logger = setup_logging(tmp_path / "logs", log_filename="run.log")
    try:
        logger.debug("debug message")
        assert (tmp_path / "logs" / "run.log").read_text().count("debug message") == 1
    finally:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
