from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 50
DEFAULT_N: int = 50
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the "X of Y complete" text (e.g., "12/34")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"
# Color of the time elapsed display
DEFAULT_TIME_ELAPSED_STYLE: str = "light_sky_blue1"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_LOGGER_NAME = "amplicon_workflow"
DEFAULT_SEED = 711

# ==================================================================================== #
# METADATA
# ==================================================================================== #
# Candidate sample identifier columns of a QIIME2 metadata file, in priority order
DEFAULT_META_ID_COLUMNS = ['#sampleid', 'sample-id', 'sampleid', 'id', 'sample_name']
QIIME2_TYPES_DIRECTIVE = '#q2:types'

# ==================================================================================== #
# TAXONOMY
# ==================================================================================== #
TAXONOMIC_RANKS = [
    'Kingdom', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species'
]
# Placeholder labels that carry no taxonomic information
UNASSIGNED_LABELS = {'', 'unassigned', 'unclassified', 'unknown', 'nan', 'none'}
TAXONOMY_OBSERVATION_KEY = 'taxonomy'

# ==================================================================================== #
# FILTERING
# ==================================================================================== #
DEFAULT_MIN_DEPTH: int = 1000
# Fraction of the grand total (0.0005 == 0.05%)
DEFAULT_MIN_REL_ABUNDANCE: float = 0.0005
DEFAULT_MIN_PREVALENCE: int = 1

# ==================================================================================== #
# DIFFERENTIAL ABUNDANCE
# ==================================================================================== #
DEFAULT_ALPHA: float = 0.05
DEFAULT_DISPERSION_TREND: str = 'local'
DISPERSION_TRENDS = ('local', 'parametric', 'mean')
DEFAULT_SIZE_FACTOR_METHOD: str = 'ratio'
SIZE_FACTOR_METHODS = ('ratio', 'poscounts')
# Fraction of points used for each local dispersion fit
DEFAULT_LOWESS_FRAC: float = 0.7
MIN_DISPERSION: float = 1e-8
DEFAULT_DESIGN_FACTOR = 'condition'

# ==================================================================================== #
# DIVERSITY
# ==================================================================================== #
DEFAULT_METRIC = 'weighted_unifrac'
PHYLOGENETIC_METRICS = {'weighted_unifrac', 'unweighted_unifrac'}
BETA_METRICS = {
    'braycurtis', 'jaccard', 'euclidean', 'canberra',
    'weighted_unifrac', 'unweighted_unifrac'
}
DEFAULT_N_PCOA = 3
DEFAULT_PERMUTATIONS = 999

DEFAULT_ALPHA_METRICS = ['observed', 'shannon', 'simpson', 'chao1']
ALPHA_METRICS = {'observed', 'shannon', 'simpson', 'chao1', 'faith_pd'}

# ==================================================================================== #
# FIGURES
# ==================================================================================== #
DEFAULT_HEIGHT = 800
DEFAULT_WIDTH = 1000
DEFAULT_ELLIPSE_LEVEL = 0.95
DEFAULT_ELLIPSE_POINTS = 100
DEFAULT_TOP_N = 10
DEFAULT_SAVE_AS = ('html', 'png')
