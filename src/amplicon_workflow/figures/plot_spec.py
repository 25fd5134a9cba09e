# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Third Party Imports
import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from scipy.stats import f as f_dist

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.figures.figures import (
    _add_n_annotation, _apply_common_layout, _create_colordict
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

AESTHETICS = ('x', 'y', 'color', 'symbol', 'facet_col', 'hover')
LAYER_KINDS = ('box', 'scatter', 'bar', 'ellipse')
SYMBOLS = [
    'circle', 'square', 'diamond', 'cross', 'x', 'triangle-up', 'triangle-down',
    'pentagon', 'hexagon', 'star', 'hourglass', 'bowtie'
]
_ALL = '__all__'

# ==================================== FUNCTIONS ===================================== #

def confidence_ellipse(
    x,
    y,
    level: float = constants.DEFAULT_ELLIPSE_LEVEL,
    n_points: int = constants.DEFAULT_ELLIPSE_POINTS
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Outline of the normal-theory confidence ellipse of 2-D points.

    The ellipse is centred on the mean with the shape of the sample covariance,
    scaled by sqrt(2 * F(level; 2, n - 1)).

    Args:
        x, y:     Point coordinates.
        level:    Confidence level in (0, 1).
        n_points: Number of outline vertices.

    Returns:
        (x, y) arrays of the closed outline, or None for fewer than 3 points.
    """
    if not 0 < level < 1:
        raise ValueError(f"`level` must be in (0, 1), got {level}")
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    n = len(x)
    if n < 3:
        return None

    center = np.array([x.mean(), y.mean()])
    cov = np.cov(x, y)
    eigvals, eigvecs = np.linalg.eigh(cov)
    radius = np.sqrt(2 * f_dist.ppf(level, 2, n - 1))

    theta = np.linspace(0, 2 * np.pi, n_points)
    circle = np.vstack([np.cos(theta), np.sin(theta)])
    axes = np.sqrt(np.clip(eigvals, 0, None))[:, None] * circle
    outline = center[:, None] + radius * (eigvecs @ axes)
    return outline[0], outline[1]

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class Layer:
    kind: str
    options: Dict[str, Any] = field(default_factory=dict)


class PlotSpec:
    """Declarative plot: a long-format table, aesthetic mappings and layers.

    Mappings bind aesthetics ('x', 'y', 'color', 'symbol', 'facet_col', 'hover')
    to columns of `data`. Layers are added with `add_layer`, which returns a new
    spec, and the figure is rendered by `build`.

    Example:
        fig = (
            PlotSpec(coords, {'x': 'PCo1', 'y': 'PCo2', 'color': 'body-site'})
            .add_layer('scatter')
            .add_layer('ellipse', level=0.95)
            .build()
        )
    """

    def __init__(
        self,
        data: pd.DataFrame,
        mapping: Dict[str, Any],
        layers: Tuple[Layer, ...] = (),
        title: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        height: int = constants.DEFAULT_HEIGHT,
        width: int = constants.DEFAULT_WIDTH,
        shared_yaxes: bool = True
    ):
        unknown = [a for a in mapping if a not in AESTHETICS]
        if unknown:
            raise ValueError(
                f"Unknown aesthetic(s): {unknown}. Expected any of {list(AESTHETICS)}"
            )
        for aesthetic, columns in mapping.items():
            columns = columns if isinstance(columns, (list, tuple)) else [columns]
            missing = [c for c in columns if c not in data.columns]
            if missing:
                raise ValueError(
                    f"Column(s) {missing} mapped to '{aesthetic}' not found in data"
                )
        self.data = data
        self.mapping = dict(mapping)
        self.layers = tuple(layers)
        self.title = title
        self.labels = dict(labels or {})
        self.height = height
        self.width = width
        self.shared_yaxes = shared_yaxes

    def add_layer(self, kind: str, **options) -> "PlotSpec":
        """Return a new spec with a layer of `kind` appended."""
        if kind not in LAYER_KINDS:
            raise ValueError(f"Unknown layer kind: '{kind}'. Expected one of {list(LAYER_KINDS)}")
        required = ('x', 'y') if kind != 'box' else ('y',)
        missing = [a for a in required if a not in self.mapping]
        if missing:
            raise ValueError(f"Layer '{kind}' needs mapping(s) for {missing}")
        return PlotSpec(
            self.data, self.mapping, self.layers + (Layer(kind, dict(options)),),
            title=self.title, labels=self.labels, height=self.height, width=self.width,
            shared_yaxes=self.shared_yaxes
        )

    # ---------------------------------------------------------------- rendering

    def _label(self, aesthetic: str) -> Optional[str]:
        column = self.mapping.get(aesthetic)
        if column is None:
            return None
        return self.labels.get(column, column)

    def _groups(self, df: pd.DataFrame, aesthetic: str) -> List[Tuple[str, pd.DataFrame]]:
        column = self.mapping.get(aesthetic)
        if column is None:
            return [(_ALL, df)]
        keys = df[column].astype(str)
        return [(key, df[keys == key]) for key in sorted(keys.unique())]

    def _hover_text(self, df: pd.DataFrame) -> Optional[List[str]]:
        columns = self.mapping.get('hover')
        if not columns:
            return None
        columns = columns if isinstance(columns, (list, tuple)) else [columns]
        return [
            "<br>".join(f"{c}: {row[c]}" for c in columns)
            for _, row in df.iterrows()
        ]

    def _continuous_color(self) -> bool:
        column = self.mapping.get('color')
        if column is None:
            return False
        values = self.data[column]
        return pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values)

    def build(self) -> go.Figure:
        """Render the spec as a plotly Figure."""
        if not self.layers:
            raise ValueError("PlotSpec has no layers; call add_layer() first")

        facet_column = self.mapping.get('facet_col')
        facets = self._groups(self.data, 'facet_col')
        if facet_column is not None:
            fig = make_subplots(
                rows=1, cols=len(facets), shared_yaxes=self.shared_yaxes,
                subplot_titles=[key for key, _ in facets]
            )
        else:
            fig = go.Figure()

        colordict = (
            _create_colordict(self.data[self.mapping['color']])
            if 'color' in self.mapping else {}
        )
        symbol_column = self.mapping.get('symbol')
        symbol_map = {}
        if symbol_column is not None:
            categories = sorted(self.data[symbol_column].dropna().astype(str).unique())
            symbol_map = {c: SYMBOLS[i % len(SYMBOLS)] for i, c in enumerate(categories)}

        for layer in self.layers:
            for i, (_, facet_df) in enumerate(facets):
                position = {'row': 1, 'col': i + 1} if facet_column is not None else {}
                for trace in self._layer_traces(layer, facet_df, colordict, symbol_map, i == 0):
                    fig.add_trace(trace, **position)

        barmodes = [l.options.get('barmode', 'stack') for l in self.layers if l.kind == 'bar']
        if barmodes:
            fig.update_layout(barmode=barmodes[-1])
        if any(l.kind == 'box' for l in self.layers) and 'color' in self.mapping:
            fig.update_layout(boxmode='group')

        fig = _apply_common_layout(
            fig, self._label('x'), self._label('y'), self.title, self.height, self.width
        )
        if 'color' in self.mapping:
            fig.update_layout(legend_title_text=self._label('color'))
        if any(l.kind == 'scatter' for l in self.layers):
            _add_n_annotation(fig, len(self.data))
        return fig

    def _layer_traces(
        self,
        layer: Layer,
        df: pd.DataFrame,
        colordict: Dict[str, str],
        symbol_map: Dict[str, str],
        first_facet: bool
    ) -> list:
        x_col, y_col = self.mapping.get('x'), self.mapping['y']
        opts = layer.options
        traces = []

        if layer.kind == 'scatter' and self._continuous_color():
            color_col = self.mapping['color']
            traces.append(go.Scatter(
                x=df[x_col], y=df[y_col], mode='markers',
                marker=dict(
                    color=df[color_col], colorscale=opts.get('colorscale', 'Viridis'),
                    showscale=first_facet, size=opts.get('size', 10),
                    opacity=opts.get('opacity', 0.8),
                    symbol=self._symbols(df, symbol_map),
                    colorbar=dict(title=self._label('color'))
                ),
                hovertext=self._hover_text(df), showlegend=False
            ))
            return traces

        for key, group in self._groups(df, 'color'):
            name = None if key == _ALL else key
            color = colordict.get(key)
            common = dict(
                name=name, legendgroup=name,
                showlegend=first_facet and name is not None
            )
            if layer.kind == 'scatter':
                traces.append(go.Scatter(
                    x=group[x_col], y=group[y_col], mode='markers',
                    marker=dict(
                        color=color, size=opts.get('size', 10),
                        opacity=opts.get('opacity', 0.8),
                        symbol=self._symbols(group, symbol_map)
                    ),
                    hovertext=self._hover_text(group), **common
                ))
            elif layer.kind == 'box':
                traces.append(go.Box(
                    x=group[x_col] if x_col else None, y=group[y_col],
                    marker_color=color, boxpoints=opts.get('boxpoints', 'outliers'),
                    **common
                ))
            elif layer.kind == 'bar':
                traces.append(go.Bar(
                    x=group[x_col], y=group[y_col], marker_color=color,
                    hovertext=self._hover_text(group), **common
                ))
            else:
                outline = confidence_ellipse(
                    group[x_col], group[y_col],
                    level=opts.get('level', constants.DEFAULT_ELLIPSE_LEVEL),
                    n_points=opts.get('n_points', constants.DEFAULT_ELLIPSE_POINTS)
                )
                if outline is None:
                    logger.debug(f"Skipping ellipse for '{key}': fewer than 3 points")
                    continue
                traces.append(go.Scatter(
                    x=outline[0], y=outline[1], mode='lines',
                    line=dict(color=color, width=opts.get('width', 2)),
                    hoverinfo='skip', name=name, legendgroup=name, showlegend=False
                ))
        return traces

    def _symbols(self, df: pd.DataFrame, symbol_map: Dict[str, str]):
        column = self.mapping.get('symbol')
        if column is None:
            return None
        return df[column].astype(str).map(symbol_map).fillna('circle').tolist()
