"""
State Energy Maps Module

Interactive choropleth maps of per-state electricity generation metrics.
Loads a wide CSV (one 'state' column plus one column per metric) and a
GeoJSON of state boundaries, colors each state by the selected metric on a
discrete light-to-dark ramp and adds a legend, a hover info panel, tooltips
and a popup listing every metric for the state.

Key Features:
- Missing cells stay missing: shown as 'No data' in a neutral color, never as 0
- Discrete linear color buckets between the metric's min and max
- Legend with Total (quantities) or Average (percentages) and scale endpoints
- Metric selection through an explicit MapState and a single redraw operation

Example Usage:
    result = create_energy_map(
        csv_path='data/values_clean.csv',
        geojson_path='data/states.geojson',
        metric='Black coal',
        output_path='docs/energy-map.html'
    )

    # Switching metric redraws legend and layer
    mapper, state = result['mapper'], result['state']
    mapper.select_metric(state, 'Per cent renewable generation')
    state.map.save('renewables.html')
"""

import html
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

import branca.element
import folium
from branca.element import MacroElement, Template

from common import LoadError, load_geojson, setup_logging, value_formatter
from scales import (NO_DATA_BOUNDS, NO_DATA_COLOR, ORANGE_RAMP, PERCENTAGE, MetricInfo,
                    ScaleBounds, aggregate, check_ramp, color_for, compute_bounds)
from table_loader import DEFAULT_REGION_COLUMN, RegionTable, load_wide_table

logger = logging.getLogger(__name__)

# Units and aggregate kinds declared per metric; anything not listed is a GWh quantity
DEFAULT_METRIC_INFO = {
    'Per cent renewable generation': MetricInfo(unit='%', kind=PERCENTAGE),
}


class _ZoomTopRight(MacroElement):
    _template = Template(
        """
        {% macro script(this, kwargs) %}
        {{this._parent.get_name()}}.zoomControl.setPosition('topright');
        {% endmacro %}
        """
    )


class _HoverInfo(MacroElement):
    """Info panel that shows a feature's hover_info while the pointer is over it."""

    _template = Template(
        """
        {% macro header(this, kwargs) %}
        <style>
        .hover-info {
            background: rgba(255, 255, 255, 0.95);
            padding: 6px 10px;
            border-radius: 6px;
            box-shadow: 0 1px 4px rgba(0, 0, 0, 0.2);
            font: 13px/1.4 'Helvetica', sans-serif;
            color: #333;
        }
        </style>
        {% endmacro %}

        {% macro script(this, kwargs) %}
        var {{ this.get_name() }} = L.control({position: {{ this.position|tojson }}});
        {{ this.get_name() }}.onAdd = function (map) {
            this._div = L.DomUtil.create('div', 'hover-info');
            this._div.innerHTML = {{ this.default_text|tojson }};
            return this._div;
        };
        {{ this.get_name() }}.addTo({{ this._parent.get_name() }});

        {{ this.layer.get_name() }}.on('mouseover', function (e) {
            var target = e.propagatedFrom || e.layer;
            if (target.bringToFront) {
                target.bringToFront();
            }
            {{ this.get_name() }}._div.innerHTML = target.feature.properties.hover_info;
        });
        {{ this.layer.get_name() }}.on('mouseout', function (e) {
            {{ this.get_name() }}._div.innerHTML = {{ this.default_text|tojson }};
        });
        {% endmacro %}
        """
    )

    def __init__(self, layer: folium.GeoJson, default_text: str, position: str = 'topleft'):
        super().__init__()
        self._name = 'HoverInfo'
        self.layer = layer
        self.default_text = default_text
        self.position = position


@dataclass
class FeaturePresentation:
    """Everything the map needs to draw one region feature."""

    name: Optional[str]
    style: Dict[str, Union[str, float]]
    popup_html: str
    hover_text: str


@dataclass
class MapState:
    """Mutable view state: written only by select_metric / recompute_and_redraw."""

    active_metric: str
    bounds: ScaleBounds = NO_DATA_BOUNDS
    map: Optional[folium.Map] = None


class StateEnergyMaps:
    """
    Core class for creating choropleth maps of per-state energy metrics.

    Holds the loaded table and boundaries (both read-only), and derives
    colors, legend, tooltips and popups for whichever metric is active.
    """

    # Map view: centered on Australia
    MAP_CENTER = [-25.3, 133.8]
    ZOOM_START = 4
    MIN_ZOOM = 3
    MAX_ZOOM = 7

    DEFAULT_METRIC = 'Total renewable'
    HOVER_DEFAULT = 'Hover to see details'
    UNKNOWN_REGION = 'Unknown region'

    # Candidate feature properties holding the region name, first present wins
    NAME_PROPERTIES = ('STATE_NAME', 'STATE', 'name')

    COLORS = {
        'no_data': NO_DATA_COLOR,
        'stroke': '#555555',
        'highlight': '#000000',
    }

    FEATURE_STYLE = {'color': COLORS['stroke'], 'weight': 1, 'fillOpacity': 0.85}
    HIGHLIGHT_STYLE = {'color': COLORS['highlight'], 'weight': 3}

    def __init__(self, table: RegionTable, geojson_data: dict,
                 metric_info: Optional[Mapping[str, MetricInfo]] = None,
                 ramp: Sequence[str] = ORANGE_RAMP,
                 name_properties: Optional[Sequence[str]] = None,
                 default_info: MetricInfo = MetricInfo()):
        """
        Initialize mapper with loaded data.

        Args:
            table: Region records from the wide table
            geojson_data: Parsed GeoJSON FeatureCollection of region boundaries
            metric_info: Declared unit and kind per metric name
            ramp: Light-to-dark colors for the discrete scale
            name_properties: Ordered feature properties to read the region name from
            default_info: Unit and kind for metrics missing from metric_info
        """
        self.table = table
        self.geojson_data = geojson_data
        self.metric_infos = dict(DEFAULT_METRIC_INFO if metric_info is None else metric_info)
        self.default_info = default_info
        self.ramp = check_ramp(ramp, self.COLORS['no_data'])
        self.name_properties = tuple(name_properties or self.NAME_PROPERTIES)

    @classmethod
    def from_sources(cls, table_source: Union[str, Path], geojson_source: Union[str, Path],
                     region_column: str = DEFAULT_REGION_COLUMN, delimiter: str = ',',
                     **kwargs) -> 'StateEnergyMaps':
        """
        Load the table and the boundaries concurrently and build a mapper.

        Both loads are independent; the first failure is raised as LoadError
        and no mapper is created.
        """
        with ThreadPoolExecutor(max_workers=2) as executor:
            table_future = executor.submit(load_wide_table, table_source, region_column, delimiter)
            geojson_future = executor.submit(load_geojson, geojson_source)
            table = table_future.result()
            geojson_data = geojson_future.result()
        return cls(table, geojson_data, **kwargs)

    # ---------- Metrics ----------

    def metric_info(self, metric: str) -> MetricInfo:
        return self.metric_infos.get(metric, self.default_info)

    def format_value(self, metric: str, value: Optional[float]) -> str:
        return value_formatter(value, self.metric_info(metric).unit)

    # ---------- Features ----------

    def region_name(self, feature: dict) -> Optional[str]:
        """Region name from the first non-empty candidate property, or None."""
        properties = feature.get('properties') or {}
        for key in self.name_properties:
            value = properties.get(key)
            if value:
                return str(value)
        return None

    def style_feature(self, feature: dict, metric: str, bounds: ScaleBounds) -> dict:
        value = self.table.get(self.region_name(feature), metric)
        style = dict(self.FEATURE_STYLE)
        style['fillColor'] = color_for(value, bounds, self.ramp, self.COLORS['no_data'])
        return style

    def popup_html(self, name: Optional[str]) -> str:
        """Popup listing every metric of a region, each with its own unit."""
        rows = []
        for metric in self.table.metrics:
            value_text = self.format_value(metric, self.table.get(name, metric))
            rows.append(
                f'<tr><td style="padding-right:8px">{html.escape(metric)}</td>'
                f'<td><strong>{html.escape(value_text)}</strong></td></tr>'
            )
        title = html.escape(name or self.UNKNOWN_REGION)
        return f"<strong>{title}</strong><br><table>{''.join(rows)}</table>"

    def hover_text(self, name: Optional[str], metric: str) -> str:
        """Hover text for the active metric only."""
        value_text = self.format_value(metric, self.table.get(name, metric))
        title = html.escape(name or self.UNKNOWN_REGION)
        return f"<strong>{title}</strong><br>{html.escape(metric)}: <strong>{html.escape(value_text)}</strong>"

    def present_feature(self, feature: dict, metric: str, bounds: ScaleBounds) -> FeaturePresentation:
        name = self.region_name(feature)
        return FeaturePresentation(
            name=name,
            style=self.style_feature(feature, metric, bounds),
            popup_html=self.popup_html(name),
            hover_text=self.hover_text(name, metric),
        )

    # ---------- Legend ----------

    def legend_html(self, metric: str, bounds: ScaleBounds) -> str:
        """
        Legend with metric and unit, Total/Average, gradient swatch and endpoints.

        When the metric has no finite values the aggregate and both endpoints
        read 'No data'.
        """
        info = self.metric_info(metric)
        total = aggregate(self.table, metric, info) if bounds.has_data else None
        value_text = f"{info.aggregate_label}: {value_formatter(total, info.unit)}"
        gradient = f"linear-gradient(to right, {','.join(self.ramp)})"
        min_text = value_formatter(bounds.min, info.unit)
        max_text = value_formatter(bounds.max, info.unit)

        return f'''
        <div id='maplegend' class='maplegend'>
            <div class='legend-title'>{html.escape(metric)} ({html.escape(info.unit)})</div>
            <div class='legend-value'>{html.escape(value_text)}</div>
            <div class='legend-heading'>Scale</div>
            <div class='legend-bar' style='background:{gradient};'></div>
            <div class='legend-axis'>
                <span>{html.escape(min_text)}</span>
                <span>{html.escape(max_text)}</span>
            </div>
        </div>

        <style type='text/css'>
        .maplegend {{
            position: absolute;
            z-index: 9999;
            background-color: rgba(255, 255, 255, 0.95);
            border-radius: 8px;
            border: 2px solid #ccc;
            box-shadow: 0 2px 10px rgba(0,0,0,0.15);
            padding: 8px 10px;
            font-family: 'Helvetica', sans-serif;
            left: 20px;
            bottom: 40px;
            min-width: 260px;
        }}

        .maplegend .legend-title {{
            font-weight: 600;
            font-size: .95rem;
        }}

        .maplegend .legend-value {{
            font-size: .9rem;
            color: #374151;
            margin-bottom: 4px;
        }}

        .maplegend .legend-heading {{
            font-weight: 600;
            margin-top: 6px;
        }}

        .maplegend .legend-bar {{
            height: 12px;
            border-radius: 6px;
            box-shadow: inset 0 0 0 1px rgba(0,0,0,.12);
        }}

        .maplegend .legend-axis {{
            display: flex;
            justify-content: space-between;
            font-size: .85rem;
            color: #6b7280;
        }}

        @media (max-width: 480px) {{
            .maplegend {{
            left: 5px;
            right: 5px;
            bottom: 10px;
            min-width: 0;
            }}
        }}
        </style>
        '''

    def _add_legend(self, m: folium.Map, metric: str, bounds: ScaleBounds) -> None:
        legend = branca.element.Element(self.legend_html(metric, bounds))
        m.get_root().html.add_child(legend)

    # ---------- Map ----------

    def create_map(self, metric: str, bounds: Optional[ScaleBounds] = None) -> folium.Map:
        """
        Generate the interactive choropleth map for one metric.

        Args:
            metric: Metric to color regions by
            bounds: Precomputed scale bounds (computed from the table if omitted)

        Returns:
            Configured Folium map object ready for display or saving
        """
        if metric not in self.table.metrics:
            raise ValueError(f"Unknown metric '{metric}'")
        if not self.geojson_data or not self.geojson_data.get('features'):
            raise ValueError("No GeoJSON features to draw")
        if bounds is None:
            bounds = compute_bounds(self.table, metric)

        m = folium.Map(location=self.MAP_CENTER, zoom_start=self.ZOOM_START,
                       tiles='OpenStreetMap', min_zoom=self.MIN_ZOOM, max_zoom=self.MAX_ZOOM)
        _ZoomTopRight().add_to(m)

        geojson_copy = json.loads(json.dumps(self.geojson_data))  # Deep copy to avoid modifying original
        unmatched = []
        for feature in geojson_copy['features']:
            if feature.get('properties') is None:
                feature['properties'] = {}
            presentation = self.present_feature(feature, metric, bounds)
            feature['properties']['hover_info'] = presentation.hover_text
            feature['properties']['popup_html'] = presentation.popup_html
            if presentation.name not in self.table:
                unmatched.append(presentation.name or self.UNKNOWN_REGION)

        if unmatched:
            logger.warning(f"{len(unmatched)} features have no table row: {', '.join(unmatched)}")

        layer = folium.GeoJson(
            geojson_copy,
            name=metric,
            style_function=lambda feature: self.style_feature(feature, metric, bounds),
            highlight_function=lambda feature: dict(self.HIGHLIGHT_STYLE),
            tooltip=folium.GeoJsonTooltip(
                fields=['hover_info'],
                aliases=[''],
                labels=False,
                sticky=True,
                style=("background-color: white; color: black; font-family: sans-serif; "
                       "font-size: 12px; padding: 10px;")
            ),
            popup=folium.GeoJsonPopup(fields=['popup_html'], labels=False),
        )
        layer.add_to(m)
        _HoverInfo(layer, self.HOVER_DEFAULT).add_to(m)

        self._add_legend(m, metric, bounds)
        return m

    # ---------- State ----------

    def initial_state(self, metric: Optional[str] = None) -> MapState:
        """
        Build the first view: the requested metric, else 'Total renewable' if
        present, else the first metric column.
        """
        if not self.table.metrics:
            raise ValueError("Table has no metric columns")
        if metric is None:
            metric = self.DEFAULT_METRIC if self.DEFAULT_METRIC in self.table.metrics else self.table.metrics[0]
        elif metric not in self.table.metrics:
            raise ValueError(f"Unknown metric '{metric}'")
        return self.recompute_and_redraw(MapState(active_metric=metric))

    def recompute_and_redraw(self, state: MapState) -> MapState:
        """Recompute bounds for the active metric and rebuild legend and layer."""
        state.bounds = compute_bounds(self.table, state.active_metric)
        if not state.bounds.has_data:
            logger.info(f"No finite values for '{state.active_metric}'; drawing no-data state")
        state.map = self.create_map(state.active_metric, state.bounds)
        return state

    def select_metric(self, state: MapState, metric: str) -> MapState:
        """Selector change handler: make `metric` active and redraw."""
        if metric not in self.table.metrics:
            raise ValueError(f"Unknown metric '{metric}'")
        state.active_metric = metric
        return self.recompute_and_redraw(state)


def create_energy_map(csv_path: Union[str, Path], geojson_path: Union[str, Path],
                      metric: Optional[str] = None, region_column: str = DEFAULT_REGION_COLUMN,
                      metric_info: Optional[Mapping[str, MetricInfo]] = None,
                      output_path: Optional[Union[str, Path]] = None) -> Dict:
    """
    Convenience function to create a complete energy map from CSV and GeoJSON sources.

    Args:
        csv_path: Path or URL of the wide CSV table
        geojson_path: Path or URL of the state boundaries GeoJSON
        metric: Metric to show first (defaults to 'Total renewable' or the first column)
        region_column: Header of the region name column
        metric_info: Declared unit and kind per metric
        output_path: If given, the map HTML is written there

    Returns:
        Dictionary containing:
            'map': Folium map object ready for display/saving
            'mapper': StateEnergyMaps instance, for select_metric
            'state': MapState of the rendered view
            'data': Dictionary mapping region names to the active metric's value
            'stats': Dictionary with 'min', 'max', 'count' of the active metric

    Raises:
        LoadError: If either source cannot be loaded; nothing is rendered
    """
    try:
        mapper = StateEnergyMaps.from_sources(csv_path, geojson_path, region_column=region_column,
                                              metric_info=metric_info)
    except LoadError as e:
        logger.error(f"Failed to load data or GeoJSON: {e}")
        raise

    state = mapper.initial_state(metric)

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        state.map.save(str(output_path))
        logger.info(f"Saved {state.active_metric} map to {output_path}")

    data = {region: mapper.table.get(region, state.active_metric) for region in mapper.table}
    return {
        'map': state.map,
        'mapper': mapper,
        'state': state,
        'data': data,
        'stats': {
            'min': state.bounds.min,
            'max': state.bounds.max,
            'count': sum(1 for value in data.values() if value is not None),
        },
    }


# Quick test if run directly
if __name__ == "__main__":
    setup_logging()
    try:
        create_energy_map(csv_path="data/values_clean.csv",
                          geojson_path="data/states.geojson",
                          output_path="docs/energy-map.html")
    except LoadError:
        sys.exit(1)
