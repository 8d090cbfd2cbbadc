import copy
import json

import folium
import pytest

from common import LoadError, MissingColumnError
from scales import NO_DATA_BOUNDS, NO_DATA_COLOR, ORANGE_RAMP, PERCENTAGE, MetricInfo, ScaleBounds
from state_energy_maps import MapState, StateEnergyMaps, create_energy_map
from table_loader import parse_wide_table

CSV = """state,Black coal,Per cent renewable generation,Wind
New South Wales,100,20,
Victoria,,50,
Tasmania,300,95,
"""


def _square(x, y):
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + 1, y], [x + 1, y + 1], [x, y + 1], [x, y]]],
    }


GEOJSON = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"STATE_NAME": "New South Wales", "name": "NSW"},
         "geometry": _square(147, -33)},
        {"type": "Feature", "properties": {"STATE_NAME": "", "STATE": "Victoria"},
         "geometry": _square(144, -37)},
        {"type": "Feature", "properties": {"name": "Tasmania"}, "geometry": _square(146, -42)},
        {"type": "Feature", "properties": {"name": "Jervis Bay"}, "geometry": _square(150, -35)},
    ],
}


@pytest.fixture
def table():
    return parse_wide_table(CSV)


@pytest.fixture
def mapper(table):
    return StateEnergyMaps(table, copy.deepcopy(GEOJSON))


@pytest.fixture
def sources(tmp_path):
    csv_path = tmp_path / "values_clean.csv"
    csv_path.write_text(CSV, encoding="utf-8")
    geojson_path = tmp_path / "states.geojson"
    geojson_path.write_text(json.dumps(GEOJSON), encoding="utf-8")
    return csv_path, geojson_path


def test_region_name_fallback_order(mapper):
    names = [mapper.region_name(feature) for feature in GEOJSON["features"]]

    assert names == ["New South Wales", "Victoria", "Tasmania", "Jervis Bay"]


def test_region_name_missing(mapper):
    assert mapper.region_name({"properties": {"id": "X"}}) is None
    assert mapper.region_name({"properties": None}) is None


def test_custom_name_properties(table):
    mapper = StateEnergyMaps(table, GEOJSON, name_properties=["name"])

    assert mapper.region_name(GEOJSON["features"][0]) == "NSW"


def test_style_feature(mapper):
    bounds = ScaleBounds(100.0, 300.0)

    nsw = mapper.style_feature(GEOJSON["features"][0], "Black coal", bounds)
    vic = mapper.style_feature(GEOJSON["features"][1], "Black coal", bounds)
    tas = mapper.style_feature(GEOJSON["features"][2], "Black coal", bounds)

    assert nsw == {"color": "#555555", "weight": 1, "fillOpacity": 0.85, "fillColor": ORANGE_RAMP[0]}
    assert vic["fillColor"] == NO_DATA_COLOR
    assert tas["fillColor"] == ORANGE_RAMP[-1]


def test_unmatched_feature_is_neutral(mapper):
    style = mapper.style_feature(GEOJSON["features"][3], "Black coal", ScaleBounds(100.0, 300.0))

    assert style["fillColor"] == NO_DATA_COLOR


def test_popup_lists_every_metric(mapper):
    popup = mapper.popup_html("Victoria")

    assert "<strong>Victoria</strong>" in popup
    assert "Black coal</td><td><strong>No data</strong>" in popup
    assert "Per cent renewable generation</td><td><strong>50\u00a0%</strong>" in popup
    assert "Wind</td><td><strong>No data</strong>" in popup


def test_popup_for_unknown_region(mapper):
    popup = mapper.popup_html(None)

    assert "Unknown region" in popup
    assert popup.count("No data") == 3


def test_hover_text_shows_active_metric_only(mapper):
    text = mapper.hover_text("Tasmania", "Black coal")

    assert text == "<strong>Tasmania</strong><br>Black coal: <strong>300\u00a0GWh</strong>"
    assert "renewable" not in text


def test_hover_text_escapes_names(table):
    mapper = StateEnergyMaps(table, GEOJSON)

    assert "&lt;b&gt;" in mapper.hover_text("<b>", "Black coal")


def test_present_feature(mapper):
    presentation = mapper.present_feature(GEOJSON["features"][2], "Wind", NO_DATA_BOUNDS)

    assert presentation.name == "Tasmania"
    assert presentation.style["fillColor"] == NO_DATA_COLOR
    assert "Wind: <strong>No data</strong>" in presentation.hover_text
    assert "Black coal" in presentation.popup_html


def test_legend_total(mapper):
    legend = mapper.legend_html("Black coal", ScaleBounds(100.0, 300.0))

    assert "Black coal (GWh)" in legend
    assert "Total: 400\u00a0GWh" in legend
    assert ">Scale<" in legend
    assert f"linear-gradient(to right, {','.join(ORANGE_RAMP)})" in legend
    assert "<span>100\u00a0GWh</span>" in legend
    assert "<span>300\u00a0GWh</span>" in legend


def test_legend_average_for_percentages(mapper):
    legend = mapper.legend_html("Per cent renewable generation", ScaleBounds(20.0, 95.0))

    assert "Per cent renewable generation (%)" in legend
    assert "Average: 55\u00a0%" in legend


def test_legend_without_data(mapper):
    legend = mapper.legend_html("Wind", NO_DATA_BOUNDS)

    assert "Total: No data" in legend
    assert legend.count("<span>No data</span>") == 2
    assert "nan" not in legend.lower()


def test_declared_metric_info(table):
    mapper = StateEnergyMaps(table, GEOJSON, metric_info={"Wind": MetricInfo(unit="MW", kind=PERCENTAGE)})

    assert mapper.metric_info("Wind").unit == "MW"
    # Overriding the declarations drops the default percentage declaration
    assert mapper.metric_info("Per cent renewable generation") == MetricInfo()


def test_bad_ramp_is_rejected(table):
    with pytest.raises(ValueError):
        StateEnergyMaps(table, GEOJSON, ramp=["#000000"])


def test_create_map(mapper):
    m = mapper.create_map("Black coal")
    rendered = m.get_root().render()

    assert isinstance(m, folium.Map)
    assert "maplegend" in rendered
    assert "Hover to see details" in rendered
    assert "hover_info" in rendered
    assert "popup_html" in rendered
    assert "bringToFront" in rendered
    assert "setPosition('topright')" in rendered


def test_create_map_does_not_modify_geojson(mapper):
    mapper.create_map("Black coal")

    assert mapper.geojson_data == GEOJSON


def test_create_map_warns_for_unmatched_features(mapper, caplog):
    mapper.create_map("Black coal")

    assert "Jervis Bay" in caplog.text


def test_create_map_unknown_metric(mapper):
    with pytest.raises(ValueError, match="Unknown metric"):
        mapper.create_map("Geothermal")


def test_create_map_without_features(table):
    mapper = StateEnergyMaps(table, {"type": "FeatureCollection", "features": []})

    with pytest.raises(ValueError, match="No GeoJSON features"):
        mapper.create_map("Black coal")


def test_initial_state_defaults_to_first_metric(mapper):
    state = mapper.initial_state()

    assert state.active_metric == "Black coal"
    assert state.bounds == ScaleBounds(100.0, 300.0)
    assert isinstance(state.map, folium.Map)


def test_initial_state_prefers_total_renewable():
    table = parse_wide_table("state,Hydro,Total renewable\nVictoria,1,2\n")
    mapper = StateEnergyMaps(table, GEOJSON)

    assert mapper.initial_state().active_metric == "Total renewable"


def test_initial_state_requires_metrics():
    table = parse_wide_table("state\nVictoria\n")
    mapper = StateEnergyMaps(table, GEOJSON)

    with pytest.raises(ValueError, match="no metric columns"):
        mapper.initial_state()


def test_select_metric_redraws(mapper):
    state = mapper.initial_state()
    first_map = state.map

    mapper.select_metric(state, "Per cent renewable generation")

    assert state.active_metric == "Per cent renewable generation"
    assert state.bounds == ScaleBounds(20.0, 95.0)
    assert state.map is not first_map


def test_select_metric_without_data(mapper):
    state = mapper.select_metric(MapState(active_metric="Black coal"), "Wind")

    assert state.bounds == NO_DATA_BOUNDS
    assert "Total: No data" in state.map.get_root().render()


def test_select_unknown_metric_keeps_state(mapper):
    state = mapper.initial_state()

    with pytest.raises(ValueError):
        mapper.select_metric(state, "Geothermal")
    assert state.active_metric == "Black coal"


def test_from_sources(sources):
    csv_path, geojson_path = sources

    mapper = StateEnergyMaps.from_sources(csv_path, geojson_path)

    assert mapper.table.metrics == ("Black coal", "Per cent renewable generation", "Wind")
    assert len(mapper.geojson_data["features"]) == 4


def test_from_sources_missing_region_column(tmp_path, sources):
    _, geojson_path = sources
    csv_path = tmp_path / "bad.csv"
    csv_path.write_text("region,Wind\nSA,1\n", encoding="utf-8")

    with pytest.raises(MissingColumnError):
        StateEnergyMaps.from_sources(csv_path, geojson_path)


def test_create_energy_map(tmp_path, sources):
    csv_path, geojson_path = sources
    output_path = tmp_path / "docs" / "energy-map.html"

    result = create_energy_map(csv_path, geojson_path, metric="Black coal", output_path=output_path)

    assert output_path.exists()
    assert "maplegend" in output_path.read_text(encoding="utf-8")
    assert result["state"].active_metric == "Black coal"
    assert isinstance(result["mapper"], StateEnergyMaps)
    assert set(result) == {"map", "mapper", "state", "data", "stats"}
    assert result["data"] == {"New South Wales": 100.0, "Victoria": None, "Tasmania": 300.0}
    assert result["stats"] == {"min": 100.0, "max": 300.0, "count": 2}


def test_create_energy_map_load_failure(tmp_path, sources, caplog):
    csv_path, _ = sources

    with pytest.raises(LoadError):
        create_energy_map(csv_path, tmp_path / "missing.geojson")
    assert "Failed to load data or GeoJSON" in caplog.text
