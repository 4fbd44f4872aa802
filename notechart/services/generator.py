"""
Vega-Lite chart specification generator.

Specs bind to pre-aggregated rows supplied as the named dataset "table":
bar/pie rows are {x, value}, line rows {x, value, series?}, heatmap rows
{x, y, value}.
"""
from typing import Dict, Any, Optional

# Colorblind-safe categorical palette
CATEGORICAL_PALETTE = [
    '#1f77b4',  # Blue
    '#ff7f0e',  # Orange
    '#2ca02c',  # Green
    '#d62728',  # Red
    '#9467bd',  # Purple
    '#8c564b',  # Brown
    '#e377c2',  # Pink
    '#7f7f7f',  # Gray
    '#bcbd22',  # Yellow-green
    '#17becf'   # Cyan
]

MAX_TITLE_CHARS = 60


def sanitize_field_name(field: str) -> str:
    """
    Sanitize a display name for Vega-Lite titles.

    Newlines break parsing; apostrophes and backslashes are escaped.
    """
    if not field:
        return field
    result = field.replace('\n', ' ').replace('\r', ' ')
    result = ' '.join(result.split())
    result = result.replace('\\', '\\\\')
    result = result.replace("'", "\\'")
    return result


def _base_spec(title: str) -> Dict[str, Any]:
    display_title = title if len(title) <= MAX_TITLE_CHARS else title[:MAX_TITLE_CHARS - 3] + "..."
    return {
        "$schema": "https://vega.github.io/schema/vega-lite/v6.json",
        "title": {
            "text": display_title,
            "fontSize": 18,
            "anchor": "start",
            "font": "Inter, sans-serif",
            "fontWeight": 600,
            "color": "#111827",
            "limit": 500
        },
        "width": "container",
        "height": 400,
        "config": {
            "font": "Inter, sans-serif",
            "axis": {
                "labelFontSize": 11,
                "titleFontSize": 13,
                "titleFontWeight": 500,
                "titleColor": "#6b7280",
                "labelColor": "#6b7280",
                "grid": True,
                "gridColor": "#f3f4f6",
                "gridDash": [4, 4],
                "labelLimit": 120,
                "titleLimit": 200,
                "labelOverlap": "parity",
                "domain": False,
                "tickColor": "#e5e7eb"
            },
            "view": {"stroke": "transparent"},
            "range": {"category": CATEGORICAL_PALETTE}
        },
        "data": {"name": "table"}
    }


def generate_vega_spec(
    chart_type: str,
    title: str,
    x_title: str,
    value_title: str,
    x_temporal: bool = False,
    y_title: Optional[str] = None,
    series_title: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Generate a Vega-Lite specification for a compiled chart.

    Args:
        chart_type: 'line', 'bar', 'pie' or 'heatmap'
        title: Chart title
        x_title: Title of the x axis (category or time bucket)
        value_title: Title of the aggregated value
        x_temporal: Whether x holds time bucket labels
        y_title: Title of the heatmap y axis
        series_title: Title of the line series legend, when there is one

    Returns:
        Dictionary containing the Vega-Lite specification
    """
    spec = _base_spec(title)
    x_title = sanitize_field_name(x_title)
    value_title = sanitize_field_name(value_title)
    x_type = "ordinal" if x_temporal else "nominal"

    if chart_type == "line":
        spec["mark"] = {"type": "line", "point": True, "strokeWidth": 3, "interpolate": "monotone"}
        spec["encoding"] = {
            "x": {"field": "x", "type": x_type, "title": x_title, "axis": {"labelAngle": -45}},
            "y": {"field": "value", "type": "quantitative", "title": value_title},
            "tooltip": [
                {"field": "x", "type": x_type, "title": x_title},
                {"field": "value", "type": "quantitative", "title": value_title, "format": ","}
            ]
        }
        if series_title:
            series_title = sanitize_field_name(series_title)
            spec["encoding"]["color"] = {
                "field": "series",
                "type": "nominal",
                "title": series_title,
                "legend": {"orient": "top"}
            }
            spec["encoding"]["tooltip"].insert(1, {"field": "series", "type": "nominal", "title": series_title})
        else:
            spec["mark"]["color"] = "#2563eb"

    elif chart_type == "bar":
        spec["mark"] = {
            "type": "bar",
            "cornerRadiusEnd": 6,
            "color": "#2563eb",
            "width": {"band": 0.6}
        }
        spec["encoding"] = {
            "x": {
                "field": "x",
                "type": x_type,
                "title": x_title,
                "axis": {"labelAngle": -45, "labelLimit": 100},
                "sort": None if x_temporal else "-y"
            },
            "y": {"field": "value", "type": "quantitative", "title": value_title},
            "tooltip": [
                {"field": "x", "type": x_type, "title": x_title},
                {"field": "value", "type": "quantitative", "title": value_title, "format": ","}
            ]
        }

    elif chart_type == "pie":
        spec["mark"] = {"type": "arc", "innerRadius": 50, "outerRadius": 100}
        spec["encoding"] = {
            "theta": {"field": "value", "type": "quantitative", "stack": True},
            "color": {
                "field": "x",
                "type": "nominal",
                "title": x_title,
                "legend": {"orient": "right"}
            },
            "order": {"field": "value", "type": "quantitative", "sort": "descending"},
            "tooltip": [
                {"field": "x", "type": "nominal", "title": x_title},
                {"field": "value", "type": "quantitative", "title": value_title, "format": ","}
            ]
        }

    elif chart_type == "heatmap":
        y_title = sanitize_field_name(y_title or "")
        spec["mark"] = {"type": "rect"}
        spec["encoding"] = {
            "x": {"field": "x", "type": x_type, "title": x_title, "axis": {"labelAngle": 0}},
            "y": {"field": "y", "type": "nominal", "title": y_title},
            "color": {
                "field": "value",
                "type": "quantitative",
                "scale": {"scheme": "blues"},
                "legend": {"title": value_title}
            },
            "tooltip": [
                {"field": "x", "type": x_type, "title": x_title},
                {"field": "y", "type": "nominal", "title": y_title},
                {"field": "value", "type": "quantitative", "title": value_title, "format": ","}
            ]
        }

    else:
        raise ValueError(f"Unsupported chart type: {chart_type}")

    return spec
