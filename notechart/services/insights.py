"""
Narrative insights for an analysis.

Three rule-based slots:
- state: record volume, date range and what dominates the chart
- change: recording-day distribution and trend of the compiled series
- pattern: a next-step suggestion worded for the notebook scene
"""
import logging
import math
from typing import Any, Dict, List, Optional

import pandas as pd

from notechart.core.schemas import ChartConfig, Insight, Note
from notechart.services.fields import to_utc
from notechart.services.statistics import OTHER_LABEL

logger = logging.getLogger(__name__)

SHORT_AVERAGE_CHARS = 80
STABLE_CHANGE_PCT = 5

SCENE_SUGGESTIONS = {
    "mood": "Noting what happened alongside each mood entry makes it easier to see what lifts or drains you.",
    "life": "Keep capturing small daily moments; a few more weeks will show which routines really stick.",
    "study": "Pick the topic you revisit least and schedule a short review session for it this week.",
    "work": "Look at where most of your effort went and decide whether it matches this period's priorities.",
    "finance": "Compare this period's largest category with your plan and note one adjustment for next month.",
    "ai": "Choose one recurring topic and follow it for a week to turn scattered notes into a clearer picture.",
    "custom": "Keep recording regularly and revisit this view in a few weeks to see how it changes.",
}


def calculate_trend(series: pd.Series) -> Optional[Dict[str, Any]]:
    """
    Calculate trend direction and strength.

    Returns:
        Dict with direction ('increasing', 'decreasing', 'stable') and percentage change
    """
    if len(series) < 2:
        return None

    numeric_series = pd.to_numeric(series, errors='coerce').dropna()
    if len(numeric_series) < 2:
        return None

    first_val = numeric_series.iloc[0]
    last_val = numeric_series.iloc[-1]

    if pd.isna(first_val) or pd.isna(last_val) or first_val == 0:
        return None

    pct_change = ((last_val - first_val) / abs(first_val)) * 100

    if abs(pct_change) < STABLE_CHANGE_PCT:
        direction = 'stable'
    elif pct_change > 0:
        direction = 'increasing'
    else:
        direction = 'decreasing'

    return {
        'direction': direction,
        'percentage_change': round(pct_change, 1),
        'first_value': float(first_val),
        'last_value': float(last_val)
    }


def _recording_days(notes: List[Note]) -> List[str]:
    return sorted({to_utc(note.created_at).strftime("%Y-%m-%d") for note in notes if note.created_at})


def _state_insight(notes: List[Note], chart: ChartConfig) -> Insight:
    total = len(notes)
    days = _recording_days(notes)
    parts = [f"You wrote {total} note{'s' if total != 1 else ''}"]
    if days:
        parts.append(f"between {days[0]} and {days[-1]}" if days[0] != days[-1] else f"on {days[0]}")
    summary = " ".join(parts) + "."

    if chart.chart_type in ("bar", "pie") and chart.data_rows and chart.field_mapping.get("x") not in (None, "all"):
        top = max(
            (row for row in chart.data_rows if row["x"] != OTHER_LABEL),
            key=lambda row: row["value"],
            default=None,
        )
        if top is not None:
            summary += f" The most prominent {chart.field_mapping['x']} is '{top['x']}'."

    return Insight(
        key="state",
        title="Where things stand",
        summary=summary,
        confidence=0.9 if total else 0.3,
    )


def _change_insight(notes: List[Note], chart: ChartConfig) -> Insight:
    total = len(notes)
    days = _recording_days(notes)
    if not days:
        day_text = "Dates are missing, so changes over time can't be read yet."
    elif len(days) == total and total > 2:
        day_text = "Your notes are spread across different days, a steady habit."
    elif len(days) < total:
        day_text = f"Notes fall on {len(days)} days, with some days holding several entries."
    else:
        day_text = f"Notes fall on {len(days)} days at an even pace."

    trend_text = ""
    confidence = 0.5
    time_axis = chart.chart_type == "line" or chart.spec.get("encoding", {}).get("x", {}).get("type") == "ordinal"
    if time_axis and chart.data_rows:
        by_bucket = pd.DataFrame(chart.data_rows).groupby("x")["value"].sum().sort_index()
        trend = calculate_trend(by_bucket)
        if trend:
            confidence = 0.7
            if trend["direction"] == "stable":
                trend_text = " The charted value has stayed roughly level."
            else:
                trend_text = (
                    f" The charted value is {trend['direction']} "
                    f"({trend['percentage_change']:+.1f}% from first to last {chart.time_granularity})."
                )

    return Insight(
        key="change",
        title="How it is changing",
        summary=day_text + trend_text,
        confidence=confidence,
    )


def _pattern_insight(notes: List[Note], scene: str) -> Insight:
    total = len(notes)
    days = _recording_days(notes)
    average_length = sum(len(note.content_text or "") for note in notes) / total if total else 0

    suggestion = SCENE_SUGGESTIONS.get(scene, SCENE_SUGGESTIONS["custom"])
    if total and average_length < SHORT_AVERAGE_CHARS:
        suggestion = "Your notes are fairly short; adding a line of detail or reflection will make later views richer."
    if total and len(days) <= max(2, math.ceil(total / 3)):
        suggestion = "Most entries land on just a few days; a light reminder could spread them out and show longer-term change."

    return Insight(
        key="pattern",
        title="What to try next",
        summary=suggestion,
        confidence=0.6,
    )


def generate_insights(notes: List[Note], chart: ChartConfig, scene: str) -> List[Insight]:
    """
    Build the three insight slots for a compiled chart.

    Args:
        notes: Sampled notes
        chart: Primary compiled chart
        scene: Resolved scene tag

    Returns:
        [state, change, pattern]
    """
    insights = [
        _state_insight(notes, chart),
        _change_insight(notes, chart),
        _pattern_insight(notes, scene),
    ]
    logger.debug(f"Generated {len(insights)} insights for scene '{scene}'")
    return insights
