"""
Statistics collection over the sampled notes.

Builds a pandas frame (one row per note, one column per field) and computes
the per-field and per-chart statistics the quality gates and the fallback
recommender rely on. The long-frame / reduce / Top-N helpers are shared with
the chart compiler so both see exactly the same buckets.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from notechart.core.schemas import FieldDefinition, FieldPlan, FieldStatistics, Note, TimeRange
from notechart.services.fields import is_missing, note_value, to_utc

logger = logging.getLogger(__name__)

OTHER_LABEL = "other"
ALL_LABEL = "all"
AXIS_COLUMNS = ("x", "y")

PRESET_DAYS = {"7d": 7, "30d": 30, "90d": 90}


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def resolve_time_range(
    time_range: TimeRange, now: Optional[datetime] = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn a preset or custom range into inclusive UTC bounds (None = open)."""
    now = to_utc(now) if now else datetime.now(timezone.utc)
    if time_range.preset in PRESET_DAYS:
        return now - timedelta(days=PRESET_DAYS[time_range.preset]), now
    start = to_utc(time_range.from_) if time_range.from_ else None
    end = to_utc(time_range.to) if time_range.to else None
    return start, end


def select_notes(
    notes: List[Note],
    note_ids: Optional[List[str]] = None,
    time_range: Optional[TimeRange] = None,
    max_notes: int = 500,
    now: Optional[datetime] = None,
) -> List[Note]:
    """
    Apply the note selection and bound it to the sampling window.

    The most recent notes are kept; notes without a creation time sort last.
    Duplicate note ids keep their first occurrence.
    """
    selected = notes
    if note_ids is not None:
        wanted = set(note_ids)
        selected = [note for note in selected if note.note_id in wanted]

    if time_range is not None:
        start, end = resolve_time_range(time_range, now)
        in_range = []
        for note in selected:
            if note.created_at is None:
                continue
            created = to_utc(note.created_at)
            if start and created < start:
                continue
            if end and created > end:
                continue
            in_range.append(note)
        selected = in_range

    seen = set()
    unique = []
    for note in selected:
        if note.note_id in seen:
            continue
        seen.add(note.note_id)
        unique.append(note)

    def recency_key(note: Note):
        if note.created_at is None:
            return (1, 0.0)
        return (0, -to_utc(note.created_at).timestamp())

    ordered = sorted(unique, key=recency_key)
    if len(ordered) > max_notes:
        logger.info(f"Sample truncated from {len(ordered)} to {max_notes} most recent notes")
    return ordered[:max_notes]


# ---------------------------------------------------------------------------
# Frame construction
# ---------------------------------------------------------------------------

def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return np.nan
    return np.nan


def _to_scalar_date(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, dict)) or is_missing(value):
        return None
    return value


def build_note_frame(
    notes: List[Note],
    fields: Dict[str, FieldDefinition],
    derived: Optional[Dict[str, Dict[str, Any]]] = None,
) -> pd.DataFrame:
    """
    Build the analysis frame: index is note_id, one column per field.

    Date columns are UTC timestamps, number columns are floats; category and
    text columns keep their raw values (lists included).
    """
    index = pd.Index([note.note_id for note in notes], name="note_id")
    data = {
        name: [note_value(note, name, derived) for note in notes]
        for name in fields
    }
    frame = pd.DataFrame(data, index=index, dtype=object)

    for name, definition in fields.items():
        if definition.data_type == "date":
            frame[name] = pd.to_datetime(frame[name].map(_to_scalar_date), utc=True, errors="coerce")
        elif definition.data_type == "number":
            frame[name] = frame[name].map(_to_number).astype(float)

    return frame


def time_bucket(values: pd.Series, granularity: str) -> pd.Series:
    """Label timestamps by bucket: day 'YYYY-MM-DD', week = its Monday, month 'YYYY-MM'."""
    stamps = pd.to_datetime(values, utc=True, errors="coerce")
    if granularity == "month":
        return stamps.dt.strftime("%Y-%m")
    if granularity == "week":
        monday = stamps.dt.normalize() - pd.to_timedelta(stamps.dt.weekday, unit="D")
        return monday.dt.strftime("%Y-%m-%d")
    return stamps.dt.strftime("%Y-%m-%d")


def _category_labels(value: Any) -> List[str]:
    items = list(value) if isinstance(value, (list, tuple, set)) else [value]
    labels = []
    for item in items:
        if is_missing(item):
            continue
        if isinstance(item, float) and item.is_integer():
            item = int(item)
        label = str(item).strip()
        if label:
            labels.append(label)
    return labels


def is_time_field(field_name: Optional[str], fields: Dict[str, FieldDefinition]) -> bool:
    definition = fields.get(field_name) if field_name else None
    return definition is not None and definition.data_type == "date"


def axis_labels(
    frame: pd.DataFrame, field_name: str, fields: Dict[str, FieldDefinition], granularity: str
) -> pd.Series:
    """Per-note list of axis labels (empty list when the value is missing)."""
    if field_name not in frame.columns:
        return pd.Series([[] for _ in range(len(frame))], index=frame.index, dtype=object)
    column = frame[field_name]
    if is_time_field(field_name, fields):
        buckets = time_bucket(column, granularity)
        return buckets.map(lambda label: [] if pd.isna(label) else [label])
    return column.map(_category_labels)


def field_missing_rate(frame: pd.DataFrame, field_name: str) -> float:
    if len(frame) == 0 or field_name not in frame.columns:
        return 1.0
    return float(frame[field_name].map(is_missing).mean())


# ---------------------------------------------------------------------------
# Long frame / reduction helpers (shared with the compiler)
# ---------------------------------------------------------------------------

def chart_axes(chart_type: str, plan: FieldPlan) -> List[str]:
    """
    Fields that make up the chart axes, in (x, y) order.

    line: time axis plus an optional series dimension.
    bar / pie: the dimension, else time buckets, else a single 'all' bucket.
    heatmap: time x dimension, else dimension x dimension_2.
    """
    if chart_type == "line":
        return [name for name in (plan.time_field, plan.dimension) if name]
    if chart_type in ("bar", "pie"):
        if plan.dimension:
            return [plan.dimension]
        if plan.time_field:
            return [plan.time_field]
        return []
    if chart_type == "heatmap":
        if plan.time_field and plan.dimension:
            return [plan.time_field, plan.dimension]
        if plan.dimension and plan.dimension_2:
            return [plan.dimension, plan.dimension_2]
        return [name for name in (plan.time_field, plan.dimension, plan.dimension_2) if name][:2]
    return []


def uses_metric(plan: FieldPlan) -> bool:
    return bool(plan.metric) and plan.aggregation != "count"


def long_frame(
    frame: pd.DataFrame, axes: List[str], fields: Dict[str, FieldDefinition], plan: FieldPlan
) -> pd.DataFrame:
    """
    One row per (note, axis label combination) with columns x[, y], metric.

    List values are exploded; rows with a missing axis label are dropped, and
    so are rows with a missing metric when the aggregation needs one.
    """
    data = pd.DataFrame(index=frame.index)
    if axes:
        for column, field_name in zip(AXIS_COLUMNS, axes):
            data[column] = axis_labels(frame, field_name, fields, plan.time_granularity)
    else:
        data["x"] = [[ALL_LABEL] for _ in range(len(frame))]

    if plan.metric and plan.metric in frame.columns:
        data["metric"] = frame[plan.metric].map(_to_number).astype(float)
    else:
        data["metric"] = np.nan

    for column in AXIS_COLUMNS[:max(len(axes), 1)]:
        data = data.explode(column)
        data = data[data[column].notna()]

    if uses_metric(plan):
        data = data[data["metric"].notna()]

    return data.reset_index()


def reduce_values(data: pd.DataFrame, keys: List[str], plan: FieldPlan) -> pd.DataFrame:
    """Aggregate the long frame by keys into a 'value' column."""
    if data.empty:
        return pd.DataFrame(columns=keys + ["value"])
    grouped = data.groupby(keys, sort=True)
    if not uses_metric(plan):
        values = grouped.size()
    elif plan.aggregation == "avg":
        values = grouped["metric"].mean()
    else:
        values = grouped["metric"].sum()
    return values.rename("value").reset_index()


def rank_categories(data: pd.DataFrame, column: str, plan: FieldPlan) -> List[str]:
    """Category labels ordered by weight desc, then label asc."""
    if data.empty:
        return []
    if plan.aggregation == "sum" and uses_metric(plan):
        weights = data.groupby(column)["metric"].sum()
    else:
        weights = data.groupby(column).size()
    ranked = weights.rename("weight").reset_index().sort_values(
        ["weight", column], ascending=[False, True]
    )
    return list(ranked[column])


def apply_top_n(
    data: pd.DataFrame, column: str, top_n: Optional[int], include_other: bool, plan: FieldPlan
) -> pd.DataFrame:
    """Keep the top_n categories of a column; fold the rest into 'other' or drop them."""
    if not top_n or data.empty:
        return data
    ranked = rank_categories(data, column, plan)
    if len(ranked) <= top_n:
        return data
    keep = set(ranked[:top_n])
    data = data.copy()
    if include_other:
        data.loc[~data[column].isin(keep), column] = OTHER_LABEL
        return data
    return data[data[column].isin(keep)]


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def collect_field_statistics(
    frame: pd.DataFrame, fields: Dict[str, FieldDefinition]
) -> Dict[str, FieldStatistics]:
    """Per-field statistics. An empty sample yields missing_rate 1.0 everywhere."""
    total = len(frame)
    stats: Dict[str, FieldStatistics] = {}

    for name, definition in fields.items():
        if total == 0 or name not in frame.columns:
            stats[name] = FieldStatistics()
            continue

        missing_rate = field_missing_rate(frame, name)
        labels = axis_labels(frame, name, fields, "day")
        counts = labels.explode().dropna().value_counts()
        occurrences = int(counts.sum()) if len(counts) else 0

        stats[name] = FieldStatistics(
            missing_rate=missing_rate,
            cardinality=int(len(counts)),
            top_share=float(counts.max() / occurrences) if occurrences else 0.0,
            point_count=int(len(counts)) if definition.data_type == "date" else 0,
            cell_density=0.0,
        )

    return stats


def collect_chart_statistics(
    frame: pd.DataFrame,
    chart_type: str,
    plan: FieldPlan,
    fields: Dict[str, FieldDefinition],
) -> FieldStatistics:
    """
    Statistics for one (plan, chart type) pair.

    Effective cardinality honours the plan's top_n: the 'other' bucket is
    not counted as a category.
    """
    if len(frame) == 0:
        return FieldStatistics()

    missing_rate = max(
        (field_missing_rate(frame, name) for name in plan.referenced_fields()),
        default=0.0,
    )
    axes = chart_axes(chart_type, plan)
    data = long_frame(frame, axes, fields, plan)

    if data.empty:
        return FieldStatistics(missing_rate=missing_rate)

    if chart_type == "line":
        return FieldStatistics(
            missing_rate=missing_rate,
            cardinality=int(data["y"].nunique()) if "y" in data.columns else 0,
            top_share=0.0,
            point_count=int(data["x"].nunique()),
            cell_density=0.0,
        )

    if chart_type == "heatmap":
        for column, field_name in zip(AXIS_COLUMNS, axes):
            if column in data.columns and not is_time_field(field_name, fields):
                data = apply_top_n(data, column, plan.top_n, False, plan)
        if "y" not in data.columns:
            return FieldStatistics(missing_rate=missing_rate, cardinality=int(data["x"].nunique()))
        x_count = int(data["x"].nunique())
        y_count = int(data["y"].nunique())
        cells = int(len(data.drop_duplicates(["x", "y"])))
        total_cells = x_count * y_count
        return FieldStatistics(
            missing_rate=missing_rate,
            cardinality=max(x_count, y_count),
            top_share=0.0,
            point_count=cells,
            cell_density=float(cells / total_cells) if total_cells else 0.0,
        )

    # bar / pie
    counts = data["x"].value_counts()
    top_share = float(counts.max() / counts.sum()) if counts.sum() else 0.0
    folded = apply_top_n(data, "x", plan.top_n, plan.include_other, plan)
    labels = set(folded["x"])
    cardinality = len(labels - {OTHER_LABEL})
    return FieldStatistics(
        missing_rate=missing_rate,
        cardinality=cardinality,
        top_share=top_share,
        point_count=len(labels),
        cell_density=0.0,
    )
