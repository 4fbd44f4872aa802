"""
Chart config compilation.

The only place a ChartConfig is built. Resolves the plan's roles to columns,
buckets time, aggregates, applies Top-N + "other", drops values outside the
fixed vocabularies and emits the rows plus a Vega-Lite spec. Never calls the
inference service.
"""
import logging
from typing import Any, Dict, List

import pandas as pd

from notechart.core.performance import track_performance
from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import ChartCandidate, ChartConfig, FieldDefinition, GateDecision
from notechart.services.generator import generate_vega_spec
from notechart.services.statistics import (
    ALL_LABEL,
    AXIS_COLUMNS,
    OTHER_LABEL,
    apply_top_n,
    chart_axes,
    is_time_field,
    long_frame,
    reduce_values,
    uses_metric,
)

logger = logging.getLogger(__name__)

VALUE_DECIMALS = 4


def _value_title(candidate: ChartCandidate) -> str:
    plan = candidate.field_plan
    if not uses_metric(plan):
        return "Number of notes"
    if plan.aggregation == "avg":
        return f"Average {plan.metric}"
    if plan.aggregation == "none":
        return plan.metric
    return f"Total {plan.metric}"


def _clean_value(value: Any, is_count: bool):
    if is_count:
        return int(value)
    return round(float(value), VALUE_DECIMALS)


def _sort_categories(reduced: pd.DataFrame) -> pd.DataFrame:
    """Value desc, label asc, with 'other' last."""
    reduced = reduced.assign(_is_other=reduced["x"] == OTHER_LABEL)
    reduced = reduced.sort_values(["_is_other", "value", "x"], ascending=[True, False, True])
    return reduced.drop(columns="_is_other")


def _guard_vocabularies(
    data: pd.DataFrame, axes: List[str], policy: PolicyOverrides
) -> pd.DataFrame:
    for column, field_name in zip(AXIS_COLUMNS, axes):
        vocabulary = policy.vocabulary_for(field_name)
        if vocabulary is None or column not in data.columns:
            continue
        allowed = data[column].isin(set(vocabulary))
        dropped = int((~allowed).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} values outside the vocabulary of '{field_name}'")
            data = data[allowed]
    return data


@track_performance("analysis.compile")
def compile_chart(
    candidate: ChartCandidate,
    decision: GateDecision,
    frame: pd.DataFrame,
    fields: Dict[str, FieldDefinition],
    policy: PolicyOverrides,
) -> ChartConfig:
    """
    Compile a gated candidate into the authoritative ChartConfig.

    Raises:
        ValueError: the candidate's type differs from the gate's final type
    """
    if candidate.chart_type != decision.final_type:
        raise ValueError(
            f"Candidate type {candidate.chart_type} does not match gate decision {decision.final_type}"
        )

    chart_type = candidate.chart_type
    plan = candidate.field_plan
    axes = chart_axes(chart_type, plan)
    is_count = not uses_metric(plan)

    # 1. Long frame with time buckets and exploded categories
    data = long_frame(frame, axes, fields, plan)
    data = _guard_vocabularies(data, axes, policy)

    # 2. Top-N on categorical axes
    if chart_type in ("bar", "pie"):
        data = apply_top_n(data, "x", plan.top_n, plan.include_other, plan)
    elif chart_type == "heatmap":
        for column, field_name in zip(AXIS_COLUMNS, axes):
            if not is_time_field(field_name, fields):
                data = apply_top_n(data, column, plan.top_n, False, plan)
    elif chart_type == "line" and len(axes) > 1:
        data = apply_top_n(data, "y", plan.top_n, plan.include_other, plan)

    # 3. Aggregate
    keys = list(AXIS_COLUMNS[:max(len(axes), 1)])
    if chart_type == "line" and plan.aggregation == "none" and plan.metric:
        reduced = data[keys + ["metric"]].rename(columns={"metric": "value"})
    else:
        reduced = reduce_values(data, keys, plan)

    # 4. Order and serialize rows
    if reduced.empty:
        rows: List[Dict[str, Any]] = []
    else:
        if chart_type in ("bar", "pie") and not is_time_field(axes[0] if axes else None, fields):
            reduced = _sort_categories(reduced)
        else:
            reduced = reduced.sort_values(keys, kind="stable")
        rows = []
        for record in reduced.to_dict(orient="records"):
            row = {"x": str(record["x"]), "value": _clean_value(record["value"], is_count)}
            if len(keys) > 1:
                key = "series" if chart_type == "line" else "y"
                row[key] = str(record["y"])
            rows.append(row)

    # 5. Field mapping, title and spec
    field_mapping = {"x": axes[0] if axes else ALL_LABEL, "value": plan.metric if not is_count else "count"}
    if len(axes) > 1:
        field_mapping["series" if chart_type == "line" else "y"] = axes[1]

    value_title = _value_title(candidate)
    x_title = axes[0] if axes else "All notes"
    title = candidate.core_question or f"{value_title} by {x_title}"
    spec = generate_vega_spec(
        chart_type=chart_type,
        title=title,
        x_title=x_title,
        value_title=value_title,
        x_temporal=is_time_field(axes[0] if axes else None, fields),
        y_title=axes[1] if chart_type == "heatmap" and len(axes) > 1 else None,
        series_title=axes[1] if chart_type == "line" and len(axes) > 1 else None,
    )

    logger.info(f"Compiled {chart_type} chart with {len(rows)} rows")
    return ChartConfig(
        chart_type=chart_type,
        field_mapping=field_mapping,
        aggregation=plan.aggregation if not is_count else "count",
        time_granularity=plan.time_granularity,
        data_rows=rows,
        title=title,
        spec=spec,
    )
