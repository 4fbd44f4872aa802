"""
Quality gates.

Deterministic checks that downgrade unreadable or unstable chart choices.
Evaluation order: field exclusion, then the rule for the candidate's type,
then exactly one re-evaluation on the (possibly new) type.

When the chart type is frozen (the user picked it) type-changing rules are
replaced by their field-level remedy and the type never changes.
"""
import logging
from typing import Dict, List, Optional, Tuple

import pandas as pd

from notechart.core.errors import FailureKind
from notechart.core.performance import track_performance
from notechart.core.policy import GatePolicy
from notechart.core.schemas import (
    GRANULARITY_ORDER,
    ChartCandidate,
    FieldDefinition,
    FieldPlan,
    GateDecision,
)
from notechart.services.statistics import (
    collect_chart_statistics,
    field_missing_rate,
    is_time_field,
    long_frame,
    reduce_values,
)

logger = logging.getLogger(__name__)

ROLE_ATTRIBUTES = ("time_field", "dimension", "dimension_2", "metric")


def has_required_roles(chart_type: str, plan: FieldPlan) -> bool:
    """Whether the plan carries the roles the chart type cannot do without."""
    if chart_type == "line":
        return bool(plan.time_field)
    if chart_type == "pie":
        return bool(plan.dimension)
    if chart_type == "heatmap":
        return bool(plan.dimension and (plan.time_field or plan.dimension_2))
    return True


def count_only_plan() -> FieldPlan:
    return FieldPlan(aggregation="count")


def _coarser(granularity: str) -> Optional[str]:
    position = GRANULARITY_ORDER.index(granularity)
    if position + 1 < len(GRANULARITY_ORDER):
        return GRANULARITY_ORDER[position + 1]
    return None


def _exclude_fields(
    plan: FieldPlan, frame: pd.DataFrame, fields: Dict[str, FieldDefinition], gates: GatePolicy
) -> Tuple[FieldPlan, List[str]]:
    updates = {}
    reasons = []
    for attribute in ROLE_ATTRIBUTES:
        name = getattr(plan, attribute)
        if not name:
            continue
        if name not in fields:
            updates[attribute] = None
            reasons.append(f"excluded unknown field '{name}'")
            continue
        missing_rate = field_missing_rate(frame, name)
        if missing_rate > gates.field_max_missing_rate:
            updates[attribute] = None
            reasons.append(
                f"excluded '{name}' (missing_rate {missing_rate:.2f} > {gates.field_max_missing_rate:.2f})"
            )
    if updates.get("metric", plan.metric) is None and plan.aggregation in ("sum", "avg", "none"):
        updates["aggregation"] = "count"
        reasons.append(f"aggregation {plan.aggregation} has no metric; using count")
    if not updates:
        return plan, reasons
    return plan.model_copy(update=updates), reasons


def _axis_total(
    frame: pd.DataFrame, field_name: str, fields: Dict[str, FieldDefinition], plan: FieldPlan
) -> float:
    axis_plan = plan.model_copy(update={"aggregation": "count" if plan.aggregation == "avg" else plan.aggregation})
    data = long_frame(frame, [field_name], fields, axis_plan)
    reduced = reduce_values(data, ["x"], axis_plan)
    return float(reduced["value"].sum()) if len(reduced) else 0.0


def _heatmap_to_bar(
    candidate: ChartCandidate, frame: pd.DataFrame, fields: Dict[str, FieldDefinition], gates: GatePolicy
) -> Tuple[FieldPlan, str]:
    plan = candidate.field_plan
    axes = [name for name in (plan.time_field, plan.dimension, plan.dimension_2) if name][:2]
    # ties keep the first axis
    best = axes[0]
    best_total = _axis_total(frame, best, fields, plan)
    for name in axes[1:]:
        total = _axis_total(frame, name, fields, plan)
        if total > best_total:
            best, best_total = name, total

    if is_time_field(best, fields):
        bar_plan = plan.model_copy(update={"time_field": best, "dimension": None, "dimension_2": None})
    else:
        bar_plan = plan.model_copy(update={
            "time_field": None,
            "dimension": best,
            "dimension_2": None,
            "top_n": gates.heatmap_topn,
            "include_other": True,
        })
    return bar_plan, best


def _apply_type_rule(
    candidate: ChartCandidate,
    frame: pd.DataFrame,
    fields: Dict[str, FieldDefinition],
    gates: GatePolicy,
    frozen_type: bool,
) -> Tuple[ChartCandidate, Optional[str]]:
    """Apply the single rule for the candidate's chart type. Returns (candidate, reason or None)."""
    chart_type = candidate.chart_type
    plan = candidate.field_plan
    stats = collect_chart_statistics(frame, chart_type, plan, fields)

    if chart_type == "pie":
        sparse = stats.cardinality > gates.pie_sparse_cardinality and stats.top_share < gates.pie_min_top_share
        too_many = stats.cardinality > gates.pie_topn
        if not (sparse or too_many):
            return candidate, None
        new_plan = plan.model_copy(update={"top_n": gates.pie_topn, "include_other": True})
        if sparse:
            condition = (
                f"pie cardinality {stats.cardinality} > {gates.pie_sparse_cardinality} "
                f"with top_share {stats.top_share:.2f} < {gates.pie_min_top_share:.2f}"
            )
        else:
            condition = f"pie cardinality {stats.cardinality} > {gates.pie_topn}"
        if frozen_type:
            return (
                candidate.model_copy(update={"field_plan": new_plan}),
                f"{condition}: kept top {gates.pie_topn} + other",
            )
        return (
            candidate.model_copy(update={"chart_type": "bar", "field_plan": new_plan}),
            f"{condition}: switched to bar with top {gates.pie_topn} + other",
        )

    if chart_type == "line":
        if stats.point_count >= gates.line_min_points:
            return candidate, None
        condition = f"line has {stats.point_count} points < {gates.line_min_points} at {plan.time_granularity}"
        coarser = _coarser(plan.time_granularity)
        if coarser is not None:
            coarse_plan = plan.model_copy(update={"time_granularity": coarser})
            if frozen_type:
                return candidate.model_copy(update={"field_plan": coarse_plan}), f"{condition}: coarsened to {coarser}"
            coarse_stats = collect_chart_statistics(frame, "line", coarse_plan, fields)
            if coarse_stats.point_count >= gates.line_min_points:
                return candidate.model_copy(update={"field_plan": coarse_plan}), f"{condition}: coarsened to {coarser}"
            bar_plan = coarse_plan.model_copy(update={"dimension": None, "dimension_2": None})
            return (
                candidate.model_copy(update={"chart_type": "bar", "field_plan": bar_plan}),
                f"{condition}: coarsened to {coarser}, still {coarse_stats.point_count} points: switched to bar over {coarser} buckets",
            )
        if frozen_type:
            return candidate, None
        bar_plan = plan.model_copy(update={"dimension": None, "dimension_2": None})
        return (
            candidate.model_copy(update={"chart_type": "bar", "field_plan": bar_plan}),
            f"{condition}: switched to bar over {plan.time_granularity} buckets",
        )

    if chart_type == "heatmap":
        if stats.cell_density >= gates.heatmap_min_density:
            return candidate, None
        condition = f"heatmap cell_density {stats.cell_density:.2f} < {gates.heatmap_min_density:.2f}"
        if frozen_type:
            if plan.top_n is not None and plan.top_n <= gates.heatmap_topn:
                return candidate, None
            new_plan = plan.model_copy(update={"top_n": gates.heatmap_topn})
            return candidate.model_copy(update={"field_plan": new_plan}), f"{condition}: kept top {gates.heatmap_topn} per axis"
        bar_plan, axis = _heatmap_to_bar(candidate, frame, fields, gates)
        return (
            candidate.model_copy(update={"chart_type": "bar", "field_plan": bar_plan}),
            f"{condition}: switched to bar on '{axis}' (higher aggregate total)",
        )

    if chart_type == "bar":
        if stats.cardinality <= gates.bar_max_categories:
            return candidate, None
        new_plan = plan.model_copy(update={"top_n": gates.bar_max_categories, "include_other": True})
        return (
            candidate.model_copy(update={"field_plan": new_plan}),
            f"bar cardinality {stats.cardinality} > {gates.bar_max_categories}: kept top {gates.bar_max_categories} + other",
        )

    return candidate, None


@track_performance("analysis.gates")
def evaluate_gates(
    candidate: ChartCandidate,
    frame: pd.DataFrame,
    fields: Dict[str, FieldDefinition],
    gates: GatePolicy,
    frozen_type: bool = False,
) -> Tuple[ChartCandidate, GateDecision]:
    """
    Run the quality gates on one candidate.

    Args:
        candidate: Candidate to check
        frame: Analysis frame from build_note_frame
        fields: Field universe
        gates: Gate thresholds from the active policy
        frozen_type: True when the chart type was picked by the user

    Returns:
        (possibly rewritten candidate, GateDecision)
    """
    reasons: List[str] = []
    current = candidate

    if candidate.failure == FailureKind.DATA_INFEASIBILITY:
        reasons.append("data_infeasibility: no field passes the missing-rate threshold; using count-only bar")

    # 1. Field exclusion
    plan, exclusion_reasons = _exclude_fields(current.field_plan, frame, fields, gates)
    reasons.extend(exclusion_reasons)
    current = current.model_copy(update={"field_plan": plan})

    if not has_required_roles(current.chart_type, plan):
        if frozen_type:
            reasons.append(f"required field missing for {current.chart_type}; type kept")
        else:
            reasons.append(
                f"data_infeasibility: required field missing for {current.chart_type}; using count-only bar"
            )
            current = current.model_copy(update={
                "chart_type": "bar",
                "field_plan": count_only_plan(),
                "failure": FailureKind.DATA_INFEASIBILITY,
            })

    # 2. Type rule, then one re-evaluation on the resulting type
    for _ in range(2):
        current, reason = _apply_type_rule(current, frame, fields, gates, frozen_type)
        if reason is None:
            break
        reasons.append(reason)

    downgraded = (
        current.chart_type != candidate.chart_type
        or current.field_plan != candidate.field_plan
    )
    if current.failure == FailureKind.DATA_INFEASIBILITY:
        failure = FailureKind.DATA_INFEASIBILITY
    elif current.chart_type != candidate.chart_type:
        failure = FailureKind.STATISTICAL_INFEASIBILITY
    else:
        failure = None
    reported = downgraded or failure == FailureKind.DATA_INFEASIBILITY
    decision = GateDecision(
        original_type=candidate.chart_type,
        final_type=current.chart_type,
        downgraded=downgraded,
        reason="; ".join(reasons) if reported and reasons else "ok",
        failure=failure,
    )
    if downgraded:
        logger.info(
            f"Gate adjusted {candidate.chart_type} -> {current.chart_type}: {decision.reason}",
            extra={"gate_reason": decision.reason, "original_type": candidate.chart_type},
        )
    return current, decision
