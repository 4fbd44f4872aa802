"""
Rule-based chart recommendation.

Used whenever the inference service is unavailable, non-conformant or low
confidence, and for field scoring when the chart type is fixed by the user.
Always yields a valid candidate; the count-only bar is the last resort.
"""
import logging
from typing import Dict, List, Optional, Tuple

from notechart.core.errors import FailureKind
from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import ChartCandidate, FieldDefinition, FieldPlan, FieldStatistics
from notechart.services.gates import count_only_plan, has_required_roles

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.6
COUNT_ONLY_CONFIDENCE = 0.3
MAX_CHARTS = 3
RERANK_CANDIDATES_PER_ROLE = 5

ROLE_DATA_TYPES = {
    "time": "date",
    "dimension": "category",
    "metric": "number",
}

GENERIC_QUESTION = "How often do I write notes over time?"
COUNT_ONLY_QUESTION = "How many notes are in this selection?"


def preference_rank(name: str, preferences: List[str]) -> Tuple[int, int]:
    """(0, i) for an exact match, (1, i) for a substring match, (2, 0) otherwise."""
    lowered = name.strip().lower()
    for index, preferred in enumerate(preferences):
        if lowered == preferred.lower():
            return 0, index
    for index, preferred in enumerate(preferences):
        if preferred.lower() in lowered:
            return 1, index
    return 2, 0


def rank_fields(
    role: str,
    fields: Dict[str, FieldDefinition],
    field_stats: Dict[str, FieldStatistics],
    preferences: List[str],
    max_missing_rate: float,
) -> List[str]:
    """
    Rank the fields eligible for a semantic role.

    Order: missing_rate asc, then name preference (exact before substring,
    by list index), then cardinality asc for categorical dimensions, then name.
    Fields over the missing-rate threshold are excluded.
    """
    data_type = ROLE_DATA_TYPES[role]
    scored = []
    for name, definition in fields.items():
        if definition.data_type != data_type:
            continue
        stats = field_stats.get(name, FieldStatistics())
        if stats.missing_rate > max_missing_rate:
            continue
        cardinality = stats.cardinality if role == "dimension" else 0
        scored.append((
            round(stats.missing_rate, 4),
            preference_rank(name, preferences),
            cardinality,
            name,
        ))
    scored.sort()
    return [entry[-1] for entry in scored]


def _ranked_roles(
    scene: str,
    fields: Dict[str, FieldDefinition],
    field_stats: Dict[str, FieldStatistics],
    policy: PolicyOverrides,
) -> Dict[str, List[str]]:
    return {
        role: rank_fields(
            role, fields, field_stats,
            policy.preferences_for(scene, role),
            policy.gates.field_max_missing_rate,
        )
        for role in ROLE_DATA_TYPES
    }


def _first(values: List[str]) -> Optional[str]:
    return values[0] if values else None


def _plan_for_type(
    chart_type: str,
    ranked: Dict[str, List[str]],
    aggregation: str = "count",
    time_granularity: str = "day",
) -> FieldPlan:
    time_field = _first(ranked["time"])
    dimension = _first(ranked["dimension"])
    metric = _first(ranked["metric"]) if aggregation in ("sum", "avg", "none") else None
    if metric is None:
        aggregation = "count"

    if chart_type == "line":
        return FieldPlan(time_field=time_field, metric=metric, aggregation=aggregation,
                         time_granularity=time_granularity)
    if chart_type == "heatmap":
        if time_field:
            return FieldPlan(time_field=time_field, dimension=dimension, metric=metric,
                             aggregation=aggregation, time_granularity=time_granularity)
        dimensions = ranked["dimension"]
        return FieldPlan(dimension=_first(dimensions), dimension_2=_first(dimensions[1:]),
                         metric=metric, aggregation=aggregation)
    if chart_type == "pie":
        return FieldPlan(dimension=dimension, metric=metric, aggregation=aggregation)
    # bar: by category when there is one, else over time buckets
    if dimension:
        return FieldPlan(dimension=dimension, metric=metric, aggregation=aggregation)
    return FieldPlan(time_field=time_field, metric=metric, aggregation=aggregation,
                     time_granularity=time_granularity)


def count_only_candidate(core_question: Optional[str] = None) -> ChartCandidate:
    return ChartCandidate(
        chart_type="bar",
        field_plan=count_only_plan(),
        confidence=COUNT_ONLY_CONFIDENCE,
        source="fallback",
        core_question=core_question or COUNT_ONLY_QUESTION,
        failure=FailureKind.DATA_INFEASIBILITY,
    )


def _primary_candidate(
    scene: str,
    ranked: Dict[str, List[str]],
    policy: PolicyOverrides,
    core_question: Optional[str],
) -> ChartCandidate:
    default = policy.scene_default(scene)
    if default is not None:
        plan = _plan_for_type(default.chart_type, ranked, default.aggregation, default.time_granularity)
        if has_required_roles(default.chart_type, plan) and plan.referenced_fields():
            return ChartCandidate(
                chart_type=default.chart_type,
                field_plan=plan,
                confidence=FALLBACK_CONFIDENCE,
                source="fallback",
                core_question=core_question or default.core_question,
            )
        logger.info(f"Scene default for '{scene}' not feasible with available fields; using count view")

    # No scene mapping: count view over the best time and category fields
    time_field = _first(ranked["time"])
    dimension = _first(ranked["dimension"])
    if time_field:
        return ChartCandidate(
            chart_type="line",
            field_plan=FieldPlan(time_field=time_field, dimension=dimension, aggregation="count"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question=core_question or GENERIC_QUESTION,
        )
    if dimension:
        return ChartCandidate(
            chart_type="bar",
            field_plan=FieldPlan(dimension=dimension, aggregation="count"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question=core_question or f"How are my notes spread across {dimension}?",
        )
    return count_only_candidate(core_question)


def _alternative_candidates(ranked: Dict[str, List[str]]) -> List[ChartCandidate]:
    time_field = _first(ranked["time"])
    dimension = _first(ranked["dimension"])
    alternatives = []
    if time_field:
        alternatives.append(ChartCandidate(
            chart_type="line",
            field_plan=FieldPlan(time_field=time_field, aggregation="count"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question="How has my note volume changed over time?",
        ))
    if dimension:
        alternatives.append(ChartCandidate(
            chart_type="bar",
            field_plan=FieldPlan(dimension=dimension, aggregation="count"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question=f"How are my notes spread across {dimension}?",
        ))
    if "weekday" in ranked["dimension"] and dimension != "weekday":
        alternatives.append(ChartCandidate(
            chart_type="bar",
            field_plan=FieldPlan(dimension="weekday", aggregation="count"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question="On which weekdays do I record most?",
        ))
    if time_field and dimension:
        alternatives.append(ChartCandidate(
            chart_type="heatmap",
            field_plan=FieldPlan(time_field=time_field, dimension=dimension,
                                 aggregation="count", time_granularity="week"),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            core_question=f"When does each {dimension} show up?",
        ))
    return alternatives


def recommend(
    scene: str,
    fields: Dict[str, FieldDefinition],
    field_stats: Dict[str, FieldStatistics],
    policy: PolicyOverrides,
    core_question: Optional[str] = None,
) -> List[ChartCandidate]:
    """
    Recommend charts without the inference service.

    Returns:
        Primary candidate first, then up to two distinct alternatives
    """
    ranked = _ranked_roles(scene, fields, field_stats, policy)
    primary = _primary_candidate(scene, ranked, policy, core_question)

    charts = [primary]
    for alternative in _alternative_candidates(ranked):
        if len(charts) >= MAX_CHARTS:
            break
        duplicate = any(
            existing.chart_type == alternative.chart_type and existing.field_plan == alternative.field_plan
            for existing in charts
        )
        if not duplicate:
            charts.append(alternative)

    logger.info(
        f"Fallback recommendation for scene '{scene}': {primary.chart_type} "
        f"({len(charts) - 1} alternatives)"
    )
    return charts


def plan_fields_for_type(
    chart_type: str,
    scene: str,
    fields: Dict[str, FieldDefinition],
    field_stats: Dict[str, FieldStatistics],
    policy: PolicyOverrides,
) -> Tuple[FieldPlan, bool, Dict[str, List[str]]]:
    """
    Rule-based field scoring for a chart type fixed by the user.

    Returns:
        (plan, ambiguous, candidate lists per role). The scoring is ambiguous
        when a role the plan uses has several candidates and either the top
        two tie on (missing_rate, name preference) or none matches a preference.
    """
    ranked = _ranked_roles(scene, fields, field_stats, policy)
    default = policy.scene_default(scene)
    aggregation = default.aggregation if default else "count"
    granularity = default.time_granularity if default else "day"
    plan = _plan_for_type(chart_type, ranked, aggregation, granularity)

    used_roles = []
    if plan.time_field:
        used_roles.append("time")
    if plan.dimension:
        used_roles.append("dimension")
    if plan.metric:
        used_roles.append("metric")

    ambiguous = False
    for role in used_roles:
        names = ranked[role]
        if len(names) < 2:
            continue
        preferences = policy.preferences_for(scene, role)
        first, second = names[0], names[1]
        first_key = (round(field_stats.get(first, FieldStatistics()).missing_rate, 4), preference_rank(first, preferences))
        second_key = (round(field_stats.get(second, FieldStatistics()).missing_rate, 4), preference_rank(second, preferences))
        if first_key == second_key or first_key[1][0] == 2:
            ambiguous = True
            break

    candidates = {role: ranked[role][:RERANK_CANDIDATES_PER_ROLE] for role in ROLE_DATA_TYPES}
    return plan, ambiguous, candidates
