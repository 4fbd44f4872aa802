"""
Unit tests for the rule-based recommender.
"""
import pytest

from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import TemplateField
from notechart.services.fallback import (
    COUNT_ONLY_QUESTION,
    plan_fields_for_type,
    preference_rank,
    rank_fields,
    recommend,
)
from notechart.services.fields import build_field_universe
from notechart.services.statistics import build_note_frame, collect_field_statistics

POLICY = PolicyOverrides()

TEMPLATE = [
    TemplateField(name="date", type="date"),
    TemplateField(name="category", type="select"),
    TemplateField(name="mood", type="select"),
    TemplateField(name="amount", type="number"),
    TemplateField(name="mood_score", type="rating"),
]


@pytest.fixture
def universe(make_note, now):
    notes = [
        make_note(
            f"n{i}",
            days_ago=i,
            fields={
                "date": now.isoformat(),
                "category": ["food", "rent", "travel"][i % 3],
                "mood": ["calm", "happy"][i % 2],
                "amount": 10 + i,
                "mood_score": 5 + i % 4,
            },
        )
        for i in range(12)
    ]
    fields = build_field_universe(TEMPLATE, notes=notes)
    frame = build_note_frame(notes, fields)
    return fields, collect_field_statistics(frame, fields)


@pytest.mark.unit
def test_preference_rank():
    preferences = ["amount", "price"]

    assert preference_rank("Amount", preferences) == (0, 0)
    assert preference_rank("unit_price", preferences) == (1, 1)
    assert preference_rank("weight", preferences) == (2, 0)


@pytest.mark.unit
def test_rank_fields_orders_by_preference(universe):
    fields, stats = universe

    metrics = rank_fields("metric", fields, stats, ["mood_score", "score"], 0.4)
    times = rank_fields("time", fields, stats, ["date"], 0.4)

    assert metrics == ["mood_score", "amount"]
    assert times[0] == "date"


@pytest.mark.unit
def test_scenes_do_not_collapse_to_one_chart(universe):
    """Different scene preferences pick different questions, types and fields."""
    fields, stats = universe

    finance = recommend("finance", fields, stats, POLICY)[0]
    mood = recommend("mood", fields, stats, POLICY)[0]

    assert (finance.core_question, finance.chart_type) != (mood.core_question, mood.chart_type)
    assert finance.chart_type == "pie"
    assert finance.field_plan.dimension == "category"
    assert finance.field_plan.metric == "amount"
    assert mood.chart_type == "line"
    assert mood.field_plan.metric == "mood_score"
    assert mood.field_plan.aggregation == "avg"


@pytest.mark.unit
def test_recommend_returns_distinct_alternatives(universe):
    fields, stats = universe

    charts = recommend("life", fields, stats, POLICY)

    assert 1 < len(charts) <= 3
    assert all(chart.source == "fallback" for chart in charts)
    keys = [(chart.chart_type, chart.field_plan) for chart in charts]
    assert len(keys) == len(set((t, p.model_dump_json()) for t, p in keys))


@pytest.mark.unit
def test_custom_scene_uses_count_view(universe):
    fields, stats = universe

    primary = recommend("custom", fields, stats, POLICY, core_question="What did I log?")[0]

    assert primary.chart_type == "line"
    assert primary.field_plan.aggregation == "count"
    assert primary.core_question == "What did I log?"


@pytest.mark.unit
def test_empty_sample_falls_back_to_count_only():
    fields = build_field_universe(TEMPLATE)
    stats = collect_field_statistics(build_note_frame([], fields), fields)

    charts = recommend("finance", fields, stats, POLICY)

    assert charts[0].chart_type == "bar"
    assert charts[0].field_plan.referenced_fields() == []
    assert charts[0].core_question == COUNT_ONLY_QUESTION


@pytest.mark.unit
def test_plan_for_fixed_type_unambiguous(universe):
    fields, stats = universe

    plan, ambiguous, candidates = plan_fields_for_type("pie", "finance", fields, stats, POLICY)

    assert plan.dimension == "category"
    assert plan.metric == "amount"
    assert ambiguous is False
    assert "category" in candidates["dimension"]
    assert all(len(names) <= 5 for names in candidates.values())


@pytest.mark.unit
def test_plan_for_fixed_type_ambiguous(make_note):
    notes = [make_note(f"n{i}", fields={"topic": f"t{i % 2}", "project": f"p{i % 2}"}) for i in range(6)]
    template = [TemplateField(name="topic", type="select"), TemplateField(name="project", type="select")]
    fields = build_field_universe(template, notes=notes)
    stats = collect_field_statistics(build_note_frame(notes, fields), fields)

    plan, ambiguous, candidates = plan_fields_for_type("bar", "custom", fields, stats, POLICY)

    assert ambiguous is True
    assert plan.dimension in candidates["dimension"]
