"""
Unit tests for chart compilation and the Vega-Lite generator.
"""
import pytest

from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import ChartCandidate, FieldPlan, GateDecision, TemplateField
from notechart.services.compiler import compile_chart
from notechart.services.fields import build_field_universe
from notechart.services.generator import generate_vega_spec, sanitize_field_name
from notechart.services.statistics import OTHER_LABEL, build_note_frame

POLICY = PolicyOverrides()


def _build(notes, template):
    fields = build_field_universe(template, notes=notes)
    return fields, build_note_frame(notes, fields)


def _compile(chart_type, frame, fields, policy=POLICY, question="", **plan):
    candidate = ChartCandidate(chart_type=chart_type, field_plan=FieldPlan(**plan), source="fallback",
                               core_question=question)
    decision = GateDecision(original_type=chart_type, final_type=chart_type, downgraded=False)
    return compile_chart(candidate, decision, frame, fields, policy)


@pytest.fixture
def spending(make_note):
    rows = [("food", 12.5), ("food", 7.5), ("rent", 900), ("travel", 150), ("fun", 20), ("fun", 15), ("gifts", 5)]
    notes = [make_note(f"n{i}", days_ago=i, fields={"category": category, "amount": amount})
             for i, (category, amount) in enumerate(rows)]
    return _build(notes, [TemplateField(name="category", type="select"), TemplateField(name="amount", type="number")])


@pytest.mark.unit
def test_bar_sum_sorted_with_other_last(spending):
    fields, frame = spending

    chart = _compile("bar", frame, fields, dimension="category", metric="amount", aggregation="sum",
                     top_n=3, include_other=True)

    assert [row["x"] for row in chart.data_rows] == ["rent", "travel", "fun", OTHER_LABEL]
    assert chart.data_rows[-1]["value"] == pytest.approx(25.0)
    assert chart.field_mapping == {"x": "category", "value": "amount"}
    assert chart.aggregation == "sum"
    assert chart.spec["data"] == {"name": "table"}


@pytest.mark.unit
def test_pie_counts(spending):
    fields, frame = spending

    chart = _compile("pie", frame, fields, question="What do I buy?", dimension="category")

    assert chart.title == "What do I buy?"
    assert chart.field_mapping["value"] == "count"
    assert {row["x"]: row["value"] for row in chart.data_rows}["food"] == 2
    assert chart.spec["mark"]["type"] == "arc"


@pytest.mark.unit
def test_line_average_over_time(make_note):
    notes = [make_note(f"n{i}", days_ago=i // 2, fields={"score": i}) for i in range(6)]
    fields, frame = _build(notes, [TemplateField(name="score", type="rating")])

    chart = _compile("line", frame, fields, time_field="created_at", metric="score", aggregation="avg")

    assert [row["x"] for row in chart.data_rows] == ["2024-06-28", "2024-06-29", "2024-06-30"]
    assert [row["value"] for row in chart.data_rows] == [4.5, 2.5, 0.5]
    assert chart.spec["encoding"]["x"]["type"] == "ordinal"


@pytest.mark.unit
def test_heatmap_rows_carry_both_axes(spending):
    fields, frame = spending

    chart = _compile("heatmap", frame, fields, time_field="created_at", dimension="category",
                     time_granularity="month")

    assert all(set(row) == {"x", "y", "value"} for row in chart.data_rows)
    assert chart.field_mapping["y"] == "category"
    assert sum(row["value"] for row in chart.data_rows) == 7


@pytest.mark.unit
def test_count_only_bar(spending):
    fields, frame = spending

    chart = _compile("bar", frame, fields)

    assert chart.data_rows == [{"x": "all", "value": 7}]


@pytest.mark.unit
def test_vocabulary_guard_drops_unknown_values(spending):
    fields, frame = spending
    policy = PolicyOverrides(fixed_vocabularies={"category": ["food", "rent", "travel"]})

    chart = _compile("bar", frame, fields, policy=policy, dimension="category")

    assert {row["x"] for row in chart.data_rows} == {"food", "rent", "travel"}


@pytest.mark.unit
def test_type_mismatch_with_gate_decision_raises(spending):
    fields, frame = spending
    candidate = ChartCandidate(chart_type="pie", field_plan=FieldPlan(dimension="category"), source="fallback")
    decision = GateDecision(original_type="pie", final_type="bar", downgraded=True, reason="pie too sparse")

    with pytest.raises(ValueError):
        compile_chart(candidate, decision, frame, fields, POLICY)


@pytest.mark.unit
def test_generator_rejects_unknown_type():
    with pytest.raises(ValueError):
        generate_vega_spec("scatter", "t", "x", "value")


@pytest.mark.unit
def test_sanitize_field_name():
    assert sanitize_field_name("Tom's\nfield") == "Tom\\'s field"
