"""
Unit tests for inference response contracts.
"""
import json
import pytest

from notechart.core.errors import FailureKind
from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import MissingField, TemplateField
from notechart.services.contracts import (
    ContractViolation,
    decode_json,
    validate_derive_fields,
    validate_recommend,
    validate_rerank,
)
from notechart.services.fields import build_field_universe

POLICY = PolicyOverrides(fixed_vocabularies={"mood": ["happy", "calm", "sad"]})
FIELDS = build_field_universe([TemplateField(name="category", type="select"), TemplateField(name="amount", type="number")])


def _recommend(**overrides):
    payload = {
        "core_question": "Where does my money go?",
        "chart_type": "pie",
        "field_plan": {"dimension": "category", "metric": "amount", "aggregation": "sum"},
        "missing_fields": [],
        "confidence": 0.8,
    }
    payload.update(overrides)
    return json.dumps(payload)


def _violation(func, *args):
    with pytest.raises(ContractViolation) as excinfo:
        func(*args)
    return excinfo.value


@pytest.mark.unit
def test_decode_json_strips_fences_and_prose():
    assert decode_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert decode_json('Sure! Here it is: {"a": {"b": 2}} Hope that helps.') == {"a": {"b": 2}}
    with pytest.raises(ValueError):
        decode_json("no json here")


@pytest.mark.unit
def test_valid_recommend_response():
    response = validate_recommend(_recommend(), FIELDS, POLICY)

    assert response.chart_type == "pie"
    assert response.field_plan.metric == "amount"


@pytest.mark.unit
def test_recommend_with_chart_config_is_policy_violation():
    text = _recommend(chart_config={"data_rows": [{"x": "food", "value": 999}]})

    error = _violation(validate_recommend, text, FIELDS, POLICY)

    assert error.kind == FailureKind.POLICY_VIOLATION


@pytest.mark.unit
@pytest.mark.parametrize("text", [
    "not json at all",
    "[1, 2, 3]",
    _recommend(field_plan={"dimension": "category", "aggregation": "median"}),
    _recommend(extra_key=True),
    json.dumps({"chart_type": "bar"}),
])
def test_recommend_schema_violations(text):
    error = _violation(validate_recommend, text, FIELDS, POLICY)

    assert error.kind == FailureKind.SCHEMA_VIOLATION


@pytest.mark.unit
def test_recommend_rejects_unsupported_chart_type():
    error = _violation(validate_recommend, _recommend(chart_type="scatter"), FIELDS, POLICY)

    assert error.kind == FailureKind.POLICY_VIOLATION
    assert "scatter" in error.detail


@pytest.mark.unit
def test_recommend_rejects_unknown_field_reference():
    text = _recommend(field_plan={"dimension": "merchant", "aggregation": "count"})

    error = _violation(validate_recommend, text, FIELDS, POLICY)

    assert error.kind == FailureKind.POLICY_VIOLATION
    assert "merchant" in error.detail


@pytest.mark.unit
def test_recommend_accepts_declared_missing_field():
    text = _recommend(
        field_plan={"dimension": "mood", "aggregation": "count"},
        missing_fields=[{"name": "mood", "role": "dimension", "data_type": "category",
                         "range_or_values": ["happy", "sad"]}],
    )

    response = validate_recommend(text, FIELDS, POLICY)

    assert response.missing_fields[0].name == "mood"


@pytest.mark.unit
@pytest.mark.parametrize("data_type", ["category", "text", "number"])
def test_recommend_rejects_invented_vocabulary_values(data_type):
    """A governed field keeps its vocabulary whatever data type the reply declares."""
    text = _recommend(
        field_plan={"dimension": "mood", "aggregation": "count"},
        missing_fields=[{"name": "mood", "role": "dimension", "data_type": data_type,
                         "range_or_values": ["happy", "ecstatic"]}],
    )

    error = _violation(validate_recommend, text, FIELDS, POLICY)

    assert error.kind == FailureKind.POLICY_VIOLATION
    assert "ecstatic" in error.detail


@pytest.mark.unit
def test_recommend_low_confidence():
    error = _violation(validate_recommend, _recommend(confidence=0.2), FIELDS, POLICY)

    assert error.kind == FailureKind.LOW_CONFIDENCE


CANDIDATES = {"time": ["created_at", "studied_on"], "dimension": ["subject", "weekday"]}


@pytest.mark.unit
def test_valid_rerank_response():
    text = json.dumps({"selected_fields": {"time": "studied_on"}, "why": "session date", "confidence": 0.7})

    response = validate_rerank(text, CANDIDATES, POLICY)

    assert response.selected_fields == {"time": "studied_on"}


@pytest.mark.unit
@pytest.mark.parametrize("payload, kind", [
    ({"selected_fields": {"time": "created_at"}, "confidence": 0.9, "chart_type": "bar"}, FailureKind.POLICY_VIOLATION),
    ({"selected_fields": {"time": "updated_at"}, "confidence": 0.9}, FailureKind.POLICY_VIOLATION),
    ({"selected_fields": {"color": "subject"}, "confidence": 0.9}, FailureKind.SCHEMA_VIOLATION),
    ({"selected_fields": {"time": "created_at"}}, FailureKind.SCHEMA_VIOLATION),
    ({"selected_fields": {"time": "created_at"}, "confidence": 0.1}, FailureKind.LOW_CONFIDENCE),
])
def test_rerank_violations(payload, kind):
    error = _violation(validate_rerank, json.dumps(payload), CANDIDATES, POLICY)

    assert error.kind == kind


@pytest.mark.unit
def test_derive_fields_filters_value_by_value():
    declared = {
        "mood": MissingField(name="mood", role="dimension", data_type="category"),
        "energy": MissingField(name="energy", role="metric", data_type="number"),
    }
    text = json.dumps({
        "field_values": {
            "mood": {"n1": "happy", "n2": "ecstatic", "n3": ["calm", "giddy"], "ghost": "sad"},
            "energy": {"n1": 7},
            "undeclared": {"n1": "x", "n2": "y"},
        },
        "evidence": {"n1": "great day"},
    })

    accepted, dropped = validate_derive_fields(text, {"n1", "n2", "n3"}, declared, POLICY)

    assert accepted == {"mood": {"n1": "happy", "n3": ["calm"]}, "energy": {"n1": 7}}
    # ecstatic, giddy, unknown note id, and two undeclared values
    assert dropped == 5


@pytest.mark.unit
def test_derive_fields_schema_violation():
    error = _violation(validate_derive_fields, '{"values": {}}', {"n1"}, {}, POLICY)

    assert error.kind == FailureKind.SCHEMA_VIOLATION


@pytest.mark.unit
def test_derive_fields_never_fills_existing_fields():
    """A declaration that shadows a notebook field without override gets no values."""
    template = [TemplateField(name="mood", type="select")]
    missing = [
        MissingField(name="mood", role="dimension", data_type="category"),
        MissingField(name="energy", role="metric", data_type="number"),
    ]
    fields = build_field_universe(template, missing)
    text = json.dumps({"field_values": {"mood": {"n1": "sad", "n2": "sad"}, "energy": {"n1": 3}}})

    accepted, dropped = validate_derive_fields(
        text, {"n1", "n2"}, {field.name: field for field in missing}, POLICY, fields
    )

    assert accepted == {"energy": {"n1": 3}}
    assert dropped == 2
