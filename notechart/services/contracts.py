"""
Fixed response contracts for the three inference stages.

Responses are decoded into strict pydantic models (unknown keys forbidden)
and then checked against code-owned guarantees. Every failed check raises
ContractViolation carrying a FailureKind.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notechart.core.errors import FailureKind
from notechart.core.policy import PolicyOverrides
from notechart.core.schemas import ALLOWED_CHART_TYPES, FieldDefinition, FieldPlan, MissingField

logger = logging.getLogger(__name__)

RERANK_ROLES = ("time", "dimension", "metric")


class RecommendResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    core_question: str = Field(min_length=1)
    chart_type: str
    field_plan: FieldPlan
    missing_fields: List[MissingField] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class RerankResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    selected_fields: Dict[str, str]
    why: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class DeriveFieldsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field_values: Dict[str, Dict[str, Any]]
    evidence: Optional[Any] = None


class ContractViolation(Exception):
    """A response broke its contract."""

    def __init__(self, kind: FailureKind, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}")


def decode_json(text: str) -> Any:
    """
    Decode a model response as JSON.

    Markdown code fences are stripped; if the text still is not JSON the
    outermost {...} span is tried.

    Raises:
        ValueError: no JSON object could be decoded
    """
    if text is None:
        raise ValueError("empty response")
    cleaned = text.replace('```json', '').replace('```', '').strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    try:
        return json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e


def _decode_object(text: str) -> Dict[str, Any]:
    try:
        payload = decode_json(text)
    except ValueError as e:
        raise ContractViolation(FailureKind.SCHEMA_VIOLATION, str(e)) from e
    if not isinstance(payload, dict):
        raise ContractViolation(FailureKind.SCHEMA_VIOLATION, "response is not a JSON object")
    return payload


def _first_error(error: ValidationError) -> str:
    issue = error.errors()[0]
    location = ".".join(str(part) for part in issue.get("loc", ()))
    return f"{location}: {issue.get('msg', 'invalid')}" if location else issue.get("msg", "invalid")


def validate_recommend(
    text: str, fields: Dict[str, FieldDefinition], policy: PolicyOverrides
) -> RecommendResponse:
    """
    Validate a Recommend response.

    Raises:
        ContractViolation: with the first failing check, in order: JSON,
            anti-escalation, schema, allowed chart type, vocabulary, field
            references, confidence
    """
    payload = _decode_object(text)

    if "chart_config" in payload:
        raise ContractViolation(FailureKind.POLICY_VIOLATION, "response carries a chart_config key")

    try:
        response = RecommendResponse.model_validate(payload)
    except ValidationError as e:
        raise ContractViolation(FailureKind.SCHEMA_VIOLATION, _first_error(e)) from e

    if response.chart_type not in ALLOWED_CHART_TYPES:
        raise ContractViolation(
            FailureKind.POLICY_VIOLATION, f"chart_type '{response.chart_type}' is not allowed"
        )

    for missing in response.missing_fields:
        vocabulary = policy.vocabulary_for(missing.name)
        if vocabulary is None or not missing.range_or_values:
            continue
        invented = [value for value in missing.range_or_values if str(value) not in vocabulary]
        if invented:
            raise ContractViolation(
                FailureKind.POLICY_VIOLATION,
                f"missing field '{missing.name}' proposes values outside its vocabulary: {invented[:5]}",
            )

    declared = {missing.name for missing in response.missing_fields}
    unknown = [name for name in response.field_plan.referenced_fields() if name not in fields and name not in declared]
    if unknown:
        raise ContractViolation(FailureKind.POLICY_VIOLATION, f"field_plan references unknown fields: {unknown}")

    if response.confidence < policy.min_inference_confidence:
        raise ContractViolation(
            FailureKind.LOW_CONFIDENCE,
            f"confidence {response.confidence:.2f} < {policy.min_inference_confidence:.2f}",
        )

    return response


def validate_rerank(
    text: str, candidates: Dict[str, List[str]], policy: PolicyOverrides
) -> RerankResponse:
    """
    Validate a Rerank response against the candidate lists it was given.

    Raises:
        ContractViolation: chart_type present, schema mismatch, a selection
            outside the supplied lists, or low confidence
    """
    payload = _decode_object(text)

    if "chart_type" in payload or "chart_config" in payload:
        raise ContractViolation(FailureKind.POLICY_VIOLATION, "rerank response tries to set the chart type")

    try:
        response = RerankResponse.model_validate(payload)
    except ValidationError as e:
        raise ContractViolation(FailureKind.SCHEMA_VIOLATION, _first_error(e)) from e

    for role, name in response.selected_fields.items():
        if role not in RERANK_ROLES:
            raise ContractViolation(FailureKind.SCHEMA_VIOLATION, f"unknown role '{role}'")
        if name not in candidates.get(role, []):
            raise ContractViolation(
                FailureKind.POLICY_VIOLATION, f"'{name}' is not a supplied candidate for {role}"
            )

    if response.confidence < policy.min_inference_confidence:
        raise ContractViolation(
            FailureKind.LOW_CONFIDENCE,
            f"confidence {response.confidence:.2f} < {policy.min_inference_confidence:.2f}",
        )

    return response


def validate_derive_fields(
    text: str,
    note_ids: Set[str],
    declared: Dict[str, MissingField],
    policy: PolicyOverrides,
    fields: Optional[Dict[str, FieldDefinition]] = None,
) -> Tuple[Dict[str, Dict[str, Any]], int]:
    """
    Validate a Derive-Fields response and filter it value by value.

    Values for undeclared fields or unknown note ids are dropped, and so are
    values outside the fixed vocabulary of a governed field. When the field
    universe is given, values for a declared field that did not become an
    `ai` field (it shadows a notebook or system field without override) are
    dropped as well.

    Returns:
        (field -> note_id -> value, number of dropped values)

    Raises:
        ContractViolation: the response is not valid JSON or breaks the schema
    """
    payload = _decode_object(text)
    try:
        response = DeriveFieldsResponse.model_validate(payload)
    except ValidationError as e:
        raise ContractViolation(FailureKind.SCHEMA_VIOLATION, _first_error(e)) from e

    accepted: Dict[str, Dict[str, Any]] = {}
    dropped = 0
    for field_name, values in response.field_values.items():
        if field_name not in declared:
            dropped += len(values)
            continue
        if fields is not None and (field_name not in fields or fields[field_name].source != "ai"):
            dropped += len(values)
            continue
        vocabulary = policy.vocabulary_for(field_name)
        kept: Dict[str, Any] = {}
        for note_id, value in values.items():
            if note_id not in note_ids:
                dropped += 1
                continue
            if vocabulary is not None:
                if isinstance(value, list):
                    allowed = [item for item in value if str(item) in vocabulary]
                    dropped += len(value) - len(allowed)
                    if not allowed:
                        continue
                    value = allowed
                elif str(value) not in vocabulary:
                    dropped += 1
                    continue
            kept[note_id] = value
        if kept:
            accepted[field_name] = kept

    if dropped:
        logger.info(f"Derive-Fields: dropped {dropped} values outside the declared fields, notes or vocabularies")
    return accepted, dropped
