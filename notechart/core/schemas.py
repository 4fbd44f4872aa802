from datetime import datetime
from enum import Enum
from typing import List, Optional, Any, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field
from notechart.core.errors import FailureKind

ChartType = Literal["line", "bar", "pie", "heatmap"]
ALLOWED_CHART_TYPES = ("line", "bar", "pie", "heatmap")

FieldRole = Literal["dimension", "metric"]
FieldDataType = Literal["date", "number", "category", "text"]
Aggregation = Literal["count", "sum", "avg", "none"]
TimeGranularity = Literal["day", "week", "month"]
GRANULARITY_ORDER = ("day", "week", "month")


class StageState(str, Enum):
    REQUESTED = "requested"
    VALID = "valid"
    INVALID = "invalid"
    SKIPPED = "skipped"


# Notebook snapshot supplied by the caller

class TemplateField(BaseModel):
    name: str
    type: str = "text"
    options: Optional[List[str]] = None


class Note(BaseModel):
    note_id: str
    title: str = ""
    content_text: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    source: Optional[str] = None
    author: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)


class NotebookSnapshot(BaseModel):
    notebook_id: str = Field(min_length=1)
    name: str = ""
    type: Optional[str] = None
    fields: List[TemplateField] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)


# Field universe

class FieldDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    role: FieldRole
    data_type: FieldDataType
    source: Literal["notebook", "system", "ai"]
    example: Optional[Any] = None
    override: bool = False
    description: Optional[str] = None


class FieldStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    missing_rate: float = 1.0
    cardinality: int = 0
    top_share: float = 0.0
    point_count: int = 0
    cell_density: float = 0.0


class MissingField(BaseModel):
    """A field the analysis needs but the notebook does not carry yet."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    role: FieldRole
    data_type: FieldDataType
    range_or_values: Optional[List[Any]] = None
    override: bool = False
    description: Optional[str] = None


# Chart selection

class FieldPlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    time_field: Optional[str] = None
    dimension: Optional[str] = None
    dimension_2: Optional[str] = None
    metric: Optional[str] = None
    aggregation: Aggregation = "count"
    time_granularity: TimeGranularity = "day"
    top_n: Optional[int] = Field(default=None, ge=1)
    include_other: bool = False

    def referenced_fields(self) -> List[str]:
        """Names of every field the plan points at, in role order."""
        return [
            name for name in (self.time_field, self.dimension, self.dimension_2, self.metric)
            if name
        ]


class ChartCandidate(BaseModel):
    chart_type: ChartType
    field_plan: FieldPlan
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: Literal["inference", "fallback"]
    core_question: str = ""
    # Set when no field was usable and the candidate is the count-only bar
    failure: Optional[FailureKind] = None


class GateDecision(BaseModel):
    original_type: ChartType
    final_type: ChartType
    downgraded: bool
    reason: str = "ok"
    failure: Optional[FailureKind] = None


class ChartConfig(BaseModel):
    chart_type: ChartType
    field_mapping: Dict[str, str]
    aggregation: Aggregation
    time_granularity: TimeGranularity
    data_rows: List[Dict[str, Any]]
    title: str
    spec: Dict[str, Any]


# Narrative and diagnostics

class Insight(BaseModel):
    key: Literal["state", "change", "pattern"]
    title: str
    summary: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source: Literal["rule", "inference"] = "rule"


class StageRecord(BaseModel):
    stage: str
    state: StageState
    failure: Optional[FailureKind] = None
    detail: str = ""
    exemplar_ids: List[str] = Field(default_factory=list)


# Request / response

class TimeRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preset: Literal["7d", "30d", "90d", "custom"] = "30d"
    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None


class AnalysisRequest(BaseModel):
    notebook: NotebookSnapshot
    note_ids: Optional[List[str]] = None
    time_range: Optional[TimeRange] = None
    selected_chart_type: Optional[ChartType] = None
    missing_fields: List[MissingField] = Field(default_factory=list)
    core_question: Optional[str] = None
    with_debug: bool = False


class AnalysisDebug(BaseModel):
    analysis_id: str
    mode: Literal["recommend", "config"]
    scene: str
    policy_version: str
    sample_size: int
    fields: Dict[str, FieldDefinition]
    field_statistics: Dict[str, FieldStatistics]
    stages: List[StageRecord]
    candidates: List[ChartCandidate]
    gate_decisions: List[GateDecision]


class AnalysisResult(BaseModel):
    analysis_id: str
    mode: Literal["recommend", "config"]
    scene: str
    core_question: str
    source: Literal["inference", "fallback"]
    chart: ChartConfig
    gate_decision: GateDecision
    alternatives: List[ChartConfig] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    cached: bool = False
    debug: Optional[AnalysisDebug] = None
