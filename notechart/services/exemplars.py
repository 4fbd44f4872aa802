"""
Few-shot exemplars for the inference stages.

A fixed, versioned set. Selection is a pure scoring function:
3 * [chart type match] + 2 * [scene match] + jaccard(tags), ties broken by
exemplar id. Exemplars are advisory prompt context only.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set

EXEMPLAR_SET_VERSION = "2024.1"

MIN_EXEMPLARS = 1
MAX_EXEMPLARS = 3


@dataclass(frozen=True)
class Exemplar:
    id: str
    stage: str  # 'recommend', 'rerank' or 'derive_fields'
    scene: str
    chart_type: Optional[str]
    tags: FrozenSet[str]
    input_summary: str
    output: Dict[str, Any] = field(default_factory=dict)


EXEMPLARS: List[Exemplar] = [
    Exemplar(
        id="rec-finance-pie",
        stage="recommend",
        scene="finance",
        chart_type="pie",
        tags=frozenset({"date", "category", "number", "amount", "category_field"}),
        input_summary="Expense notebook with fields date, category, amount.",
        output={
            "core_question": "Which categories take up most of my spending?",
            "chart_type": "pie",
            "field_plan": {"dimension": "category", "metric": "amount", "aggregation": "sum"},
            "missing_fields": [],
            "confidence": 0.82,
        },
    ),
    Exemplar(
        id="rec-mood-line",
        stage="recommend",
        scene="mood",
        chart_type="line",
        tags=frozenset({"date", "number", "mood", "mood_score", "text"}),
        input_summary="Mood diary with created_at, mood_score (1-10) and free text.",
        output={
            "core_question": "How has my mood changed over time?",
            "chart_type": "line",
            "field_plan": {"time_field": "created_at", "metric": "mood_score",
                           "aggregation": "avg", "time_granularity": "day"},
            "missing_fields": [],
            "confidence": 0.78,
        },
    ),
    Exemplar(
        id="rec-study-missing",
        stage="recommend",
        scene="study",
        chart_type="bar",
        tags=frozenset({"date", "text", "subject"}),
        input_summary="Study log with only free text; subject is mentioned in each note.",
        output={
            "core_question": "Which subjects do I study most?",
            "chart_type": "bar",
            "field_plan": {"dimension": "subject", "aggregation": "count"},
            "missing_fields": [{
                "name": "subject", "role": "dimension", "data_type": "category",
                "range_or_values": ["math", "physics", "language"], "override": False,
            }],
            "confidence": 0.66,
        },
    ),
    Exemplar(
        id="rerank-line-time",
        stage="rerank",
        scene="study",
        chart_type="line",
        tags=frozenset({"date", "created_at", "studied_on"}),
        input_summary="Line chart; time candidates created_at, studied_on.",
        output={
            "selected_fields": {"time": "studied_on"},
            "why": "studied_on records when the session happened; created_at is when it was typed.",
            "confidence": 0.74,
        },
    ),
    Exemplar(
        id="rerank-bar-dimension",
        stage="rerank",
        scene="work",
        chart_type="bar",
        tags=frozenset({"category", "project", "status"}),
        input_summary="Bar chart; dimension candidates project, status.",
        output={
            "selected_fields": {"dimension": "project"},
            "why": "The question is about where time goes, which project answers directly.",
            "confidence": 0.7,
        },
    ),
    Exemplar(
        id="rerank-pie-metric",
        stage="rerank",
        scene="finance",
        chart_type="pie",
        tags=frozenset({"number", "amount", "price", "category"}),
        input_summary="Pie chart; metric candidates amount, price.",
        output={
            "selected_fields": {"dimension": "category", "metric": "amount"},
            "why": "amount is the paid total; price is per unit.",
            "confidence": 0.8,
        },
    ),
    Exemplar(
        id="derive-mood-category",
        stage="derive_fields",
        scene="mood",
        chart_type="pie",
        tags=frozenset({"category", "mood", "text"}),
        input_summary="Derive 'mood' (happy|calm|anxious|sad) for notes n1, n2.",
        output={
            "field_values": {"mood": {"n1": "happy", "n2": "anxious"}},
            "evidence": {"n1": "had a great day", "n2": "worried about the exam"},
        },
    ),
    Exemplar(
        id="derive-study-duration",
        stage="derive_fields",
        scene="study",
        chart_type="line",
        tags=frozenset({"number", "duration", "text"}),
        input_summary="Derive 'duration' in minutes for notes a, b.",
        output={
            "field_values": {"duration": {"a": 45, "b": 90}},
        },
    ),
    Exemplar(
        id="derive-work-project",
        stage="derive_fields",
        scene="work",
        chart_type="bar",
        tags=frozenset({"category", "project", "text"}),
        input_summary="Derive 'project' (alpha|beta) for notes w1, w2; w2 mentions no project.",
        output={
            "field_values": {"project": {"w1": "alpha"}},
        },
    ),
]


def jaccard(left: Set[str], right: Set[str]) -> float:
    if not left and not right:
        return 0.0
    return len(left & right) / len(left | right)


def similarity(exemplar: Exemplar, chart_type: Optional[str], scene: str, tags: Set[str]) -> float:
    score = 0.0
    if chart_type is not None and exemplar.chart_type == chart_type:
        score += 3.0
    if exemplar.scene == scene:
        score += 2.0
    return score + jaccard(set(exemplar.tags), set(tags))


def select_exemplars(
    stage: str,
    scene: str,
    tags: Set[str],
    chart_type: Optional[str] = None,
    k: int = 2,
    exemplars: Optional[List[Exemplar]] = None,
) -> List[Exemplar]:
    """
    Pick the k nearest exemplars for a stage (k clamped to 1..3).

    Sorted by score desc, then exemplar id asc.
    """
    k = max(MIN_EXEMPLARS, min(MAX_EXEMPLARS, k))
    pool = [exemplar for exemplar in (exemplars if exemplars is not None else EXEMPLARS) if exemplar.stage == stage]
    ranked = sorted(pool, key=lambda exemplar: (-similarity(exemplar, chart_type, scene, tags), exemplar.id))
    return ranked[:k]


def render_exemplars(selected: List[Exemplar]) -> str:
    """Format exemplars as a prompt block."""
    blocks = []
    for index, exemplar in enumerate(selected, start=1):
        blocks.append(
            f"Example {index}:\nInput: {exemplar.input_summary}\n"
            f"Output: {json.dumps(exemplar.output, ensure_ascii=False)}"
        )
    return "\n\n".join(blocks)
