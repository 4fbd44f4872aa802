"""
Inference orchestration.

Runs the constrained inference protocol for one analysis:

- recommend mode: RECOMMEND -> (declared missing fields?) DERIVE_FIELDS
- config mode:    (missing fields?) DERIVE_FIELDS -> (ambiguous?) RERANK

At most one call per stage, sequential, each with its own timeout. Every
stage ends VALID, INVALID (with a FailureKind) or SKIPPED; failures degrade
to rule-based results and are never raised to the caller.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import pandas as pd

from notechart.core.errors import FailureKind, InferenceUnavailable
from notechart.core.performance import PerformanceMonitor
from notechart.core.policy import PolicyOverrides
from notechart.core.sanitization import sanitize_for_prompt
from notechart.core.schemas import (
    ALLOWED_CHART_TYPES,
    ChartCandidate,
    FieldDefinition,
    FieldPlan,
    FieldStatistics,
    MissingField,
    Note,
    NotebookSnapshot,
    StageRecord,
    StageState,
)
from notechart.services import fallback
from notechart.services.contracts import (
    ContractViolation,
    RerankResponse,
    validate_derive_fields,
    validate_recommend,
    validate_rerank,
)
from notechart.services.exemplars import render_exemplars, select_exemplars
from notechart.services.fields import build_field_universe
from notechart.services.statistics import build_note_frame, collect_field_statistics

logger = logging.getLogger(__name__)

STAGE_RECOMMEND = "recommend"
STAGE_DERIVE = "derive_fields"
STAGE_RERANK = "rerank"

PROMPT_FIELD_LIMIT = 40
PROMPT_TITLE_LIMIT = 12
DERIVE_NOTE_LIMIT = 60
DERIVE_TEXT_CHARS = 300

RECOMMEND_SYSTEM_PROMPT = (
    "You help pick one chart for a set of personal notes. "
    "Reply with a single JSON object and nothing else."
)
RERANK_SYSTEM_PROMPT = (
    "You pick the best field for each chart role from the supplied candidates. "
    "Reply with a single JSON object and nothing else."
)
DERIVE_SYSTEM_PROMPT = (
    "You extract field values from personal notes. Only use values the note supports. "
    "Reply with a single JSON object and nothing else."
)


class Completer(Protocol):
    def complete(self, system_prompt: str, prompt: str, max_tokens: int = 500, timeout: Optional[float] = None) -> str:
        ...


@dataclass
class AnalysisContext:
    """Per-request working state shared by the stages."""
    notebook: NotebookSnapshot
    notes: List[Note]
    scene: str
    policy: PolicyOverrides
    missing_fields: List[MissingField] = field(default_factory=list)
    derived: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    stages: List[StageRecord] = field(default_factory=list)
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)
    frame: Optional[pd.DataFrame] = None
    field_stats: Dict[str, FieldStatistics] = field(default_factory=dict)

    def refresh(self) -> None:
        """Rebuild the field universe, frame and statistics from the current inputs."""
        self.fields = build_field_universe(self.notebook.fields, self.missing_fields, self.notes)
        self.frame = build_note_frame(self.notes, self.fields, self.ai_derived())
        self.field_stats = collect_field_statistics(self.frame, self.fields)

    def derivable_fields(self) -> List[MissingField]:
        """Declared fields that made it into the universe as `ai` fields."""
        return [
            missing for missing in self.missing_fields
            if missing.name in self.fields and self.fields[missing.name].source == "ai"
        ]

    def ai_derived(self) -> Dict[str, Dict[str, Any]]:
        # Notebook and system values are never replaced by derived ones
        return {
            name: values for name, values in self.derived.items()
            if name in self.fields and self.fields[name].source == "ai"
        }

    def declare_missing_fields(self, declared: List[MissingField]) -> None:
        known = {missing.name for missing in self.missing_fields}
        for missing in declared:
            if missing.name not in known:
                self.missing_fields.append(missing)
                known.add(missing.name)


def query_tags(ctx: AnalysisContext) -> set:
    """Tags describing the analysis, for exemplar matching."""
    tags = {ctx.scene}
    for name, definition in ctx.fields.items():
        tags.add(definition.data_type)
        if definition.source != "system":
            tags.add(name.lower())
    return tags


def _describe_fields(ctx: AnalysisContext) -> str:
    lines = []
    for name, definition in list(ctx.fields.items())[:PROMPT_FIELD_LIMIT]:
        stats = ctx.field_stats.get(name, FieldStatistics())
        example = sanitize_for_prompt(str(definition.example), 40) if definition.example is not None else "-"
        lines.append(
            f"- {sanitize_for_prompt(name, 60)}: role={definition.role}, type={definition.data_type}, "
            f"source={definition.source}, missing_rate={stats.missing_rate:.2f}, "
            f"cardinality={stats.cardinality}, example={example}"
        )
    return "\n".join(lines)


def _describe_vocabularies(policy: PolicyOverrides) -> str:
    if not policy.fixed_vocabularies:
        return "none"
    return "; ".join(
        f"{name}: {', '.join(values)}" for name, values in sorted(policy.fixed_vocabularies.items())
    )


class InferenceOrchestrator:
    """Runs the inference stages for one analysis against a completion client."""

    def __init__(self, client: Completer, policy: PolicyOverrides, timeout: float = 15.0):
        self.client = client
        self.policy = policy
        self.timeout = timeout

    # -- plumbing -----------------------------------------------------------

    def _call(self, stage: str, system_prompt: str, prompt: str, max_tokens: int) -> str:
        start_time = time.time()
        status = "success"
        try:
            return self.client.complete(system_prompt, prompt, max_tokens=max_tokens, timeout=self.timeout)
        except InferenceUnavailable:
            status = "unavailable"
            raise
        finally:
            PerformanceMonitor.record_metric(
                f"inference.{stage}", time.time() - start_time, {"status": status}
            )

    def _record(
        self,
        ctx: AnalysisContext,
        stage: str,
        state: StageState,
        failure: Optional[FailureKind] = None,
        detail: str = "",
        exemplar_ids: Optional[List[str]] = None,
    ) -> StageRecord:
        record = StageRecord(
            stage=stage, state=state, failure=failure, detail=detail, exemplar_ids=exemplar_ids or []
        )
        ctx.stages.append(record)
        log = logger.warning if state == StageState.INVALID else logger.info
        log(
            f"Stage {stage}: {state.value}" + (f" ({failure.value}: {detail})" if failure else ""),
            extra={"stage": stage, "stage_state": state.value},
        )
        return record

    # -- stages -------------------------------------------------------------

    def recommend_stage(self, ctx: AnalysisContext, core_question: Optional[str] = None):
        """One Recommend call. Returns (candidate, declared missing fields) or (None, [])."""
        exemplars = select_exemplars(STAGE_RECOMMEND, ctx.scene, query_tags(ctx), k=2)
        titles = [sanitize_for_prompt(note.title, 60) for note in ctx.notes[:PROMPT_TITLE_LIMIT] if note.title]
        prompt = f"""Notebook: {sanitize_for_prompt(ctx.notebook.name, 80) or '-'} (scene: {ctx.scene})
Notes in sample: {len(ctx.notes)}
Recent titles: {'; '.join(titles) or '-'}
User question: {sanitize_for_prompt(core_question, 200) if core_question else '-'}

Fields:
{_describe_fields(ctx)}

Fixed vocabularies: {_describe_vocabularies(self.policy)}

Allowed chart types: {', '.join(ALLOWED_CHART_TYPES)}

Reply with JSON of exactly this shape:
{{"core_question": str, "chart_type": one of the allowed types,
 "field_plan": {{"time_field": str|null, "dimension": str|null, "dimension_2": str|null, "metric": str|null,
   "aggregation": "count"|"sum"|"avg"|"none", "time_granularity": "day"|"week"|"month"}},
 "missing_fields": [{{"name": str, "role": "dimension"|"metric", "data_type": "date"|"number"|"category"|"text",
   "range_or_values": list|null, "override": false}}],
 "confidence": number between 0 and 1}}
Only reference listed fields or fields you declare in missing_fields.

{render_exemplars(exemplars)}"""

        exemplar_ids = [exemplar.id for exemplar in exemplars]
        try:
            text = self._call(STAGE_RECOMMEND, RECOMMEND_SYSTEM_PROMPT, prompt, max_tokens=500)
            response = validate_recommend(text, ctx.fields, self.policy)
        except InferenceUnavailable as e:
            self._record(ctx, STAGE_RECOMMEND, StageState.INVALID, FailureKind.UPSTREAM_UNAVAILABLE, e.reason, exemplar_ids)
            return None, []
        except ContractViolation as e:
            self._record(ctx, STAGE_RECOMMEND, StageState.INVALID, e.kind, e.detail, exemplar_ids)
            return None, []

        self._record(ctx, STAGE_RECOMMEND, StageState.VALID, detail=f"chart_type={response.chart_type}",
                     exemplar_ids=exemplar_ids)
        candidate = ChartCandidate(
            chart_type=response.chart_type,
            field_plan=response.field_plan,
            confidence=response.confidence,
            source="inference",
            core_question=core_question or response.core_question,
        )
        return candidate, response.missing_fields

    def derive_stage(self, ctx: AnalysisContext, chart_type: Optional[str] = None) -> bool:
        """
        One Derive-Fields call for the declared fields that became `ai` fields.

        Returns True when values were accepted, or when every declared field
        already exists in the notebook and there is nothing to derive.
        """
        derivable = ctx.derivable_fields()
        if not derivable:
            self._record(ctx, STAGE_DERIVE, StageState.SKIPPED, detail="declared fields already exist")
            return True

        exemplars = select_exemplars(STAGE_DERIVE, ctx.scene, query_tags(ctx), chart_type=chart_type, k=1)
        notes = ctx.notes[:DERIVE_NOTE_LIMIT]
        declarations = []
        for missing in derivable:
            values = self.policy.vocabulary_for(missing.name) or missing.range_or_values
            declarations.append({
                "name": missing.name,
                "data_type": missing.data_type,
                "allowed_values": values,
                "description": sanitize_for_prompt(missing.description, 120) if missing.description else None,
            })
        note_lines = [
            f"[{note.note_id}] {sanitize_for_prompt(note.title, 80)} | "
            f"{sanitize_for_prompt(note.content_text, DERIVE_TEXT_CHARS)}"
            for note in notes
        ]
        prompt = f"""Fields to fill:
{json.dumps(declarations, ensure_ascii=False, default=str)}

Notes:
{chr(10).join(note_lines)}

Reply with JSON: {{"field_values": {{field_name: {{note_id: value}}}}, "evidence": optional}}.
Skip a note when it does not support a value. Use only allowed values when they are given.

{render_exemplars(exemplars)}"""

        exemplar_ids = [exemplar.id for exemplar in exemplars]
        declared = {missing.name: missing for missing in derivable}
        try:
            text = self._call(STAGE_DERIVE, DERIVE_SYSTEM_PROMPT, prompt, max_tokens=1500)
            accepted, dropped = validate_derive_fields(
                text, {note.note_id for note in notes}, declared, self.policy, ctx.fields
            )
        except InferenceUnavailable as e:
            self._record(ctx, STAGE_DERIVE, StageState.INVALID, FailureKind.UPSTREAM_UNAVAILABLE, e.reason, exemplar_ids)
            return False
        except ContractViolation as e:
            self._record(ctx, STAGE_DERIVE, StageState.INVALID, e.kind, e.detail, exemplar_ids)
            return False

        for field_name, values in accepted.items():
            ctx.derived.setdefault(field_name, {}).update(values)
        kept = sum(len(values) for values in accepted.values())
        self._record(ctx, STAGE_DERIVE, StageState.VALID, detail=f"kept {kept} values, dropped {dropped}",
                     exemplar_ids=exemplar_ids)
        ctx.refresh()
        return kept > 0

    def rerank_stage(
        self,
        ctx: AnalysisContext,
        chart_type: str,
        plan: FieldPlan,
        candidates: Dict[str, List[str]],
        core_question: Optional[str] = None,
    ) -> Optional[RerankResponse]:
        """One Rerank call over the supplied candidate lists. Returns the accepted selection or None."""
        exemplars = select_exemplars(STAGE_RERANK, ctx.scene, query_tags(ctx), chart_type=chart_type, k=2)
        lists = {role: names for role, names in candidates.items() if names}
        described = {
            role: [
                {
                    "name": name,
                    "missing_rate": round(ctx.field_stats.get(name, FieldStatistics()).missing_rate, 2),
                    "cardinality": ctx.field_stats.get(name, FieldStatistics()).cardinality,
                }
                for name in names
            ]
            for role, names in lists.items()
        }
        prompt = f"""Chart type (fixed): {chart_type}
Scene: {ctx.scene}
Question: {sanitize_for_prompt(core_question, 200) if core_question else '-'}
Current rule-based choice: {plan.model_dump_json(exclude_none=True)}

Candidates per role:
{json.dumps(described, ensure_ascii=False)}

Reply with JSON: {{"selected_fields": {{role: field_name}}, "why": str, "confidence": number}}.
Pick only from the candidates. Do not include a chart type.

{render_exemplars(exemplars)}"""

        exemplar_ids = [exemplar.id for exemplar in exemplars]
        try:
            text = self._call(STAGE_RERANK, RERANK_SYSTEM_PROMPT, prompt, max_tokens=300)
            response = validate_rerank(text, lists, self.policy)
        except InferenceUnavailable as e:
            self._record(ctx, STAGE_RERANK, StageState.INVALID, FailureKind.UPSTREAM_UNAVAILABLE, e.reason, exemplar_ids)
            return None
        except ContractViolation as e:
            self._record(ctx, STAGE_RERANK, StageState.INVALID, e.kind, e.detail, exemplar_ids)
            return None

        self._record(ctx, STAGE_RERANK, StageState.VALID, detail=json.dumps(response.selected_fields),
                     exemplar_ids=exemplar_ids)
        return response

    # -- mode flows ---------------------------------------------------------

    def run_recommend_mode(self, ctx: AnalysisContext, core_question: Optional[str] = None) -> List[ChartCandidate]:
        """
        Recommend mode: inference candidate when valid, fallback otherwise.

        Returns:
            Primary candidate first, then fallback alternatives (three at most)
        """
        candidate, declared = self.recommend_stage(ctx, core_question)

        if candidate is not None:
            referenced = set(candidate.field_plan.referenced_fields())
            needed = [missing for missing in declared if missing.name in referenced]
            if needed:
                ctx.declare_missing_fields(needed)
                ctx.refresh()
                if not self.derive_stage(ctx, candidate.chart_type):
                    logger.info("Recommended plan depends on fields that could not be derived; using fallback")
                    candidate = None
            else:
                self._record(ctx, STAGE_DERIVE, StageState.SKIPPED, detail="no missing fields referenced")
        else:
            self._record(ctx, STAGE_DERIVE, StageState.SKIPPED, detail="recommend stage invalid")
        ctx.stages.append(StageRecord(stage=STAGE_RERANK, state=StageState.SKIPPED, detail="recommend mode"))

        ranked = fallback.recommend(ctx.scene, ctx.fields, ctx.field_stats, self.policy, core_question)
        if candidate is None:
            return ranked

        charts = [candidate]
        for alternative in ranked:
            if len(charts) >= fallback.MAX_CHARTS:
                break
            if any(existing.chart_type == alternative.chart_type and existing.field_plan == alternative.field_plan
                   for existing in charts):
                continue
            charts.append(alternative)
        return charts

    def run_config_mode(
        self, ctx: AnalysisContext, chart_type: str, core_question: Optional[str] = None
    ) -> ChartCandidate:
        """
        Config mode: the chart type is the user's and never changes here.
        """
        ctx.stages.append(StageRecord(stage=STAGE_RECOMMEND, state=StageState.SKIPPED, detail="config mode"))

        # 1. Derive values for declared missing fields
        if ctx.missing_fields:
            self.derive_stage(ctx, chart_type)
        else:
            self._record(ctx, STAGE_DERIVE, StageState.SKIPPED, detail="no missing fields")

        # 2. Rule scoring, reranked only when ambiguous
        plan, ambiguous, candidates = fallback.plan_fields_for_type(
            chart_type, ctx.scene, ctx.fields, ctx.field_stats, self.policy
        )
        confidence = fallback.FALLBACK_CONFIDENCE
        source = "fallback"
        if ambiguous:
            response = self.rerank_stage(ctx, chart_type, plan, candidates, core_question)
            if response is not None:
                plan = apply_rerank(plan, response.selected_fields)
                confidence = response.confidence
                source = "inference"
        else:
            self._record(ctx, STAGE_RERANK, StageState.SKIPPED, detail="rule scoring unambiguous")

        default = self.policy.scene_default(ctx.scene)
        question = core_question or (default.core_question if default else fallback.GENERIC_QUESTION)
        return ChartCandidate(
            chart_type=chart_type,
            field_plan=plan,
            confidence=confidence,
            source=source,
            core_question=question,
        )


def apply_rerank(plan: FieldPlan, selected_fields: Dict[str, str]) -> FieldPlan:
    """Apply a validated role -> field selection to a plan."""
    updates = {}
    if "time" in selected_fields and plan.time_field:
        updates["time_field"] = selected_fields["time"]
    if "dimension" in selected_fields and plan.dimension:
        updates["dimension"] = selected_fields["dimension"]
    if "metric" in selected_fields and plan.aggregation in ("sum", "avg", "none"):
        updates["metric"] = selected_fields["metric"]
    if updates.get("dimension") and updates["dimension"] == plan.dimension_2:
        updates["dimension_2"] = plan.dimension
    return plan.model_copy(update=updates) if updates else plan
