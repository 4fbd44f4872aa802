"""
Analysis pipeline.

One stateless run per request: resolve the mode, sample notes, build the
field universe and statistics, orchestrate inference (or fall back), gate
each candidate, compile charts and write insights. Results are cached by a
content fingerprint; debug payloads are kept by analysis id.
"""
import hashlib
import json
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from notechart.core.cache import analysis_fingerprint, get_analysis_cache, get_debug_cache
from notechart.core.config import Settings, get_settings
from notechart.core.performance import track_performance
from notechart.core.policy import PolicyOverrides, get_policy_store
from notechart.core.schemas import (
    AnalysisDebug,
    AnalysisRequest,
    AnalysisResult,
    ChartCandidate,
    ChartConfig,
    GateDecision,
    Note,
)
from notechart.services.compiler import compile_chart
from notechart.services.gates import evaluate_gates
from notechart.services.insights import generate_insights
from notechart.services.llm import get_inference_client
from notechart.services.orchestrator import AnalysisContext, Completer, InferenceOrchestrator
from notechart.services.scenes import resolve_scene
from notechart.services.statistics import select_notes

logger = logging.getLogger(__name__)

MODE_RECOMMEND = "recommend"
MODE_CONFIG = "config"


def resolve_mode(selected_chart_type: Optional[str]) -> str:
    """No selected chart type means recommend; a selection means config."""
    return MODE_CONFIG if selected_chart_type else MODE_RECOMMEND


def _content_digest(request: AnalysisRequest, notes: List[Note]) -> str:
    payload = {
        "template": [field.model_dump() for field in request.notebook.fields],
        "notebook": [request.notebook.name, request.notebook.type],
        "notes": [note.model_dump(mode="json") for note in notes],
        "core_question": request.core_question,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()


def get_debug(analysis_id: str) -> Optional[AnalysisDebug]:
    """Debug payload of a recent analysis, or None when unknown or expired."""
    return get_debug_cache().get(analysis_id)


@track_performance("analysis.run")
def run_analysis(
    request: AnalysisRequest,
    policy: Optional[PolicyOverrides] = None,
    client: Optional[Completer] = None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> AnalysisResult:
    """
    Run one analysis end to end.

    Args:
        request: Notebook snapshot and selection
        policy: Policy to use (defaults to the active policy)
        client: Inference client (defaults to the Groq/Gemini client)
        settings: Settings (defaults to the process settings)
        now: Reference time for time range presets

    Returns:
        AnalysisResult with the primary chart, alternatives and insights
    """
    settings = settings or get_settings()
    policy = policy or get_policy_store().current()
    mode = resolve_mode(request.selected_chart_type)

    # 1. Sample
    notes = select_notes(
        request.notebook.notes,
        note_ids=request.note_ids,
        time_range=request.time_range,
        max_notes=settings.sample_window_max_notes,
        now=now,
    )

    # 2. Cache lookup
    cache_key = analysis_fingerprint(
        notebook_id=request.notebook.notebook_id,
        note_ids=request.note_ids,
        time_range=request.time_range.model_dump(mode="json", by_alias=True) if request.time_range else None,
        policy_fingerprint=policy.fingerprint(),
        mode=mode,
        selected_chart_type=request.selected_chart_type,
        missing_fields=[missing.model_dump() for missing in request.missing_fields],
        content_digest=_content_digest(request, notes),
    )
    analysis_cache = get_analysis_cache()
    cached = analysis_cache.get(cache_key)
    if cached is not None:
        logger.info(f"Analysis cache hit for notebook {request.notebook.notebook_id}: {cached.analysis_id}")
        debug = get_debug(cached.analysis_id) if request.with_debug else None
        return cached.model_copy(update={"cached": True, "debug": debug})

    # 3. Field universe and statistics
    scene = resolve_scene(request.notebook, notes)
    ctx = AnalysisContext(
        notebook=request.notebook,
        notes=notes,
        scene=scene,
        policy=policy,
        missing_fields=list(request.missing_fields),
    )
    ctx.refresh()
    logger.info(
        f"Analyzing {len(notes)} notes of notebook {request.notebook.notebook_id} "
        f"(mode={mode}, scene={scene}, fields={len(ctx.fields)})"
    )

    # 4. Inference or fallback
    orchestrator = InferenceOrchestrator(
        client or get_inference_client(), policy, settings.inference_timeout_seconds
    )
    if mode == MODE_CONFIG:
        candidates: List[ChartCandidate] = [
            orchestrator.run_config_mode(ctx, request.selected_chart_type, request.core_question)
        ]
    else:
        candidates = orchestrator.run_recommend_mode(ctx, request.core_question)

    # 5. Gates and compilation
    charts: List[ChartConfig] = []
    decisions: List[GateDecision] = []
    gated_candidates: List[ChartCandidate] = []
    for candidate in candidates:
        gated, decision = evaluate_gates(
            candidate, ctx.frame, ctx.fields, policy.gates, frozen_type=(mode == MODE_CONFIG)
        )
        if any(existing.chart_type == gated.chart_type and existing.field_plan == gated.field_plan
               for existing in gated_candidates):
            continue
        gated_candidates.append(gated)
        decisions.append(decision)
        charts.append(compile_chart(gated, decision, ctx.frame, ctx.fields, policy))

    if mode == MODE_CONFIG and charts[0].chart_type != request.selected_chart_type:
        raise RuntimeError("Config mode changed the selected chart type")

    # 6. Insights
    insights = generate_insights(notes, charts[0], scene)

    analysis_id = f"analysis_{uuid.uuid4().hex[:16]}"
    debug = AnalysisDebug(
        analysis_id=analysis_id,
        mode=mode,
        scene=scene,
        policy_version=policy.version,
        sample_size=len(notes),
        fields=ctx.fields,
        field_statistics=ctx.field_stats,
        stages=ctx.stages,
        candidates=candidates,
        gate_decisions=decisions,
    )
    result = AnalysisResult(
        analysis_id=analysis_id,
        mode=mode,
        scene=scene,
        core_question=gated_candidates[0].core_question,
        source=gated_candidates[0].source,
        chart=charts[0],
        gate_decision=decisions[0],
        alternatives=charts[1:],
        insights=insights,
    )

    get_debug_cache().set(analysis_id, debug, ttl=settings.analysis_cache_ttl_seconds)
    analysis_cache.set(cache_key, result, ttl=settings.analysis_cache_ttl_seconds)
    logger.info(
        f"Analysis {analysis_id} complete: {charts[0].chart_type} "
        f"({decisions[0].reason}), {len(charts) - 1} alternatives"
    )

    if request.with_debug:
        return result.model_copy(update={"debug": debug})
    return result
