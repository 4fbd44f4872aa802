import logging
from fastapi import APIRouter, HTTPException, Request
from slowapi.errors import RateLimitExceeded
from starlette.concurrency import run_in_threadpool
from notechart.core.schemas import AnalysisDebug, AnalysisRequest, AnalysisResult
from notechart.core.errors import ErrorCodes, PolicyLoadError, get_error_response
from notechart.core.policy import get_policy_store
from notechart.core.sanitization import sanitize_for_logging
from notechart.services.pipeline import get_debug, run_analysis

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "policy_version": get_policy_store().current().version}


@router.post("/analysis", response_model=AnalysisResult, response_model_exclude_none=True)
async def create_analysis(request: Request, analysis_request: AnalysisRequest):
    """
    Analyze a notebook selection and return chart configs plus insights.

    Without selected_chart_type the service recommends a chart; with it the
    chart type is kept and only fields and aggregation are planned.

    Rate limited per IP address (configurable).
    """
    limiter = request.app.state.limiter
    app_settings = request.app.state.settings

    limit_decorator = limiter.limit(f"{app_settings.rate_limit_per_minute}/minute")

    @limit_decorator
    async def _rate_limited_handler(request: Request):
        logger.info(
            f"Analysis requested for notebook {sanitize_for_logging(analysis_request.notebook.notebook_id)} "
            f"({len(analysis_request.notebook.notes)} notes)"
        )
        return await run_in_threadpool(run_analysis, analysis_request, settings=app_settings)

    try:
        return await _rate_limited_handler(request)
    except HTTPException:
        raise
    except RateLimitExceeded:
        # Formatted by the handler registered in main.py
        raise
    except Exception as e:
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        logger.error(
            f"Unexpected error analyzing notebook "
            f"{sanitize_for_logging(analysis_request.notebook.notebook_id)}: {e}",
            exc_info=True
        )
        error_info = get_error_response(ErrorCodes.UNKNOWN_ERROR)
        error_info['correlation_id'] = correlation_id
        raise HTTPException(status_code=500, detail=error_info)


@router.get("/analysis/{analysis_id}/debug", response_model=AnalysisDebug)
async def get_analysis_debug(request: Request, analysis_id: str):
    """Stage records, field statistics and gate decisions of a recent analysis."""
    debug = get_debug(analysis_id)
    if debug is None:
        error_info = get_error_response(ErrorCodes.ANALYSIS_NOT_FOUND)
        error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
        raise HTTPException(status_code=404, detail=error_info)
    return debug


@router.post("/policy/reload")
async def reload_policy(request: Request):
    """Reload the policy document from POLICY_PATH. The old policy stays active on failure."""
    store = get_policy_store()
    try:
        policy = store.reload()
    except PolicyLoadError as e:
        logger.error(f"Policy reload failed: {e}")
        error_info = get_error_response(ErrorCodes.POLICY_RELOAD_FAILED, sanitize_for_logging(str(e)))
        error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
        error_info['active_version'] = store.current().version
        raise HTTPException(status_code=500, detail=error_info)
    return {"status": "reloaded", "version": policy.version, "fingerprint": policy.fingerprint()}
