import sys
import logging
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from notechart.api.routes import router
from notechart.api.metrics import router as metrics_router
from notechart.core.config import get_settings
from notechart.core.errors import ErrorCodes, get_error_response
from notechart.core.logging import configure_logging
from notechart.core.middleware import CorrelationIDMiddleware, TimeoutMiddleware
from notechart.core.policy import get_policy_store

load_dotenv()

try:
    settings = get_settings()
except Exception as e:
    logging.basicConfig(level=logging.ERROR)
    logging.getLogger(__name__).error(f"Failed to load configuration: {e}")
    sys.exit(1)

# LOG_FORMAT=json switches to structured output
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="NoteChart API",
    description="Chart recommendation and quality-gated analysis for notebooks",
    version="1.0.0"
)
app.state.limiter = limiter
app.state.settings = settings


def _error_content(request: Request, code: str) -> dict:
    content = get_error_response(code)
    content["correlation_id"] = getattr(request.state, "correlation_id", "unknown")
    return content


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """429 with a Retry-After hint."""
    content = _error_content(request, ErrorCodes.RATE_LIMIT_EXCEEDED)
    return JSONResponse(
        status_code=429,
        content=content,
        headers={
            "Retry-After": str(exc.retry_after) if hasattr(exc, "retry_after") else "60",
            "X-Correlation-ID": content["correlation_id"],
        }
    )


def validation_error_handler(request: Request, exc: RequestValidationError):
    """422 in the structured error shape, listing where the body is wrong."""
    content = _error_content(request, ErrorCodes.INVALID_REQUEST)
    content["errors"] = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    logger.info(f"Rejected analysis request: {len(content['errors'])} validation errors")
    return JSONResponse(status_code=422, content={"detail": content})


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# Last added is the outermost layer, so the timeout wraps everything below it
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"]
)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)

app.include_router(router, prefix="/api")
app.include_router(metrics_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "NoteChart API is running"}


logger.info(
    f"NoteChart started (policy {get_policy_store().current().version}, "
    f"origins {settings.allowed_origins_list})"
)
