"""
Error taxonomy and user-friendly error responses.

Two families live here:
- FailureKind: internal, recoverable failures of the analysis pipeline.
  None of them is ever surfaced to the end user as an HTTP error.
- ErrorCodes: request-level errors returned by the API.
"""
from enum import Enum
from typing import Dict, Optional


class FailureKind(str, Enum):
    """Why a pipeline stage did not produce a usable result."""
    SCHEMA_VIOLATION = "schema_violation"
    POLICY_VIOLATION = "policy_violation"
    STATISTICAL_INFEASIBILITY = "statistical_infeasibility"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    DATA_INFEASIBILITY = "data_infeasibility"
    LOW_CONFIDENCE = "low_confidence"


class InferenceUnavailable(Exception):
    """Raised by the inference client when no provider produced a response."""

    MISSING_CREDENTIALS = "missing_credentials"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class PolicyLoadError(Exception):
    """Raised when a policy overrides document cannot be read or validated."""


# Error codes
class ErrorCodes:
    INVALID_REQUEST = "INVALID_REQUEST"
    ANALYSIS_NOT_FOUND = "ANALYSIS_NOT_FOUND"
    POLICY_RELOAD_FAILED = "POLICY_RELOAD_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

# User-friendly error messages
ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.INVALID_REQUEST: {
        "message": "We couldn't read that analysis request",
        "detail": "Some of the notebook or note data in the request is missing or has an unexpected shape.",
        "suggestion": "💡 Check that the notebook has an id and that every note has a note_id, then try again."
    },
    ErrorCodes.ANALYSIS_NOT_FOUND: {
        "message": "That analysis is no longer available",
        "detail": "Debug details are kept for a short while after an analysis runs, and this one has expired or never existed.",
        "suggestion": "💡 Run the analysis again with debug enabled to get fresh details."
    },
    ErrorCodes.POLICY_RELOAD_FAILED: {
        "message": "The policy file could not be reloaded",
        "detail": "The new policy document is unreadable or invalid, so the previous policy is still in effect.",
        "suggestion": "💡 Validate the JSON/YAML document and its gate thresholds, then reload again."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Whoa there! Slow down a bit",
        "detail": "You're requesting analyses faster than we can keep up! We limit requests to keep the service fast for everyone.",
        "suggestion": "💡 Take a quick break and try again in about a minute. Your notes will still be there!"
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "Analyzing this selection took too long. This usually happens with very large note selections.",
        "suggestion": "💡 Try a shorter time range or fewer notes, then run the analysis again."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Hmm, something unexpected happened",
        "detail": "We encountered an issue we weren't expecting. Don't worry - it's not your fault!",
        "suggestion": "💡 Give it another try in a moment. If the problem keeps happening, try a smaller selection of notes."
    }
}

def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response
