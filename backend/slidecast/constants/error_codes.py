"""Error codes dictionary for the slidecast API.

This is the single source of truth for all error codes, their retryability,
and suggested fixes. Used by exception handlers to generate machine-readable
error responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Asset errors
    # ==========================================================================
    "ASSET_LOAD_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that every image, the watermark and the audio file can be decoded",
    },
    "ASSET_ACCESS_DENIED": {
        "retryable": False,
        "suggested_fix": "Place local media files under the configured media_root",
    },
    # ==========================================================================
    # Caption errors
    # ==========================================================================
    "CAPTION_FORMAT_INVALID": {
        "retryable": True,
        "suggested_fix": "Retry caption generation or try a different audio file",
    },
    "CAPTION_SERVICE_UNAVAILABLE": {
        "retryable": True,
        "suggested_fix": "Check the caption service API key and network access",
    },
    # ==========================================================================
    # Export errors
    # ==========================================================================
    "ENCODER_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that ffmpeg is installed with a supported video encoder",
    },
    "EXPORT_IN_PROGRESS": {
        "retryable": True,
        "suggested_fix": "Wait for the running export to finish before starting another",
    },
    "EXPORT_CANCELLED": {
        "retryable": True,
    },
    # ==========================================================================
    # Generic
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Check the export filename returned by POST /api/exports",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Fix the request body fields named in the error message",
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})
