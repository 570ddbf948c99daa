"""Custom exceptions for slidecast.

Every failure category surfaced to callers has its own exception carrying a
machine-readable code, an HTTP status for the API layer and a single
descriptive message.
"""

from slidecast.constants.error_codes import get_error_spec
from slidecast.schemas.envelope import ErrorInfo, ErrorLocation


class SlidecastError(Exception):
    """Base exception for all slidecast errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Asset Errors
# =============================================================================


class AssetLoadError(SlidecastError):
    """An image, watermark or audio asset could not be loaded or decoded.

    Fails the whole load batch.
    """

    code = "ASSET_LOAD_FAILED"
    status_code = 422
    message = "Failed to load media assets"

    def __init__(
        self,
        message: str | None = None,
        locator: str | None = None,
        index: int | None = None,
    ):
        if locator and not message:
            message = f"Failed to load asset: {locator}"
        location = ErrorLocation(locator=locator, index=index) if locator else None
        super().__init__(message, location=location)
        self.locator = locator


class AssetAccessError(AssetLoadError):
    """A local asset path lies outside the configured media root."""

    code = "ASSET_ACCESS_DENIED"
    status_code = 403
    message = "Asset is outside the media root"


# =============================================================================
# Caption Errors
# =============================================================================


class CaptionFormatError(SlidecastError):
    """Caption source returned a malformed response."""

    code = "CAPTION_FORMAT_INVALID"
    status_code = 502
    message = "The caption service returned an invalid format"


class CaptionServiceError(SlidecastError):
    """Caption source could not be reached or rejected the request."""

    code = "CAPTION_SERVICE_UNAVAILABLE"
    status_code = 503
    message = "Failed to communicate with the caption service"


# =============================================================================
# Export Errors
# =============================================================================


class EncoderError(SlidecastError):
    """Encoder is unsupported or failed while recording."""

    code = "ENCODER_FAILED"
    status_code = 500
    message = "Video encoding failed"


class RecordingStateError(SlidecastError):
    """An export was requested while another one is in flight."""

    code = "EXPORT_IN_PROGRESS"
    status_code = 409
    message = "An export is already in progress"


class ExportCancelledError(SlidecastError):
    """The running export was superseded or cancelled."""

    code = "EXPORT_CANCELLED"
    status_code = 409
    message = "Export was cancelled"
