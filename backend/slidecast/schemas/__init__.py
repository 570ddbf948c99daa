from slidecast.schemas.captions import CaptionWord
from slidecast.schemas.envelope import ErrorInfo, ErrorLocation, ErrorResponse
from slidecast.schemas.export import ExportRequest, ExportResponse

__all__ = [
    "CaptionWord",
    "ErrorInfo",
    "ErrorLocation",
    "ErrorResponse",
    "ExportRequest",
    "ExportResponse",
]
