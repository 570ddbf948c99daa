from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from slidecast.schemas.captions import CaptionWord


class ExportRequest(BaseModel):
    audio_path: str
    image_locators: list[str] = Field(min_length=1)
    watermark_locator: str | None = None  # None selects the built-in watermark
    captions: list[CaptionWord] = Field(default_factory=list)
    fit_mode: Literal["cover", "contain"] | None = None  # None uses settings.fit_mode


class ExportResponse(BaseModel):
    id: str
    phase: str
    filename: str | None
    download_url: str | None
    output_size: int | None
    video_codec: str | None
    audio_codec: str | None
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
