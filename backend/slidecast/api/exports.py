"""
Export API endpoints.

Provides:
- POST /exports - Render and encode a slideshow (returns when finished)
- GET /exports/{filename} - Download a finished export
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from slidecast.api.deps import get_export_pipeline
from slidecast.config import Settings, get_settings
from slidecast.render.assets import check_locator_access
from slidecast.render.compositor import FitMode
from slidecast.render.export import ExportPipeline, ExportSession
from slidecast.schemas.export import ExportRequest, ExportResponse

logger = logging.getLogger(__name__)

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def _to_response(session: ExportSession) -> ExportResponse:
    return ExportResponse(
        id=session.id,
        phase=session.phase.value,
        filename=session.filename,
        download_url=f"/api/exports/{session.filename}" if session.filename else None,
        output_size=session.output_size or None,
        video_codec=session.profile.video_codec if session.profile else None,
        audio_codec=session.profile.audio_codec if session.profile else None,
        started_at=session.started_at,
        completed_at=session.completed_at,
        error_message=session.error_message,
    )


@router.post("/exports", response_model=ExportResponse)
async def create_export(
    request: ExportRequest,
    pipeline: ExportPipeline = Depends(get_export_pipeline),
    settings: Settings = Depends(get_settings),
) -> ExportResponse:
    """Run an export to completion.

    Local paths must resolve under ``settings.media_root`` (403 otherwise).
    A second request while one is running is rejected with 409.
    """
    check_locator_access(request.audio_path, settings.media_root)
    for index, locator in enumerate(request.image_locators):
        check_locator_access(locator, settings.media_root, index)
    if request.watermark_locator:
        check_locator_access(request.watermark_locator, settings.media_root)

    session = await pipeline.export_from_locators(
        request.audio_path,
        request.image_locators,
        request.watermark_locator,
        request.captions,
        fit_mode=FitMode(request.fit_mode) if request.fit_mode else None,
    )
    return _to_response(session)


@router.get("/exports/{filename}")
async def download_export(filename: str) -> FileResponse:
    """Serve a finished export from the downloads directory."""
    directory = Path(get_settings().download_dir).resolve()
    path = (directory / filename).resolve()
    media_type = MEDIA_TYPES.get(path.suffix)
    if path.parent != directory or media_type is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Export not found")
    return FileResponse(path, media_type=media_type, filename=filename)
