"""
Caption API endpoints.

Provides:
- POST /captions - Generate word captions for an uploaded audio file
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from slidecast.api.deps import get_caption_service
from slidecast.schemas.captions import CaptionWord
from slidecast.services.caption_service import CaptionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/captions", response_model=list[CaptionWord])
async def generate_captions(
    file: UploadFile = File(...),
    service: CaptionService = Depends(get_caption_service),
) -> list[CaptionWord]:
    """Transcribe an audio upload into timed caption words."""
    mime_type = file.content_type or "application/octet-stream"
    if not mime_type.startswith("audio/"):
        raise HTTPException(status_code=400, detail=f"Expected an audio file, got {mime_type}")

    audio = await file.read()
    logger.info(f"[CAPTIONS] Upload {file.filename} ({mime_type}, {len(audio)} bytes)")
    return await service.generate_captions(audio, mime_type)
