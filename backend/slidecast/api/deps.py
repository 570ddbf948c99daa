from functools import lru_cache

from slidecast.config import get_settings
from slidecast.render.export import ExportPipeline
from slidecast.services.caption_service import CaptionService


@lru_cache
def get_export_pipeline() -> ExportPipeline:
    """Process-wide export pipeline. Only one export runs at a time."""
    return ExportPipeline(get_settings())


@lru_cache
def get_caption_service() -> CaptionService:
    return CaptionService(get_settings())
