import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Slidecast API"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffplay_path: str = "ffplay"

    # Export settings (9:16 portrait, 1080p)
    export_width: int = 1080
    export_height: int = 1920
    export_fps: int = 20
    export_crf: int = 23
    export_preset: str = "veryfast"
    export_audio_bitrate: str = "192k"
    export_filename_stem: str = "video-slideshow"
    download_dir: str = "/tmp/slidecast-downloads"
    # Read size for the encoder's stdout pipe
    export_chunk_size: int = 64 * 1024

    # Interactive preview
    preview_width: int = 360
    preview_height: int = 640
    preview_fps: int = 60
    preview_audible: bool = False

    # Caption style (pixel values are relative to a 1080px wide canvas)
    caption_font_candidates: list[str] = [
        "/usr/share/fonts/truetype/anton/Anton-Regular.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
    ]
    caption_font_size: int = 96
    caption_min_font_size: int = 12
    caption_color: str = "#FFFF00"
    caption_outline_color: str = "#000000"
    caption_stroke_width: int = 4
    caption_margin_x: int = 20
    caption_margin_top: int = 40
    caption_margin_bottom: int = 20

    # Watermark placement (relative to a 1080px wide canvas)
    watermark_margin_right: int = 40
    watermark_margin_top: int = 120
    watermark_height: int = 100
    watermark_opacity: float = 0.8

    # Background image placement
    fit_mode: Literal["cover", "contain"] = "cover"

    # Local assets: file paths in export requests must resolve under this directory
    media_root: str = "/srv/slidecast/media"

    # Remote assets
    asset_fetch_timeout_s: float = 30.0

    # Caption generation (Gemini)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-pro"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    caption_request_timeout_s: float = 180.0

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from a comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            return json.loads(v)
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @computed_field
    @property
    def export_size(self) -> tuple[int, int]:
        """Export surface size as (width, height)."""
        return (self.export_width, self.export_height)

    @computed_field
    @property
    def preview_size(self) -> tuple[int, int]:
        """Preview surface size as (width, height)."""
        return (self.preview_width, self.preview_height)


@lru_cache
def get_settings() -> Settings:
    return Settings()
