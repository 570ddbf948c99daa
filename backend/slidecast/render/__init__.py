from slidecast.render.assets import AssetLoader, LoadedAssets, MediaAsset
from slidecast.render.compositor import CompositorStyle, FitMode, FrameCompositor, compose_frame
from slidecast.render.export import ExportPhase, ExportPipeline, ExportSession
from slidecast.render.preview import PlaybackController, PlaybackState, PreviewSnapshot, open_preview
from slidecast.render.timeline import (
    CaptionTrack,
    RenderState,
    TimelineConfig,
    active_word_at,
    compute_render_state,
    image_index_at,
)

__all__ = [
    "AssetLoader",
    "LoadedAssets",
    "MediaAsset",
    "CompositorStyle",
    "FitMode",
    "FrameCompositor",
    "compose_frame",
    "ExportPhase",
    "ExportPipeline",
    "ExportSession",
    "PlaybackController",
    "PlaybackState",
    "PreviewSnapshot",
    "open_preview",
    "CaptionTrack",
    "RenderState",
    "TimelineConfig",
    "active_word_at",
    "compute_render_state",
    "image_index_at",
]
