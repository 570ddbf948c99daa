"""
Export pipeline: offline render-and-encode of a slideshow.

Phases:
1. Preparing   - load assets, build the offscreen surface, wait for the
                 offline audio clock, negotiate codecs, build the encoder
2. Recording   - start the encoder, play the offline clock from zero and
                 composite one frame per capture tick until audio stops
3. Finalizing  - stop the encoder, join the encoded chunks and hand the
                 artifact to the download sink
4. Complete | Failed

The offline clock runs in real time: the audio track is captured as it
plays, so an export takes as long as the audio. Only one export may run per
pipeline; the clock and encoder are released whatever the outcome. Frames are
composited on a worker thread so the event loop keeps serving other work.
"""

import asyncio
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence
from uuid import uuid4

from PIL import Image

from slidecast.config import Settings, get_settings
from slidecast.exceptions import (
    AssetLoadError,
    EncoderError,
    ExportCancelledError,
    RecordingStateError,
    SlidecastError,
)
from slidecast.render.assets import AssetLoader, LoadedAssets
from slidecast.render.clock import AudioClock, OfflineAudioClock
from slidecast.render.codecs import CodecProfile, probe_encoders, select_codec_profile
from slidecast.render.compositor import CompositorStyle, FitMode, FrameCompositor
from slidecast.render.encoder import EncoderSink, FFmpegEncoderSink
from slidecast.render.timeline import CaptionTrack, RenderState, TimelineConfig, compute_render_state
from slidecast.schemas.captions import CaptionWord

logger = logging.getLogger(__name__)


# ============================================================================
# Enums & Dataclasses
# ============================================================================


class ExportPhase(Enum):
    """Export session phase."""

    IDLE = "idle"
    PREPARING = "preparing"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ExportSession:
    """State of one export run. Owned by the ExportPipeline."""

    id: str
    generation: int
    phase: ExportPhase = ExportPhase.IDLE
    encoded_chunks: list[bytes] = field(default_factory=list)
    profile: Optional[CodecProfile] = None
    filename: Optional[str] = None
    output_path: Optional[Path] = None
    output_size: int = 0
    frames_written: int = 0
    last_capture_time: float = 0.0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ============================================================================
# Download sink
# ============================================================================


class DownloadSink(Protocol):
    """Receives the finished artifact."""

    def save(self, data: bytes, filename: str, mime_type: str) -> Path: ...


class DirectoryDownloadSink:
    """Writes artifacts into a downloads directory, replacing same-named files."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory or get_settings().download_dir)

    def save(self, data: bytes, filename: str, mime_type: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / filename
        fd, tmp_path = tempfile.mkstemp(prefix=".export_", dir=self.directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, target)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.info(f"[EXPORT] Saved {filename} ({mime_type}, {len(data)} bytes) to {target}")
        return target


# ============================================================================
# Pipeline
# ============================================================================


ClockFactory = Callable[[str, Optional[float]], AudioClock]
EncoderFactory = Callable[[str, tuple[int, int], int, CodecProfile], EncoderSink]


class ExportPipeline:
    """Renders and encodes a slideshow to a downloadable file.

    Collaborators are injectable so the state machine can be driven without
    ffmpeg or wall-clock waits.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock_factory: Optional[ClockFactory] = None,
        encoder_factory: Optional[EncoderFactory] = None,
        encoder_probe: Optional[Callable[[], set[str]]] = None,
        download_sink: Optional[DownloadSink] = None,
        tick: Optional[Callable[[], Awaitable[None]]] = None,
        style: Optional[CompositorStyle] = None,
    ):
        self.settings = settings or get_settings()
        self.size = self.settings.export_size
        self.fps = self.settings.export_fps
        self.style = style or CompositorStyle.from_settings(self.settings)

        self._clock_factory = clock_factory or (
            lambda path, duration: OfflineAudioClock(path, duration)
        )
        self._encoder_factory = encoder_factory or (
            lambda path, size, fps, profile: FFmpegEncoderSink(path, size, fps, profile, self.settings)
        )
        self._encoder_probe = encoder_probe or (lambda: probe_encoders(self.settings.ffmpeg_path))
        self._download_sink = download_sink or DirectoryDownloadSink(self.settings.download_dir)
        self._tick = tick or (lambda: asyncio.sleep(1 / self.fps))

        self._generation = 0
        self._active = False
        self.session: Optional[ExportSession] = None
        self._progress_callback: Optional[Callable[[int, str], None]] = None

    @property
    def busy(self) -> bool:
        return self._active

    def set_progress_callback(self, callback: Callable[[int, str], None]) -> None:
        """Set callback for progress updates: (percent, stage)."""
        self._progress_callback = callback

    def _update_progress(self, progress: int, stage: str) -> None:
        if self._progress_callback:
            self._progress_callback(progress, stage)

    def cancel(self) -> None:
        """Invalidate the running export; it stops at its next suspension point."""
        self._generation += 1
        logger.info(f"[EXPORT] Cancel requested (generation now {self._generation})")

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise ExportCancelledError()

    async def export(
        self,
        audio_path: str,
        assets: Optional[LoadedAssets],
        words: Sequence[CaptionWord] = (),
        *,
        duration: Optional[float] = None,
        fit_mode: Optional[FitMode] = None,
    ) -> ExportSession:
        """Export with an already-loaded asset batch.

        Raises:
            RecordingStateError: If an export is already running
            AssetLoadError: If ``assets`` is missing
            EncoderError: If encoding fails
            ExportCancelledError: If cancelled mid-run
        """

        async def provide() -> LoadedAssets:
            if assets is None:
                raise AssetLoadError("Assets are not loaded")
            return assets

        return await self._run(audio_path, provide, words, duration, fit_mode)

    async def export_from_locators(
        self,
        audio_path: str,
        image_locators: Sequence[str],
        watermark_locator: Optional[str] = None,
        words: Sequence[CaptionWord] = (),
        *,
        duration: Optional[float] = None,
        fit_mode: Optional[FitMode] = None,
    ) -> ExportSession:
        """Export, loading the image and watermark assets as part of Preparing."""
        loader = AssetLoader(self.settings)

        async def provide() -> LoadedAssets:
            loaded = await loader.load(image_locators, watermark_locator)
            if loaded is None:
                raise ExportCancelledError("Asset load was superseded")
            return loaded

        return await self._run(audio_path, provide, words, duration, fit_mode)

    async def _run(
        self,
        audio_path: str,
        provide_assets: Callable[[], Awaitable[LoadedAssets]],
        words: Sequence[CaptionWord],
        duration: Optional[float],
        fit_mode: Optional[FitMode],
    ) -> ExportSession:
        # Checked before the first await, so two callers cannot both pass
        if self._active:
            raise RecordingStateError()
        self._active = True
        self._generation += 1
        generation = self._generation

        session = ExportSession(
            id=uuid4().hex,
            generation=generation,
            started_at=datetime.now(timezone.utc),
        )
        self.session = session
        clock: Optional[AudioClock] = None
        sink: Optional[EncoderSink] = None

        try:
            # Step 1: Preparing
            session.phase = ExportPhase.PREPARING
            self._update_progress(5, "Preparing export")

            assets = await provide_assets()
            self._check_generation(generation)

            style = self.style
            if fit_mode is not None and fit_mode != style.fit_mode:
                style = replace(style, fit_mode=fit_mode)
            compositor = FrameCompositor(self.size, style)
            surface = compositor.new_surface()

            clock = self._clock_factory(audio_path, duration)
            await clock.wait_playable()
            self._check_generation(generation)

            timeline = TimelineConfig(total_duration=clock.duration, image_count=assets.image_count)
            captions = CaptionTrack(words)

            available = await asyncio.to_thread(self._encoder_probe)
            profile = select_codec_profile(available)
            session.profile = profile
            sink = self._encoder_factory(audio_path, self.size, self.fps, profile)
            self._check_generation(generation)

            logger.info(
                f"[EXPORT] Prepared: {self.size[0]}x{self.size[1]}@{self.fps}fps, "
                f"{assets.image_count} images, {len(captions)} caption words, "
                f"duration={timeline.total_duration:.2f}s, codec={profile.name}"
            )

            # Step 2: Recording
            session.phase = ExportPhase.RECORDING
            self._update_progress(10, "Recording")
            await sink.start()
            clock.play()
            await self._record(session, generation, clock, sink, compositor, surface, assets, timeline, captions)

            # Step 3: Finalizing
            session.phase = ExportPhase.FINALIZING
            self._update_progress(90, "Finalizing")
            session.encoded_chunks = await sink.stop()
            artifact = b"".join(session.encoded_chunks)
            if not artifact:
                raise EncoderError("Encoder produced no output")
            self._check_generation(generation)

            session.filename = f"{self.settings.export_filename_stem}.{profile.extension}"
            session.output_path = await asyncio.to_thread(
                self._download_sink.save, artifact, session.filename, profile.mime_type
            )
            session.output_size = len(artifact)
            session.phase = ExportPhase.COMPLETE
            session.completed_at = datetime.now(timezone.utc)
            self._update_progress(100, "Complete")
            logger.info(
                f"[EXPORT] Complete: {session.filename}, {session.frames_written} frames, "
                f"{session.output_size} bytes"
            )
            return session

        except SlidecastError as e:
            self._fail(session, e.message)
            raise
        except asyncio.CancelledError:
            self._fail(session, "Export task was cancelled")
            raise
        except Exception as e:
            logger.exception("[EXPORT] Unexpected failure")
            self._fail(session, f"Export failed: {e}")
            raise SlidecastError(f"Export failed: {e}") from e
        finally:
            await self._release(clock, sink)
            self._active = False

    async def _record(
        self,
        session: ExportSession,
        generation: int,
        clock: AudioClock,
        sink: EncoderSink,
        compositor: FrameCompositor,
        surface: Image.Image,
        assets: LoadedAssets,
        timeline: TimelineConfig,
        captions: CaptionTrack,
    ) -> None:
        """Capture loop: one composite per tick until the clock stops.

        The video track has a constant frame rate, so each tick writes as many
        copies of its frame as needed to reach ``floor(t * fps) + 1`` frames.
        """
        total_frames = max(1, math.ceil(timeline.total_duration * self.fps))
        frame: Optional[bytes] = None
        last_percent = -1

        while True:
            self._check_generation(generation)
            if clock.paused or clock.ended:
                break

            # Capture times never go backwards
            t = max(clock.current_time, session.last_capture_time)
            state = compute_render_state(t, timeline, captions)
            frame = await asyncio.to_thread(self._capture, compositor, surface, assets, state)
            session.last_capture_time = t

            target = min(math.floor(t * self.fps) + 1, total_frames)
            while session.frames_written < target:
                await sink.write_frame(frame)
                session.frames_written += 1

            if timeline.total_duration > 0:
                percent = 10 + int(80 * min(1.0, t / timeline.total_duration))
                if percent != last_percent:
                    self._update_progress(percent, "Recording")
                    last_percent = percent

            await self._tick()

        self._check_generation(generation)

        # Hold the last frame until the video covers the whole audio track
        if session.frames_written < total_frames:
            if frame is None:
                state = compute_render_state(session.last_capture_time, timeline, captions)
                frame = await asyncio.to_thread(self._capture, compositor, surface, assets, state)
            while session.frames_written < total_frames:
                await sink.write_frame(frame)
                session.frames_written += 1

    def _capture(
        self,
        compositor: FrameCompositor,
        surface: Image.Image,
        assets: LoadedAssets,
        state: RenderState,
    ) -> bytes:
        compositor.compose(
            surface,
            assets.image_at(state.image_index),
            assets.watermark,
            state.active_word,
        )
        return surface.tobytes()

    def _fail(self, session: ExportSession, message: str) -> None:
        session.phase = ExportPhase.FAILED
        session.error_message = message
        session.encoded_chunks = []
        session.completed_at = datetime.now(timezone.utc)
        self._update_progress(100, "Failed")
        logger.error(f"[EXPORT] Failed: {message}")

    async def _release(self, clock: Optional[AudioClock], sink: Optional[EncoderSink]) -> None:
        """Release the offline clock and encoder, whatever happened."""
        if sink is not None and not sink.released:
            try:
                await sink.abort()
            except Exception:
                logger.exception("[EXPORT] Failed to abort encoder")
        if clock is not None and not clock.closed:
            clock.close()
