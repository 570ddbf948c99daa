"""Interactive slideshow playback.

State machine:
    STOPPED -> PLAYING <-> PAUSED
    PLAYING -> ENDED (audio finished) -> PLAYING (play or seek)

While PLAYING a single polling task reads the preview clock once per redraw,
recomputes the render state and pushes a PreviewSnapshot to the listener.
The task exits as soon as the state leaves PLAYING.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from PIL import Image

from slidecast.config import Settings, get_settings
from slidecast.render.assets import AssetLoader, LoadedAssets, load_audio_info
from slidecast.render.clock import AudioClock, MonotonicAudioClock, PlayerAudioClock
from slidecast.render.compositor import CompositorStyle, FrameCompositor
from slidecast.render.timeline import CaptionTrack, RenderState, TimelineConfig, compute_render_state
from slidecast.schemas.captions import CaptionWord

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    """Preview playback state."""

    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass(frozen=True)
class PreviewSnapshot:
    """What the preview shows at one moment."""

    state: PlaybackState
    time: float
    progress: float  # 0-100
    word: str  # empty when no caption is active
    image_index: int
    frame: Optional[Image.Image] = None  # None while assets are not ready


class PlaybackController:
    """Drives the interactive preview from an audio clock."""

    def __init__(
        self,
        clock: AudioClock,
        assets: Optional[LoadedAssets],
        words: Sequence[CaptionWord] = (),
        *,
        listener: Optional[Callable[[PreviewSnapshot], None]] = None,
        settings: Optional[Settings] = None,
        style: Optional[CompositorStyle] = None,
        tick: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.listener = listener
        self.compositor = FrameCompositor(
            self.settings.preview_size,
            style or CompositorStyle.from_settings(self.settings),
        )
        self._surface = self.compositor.new_surface()
        self._tick = tick or (lambda: asyncio.sleep(1 / self.settings.preview_fps))
        self._state = PlaybackState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._assets: Optional[LoadedAssets] = None
        self._captions = CaptionTrack(words)
        self._timeline = TimelineConfig(clock.duration, 0)
        self.snapshot: Optional[PreviewSnapshot] = None
        self.set_assets(assets)

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._assets is not None

    @property
    def timeline(self) -> TimelineConfig:
        return self._timeline

    def set_assets(self, assets: Optional[LoadedAssets]) -> None:
        """Swap the asset batch. None suppresses frame rendering."""
        self._assets = assets
        self._timeline = TimelineConfig(
            total_duration=self.clock.duration,
            image_count=assets.image_count if assets else 0,
        )
        self._refresh(self.clock.current_time)

    def set_captions(self, words: Sequence[CaptionWord]) -> None:
        self._captions = CaptionTrack(words)
        self._refresh(self.clock.current_time)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def play(self) -> None:
        """Start or resume playback; restarts from zero when at the end."""
        if self._state == PlaybackState.PLAYING:
            return
        if self.clock.ended or self.clock.current_time >= self._timeline.total_duration:
            self.clock.seek(0.0)
        self.clock.play()
        self._state = PlaybackState.PLAYING
        logger.debug(f"[PREVIEW] Playing from {self.clock.current_time:.2f}s")
        self._start_loop()

    def pause(self) -> None:
        """Stop advancing; the position is kept."""
        if self._state != PlaybackState.PLAYING:
            return
        self.clock.pause()
        self._state = PlaybackState.PAUSED
        self._stop_loop()
        self._refresh(self.clock.current_time)

    def toggle(self) -> None:
        if self._state == PlaybackState.PLAYING:
            self.pause()
        else:
            self.play()

    def seek(self, fraction: float) -> None:
        """Jump to ``fraction`` (0-1) of the total duration and redraw now."""
        fraction = min(max(fraction, 0.0), 1.0)
        t = fraction * self._timeline.total_duration
        self.clock.seek(t)
        if self._state == PlaybackState.ENDED and t < self._timeline.total_duration:
            self.clock.play()
            self._state = PlaybackState.PLAYING
            self._start_loop()
        self._refresh(t)

    def handle_ended(self) -> None:
        """Audio reached its natural end."""
        self._state = PlaybackState.ENDED
        self._stop_loop()
        self._refresh(self._timeline.total_duration, ended=True)
        logger.debug("[PREVIEW] Ended")

    def close(self) -> None:
        """Stop playback and release the clock."""
        self._stop_loop()
        self._state = PlaybackState.STOPPED
        self.clock.close()

    async def wait(self) -> None:
        """Wait for the polling task (if any) to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    def _start_loop(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run_loop())

    def _stop_loop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run_loop(self) -> None:
        while self._state == PlaybackState.PLAYING:
            if self.clock.ended:
                self.handle_ended()
                break
            self._refresh(self.clock.current_time)
            await self._tick()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _refresh(self, t: float, ended: bool = False) -> PreviewSnapshot:
        state = compute_render_state(t, self._timeline, self._captions)
        if ended:
            state = RenderState(time=t, image_index=state.image_index, active_word=None)

        frame = None
        if self._assets is not None:
            self.compositor.compose(
                self._surface,
                self._assets.image_at(state.image_index),
                self._assets.watermark,
                state.active_word,
            )
            frame = self._surface.copy()

        duration = self._timeline.total_duration
        if ended:
            progress = 100.0
        elif duration > 0:
            progress = min(100.0, max(0.0, t / duration * 100))
        else:
            progress = 0.0

        snapshot = PreviewSnapshot(
            state=self._state,
            time=t,
            progress=progress,
            word=state.caption_text,
            image_index=state.image_index,
            frame=frame,
        )
        self.snapshot = snapshot
        if self.listener:
            self.listener(snapshot)
        return snapshot


async def open_preview(
    audio_path: str,
    image_locators: Sequence[str],
    watermark_locator: Optional[str] = None,
    words: Sequence[CaptionWord] = (),
    *,
    listener: Optional[Callable[[PreviewSnapshot], None]] = None,
    settings: Optional[Settings] = None,
) -> PlaybackController:
    """Probe the audio, load the assets and return a stopped controller.

    The clock is audible through ffplay when ``settings.preview_audible`` is set.

    Raises:
        AssetLoadError: If the audio or any image fails to load
    """
    settings = settings or get_settings()
    info = await load_audio_info(audio_path)
    if settings.preview_audible:
        clock: AudioClock = PlayerAudioClock(audio_path, info.duration, ffplay_path=settings.ffplay_path)
    else:
        clock = MonotonicAudioClock(info.duration)
    await clock.wait_playable()

    controller = PlaybackController(clock, None, words, listener=listener, settings=settings)
    try:
        assets = await AssetLoader(settings).load(image_locators, watermark_locator)
    except BaseException:
        controller.close()
        raise
    controller.set_assets(assets)
    logger.info(f"[PREVIEW] Ready: {info.duration:.2f}s, {controller.timeline.image_count} images")
    return controller
