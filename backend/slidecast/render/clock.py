"""Audio playback clocks.

A clock is the authoritative time source for one renderer: the interactive
preview reads one, the export loop reads another. Both behave like a media
element: a position in seconds that advances while playing and stops at the
end of the audio, where ``ended`` (and ``paused``) become true.
"""

import asyncio
import logging
import shutil
import subprocess
import time
from typing import Callable, Optional, Protocol

from slidecast.config import get_settings
from slidecast.render.assets import load_audio_info

logger = logging.getLogger(__name__)


class AudioClock(Protocol):
    """Time source driven by audio playback."""

    duration: float

    @property
    def current_time(self) -> float: ...

    @property
    def paused(self) -> bool: ...

    @property
    def ended(self) -> bool: ...

    @property
    def closed(self) -> bool: ...

    async def wait_playable(self) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, t: float) -> None: ...

    def close(self) -> None: ...


class MonotonicAudioClock:
    """Clock that advances with ``time.monotonic`` while playing. Silent."""

    def __init__(self, duration: float, time_fn: Callable[[], float] = time.monotonic):
        self.duration = max(0.0, duration)
        self._time_fn = time_fn
        self._position = 0.0
        self._started_at: Optional[float] = None
        self._ended = False
        self._closed = False

    @property
    def current_time(self) -> float:
        if self._started_at is not None:
            position = self._position + (self._time_fn() - self._started_at)
            if position >= self.duration:
                self._position = self.duration
                self._started_at = None
                self._ended = True
                self._on_stop()
                return self.duration
            return position
        return self._position

    @property
    def paused(self) -> bool:
        # Reading current_time first latches a natural end
        self.current_time
        return self._started_at is None

    @property
    def ended(self) -> bool:
        self.current_time
        return self._ended

    @property
    def closed(self) -> bool:
        return self._closed

    async def wait_playable(self) -> None:
        await asyncio.sleep(0)

    def play(self) -> None:
        if self._closed:
            raise RuntimeError("Cannot play a closed clock")
        if self._started_at is not None:
            return
        if self._position >= self.duration:
            self._position = 0.0
        self._ended = False
        self._started_at = self._time_fn()
        self._on_start()

    def pause(self) -> None:
        if self._started_at is None:
            return
        self._position = self.current_time
        self._started_at = None
        self._on_stop()

    def seek(self, t: float) -> None:
        self._position = min(max(0.0, t), self.duration)
        self._ended = False
        if self._started_at is not None:
            self._started_at = self._time_fn()
            self._on_start()

    def close(self) -> None:
        if self._closed:
            return
        self.pause()
        self._closed = True

    # Hooks for clocks with real audio output
    def _on_start(self) -> None:
        pass

    def _on_stop(self) -> None:
        pass


class OfflineAudioClock(MonotonicAudioClock):
    """Export time source bound to an audio file.

    Never produces audible output: the export captures audio from the file
    directly, so playing it here would only double it up.
    """

    def __init__(
        self,
        audio_path: str,
        duration: Optional[float] = None,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        super().__init__(duration or 0.0, time_fn)
        self.audio_path = audio_path

    async def wait_playable(self) -> None:
        """Wait until the audio file is probed and its duration known."""
        info = await load_audio_info(self.audio_path)
        if self.duration <= 0:
            self.duration = info.duration
        logger.info(f"[CLOCK] Offline audio ready: {self.audio_path} ({self.duration:.2f}s)")


class PlayerAudioClock(MonotonicAudioClock):
    """Preview clock with audible output through ffplay.

    ffplay is restarted at the current position on every play/seek, so the
    sound follows the clock rather than the other way round.
    """

    def __init__(
        self,
        audio_path: str,
        duration: float,
        time_fn: Callable[[], float] = time.monotonic,
        ffplay_path: Optional[str] = None,
    ):
        super().__init__(duration, time_fn)
        self.audio_path = audio_path
        self._ffplay_path = ffplay_path or get_settings().ffplay_path
        self._process: Optional[subprocess.Popen] = None

    async def wait_playable(self) -> None:
        if shutil.which(self._ffplay_path) is None:
            logger.warning(f"[CLOCK] {self._ffplay_path} not found, preview will be silent")
            self._ffplay_path = ""
        await asyncio.sleep(0)

    def _on_start(self) -> None:
        self._kill_player()
        if not self._ffplay_path:
            return
        cmd = [
            self._ffplay_path,
            "-nodisp",
            "-autoexit",
            "-loglevel", "quiet",
            "-ss", f"{self._position:.3f}",
            self.audio_path,
        ]
        try:
            self._process = subprocess.Popen(
                cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as e:
            logger.warning(f"[CLOCK] Failed to start ffplay: {e}")
            self._process = None

    def _on_stop(self) -> None:
        self._kill_player()

    def _kill_player(self) -> None:
        if self._process is None:
            return
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._process = None
