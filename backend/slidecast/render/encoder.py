"""FFmpeg encoder sink for exports.

Video frames arrive as raw rgb24 on ffmpeg's stdin. The audio track is read
by ffmpeg straight from the audio asset as a second input, so it is captured
without ever being played out loud. The muxed, streamable container comes
back on stdout and is collected as an ordered list of chunks.
"""

import asyncio
import logging
from collections import deque
from typing import Optional, Protocol

from slidecast.config import Settings, get_settings
from slidecast.exceptions import EncoderError
from slidecast.render.codecs import CodecProfile

logger = logging.getLogger(__name__)


class EncoderSink(Protocol):
    """Consumes video frames and produces encoded chunks."""

    profile: CodecProfile

    @property
    def released(self) -> bool: ...

    async def start(self) -> None: ...

    async def write_frame(self, frame: bytes) -> None: ...

    async def stop(self) -> list[bytes]: ...

    async def abort(self) -> None: ...


class FFmpegEncoderSink:
    """Encoder sink backed by an ffmpeg subprocess."""

    def __init__(
        self,
        audio_path: str,
        size: tuple[int, int],
        fps: int,
        profile: CodecProfile,
        settings: Optional[Settings] = None,
    ):
        self.audio_path = audio_path
        self.width, self.height = size
        self.fps = fps
        self.profile = profile
        self.settings = settings or get_settings()
        self._frame_size = self.width * self.height * 3
        self._process: Optional[asyncio.subprocess.Process] = None
        self._chunks: list[bytes] = []
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._readers: list[asyncio.Task] = []
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def build_command(self) -> list[str]:
        """Build the ffmpeg command without executing it."""
        return [
            self.settings.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            # Input 0: raw frames from stdin
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.fps),
            "-i", "pipe:0",
            # Input 1: audio asset
            "-i", self.audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", self.profile.video_codec,
            *self.profile.video_args(self.settings),
            "-r", str(self.fps),
            "-c:a", self.profile.audio_codec,
            "-b:a", self.settings.export_audio_bitrate,
            *self.profile.muxer_args(),
            "pipe:1",
        ]

    async def start(self) -> None:
        """Launch ffmpeg. Must be called before the first frame."""
        if self._process is not None:
            raise EncoderError("Encoder already started")
        cmd = self.build_command()
        logger.info(f"[ENCODER] Starting: {' '.join(cmd)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._released = True
            raise EncoderError(f"Failed to start ffmpeg ({self.settings.ffmpeg_path}): {e}") from e

        self._readers = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._read_stderr()),
        ]

    async def write_frame(self, frame: bytes) -> None:
        """Write one rgb24 frame.

        Raises:
            EncoderError: If the frame size is wrong or ffmpeg has failed
        """
        process = self._require_process()
        if len(frame) != self._frame_size:
            raise EncoderError(
                f"Frame is {len(frame)} bytes, expected {self._frame_size} "
                f"for {self.width}x{self.height} rgb24"
            )
        if process.returncode is not None:
            raise EncoderError(f"ffmpeg exited early ({process.returncode}): {self._stderr_text()}")
        try:
            process.stdin.write(frame)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EncoderError(f"ffmpeg stopped accepting frames: {self._stderr_text() or e}") from e

    async def stop(self) -> list[bytes]:
        """Close the frame pipe, wait for ffmpeg and return the encoded chunks.

        Raises:
            EncoderError: If ffmpeg exits with an error
        """
        process = self._require_process()
        try:
            if not process.stdin.is_closing():
                process.stdin.close()
            returncode = await process.wait()
            await asyncio.gather(*self._readers)
        finally:
            self._released = True

        if returncode != 0:
            raise EncoderError(f"ffmpeg failed ({returncode}): {self._stderr_text()}")
        total = sum(len(c) for c in self._chunks)
        logger.info(f"[ENCODER] Finished: {len(self._chunks)} chunks, {total} bytes")
        return list(self._chunks)

    async def abort(self) -> None:
        """Kill ffmpeg and drop any output. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._chunks.clear()
        logger.info("[ENCODER] Aborted")

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise EncoderError("Encoder has not been started")
        if self._released:
            raise EncoderError("Encoder has been released")
        return self._process

    def _stderr_text(self) -> str:
        return "\n".join(self._stderr_tail)

    async def _read_stdout(self) -> None:
        chunk_size = self.settings.export_chunk_size
        while True:
            chunk = await self._process.stdout.read(chunk_size)
            if not chunk:
                break
            self._chunks.append(chunk)

    async def _read_stderr(self) -> None:
        async for line in self._process.stderr:
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.warning(f"[ENCODER] ffmpeg: {text}")
