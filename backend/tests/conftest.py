"""
Pytest fixtures for slidecast backend tests.

Everything here runs without ffmpeg, ffplay or network access:
- images are generated with Pillow into a temporary directory
- time is driven manually (ManualTime) instead of the wall clock
- the encoder and download sink are in-memory fakes

Tests that need a real ffmpeg build are marked with @pytest.mark.requires_ffmpeg
and skipped when it is not on PATH.
"""

import tempfile
from pathlib import Path

import pytest
from PIL import Image

from slidecast.config import Settings
from slidecast.exceptions import EncoderError
from slidecast.render.assets import LoadedAssets, render_builtin_watermark
from slidecast.render.clock import MonotonicAudioClock
from slidecast.render.codecs import CodecProfile


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe on PATH (skipped when missing)"
    )


# =============================================================================
# Fakes
# =============================================================================


class ManualTime:
    """Replacement for time.monotonic that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEncoderSink:
    """In-memory encoder sink recording every frame it receives."""

    def __init__(self, profile: CodecProfile, fail_after: int | None = None):
        self.profile = profile
        self.fail_after = fail_after
        self.frames: list[bytes] = []
        self.started = False
        self.stopped = False
        self.aborted = False
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def start(self) -> None:
        self.started = True

    async def write_frame(self, frame: bytes) -> None:
        if not self.started:
            raise EncoderError("Encoder has not been started")
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise EncoderError("encoder error event")
        self.frames.append(frame)

    async def stop(self) -> list[bytes]:
        self.stopped = True
        self._released = True
        return [b"chunk-0:", f"{len(self.frames)} frames".encode()]

    async def abort(self) -> None:
        self.aborted = True
        self._released = True


class FakeDownloadSink:
    """Download sink that keeps artifacts in memory."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.saved: list[tuple[str, bytes, str]] = []

    def save(self, data: bytes, filename: str, mime_type: str) -> Path:
        self.saved.append((filename, data, mime_type))
        return self.directory / filename


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="slidecast_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_output_dir) -> Settings:
    """Small surfaces and a low frame rate keep compositing fast."""
    return Settings(
        _env_file=None,
        export_width=108,
        export_height=192,
        export_fps=8,
        preview_width=54,
        preview_height=96,
        preview_fps=8,
        download_dir=str(temp_output_dir / "downloads"),
    )


@pytest.fixture
def manual_time() -> ManualTime:
    return ManualTime()


@pytest.fixture
def solid_images() -> list[Image.Image]:
    """Three distinguishable slides: red (landscape), green (portrait), blue (square)."""
    return [
        Image.new("RGB", (320, 180), (255, 0, 0)),
        Image.new("RGB", (180, 320), (0, 255, 0)),
        Image.new("RGB", (200, 200), (0, 0, 255)),
    ]


@pytest.fixture
def image_files(temp_output_dir, solid_images) -> list[Path]:
    """The solid images written to disk as PNG files."""
    paths = []
    for index, image in enumerate(solid_images):
        path = temp_output_dir / f"slide_{index}.png"
        image.save(path, format="PNG")
        paths.append(path)
    return paths


@pytest.fixture
def watermark_image() -> Image.Image:
    return render_builtin_watermark(height=50)


@pytest.fixture
def loaded_assets(solid_images, watermark_image) -> LoadedAssets:
    return LoadedAssets(images=tuple(solid_images), watermark=watermark_image, generation=1)


@pytest.fixture
def h264_profile() -> CodecProfile:
    return CodecProfile("h264-aac", "libx264", "aac", "mp4", "mp4", "video/mp4")


@pytest.fixture
def clock_factory(manual_time):
    """Clock factory producing silent manual-time clocks; created clocks are kept in .created."""

    def factory(audio_path: str, duration: float | None) -> MonotonicAudioClock:
        clock = MonotonicAudioClock(duration or 1.0, time_fn=manual_time)
        factory.created.append(clock)
        return clock

    factory.created = []
    return factory


@pytest.fixture
def encoder_factory():
    """Encoder factory producing FakeEncoderSinks; set .fail_after to inject an error."""

    def factory(audio_path, size, fps, profile) -> FakeEncoderSink:
        sink = FakeEncoderSink(profile, fail_after=factory.fail_after)
        factory.created.append(sink)
        return sink

    factory.created = []
    factory.fail_after = None
    return factory


@pytest.fixture
def download_sink(temp_output_dir) -> FakeDownloadSink:
    return FakeDownloadSink(temp_output_dir)


@pytest.fixture
def advancing_tick(manual_time):
    """Capture/redraw tick that moves manual time forward by 0.125s."""

    async def tick() -> None:
        manual_time.advance(0.125)

    return tick
