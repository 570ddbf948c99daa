"""Tests for the export render-and-encode pipeline.

Driven entirely by fakes: a manual-time clock, an in-memory encoder sink
and an in-memory download sink, so no ffmpeg and no wall-clock waits.
"""

import asyncio
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from slidecast.exceptions import (
    AssetLoadError,
    EncoderError,
    ExportCancelledError,
    RecordingStateError,
)
from slidecast.render.compositor import FitMode
from slidecast.render.export import DirectoryDownloadSink, ExportPhase, ExportPipeline
from slidecast.schemas.captions import CaptionWord

H264_AAC = {"libx264", "aac", "libopus"}


@pytest.fixture
def pipeline(settings, clock_factory, encoder_factory, download_sink, advancing_tick) -> ExportPipeline:
    return ExportPipeline(
        settings,
        clock_factory=clock_factory,
        encoder_factory=encoder_factory,
        encoder_probe=lambda: H264_AAC,
        download_sink=download_sink,
        tick=advancing_tick,
    )


class TestExportSuccess:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_complete_export(self, pipeline, loaded_assets, clock_factory, encoder_factory, download_sink):
        words = [CaptionWord(word="hi", start=0.25, end=0.5)]
        session = await pipeline.export("song.mp3", loaded_assets, words, duration=1.0)

        assert session.phase == ExportPhase.COMPLETE
        assert session.filename == "video-slideshow.mp4"
        assert session.profile.name == "h264-aac"

        # 1s at 8 fps: a constant-rate track of 8 frames
        sink = encoder_factory.created[0]
        assert session.frames_written == 8
        assert len(sink.frames) == 8
        assert all(len(frame) == 108 * 192 * 3 for frame in sink.frames)
        assert sink.stopped is True

        # Chunks are joined in order into one artifact
        assert download_sink.saved == [("video-slideshow.mp4", b"chunk-0:8 frames", "video/mp4")]
        assert session.output_size == len(b"chunk-0:8 frames")

        assert clock_factory.created[0].closed is True
        assert pipeline.busy is False

    @pytest.mark.asyncio
    async def test_capture_times_never_decrease(self, pipeline, loaded_assets):
        with patch.object(pipeline, "_capture", wraps=pipeline._capture) as capture:
            await pipeline.export("song.mp3", loaded_assets, duration=1.0)

        times = [call.args[3].time for call in capture.call_args_list]
        assert times
        assert times == sorted(times)
        assert times[0] == 0.0

    @pytest.mark.asyncio
    async def test_frames_composited_off_event_loop(self, pipeline, loaded_assets):
        loop_thread = threading.get_ident()
        capture_threads = set()
        original = pipeline._capture

        def capture(*args):
            capture_threads.add(threading.get_ident())
            return original(*args)

        with patch.object(pipeline, "_capture", side_effect=capture):
            session = await pipeline.export("song.mp3", loaded_assets, duration=0.5)

        assert session.phase == ExportPhase.COMPLETE
        assert capture_threads
        assert loop_thread not in capture_threads

    @pytest.mark.asyncio
    async def test_frames_follow_timeline(self, pipeline, loaded_assets, encoder_factory):
        """First frame shows the first slide, last frame the last slide."""
        await pipeline.export("song.mp3", loaded_assets, duration=1.5)
        frames = encoder_factory.created[0].frames
        assert len(frames) == 12
        # Center pixel of a cover-fit solid slide carries the slide color
        center = (192 // 2 * 108 + 108 // 2) * 3
        assert frames[0][center:center + 3] == bytes((255, 0, 0))
        assert frames[-1][center:center + 3] == bytes((0, 0, 255))

    @pytest.mark.asyncio
    async def test_fit_mode_override(self, pipeline, loaded_assets, encoder_factory):
        await pipeline.export("song.mp3", loaded_assets, duration=0.5, fit_mode=FitMode.CONTAIN)
        frame = encoder_factory.created[0].frames[0]
        # Top row is letterbox black under contain fit
        assert frame[54 * 3:54 * 3 + 3] == bytes((0, 0, 0))

    @pytest.mark.asyncio
    async def test_progress_reported(self, pipeline, loaded_assets):
        updates = []
        pipeline.set_progress_callback(lambda percent, stage: updates.append((percent, stage)))

        await pipeline.export("song.mp3", loaded_assets, duration=1.0)

        assert updates[0] == (5, "Preparing export")
        assert updates[-1] == (100, "Complete")
        percents = [p for p, _ in updates]
        assert percents == sorted(percents)

    @pytest.mark.asyncio
    async def test_webm_fallback(self, pipeline, loaded_assets, download_sink):
        pipeline._encoder_probe = lambda: {"libvpx-vp9", "libopus"}
        session = await pipeline.export("song.mp3", loaded_assets, duration=0.25)
        assert session.filename == "video-slideshow.webm"
        assert download_sink.saved[0][2] == "video/webm"


class TestExportFailures:
    """Tests for failure handling and unconditional release."""

    @pytest.mark.asyncio
    async def test_encoder_error_mid_recording(
        self, pipeline, loaded_assets, clock_factory, encoder_factory, download_sink
    ):
        encoder_factory.fail_after = 3

        with pytest.raises(EncoderError):
            await pipeline.export("song.mp3", loaded_assets, duration=1.0)

        session = pipeline.session
        assert session.phase == ExportPhase.FAILED
        assert session.error_message == "encoder error event"
        assert session.encoded_chunks == []
        assert clock_factory.created[0].closed is True
        assert encoder_factory.created[0].aborted is True
        assert download_sink.saved == []
        assert pipeline.busy is False

    @pytest.mark.asyncio
    async def test_missing_assets_never_record(self, pipeline, clock_factory, encoder_factory, download_sink):
        with pytest.raises(AssetLoadError):
            await pipeline.export("song.mp3", None, duration=1.0)

        assert pipeline.session.phase == ExportPhase.FAILED
        assert clock_factory.created == []
        assert encoder_factory.created == []
        assert download_sink.saved == []

    @pytest.mark.asyncio
    async def test_asset_load_failure_never_records(
        self, pipeline, image_files, temp_output_dir, clock_factory, encoder_factory, download_sink
    ):
        """A bad locator fails Preparing; no render is attempted."""
        with patch.object(pipeline, "_capture") as capture:
            with pytest.raises(AssetLoadError):
                await pipeline.export_from_locators(
                    "song.mp3",
                    [str(image_files[0]), str(temp_output_dir / "nope.png")],
                    duration=1.0,
                )

        capture.assert_not_called()
        assert pipeline.session.phase == ExportPhase.FAILED
        assert encoder_factory.created == []
        assert download_sink.saved == []

    @pytest.mark.asyncio
    async def test_export_from_locators_success(self, pipeline, image_files, download_sink):
        session = await pipeline.export_from_locators(
            "song.mp3", [str(p) for p in image_files], duration=0.5
        )
        assert session.phase == ExportPhase.COMPLETE
        assert len(download_sink.saved) == 1

    @pytest.mark.asyncio
    async def test_no_supported_codec(self, pipeline, loaded_assets, clock_factory, encoder_factory):
        pipeline._encoder_probe = lambda: {"aac"}

        with pytest.raises(EncoderError):
            await pipeline.export("song.mp3", loaded_assets, duration=1.0)

        assert encoder_factory.created == []
        assert clock_factory.created[0].closed is True

    @pytest.mark.asyncio
    async def test_empty_encoder_output_fails(self, pipeline, loaded_assets, encoder_factory, download_sink):
        async def empty_stop():
            return []

        original = encoder_factory

        def factory(*args):
            sink = original(*args)
            sink.stop = empty_stop
            return sink

        pipeline._encoder_factory = factory
        with pytest.raises(EncoderError, match="no output"):
            await pipeline.export("song.mp3", loaded_assets, duration=0.25)

        assert download_sink.saved == []
        assert pipeline.session.phase == ExportPhase.FAILED


class TestExportConcurrency:
    """Tests for single-flight and cancellation."""

    @pytest.mark.asyncio
    async def test_second_export_rejected(self, pipeline, loaded_assets, encoder_factory):
        first = asyncio.create_task(pipeline.export("song.mp3", loaded_assets, duration=0.5))
        await asyncio.sleep(0)
        assert pipeline.busy is True
        first_session = pipeline.session

        with pytest.raises(RecordingStateError):
            await pipeline.export("song.mp3", loaded_assets, duration=0.5)

        # The rejected call left the running export untouched
        assert pipeline.session is first_session
        session = await first
        assert session.phase == ExportPhase.COMPLETE
        assert len(encoder_factory.created) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_recording(
        self, settings, clock_factory, encoder_factory, download_sink, manual_time, loaded_assets
    ):
        ticks = 0

        async def tick():
            nonlocal ticks
            ticks += 1
            manual_time.advance(0.125)
            if ticks == 2:
                pipeline.cancel()

        pipeline = ExportPipeline(
            settings,
            clock_factory=clock_factory,
            encoder_factory=encoder_factory,
            encoder_probe=lambda: H264_AAC,
            download_sink=download_sink,
            tick=tick,
        )

        with pytest.raises(ExportCancelledError):
            await pipeline.export("song.mp3", loaded_assets, duration=2.0)

        assert pipeline.session.phase == ExportPhase.FAILED
        assert clock_factory.created[0].closed is True
        assert encoder_factory.created[0].aborted is True
        assert download_sink.saved == []
        assert pipeline.busy is False

    @pytest.mark.asyncio
    async def test_pipeline_reusable_after_failure(self, pipeline, loaded_assets, encoder_factory):
        encoder_factory.fail_after = 0
        with pytest.raises(EncoderError):
            await pipeline.export("song.mp3", loaded_assets, duration=0.5)

        encoder_factory.fail_after = None
        session = await pipeline.export("song.mp3", loaded_assets, duration=0.5)
        assert session.phase == ExportPhase.COMPLETE


class TestDirectoryDownloadSink:
    def test_writes_and_replaces(self, temp_output_dir):
        sink = DirectoryDownloadSink(str(temp_output_dir / "out"))

        first = sink.save(b"one", "video-slideshow.mp4", "video/mp4")
        second = sink.save(b"two", "video-slideshow.mp4", "video/mp4")

        assert first == second == temp_output_dir / "out" / "video-slideshow.mp4"
        assert Path(second).read_bytes() == b"two"
        assert sorted(p.name for p in (temp_output_dir / "out").iterdir()) == ["video-slideshow.mp4"]
