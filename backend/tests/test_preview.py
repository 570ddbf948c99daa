"""Tests for the interactive playback controller.

State machine:
    STOPPED -> PLAYING <-> PAUSED
    PLAYING -> ENDED -> PLAYING (play or seek)
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from slidecast.exceptions import AssetLoadError
from slidecast.render.clock import MonotonicAudioClock, PlayerAudioClock
from slidecast.render.preview import PlaybackController, PlaybackState, open_preview
from slidecast.schemas.captions import CaptionWord
from slidecast.utils.media_info import AudioInfo


@pytest.fixture
def clock(manual_time) -> MonotonicAudioClock:
    return MonotonicAudioClock(2.0, time_fn=manual_time)


@pytest.fixture
def yielding_tick(manual_time):
    """Redraw tick that advances time and yields to the event loop."""

    async def tick() -> None:
        manual_time.advance(0.125)
        await asyncio.sleep(0)

    return tick


@pytest.fixture
def words() -> list[CaptionWord]:
    return [
        CaptionWord(word="one", start=0.25, end=0.75),
        CaptionWord(word="last", start=1.5, end=5.0),
    ]


def make_controller(clock, assets, words, settings, tick):
    snapshots = []
    controller = PlaybackController(
        clock,
        assets,
        words,
        listener=snapshots.append,
        settings=settings,
        tick=tick,
    )
    return controller, snapshots


class TestPlayback:
    """Tests for play/pause/end transitions."""

    def test_initial_state(self, clock, loaded_assets, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)
        assert controller.state == PlaybackState.STOPPED
        assert controller.ready is True
        assert snapshots[-1].progress == 0.0
        assert snapshots[-1].frame.size == (54, 96)

    @pytest.mark.asyncio
    async def test_plays_to_end(self, clock, loaded_assets, words, settings, advancing_tick):
        """Natural end forces progress to 100 and clears the caption."""
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)

        controller.play()
        assert controller.state == PlaybackState.PLAYING
        await controller.wait()

        assert controller.state == PlaybackState.ENDED
        assert controller._task is None
        final = snapshots[-1]
        assert final.state == PlaybackState.ENDED
        assert final.progress == 100.0
        assert final.word == ""
        assert final.image_index == 2

        playing = [s for s in snapshots if s.state == PlaybackState.PLAYING]
        times = [s.time for s in playing]
        assert times == sorted(times)
        assert "one" in [s.word for s in playing]
        assert all(0.0 <= s.progress <= 100.0 for s in snapshots)

    @pytest.mark.asyncio
    async def test_pause_stops_loop_and_keeps_position(
        self, clock, loaded_assets, words, settings, yielding_tick, manual_time
    ):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, yielding_tick)

        controller.play()
        task = controller._task
        for _ in range(3):
            await asyncio.sleep(0)
        controller.pause()
        await asyncio.gather(task, return_exceptions=True)

        assert task.done()
        assert controller._task is None
        assert controller.state == PlaybackState.PAUSED
        position = clock.current_time
        assert 0.0 < position < 2.0

        manual_time.advance(10.0)
        assert clock.current_time == position
        count = len(snapshots)
        await asyncio.sleep(0)
        assert len(snapshots) == count

    @pytest.mark.asyncio
    async def test_toggle(self, clock, loaded_assets, words, settings, yielding_tick):
        controller, _ = make_controller(clock, loaded_assets, words, settings, yielding_tick)
        controller.toggle()
        assert controller.state == PlaybackState.PLAYING
        controller.toggle()
        assert controller.state == PlaybackState.PAUSED
        await controller.wait()

    @pytest.mark.asyncio
    async def test_play_after_end_restarts_from_zero(
        self, clock, loaded_assets, words, settings, advancing_tick
    ):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)
        controller.play()
        await controller.wait()
        assert controller.state == PlaybackState.ENDED

        controller.play()
        assert controller.state == PlaybackState.PLAYING
        assert clock.current_time == 0.0
        await controller.wait()
        assert controller.state == PlaybackState.ENDED

    @pytest.mark.asyncio
    async def test_close_releases_clock(self, clock, loaded_assets, words, settings, yielding_tick):
        controller, _ = make_controller(clock, loaded_assets, words, settings, yielding_tick)
        controller.play()
        task = controller._task
        controller.close()
        await asyncio.gather(task, return_exceptions=True)

        assert task.done()
        assert controller.state == PlaybackState.STOPPED
        assert clock.closed is True


class TestSeek:
    """Tests for seeking."""

    def test_seek_updates_immediately(self, clock, loaded_assets, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)

        controller.seek(0.8)

        snapshot = snapshots[-1]
        assert snapshot.time == pytest.approx(1.6)
        assert snapshot.progress == pytest.approx(80.0)
        assert snapshot.word == "last"
        assert snapshot.image_index == 2
        assert clock.current_time == pytest.approx(1.6)

    def test_seek_clamps_fraction(self, clock, loaded_assets, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)
        controller.seek(-1.0)
        assert snapshots[-1].time == 0.0
        controller.seek(3.0)
        assert snapshots[-1].time == 2.0

    @pytest.mark.asyncio
    async def test_seek_from_ended_resumes(self, clock, loaded_assets, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, loaded_assets, words, settings, advancing_tick)
        controller.play()
        await controller.wait()
        assert controller.state == PlaybackState.ENDED

        controller.seek(0.25)

        assert controller.state == PlaybackState.PLAYING
        assert snapshots[-1].time == pytest.approx(0.5)
        await controller.wait()
        assert controller.state == PlaybackState.ENDED


class TestAssetsAndCaptions:
    """Tests for asset readiness and caption swaps."""

    def test_not_ready_suppresses_frames(self, clock, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, None, words, settings, advancing_tick)
        controller.seek(0.5)
        assert controller.ready is False
        assert snapshots[-1].frame is None
        assert snapshots[-1].progress == pytest.approx(50.0)

    def test_set_assets_enables_frames(self, clock, loaded_assets, words, settings, advancing_tick):
        controller, snapshots = make_controller(clock, None, words, settings, advancing_tick)
        controller.set_assets(loaded_assets)
        assert controller.ready is True
        assert controller.timeline.image_count == 3
        assert snapshots[-1].frame is not None

    def test_set_captions_redraws(self, clock, loaded_assets, settings, advancing_tick):
        controller, snapshots = make_controller(clock, loaded_assets, [], settings, advancing_tick)
        controller.seek(0.25)
        assert snapshots[-1].word == ""

        controller.set_captions([CaptionWord(word="new", start=0.0, end=1.0)])

        assert snapshots[-1].word == "new"


class TestOpenPreview:
    """Tests for building a controller from audio and image locators."""

    @pytest.mark.asyncio
    async def test_opens_stopped_with_assets(self, image_files, words, settings):
        snapshots = []
        with patch(
            "slidecast.render.preview.load_audio_info",
            AsyncMock(return_value=AudioInfo(duration=3.0)),
        ):
            controller = await open_preview(
                "song.mp3",
                [str(p) for p in image_files],
                words=words,
                listener=snapshots.append,
                settings=settings,
            )

        assert isinstance(controller.clock, MonotonicAudioClock)
        assert controller.state == PlaybackState.STOPPED
        assert controller.ready is True
        assert controller.timeline.total_duration == pytest.approx(3.0)
        assert controller.timeline.image_count == 3
        assert snapshots[-1].frame.size == settings.preview_size
        controller.close()

    @pytest.mark.asyncio
    async def test_audible_uses_player_clock(self, image_files, settings):
        settings = settings.model_copy(update={"preview_audible": True, "ffplay_path": "no-such-ffplay"})
        with patch(
            "slidecast.render.preview.load_audio_info",
            AsyncMock(return_value=AudioInfo(duration=1.0)),
        ):
            controller = await open_preview("song.mp3", [str(image_files[0])], settings=settings)

        assert isinstance(controller.clock, PlayerAudioClock)
        controller.close()

    @pytest.mark.asyncio
    async def test_asset_failure_closes_clock(self, temp_output_dir, settings):
        with patch(
            "slidecast.render.preview.load_audio_info",
            AsyncMock(return_value=AudioInfo(duration=1.0)),
        ), patch("slidecast.render.preview.MonotonicAudioClock.close") as close:
            with pytest.raises(AssetLoadError):
                await open_preview("song.mp3", [str(temp_output_dir / "missing.png")], settings=settings)

        close.assert_called_once()
