#!/usr/bin/env python3
"""
Tests for the timeline scheduler, driven headlessly on a virtual clock.
"""

import pytest
import asyncio
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.slides import AssetKind, Slide
from core.transcript import Transcript
from core.asset_cache import AssetCache, AssetStatus
from core.animation import AnimationCompositor
from core.sensor_offset import SensorOffsetComposer
from core.playback import SchedulerPhase
from core.timeline_scheduler import TimelineScheduler
from core.headless import (
    FileAssetLoader, HeadlessScene, RecordingOverlay, SimulatedAudio, VirtualClock
)
from core.config_loader import get_animation_config, get_scheduler_config, get_sensor_config

FPS = 30


class FailingLoader(FileAssetLoader):
    """Loader that fails for selected URLs."""

    def __init__(self, failing):
        super().__init__(check_exists=False)
        self.failing = set(failing)

    async def _load(self, url, kind):
        if url in self.failing:
            raise IOError(f"corrupt file: {url}")
        return await super()._load(url, kind)


class FlakyScene(HeadlessScene):
    """Scene whose add fails on selected calls."""

    def __init__(self, failing_calls):
        super().__init__()
        self.failing_calls = set(failing_calls)
        self.add_calls = 0

    def add(self, obj):
        self.add_calls += 1
        if self.add_calls in self.failing_calls:
            raise RuntimeError("GPU upload failed")
        super().add(obj)


class BrokenOverlay(RecordingOverlay):
    """Overlay whose fade curtain always fails."""

    def set_faded(self, faded):
        raise RuntimeError("display lost")


class HangingLoader(FileAssetLoader):
    """Loader that never finishes selected URLs."""

    def __init__(self, hanging):
        super().__init__(check_exists=False)
        self.hanging = set(hanging)

    async def _load(self, url, kind):
        if url in self.hanging:
            await asyncio.Event().wait()
        return await super()._load(url, kind)


class Harness:
    """A scheduler wired to headless collaborators sharing one virtual clock."""

    def __init__(self, slides, loader=None, transcript=None, params=None, scene=None, overlay=None):
        self.clock = VirtualClock()
        self.scene = scene or HeadlessScene()
        self.loader = loader or FileAssetLoader(check_exists=False)
        self.cache = AssetCache(slides, self.loader)
        self.narration = SimulatedAudio("narration", self.clock)
        self.music = SimulatedAudio("music", self.clock)
        self.overlay = overlay or RecordingOverlay()
        if params is None:
            params = get_scheduler_config({})
            params['transition']['fade_settle'] = 0.5
        self.scheduler = TimelineScheduler(
            slides, self.scene, self.cache,
            narration=self.narration,
            music=self.music,
            overlay=self.overlay,
            transcript=transcript,
            animation=AnimationCompositor(get_animation_config({})),
            sensor=SensorOffsetComposer(get_sensor_config({})),
            params=params,
            sleep=self.clock.sleep,
            time_source=self.clock
        )
        self.active = []
        self.results = []

    async def start(self):
        """Start playback and let it run up to its first fade."""
        task = asyncio.ensure_future(self.scheduler.start())
        await asyncio.sleep(0)
        return task

    async def run_until(self, until):
        """Render frames until the virtual clock reaches `until` seconds."""
        while self.clock.now < until - 1e-9:
            self.clock.advance(1.0 / FPS)
            result = self.scheduler.tick()
            self.results.append(result)
            for _ in range(10):
                await asyncio.sleep(0)
            state = self.scheduler.state
            if state.phase is SchedulerPhase.ACTIVE:
                if not self.active or self.active[-1][0] != state.current_slide_index:
                    self.active.append((state.current_slide_index, self.clock.now))
            assert len(self.scene.objects) <= 1

    def activation_time(self, index):
        return next(t for i, t in self.active if i == index)


@pytest.fixture
def slides():
    return [
        Slide(text="The History of SOCAR", asset_ref="logo.glb", start_time=0.0,
              duration=4.0, label="Intro", animation="scale_up"),
        Slide(text="As Marco Polo wrote", asset_ref="polo.spz", asset_kind=AssetKind.POINT_CLOUD,
              start_time=4.0, duration=5.0, animation="zolly_in"),
        Slide(text="In 1847", asset_ref="well.png", asset_kind=AssetKind.IMAGE,
              start_time=9.0, duration=6.0, label="1847"),
        Slide(text="Today", asset_ref="today.glb", start_time=15.0, duration=5.0,
              label="Today"),
    ]


class TestPlayback:
    """Test natural playback from start to finish."""

    @pytest.mark.asyncio
    async def test_start_brings_up_first_slide(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(1.0)

        scheduler = h.scheduler
        assert scheduler.phase is SchedulerPhase.ACTIVE
        assert scheduler.state.current_slide_index == 0
        assert [o.url for o in h.scene.objects] == ["logo.glb"]
        assert not h.overlay.faded
        assert h.music.volume == 0.5
        assert h.narration.volume == 1.0
        assert h.narration.started_at == 0.0

    @pytest.mark.asyncio
    async def test_faded_while_first_slide_loads(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(0.2)

        assert h.scheduler.phase is SchedulerPhase.TRANSITIONING
        assert h.overlay.faded
        assert h.scene.objects == []

    @pytest.mark.asyncio
    async def test_transitions_follow_start_times(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(3.9)
        assert h.scheduler.state.current_slide_index == 0

        await h.run_until(16.5)

        assert [i for i, _ in h.active] == [0, 1, 2, 3]
        # Each swap happens one fade after the slide's start time
        for index, start in ((1, 4.0), (2, 9.0), (3, 15.0)):
            assert start + 0.5 <= h.activation_time(index) <= start + 0.8

    @pytest.mark.asyncio
    async def test_outgoing_asset_is_released(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        first = h.scheduler.current_asset

        await h.run_until(5.0)

        assert first.disposed
        assert first not in h.scene.objects
        assert h.cache.status(0) is None
        assert [o.url for o in h.scene.objects] == ["polo.spz"]

    @pytest.mark.asyncio
    async def test_finishes_after_last_slide(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(23.0)

        scheduler = h.scheduler
        assert scheduler.phase is SchedulerPhase.FINISHED
        assert not scheduler.state.is_playing
        assert scheduler.state.current_slide_index == len(slides)
        assert h.scene.objects == []
        assert scheduler.current_slide is None

    @pytest.mark.asyncio
    async def test_untimed_slide_uses_fallback_duration(self):
        h = Harness([Slide(text="Only", asset_ref="only.glb")])
        await h.start()

        await h.run_until(7.0)
        assert h.scheduler.phase is SchedulerPhase.ACTIVE

        await h.run_until(10.0)
        assert h.scheduler.phase is SchedulerPhase.FINISHED

    @pytest.mark.asyncio
    async def test_prefetches_next_two_slides(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(1.0)

        assert h.cache.status(1) is AssetStatus.READY
        assert h.cache.status(2) is AssetStatus.READY
        assert h.cache.status(3) is None
        assert h.loader.loaded == ["logo.glb", "polo.spz", "well.png"]

    @pytest.mark.asyncio
    async def test_failed_asset_shows_blank_slide(self, slides):
        h = Harness(slides, loader=FailingLoader({"polo.spz"}))
        await h.start()

        await h.run_until(5.0)

        assert h.scheduler.state.current_slide_index == 1
        assert h.scheduler.phase is SchedulerPhase.ACTIVE
        assert h.scheduler.current_asset is None
        assert h.scene.objects == []

        await h.run_until(10.0)
        assert h.scheduler.state.current_slide_index == 2

    @pytest.mark.asyncio
    async def test_transform_applied_on_entry(self):
        slide = Slide(text="x", asset_ref="x.glb", start_time=0.0, duration=10.0)
        slide.transform.position = (0.0, 1.6, 3.3)
        slide.transform.scale = (2.0, 2.0, 2.0)
        h = Harness([slide])
        await h.start()

        await h.run_until(0.7)

        asset = h.scene.objects[0]
        assert list(asset.scale) == [2.0, 2.0, 2.0]
        assert asset.position[1] == pytest.approx(1.6)

    @pytest.mark.asyncio
    async def test_camera_override_applied(self):
        slide = Slide.from_dict({"text": "x", "path": "x.glb", "startTime": 0.0, "duration": 10.0,
                                 "orbitScale": 0.0, "camera": {"position": [1, 2, 3], "fov": 40}})
        h = Harness([slide])
        await h.start()

        await h.run_until(0.7)

        camera = h.scene.camera
        assert list(camera.position) == pytest.approx([1.0, 2.0, 3.0], abs=0.05)
        assert camera.fov == 40.0


class TestTransitionLock:
    """Test that only one transition runs at a time."""

    @pytest.mark.asyncio
    async def test_reentrant_transition_is_refused(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(0.2)

        assert await h.scheduler.begin_transition() is False

        await h.run_until(1.0)
        assert [i for i, _ in h.active] == [0]

    @pytest.mark.asyncio
    async def test_next_slide_during_transition_is_ignored(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(0.2)

        assert h.scheduler.next_slide() is False

    @pytest.mark.asyncio
    async def test_skip_key_advances(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        h.scheduler.handle_key('>')
        await h.run_until(2.0)

        assert h.scheduler.state.current_slide_index == 1


class TestTransitionFailures:
    """Test that collaborator failures during a swap do not stall playback."""

    @pytest.mark.asyncio
    async def test_failed_scene_add_leaves_blank_slide(self, slides, caplog):
        h = Harness(slides, scene=FlakyScene({2}))
        await h.start()

        with caplog.at_level("ERROR"):
            await h.run_until(5.0)

        state = h.scheduler.state
        assert state.current_slide_index == 1
        assert h.scheduler.phase is SchedulerPhase.ACTIVE
        assert not state.is_transitioning
        assert h.scheduler.current_asset is None
        assert h.scene.objects == []
        assert not h.overlay.faded
        assert h.cache.status(1) is None
        assert "GPU upload failed" in caplog.text

        await h.run_until(23.0)

        assert [i for i, _ in h.active] == [0, 1, 2, 3]
        assert h.scheduler.phase is SchedulerPhase.FINISHED

    @pytest.mark.asyncio
    async def test_broken_fade_curtain_does_not_stop_slides(self, slides):
        h = Harness(slides, overlay=BrokenOverlay())
        await h.start()

        await h.run_until(5.0)

        assert h.scheduler.state.current_slide_index == 1
        assert h.scheduler.phase is SchedulerPhase.ACTIVE
        assert [o.url for o in h.scene.objects] == ["polo.spz"]


class TestSeek:
    """Test seeking through the transition path."""

    @pytest.mark.asyncio
    async def test_seek_rebases_timeline(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        assert h.scheduler.seek(2) is True
        await h.run_until(2.0)

        assert h.scheduler.state.current_slide_index == 2
        assert 9.0 <= h.results[-1].timeline_time <= 10.0

    @pytest.mark.asyncio
    async def test_play_continues_naturally_after_seek(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        h.scheduler.seek(2)

        await h.run_until(7.0)
        assert h.scheduler.state.current_slide_index == 2

        await h.run_until(9.0)
        assert h.scheduler.state.current_slide_index == 3

    @pytest.mark.asyncio
    async def test_seek_during_transition_is_queued(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(0.2)

        assert h.scheduler.seek(2) is True
        assert h.scheduler.seek(3) is True
        await h.run_until(2.0)

        # The later request wins and the skipped target never shows
        shown = [i for i, _ in h.active]
        assert shown[-1] == 3
        assert 2 not in shown
        assert h.scheduler.state.pending_seek is None

    @pytest.mark.asyncio
    async def test_seek_while_leaving_last_slide(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(20.8)
        assert h.scheduler.state.current_slide_index == 3
        assert h.scheduler.phase is SchedulerPhase.TRANSITIONING

        assert h.scheduler.seek(1) is True
        await h.run_until(22.0)

        state = h.scheduler.state
        assert h.scheduler.phase is SchedulerPhase.ACTIVE
        assert state.current_slide_index == 1
        assert state.is_playing
        assert state.pending_seek is None
        assert [o.url for o in h.scene.objects] == ["polo.spz"]

    @pytest.mark.asyncio
    async def test_seeked_slide_keeps_natural_screen_time(self, slides):
        natural = Harness(slides)
        await natural.start()
        await natural.run_until(16.5)
        natural_span = natural.activation_time(3) - natural.activation_time(2)

        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        h.scheduler.seek(2)
        await h.run_until(9.0)

        span = h.activation_time(3) - h.activation_time(2)
        assert span == pytest.approx(natural_span, abs=2.0 / FPS)

    @pytest.mark.asyncio
    async def test_seek_back_reloads_released_asset(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(5.0)

        h.scheduler.seek(0)
        await h.run_until(6.0)

        assert h.scheduler.state.current_slide_index == 0
        assert h.loader.loaded.count("logo.glb") == 2
        assert not h.scene.objects[0].disposed

    @pytest.mark.asyncio
    async def test_invalid_seeks_are_ignored(self, slides):
        h = Harness(slides)

        assert h.scheduler.seek(1) is False

        await h.start()
        await h.run_until(1.0)
        assert h.scheduler.seek(4) is False
        assert h.scheduler.seek(-1) is False

    @pytest.mark.asyncio
    async def test_seek_marker(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        marker = h.scheduler.timeline_markers()[1]
        h.scheduler.seek_marker(marker)
        await h.run_until(2.0)

        assert h.scheduler.state.current_slide_index == 2


class TestControls:
    """Test pause, mute, toggles and stop."""

    @pytest.mark.asyncio
    async def test_pause_freezes_slide_and_mutes(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(2.0)
        before = h.scheduler.debug_snapshot()['elapsed']

        assert h.scheduler.toggle_pause() is True
        assert h.music.volume == 0.0
        assert h.narration.volume == 0.0
        await h.run_until(12.0)

        assert h.scheduler.state.current_slide_index == 0
        assert h.scheduler.debug_snapshot()['elapsed'] == pytest.approx(before)

        assert h.scheduler.toggle_pause() is False
        assert h.music.volume == 0.3
        assert h.narration.volume == 1.0

    @pytest.mark.asyncio
    async def test_mute_round_trip(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        assert h.scheduler.toggle_mute() is True
        assert (h.music.volume, h.narration.volume) == (0.0, 0.0)

        assert h.scheduler.toggle_mute() is False
        assert (h.music.volume, h.narration.volume) == (0.3, 1.0)

    @pytest.mark.asyncio
    async def test_unmute_while_paused_stays_silent(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        h.scheduler.toggle_pause()
        h.scheduler.toggle_mute()

        h.scheduler.toggle_mute()

        assert (h.music.volume, h.narration.volume) == (0.0, 0.0)

    @pytest.mark.asyncio
    async def test_tracking_toggle_applies_next_frame(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        h.scheduler.set_tracking_enabled(False)
        assert h.scheduler.sensor.enabled
        await h.run_until(1.1)

        assert not h.scheduler.sensor.enabled

    @pytest.mark.asyncio
    async def test_animation_toggle(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        h.scheduler.toggle_animations()
        camera = h.scene.camera.snapshot()

        await h.run_until(2.0)

        assert camera.allclose(h.scene.camera.snapshot())

    @pytest.mark.asyncio
    async def test_manual_keys_take_control_until_next_slide(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)

        h.scheduler.handle_key('j')
        await h.run_until(1.5)
        h.scheduler.handle_key('j', pressed=False)
        assert h.scheduler.state.manual_control

        await h.run_until(5.0)
        assert not h.scheduler.state.manual_control

    @pytest.mark.asyncio
    async def test_debug_toggle(self, slides):
        h = Harness(slides)
        h.scheduler.handle_key('b')
        assert h.scheduler.debug_visible

    @pytest.mark.asyncio
    async def test_stop_releases_everything(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(1.0)
        asset = h.scheduler.current_asset

        await h.scheduler.stop()

        assert h.scheduler.phase is SchedulerPhase.IDLE
        assert asset.disposed
        assert h.scene.objects == []
        assert h.narration.started_at is None
        assert h.cache.status(1) is None

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_prefetch(self, slides, caplog):
        h = Harness(slides, loader=HangingLoader({"well.png"}))
        await h.start()
        await h.run_until(1.0)
        assert h.cache.status(2) is AssetStatus.PENDING

        with caplog.at_level("INFO"):
            await h.scheduler.stop()

        assert "Cancelled 1 pending prefetch(es)" in caplog.text
        assert h.cache.status(2) is None

    @pytest.mark.asyncio
    async def test_stop_during_transition_discards_it(self, slides):
        h = Harness(slides)
        starting = await h.start()
        await h.run_until(0.2)

        await h.scheduler.stop()
        await h.run_until(1.0)

        assert await starting is None
        assert h.scheduler.phase is SchedulerPhase.IDLE
        assert h.scene.objects == []

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, slides):
        h = Harness(slides)
        await h.start()
        await h.run_until(5.0)
        await h.scheduler.stop()

        await h.start()
        await h.run_until(6.0)

        assert h.scheduler.state.current_slide_index == 0
        assert [o.url for o in h.scene.objects] == ["logo.glb"]


class TestTimeline:
    """Test timeline markers, playhead and subtitles."""

    def test_markers_spread_evenly(self, slides):
        h = Harness(slides)

        markers = h.scheduler.timeline_markers()

        assert [(m.slide_index, m.label, m.percent) for m in markers] == [
            (0, "Intro", 0.0), (2, "1847", 50.0), (3, "Today", 100.0)
        ]

    def test_playhead_interpolates_between_markers(self, slides):
        h = Harness(slides)
        h.scheduler.state.current_slide_index = 1

        assert h.scheduler.playhead_percent(2.5) == pytest.approx(37.5)

    def test_playhead_on_last_marker(self, slides):
        h = Harness(slides)
        h.scheduler.state.current_slide_index = 3
        assert h.scheduler.playhead_percent(1.0) == 100.0

    def test_no_playhead_before_start(self, slides):
        h = Harness(slides)
        assert h.scheduler.playhead_percent() is None

    @pytest.mark.asyncio
    async def test_subtitles_follow_narration(self, slides):
        transcript = Transcript.from_dict({"segments": [{
            "start_time": 0.0, "end_time": 1.5,
            "words": [
                {"text": "The", "start_time": 0.0, "end_time": 0.2},
                {"text": "history", "start_time": 0.3, "end_time": 0.4},
                {"text": "of", "start_time": 0.5, "end_time": 0.6},
                {"text": "SOCAR", "start_time": 0.7, "end_time": 1.5},
            ]
        }]})
        h = Harness(slides, transcript=transcript)
        await h.start()

        await h.run_until(2.0)

        assert "The history of *SOCAR*" in h.overlay.subtitles
        assert h.overlay.subtitles[-1] == ""

    @pytest.mark.asyncio
    async def test_playhead_reported_to_overlay(self, slides):
        h = Harness(slides)
        await h.start()

        await h.run_until(2.0)

        assert h.overlay.playhead is not None
        assert 0.0 <= h.overlay.playhead <= 50.0
