#!/usr/bin/env python3
"""
Timeline scheduler: the playback state machine of a narrated presentation.

The scheduler owns the presentation clock, the slide cursor and the
transition lock. The host application calls tick() once per rendered frame;
tick() runs the per-frame camera pipeline, updates subtitles and the
timeline playhead, and schedules a slide transition when the clock reaches
the next slide. Transitions run as coroutines on the same event loop:
fade out, swap the asset, reset the camera, fade back in, prefetch ahead.

States: idle -> active(i) -> transitioning -> active(i + 1) -> ... -> finished
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .slides import Slide
from .transcript import Transcript
from .asset_cache import AssetCache
from .animation import AnimationCompositor, FrameContext
from .sensor_offset import SensorOffsetComposer, read_face_delta
from .manual_control import ManualCameraInput
from .subtitles import SubtitleTrack, SubtitleTypewriter
from .playback import PlaybackClock, PlaybackState, SchedulerPhase
from .collaborators import AssetHandle, AudioTrack, FaceTracker, Overlay, SceneGraph
from .config_loader import get_scheduler_config

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """What a single tick observed and did."""
    phase: SchedulerPhase
    slide_index: int
    timeline_time: Optional[float] = None
    slide_elapsed: Optional[float] = None
    subtitle: Optional[str] = None
    playhead: Optional[float] = None
    transition_scheduled: bool = False


@dataclass
class TimelineMarker:
    """A clickable point on the timeline for a labelled slide."""
    slide_index: int
    label: str
    percent: float


class TimelineScheduler:
    """Drives slide transitions and per-frame animation off one clock."""

    def __init__(
        self,
        slides: List[Slide],
        scene: SceneGraph,
        asset_cache: AssetCache,
        narration: Optional[AudioTrack] = None,
        music: Optional[AudioTrack] = None,
        tracker: Optional[FaceTracker] = None,
        overlay: Optional[Overlay] = None,
        transcript: Optional[Transcript] = None,
        animation: Optional[AnimationCompositor] = None,
        sensor: Optional[SensorOffsetComposer] = None,
        params: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        time_source: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the scheduler.

        Args:
            slides: Aligned slides, sorted by start time
            scene: Scene graph holding the camera and slide assets
            asset_cache: Cache resolving slide assets
            narration: Narration track, the primary clock source
            music: Background music track
            tracker: Face tracker feeding the head-tracking offset
            overlay: Fade curtain, subtitle and timeline display
            transcript: Transcript used for subtitle highlighting
            animation: Animation compositor (built from config if omitted)
            sensor: Head-tracking offset composer (built from config if omitted)
            params: Scheduler configuration sections (see get_scheduler_config)
            sleep: Awaitable delay used for the fade settles
            time_source: Monotonic clock in seconds
        """
        self.slides = slides
        self.scene = scene
        self.cache = asset_cache
        self.narration = narration
        self.music = music
        self.tracker = tracker
        self.overlay = overlay
        self.animation = animation or AnimationCompositor()
        self.sensor = sensor or SensorOffsetComposer()
        self.params = params or get_scheduler_config()
        self._sleep = sleep
        self._time = time_source

        camera_params = self.params['camera']
        audio_params = self.params['audio']
        self.manual = ManualCameraInput(camera_params)
        self.clock = PlaybackClock(narration, float(audio_params.get('narration_delay', 0.0)))
        self.state = PlaybackState()
        self.current_asset: Optional[AssetHandle] = None
        self._current_asset_index: Optional[int] = None
        self.debug_visible = False

        self._default_fov = scene.camera.fov
        self._last_tick: Optional[float] = None
        self._session = 0
        self._transition_task: Optional[asyncio.Future] = None
        self._narration_task: Optional[asyncio.Future] = None
        self._last_subtitle: Optional[str] = None

        subtitle_params = self.params['subtitles']
        self.subtitle_mode = subtitle_params.get('mode', 'highlight')
        self.subtitle_track = SubtitleTrack(transcript) if transcript is not None else None
        self.typewriter = None
        if self.subtitle_mode == 'typewriter':
            self.typewriter = SubtitleTypewriter(
                " ".join(slide.text for slide in slides),
                char_delay=float(subtitle_params['char_delay']),
                space_delay=float(subtitle_params['space_delay']),
                sentence_pause=float(subtitle_params['sentence_pause'])
            )

    @property
    def phase(self) -> SchedulerPhase:
        return self.state.phase

    @property
    def current_slide(self) -> Optional[Slide]:
        index = self.state.current_slide_index
        if 0 <= index < len(self.slides):
            return self.slides[index]
        return None

    async def start(self):
        """Start audio and bring up the first slide."""
        if self.state.is_playing:
            logger.debug("Presentation already playing")
            return
        if not self.slides:
            logger.warning("No slides to present")
            return

        self._session += 1
        self.state = PlaybackState(is_playing=True, is_muted=self.state.is_muted)
        self._last_tick = None
        self._last_subtitle = None
        self.sensor.reset()
        self.clock.start(self._time())
        if self.typewriter is not None:
            self.typewriter.reset()

        logger.info(f"Starting presentation: {len(self.slides)} slides")

        if self.music is not None:
            self.music.play()
            self.music.set_volume(0.0 if self.state.is_muted else self.params['audio']['music_volume'])

        delay = self.clock.narration_delay
        if self.narration is not None:
            if delay > 0:
                self._narration_task = asyncio.ensure_future(self._start_narration(delay, self._session))
            else:
                self._play_narration()

        await self.begin_transition()

    async def _start_narration(self, delay: float, session: int):
        await self._sleep(delay)
        if session == self._session and self.state.is_playing:
            self._play_narration()

    def _play_narration(self):
        self.narration.play()
        silent = self.state.is_muted or self.state.is_paused
        self.narration.set_volume(0.0 if silent else self.params['audio']['narration_volume'])
        logger.info("Narration started")

    def tick(self, now: Optional[float] = None) -> FrameResult:
        """
        Advance one rendered frame.

        Args:
            now: Current time from the monotonic source (read if omitted)

        Returns:
            FrameResult describing the frame
        """
        now = self._time() if now is None else now
        state = self.state
        dt = 0.0
        if self._last_tick is not None:
            max_dt = self.animation.params.get('max_frame_dt', 0.1)
            dt = min(max(now - self._last_tick, 0.0), max_dt)
        self._last_tick = now

        result = FrameResult(phase=state.phase, slide_index=state.current_slide_index)
        if not state.is_playing or state.is_paused:
            return result

        timeline_time = self.clock.timeline_time(now)
        result.timeline_time = timeline_time
        result.subtitle = self._update_subtitles(timeline_time, dt)

        slide = self.current_slide
        if slide is None or state.phase is not SchedulerPhase.ACTIVE:
            return result

        index = state.current_slide_index
        slide_elapsed = self.clock.elapsed(now) - state.slide_started_at
        result.slide_elapsed = slide_elapsed

        self._run_frame_pipeline(slide, index, slide_elapsed, dt)

        result.playhead = self.playhead_percent(slide_elapsed)
        if self.overlay is not None and result.playhead is not None:
            self.overlay.set_playhead(result.playhead)

        if self._advance_due(index, timeline_time, slide_elapsed):
            result.transition_scheduled = self._schedule_transition()
        return result

    def _run_frame_pipeline(self, slide: Slide, index: int, slide_elapsed: float, dt: float):
        camera = self.scene.camera
        state = self.state

        # Undo last frame's head-tracking offset before anything else moves the camera
        self.sensor.revert(camera)
        if self.sensor.enabled != state.tracking_enabled:
            self.sensor.set_enabled(state.tracking_enabled)

        if self.manual.apply(camera, dt):
            state.manual_control = True

        frame = FrameContext(
            elapsed=slide_elapsed,
            dt=dt,
            slide_index=index,
            manual_control=state.manual_control,
            animations_enabled=state.animations_enabled
        )
        self.animation.apply(slide, camera, self.current_asset, frame)
        self.sensor.apply(camera, read_face_delta(self.tracker))

    def _advance_due(self, index: int, timeline_time: float, slide_elapsed: float) -> bool:
        slide = self.slides[index]
        if index + 1 < len(self.slides):
            next_start = self.slides[index + 1].start_time
            if next_start is not None and slide.start_time is not None:
                return timeline_time >= next_start

        limit = slide.duration
        if limit is None:
            limit = float(self.params['transition'].get('fallback_slide_duration', 8.0))
        return slide_elapsed >= limit

    def _update_subtitles(self, timeline_time: float, dt: float) -> Optional[str]:
        if self.typewriter is not None:
            text = self.typewriter.advance(dt)
        elif self.subtitle_track is not None:
            text = self.subtitle_track.locate(timeline_time).text
        else:
            return None

        if self.overlay is not None and text != self._last_subtitle:
            self.overlay.set_subtitle(text)
        self._last_subtitle = text
        return text

    def _schedule_transition(self) -> bool:
        if self.state.is_transitioning or not self.state.is_playing:
            return False
        if self._transition_task is not None and not self._transition_task.done():
            return False
        self._transition_task = asyncio.ensure_future(self.begin_transition())
        self.state.phase = SchedulerPhase.TRANSITIONING
        return True

    async def begin_transition(self) -> bool:
        """
        Move to the slide after the cursor.

        A collaborator failure part way through is logged and the lock is
        released, leaving the target slide active (blank if its asset never
        made it into the scene) so playback carries on.

        Returns:
            True if this call ran the transition, False if one was already
            in progress, playback was stopped meanwhile or the swap failed
        """
        state = self.state
        if state.is_transitioning or not state.is_playing:
            return False
        state.is_transitioning = True
        state.phase = SchedulerPhase.TRANSITIONING
        session = self._session
        origin = state.current_slide_index
        began = self._time()

        completed = False
        try:
            completed = await self._run_transition(session, began)
        except Exception as e:
            logger.error(f"Transition from slide {origin} failed: {e}")
            if session == self._session:
                self._recover_transition(origin)
        finally:
            if session == self._session and state.is_transitioning:
                state.is_transitioning = False
                state.phase = SchedulerPhase.ACTIVE

        if session == self._session and state.pending_seek is not None:
            target, state.pending_seek = state.pending_seek, None
            self._transition_task = None
            self.seek(target)
        return completed

    async def _run_transition(self, session: int, began: float) -> bool:
        state = self.state
        transition = self.params['transition']

        self._set_faded(True)
        await self._sleep(float(transition['fade_settle']))
        if session != self._session:
            return False

        self._remove_current_asset()
        self._reset_camera()

        index = state.current_slide_index + 1
        if index >= len(self.slides) and state.pending_seek is not None:
            # A seek queued while leaving the last slide replaces the finish
            index, state.pending_seek = state.pending_seek, None
            state.seek_target = index
        if index >= len(self.slides):
            self._finish()
            return True

        state.current_slide_index = index
        slide = self.slides[index]
        logger.info(f"Transitioning to slide {index}: {slide.asset_ref or '(no asset)'}")

        asset = await self.cache.resolve(index)
        if session != self._session:
            self.cache.release(index)
            return False

        if asset is not None:
            _apply_transform(asset, slide)
            self.scene.add(asset)
        else:
            logger.warning(f"Slide {index} has no visual object")
        self.current_asset = asset
        self._current_asset_index = index

        if slide.camera is not None:
            self._apply_camera_override(slide)

        now = self._time()
        state.slide_started_at = self.clock.elapsed(now)
        if state.seek_target == index:
            if slide.start_time is not None:
                # Read as if play had reached start_time when this transition began
                self.clock.rebase(now, slide.start_time + (now - began))
            state.seek_target = None

        await self._sleep(float(transition['post_settle']))
        if session != self._session:
            return False

        self._set_faded(False)
        state.is_transitioning = False
        state.phase = SchedulerPhase.ACTIVE

        ahead = int(self.params['prefetch'].get('ahead', 2))
        for offset in range(1, ahead + 1):
            self.cache.prefetch(index + offset)
        return True

    def _recover_transition(self, origin: int):
        state = self.state
        index = state.current_slide_index
        if index != origin and 0 <= index < len(self.slides):
            if self.current_asset is None or self._current_asset_index != index:
                # The asset never reached the scene
                self.cache.release(index)
                self.current_asset = None
                self._current_asset_index = None
            state.slide_started_at = self.clock.elapsed(self._time())
            state.seek_target = None
        self._set_faded(False)

    def seek(self, index: int) -> bool:
        """
        Jump to a slide through the normal transition path.

        A seek that arrives during a transition is queued and serviced once
        the transition completes; a later seek replaces a queued one.

        Returns:
            True if the seek was started or queued
        """
        if not 0 <= index < len(self.slides):
            logger.warning(f"Ignoring seek to slide {index}: out of range")
            return False
        state = self.state
        if not state.is_playing:
            logger.warning(f"Ignoring seek to slide {index}: presentation not playing")
            return False
        if state.is_transitioning:
            logger.debug(f"Queued seek to slide {index}")
            state.pending_seek = index
            return True

        logger.info(f"Seeking to slide {index}")
        state.current_slide_index = index - 1
        state.seek_target = index
        self._schedule_transition()
        return True

    def seek_marker(self, marker: TimelineMarker) -> bool:
        return self.seek(marker.slide_index)

    def next_slide(self) -> bool:
        """Skip to the next slide now."""
        return self._schedule_transition()

    def handle_key(self, key: str, pressed: bool = True):
        """Route a keyboard event to manual control or a one-shot command."""
        if not pressed:
            self.manual.release(key)
            return
        if key == '>':
            self.next_slide()
        elif key.lower() == 'b':
            self.debug_visible = not self.debug_visible
        else:
            self.manual.press(key)

    def toggle_pause(self) -> bool:
        """
        Pause or resume playback.

        Paused playback freezes the clock and the animation and silences
        both tracks. Asset loads keep running.

        Returns:
            True if now paused
        """
        state = self.state
        if not state.is_playing:
            return False
        now = self._time()
        state.is_paused = not state.is_paused
        if state.is_paused:
            self.clock.pause(now)
            self._set_volumes(music=0.0, narration=0.0)
            logger.info("Presentation paused")
        else:
            self.clock.resume(now)
            self._last_tick = None
            self._restore_volumes()
            logger.info("Presentation resumed")
        return state.is_paused

    def toggle_mute(self) -> bool:
        """Returns True if now muted."""
        state = self.state
        state.is_muted = not state.is_muted
        if state.is_muted:
            self._set_volumes(music=0.0, narration=0.0)
        elif not state.is_paused:
            self._restore_volumes()
        return state.is_muted

    def set_tracking_enabled(self, enabled: bool):
        """Switch head tracking on or off from the next frame."""
        self.state.tracking_enabled = enabled

    def toggle_animations(self) -> bool:
        self.state.animations_enabled = not self.state.animations_enabled
        logger.info(f"Animations {'on' if self.state.animations_enabled else 'off'}")
        return self.state.animations_enabled

    async def stop(self):
        """Stop playback, release the current asset and return to idle."""
        self._session += 1
        for track in (self.narration, self.music):
            if track is not None:
                track.stop()

        for task in (self._transition_task, self._narration_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.debug("Cancelled pending playback task")
                except Exception as e:
                    logger.error(f"Playback task failed while stopping: {e}")
        self._transition_task = None
        self._narration_task = None

        self._remove_current_asset()
        self.cache.cancel_prefetches()
        self.cache.clear()
        self.sensor.reset()
        self.manual.clear()
        self._reset_camera()
        self.clock.reset()
        self.state = PlaybackState(is_muted=self.state.is_muted)
        logger.info("Presentation stopped")

    def timeline_markers(self) -> List[TimelineMarker]:
        """One marker per labelled slide, spread evenly along the timeline."""
        labelled = [(i, s) for i, s in enumerate(self.slides) if s.label]
        if not labelled:
            return []
        step = 100.0 / (len(labelled) - 1) if len(labelled) > 1 else 0.0
        return [
            TimelineMarker(slide_index=i, label=str(slide.label), percent=n * step)
            for n, (i, slide) in enumerate(labelled)
        ]

    def playhead_percent(self, slide_elapsed: float = 0.0) -> Optional[float]:
        """
        Playhead position between timeline markers.

        The playhead sits on the last marker at or before the active slide
        and moves towards the next marker as the slides between them play.
        """
        markers = self.timeline_markers()
        index = self.state.current_slide_index
        if not markers or index < 0:
            return None

        previous = [m for m in markers if m.slide_index <= index]
        if not previous:
            return 0.0
        current = previous[-1]
        following = [m for m in markers if m.slide_index > index]
        if not following:
            return current.percent

        slide = self.slides[index]
        progress = 0.0
        if slide.duration:
            progress = min(max(slide_elapsed / slide.duration, 0.0), 1.0)
        nxt = following[0]
        span = nxt.slide_index - current.slide_index
        fraction = (index - current.slide_index + progress) / span
        return current.percent + fraction * (nxt.percent - current.percent)

    def debug_snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        """Camera and asset pose plus slide state, for the debug panel."""
        now = self._time() if now is None else now
        camera = self.scene.camera
        slide = self.current_slide
        asset = self.current_asset
        elapsed = None
        if slide is not None and self.clock.started:
            elapsed = self.clock.elapsed(now) - self.state.slide_started_at

        return {
            'camera': {
                'position': [float(v) for v in camera.position],
                'rotation': [float(v) for v in camera.euler],
                'fov': camera.fov,
            },
            'asset': {
                'kind': slide.asset_kind.value if slide else None,
                'position': _as_list(asset.position) if asset is not None else None,
                'rotation': _as_list(asset.rotation) if asset is not None else None,
                'scale': _as_list(asset.scale) if asset is not None else None,
            },
            'slide_index': self.state.current_slide_index,
            'slide_count': len(self.slides),
            'asset_ref': slide.asset_ref if slide else None,
            'animation': slide.animation if slide else None,
            'elapsed': elapsed,
            'duration': slide.duration if slide else None,
            'manual_control': self.state.manual_control,
            'animations_enabled': self.state.animations_enabled,
            'phase': self.state.phase.value,
        }

    def _finish(self):
        state = self.state
        state.current_slide_index = len(self.slides)
        state.is_playing = False
        state.is_transitioning = False
        state.phase = SchedulerPhase.FINISHED
        logger.info("Presentation finished")

    def _remove_current_asset(self):
        if self.current_asset is None:
            return
        self.scene.remove(self.current_asset)
        self.cache.release(self._current_asset_index)
        self.current_asset = None
        self._current_asset_index = None

    def _reset_camera(self):
        camera_params = self.params['camera']
        camera = self.scene.camera
        camera.set_pose(camera_params['default_position'], camera_params['default_rotation'])
        camera.fov = self._default_fov
        self.state.manual_control = False
        self.sensor.reset()

    def _apply_camera_override(self, slide: Slide):
        camera = self.scene.camera
        camera.set_pose(slide.camera.position, slide.camera.rotation)
        if slide.camera.fov:
            camera.fov = float(slide.camera.fov)

    def _set_faded(self, faded: bool):
        self.state.faded = faded
        if self.overlay is None:
            return
        try:
            self.overlay.set_faded(faded)
        except Exception as e:
            logger.error(f"Overlay failed to set fade: {e}")

    def _set_volumes(self, music: float, narration: float):
        if self.music is not None:
            self.music.set_volume(music)
        if self.narration is not None:
            self.narration.set_volume(narration)

    def _restore_volumes(self):
        if self.state.is_muted:
            return
        audio = self.params['audio']
        self._set_volumes(music=audio['music_resume_volume'], narration=audio['narration_volume'])


def _apply_transform(asset: AssetHandle, slide: Slide):
    _assign(asset.position, slide.transform.position)
    _assign(asset.scale, slide.transform.scale)
    _assign(asset.rotation, slide.transform.rotation)


def _assign(target, values: Sequence[float]):
    for i, value in enumerate(values):
        target[i] = value


def _as_list(values) -> List[float]:
    return [float(v) for v in values]
