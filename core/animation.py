#!/usr/bin/env python3
"""
Deterministic per-slide camera and asset animation.

Every named animation is a small motion function registered in a strategy
table. Given the slide, the seconds since the slide became active and the
frame delta, it moves the live camera (and, for asset motions, the slide's
object). Nothing here looks at head tracking: the sensor offset is layered
on afterwards by the SensorOffsetComposer and removed before the next frame.
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

import numpy as np

from .camera import Camera
from .slides import Slide
from .config_loader import get_animation_config
from .collaborators import AssetHandle

logger = logging.getLogger(__name__)

# Frame length the per-frame default orbit step was tuned against
REFERENCE_FRAME_DT = 0.016


@dataclass
class FrameContext:
    """Per-frame inputs shared by every motion function."""
    elapsed: float
    dt: float
    slide_index: int
    manual_control: bool = False
    animations_enabled: bool = True


CameraMotion = Callable[[Slide, Camera, FrameContext], None]
AssetMotion = Callable[[Slide, AssetHandle, FrameContext], None]


class AnimationCompositor:
    """Dispatches a slide's animation name to its motion function."""

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        """
        Initialize the compositor.

        Args:
            params: Animation section of the configuration (loaded from
                config/presentation.yaml when omitted)
        """
        self.params = params if params is not None else get_animation_config()
        self.look_at_target = np.array(self.params['look_at'], dtype=float)
        self._warned: Set[str] = set()

        zolly_speeds = self.params['zolly_speeds']
        self.camera_motions: Dict[str, CameraMotion] = {
            'strafe_down': self._strafe(-1.0),
            'strafe_up': self._strafe(1.0),
            'pan_horizontal': self._pan_horizontal,
            'orbit_horizontal': self._orbit_horizontal,
            'zolly_in': self._dolly(-zolly_speeds['zolly_in']),
            'zolly_in_gentle': self._dolly(-zolly_speeds['zolly_in_gentle']),
            'zolly_in_fast': self._dolly(-zolly_speeds['zolly_in_fast']),
            'zolly_out': self._dolly(zolly_speeds['zolly_out']),
        }
        self.asset_motions: Dict[str, AssetMotion] = {
            'scale_up': self._scale_up,
        }

    @property
    def known_animations(self) -> Set[str]:
        return set(self.camera_motions) | set(self.asset_motions)

    def apply(self, slide: Slide, camera: Camera,
              asset: Optional[AssetHandle], frame: FrameContext):
        """
        Run one frame of the slide's animation.

        Args:
            slide: Active slide
            camera: Live camera, mutated in place
            asset: Active slide object, or None for a blank slide
            frame: Frame timing and control flags
        """
        if not frame.animations_enabled:
            return

        if asset is not None:
            self._dolly_asset(asset, frame)
            asset_motion = self.asset_motions.get(slide.animation)
            if asset_motion is not None:
                asset_motion(slide, asset, frame)

        # Manual camera control wins until the next transition
        if frame.manual_control:
            return

        motion = self.camera_motions.get(slide.animation)
        if motion is None:
            if slide.animation and slide.animation not in self.known_animations:
                self._warn_unknown(slide.animation)
            motion = self._default_orbit
        motion(slide, camera, frame)

    def _warn_unknown(self, name: str):
        if name not in self._warned:
            self._warned.add(name)
            logger.warning(f"Unknown animation '{name}', using default orbit")

    def _dolly_asset(self, asset: AssetHandle, frame: FrameContext):
        asset.position[2] += self.params['asset_dolly_speed'] * frame.dt

    def _scale_up(self, slide: Slide, asset: AssetHandle, frame: FrameContext):
        t = min(frame.elapsed / self.params['scale_up_duration'], 1.0)
        ease = 1.0 - (1.0 - t) ** 3
        s = ease * self.params['scale_up_target']
        asset.scale[0] = asset.scale[1] = asset.scale[2] = s

    def _strafe(self, direction: float) -> CameraMotion:
        def motion(slide: Slide, camera: Camera, frame: FrameContext):
            speed = self.params['strafe_speed'] * slide.speed_scale
            camera.position[1] += direction * speed * frame.dt
            camera.look_at(self.look_at_target)
        return motion

    def _dolly(self, velocity: float) -> CameraMotion:
        def motion(slide: Slide, camera: Camera, frame: FrameContext):
            camera.position[2] += velocity * slide.speed_scale * frame.dt
            camera.look_at(self.look_at_target)
        return motion

    def _phase(self, slide: Slide, frame: FrameContext) -> float:
        return frame.elapsed * self.params['orbit_frequency'] * slide.speed_scale

    def _pan_horizontal(self, slide: Slide, camera: Camera, frame: FrameContext):
        camera.position[0] = math.sin(self._phase(slide, frame)) * self.params['pan_amplitude']
        camera.look_at(self.look_at_target)

    def _orbit_horizontal(self, slide: Slide, camera: Camera, frame: FrameContext):
        camera.position[0] = math.cos(self._phase(slide, frame)) * self.params['orbit_amplitude']
        camera.look_at(self.look_at_target)

    def _default_orbit(self, slide: Slide, camera: Camera, frame: FrameContext):
        """Gentle drift, vertical on odd slides and horizontal on even ones."""
        if slide.orbit_scale > 0:
            t = frame.elapsed * self.params['orbit_frequency']
            step = self.params['default_orbit_step'] * (frame.dt / REFERENCE_FRAME_DT)
            if frame.slide_index % 2 != 0:
                amp_y = self.params['default_orbit_amplitude_y'] * slide.orbit_scale
                camera.position[1] -= math.sin(t) * amp_y * step
            else:
                amp_x = self.params['default_orbit_amplitude_x'] * slide.orbit_scale
                camera.position[0] -= math.cos(t) * amp_x * step
            camera.look_at(self.look_at_target)
        elif slide.camera is None:
            camera.look_at(self.look_at_target)
