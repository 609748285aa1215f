#!/usr/bin/env python3
"""
Keyboard-driven manual camera control.

Held keys nudge the camera every frame: w/s and a/d move along the camera's
own axes, q/e move it vertically, j/l and i/k turn it, and [ / ] zoom the
field of view. Turning hands the camera over to the user until the next
slide transition.
"""

import logging
from typing import Any, Dict, Optional, Set

from .camera import Camera

logger = logging.getLogger(__name__)

MOVE_KEYS = {'w', 'a', 's', 'd', 'q', 'e'}
ROTATE_KEYS = {'i', 'j', 'k', 'l'}
ZOOM_KEYS = {'[', ']'}
HELD_KEYS = MOVE_KEYS | ROTATE_KEYS | ZOOM_KEYS | {'shift'}


class ManualCameraInput:
    """Tracks held keys and turns them into camera nudges."""

    def __init__(self, camera_params: Optional[Dict[str, Any]] = None):
        params = camera_params or {}
        self.move_speed = float(params.get('move_speed', 5.0))
        self.fast_move_speed = float(params.get('fast_move_speed', 10.0))
        self.rotate_speed = float(params.get('rotate_speed', 1.5))
        self.zoom_speed = float(params.get('zoom_speed', 20.0))
        self.min_fov = float(params.get('min_fov', 10.0))
        self.max_fov = float(params.get('max_fov', 120.0))
        self.held: Set[str] = set()

    @staticmethod
    def normalize_key(key: str) -> str:
        return 'shift' if key == 'Shift' else key.lower()

    def press(self, key: str) -> bool:
        """Record a key going down. Returns True if the key is a held control."""
        key = self.normalize_key(key)
        if key in HELD_KEYS:
            self.held.add(key)
            return True
        return False

    def release(self, key: str):
        self.held.discard(self.normalize_key(key))

    def clear(self):
        self.held.clear()

    @property
    def active(self) -> bool:
        return bool(self.held - {'shift'})

    def apply(self, camera: Camera, dt: float) -> bool:
        """
        Move, turn and zoom the camera for the keys currently held.

        Args:
            camera: Live camera, mutated in place
            dt: Seconds since the previous frame

        Returns:
            True if a rotation key was held (manual control takes over)
        """
        keys = self.held
        if not keys:
            return False

        step = (self.fast_move_speed if 'shift' in keys else self.move_speed) * dt
        if 'w' in keys:
            camera.translate_z(-step)
        if 's' in keys:
            camera.translate_z(step)
        if 'a' in keys:
            camera.translate_x(-step)
        if 'd' in keys:
            camera.translate_x(step)
        if 'q' in keys:
            camera.position[1] -= step
        if 'e' in keys:
            camera.position[1] += step

        rotated = False
        turn = self.rotate_speed * dt
        if keys & ROTATE_KEYS:
            angles = camera.euler
            if 'j' in keys:
                angles[1] += turn
            if 'l' in keys:
                angles[1] -= turn
            if 'i' in keys:
                angles[0] += turn
            if 'k' in keys:
                angles[0] -= turn
            camera.set_euler(angles)
            rotated = True

        zoom = self.zoom_speed * dt
        if '[' in keys:
            camera.set_fov(camera.fov + zoom, self.min_fov, self.max_fov)
        if ']' in keys:
            camera.set_fov(camera.fov - zoom, self.min_fov, self.max_fov)

        return rotated
