#!/usr/bin/env python3
"""
Head-tracking camera offset, layered reversibly on top of the animation.

The live face position is smoothed into an offset S that is added to the
camera in its own frame, together with a small counter-rotation so the
scene appears to stay anchored while the viewer moves. Every frame the
previously applied offset is removed first (revert), the deterministic
animation runs on the clean camera, then the new offset is applied again.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .camera import Camera
from .config_loader import get_sensor_config

logger = logging.getLogger(__name__)

FaceDelta = Tuple[float, float]


def face_delta_from_position(x: float, y: float) -> FaceDelta:
    """Map a normalized [0, 1] image position to a centred [-1, 1] delta."""
    return (x - 0.5) * 2.0, (y - 0.5) * 2.0


def read_face_delta(tracker) -> Optional[FaceDelta]:
    """
    Poll a face tracker, treating a missing, silent or failing tracker as no signal.

    Args:
        tracker: FaceTracker collaborator, or None

    Returns:
        Face delta in [-1, 1]^2, or None when nobody is tracked
    """
    if tracker is None:
        return None
    try:
        position = tracker.current_face_position()
    except Exception as e:
        logger.debug(f"Face tracker unavailable: {e}")
        return None
    if position is None:
        return None
    return face_delta_from_position(position[0], position[1])


class SensorOffsetComposer:
    """Smoothed, additive and fully reversible camera offset from head tracking."""

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        """
        Initialize the composer.

        Args:
            params: Sensor section of the configuration (loaded from
                config/presentation.yaml when omitted)
        """
        params = params if params is not None else get_sensor_config()
        self.enabled = bool(params['enabled'])
        self.smoothing = float(params['smoothing'])
        self.range_x = float(params['range_x'])
        self.range_y = float(params['range_y'])
        self.counter_rotation_gain = float(params['counter_rotation_gain'])

        self.offset = np.zeros(3)
        self.applied_position = np.zeros(3)
        self.applied_rotation: Optional[Rotation] = None

    def target_for(self, signal: Optional[FaceDelta]) -> np.ndarray:
        if signal is None:
            return np.zeros(3)
        dx, dy = signal
        return np.array([dx * self.range_x, -dy * self.range_y, 0.0])

    def revert(self, camera: Camera):
        """Remove the offset applied on the previous frame, if any."""
        if self.applied_rotation is not None:
            camera.rotate_local(self.applied_rotation.inv())
        camera.position = camera.position - self.applied_position
        self.applied_position = np.zeros(3)
        self.applied_rotation = None

    def apply(self, camera: Camera, signal: Optional[FaceDelta]):
        """
        Smooth the new signal and add the resulting offset to the camera.

        Must be preceded by revert() on the same frame so offsets never
        accumulate.

        Args:
            camera: Live camera, mutated in place
            signal: Face delta in [-1, 1]^2, or None when absent
        """
        if not self.enabled:
            return

        self.offset = self.offset + (self.target_for(signal) - self.offset) * self.smoothing

        delta = camera.orientation.apply(self.offset)
        camera.position = camera.position + delta

        gain = self.counter_rotation_gain
        rotation = (Rotation.from_rotvec([-self.offset[1] * gain, 0.0, 0.0]) *
                    Rotation.from_rotvec([0.0, self.offset[0] * gain, 0.0]))
        camera.rotate_local(rotation)

        self.applied_position = delta
        self.applied_rotation = rotation

    def reset(self):
        """Forget the smoothed offset and the stored deltas."""
        self.offset = np.zeros(3)
        self.applied_position = np.zeros(3)
        self.applied_rotation = None

    def set_enabled(self, enabled: bool):
        self.enabled = enabled
        if not enabled:
            self.reset()
        logger.info(f"Head tracking {'enabled' if enabled else 'disabled'}")
