#!/usr/bin/env python3
"""
Mutable perspective camera used by the presentation engine.

Position is a numpy vector and orientation a scipy Rotation. Local moves
(translate/rotate about the camera's own axes) and look_at follow the
scene-graph conventions of the renderer: the camera looks down its local -Z
axis with +Y up, and Euler angles are intrinsic XYZ.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation

EULER_ORDER = 'XYZ'
WORLD_UP = np.array([0.0, 1.0, 0.0])


@dataclass
class CameraSnapshot:
    """Immutable copy of a camera pose, used for comparisons and debugging."""
    position: np.ndarray
    quaternion: np.ndarray
    fov: float

    def allclose(self, other: 'CameraSnapshot', atol: float = 1e-9) -> bool:
        # q and -q encode the same orientation
        same_rotation = (np.allclose(self.quaternion, other.quaternion, atol=atol) or
                         np.allclose(self.quaternion, -other.quaternion, atol=atol))
        return (np.allclose(self.position, other.position, atol=atol) and
                same_rotation and abs(self.fov - other.fov) <= atol)


class Camera:
    """Perspective camera with a position, an orientation and a field of view."""

    def __init__(self,
                 position: Sequence[float] = (0.0, 1.6, 5.0),
                 rotation: Sequence[float] = (0.0, 0.0, 0.0),
                 fov: float = 75.0):
        self.position = np.array(position, dtype=float)
        self.orientation = Rotation.from_euler(EULER_ORDER, rotation)
        self.fov = float(fov)

    @property
    def euler(self) -> np.ndarray:
        return self.orientation.as_euler(EULER_ORDER)

    def set_euler(self, angles: Sequence[float]):
        self.orientation = Rotation.from_euler(EULER_ORDER, angles)

    def set_pose(self, position: Sequence[float], rotation: Sequence[float]):
        self.position = np.array(position, dtype=float)
        self.set_euler(rotation)

    def set_fov(self, fov: float, min_fov: float = 10.0, max_fov: float = 120.0):
        self.fov = float(min(max_fov, max(min_fov, fov)))

    def translate_local(self, axis: Sequence[float], distance: float):
        """Move along one of the camera's own axes."""
        self.position = self.position + self.orientation.apply(np.asarray(axis, dtype=float)) * distance

    def translate_x(self, distance: float):
        self.translate_local((1.0, 0.0, 0.0), distance)

    def translate_z(self, distance: float):
        self.translate_local((0.0, 0.0, 1.0), distance)

    def rotate_local(self, rotation: Rotation):
        """Compose a rotation expressed in the camera's local frame."""
        self.orientation = self.orientation * rotation

    def rotate_x(self, angle: float):
        self.rotate_local(Rotation.from_rotvec([angle, 0.0, 0.0]))

    def rotate_y(self, angle: float):
        self.rotate_local(Rotation.from_rotvec([0.0, angle, 0.0]))

    def look_at(self, target: Sequence[float]):
        """
        Orient the camera so its -Z axis points at a world-space target.

        Degenerate cases (target at the eye, or straight up/down) nudge the
        basis the same way the renderer does instead of producing NaNs.
        """
        z_axis = self.position - np.asarray(target, dtype=float)
        norm = np.linalg.norm(z_axis)
        if norm == 0:
            z_axis = np.array([0.0, 0.0, 1.0])
        else:
            z_axis = z_axis / norm

        x_axis = np.cross(WORLD_UP, z_axis)
        if np.linalg.norm(x_axis) == 0:
            if abs(WORLD_UP[2]) == 1:
                z_axis = z_axis + np.array([0.0001, 0.0, 0.0])
            else:
                z_axis = z_axis + np.array([0.0, 0.0, 0.0001])
            z_axis = z_axis / np.linalg.norm(z_axis)
            x_axis = np.cross(WORLD_UP, z_axis)
        x_axis = x_axis / np.linalg.norm(x_axis)
        y_axis = np.cross(z_axis, x_axis)

        self.orientation = Rotation.from_matrix(np.column_stack([x_axis, y_axis, z_axis]))

    def snapshot(self) -> CameraSnapshot:
        return CameraSnapshot(
            position=self.position.copy(),
            quaternion=self.orientation.as_quat(),
            fov=self.fov
        )
