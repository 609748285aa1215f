#!/usr/bin/env python3
"""
Tests for the reversible head-tracking camera offset.
"""

import pytest
from pathlib import Path
from unittest.mock import Mock
import sys

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.camera import Camera
from core.sensor_offset import SensorOffsetComposer, face_delta_from_position, read_face_delta

PARAMS = {'enabled': True, 'smoothing': 0.1, 'range_x': 0.8, 'range_y': 0.6,
          'counter_rotation_gain': 0.2}


@pytest.fixture
def composer():
    return SensorOffsetComposer(dict(PARAMS))


class TestFaceDelta:
    """Test mapping tracker output to a centred delta."""

    def test_centre_is_zero(self):
        assert face_delta_from_position(0.5, 0.5) == (0.0, 0.0)

    def test_corners(self):
        assert face_delta_from_position(1.0, 0.0) == (1.0, -1.0)

    def test_read_without_tracker(self):
        assert read_face_delta(None) is None

    def test_read_absent_face(self):
        tracker = Mock()
        tracker.current_face_position.return_value = None
        assert read_face_delta(tracker) is None

    def test_failing_tracker_is_absent(self):
        tracker = Mock()
        tracker.current_face_position.side_effect = RuntimeError("camera unplugged")
        assert read_face_delta(tracker) is None

    def test_read_position(self):
        tracker = Mock()
        tracker.current_face_position.return_value = (0.75, 0.25)
        assert read_face_delta(tracker) == (0.5, -0.5)


class TestSensorOffsetComposer:
    """Test smoothing and the apply/revert round trip."""

    def test_smoothing_step(self, composer):
        camera = Camera()

        composer.apply(camera, (1.0, 1.0))

        np.testing.assert_allclose(composer.offset, [0.08, -0.06, 0.0])

    def test_converges_to_target(self, composer):
        camera = Camera()
        for _ in range(300):
            composer.revert(camera)
            composer.apply(camera, (0.5, -1.0))

        np.testing.assert_allclose(composer.offset, [0.4, 0.6, 0.0], atol=1e-6)

    def test_absent_signal_decays_to_zero(self, composer):
        camera = Camera()
        composer.apply(camera, (1.0, 0.0))
        for _ in range(300):
            composer.revert(camera)
            composer.apply(camera, None)

        np.testing.assert_allclose(composer.offset, [0.0, 0.0, 0.0], atol=1e-6)

    def test_apply_then_revert_is_identity(self, composer):
        camera = Camera(position=(0.3, 1.7, 4.0), rotation=(0.2, -0.4, 0.1))
        for _ in range(5):
            composer.revert(camera)
            composer.apply(camera, (0.9, -0.7))
        composer.revert(camera)
        clean = camera.snapshot()

        composer.apply(camera, (0.9, -0.7))
        assert not clean.allclose(camera.snapshot())
        composer.revert(camera)

        assert clean.allclose(camera.snapshot(), atol=1e-9)

    def test_offsets_do_not_accumulate(self, composer):
        camera = Camera(position=(0.0, 1.6, 5.0))
        base = camera.snapshot()

        for _ in range(1000):
            composer.revert(camera)
            composer.apply(camera, (0.0, 0.0))
        composer.revert(camera)

        assert base.allclose(camera.snapshot(), atol=1e-9)

    def test_offset_is_in_camera_frame(self, composer):
        camera = Camera(position=(0.0, 0.0, 0.0), rotation=(0.0, np.pi / 2, 0.0))

        composer.apply(camera, (1.0, 0.0))

        # Local +X of a camera turned 90 degrees left is world -Z
        np.testing.assert_allclose(camera.position, [0.0, 0.0, -0.08], atol=1e-12)

    def test_counter_rotation(self, composer):
        camera = Camera(position=(0.0, 0.0, 0.0))

        composer.apply(camera, (1.0, 1.0))

        pitch, yaw, _ = camera.euler
        assert pitch == pytest.approx(0.06 * 0.2, abs=1e-9)
        assert yaw == pytest.approx(0.08 * 0.2, abs=1e-9)

    def test_reset_clears_state(self, composer):
        camera = Camera()
        composer.apply(camera, (1.0, 1.0))
        moved = camera.snapshot()

        composer.reset()
        composer.revert(camera)

        np.testing.assert_allclose(composer.offset, [0.0, 0.0, 0.0])
        assert moved.allclose(camera.snapshot())

    def test_disabled_composer_does_nothing(self, composer):
        camera = Camera()
        before = camera.snapshot()
        composer.set_enabled(False)

        composer.apply(camera, (1.0, 1.0))

        assert before.allclose(camera.snapshot())
        np.testing.assert_allclose(composer.offset, [0.0, 0.0, 0.0])
