#!/usr/bin/env python3
"""
Headless stand-ins for the renderer, audio, tracker and overlay.

They let a whole presentation run without a display or sound device: the
CLI dry run drives the scheduler with them to check that every slide's
asset resolves and that transitions happen at the aligned times.
"""

import math
import time
import asyncio
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .camera import Camera

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class LoadedAsset:
    """A scene object standing in for a decoded mesh, point cloud or image."""
    url: str
    kind: str
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))
    disposed: bool = False

    def dispose(self):
        if self.disposed:
            logger.warning(f"Asset disposed twice: {self.url}")
        self.disposed = True


class HeadlessScene:
    """Scene graph that only keeps track of its objects."""

    def __init__(self, camera: Optional[Camera] = None):
        self.camera = camera or Camera()
        self.objects: List[LoadedAsset] = []

    def add(self, obj: LoadedAsset):
        self.objects.append(obj)

    def remove(self, obj: LoadedAsset):
        if obj in self.objects:
            self.objects.remove(obj)


class FileAssetLoader:
    """Asset loader that checks the file exists instead of decoding it."""

    def __init__(self, check_exists: bool = True):
        self.check_exists = check_exists
        self.loaded: List[str] = []

    async def _load(self, url: str, kind: str) -> LoadedAsset:
        await asyncio.sleep(0)
        if self.check_exists and not Path(url).exists():
            raise FileNotFoundError(f"Asset not found: {url}")
        self.loaded.append(url)
        return LoadedAsset(url=url, kind=kind)

    async def load_mesh(self, url: str) -> LoadedAsset:
        return await self._load(url, 'mesh')

    async def load_point_cloud(self, url: str) -> LoadedAsset:
        return await self._load(url, 'point_cloud')

    async def load_image(self, url: str) -> LoadedAsset:
        return await self._load(url, 'image')


class SimulatedAudio:
    """Audio track that reports wall-clock time since play()."""

    def __init__(self, name: str, time_source: Callable[[], float] = time.monotonic):
        self.name = name
        self._time = time_source
        self.started_at: Optional[float] = None
        self.volume = 1.0
        self.volume_history: List[float] = []

    def play(self):
        self.started_at = self._time()
        logger.debug(f"{self.name}: play")

    def stop(self):
        self.started_at = None
        logger.debug(f"{self.name}: stop")

    def set_volume(self, volume: float):
        self.volume = volume
        self.volume_history.append(volume)

    def elapsed(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return self._time() - self.started_at


class SwayingFaceTracker:
    """Face tracker reporting a viewer slowly swaying left and right."""

    def __init__(self, time_source: Callable[[], float] = time.monotonic,
                 amplitude: float = 0.2, period: float = 6.0):
        self._time = time_source
        self.amplitude = amplitude
        self.period = period

    def current_face_position(self) -> Optional[Tuple[float, float]]:
        phase = 2 * math.pi * self._time() / self.period
        return 0.5 + self.amplitude * math.sin(phase), 0.5


class RecordingOverlay:
    """Overlay that records what would have been displayed."""

    def __init__(self):
        self.faded = True
        self.subtitles: List[str] = []
        self.playhead: Optional[float] = None

    def set_faded(self, faded: bool):
        self.faded = faded

    def set_subtitle(self, text: str):
        self.subtitles.append(text)

    def set_playhead(self, percent: float):
        self.playhead = percent


class VirtualClock:
    """
    Manually advanced time source with a matching awaitable sleep.

    A sleeper waits until the driving loop has advanced the clock past its
    deadline, so a whole presentation can be played in a fraction of real
    time with the same ordering of frames and settles.
    """

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        deadline = self.now + seconds
        while self.now < deadline:
            await asyncio.sleep(0)
