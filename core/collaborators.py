#!/usr/bin/env python3
"""
Interfaces of the systems the presentation engine drives but does not own.

The renderer, asset importers, audio playback, face tracker and on-screen
overlay live outside this package. The engine only talks to them through
these narrow contracts.
"""

from typing import Any, Optional, Protocol, Tuple, runtime_checkable

from .camera import Camera


@runtime_checkable
class AssetHandle(Protocol):
    """A loaded scene object. position/rotation/scale are mutable 3-vectors."""
    position: Any
    rotation: Any
    scale: Any

    def dispose(self) -> None:
        """Release GPU/CPU resources held by the object."""
        ...


class SceneGraph(Protocol):
    """Scene the engine adds slide assets to before each render."""
    camera: Camera

    def add(self, obj: AssetHandle) -> None:
        ...

    def remove(self, obj: AssetHandle) -> None:
        ...


class AssetLoader(Protocol):
    """Asynchronous importers, one per asset kind."""

    async def load_mesh(self, url: str) -> AssetHandle:
        ...

    async def load_point_cloud(self, url: str) -> AssetHandle:
        ...

    async def load_image(self, url: str) -> AssetHandle:
        ...


class AudioTrack(Protocol):
    """A playable audio track (narration or background music)."""

    def play(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def set_volume(self, volume: float) -> None:
        ...

    def elapsed(self) -> Optional[float]:
        """Seconds since playback started, or None if not playing yet."""
        ...


class FaceTracker(Protocol):
    """Latest face position from the vision pipeline, updated at its own cadence."""

    def current_face_position(self) -> Optional[Tuple[float, float]]:
        """Normalized (x, y) in [0, 1] image space, or None when nobody is tracked."""
        ...


class Overlay(Protocol):
    """On-screen layer above the 3D view: fade curtain, subtitles, timeline."""

    def set_faded(self, faded: bool) -> None:
        ...

    def set_subtitle(self, text: str) -> None:
        ...

    def set_playhead(self, percent: float) -> None:
        ...
