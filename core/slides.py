#!/usr/bin/env python3
"""
Slide deck model for narrated presentations.

A deck is a fixed, ordered list of slides. Each slide binds a narration
snippet to a 3D asset, its static transform, an optional named camera
animation and, once aligned, a time window on the narration clock.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Any
from dataclasses import dataclass, field, asdict

import yaml

from .config_validation import ConfigurationValidator, load_structured_file

logger = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]


class SlideDeckError(Exception):
    """Raised when a slide deck cannot be loaded or saved."""
    pass


class AssetKind(str, Enum):
    """Closed set of asset kinds a slide can reference."""
    MESH = "mesh"
    POINT_CLOUD = "point_cloud"
    IMAGE = "image"

    @classmethod
    def parse(cls, value: str) -> 'AssetKind':
        aliases = {'glb': cls.MESH, 'gltf': cls.MESH, 'spz': cls.POINT_CLOUD,
                   'splat': cls.POINT_CLOUD, 'img': cls.IMAGE}
        if value in aliases:
            return aliases[value]
        return cls(value)


@dataclass
class SlideTransform:
    """Static placement applied to a slide's asset when it enters the scene."""
    position: Vector3 = (0.0, 0.0, 0.0)
    scale: Vector3 = (1.0, 1.0, 1.0)
    rotation: Vector3 = (0.0, 0.0, 0.0)


@dataclass
class CameraOverride:
    """Explicit camera pose for a slide, replacing the default pose."""
    position: Vector3
    rotation: Vector3 = (0.0, 0.0, 0.0)
    fov: Optional[float] = None


@dataclass
class Slide:
    """One entry in the presentation sequence."""
    text: str
    asset_ref: str = ""
    asset_kind: AssetKind = AssetKind.MESH
    transform: SlideTransform = field(default_factory=SlideTransform)
    animation: Optional[str] = None
    speed_scale: float = 1.0
    orbit_scale: float = 1.0
    start_time: Optional[float] = None
    duration: Optional[float] = None
    label: Optional[str] = None
    camera: Optional[CameraOverride] = None
    override_start: bool = False

    @property
    def end_time(self) -> Optional[float]:
        if self.start_time is None or self.duration is None:
            return None
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['asset_kind'] = self.asset_kind.value
        for key in ('position', 'scale', 'rotation'):
            data['transform'][key] = list(data['transform'][key])
        if self.camera is not None:
            data['camera']['position'] = list(self.camera.position)
            data['camera']['rotation'] = list(self.camera.rotation)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Slide':
        """
        Build a slide from deck data.

        Accepts both the snake_case field names and the camelCase keys used by
        hand-written decks (type/path/year/startTime/speedScale/orbitScale).
        A start time in the data is only kept through alignment when the
        slide also sets override_start.
        """
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        transform_data = data.get('transform') or {}
        transform = SlideTransform(
            position=_vector(transform_data.get('position'), (0.0, 0.0, 0.0)),
            scale=_vector(transform_data.get('scale'), (1.0, 1.0, 1.0)),
            rotation=_vector(transform_data.get('rotation'), (0.0, 0.0, 0.0)),
        )

        camera = None
        camera_data = data.get('camera')
        if camera_data:
            camera = CameraOverride(
                position=_vector(camera_data.get('position'), (0.0, 1.6, 5.0)),
                rotation=_vector(camera_data.get('rotation'), (0.0, 0.0, 0.0)),
                fov=camera_data.get('fov'),
            )

        start_time = pick('start_time', 'startTime')
        duration = pick('duration')
        label = pick('label', 'year')
        return cls(
            text=str(data.get('text', '')),
            asset_ref=str(pick('asset_ref', 'path', default='')),
            asset_kind=AssetKind.parse(pick('asset_kind', 'type', default='mesh')),
            transform=transform,
            animation=pick('animation'),
            speed_scale=float(pick('speed_scale', 'speedScale', default=1.0)),
            orbit_scale=float(pick('orbit_scale', 'orbitScale', default=1.0)),
            start_time=float(start_time) if start_time is not None else None,
            duration=float(duration) if duration is not None else None,
            label=str(label) if label is not None else None,
            camera=camera,
            override_start=bool(pick('override_start', default=False)),
        )


def _vector(values: Optional[List[float]], default: Vector3) -> Vector3:
    if values is None:
        return default
    if len(values) != 3:
        raise SlideDeckError(f"Expected a 3-component vector, got {values!r}")
    return (float(values[0]), float(values[1]), float(values[2]))


def load_slide_deck(deck_path: str, validate: bool = True) -> List[Slide]:
    """
    Load an ordered slide deck from YAML or JSON.

    Args:
        deck_path: Path to the deck file; the document is either a list of
            slides or a mapping with a 'slides' list
        validate: Validate against the slide deck schema first

    Returns:
        Slides in deck order

    Raises:
        SlideDeckError: If the deck is missing or invalid
    """
    try:
        data = load_structured_file(deck_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise SlideDeckError(f"Failed to load slide deck {deck_path}: {e}")

    if isinstance(data, list):
        data = {'slides': data}
    if not isinstance(data, dict):
        raise SlideDeckError(f"Slide deck must be a list or mapping: {deck_path}")

    if validate:
        is_valid, errors = ConfigurationValidator().validate_config(data, "slide_deck")
        if not is_valid:
            raise SlideDeckError(f"Invalid slide deck {deck_path}: " + "; ".join(errors))

    try:
        slides = [Slide.from_dict(entry) for entry in data.get('slides', [])]
    except (TypeError, ValueError) as e:
        raise SlideDeckError(f"Invalid slide in {deck_path}: {e}")

    if not slides:
        raise SlideDeckError(f"Slide deck is empty: {deck_path}")

    logger.info(f"Loaded slide deck: {len(slides)} slides from {deck_path}")
    return slides


def save_slide_deck(slides: List[Slide], output_path: str) -> str:
    """
    Write slides to YAML or JSON, depending on the output suffix.

    Returns:
        The output path
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {'slides': [slide.to_dict() for slide in slides]}

    with open(path, 'w', encoding='utf-8') as f:
        if path.suffix.lower() in ['.yaml', '.yml']:
            yaml.safe_dump(document, f, sort_keys=False, allow_unicode=True)
        else:
            json.dump(document, f, indent=2, ensure_ascii=False)

    logger.info(f"Slide deck saved: {path}")
    return str(path)
