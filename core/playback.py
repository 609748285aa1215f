#!/usr/bin/env python3
"""
Playback state and the presentation clock.

The clock is the single time reference for slide transitions and
subtitles. It follows the narration track's own playback position when the
audio reports one and falls back to wall-clock time since start (minus the
narration start delay) otherwise. Paused time is excluded from both the
slide animation clock and the wall-clock fallback.
"""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from .collaborators import AudioTrack

logger = logging.getLogger(__name__)


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TRANSITIONING = "transitioning"
    FINISHED = "finished"


@dataclass
class PlaybackState:
    """Mutable playback record owned by the timeline scheduler."""
    current_slide_index: int = -1
    phase: SchedulerPhase = SchedulerPhase.IDLE
    is_playing: bool = False
    is_paused: bool = False
    is_transitioning: bool = False
    is_muted: bool = False
    faded: bool = True
    manual_control: bool = False
    animations_enabled: bool = True
    tracking_enabled: bool = True
    slide_started_at: float = 0.0
    seek_target: Optional[int] = None
    pending_seek: Optional[int] = None


class PlaybackClock:
    """Presentation clock with pause accounting and seek re-basing."""

    def __init__(self, narration: Optional[AudioTrack] = None, narration_delay: float = 0.0):
        """
        Initialize the clock.

        Args:
            narration: Narration track queried for its playback position
            narration_delay: Seconds between start and narration playback,
                used by the wall-clock fallback
        """
        self.narration = narration
        self.narration_delay = narration_delay
        self.origin: Optional[float] = None
        self.offset = 0.0
        self._paused_total = 0.0
        self._paused_at: Optional[float] = None
        self._frozen_narration = 0.0

    @property
    def started(self) -> bool:
        return self.origin is not None

    @property
    def paused(self) -> bool:
        return self._paused_at is not None

    def start(self, now: float):
        self.origin = now
        self.offset = 0.0
        self._paused_total = 0.0
        self._paused_at = None
        self._frozen_narration = 0.0

    def reset(self):
        self.origin = None
        self.offset = 0.0
        self._paused_total = 0.0
        self._paused_at = None

    def elapsed(self, now: float) -> float:
        """Seconds of unpaused playback since start."""
        if self.origin is None:
            return 0.0
        end = self._paused_at if self._paused_at is not None else now
        return end - self.origin - self._paused_total

    def narration_time(self, now: float) -> float:
        """Position in the narration, frozen while paused."""
        if self._paused_at is not None:
            return self._frozen_narration

        audio_time = self.narration.elapsed() if self.narration is not None else None
        if audio_time is not None:
            return audio_time
        return self.elapsed(now) - self.narration_delay

    def timeline_time(self, now: float) -> float:
        """Narration position shifted by the last seek."""
        return self.narration_time(now) + self.offset

    def rebase(self, now: float, target: float):
        """Shift the timeline so that it reads target at this instant."""
        self.offset = target - self.narration_time(now)
        logger.debug(f"Timeline re-based to {target:.2f}s (offset {self.offset:+.2f}s)")

    def pause(self, now: float):
        if self._paused_at is not None:
            return
        self._frozen_narration = self.narration_time(now)
        self._paused_at = now

    def resume(self, now: float):
        if self._paused_at is None:
            return
        self._paused_total += now - self._paused_at
        self._paused_at = None
