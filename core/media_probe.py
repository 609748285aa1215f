#!/usr/bin/env python3
"""
Narration audio probing with ffmpeg.

Used at deck build time to find out how long the narration runs, so the
final slide can be given the remaining narration as its screen time.
"""

import logging
from pathlib import Path
from typing import Any, Dict

import ffmpeg

logger = logging.getLogger(__name__)


class MediaProbeError(Exception):
    """Raised when a media file cannot be probed."""
    pass


def probe_audio_info(audio_path: str) -> Dict[str, Any]:
    """
    Probe an audio file for its first audio stream and overall duration.

    Args:
        audio_path: Path to the audio file

    Returns:
        Dictionary with 'duration', 'codec', 'sample_rate' and 'channels'

    Raises:
        MediaProbeError: If the file is missing, unreadable or has no audio
    """
    if not Path(audio_path).exists():
        raise MediaProbeError(f"Audio file not found: {audio_path}")

    try:
        probe = ffmpeg.probe(audio_path)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode() if e.stderr else str(e)
        raise MediaProbeError(f"Failed to probe audio {audio_path}: {stderr}")

    audio_stream = next(
        (s for s in probe.get('streams', []) if s.get('codec_type') == 'audio'),
        None
    )
    if audio_stream is None:
        raise MediaProbeError(f"No audio stream found in {audio_path}")

    duration = probe.get('format', {}).get('duration', audio_stream.get('duration'))
    if duration is None:
        raise MediaProbeError(f"Audio duration unknown for {audio_path}")

    info = {
        'duration': float(duration),
        'codec': audio_stream.get('codec_name'),
        'sample_rate': int(audio_stream.get('sample_rate', 0)),
        'channels': int(audio_stream.get('channels', 0)),
    }
    logger.debug(f"Probed {audio_path}: {info['duration']:.2f}s {info['codec']}")
    return info


def get_narration_duration(audio_path: str) -> float:
    """Length of the narration track in seconds."""
    return probe_audio_info(audio_path)['duration']
