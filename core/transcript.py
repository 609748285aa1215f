#!/usr/bin/env python3
"""
Word-timestamped narration transcript model.

A transcript is an ordered list of segments (sentence or phrase groupings
chosen by the speech provider), each holding its own ordered, timestamped
words. Slide alignment works on the flattened word sequence while subtitle
highlighting looks up the segment and word under the playback clock.
"""

import bisect
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict

from .config_validation import ConfigurationValidator

logger = logging.getLogger(__name__)


class TranscriptError(Exception):
    """Raised when a transcript is missing, malformed or empty."""
    pass


@dataclass
class Word:
    """A single narrated word with its time span in seconds."""
    text: str
    start_time: float
    end_time: float


@dataclass
class Segment:
    """A provider-defined sentence or phrase grouping of words."""
    start_time: float
    end_time: float
    words: List[Word] = field(default_factory=list)
    text: str = ""

    def __post_init__(self):
        if not self.text and self.words:
            self.text = " ".join(w.text.strip() for w in self.words)


@dataclass
class Transcript:
    """Ordered segments of a single narration track."""
    segments: List[Segment]

    def __post_init__(self):
        self.segments = sorted(self.segments, key=lambda s: s.start_time)
        self._segment_starts = [s.start_time for s in self.segments]

    @property
    def words(self) -> List[Word]:
        """Flattened word sequence across all segments."""
        return [word for segment in self.segments for word in segment.words]

    @property
    def duration(self) -> float:
        return max((s.end_time for s in self.segments), default=0.0)

    def segment_at(self, timestamp: float) -> Optional[int]:
        """
        Locate the segment whose [start_time, end_time] contains a timestamp.

        Args:
            timestamp: Narration time in seconds

        Returns:
            Segment index, or None when the timestamp falls in a pause
        """
        idx = bisect.bisect_right(self._segment_starts, timestamp) - 1
        if idx < 0:
            return None
        if self.segments[idx].start_time <= timestamp <= self.segments[idx].end_time:
            return idx
        return None

    def word_at(self, segment_index: int, timestamp: float) -> Optional[int]:
        """Locate the word of a segment whose interval contains a timestamp."""
        words = self.segments[segment_index].words
        starts = [w.start_time for w in words]
        idx = bisect.bisect_right(starts, timestamp) - 1
        if idx < 0:
            return None
        if words[idx].start_time <= timestamp <= words[idx].end_time:
            return idx
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {'segments': [asdict(s) for s in self.segments]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transcript':
        segments = []
        for seg in data.get('segments', []):
            words = [
                Word(
                    text=str(w['text']),
                    start_time=float(w['start_time']),
                    end_time=float(w['end_time'])
                )
                for w in seg.get('words') or []
            ]
            words.sort(key=lambda w: w.start_time)
            segments.append(Segment(
                start_time=float(seg['start_time']),
                end_time=float(seg['end_time']),
                words=words,
                text=seg.get('text', '').strip()
            ))
        return cls(segments=segments)


def load_transcript(transcript_path: str, validate: bool = True) -> Transcript:
    """
    Load a word-timestamped transcript from JSON.

    Args:
        transcript_path: Path to the transcript JSON file
        validate: Validate against the transcript schema first

    Returns:
        Parsed Transcript

    Raises:
        TranscriptError: If the transcript is absent, malformed or has no words
    """
    path = Path(transcript_path)
    if not path.exists():
        raise TranscriptError(f"Transcript not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise TranscriptError(f"Failed to parse transcript {path}: {e}")

    if validate:
        is_valid, errors = ConfigurationValidator().validate_config(data, "transcript")
        if not is_valid:
            raise TranscriptError(f"Invalid transcript {path}: " + "; ".join(errors))

    try:
        transcript = Transcript.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptError(f"Invalid transcript {path}: {e}")

    if not transcript.words:
        raise TranscriptError(f"Transcript has no timestamped words: {path}")

    logger.info(f"Loaded transcript: {len(transcript.segments)} segments, "
                f"{len(transcript.words)} words, {transcript.duration:.1f}s")
    return transcript
