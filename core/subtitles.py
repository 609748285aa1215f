#!/usr/bin/env python3
"""
Subtitle rendering driven by the playback clock.

Two modes are supported:
- highlight: show the transcript segment under the clock with the word
  being spoken marked
- typewriter: type the slide texts out sentence by sentence at a fixed
  character cadence, independent of the narration timestamps
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Optional

from .transcript import Transcript

logger = logging.getLogger(__name__)

SENTENCE_PATTERN = re.compile(r'[^.!?]+[.!?]+|[^.!?]+$')
TRAILING_PUNCTUATION = re.compile(r'[.!?]+$')


@dataclass
class SubtitleLine:
    """Subtitle state at one instant of the narration."""
    segment_index: Optional[int]
    word_index: Optional[int]
    text: str = ""


class SubtitleTrack:
    """Looks up the segment and word spoken at a narration time."""

    def __init__(self, transcript: Transcript, highlight_marker: str = "*"):
        self.transcript = transcript
        self.highlight_marker = highlight_marker

    def locate(self, timestamp: float) -> SubtitleLine:
        """
        Find the subtitle line for a narration time.

        Gaps between segments produce an empty line; gaps between words of
        the active segment show the segment without a highlighted word.
        """
        seg_idx = self.transcript.segment_at(timestamp)
        if seg_idx is None:
            return SubtitleLine(segment_index=None, word_index=None)

        word_idx = self.transcript.word_at(seg_idx, timestamp)
        return SubtitleLine(
            segment_index=seg_idx,
            word_index=word_idx,
            text=self._format(seg_idx, word_idx)
        )

    def _format(self, seg_idx: int, word_idx: Optional[int]) -> str:
        segment = self.transcript.segments[seg_idx]
        if word_idx is None or not segment.words:
            return segment.text
        parts = []
        for i, word in enumerate(segment.words):
            text = word.text.strip()
            if i == word_idx:
                text = f"{self.highlight_marker}{text}{self.highlight_marker}"
            parts.append(text)
        return " ".join(parts)


def split_sentences(text: str) -> List[str]:
    """Split text into display sentences with trailing punctuation removed."""
    sentences = []
    for match in SENTENCE_PATTERN.findall(text):
        sentence = TRAILING_PUNCTUATION.sub('', match.strip())
        if sentence:
            sentences.append(sentence)
    return sentences


class SubtitleTypewriter:
    """
    Types sentences out one character at a time.

    Each character stays on screen for char_delay seconds (space_delay after
    a space) before the next one appears. A finished sentence is held for
    sentence_pause seconds, then cleared and the next one starts.
    """

    def __init__(self, text: str, char_delay: float = 0.042,
                 space_delay: float = 0.040, sentence_pause: float = 1.0):
        self.sentences = split_sentences(text)
        self.char_delay = char_delay
        self.space_delay = space_delay
        self.sentence_pause = sentence_pause
        self.reset()

    def reset(self):
        self.sentence_index = 0
        self.char_index = 0
        self.text = ""
        self._wait = 0.0
        self._holding = False

    @property
    def finished(self) -> bool:
        return self.sentence_index >= len(self.sentences)

    def advance(self, dt: float) -> str:
        """
        Move the typewriter forward by dt seconds.

        Returns:
            Text currently on screen
        """
        self._wait -= dt
        while self._wait <= 0 and not self.finished:
            self._step()
        return self.text

    def _step(self):
        sentence = self.sentences[self.sentence_index]
        if self.char_index < len(sentence):
            if self.char_index == 0:
                self.text = ""
            char = sentence[self.char_index]
            self.text += char
            self.char_index += 1
            self._wait += self.space_delay if char == ' ' else self.char_delay
        elif not self._holding:
            self._holding = True
            self._wait += self.sentence_pause
        else:
            self.text = ""
            self.sentence_index += 1
            self.char_index = 0
            self._holding = False
