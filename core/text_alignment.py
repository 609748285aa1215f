#!/usr/bin/env python3
"""
Slide-to-narration text alignment.

Assigns each slide a start time on the narration clock by locating the
opening words of its text in the word-timestamped transcript. Matching is a
normalized substring containment test over a sliding window of transcript
words, so punctuation, casing and tokenization differences between the
slide text and the speech provider's output do not matter.

Known limitation: short or repeated openings (years in particular) can match
an earlier occurrence in the narration. Matching stops at the first hit.
"""

import re
import logging
import unicodedata
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from .slides import Slide
from .transcript import Transcript, Word

logger = logging.getLogger(__name__)

DEFAULT_QUERY_WORDS = 4
DEFAULT_WINDOW_WORDS = 6

_NON_ALNUM = re.compile(r'[^a-z0-9]')


@dataclass
class AlignmentReport:
    """Result of aligning a deck against a transcript."""
    slides: List[Slide]
    unmatched: List[Tuple[int, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return len(self.slides) - len(self.unmatched)

    @property
    def start_times(self) -> List[Optional[float]]:
        return [slide.start_time for slide in self.slides]


def normalize_text(text: str) -> str:
    """
    Reduce text to a contiguous lowercase alphanumeric key.

    Accented letters fold to their base letter; apostrophes (straight or
    curly), punctuation and whitespace are dropped. The same function is
    used for slide queries and transcript windows.
    """
    folded = unicodedata.normalize('NFKD', text).lower()
    return _NON_ALNUM.sub('', folded)


def find_start_time(
    query: str,
    words: List[Word],
    window_words: int = DEFAULT_WINDOW_WORDS,
    normalized_words: Optional[List[str]] = None
) -> Optional[float]:
    """
    Find the start time of the first transcript window containing a query.

    Args:
        query: Already-normalized search key
        words: Flattened transcript words
        window_words: Number of words per window
        normalized_words: Pre-normalized word texts (optional cache)

    Returns:
        start_time of the first word of the first matching window, or None
    """
    if not query:
        return None
    if normalized_words is None:
        normalized_words = [normalize_text(w.text) for w in words]

    for i in range(len(words)):
        window = ''.join(normalized_words[i:i + window_words])
        if query in window:
            return words[i].start_time
    return None


def slide_query(text: str, query_words: int = DEFAULT_QUERY_WORDS) -> str:
    """Normalized search key built from the first words of a slide's text."""
    return normalize_text(' '.join(text.split()[:query_words]))


def align_slides(
    slides: List[Slide],
    transcript: Transcript,
    query_words: int = DEFAULT_QUERY_WORDS,
    window_words: int = DEFAULT_WINDOW_WORDS
) -> AlignmentReport:
    """
    Assign start times and durations to slides from a transcript.

    Slides flagged with override_start keep their start time. Unmatched
    slides are left without a start time and sort to the end; the first
    slide of the deck defaults to 0.0 when unmatched. Durations are the gap
    to the next slide's start; the final slide keeps its explicit duration.

    Args:
        slides: Slides in deck order (not modified)
        transcript: Word-timestamped narration
        query_words: Leading slide words used as the search key
        window_words: Transcript words per sliding window

    Returns:
        AlignmentReport with the sorted, timed slides
    """
    words = transcript.words
    normalized_words = [normalize_text(w.text) for w in words]
    report = AlignmentReport(slides=[])
    timed: List[Slide] = []

    for index, slide in enumerate(slides):
        if slide.override_start and slide.start_time is not None:
            timed.append(replace(slide))
            continue

        start_time = find_start_time(
            slide_query(slide.text, query_words), words, window_words, normalized_words
        )

        if start_time is None and index == 0:
            logger.info("First slide not found in narration, starting it at 0.0s")
            start_time = 0.0
        elif start_time is None:
            message = f"Slide {index} not found in narration: \"{slide.text[:40]}\""
            logger.warning(message)
            report.unmatched.append((index, slide.text))
            report.warnings.append(message)
        else:
            logger.debug(f"Slide {index} matched at {start_time:.2f}s")

        timed.append(replace(slide, start_time=start_time))

    # Stable sort keeps deck order among equal and unmatched start times
    timed.sort(key=lambda s: (s.start_time is None, s.start_time or 0.0))
    report.slides = assign_durations(timed, report.warnings)

    logger.info(f"Aligned {report.matched_count}/{len(slides)} slides to narration")
    return report


def assign_durations(slides: List[Slide], warnings: Optional[List[str]] = None) -> List[Slide]:
    """
    Derive each slide's duration from the next slide's start time.

    Slides whose successor has no start time, and the final slide, keep
    their explicit duration.
    """
    result = []
    for i, slide in enumerate(slides):
        if i + 1 < len(slides):
            next_start = slides[i + 1].start_time
            if slide.start_time is not None and next_start is not None:
                duration = next_start - slide.start_time
                if duration <= 0 and warnings is not None:
                    message = (f"Slides at {slide.start_time:.2f}s share a start time; "
                               f"\"{slide.text[:40]}\" gets no screen time")
                    logger.warning(message)
                    warnings.append(message)
                slide = replace(slide, duration=duration)
        result.append(slide)
    return result


def fill_final_duration(slides: List[Slide], narration_duration: Optional[float]) -> List[Slide]:
    """
    Give the last timed slide the rest of the narration when it has no duration.

    Args:
        slides: Aligned slides
        narration_duration: Narration length in seconds, if known

    Returns:
        Slides with the final duration filled in where possible
    """
    if narration_duration is None:
        return slides

    timed = [i for i, s in enumerate(slides) if s.start_time is not None]
    if not timed:
        return slides

    last = timed[-1]
    slide = slides[last]
    if slide.duration is None and narration_duration > slide.start_time:
        slides = list(slides)
        slides[last] = replace(slide, duration=narration_duration - slide.start_time)
        logger.debug(f"Final slide runs to narration end: {slides[last].duration:.2f}s")
    return slides


def check_alignment(slides: List[Slide]) -> List[str]:
    """
    Report ordering and duration problems in an aligned deck.

    Returns:
        List of human-readable problems (empty when the deck is consistent)
    """
    problems = []
    previous = None
    for i, slide in enumerate(slides):
        if slide.start_time is None:
            problems.append(f"Slide {i} has no start time")
            continue
        if previous is not None and slide.start_time < previous:
            problems.append(f"Slide {i} starts before slide {i - 1}")
        if i + 1 < len(slides) and slide.duration is not None and slide.duration <= 0:
            problems.append(f"Slide {i} has non-positive duration {slide.duration:.2f}s")
        previous = slide.start_time
    return problems
