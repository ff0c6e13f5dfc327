"""
Caption Generator

Word-by-word caption timing estimated from the script text (no speech
recognition): each word gets a share of its section proportional to its
character length. Also renders the caption track as SRT.
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence

from .errors import InvalidTimelineAllocation
from .video_models import (
    CaptionStyle, CaptionStyleType, CaptionWord, PlatformProfile, ScriptSections, SectionType, TimelineSection
)

logger = logging.getLogger(__name__)

DEFAULT_WORDS_PER_MINUTE = 150.0
EMPHASIS_STYLE = "emphasis"
PACING_TOLERANCE = 0.5

EMPHASIS_WORDS = {
    'amazing', 'incredible', 'secret', 'shocking', 'never', 'always',
    'best', 'worst', 'only', 'must', 'stop', 'wait', 'listen',
    'important', 'critical', 'urgent', 'warning', 'attention',
}

CAPTION_STYLES = {
    CaptionStyleType.HORMOZI: CaptionStyle(
        type=CaptionStyleType.HORMOZI,
        font_family="Arial Black",
        font_size=64,
        stroke_width=4,
        position="center",
        animation="pop",
    ),
    CaptionStyleType.CLASSIC: CaptionStyle(
        type=CaptionStyleType.CLASSIC,
        font_family="Arial",
        font_size=48,
        stroke_width=2,
        background_opacity=0.7,
        position="bottom",
        animation="fade",
    ),
    CaptionStyleType.MINIMAL: CaptionStyle(
        type=CaptionStyleType.MINIMAL,
        font_family="Helvetica",
        font_size=42,
        stroke_width=1,
        background_color="transparent",
        position="bottom",
    ),
}


def get_caption_style(style_type: CaptionStyleType) -> CaptionStyle:
    return CAPTION_STYLES[CaptionStyleType(style_type)]


def safe_y_position(style: CaptionStyle, profile: PlatformProfile) -> int:
    """Vertical caption position that stays clear of the platform's UI overlays"""
    if style.position == "top":
        return profile.safe_zone.top + 100
    if style.position == "center":
        return profile.height // 2
    return profile.height - profile.safe_zone.bottom - 100


def tokenize(text: str) -> List[str]:
    return [word for word in text.split() if word]


def estimate_reading_time(text: str, words_per_minute: float = DEFAULT_WORDS_PER_MINUTE) -> float:
    """Seconds needed to read (or narrate) text at the given pace"""
    if words_per_minute <= 0:
        raise ValueError("words_per_minute must be positive")
    return len(tokenize(text)) / words_per_minute * 60.0


class CaptionGenerator:
    """
    Generates timed caption words for timeline sections.

    Timings are absolute (seconds from video start): the first word of a
    section starts at the section start and the last word ends exactly at the
    section end, with consecutive words back-to-back.
    """

    def __init__(self,
                 style: CaptionStyleType = CaptionStyleType.HORMOZI,
                 words_per_minute: float = DEFAULT_WORDS_PER_MINUTE,
                 emphasis_words: Optional[Iterable[str]] = None):
        self.style = get_caption_style(style)
        self.words_per_minute = words_per_minute
        self.emphasis_words = set(EMPHASIS_WORDS)
        if emphasis_words:
            self.emphasis_words.update(word.lower() for word in emphasis_words)

    def generate(self, section_text: str, section_start: float, section_duration: float) -> List[CaptionWord]:
        """
        Time each word of a section.

        Args:
            section_text: Section script text
            section_start: Absolute section start in seconds
            section_duration: Section length in seconds

        Returns:
            Ordered, non-overlapping caption words spanning the section exactly
        """
        if not math.isfinite(section_start) or section_start < 0:
            raise InvalidTimelineAllocation(f"Invalid section start: {section_start}")
        if not math.isfinite(section_duration) or section_duration <= 0:
            raise InvalidTimelineAllocation(f"Invalid section duration: {section_duration}")

        words = tokenize(section_text)
        if not words:
            return []

        weights = [len(word) for word in words]
        total_weight = sum(weights)
        section_end = section_start + section_duration

        captions: List[CaptionWord] = []
        cumulative = 0
        start = section_start
        for index, (word, weight) in enumerate(zip(words, weights)):
            cumulative += weight
            if index == len(words) - 1:
                end = section_end
            else:
                end = section_start + section_duration * cumulative / total_weight
            captions.append(CaptionWord(
                text=word,
                start_time=start,
                end_time=end,
                style=EMPHASIS_STYLE if self.is_emphasis_word(word) else None,
            ))
            start = end

        return captions

    def apply(self, sections: Sequence[TimelineSection]) -> List[TimelineSection]:
        """Return copies of the sections with their captions populated"""
        result = []
        for section in sections:
            captions = self.generate(section.text, section.start_time, section.duration)
            result.append(section.model_copy(update={"captions": captions}))
        total_words = sum(len(section.captions) for section in result)
        logger.info(f"Generated {total_words} caption words across {len(result)} sections")
        return result

    def is_emphasis_word(self, word: str) -> bool:
        clean = "".join(ch for ch in word.lower() if ch.isalpha())
        return clean in self.emphasis_words

    def reading_time(self, text: str) -> float:
        return estimate_reading_time(text, self.words_per_minute)

    def check_pacing(self, script: ScriptSections, audio_duration: float,
                     tolerance: float = PACING_TOLERANCE) -> float:
        """
        Compare the script's estimated narration time with the voice track.

        Logs a warning when they differ by more than `tolerance` (a fraction
        of the audio duration); caption timing is still derived from the audio.

        Returns:
            Estimated narration time in seconds
        """
        words = sum(script.word_count(section) for section in SectionType)
        estimate = words / self.words_per_minute * 60.0
        if audio_duration > 0 and abs(estimate - audio_duration) > tolerance * audio_duration:
            logger.warning(
                f"Script reads in about {estimate:.1f}s ({words} words at {self.words_per_minute:.0f} wpm) "
                f"but the voiceover is {audio_duration:.1f}s; captions may drift from the narration"
            )
        return estimate


def format_srt_timestamp(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)"""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def to_srt(sections: Sequence[TimelineSection]) -> str:
    """Render the caption track of all sections as sequentially numbered SRT entries"""
    entries = []
    index = 1
    for section in sections:
        for caption in section.captions:
            entries.append(
                f"{index}\n"
                f"{format_srt_timestamp(caption.start_time)} --> {format_srt_timestamp(caption.end_time)}\n"
                f"{caption.text}\n"
            )
            index += 1
    return "\n".join(entries)
