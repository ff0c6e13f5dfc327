"""Timeline Builder

Allocates wall-clock time to the hook/body/cta sections of a script and to the
images inside each section, producing the ordered clip sequence the
composition planner renders.
"""

from __future__ import annotations

import math
import uuid
from pathlib import Path
from typing import List, Dict, Optional, Sequence

from ..utils.logger import LoggerMixin
from .errors import InvalidTimelineAllocation
from .video_effects import DEFAULT_KEN_BURNS_INTENSITY, EffectCursor, NO_TRANSITION, transition_for_style
from .video_models import (
    ImageClip, ScriptSections, SectionImages, SectionType, TimelineSection, Transition, TransitionStyle
)

MIN_SECTION_DURATION = 2.0  # seconds
MIN_IMAGE_DURATION = 2.0    # seconds
MAX_IMAGE_DURATION = 5.0    # seconds

SECTION_ORDER = (SectionType.HOOK, SectionType.BODY, SectionType.CTA)


class TimelineBuilder(LoggerMixin):
    """
    Builds a timed timeline from script text, images and the voiceover length.

    - Section durations proportional to text length, floored and rescaled so
      they sum to the audio duration
    - Images spread evenly inside a section, the last one absorbing the remainder
    - Ken Burns effects cycled across the whole timeline
    - One global transition style, no transition into the very first clip

    A builder can be reused; the effect cursor is re-seeded on every build.
    """

    def __init__(self,
                 transition_style: TransitionStyle = TransitionStyle.SMOOTH,
                 ken_burns_enabled: bool = True,
                 ken_burns_intensity: float = DEFAULT_KEN_BURNS_INTENSITY,
                 min_section_duration: float = MIN_SECTION_DURATION,
                 min_image_duration: float = MIN_IMAGE_DURATION,
                 max_image_duration: float = MAX_IMAGE_DURATION):
        if min_image_duration > max_image_duration:
            raise ValueError("min_image_duration must not exceed max_image_duration")
        self.transition_style = TransitionStyle(transition_style)
        self.transition = transition_for_style(self.transition_style)
        self.cursor = EffectCursor(intensity=ken_burns_intensity, enabled=ken_burns_enabled)
        self.min_section_duration = min_section_duration
        self.min_image_duration = min_image_duration
        self.max_image_duration = max_image_duration

    @classmethod
    def from_config(cls, timeline_config, transition_style: Optional[TransitionStyle] = None,
                    ken_burns_enabled: Optional[bool] = None) -> "TimelineBuilder":
        """Create a builder from the `timeline` config section, with per-request overrides"""
        return cls(
            transition_style=transition_style or timeline_config.transition_style,
            ken_burns_enabled=(timeline_config.ken_burns_enabled
                               if ken_burns_enabled is None else ken_burns_enabled),
            ken_burns_intensity=timeline_config.ken_burns_intensity,
            min_section_duration=timeline_config.min_section_seconds,
            min_image_duration=timeline_config.min_image_seconds,
            max_image_duration=timeline_config.max_image_seconds,
        )

    def build_timeline(self,
                       script: ScriptSections,
                       images: SectionImages,
                       audio_duration: float) -> List[TimelineSection]:
        """
        Build the complete timeline.

        Args:
            script: Hook/body/cta text
            images: Ordered image paths per section (lists may be empty)
            audio_duration: Voiceover length in seconds

        Returns:
            Three contiguous sections whose durations sum to audio_duration

        Raises:
            InvalidTimelineAllocation: audio_duration is not a positive finite number
        """
        if audio_duration is None or not math.isfinite(audio_duration) or audio_duration <= 0:
            raise InvalidTimelineAllocation(f"Audio duration must be positive and finite, got {audio_duration}")

        self.cursor.reset()
        durations = self.allocate_section_durations(script, audio_duration)

        sections: List[TimelineSection] = []
        current_time = 0.0
        is_first_clip = True
        for section_type in SECTION_ORDER:
            duration = durations[section_type]
            clips = self._distribute_images(images.paths_for(section_type), duration, is_first_clip)
            if clips:
                is_first_clip = False
            sections.append(TimelineSection(
                id=str(uuid.uuid4()),
                type=section_type,
                text=script.text_for(section_type),
                start_time=current_time,
                duration=duration,
                images=clips,
                captions=[],  # populated by the caption generator
            ))
            current_time += duration

        clip_count = sum(len(section.images) for section in sections)
        self.logger.info(
            f"Timeline built: {audio_duration:.2f}s, "
            + ", ".join(f"{s.type.value}={s.duration:.2f}s/{len(s.images)} clips" for s in sections)
            + f", {clip_count} clips total"
        )
        return sections

    def allocate_section_durations(self, script: ScriptSections, audio_duration: float) -> Dict[SectionType, float]:
        """Proportional allocation with a per-section floor, rescaled to the exact audio length"""
        lengths = {section_type: len(script.text_for(section_type)) for section_type in SECTION_ORDER}
        total_length = sum(lengths.values())

        floored = {}
        for section_type in SECTION_ORDER:
            ratio = lengths[section_type] / total_length if total_length else 1.0 / len(SECTION_ORDER)
            floored[section_type] = max(self.min_section_duration, audio_duration * ratio)

        total_floored = sum(floored.values())
        scale = audio_duration / total_floored
        if scale < 1.0 and audio_duration < self.min_section_duration * len(SECTION_ORDER):
            self.logger.warning(
                f"Audio of {audio_duration:.2f}s is shorter than the section floors allow; "
                f"scaling every section by {scale:.3f}"
            )

        durations: Dict[SectionType, float] = {}
        allocated = 0.0
        for section_type in SECTION_ORDER[:-1]:
            durations[section_type] = floored[section_type] * scale
            allocated += durations[section_type]
        # Last section absorbs floating point remainder
        durations[SECTION_ORDER[-1]] = audio_duration - allocated

        for section_type, duration in durations.items():
            if not math.isfinite(duration) or duration <= 0:
                raise InvalidTimelineAllocation(
                    f"Section '{section_type.value}' allocated invalid duration {duration}"
                )
        return durations

    def _distribute_images(self,
                           image_paths: Sequence[Path],
                           section_duration: float,
                           is_first_clip: bool) -> List[ImageClip]:
        """Distribute images evenly across a section; the last image fills the remaining time"""
        if not image_paths:
            return []

        paths = list(image_paths)
        capacity = max(1, int((section_duration + 1e-9) // self.min_image_duration))
        if len(paths) > capacity:
            self.logger.warning(
                f"{len(paths)} images do not fit {section_duration:.2f}s at "
                f"{self.min_image_duration:.1f}s minimum; keeping the first {capacity}"
            )
            paths = paths[:capacity]

        base_duration = section_duration / len(paths)
        clamped_duration = max(self.min_image_duration, min(self.max_image_duration, base_duration))

        clips: List[ImageClip] = []
        current_time = 0.0
        for index, path in enumerate(paths):
            is_last = index == len(paths) - 1
            duration = section_duration - current_time if is_last else clamped_duration
            clips.append(ImageClip(
                id=str(uuid.uuid4()),
                path=Path(path),
                start_time=current_time,
                duration=duration,
                effect=self.cursor.next(),
                transition=self._transition(is_first_clip and index == 0),
            ))
            current_time += duration
        return clips

    def _transition(self, is_first_clip: bool) -> Transition:
        return NO_TRANSITION if is_first_clip else self.transition
