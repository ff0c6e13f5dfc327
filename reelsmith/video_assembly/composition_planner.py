"""
Composition Planner

Combines the timeline, the caption track and the audio mix plan with a
platform export profile into one CompositionPlan: the ordered input media, a
filter graph of labeled stages and the output spec FFmpeg renders from.

Graph conventions:
- Images are inputs 0..n-1 in timeline order, then voiceover, then background
- Raw inputs are referenced as ``N:v`` / ``N:a``, every other label is
  produced by exactly one stage and consumed by at most one stage
- Time spans without images are filled with black ``color`` segments
"""

import heapq
import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from ..utils.logger import LoggerMixin
from .captions import CAPTION_STYLES, safe_y_position
from .errors import LabelGraphError
from .video_effects import xfade_name, zoompan_params
from .video_models import (
    AudioMixPlan, CaptionStyle, CaptionStyleType, CaptionWord, CompositionPlan, EffectType, FilterStage,
    ImageClip, MediaInput, MediaKind, OutputSpec, PlatformProfile, TimelineSection, Transition,
    TransitionType, format_number, is_raw_input, raw_input_index
)

EPSILON = 1e-6
VIDEO_OUTPUT_LABEL = "video_out"
FILLER_COLOR = "black"

_BITRATE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)([kKmMgG]?)$")

# Text expansion, option value, filtergraph
DRAWTEXT_ESCAPE_LEVELS = ("\\%", "\\':", "\\'[],;")


@dataclass
class VisualSegment:
    """A contiguous span of the video: one image clip or a black filler"""
    start: float
    duration: float
    transition: Transition
    clip: Optional[ImageClip] = None
    blend: float = 0.0          # effective transition into this segment
    render_length: float = 0.0  # duration plus half of each adjacent blend

    @property
    def is_filler(self) -> bool:
        return self.clip is None


def caption_track(sections: Sequence[TimelineSection]) -> List[CaptionWord]:
    """Flatten the captions of all sections in playback order"""
    return [caption for section in sections for caption in section.captions]


def _backslash_escape(text: str, specials: str) -> str:
    return "".join(f"\\{ch}" if ch in specials else ch for ch in text)


def escape_drawtext(text: str) -> str:
    """
    Escape caption text for an unquoted drawtext ``text`` value in -filter_complex.

    The value is unescaped three times before it is drawn: by drawtext's text
    expansion, by the filter option parser and by the filtergraph parser, so
    each level's special characters are escaped innermost first.
    """
    for specials in DRAWTEXT_ESCAPE_LEVELS:
        text = _backslash_escape(text, specials)
    return text


def ffmpeg_color(color: str) -> str:
    """#RRGGBB -> 0xRRGGBB; named colors pass through"""
    return f"0x{color[1:]}" if color.startswith("#") else color


def double_bitrate(bitrate: str) -> str:
    """Buffer size for a bitrate string, e.g. "8M" -> "16M" """
    match = _BITRATE_PATTERN.match(bitrate.strip())
    if not match:
        raise ValueError(f"Invalid bitrate '{bitrate}'")
    value = float(match.group(1)) * 2
    number = str(int(value)) if value.is_integer() else format_number(value)
    return f"{number}{match.group(2)}"


def order_stages(stages: Sequence[FilterStage], input_count: int) -> List[FilterStage]:
    """
    Topologically order stages by their label dependencies.

    Kahn's algorithm with the original position as tie-break, so an already
    valid order is returned unchanged.

    Raises:
        LabelGraphError: duplicate or undefined label, a label consumed twice,
            a raw input index out of range, or a dependency cycle
    """
    producers: Dict[str, int] = {}
    for index, stage in enumerate(stages):
        if not stage.outputs:
            raise LabelGraphError(f"Stage '{stage.name}' produces no output label")
        for label in stage.outputs:
            if is_raw_input(label):
                raise LabelGraphError(f"Stage '{stage.name}' output '{label}' uses raw input syntax", label)
            if label in producers:
                raise LabelGraphError(f"Duplicate output label '{label}'", label)
            producers[label] = index

    consumed: Set[str] = set()
    dependencies: List[Set[int]] = [set() for _ in stages]
    dependents: List[Set[int]] = [set() for _ in stages]
    for index, stage in enumerate(stages):
        for label in stage.inputs:
            if is_raw_input(label):
                _check_raw_input(stage, label, input_count)
                continue
            if label not in producers:
                raise LabelGraphError(f"Stage '{stage.name}' references undefined label '{label}'", label)
            if label in consumed:
                raise LabelGraphError(f"Label '{label}' is consumed more than once", label)
            consumed.add(label)
            producer = producers[label]
            if producer == index:
                raise LabelGraphError(f"Stage '{stage.name}' consumes its own output '{label}'", label)
            dependencies[index].add(producer)
            dependents[producer].add(index)

    pending = [len(deps) for deps in dependencies]
    ready = [index for index, count in enumerate(pending) if count == 0]
    heapq.heapify(ready)
    ordered: List[int] = []
    while ready:
        index = heapq.heappop(ready)
        ordered.append(index)
        for dependent in dependents[index]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(ordered) != len(stages):
        stuck = sorted({label for index, count in enumerate(pending) if count > 0
                        for label in stages[index].outputs})
        raise LabelGraphError(f"Filter graph has a dependency cycle involving: {', '.join(stuck)}")

    return [stages[index] for index in ordered]


def validate_label_graph(stages: Sequence[FilterStage], input_count: int, outputs: Sequence[str]) -> None:
    """
    Check an ordered stage list: every input is a raw input or the output of
    an earlier stage, labels are unique, each label is consumed at most once,
    and the final outputs exist and are left unconsumed.
    """
    defined: Set[str] = set()
    consumed: Set[str] = set()
    for stage in stages:
        for label in stage.inputs:
            if is_raw_input(label):
                _check_raw_input(stage, label, input_count)
                continue
            if label not in defined:
                raise LabelGraphError(
                    f"Stage '{stage.name}' references '{label}' before it is defined", label
                )
            if label in consumed:
                raise LabelGraphError(f"Label '{label}' is consumed more than once", label)
            consumed.add(label)
        for label in stage.outputs:
            if label in defined:
                raise LabelGraphError(f"Duplicate output label '{label}'", label)
            defined.add(label)

    for label in outputs:
        if is_raw_input(label):
            index = raw_input_index(label)
            if index >= input_count:
                raise LabelGraphError(f"Output '{label}' refers to missing input {index}", label)
        elif label not in defined:
            raise LabelGraphError(f"Output label '{label}' is never produced", label)
        elif label in consumed:
            raise LabelGraphError(f"Output label '{label}' is consumed by a stage", label)


def _check_raw_input(stage: FilterStage, label: str, input_count: int) -> None:
    index = raw_input_index(label)
    if index >= input_count:
        raise LabelGraphError(
            f"Stage '{stage.name}' references input {index} but only {input_count} inputs exist", label
        )


class CompositionPlanner(LoggerMixin):
    """
    Builds the FFmpeg composition plan for one video.

    Each image segment runs scale -> crop -> setsar -> zoompan|fps -> trim ->
    setpts -> format; segments are joined with xfade for blend transitions
    and concat for cuts, captions are burned in with chained drawtext stages,
    and the audio mix stages are spliced in with remapped input indices.
    """

    def __init__(self,
                 caption_style: Optional[CaptionStyle] = None,
                 font_file: Optional[str] = None,
                 preset: str = "medium",
                 crf: int = 23,
                 audio_sample_rate: int = 48000):
        self.caption_style = caption_style or CAPTION_STYLES[CaptionStyleType.HORMOZI]
        self.font_file = font_file
        self.preset = preset
        self.crf = crf
        self.audio_sample_rate = audio_sample_rate

    @classmethod
    def from_config(cls, config) -> "CompositionPlanner":
        """Create a planner from the `captions` and `video` config sections"""
        return cls(
            caption_style=CAPTION_STYLES[config.captions.style],
            font_file=config.captions.font_file,
            preset=config.video.preset,
            crf=config.video.crf,
            audio_sample_rate=config.video.audio_sample_rate,
        )

    def compose(self,
                timeline: Sequence[TimelineSection],
                captions: Optional[Sequence[CaptionWord]],
                audio_plan: AudioMixPlan,
                profile: PlatformProfile) -> CompositionPlan:
        """
        Compose the full render plan.

        Args:
            timeline: Contiguous timeline sections
            captions: Caption words on the absolute timeline (defaults to the
                sections' own captions)
            audio_plan: Audio mix plan using the voice=1 / background=2 convention
            profile: Platform export profile

        Returns:
            CompositionPlan with topologically ordered stages

        Raises:
            LabelGraphError: the assembled graph is inconsistent
        """
        total_duration = sum(section.duration for section in timeline)
        if not math.isfinite(total_duration) or total_duration <= 0:
            raise ValueError(f"Timeline duration must be positive, got {total_duration}")
        if total_duration > profile.max_duration_seconds:
            self.logger.warning(
                f"Timeline of {total_duration:.1f}s exceeds the {profile.platform} limit "
                f"of {profile.max_duration_seconds:.0f}s"
            )

        words = list(captions) if captions is not None else caption_track(timeline)

        segments = self.build_segments(timeline, total_duration)
        self._assign_blends(segments)

        inputs: List[MediaInput] = []
        stages: List[FilterStage] = []
        segment_labels: List[str] = []
        for position, segment in enumerate(segments):
            if segment.is_filler:
                segment_labels.append(self._filler_stages(position, segment, profile, stages))
            else:
                input_index = len(inputs)
                inputs.append(MediaInput(path=segment.clip.path, kind=MediaKind.IMAGE,
                                         duration=segment.render_length))
                segment_labels.append(self._image_stages(input_index, position, segment, profile, stages))

        video_label = self._join_segments(segments, segment_labels, stages)
        video_label = self._caption_stages(words, video_label, profile, stages)
        stages.append(FilterStage(
            name="format",
            inputs=[video_label],
            outputs=[VIDEO_OUTPUT_LABEL],
            params={"pix_fmts": profile.pixel_format},
        ))

        image_count = len(inputs)
        mapping = {audio_plan.voice_input_index: image_count}
        inputs.append(MediaInput(path=audio_plan.voiceover_path, kind=MediaKind.VOICEOVER))
        if audio_plan.background_music_path is not None:
            mapping[audio_plan.background_input_index] = image_count + 1
            inputs.append(MediaInput(path=audio_plan.background_music_path, kind=MediaKind.BACKGROUND))
        audio = audio_plan.remap_inputs(mapping)
        stages.extend(audio.stages)

        ordered = order_stages(stages, len(inputs))
        validate_label_graph(ordered, len(inputs), [VIDEO_OUTPUT_LABEL, audio.output_label])

        plan = CompositionPlan(
            inputs=inputs,
            stages=ordered,
            video_output=VIDEO_OUTPUT_LABEL,
            audio_output=audio.output_label,
            output=self._output_spec(profile, total_duration),
        )
        self.logger.info(
            f"Composition planned: {image_count} images, "
            f"{sum(1 for s in segments if s.is_filler)} fillers, {len(words)} captions, "
            f"{len(ordered)} stages, {total_duration:.2f}s @ {profile.resolution}"
        )
        return plan

    def build_segments(self, timeline: Sequence[TimelineSection], total_duration: float) -> List[VisualSegment]:
        """Lay out image clips on the absolute timeline, filling gaps with black"""
        segments: List[VisualSegment] = []
        cursor = 0.0
        for section in timeline:
            for clip in section.images:
                start = section.start_time + clip.start_time
                if start - cursor > EPSILON:
                    segments.append(self._filler(cursor, start - cursor))
                segments.append(VisualSegment(start=start, duration=clip.duration,
                                              transition=clip.transition, clip=clip))
                cursor = start + clip.duration
        if total_duration - cursor > EPSILON:
            segments.append(self._filler(cursor, total_duration - cursor))
        return segments

    @staticmethod
    def _filler(start: float, duration: float) -> VisualSegment:
        return VisualSegment(start=start, duration=duration,
                             transition=Transition(type=TransitionType.CUT, duration=0.0))

    def _assign_blends(self, segments: List[VisualSegment]) -> None:
        """Clamp each blend to both neighbours and derive rendered lengths"""
        for position, segment in enumerate(segments):
            if position == 0 or not segment.transition.is_blend:
                segment.blend = 0.0
                continue
            previous = segments[position - 1]
            blend = min(segment.transition.duration, previous.duration, segment.duration)
            if blend < segment.transition.duration:
                self.logger.debug(
                    f"Transition at {segment.start:.2f}s clamped from "
                    f"{segment.transition.duration:.2f}s to {blend:.2f}s"
                )
            segment.blend = max(0.0, blend)

        for position, segment in enumerate(segments):
            blend_out = segments[position + 1].blend if position + 1 < len(segments) else 0.0
            segment.render_length = segment.duration + segment.blend / 2 + blend_out / 2

    def _image_stages(self, input_index: int, position: int, segment: VisualSegment,
                      profile: PlatformProfile, stages: List[FilterStage]) -> str:
        width, height, fps = profile.width, profile.height, profile.fps
        prefix = f"img{input_index}"
        effect = segment.clip.effect

        stages.append(FilterStage(
            name="scale", inputs=[f"{input_index}:v"], outputs=[f"{prefix}_scaled"],
            params={"w": width, "h": height, "force_original_aspect_ratio": "increase"},
        ))
        stages.append(FilterStage(
            name="crop", inputs=[f"{prefix}_scaled"], outputs=[f"{prefix}_cropped"],
            params={"w": width, "h": height},
        ))
        stages.append(FilterStage(
            name="setsar", inputs=[f"{prefix}_cropped"], outputs=[f"{prefix}_sar"],
            params={"sar": 1},
        ))
        if effect.type != EffectType.NONE:
            frames = math.ceil(segment.render_length * fps)
            stages.append(FilterStage(
                name="zoompan", inputs=[f"{prefix}_sar"], outputs=[f"{prefix}_motion"],
                params=zoompan_params(effect, frames, width, height, fps),
            ))
        else:
            stages.append(FilterStage(
                name="fps", inputs=[f"{prefix}_sar"], outputs=[f"{prefix}_motion"],
                params={"fps": fps},
            ))
        stages.append(FilterStage(
            name="trim", inputs=[f"{prefix}_motion"], outputs=[f"{prefix}_trimmed"],
            params={"duration": float(segment.render_length)},
        ))
        stages.append(FilterStage(
            name="setpts", inputs=[f"{prefix}_trimmed"], outputs=[f"{prefix}_pts"],
            params={"expr": "PTS-STARTPTS"},
        ))
        # xfade and concat need a constant frame rate on every segment
        stages.append(FilterStage(
            name="fps", inputs=[f"{prefix}_pts"], outputs=[f"{prefix}_cfr"],
            params={"fps": fps},
        ))
        label = f"seg{position}"
        stages.append(FilterStage(
            name="format", inputs=[f"{prefix}_cfr"], outputs=[label],
            params={"pix_fmts": profile.pixel_format},
        ))
        return label

    @staticmethod
    def _filler_stages(position: int, segment: VisualSegment, profile: PlatformProfile,
                       stages: List[FilterStage]) -> str:
        source = f"fill{position}"
        stages.append(FilterStage(
            name="color", inputs=[], outputs=[source],
            params={"c": FILLER_COLOR, "s": profile.resolution, "r": profile.fps,
                    "d": float(segment.render_length)},
        ))
        label = f"seg{position}"
        stages.append(FilterStage(
            name="format", inputs=[source], outputs=[label],
            params={"pix_fmts": profile.pixel_format},
        ))
        return label

    @staticmethod
    def _join_segments(segments: Sequence[VisualSegment], labels: Sequence[str],
                       stages: List[FilterStage]) -> str:
        if len(labels) == 1:
            return labels[0]

        if all(segment.blend <= 0 for segment in segments):
            stages.append(FilterStage(
                name="concat", inputs=list(labels), outputs=["timeline"],
                params={"n": len(labels), "v": 1, "a": 0},
            ))
            return "timeline"

        current = labels[0]
        current_length = segments[0].render_length
        for position in range(1, len(segments)):
            segment = segments[position]
            output = f"join{position}"
            if segment.blend > 0:
                stages.append(FilterStage(
                    name="xfade", inputs=[current, labels[position]], outputs=[output],
                    params={
                        "transition": xfade_name(segment.transition.type),
                        "duration": float(segment.blend),
                        "offset": float(current_length - segment.blend),
                    },
                ))
                current_length += segment.render_length - segment.blend
            else:
                stages.append(FilterStage(
                    name="concat", inputs=[current, labels[position]], outputs=[output],
                    params={"n": 2, "v": 1, "a": 0},
                ))
                current_length += segment.render_length
            current = output
        return current

    def _caption_stages(self, words: Sequence[CaptionWord], video_label: str,
                        profile: PlatformProfile, stages: List[FilterStage]) -> str:
        style = self.caption_style
        y_position = safe_y_position(style, profile)
        current = video_label
        for index, word in enumerate(words):
            if not word.text.strip():
                continue
            color = style.emphasis_color if word.is_emphasis else style.font_color
            params = {"text": escape_drawtext(word.text)}
            if self.font_file:
                params["fontfile"] = f"'{self.font_file}'"
            else:
                params["font"] = f"'{style.font_family}'"
            params.update({
                "fontsize": style.font_size,
                "fontcolor": ffmpeg_color(color),
                "borderw": style.stroke_width,
                "bordercolor": ffmpeg_color(style.stroke_color),
            })
            if style.background_opacity > 0 and style.background_color != "transparent":
                params.update({
                    "box": 1,
                    "boxcolor": f"{ffmpeg_color(style.background_color)}@{format_number(style.background_opacity)}",
                    "boxborderw": 10,
                })
            params.update({
                "x": "(w-tw)/2",
                "y": y_position,
                "enable": f"'gte(t,{format_number(word.start_time)})*lt(t,{format_number(word.end_time)})'",
            })
            output = f"cap{index}"
            stages.append(FilterStage(name="drawtext", inputs=[current], outputs=[output], params=params))
            current = output
        return current

    def _output_spec(self, profile: PlatformProfile, total_duration: float) -> OutputSpec:
        return OutputSpec(
            width=profile.width,
            height=profile.height,
            fps=profile.fps,
            video_codec=profile.video_codec,
            video_bitrate=profile.video_bitrate,
            max_rate=profile.video_bitrate,
            buffer_size=double_bitrate(profile.video_bitrate),
            audio_codec=profile.audio_codec,
            audio_bitrate=profile.audio_bitrate,
            audio_sample_rate=self.audio_sample_rate,
            pixel_format=profile.pixel_format,
            container=profile.container,
            preset=self.preset,
            crf=self.crf,
            duration=total_duration,
        )
