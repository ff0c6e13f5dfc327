"""
Video Assembly Data Models

Pydantic models for the short-form assembly pipeline: the timed timeline,
caption words, audio mix plan and the composition plan handed to FFmpeg.
"""

import re
from pathlib import Path
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator
from enum import Enum

RAW_INPUT_PATTERN = re.compile(r"^(\d+):([av])$")


class SectionType(str, Enum):
    """Script sections, in playback order"""
    HOOK = "hook"
    BODY = "body"
    CTA = "cta"


class EffectType(str, Enum):
    """Ken Burns pan/zoom effects"""
    NONE = "none"
    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    PAN_LEFT = "pan-left"
    PAN_RIGHT = "pan-right"


class TransitionType(str, Enum):
    """Types of transitions between images"""
    NONE = "none"
    CUT = "cut"
    FADE = "fade"
    DISSOLVE = "dissolve"
    SWIPE = "swipe"


class TransitionStyle(str, Enum):
    """Global transition style chosen per video"""
    SMOOTH = "smooth"    # cross-dissolve
    DYNAMIC = "dynamic"  # swipe
    MINIMAL = "minimal"  # short fade
    CUT = "cut"          # hard cuts only


class CaptionStyleType(str, Enum):
    """Caption style presets"""
    HORMOZI = "hormozi"
    CLASSIC = "classic"
    MINIMAL = "minimal"


class Effect(BaseModel):
    """A pan/zoom effect with its intensity"""
    model_config = ConfigDict(frozen=True)

    type: EffectType = EffectType.NONE
    intensity: float = Field(default=0.0, ge=0.0, le=1.0)


class Transition(BaseModel):
    """A transition into a clip, with its overlap duration in seconds"""
    model_config = ConfigDict(frozen=True)

    type: TransitionType = TransitionType.NONE
    duration: float = Field(default=0.0, ge=0.0)

    @property
    def is_blend(self) -> bool:
        return self.type in (TransitionType.FADE, TransitionType.DISSOLVE, TransitionType.SWIPE)


class ImageClip(BaseModel):
    """A still image shown for a span of its section"""
    id: str
    path: Path
    start_time: float  # seconds, relative to the section start
    duration: float   # seconds
    effect: Effect = Field(default_factory=Effect)
    transition: Transition = Field(default_factory=Transition)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class CaptionWord(BaseModel):
    """A single caption word on the absolute video timeline"""
    text: str
    start_time: float
    end_time: float
    style: Optional[str] = None  # "emphasis" for highlighted words

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def is_emphasis(self) -> bool:
        return self.style == "emphasis"


class TimelineSection(BaseModel):
    """One script section with its time span, images and captions"""
    id: str
    type: SectionType
    text: str
    start_time: float  # seconds from video start
    duration: float
    images: List[ImageClip] = Field(default_factory=list)
    captions: List[CaptionWord] = Field(default_factory=list)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class ScriptSections(BaseModel):
    """Script text per section, as supplied by the script collaborator"""
    hook: str = ""
    body: str = ""
    cta: str = ""
    word_counts: Dict[str, int] = Field(default_factory=dict)

    def text_for(self, section: SectionType) -> str:
        return getattr(self, section.value)

    def word_count(self, section: SectionType) -> int:
        """Precomputed count when supplied, otherwise counted from the text"""
        if section.value in self.word_counts:
            return self.word_counts[section.value]
        return len(self.text_for(section).split())


class SectionImages(BaseModel):
    """Ordered image paths per section, as supplied by the image collaborator"""
    hook: List[Path] = Field(default_factory=list)
    body: List[Path] = Field(default_factory=list)
    cta: List[Path] = Field(default_factory=list)

    def paths_for(self, section: SectionType) -> List[Path]:
        return getattr(self, section.value)

    @property
    def total(self) -> int:
        return len(self.hook) + len(self.body) + len(self.cta)


class CaptionStyle(BaseModel):
    """Caption rendering style"""
    type: CaptionStyleType
    font_family: str
    font_size: int = Field(ge=8, le=200)
    font_color: str = "#FFFFFF"
    emphasis_color: str = "#FFD700"
    stroke_color: str = "#000000"
    stroke_width: int = Field(default=2, ge=0)
    background_color: str = "#000000"
    background_opacity: float = Field(default=0.0, ge=0.0, le=1.0)
    position: str = "bottom"  # top | center | bottom
    animation: str = "none"


class SafeZone(BaseModel):
    """Screen margins covered by platform UI"""
    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0


class PlatformProfile(BaseModel):
    """Export profile for a short-form platform"""
    platform: str
    width: int = Field(default=1080, gt=0)
    height: int = Field(default=1920, gt=0)
    aspect_ratio: str = "9:16"
    fps: int = Field(default=30, ge=1, le=120)
    video_bitrate: str = "8M"
    audio_bitrate: str = "320k"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    pixel_format: str = "yuv420p"
    container: str = "mp4"
    max_duration_seconds: float = Field(default=600.0, gt=0)
    safe_zone: SafeZone = Field(default_factory=SafeZone)

    @model_validator(mode="after")
    def _check_aspect_ratio(self) -> "PlatformProfile":
        try:
            ratio_w, ratio_h = (int(part) for part in self.aspect_ratio.split(":"))
        except ValueError:
            raise ValueError(f"Invalid aspect ratio '{self.aspect_ratio}', expected W:H")
        if self.width * ratio_h != self.height * ratio_w:
            raise ValueError(
                f"Resolution {self.width}x{self.height} does not match aspect ratio {self.aspect_ratio}"
            )
        return self

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


def format_number(value: float) -> str:
    """Render a float for filter arguments without scientific notation"""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def is_raw_input(label: str) -> bool:
    return bool(RAW_INPUT_PATTERN.match(label))


def raw_input_index(label: str) -> Optional[int]:
    match = RAW_INPUT_PATTERN.match(label)
    return int(match.group(1)) if match else None


def map_argument(label: str) -> str:
    """Value for ffmpeg's -map: raw inputs bare, filter labels bracketed"""
    return label if is_raw_input(label) else f"[{label}]"


class FilterStage(BaseModel):
    """A single filter in the graph, consuming and producing labeled streams"""
    name: str
    inputs: List[str] = Field(default_factory=list)
    outputs: List[str]
    params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def output(self) -> str:
        return self.outputs[0]

    def render(self) -> str:
        """Render as a filter_complex chain, e.g. ``[0:v]scale=w=1080:h=1920[img0_scaled]``"""
        args = []
        for key, value in self.params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = int(value)
            if isinstance(value, float):
                value = format_number(value)
            args.append(f"{key}={value}")
        head = "".join(f"[{label}]" for label in self.inputs)
        tail = "".join(f"[{label}]" for label in self.outputs)
        body = f"{self.name}={':'.join(args)}" if args else self.name
        return f"{head}{body}{tail}"


class AudioMixOptions(BaseModel):
    """Audio mixing settings"""
    background_volume: float = Field(default=0.15, ge=0.0, le=1.0)
    enable_ducking: bool = True
    ducking_amount: float = Field(default=0.7, ge=0.0, le=1.0)
    normalize: bool = True
    target_lufs: float = -16.0
    true_peak: float = -1.5
    loudness_range: float = 11.0
    fade_duration: float = Field(default=0.5, ge=0.0, le=5.0)
    duck_threshold: float = Field(default=0.02, gt=0.0, le=1.0)
    duck_ratio: float = Field(default=8.0, ge=1.0, le=20.0)
    duck_attack_ms: float = Field(default=50.0, gt=0.0)
    duck_release_ms: float = Field(default=500.0, gt=0.0)


class AudioMixPlan(BaseModel):
    """Ordered audio filter stages for voiceover and optional background music"""
    voiceover_path: Path
    background_music_path: Optional[Path] = None
    background_volume: float = 0.15
    ducking_enabled: bool = True
    ducking_amount: float = 0.7
    target_lufs: float = -16.0
    voice_input_index: int = 1
    background_input_index: Optional[int] = None
    stages: List[FilterStage] = Field(default_factory=list)
    output_label: str

    def remap_inputs(self, mapping: Dict[int, int]) -> "AudioMixPlan":
        """Rewrite raw input references, leaving stage order and labels untouched"""

        def remap(label: str) -> str:
            index = raw_input_index(label)
            if index is None or index not in mapping:
                return label
            return f"{mapping[index]}:{label.split(':', 1)[1]}"

        stages = [
            stage.model_copy(update={"inputs": [remap(label) for label in stage.inputs]})
            for stage in self.stages
        ]
        background_index = self.background_input_index
        if background_index is not None:
            background_index = mapping.get(background_index, background_index)
        return self.model_copy(update={
            "stages": stages,
            "output_label": remap(self.output_label),
            "voice_input_index": mapping.get(self.voice_input_index, self.voice_input_index),
            "background_input_index": background_index,
        })


class MediaKind(str, Enum):
    IMAGE = "image"
    VOICEOVER = "voiceover"
    BACKGROUND = "background"


class MediaInput(BaseModel):
    """An input file of the composition, in -i order"""
    path: Path
    kind: MediaKind
    duration: Optional[float] = None  # rendered seconds for looped stills


class OutputSpec(BaseModel):
    """Encoder and container settings for the rendered file"""
    width: int
    height: int
    fps: int
    video_codec: str
    video_bitrate: str
    max_rate: str
    buffer_size: str
    audio_codec: str
    audio_bitrate: str
    audio_sample_rate: int = 48000
    pixel_format: str = "yuv420p"
    container: str = "mp4"
    preset: str = "medium"
    crf: int = Field(default=23, ge=0, le=51)
    duration: float


class CompositionPlan(BaseModel):
    """Everything FFmpeg needs to render the video"""
    inputs: List[MediaInput]
    stages: List[FilterStage]
    video_output: str
    audio_output: str
    output: OutputSpec

    def filter_complex(self) -> str:
        return ";".join(stage.render() for stage in self.stages)

    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def find_stage(self, output_label: str) -> Optional[FilterStage]:
        for stage in self.stages:
            if output_label in stage.outputs:
                return stage
        return None

    @property
    def image_inputs(self) -> List[MediaInput]:
        return [media for media in self.inputs if media.kind == MediaKind.IMAGE]


