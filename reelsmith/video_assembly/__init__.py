"""
Video Assembly Pipeline

Pure planning components for a short-form video:
- Timeline construction (section and image durations, effects, transitions)
- Word-level caption timing and SRT output
- Audio mix graph (normalization, ducking, mixing)
- FFmpeg composition plan (inputs, filter graph, output spec)

Plus the thin FFmpeg renderer that executes a plan.
"""

from .audio_mixer import AudioMixer
from .captions import CaptionGenerator, to_srt
from .composition_planner import CompositionPlanner
from .errors import (
    ExecutionFailure, InvalidTimelineAllocation, LabelGraphError, MissingAudioAsset, RenderCancelled,
    RenderTimeout, VideoAssemblyError
)
from .renderer import FFmpegRenderer
from .timeline_builder import TimelineBuilder
from .video_models import AudioMixPlan, CompositionPlan, TimelineSection

__all__ = [
    'AudioMixer',
    'CaptionGenerator',
    'CompositionPlanner',
    'FFmpegRenderer',
    'TimelineBuilder',
    'to_srt',
    'AudioMixPlan',
    'CompositionPlan',
    'TimelineSection',
    'VideoAssemblyError',
    'MissingAudioAsset',
    'InvalidTimelineAllocation',
    'LabelGraphError',
    'RenderTimeout',
    'ExecutionFailure',
    'RenderCancelled',
]
