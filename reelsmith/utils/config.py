"""Configuration management for the short-form video assembly system"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..video_assembly.video_models import (
    AudioMixOptions, CaptionStyleType, PlatformProfile, SafeZone, TransitionStyle
)


def _default_platform_profiles() -> Dict[str, PlatformProfile]:
    return {
        "tiktok": PlatformProfile(
            platform="tiktok",
            video_bitrate="8M",
            max_duration_seconds=600,
            safe_zone=SafeZone(top=100, bottom=384, left=0, right=108),
        ),
        "reels": PlatformProfile(
            platform="reels",
            video_bitrate="10M",
            max_duration_seconds=90,
            safe_zone=SafeZone(top=100, bottom=384),
        ),
        "shorts": PlatformProfile(
            platform="shorts",
            video_bitrate="10M",
            max_duration_seconds=60,
            safe_zone=SafeZone(top=150, bottom=300),
        ),
    }


class PathsConfig(BaseModel):
    """Storage paths configuration"""
    output: str = "./output"
    temp: str = "./temp"
    logs: str = "./logs"


class TimelineConfig(BaseModel):
    min_section_seconds: float = Field(default=2.0, gt=0)
    min_image_seconds: float = Field(default=2.0, gt=0)
    max_image_seconds: float = Field(default=5.0, gt=0)
    ken_burns_enabled: bool = True
    ken_burns_intensity: float = Field(default=0.1, ge=0.0, le=1.0)
    transition_style: TransitionStyle = TransitionStyle.SMOOTH


class CaptionConfig(BaseModel):
    style: CaptionStyleType = CaptionStyleType.HORMOZI
    words_per_minute: float = Field(default=150.0, gt=0)
    font_file: Optional[str] = None
    emphasis_words: List[str] = Field(default_factory=list)  # extends the built-in list


class VideoConfig(BaseModel):
    default_platform: str = "tiktok"
    platforms: Dict[str, PlatformProfile] = Field(default_factory=_default_platform_profiles)
    preset: str = "medium"
    crf: int = Field(default=23, ge=0, le=51)
    audio_sample_rate: int = 48000
    ffmpeg_binary: str = "ffmpeg"
    render_timeout_seconds: float = Field(default=900.0, gt=0)


class AutomationConfig(BaseModel):
    max_concurrent_jobs: int = Field(default=2, ge=1, le=16)
    collaborator_attempts: int = Field(default=2, ge=1, le=3)  # first call + one retry
    retry_wait_seconds: float = Field(default=1.0, ge=0.0)
    retention_hours: float = Field(default=24.0, gt=0)


class Config(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    captions: CaptionConfig = Field(default_factory=CaptionConfig)
    audio: AudioMixOptions = Field(default_factory=AudioMixOptions)
    video: VideoConfig = Field(default_factory=VideoConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    def get_platform_profile(self, platform: Optional[str] = None) -> PlatformProfile:
        """Get the export profile for a platform (default platform if omitted)"""
        name = platform or self.video.default_platform
        try:
            return self.video.platforms[name]
        except KeyError:
            raise KeyError(
                f"Unknown platform '{name}'. Available: {', '.join(self.get_available_platforms())}"
            )

    def get_available_platforms(self) -> List[str]:
        return list(self.video.platforms.keys())

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """Load configuration from YAML file"""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save(self, config_path: str):
        """Save configuration to YAML file"""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
