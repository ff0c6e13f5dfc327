from pathlib import Path

import pytest
import yaml

from reelsmith.utils.config import Config
from reelsmith.video_assembly.video_models import CaptionStyleType, PlatformProfile, TransitionStyle

REPO_CONFIG = Path(__file__).parent.parent / "configs" / "config.yaml"


def test_default_platforms():
    config = Config.default()
    assert config.get_available_platforms() == ["tiktok", "reels", "shorts"]
    assert config.get_platform_profile().platform == "tiktok"
    shorts = config.get_platform_profile("shorts")
    assert shorts.max_duration_seconds == 60
    assert shorts.resolution == "1080x1920"


def test_unknown_platform():
    with pytest.raises(KeyError):
        Config.default().get_platform_profile("vine")


def test_repository_config_loads():
    config = Config.load(str(REPO_CONFIG))
    assert config.timeline.transition_style == TransitionStyle.SMOOTH
    assert config.captions.style == CaptionStyleType.HORMOZI
    assert config.get_platform_profile("reels").video_bitrate == "10M"
    assert config.logging["level"] == "INFO"


def test_partial_yaml_keeps_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"video": {"crf": 18}, "timeline": {"transition_style": "cut"}}))
    config = Config.load(str(path))
    assert config.video.crf == 18
    assert config.timeline.transition_style == TransitionStyle.CUT
    assert config.audio.background_volume == pytest.approx(0.15)
    assert "tiktok" in config.video.platforms


def test_empty_yaml_is_default(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert Config.load(str(path)) == Config.default()


def test_save_then_load(tmp_path):
    config = Config.default()
    config.automation.max_concurrent_jobs = 4
    path = tmp_path / "nested" / "config.yaml"
    config.save(str(path))
    assert Config.load(str(path)).automation.max_concurrent_jobs == 4


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        Config.load("does/not/exist.yaml")


def test_profile_aspect_ratio_validated():
    with pytest.raises(ValueError):
        PlatformProfile(platform="bad", width=1920, height=1080, aspect_ratio="9:16")
    with pytest.raises(ValueError):
        PlatformProfile(platform="bad", aspect_ratio="tall")
