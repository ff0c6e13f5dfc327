from pathlib import Path

import pytest

from reelsmith.utils.config import AutomationConfig, Config, PathsConfig
from reelsmith.video_assembly.video_models import ScriptSections, SectionImages

# Text lengths 10 : 30 : 10
HOOK_TEXT = "Listen up!"
BODY_TEXT = "This is the body of the video."
CTA_TEXT = "Follow me!"


def touch(path: Path, content: bytes = b"\x00") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def script() -> ScriptSections:
    return ScriptSections(hook=HOOK_TEXT, body=BODY_TEXT, cta=CTA_TEXT)


@pytest.fixture
def make_images(tmp_path):
    def _make(hook: int = 2, body: int = 2, cta: int = 2) -> SectionImages:
        def paths(section, count):
            return [touch(tmp_path / "images" / f"{section}_{i}.png") for i in range(count)]
        return SectionImages(hook=paths("hook", hook), body=paths("body", body), cta=paths("cta", cta))
    return _make


@pytest.fixture
def voiceover(tmp_path) -> Path:
    return touch(tmp_path / "audio" / "voice.mp3")


@pytest.fixture
def music(tmp_path) -> Path:
    return touch(tmp_path / "audio" / "music.mp3")


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        paths=PathsConfig(output=str(tmp_path / "output"), temp=str(tmp_path / "temp"),
                          logs=str(tmp_path / "logs")),
        automation=AutomationConfig(max_concurrent_jobs=2, collaborator_attempts=2, retry_wait_seconds=0.0),
    )


@pytest.fixture
def tiktok(config):
    return config.get_platform_profile("tiktok")
