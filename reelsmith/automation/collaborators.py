"""
Pipeline Collaborators

Interfaces of the external services a job depends on (script generation,
image discovery, voice synthesis, rendering) and static adapters that serve
pre-made inputs from a project file or the request itself.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

import yaml
from pydantic import BaseModel, Field

from ..video_assembly.renderer import ProgressCallback, probe_duration
from ..video_assembly.video_models import CompositionPlan, ScriptSections, SectionImages
from .automation_models import GenerationOptions, GenerationRequest

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """A collaborator could not produce its output"""


class VoiceTrack(BaseModel):
    """Synthesized narration"""
    path: Path
    duration: float = Field(gt=0)


@runtime_checkable
class ScriptProvider(Protocol):
    async def generate_script(self, request: GenerationRequest) -> ScriptSections:
        ...


@runtime_checkable
class ImageProvider(Protocol):
    async def find_images(self, request: GenerationRequest, script: ScriptSections) -> SectionImages:
        ...


@runtime_checkable
class VoiceProvider(Protocol):
    async def synthesize(self, request: GenerationRequest, script: ScriptSections, work_dir: Path) -> VoiceTrack:
        ...


@runtime_checkable
class Renderer(Protocol):
    async def render(self,
                     plan: CompositionPlan,
                     output_path: Union[str, Path],
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[asyncio.Event] = None) -> Path:
        ...


class RequestScriptProvider:
    """Serves the script carried by the request"""

    async def generate_script(self, request: GenerationRequest) -> ScriptSections:
        if request.script is None:
            raise CollaboratorError(f"Request '{request.title}' has no script")
        return request.script


class RequestImageProvider:
    """Serves the images carried by the request, checking each file exists"""

    async def find_images(self, request: GenerationRequest, script: ScriptSections) -> SectionImages:
        images = request.images or SectionImages()
        missing = [path for path in images.hook + images.body + images.cta if not Path(path).is_file()]
        if missing:
            raise CollaboratorError(f"Missing image files: {', '.join(str(p) for p in missing)}")
        logger.info(f"Using {images.total} supplied images for '{request.title}'")
        return images


class RequestVoiceProvider:
    """Serves the voiceover carried by the request, probing its duration when unknown"""

    def __init__(self, prober: Callable[[Path], Awaitable[float]] = probe_duration):
        self.prober = prober

    async def synthesize(self, request: GenerationRequest, script: ScriptSections, work_dir: Path) -> VoiceTrack:
        if request.voiceover_path is None:
            raise CollaboratorError(f"Request '{request.title}' has no voiceover")
        path = Path(request.voiceover_path)
        if not path.is_file():
            raise CollaboratorError(f"Voiceover file not found: {path}")
        duration = request.voiceover_duration
        if duration is None:
            duration = await self.prober(path)
            logger.info(f"Probed voiceover duration: {duration:.2f}s")
        return VoiceTrack(path=path, duration=duration)


def _resolve(base: Path, value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def load_project(project_path: Union[str, Path]) -> GenerationRequest:
    """
    Load a generation request from a project YAML file.

    Expected keys: title, platform, script {hook, body, cta},
    images {hook: [...], body: [...], cta: [...]}, voiceover,
    voiceover_duration, background_music, options. Relative paths are
    resolved against the project file's directory.
    """
    project_file = Path(project_path)
    if not project_file.exists():
        raise FileNotFoundError(f"Project file not found: {project_path}")

    with open(project_file, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    base = project_file.parent
    images = data.get('images') or {}
    return GenerationRequest(
        title=data.get('title', project_file.stem),
        topic=data.get('topic', ''),
        platform=data.get('platform'),
        script=ScriptSections(**(data.get('script') or {})),
        images=SectionImages(**{
            section: [_resolve(base, item) for item in images.get(section) or []]
            for section in ('hook', 'body', 'cta')
        }),
        voiceover_path=_resolve(base, data.get('voiceover')),
        voiceover_duration=data.get('voiceover_duration'),
        background_music_path=_resolve(base, data.get('background_music')),
        options=GenerationOptions(**(data.get('options') or {})),
    )
