"""
Automation Data Models

Pydantic models for video jobs: the generation request, the job stage
state machine and the status exposed to pollers.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Any
from pydantic import BaseModel, Field
from enum import Enum

from ..video_assembly.video_models import (
    AudioMixOptions, CaptionStyleType, CompositionPlan, ScriptSections, SectionImages, TransitionStyle
)


class JobStage(str, Enum):
    """Lifecycle stages of a video job, in execution order"""
    QUEUED = "queued"
    SCRIPTING = "scripting"
    SOURCING_IMAGES = "sourcing_images"
    SYNTHESIZING_VOICE = "synthesizing_voice"
    BUILDING_TIMELINE = "building_timeline"
    GENERATING_CAPTIONS = "generating_captions"
    PLANNING_COMPOSITION = "planning_composition"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PIPELINE_STAGES: List[JobStage] = [
    JobStage.QUEUED,
    JobStage.SCRIPTING,
    JobStage.SOURCING_IMAGES,
    JobStage.SYNTHESIZING_VOICE,
    JobStage.BUILDING_TIMELINE,
    JobStage.GENERATING_CAPTIONS,
    JobStage.PLANNING_COMPOSITION,
    JobStage.RENDERING,
    JobStage.COMPLETED,
]

TERMINAL_STAGES: FrozenSet[JobStage] = frozenset({JobStage.COMPLETED, JobStage.FAILED, JobStage.CANCELLED})


def _build_transitions() -> Dict[JobStage, FrozenSet[JobStage]]:
    transitions: Dict[JobStage, FrozenSet[JobStage]] = {}
    for current, following in zip(PIPELINE_STAGES, PIPELINE_STAGES[1:]):
        transitions[current] = frozenset({following, JobStage.FAILED, JobStage.CANCELLED})
    for terminal in TERMINAL_STAGES:
        transitions[terminal] = frozenset()
    return transitions


TRANSITIONS = _build_transitions()

# Progress reached on entering each stage
STAGE_PROGRESS: Dict[JobStage, float] = {
    JobStage.QUEUED: 0.0,
    JobStage.SCRIPTING: 0.05,
    JobStage.SOURCING_IMAGES: 0.15,
    JobStage.SYNTHESIZING_VOICE: 0.30,
    JobStage.BUILDING_TIMELINE: 0.45,
    JobStage.GENERATING_CAPTIONS: 0.55,
    JobStage.PLANNING_COMPOSITION: 0.65,
    JobStage.RENDERING: 0.70,
    JobStage.COMPLETED: 1.0,
}

RENDER_PROGRESS_CEILING = 0.99


class InvalidStageTransition(Exception):
    """A job was moved along an edge the state machine does not have"""

    def __init__(self, current: JobStage, target: JobStage):
        self.current = current
        self.target = target
        super().__init__(f"Invalid job transition {current.value} -> {target.value}")


class JobError(BaseModel):
    """Why and where a job failed"""
    stage: JobStage
    cause: str    # exception class name
    message: str


class GenerationOptions(BaseModel):
    """Per-request overrides of the configured defaults"""
    transition_style: Optional[TransitionStyle] = None
    ken_burns_enabled: Optional[bool] = None
    caption_style: Optional[CaptionStyleType] = None
    audio: Optional[AudioMixOptions] = None
    render_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class GenerationRequest(BaseModel):
    """A request to produce one short-form video"""
    title: str
    topic: str = ""
    platform: Optional[str] = None  # configured default when omitted

    # Inputs handed to the collaborators; static adapters use them directly
    script: Optional[ScriptSections] = None
    images: Optional[SectionImages] = None
    voiceover_path: Optional[Path] = None
    voiceover_duration: Optional[float] = Field(default=None, gt=0)
    background_music_path: Optional[Path] = None

    options: GenerationOptions = Field(default_factory=GenerationOptions)


class VideoJob(BaseModel):
    """A single video generation job, mutated only by the orchestrator"""
    id: str
    request: GenerationRequest

    # Job status
    stage: JobStage = JobStage.QUEUED
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    cancel_requested: bool = False

    # Results
    plan: Optional[CompositionPlan] = None
    work_dir: Optional[Path] = None
    output_path: Optional[Path] = None
    subtitle_path: Optional[Path] = None

    # Error handling
    error: Optional[JobError] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def can_transition(self, target: JobStage) -> bool:
        return target in TRANSITIONS[self.stage]

    def transition_to(self, target: JobStage) -> None:
        """Move to the next stage; progress never decreases"""
        if not self.can_transition(target):
            raise InvalidStageTransition(self.stage, target)
        self.stage = target
        if target in STAGE_PROGRESS:
            self.set_progress(STAGE_PROGRESS[target])
        now = datetime.now()
        self.updated_at = now
        if target in TERMINAL_STAGES:
            self.completed_at = now

    def set_progress(self, value: float) -> None:
        self.progress = max(self.progress, min(1.0, max(0.0, value)))

    def fail(self, error: JobError) -> None:
        self.error = error
        self.transition_to(JobStage.FAILED)

    def status(self) -> Dict[str, Any]:
        """Status as exposed to pollers: {stage, progress, error?, outputPath?}"""
        status: Dict[str, Any] = {"stage": self.stage.value, "progress": round(self.progress, 4)}
        if self.error is not None:
            status["error"] = self.error.model_dump(mode="json")
        if self.output_path is not None:
            status["outputPath"] = str(self.output_path)
        return status


class JobStats(BaseModel):
    """Counts of jobs known to the orchestrator"""
    total_jobs: int = 0
    queued_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    active_workers: int = 0
    max_workers: int = 0
    success_rate_percent: float = 0.0
