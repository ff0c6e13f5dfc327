"""
Job Orchestrator

Runs each generation request through the job state machine:

    queued -> scripting -> sourcing_images -> synthesizing_voice ->
    building_timeline -> generating_captions -> planning_composition ->
    rendering -> completed

with `failed` and `cancelled` reachable from any non-terminal stage. Jobs run
as asyncio tasks, bounded by a worker pool; rendering is awaited with a
timeout so status queries and cancellation stay responsive.
"""

import asyncio
import logging
import re
import shutil
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
from tenacity import (
    AsyncRetrying, before_sleep_log, retry_if_exception_type, retry_if_not_exception_type, stop_after_attempt,
    wait_fixed
)

from ..utils.logger import LoggerMixin
from ..video_assembly.audio_mixer import AudioMixer
from ..video_assembly.captions import CaptionGenerator, get_caption_style, to_srt
from ..video_assembly.composition_planner import CompositionPlanner, caption_track
from ..video_assembly.errors import RenderCancelled, RenderTimeout
from ..video_assembly.timeline_builder import TimelineBuilder
from .automation_models import (
    GenerationRequest, JobError, JobStage, JobStats, RENDER_PROGRESS_CEILING, STAGE_PROGRESS, VideoJob
)
from .collaborators import ImageProvider, Renderer, ScriptProvider, VoiceProvider


class JobCancelled(Exception):
    """Raised inside a job task once the job has been cancelled"""


def _slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:60] or "video"


def output_filename(title: str, container: str) -> str:
    """File name of the rendered video, e.g. "My Reel!" -> "my-reel.mp4" """
    return f"{_slugify(title)}.{container}"


class JobOrchestrator(LoggerMixin):
    """
    Owns the lifecycle of video jobs.

    Features:
    - Explicit stage state machine with monotonic progress
    - Worker pool bounded by automation.max_concurrent_jobs
    - One bounded retry for collaborator calls, none across stages
    - Render timeout and cooperative cancellation
    - Job-scoped working directories with SRT and job state files
    """

    def __init__(self,
                 config,
                 script_provider: ScriptProvider,
                 image_provider: ImageProvider,
                 voice_provider: VoiceProvider,
                 renderer: Renderer):
        self.config = config
        self.script_provider = script_provider
        self.image_provider = image_provider
        self.voice_provider = voice_provider
        self.renderer = renderer

        self.output_dir = Path(config.paths.output)
        self.max_concurrent_jobs = config.automation.max_concurrent_jobs

        # State management
        self.jobs: Dict[str, VideoJob] = {}
        self.is_running = False
        self.state_lock = Lock()
        self._active_count = 0
        self._peak_active = 0
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    async def __aenter__(self) -> "JobOrchestrator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def start(self) -> None:
        """Start accepting jobs"""
        if self.is_running:
            self.logger.warning("Orchestrator already running")
            return
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        self.is_running = True
        self.logger.info(f"Job orchestrator started with {self.max_concurrent_jobs} workers")

    async def shutdown(self, cancel_pending: bool = True) -> None:
        """Stop accepting jobs, optionally cancel unfinished ones, and wait for all tasks"""
        self.is_running = False
        if cancel_pending:
            for job_id, job in list(self.jobs.items()):
                if not job.is_terminal:
                    self.cancel(job_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("Job orchestrator stopped")

    @property
    def active_count(self) -> int:
        with self.state_lock:
            return self._active_count

    @property
    def peak_active_count(self) -> int:
        with self.state_lock:
            return self._peak_active

    def submit(self, request: GenerationRequest) -> str:
        """Queue a generation request and return its job id"""
        if not self.is_running:
            raise RuntimeError("Orchestrator is not running; call start() first")

        job_id = str(uuid.uuid4())
        job = VideoJob(id=job_id, request=request, work_dir=self.output_dir / job_id)
        with self.state_lock:
            self.jobs[job_id] = job
            self._cancel_events[job_id] = asyncio.Event()
        self._tasks[job_id] = asyncio.create_task(self._run_job(job), name=f"video-job-{job_id}")

        self.logger.info(f"Queued job {job_id}: {request.title}")
        return job_id

    def get_job(self, job_id: str) -> VideoJob:
        with self.state_lock:
            try:
                return self.jobs[job_id]
            except KeyError:
                raise KeyError(f"Unknown job '{job_id}'")

    def get_status(self, job_id: str) -> Dict[str, Any]:
        """Job status: {stage, progress, error?, outputPath?}"""
        return self.get_job(job_id).status()

    def list_jobs(self, stage: Optional[JobStage] = None) -> List[VideoJob]:
        with self.state_lock:
            jobs = list(self.jobs.values())
        if stage is not None:
            jobs = [job for job in jobs if job.stage == stage]
        return sorted(jobs, key=lambda j: j.created_at)

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation.

        Outside rendering the job is cancelled immediately. While rendering,
        the renderer is signalled and the job is cancelled once it stops.

        Returns:
            False when the job had already finished
        """
        job = self.get_job(job_id)
        if job.is_terminal:
            return False

        job.cancel_requested = True
        self._cancel_events[job_id].set()
        if job.stage == JobStage.RENDERING:
            self.logger.info(f"Cancellation of job {job_id} signalled to the renderer")
        else:
            previous = job.stage
            job.transition_to(JobStage.CANCELLED)
            self._save_job(job)
            self.logger.info(f"Job {job_id} cancelled during {previous.value}")
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> VideoJob:
        """Wait until the job's task has finished (or the timeout elapses)"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.get_job(job_id)

    def prune_finished(self, max_age: Optional[timedelta] = None, remove_files: bool = False) -> int:
        """Forget terminal jobs older than max_age (default: the retention window)"""
        if max_age is None:
            max_age = timedelta(hours=self.config.automation.retention_hours)
        cutoff = datetime.now() - max_age

        with self.state_lock:
            old_jobs = [job for job in self.jobs.values()
                        if job.is_terminal and job.completed_at and job.completed_at <= cutoff]
            for job in old_jobs:
                del self.jobs[job.id]
                self._cancel_events.pop(job.id, None)
                self._tasks.pop(job.id, None)

        if remove_files:
            for job in old_jobs:
                if job.work_dir and job.work_dir.exists():
                    shutil.rmtree(job.work_dir)

        if old_jobs:
            self.logger.info(f"Pruned {len(old_jobs)} finished jobs")
        return len(old_jobs)

    def get_stats(self) -> JobStats:
        jobs = self.list_jobs()
        completed = sum(1 for job in jobs if job.stage == JobStage.COMPLETED)
        failed = sum(1 for job in jobs if job.stage == JobStage.FAILED)
        finished = completed + failed
        return JobStats(
            total_jobs=len(jobs),
            queued_jobs=sum(1 for job in jobs if job.stage == JobStage.QUEUED),
            running_jobs=sum(1 for job in jobs if not job.is_terminal and job.stage != JobStage.QUEUED),
            completed_jobs=completed,
            failed_jobs=failed,
            cancelled_jobs=sum(1 for job in jobs if job.stage == JobStage.CANCELLED),
            active_workers=self.active_count,
            max_workers=self.max_concurrent_jobs,
            success_rate_percent=(completed / finished * 100.0) if finished else 0.0,
        )

    async def _run_job(self, job: VideoJob) -> None:
        async with self._semaphore:
            if job.is_terminal:
                return
            self._acquire_slot()
            try:
                await self._execute_job(job)
            finally:
                self._release_slot()

    def _acquire_slot(self) -> None:
        with self.state_lock:
            self._active_count += 1
            self._peak_active = max(self._peak_active, self._active_count)

    def _release_slot(self) -> None:
        with self.state_lock:
            self._active_count -= 1

    async def _execute_job(self, job: VideoJob) -> None:
        """Run every stage of one job in order"""
        request = job.request
        options = request.options
        config = self.config
        start_time = datetime.now()
        job.started_at = start_time
        self.logger.info(f"Starting job {job.id}: {request.title}")

        try:
            job.work_dir.mkdir(parents=True, exist_ok=True)

            self._advance(job, JobStage.SCRIPTING)
            script = await self._call_collaborator(job, self.script_provider.generate_script, request)

            self._advance(job, JobStage.SOURCING_IMAGES)
            images = await self._call_collaborator(job, self.image_provider.find_images, request, script)

            self._advance(job, JobStage.SYNTHESIZING_VOICE)
            voice = await self._call_collaborator(job, self.voice_provider.synthesize, request, script, job.work_dir)

            self._advance(job, JobStage.BUILDING_TIMELINE)
            builder = TimelineBuilder.from_config(
                config.timeline,
                transition_style=options.transition_style,
                ken_burns_enabled=options.ken_burns_enabled,
            )
            timeline = builder.build_timeline(script, images, voice.duration)

            self._advance(job, JobStage.GENERATING_CAPTIONS)
            caption_style = options.caption_style or config.captions.style
            generator = CaptionGenerator(
                style=caption_style,
                words_per_minute=config.captions.words_per_minute,
                emphasis_words=config.captions.emphasis_words,
            )
            generator.check_pacing(script, voice.duration)
            timeline = generator.apply(timeline)
            job.subtitle_path = job.work_dir / "captions.srt"
            job.subtitle_path.write_text(to_srt(timeline), encoding="utf-8")

            self._advance(job, JobStage.PLANNING_COMPOSITION)
            profile = config.get_platform_profile(request.platform)
            mixer = AudioMixer(
                options.audio or config.audio,
                asset_check_attempts=config.automation.collaborator_attempts,
                asset_retry_wait=config.automation.retry_wait_seconds,
            )
            audio_plan = mixer.plan(voice.path, request.background_music_path, total_duration=voice.duration)
            planner = CompositionPlanner(
                caption_style=get_caption_style(caption_style),
                font_file=config.captions.font_file,
                preset=config.video.preset,
                crf=config.video.crf,
                audio_sample_rate=config.video.audio_sample_rate,
            )
            job.plan = planner.compose(timeline, caption_track(timeline), audio_plan, profile)

            self._advance(job, JobStage.RENDERING)
            output_path = job.work_dir / output_filename(request.title, profile.container)
            await self._render(job, output_path)

            job.output_path = output_path
            job.transition_to(JobStage.COMPLETED)
            self._save_job(job)
            elapsed = (datetime.now() - start_time).total_seconds()
            self.logger.info(f"Job {job.id} completed in {elapsed:.1f}s: {output_path}")

        except JobCancelled:
            self.logger.info(f"Job {job.id} stopped after cancellation")
        except asyncio.CancelledError:
            if not job.is_terminal:
                job.cancel_requested = True
                job.transition_to(JobStage.CANCELLED)
                self._save_job(job)
            raise
        except Exception as e:
            self._fail(job, e)

    def _advance(self, job: VideoJob, stage: JobStage) -> None:
        # The job may have been cancelled while the previous stage was running
        if job.is_terminal or job.cancel_requested:
            raise JobCancelled(job.id)
        job.transition_to(stage)
        self._save_job(job)
        self.logger.debug(f"Job {job.id} -> {stage.value} ({job.progress:.0%})")

    async def _call_collaborator(self, job: VideoJob, func: Callable[..., Awaitable[Any]], *args) -> Any:
        """Call a collaborator with one bounded retry"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.automation.collaborator_attempts),
            wait=wait_fixed(self.config.automation.retry_wait_seconds),
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(JobCancelled),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                if job.cancel_requested:
                    raise JobCancelled(job.id)
                result = await func(*args)
        return result

    async def _render(self, job: VideoJob, output_path: Path) -> None:
        """Render once; timeouts and cancellation are turned into job outcomes"""
        timeout = job.request.options.render_timeout_seconds or self.config.video.render_timeout_seconds
        cancel_event = self._cancel_events[job.id]
        render_start = STAGE_PROGRESS[JobStage.RENDERING]

        def on_progress(fraction: float) -> None:
            job.set_progress(render_start + (RENDER_PROGRESS_CEILING - render_start) * fraction)

        try:
            await asyncio.wait_for(
                self.renderer.render(job.plan, output_path, on_progress, cancel_event),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            cancel_event.set()
            raise RenderTimeout(timeout) from e
        except RenderCancelled:
            job.transition_to(JobStage.CANCELLED)
            self._save_job(job)
            raise JobCancelled(job.id)

    def _fail(self, job: VideoJob, error: Exception) -> None:
        if job.is_terminal:
            self.logger.warning(f"Job {job.id} already {job.stage.value}, ignoring late error: {error}")
            return
        job.fail(JobError(stage=job.stage, cause=type(error).__name__, message=str(error)))
        self._save_job(job)
        self.logger.error(f"Job {job.id} failed during {job.error.stage.value}: "
                          f"{job.error.cause}: {job.error.message}")

    def _save_job(self, job: VideoJob) -> None:
        """Persist job state next to its outputs"""
        if job.work_dir is None or not job.work_dir.exists():
            return
        try:
            with open(job.work_dir / "job.yaml", 'w', encoding='utf-8') as f:
                yaml.safe_dump(job.model_dump(mode="json", exclude={"plan"}), f, default_flow_style=False)
        except (OSError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to save job {job.id}: {e}")
