import asyncio

import pytest
import yaml

from reelsmith.automation.automation_models import (
    InvalidStageTransition, JobError, JobStage, GenerationRequest, PIPELINE_STAGES, STAGE_PROGRESS, VideoJob
)
from reelsmith.automation.collaborators import (
    CollaboratorError, ImageProvider, RequestImageProvider, RequestScriptProvider, RequestVoiceProvider,
    VoiceProvider, load_project
)
from reelsmith.video_assembly.video_models import SectionImages, TransitionStyle


@pytest.fixture
def job():
    return VideoJob(id="job-1", request=GenerationRequest(title="Test"))


def test_job_walks_pipeline(job):
    for stage in PIPELINE_STAGES[1:]:
        job.transition_to(stage)
        assert job.progress == pytest.approx(STAGE_PROGRESS[stage])
    assert job.is_terminal
    assert job.completed_at is not None


def test_stages_cannot_be_skipped(job):
    with pytest.raises(InvalidStageTransition) as excinfo:
        job.transition_to(JobStage.RENDERING)
    assert excinfo.value.current == JobStage.QUEUED
    assert job.stage == JobStage.QUEUED


def test_terminal_stages_are_final(job):
    job.transition_to(JobStage.CANCELLED)
    for stage in JobStage:
        assert not job.can_transition(stage)
    with pytest.raises(InvalidStageTransition):
        job.transition_to(JobStage.FAILED)


def test_progress_never_decreases(job):
    job.transition_to(JobStage.SCRIPTING)
    job.set_progress(0.5)
    job.set_progress(0.2)
    assert job.progress == pytest.approx(0.5)
    job.transition_to(JobStage.SOURCING_IMAGES)
    assert job.progress == pytest.approx(0.5)


def test_fail_records_stage(job):
    job.transition_to(JobStage.SCRIPTING)
    job.fail(JobError(stage=job.stage, cause="CollaboratorError", message="no script"))
    status = job.status()
    assert status["stage"] == "failed"
    assert status["error"] == {"stage": "scripting", "cause": "CollaboratorError", "message": "no script"}
    assert "outputPath" not in status


def test_request_adapters(script, make_images, voiceover):
    images = make_images(1, 1, 1)
    request = GenerationRequest(title="Test", script=script, images=images,
                                voiceover_path=voiceover, voiceover_duration=12.5)

    assert isinstance(RequestImageProvider(), ImageProvider)
    assert isinstance(RequestVoiceProvider(), VoiceProvider)
    assert asyncio.run(RequestScriptProvider().generate_script(request)) == script
    assert asyncio.run(RequestImageProvider().find_images(request, script)) == images
    voice = asyncio.run(RequestVoiceProvider().synthesize(request, script, voiceover.parent))
    assert voice.duration == pytest.approx(12.5)


def test_voice_adapter_probes_unknown_duration(script, voiceover):
    async def prober(path):
        return 7.25

    request = GenerationRequest(title="Test", voiceover_path=voiceover)
    voice = asyncio.run(RequestVoiceProvider(prober).synthesize(request, script, voiceover.parent))
    assert voice.duration == pytest.approx(7.25)


def test_image_adapter_rejects_missing_files(script, tmp_path):
    request = GenerationRequest(title="Test", images=SectionImages(hook=[tmp_path / "gone.png"]))
    with pytest.raises(CollaboratorError):
        asyncio.run(RequestImageProvider().find_images(request, script))


def test_load_project_resolves_relative_paths(tmp_path):
    project = tmp_path / "project" / "reel.yaml"
    project.parent.mkdir()
    project.write_text(yaml.safe_dump({
        "title": "Morning Routine",
        "platform": "shorts",
        "script": {"hook": "Wake up.", "body": "Drink water first.", "cta": "Subscribe."},
        "images": {"hook": ["img/a.png"], "cta": ["/abs/c.png"]},
        "voiceover": "voice.mp3",
        "options": {"transition_style": "dynamic", "render_timeout_seconds": 120},
    }))

    request = load_project(project)

    assert request.title == "Morning Routine"
    assert request.platform == "shorts"
    assert request.script.body == "Drink water first."
    assert request.images.hook == [project.parent / "img" / "a.png"]
    assert request.images.body == []
    assert str(request.images.cta[0]) == "/abs/c.png"
    assert request.voiceover_path == project.parent / "voice.mp3"
    assert request.background_music_path is None
    assert request.options.transition_style == TransitionStyle.DYNAMIC
    assert request.options.render_timeout_seconds == pytest.approx(120)


def test_load_project_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_project(tmp_path / "none.yaml")
