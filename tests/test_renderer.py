import asyncio
import sys

import pytest

from reelsmith.video_assembly.audio_mixer import AudioMixer
from reelsmith.video_assembly.composition_planner import CompositionPlanner
from reelsmith.video_assembly.errors import ExecutionFailure, RenderCancelled
from reelsmith.video_assembly.renderer import FFmpegRenderer, parse_progress_time
from reelsmith.video_assembly.timeline_builder import TimelineBuilder

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as the ffmpeg binary")


@pytest.fixture
def plan(script, make_images, voiceover, music, tiktok):
    timeline = TimelineBuilder().build_timeline(script, make_images(1, 0, 1), 30.0)
    audio_plan = AudioMixer(asset_retry_wait=0).plan(voiceover, music, total_duration=30.0)
    return CompositionPlanner().compose(timeline, [], audio_plan, tiktok)


@pytest.fixture
def fake_ffmpeg(tmp_path):
    def _make(body: str):
        path = tmp_path / "bin" / "ffmpeg"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return str(path)
    return _make


def test_build_command(plan, tmp_path):
    output = tmp_path / "out.mp4"
    cmd = FFmpegRenderer().build_command(plan, output)

    assert cmd[0] == "ffmpeg"
    assert "-y" in cmd
    first_input = cmd.index("-i")
    assert cmd[first_input - 6:first_input] == [
        "-loop", "1", "-framerate", "30", "-t", cmd[first_input - 1]
    ]
    assert cmd.count("-i") == 4
    assert cmd[cmd.index("-filter_complex") + 1] == plan.filter_complex()
    maps = [cmd[i + 1] for i, part in enumerate(cmd) if part == "-map"]
    assert maps == ["[video_out]", "[audio_mixed]"]
    assert cmd[cmd.index("-maxrate") + 1] == "8M"
    assert cmd[cmd.index("-bufsize") + 1] == "16M"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert cmd[-1] == str(output)


def test_parse_progress_time():
    assert parse_progress_time("frame=  30 fps=29 q=28.0 size=256kB time=00:01:02.50 bitrate=33.5kbits/s") == 62.5
    assert parse_progress_time("Stream mapping:") is None


@posix_only
def test_render_reports_progress(plan, fake_ffmpeg, tmp_path):
    binary = fake_ffmpeg(
        'for last; do :; done\n'
        "printf 'frame=1 time=00:00:15.00 bitrate=1k\\r' >&2\n"
        "printf 'video' > \"$last\""
    )
    progress = []
    output = tmp_path / "render" / "out.mp4"

    result = asyncio.run(FFmpegRenderer(binary).render(plan, output, progress.append))

    assert result == output
    assert output.read_text() == "video"
    assert progress == [pytest.approx(0.5), 1.0]


@posix_only
def test_render_failure_keeps_stderr_tail(plan, fake_ffmpeg, tmp_path):
    binary = fake_ffmpeg('echo "boom: invalid filter graph" >&2\nexit 3')
    with pytest.raises(ExecutionFailure) as excinfo:
        asyncio.run(FFmpegRenderer(binary).render(plan, tmp_path / "out.mp4"))
    assert excinfo.value.returncode == 3
    assert "boom" in excinfo.value.stderr_tail


@posix_only
def test_render_without_output_file_fails(plan, fake_ffmpeg, tmp_path):
    binary = fake_ffmpeg("exit 0")
    with pytest.raises(ExecutionFailure):
        asyncio.run(FFmpegRenderer(binary).render(plan, tmp_path / "out.mp4"))


@posix_only
def test_render_cancelled(plan, fake_ffmpeg, tmp_path):
    binary = fake_ffmpeg("exec sleep 30")

    async def scenario():
        cancel = asyncio.Event()
        task = asyncio.create_task(FFmpegRenderer(binary).render(plan, tmp_path / "out.mp4", None, cancel))
        await asyncio.sleep(0.2)
        cancel.set()
        return await asyncio.wait_for(task, timeout=10)

    with pytest.raises(RenderCancelled):
        asyncio.run(scenario())


def test_missing_binary(plan, tmp_path):
    renderer = FFmpegRenderer(str(tmp_path / "no-such-ffmpeg"))
    assert renderer.check_available() is False
    with pytest.raises(ExecutionFailure):
        asyncio.run(renderer.render(plan, tmp_path / "out.mp4"))
