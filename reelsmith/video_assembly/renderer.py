"""
FFmpeg Renderer

Thin execution collaborator: turns a CompositionPlan into an ffmpeg argv,
runs it asynchronously, reports progress parsed from stderr and honors
cancellation. All planning happens before this point.
"""

import asyncio
import logging
import re
import subprocess
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional, Union

import ffmpeg

from .errors import ExecutionFailure, RenderCancelled
from .video_models import CompositionPlan, MediaKind, format_number, map_argument

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

TIME_PATTERN = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
STDERR_TAIL_CHARS = 500
TERMINATE_GRACE_SECONDS = 5.0


def parse_progress_time(line: str) -> Optional[float]:
    """Seconds encoded so far from an ffmpeg status line, if present"""
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class FFmpegRenderer:
    """Runs composition plans through the ffmpeg binary"""

    def __init__(self, ffmpeg_binary: str = "ffmpeg"):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffmpeg_available: Optional[bool] = None

    def check_available(self) -> bool:
        """Check the ffmpeg binary can be executed"""
        try:
            result = subprocess.run([self.ffmpeg_binary, '-version'],
                                    capture_output=True, text=True, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to check FFmpeg: {e}")
            self.ffmpeg_available = False
            return False

        self.ffmpeg_available = result.returncode == 0
        if self.ffmpeg_available:
            logger.info(f"FFmpeg available: {result.stdout.splitlines()[0] if result.stdout else self.ffmpeg_binary}")
        else:
            logger.error("FFmpeg not found - video rendering will not work")
        return self.ffmpeg_available

    def build_command(self, plan: CompositionPlan, output_path: Union[str, Path]) -> List[str]:
        """
        Build the ffmpeg argv for a plan.

        Still images are looped for their rendered length; the filter graph
        is passed whole via -filter_complex and its two final labels mapped.
        """
        spec = plan.output
        cmd = [self.ffmpeg_binary, '-hide_banner', '-nostdin', '-y']

        for media in plan.inputs:
            if media.kind == MediaKind.IMAGE:
                cmd += ['-loop', '1', '-framerate', str(spec.fps)]
                if media.duration is not None:
                    cmd += ['-t', format_number(media.duration)]
            cmd += ['-i', str(media.path)]

        cmd += [
            '-filter_complex', plan.filter_complex(),
            '-map', map_argument(plan.video_output),
            '-map', map_argument(plan.audio_output),
            '-c:v', spec.video_codec,
            '-preset', spec.preset,
            '-crf', str(spec.crf),
            '-maxrate', spec.max_rate,
            '-bufsize', spec.buffer_size,
            '-pix_fmt', spec.pixel_format,
            '-r', str(spec.fps),
            '-c:a', spec.audio_codec,
            '-b:a', spec.audio_bitrate,
            '-ar', str(spec.audio_sample_rate),
            '-t', format_number(spec.duration),
            '-movflags', '+faststart',
            '-f', spec.container,
            str(output_path),
        ]
        return cmd

    async def render(self,
                     plan: CompositionPlan,
                     output_path: Union[str, Path],
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[asyncio.Event] = None) -> Path:
        """
        Render a plan to output_path.

        Args:
            plan: Composition plan
            output_path: Target video file
            progress_callback: Receives the encoded fraction in [0, 1]
            cancel_event: When set, ffmpeg is terminated

        Returns:
            Path of the rendered file

        Raises:
            ExecutionFailure: ffmpeg exited non-zero or wrote no output
            RenderCancelled: cancel_event was set before ffmpeg finished
        """
        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(plan, output)
        logger.info(f"Starting FFmpeg render: {len(plan.inputs)} inputs, {len(plan.stages)} stages -> {output}")
        logger.debug("FFmpeg command: " + " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecutionFailure(f"Could not start {self.ffmpeg_binary}: {e}") from e

        tail: deque = deque(maxlen=50)
        reader = asyncio.create_task(
            self._read_stderr(process.stderr, plan.output.duration, progress_callback, tail)
        )
        waiter = asyncio.create_task(process.wait())
        watchers = {waiter}
        canceller = None
        if cancel_event is not None:
            canceller = asyncio.create_task(cancel_event.wait())
            watchers.add(canceller)

        try:
            await asyncio.wait(watchers, return_when=asyncio.FIRST_COMPLETED)
            if not waiter.done():
                logger.info(f"Render cancelled, terminating FFmpeg (pid {process.pid})")
                await self._stop(process)
                raise RenderCancelled("Render cancelled")
            await reader
        finally:
            if canceller is not None:
                canceller.cancel()
            if process.returncode is None:
                await self._stop(process)
            if not reader.done():
                reader.cancel()

        stderr_tail = "".join(tail)[-STDERR_TAIL_CHARS:]
        if process.returncode != 0:
            logger.error(f"FFmpeg failed with exit code {process.returncode}: {stderr_tail}")
            raise ExecutionFailure(
                f"FFmpeg exited with code {process.returncode}",
                returncode=process.returncode,
                stderr_tail=stderr_tail,
            )
        if not output.exists() or output.stat().st_size == 0:
            raise ExecutionFailure(f"FFmpeg reported success but wrote no output: {output}",
                                   returncode=process.returncode, stderr_tail=stderr_tail)

        if progress_callback:
            progress_callback(1.0)
        logger.info(f"Render completed: {output}")
        return output

    @staticmethod
    async def _read_stderr(stream: asyncio.StreamReader, duration: float,
                           progress_callback: Optional[ProgressCallback], tail: deque) -> None:
        # ffmpeg rewrites its status line with \r, so split on both
        buffer = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk.decode("utf-8", errors="replace")
            lines = re.split(r"[\r\n]", buffer)
            buffer = lines.pop()
            for line in lines:
                if not line:
                    continue
                tail.append(line + "\n")
                seconds = parse_progress_time(line)
                if seconds is not None and progress_callback and duration > 0:
                    progress_callback(min(1.0, seconds / duration))
        if buffer:
            tail.append(buffer)

    @staticmethod
    async def _stop(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"FFmpeg (pid {process.pid}) ignored terminate, killing")
            process.kill()
            await process.wait()


async def probe_duration(path: Union[str, Path]) -> float:
    """Media duration in seconds via ffprobe"""
    try:
        probe = await asyncio.to_thread(ffmpeg.probe, str(path))
    except ffmpeg.Error as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else str(e)
        raise ExecutionFailure(f"ffprobe failed for {path}", stderr_tail=stderr[-STDERR_TAIL_CHARS:]) from e

    duration = probe.get('format', {}).get('duration')
    if duration is None:
        for stream in probe.get('streams', []):
            if 'duration' in stream:
                duration = stream['duration']
                break
    if duration is None:
        raise ExecutionFailure(f"ffprobe reported no duration for {path}")
    return float(duration)
