#!/usr/bin/env python3
"""
Reelsmith - Main Entry Point
Assembles a short-form vertical video (TikTok/Reels/Shorts) from a project file
holding the script, the images per section and the voiceover.
"""

import asyncio
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from rich.table import Table
from dotenv import load_dotenv

from reelsmith.automation.automation_models import GenerationRequest, JobStage
from reelsmith.automation.collaborators import (
    RequestImageProvider, RequestScriptProvider, RequestVoiceProvider, load_project
)
from reelsmith.automation.orchestrator import JobOrchestrator, output_filename
from reelsmith.utils.config import Config
from reelsmith.utils.logger import setup_logging
from reelsmith.video_assembly.audio_mixer import AudioMixer
from reelsmith.video_assembly.captions import CaptionGenerator, get_caption_style, to_srt
from reelsmith.video_assembly.composition_planner import CompositionPlanner, caption_track
from reelsmith.video_assembly.renderer import FFmpegRenderer, probe_duration
from reelsmith.video_assembly.timeline_builder import TimelineBuilder

# Local overrides such as FFMPEG_BINARY or REELSMITH_CONFIG
load_dotenv(dotenv_path=Path(__file__).parent / ".env.local")

console = Console()


class ReelsmithSystem:
    """Wires configuration, collaborators and the job orchestrator together"""

    def __init__(self, config_path: str = "configs/config.yaml"):
        if Path(config_path).exists():
            self.config = Config.load(config_path)
        else:
            console.print(f"[yellow]⚠[/yellow] Config '{config_path}' not found, using defaults")
            self.config = Config.default()

        ffmpeg_binary = os.getenv("FFMPEG_BINARY")
        if ffmpeg_binary:
            self.config.video.ffmpeg_binary = ffmpeg_binary

        self.logger = setup_logging(self.config)
        self.renderer = FFmpegRenderer(self.config.video.ffmpeg_binary)

    async def generate_video(self, request: GenerationRequest) -> Optional[Path]:
        """Run one request through the orchestrator with a live progress bar"""
        if not self.renderer.check_available():
            console.print("[red]❌[/red] FFmpeg is not available; install it or set FFMPEG_BINARY")
            return None

        profile = self.config.get_platform_profile(request.platform)
        console.print(f"[blue]🎬[/blue] Rendering '{request.title}' for {profile.platform} "
                      f"({profile.resolution} @ {profile.fps}fps)")

        async with JobOrchestrator(
            self.config,
            RequestScriptProvider(),
            RequestImageProvider(),
            RequestVoiceProvider(),
            self.renderer,
        ) as orchestrator:
            job_id = orchestrator.submit(request)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console,
                refresh_per_second=4,
            ) as progress:
                task = progress.add_task("[cyan]queued", total=100)
                while True:
                    job = await orchestrator.wait(job_id, timeout=0.25)
                    progress.update(task, completed=job.progress * 100,
                                    description=f"[cyan]{job.stage.value.replace('_', ' ')}")
                    if job.is_terminal:
                        break

        if job.stage == JobStage.COMPLETED:
            console.print("\n[bold green]🎉 Video Generation Complete![/bold green]")
            console.print(f"[green]💾[/green] Video saved: {job.output_path}")
            console.print(f"[green]📝[/green] Captions: {job.subtitle_path}")
            return job.output_path

        if job.stage == JobStage.CANCELLED:
            console.print("[yellow]⏹️[/yellow] Job cancelled")
        else:
            console.print(f"[red]❌[/red] Failed during {job.error.stage.value}: "
                          f"{job.error.cause}: {job.error.message}")
        return None

    async def preview(self, request: GenerationRequest) -> None:
        """Plan the video without rendering: print the timeline, FFmpeg command and SRT"""
        config = self.config
        options = request.options
        profile = config.get_platform_profile(request.platform)

        if request.voiceover_path is None:
            raise ValueError(f"Project '{request.title}' has no voiceover")
        duration = request.voiceover_duration
        if duration is None:
            duration = await probe_duration(request.voiceover_path)

        builder = TimelineBuilder.from_config(config.timeline, options.transition_style, options.ken_burns_enabled)
        timeline = builder.build_timeline(request.script, request.images, duration)
        caption_style = options.caption_style or config.captions.style
        timeline = CaptionGenerator(
            style=caption_style,
            words_per_minute=config.captions.words_per_minute,
            emphasis_words=config.captions.emphasis_words,
        ).apply(timeline)

        audio_plan = AudioMixer(options.audio or config.audio).plan(
            request.voiceover_path, request.background_music_path, total_duration=duration
        )
        plan = CompositionPlanner(
            caption_style=get_caption_style(caption_style),
            font_file=config.captions.font_file,
            preset=config.video.preset,
            crf=config.video.crf,
            audio_sample_rate=config.video.audio_sample_rate,
        ).compose(timeline, caption_track(timeline), audio_plan, profile)

        table = Table(title=f"Timeline: {request.title}")
        table.add_column("Section")
        table.add_column("Start", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Clips", justify="right")
        table.add_column("Words", justify="right")
        for section in timeline:
            table.add_row(section.type.value, f"{section.start_time:.2f}s", f"{section.duration:.2f}s",
                          str(len(section.images)), str(len(section.captions)))
        console.print(table)

        output_path = Path(config.paths.output) / output_filename(request.title, profile.container)
        command = self.renderer.build_command(plan, output_path)
        console.print("\n[bold cyan]FFmpeg command[/bold cyan]")
        console.print(" ".join(shlex.quote(part) for part in command), markup=False, soft_wrap=True)
        console.print("\n[bold cyan]Subtitles (SRT)[/bold cyan]")
        console.print(to_srt(timeline), markup=False)


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Reelsmith short-form video assembly")
    parser.add_argument("--project", type=str, required=True,
                        help="Project YAML with script, images, voiceover and optional music")
    parser.add_argument("--platform", type=str, help="Target platform (tiktok, reels, shorts)")
    parser.add_argument("--config", type=str, default=os.getenv("REELSMITH_CONFIG", "configs/config.yaml"),
                        help="Path to configuration file")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the FFmpeg command and subtitles without rendering")

    args = parser.parse_args()

    try:
        system = ReelsmithSystem(args.config)
        request = load_project(args.project)
        if args.platform:
            request = request.model_copy(update={"platform": args.platform})

        if args.dry_run:
            asyncio.run(system.preview(request))
        else:
            output = asyncio.run(system.generate_video(request))
            if output is None:
                sys.exit(1)

    except KeyboardInterrupt:
        console.print("\n[yellow]⏹️[/yellow] Stopped by user")
    except Exception as e:
        console.print(f"[red]💥[/red] Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
