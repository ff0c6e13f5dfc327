"""
Audio Mixer

Plans the audio side of the filter graph:
- Loudness normalization of the voiceover (EBU R128 via loudnorm)
- Background music volume and fades
- Ducking: background compressed by a sidechain keyed off the voice
- Final mix where the voiceover length governs the output length

Only produces filter stages; nothing is decoded or rendered here.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from .errors import MissingAudioAsset
from .video_models import AudioMixOptions, AudioMixPlan, FilterStage

logger = logging.getLogger(__name__)

# By convention the voiceover is input 1 and background music input 2;
# the composition planner remaps these once the image inputs are known.
VOICE_INPUT_INDEX = 1
BACKGROUND_INPUT_INDEX = 2

DEFAULT_TARGET_LUFS = -16.0
DEFAULT_TRUE_PEAK = -1.5
DEFAULT_LOUDNESS_RANGE = 11.0


def normalization_params(target_lufs: float = DEFAULT_TARGET_LUFS,
                         true_peak: float = DEFAULT_TRUE_PEAK,
                         loudness_range: float = DEFAULT_LOUDNESS_RANGE) -> Dict[str, float]:
    """loudnorm parameters: integrated loudness, true peak and loudness range"""
    return {"I": float(target_lufs), "TP": float(true_peak), "LRA": float(loudness_range)}


def fade_filter(fade_in: bool, fade_out: bool, duration: float, total_duration: Optional[float] = None) -> str:
    """Standalone afade chain, e.g. for previewing a music bed"""
    filters = []
    if fade_in:
        filters.append(f"afade=t=in:d={duration}")
    if fade_out and total_duration:
        filters.append(f"afade=t=out:st={max(0.0, total_duration - duration)}:d={duration}")
    return ",".join(filters)


class AudioMixer:
    """
    Builds an AudioMixPlan for a voiceover and optional background music.

    Stage order is fixed: normalize -> fade/volume -> (duck) -> mix, each stage
    consuming the previous stage's output label.
    """

    def __init__(self,
                 options: Optional[AudioMixOptions] = None,
                 asset_check_attempts: int = 2,
                 asset_retry_wait: float = 0.25):
        self.options = options or AudioMixOptions()
        self.asset_check_attempts = max(1, asset_check_attempts)
        self.asset_retry_wait = asset_retry_wait

    def plan(self,
             voiceover_path: Union[str, Path],
             background_music_path: Optional[Union[str, Path]] = None,
             options: Optional[AudioMixOptions] = None,
             total_duration: Optional[float] = None) -> AudioMixPlan:
        """
        Plan the audio mix.

        Args:
            voiceover_path: Narration audio file
            background_music_path: Optional music bed
            options: Overrides the mixer's default options
            total_duration: Voiceover length, used to place the music fade-out

        Returns:
            AudioMixPlan with ordered stages and the final output label

        Raises:
            MissingAudioAsset: a referenced file does not exist
        """
        opts = options or self.options
        voice = Path(voiceover_path)
        background = Path(background_music_path) if background_music_path else None

        self.verify_assets(voice, background)

        voice_ref = f"{VOICE_INPUT_INDEX}:a"
        stages: List[FilterStage] = []

        if background is None:
            output_label = voice_ref
            if opts.normalize:
                stages.append(self._loudnorm(voice_ref, "audio_out", opts))
                output_label = "audio_out"
            logger.info(f"Audio plan: voiceover only ({len(stages)} stage)")
            return self._build_plan(voice, None, opts, stages, output_label)

        # Voice
        voice_label = voice_ref
        if opts.normalize:
            voice_label = "voice_loud" if opts.enable_ducking else "voice_norm"
            stages.append(self._loudnorm(voice_ref, voice_label, opts))

        key_label = None
        if opts.enable_ducking:
            # A label feeds exactly one filter, so the voice is split for mix and sidechain
            mix_label = "voice_norm" if opts.normalize else "voice_main"
            key_label = "voice_key"
            stages.append(FilterStage(
                name="asplit",
                inputs=[voice_label],
                outputs=[mix_label, key_label],
                params={"outputs": 2},
            ))
            voice_label = mix_label

        # Background: fades, then volume
        bg_label = f"{BACKGROUND_INPUT_INDEX}:a"
        if opts.fade_duration > 0:
            stages.append(FilterStage(
                name="afade",
                inputs=[bg_label],
                outputs=["bg_fadein"],
                params={"t": "in", "st": 0.0, "d": float(opts.fade_duration)},
            ))
            bg_label = "bg_fadein"
            if total_duration and total_duration > 2 * opts.fade_duration:
                stages.append(FilterStage(
                    name="afade",
                    inputs=[bg_label],
                    outputs=["bg_fadeout"],
                    params={"t": "out", "st": float(total_duration - opts.fade_duration),
                            "d": float(opts.fade_duration)},
                ))
                bg_label = "bg_fadeout"
        stages.append(FilterStage(
            name="volume",
            inputs=[bg_label],
            outputs=["bg_vol"],
            params={"volume": float(opts.background_volume)},
        ))
        bg_label = "bg_vol"

        if opts.enable_ducking:
            stages.append(FilterStage(
                name="sidechaincompress",
                inputs=[bg_label, key_label],
                outputs=["bg_ducked"],
                params={
                    "threshold": float(opts.duck_threshold),
                    "ratio": float(opts.duck_ratio),
                    "attack": float(opts.duck_attack_ms),
                    "release": float(opts.duck_release_ms),
                    "mix": float(opts.ducking_amount),
                },
            ))
            bg_label = "bg_ducked"

        stages.append(FilterStage(
            name="amix",
            inputs=[voice_label, bg_label],
            outputs=["audio_mixed"],
            params={"inputs": 2, "duration": "first", "dropout_transition": 2, "normalize": 0},
        ))

        logger.info(
            f"Audio plan: voiceover + background, ducking={'on' if opts.enable_ducking else 'off'}, "
            f"{len(stages)} stages"
        )
        return self._build_plan(voice, background, opts, stages, "audio_mixed")

    def verify_assets(self, voiceover: Path, background: Optional[Path] = None) -> None:
        """Check every referenced audio file exists, allowing one retry for slow file systems"""
        retrying = Retrying(
            stop=stop_after_attempt(self.asset_check_attempts),
            wait=wait_fixed(self.asset_retry_wait),
            retry=retry_if_exception_type(MissingAudioAsset),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self._check_exists(voiceover, "voiceover")
                if background is not None:
                    self._check_exists(background, "background music")

    @staticmethod
    def _check_exists(path: Path, role: str) -> None:
        if not path.is_file():
            raise MissingAudioAsset(path, role)

    @staticmethod
    def _loudnorm(input_label: str, output_label: str, opts: AudioMixOptions) -> FilterStage:
        return FilterStage(
            name="loudnorm",
            inputs=[input_label],
            outputs=[output_label],
            params=normalization_params(opts.target_lufs, opts.true_peak, opts.loudness_range),
        )

    @staticmethod
    def _build_plan(voice: Path, background: Optional[Path], opts: AudioMixOptions,
                    stages: List[FilterStage], output_label: str) -> AudioMixPlan:
        return AudioMixPlan(
            voiceover_path=voice,
            background_music_path=background,
            background_volume=opts.background_volume,
            ducking_enabled=background is not None and opts.enable_ducking,
            ducking_amount=opts.ducking_amount,
            target_lufs=opts.target_lufs,
            voice_input_index=VOICE_INPUT_INDEX,
            background_input_index=BACKGROUND_INPUT_INDEX if background is not None else None,
            stages=stages,
            output_label=output_label,
        )
